"""Tests for water index formulas."""

from __future__ import annotations

import numpy as np
import pytest

from shoreline_satellite.activities.water_indices import (
    OPTICAL_INDEX_FORMULAS,
    compute_optical_index,
    db_to_linear,
    landsat_awei,
    normalized_difference,
    radar_ratio,
    water_is_below,
)
from shoreline_satellite.core.constants import WaterIndex


def _bands(**values: float) -> dict[str, np.ndarray]:
    return {name: np.array([[value]]) for name, value in values.items()}


WATER_PIXEL = _bands(B2=0.08, B3=0.10, B4=0.06, B8=0.02, B11=0.01, B12=0.005)
LAND_PIXEL = _bands(B2=0.05, B3=0.08, B4=0.10, B8=0.35, B11=0.25, B12=0.15)


class TestNormalizedDifference:
    def test_basic(self) -> None:
        out = normalized_difference(np.array([3.0]), np.array([1.0]))
        assert out[0] == pytest.approx(0.5)

    def test_zero_denominator_is_nan(self) -> None:
        out = normalized_difference(np.array([0.0]), np.array([0.0]))
        assert np.isnan(out[0])


class TestOpticalIndices:
    """Every formula is registered and separates water from land."""

    def test_all_indices_registered(self) -> None:
        assert set(OPTICAL_INDEX_FORMULAS) == set(WaterIndex)

    @pytest.mark.parametrize("index", list(WaterIndex))
    def test_water_on_the_water_side(self, index: WaterIndex) -> None:
        water = float(compute_optical_index(index, WATER_PIXEL)[0, 0])
        land = float(compute_optical_index(index, LAND_PIXEL)[0, 0])
        if water_is_below(index):
            assert water < land
        else:
            assert water > land

    def test_ndwi_variant_2_formula(self) -> None:
        out = compute_optical_index(WaterIndex.NDWI_VARIANT_2, _bands(B3=0.13, B11=0.07))
        assert out[0, 0] == pytest.approx(0.3)

    def test_awei_variant_1_formula(self) -> None:
        bands = _bands(B3=0.1, B8=0.2, B11=0.05, B12=0.04)
        expected = 4 * (0.1 - 0.05) - (0.25 * 0.2 + 2.75 * 0.04)
        out = compute_optical_index(WaterIndex.AWEI_VARIANT_1, bands)
        assert out[0, 0] == pytest.approx(expected)

    def test_awei_variant_2_formula(self) -> None:
        bands = _bands(B2=0.1, B3=0.1, B8=0.2, B11=0.05, B12=0.04)
        expected = 0.1 + 2.5 * 0.1 - 1.5 * (0.2 + 0.05) - 0.25 * 0.04
        out = compute_optical_index(WaterIndex.AWEI_VARIANT_2, bands)
        assert out[0, 0] == pytest.approx(expected)

    def test_multi_band_ratio_zero_denominator(self) -> None:
        bands = _bands(B3=0.1, B4=0.1, B8=0.0, B11=0.0)
        out = compute_optical_index(WaterIndex.MULTI_BAND_RATIO_2, bands)
        assert np.isnan(out[0, 0])

    def test_missing_band_raises_key_error(self) -> None:
        with pytest.raises(KeyError):
            compute_optical_index(WaterIndex.NDWI_VARIANT_1, _bands(B3=0.1))

    def test_only_single_band_is_below(self) -> None:
        below = [index for index in WaterIndex if water_is_below(index)]
        assert below == [WaterIndex.SINGLE_BAND]


class TestLandsatAWEI:
    def test_water_above_land(self) -> None:
        water = _bands(SR_B3=0.10, SR_B5=0.02, SR_B6=0.01, SR_B7=0.005)
        land = _bands(SR_B3=0.08, SR_B5=0.35, SR_B6=0.25, SR_B7=0.15)
        assert landsat_awei(water)[0, 0] > 0 > landsat_awei(land)[0, 0]


class TestRadar:
    def test_db_to_linear(self) -> None:
        assert db_to_linear(np.array([10.0, 0.0, -10.0])) == pytest.approx([10.0, 1.0, 0.1])

    def test_ratio_is_linear(self) -> None:
        # 6 dB apart -> ratio of 10^0.6
        out = radar_ratio(np.array([-8.0]), np.array([-14.0]))
        assert out[0] == pytest.approx(10**0.6)
