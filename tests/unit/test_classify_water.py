"""Tests for the water classification strategies.

Covers:
- Radar voting recovers a distinct low-backscatter block exactly
- Raising the vote requirement never adds water
- Optical index with a custom threshold and with Otsu
- Landsat AWEI over the composite footprint
- Invalid pixels are never water
- Degenerate histograms raise NoValidHistogramError
"""

from __future__ import annotations

import numpy as np
import pytest

from shoreline_satellite.activities.classify_water import (
    LandsatAWEIClassifier,
    OpticalIndexClassifier,
    RadarVotingClassifier,
    get_classifier,
)
from shoreline_satellite.core.config import RunConfiguration
from shoreline_satellite.core.constants import Sensor, WaterIndex
from shoreline_satellite.core.exceptions import ContractError, NoValidHistogramError
from tests.conftest import block_water, make_aoi, make_radar_raster, make_raster

RADAR = RunConfiguration(sensor=Sensor.RADAR)
OPTICAL = RunConfiguration(sensor=Sensor.OPTICAL, water_index=WaterIndex.NDWI_VARIANT_2)
HISTORICAL = RunConfiguration(sensor=Sensor.HISTORICAL)


def _whole_grid():
    return make_aoi(0, 100, 0, 100, name="whole grid")


def _ndwi_raster(water: np.ndarray, **kwargs):
    # ND(B3, B11): 0.3 over water, -0.2 over land
    b3 = np.where(water, 0.13, 0.04)
    b11 = np.where(water, 0.07, 0.06)
    return make_raster({"B3": b3, "B11": b11}, sensor=Sensor.OPTICAL, **kwargs)


def _landsat_raster(water: np.ndarray):
    bands = {
        "SR_B3": np.where(water, 0.10, 0.08),
        "SR_B5": np.where(water, 0.02, 0.35),
        "SR_B6": np.where(water, 0.01, 0.25),
        "SR_B7": np.where(water, 0.005, 0.15),
    }
    return make_raster(bands, sensor=Sensor.HISTORICAL)


class TestGetClassifier:
    def test_per_sensor(self) -> None:
        assert isinstance(get_classifier(Sensor.RADAR), RadarVotingClassifier)
        assert isinstance(get_classifier("optical"), OpticalIndexClassifier)
        assert isinstance(get_classifier("historical"), LandsatAWEIClassifier)

    def test_unknown_sensor(self) -> None:
        with pytest.raises(ValueError):
            get_classifier("thermal")


class TestRadarVoting:
    """Multi-indicator voting over VV, VH and their ratio."""

    @pytest.mark.asyncio()
    async def test_recovers_water_block(self, backend, radar_block_raster) -> None:
        mask = await RadarVotingClassifier().classify(
            radar_block_raster, _whole_grid(), RADAR, backend
        )
        assert np.array_equal(mask.data, block_water())
        assert mask.method == "radar_vote"
        assert set(mask.thresholds) == {"VV", "VH", "ratio"}

    @pytest.mark.asyncio()
    async def test_thresholds_between_classes(self, backend, radar_block_raster) -> None:
        mask = await RadarVotingClassifier().classify(
            radar_block_raster, _whole_grid(), RADAR, backend
        )
        assert -20.0 < mask.thresholds["VV"] < -8.0
        assert -28.0 < mask.thresholds["VH"] < -14.0
        assert 10**0.6 < mask.thresholds["ratio"] < 10**0.8

    @pytest.mark.asyncio()
    async def test_every_vote_requirement_agrees_on_clean_data(
        self, backend, radar_block_raster
    ) -> None:
        for votes in (1, 2, 3):
            config = RADAR.with_changes(sar_vote_threshold=votes)
            mask = await RadarVotingClassifier().classify(
                radar_block_raster, _whole_grid(), config, backend
            )
            assert mask.water_pixels == 400

    @pytest.mark.asyncio()
    async def test_more_votes_never_add_water(self, backend) -> None:
        rng = np.random.default_rng(11)
        vv = rng.normal(-14.0, 4.0, (100, 100))
        vh = rng.normal(-21.0, 5.0, (100, 100))
        raster = make_raster({"VV": vv, "VH": vh}, sensor=Sensor.RADAR)

        masks = []
        for votes in (1, 2, 3):
            config = RADAR.with_changes(sar_vote_threshold=votes)
            mask = await RadarVotingClassifier().classify(raster, _whole_grid(), config, backend)
            masks.append(mask.data)

        assert not (masks[1] & ~masks[0]).any()
        assert not (masks[2] & ~masks[1]).any()
        assert masks[0].sum() >= masks[1].sum() >= masks[2].sum()

    @pytest.mark.asyncio()
    async def test_invalid_pixels_never_water(self, backend) -> None:
        water = block_water()
        valid = np.ones_like(water)
        valid[40:45, :] = False
        raster = make_radar_raster(water)
        raster = make_raster(dict(raster.bands), sensor=Sensor.RADAR, valid=valid)

        mask = await RadarVotingClassifier().classify(raster, _whole_grid(), RADAR, backend)
        assert not mask.data[40:45, :].any()
        assert mask.water_pixels == 300

    @pytest.mark.asyncio()
    async def test_uniform_aoi_has_no_histogram(self, backend, radar_block_raster, land_aoi) -> None:
        with pytest.raises(NoValidHistogramError) as exc_info:
            await RadarVotingClassifier().classify(radar_block_raster, land_aoi, RADAR, backend)
        assert exc_info.value.stage == "classifying"
        assert exc_info.value.context["sensor"] == "radar"

    @pytest.mark.asyncio()
    async def test_sensor_mismatch(self, backend) -> None:
        raster = _ndwi_raster(block_water())
        with pytest.raises(ContractError) as exc_info:
            await RadarVotingClassifier().classify(raster, _whole_grid(), RADAR, backend)
        assert exc_info.value.code == "SENSOR_MISMATCH"


class TestOpticalIndex:
    """Named water index with a manual or Otsu threshold."""

    @pytest.mark.asyncio()
    async def test_custom_threshold(self, backend) -> None:
        config = OPTICAL.with_changes(use_custom_threshold=True, water_threshold=0.1)
        mask = await OpticalIndexClassifier().classify(
            _ndwi_raster(block_water()), _whole_grid(), config, backend
        )
        assert np.array_equal(mask.data, block_water())
        assert mask.threshold == 0.1
        assert mask.method == "optical_ndwi_variant_2"

    @pytest.mark.asyncio()
    async def test_custom_threshold_above_all_values(self, backend) -> None:
        config = OPTICAL.with_changes(use_custom_threshold=True, water_threshold=0.5)
        mask = await OpticalIndexClassifier().classify(
            _ndwi_raster(block_water()), _whole_grid(), config, backend
        )
        assert not mask.has_water

    @pytest.mark.asyncio()
    async def test_otsu_threshold(self, backend) -> None:
        mask = await OpticalIndexClassifier().classify(
            _ndwi_raster(block_water()), _whole_grid(), OPTICAL, backend
        )
        assert np.array_equal(mask.data, block_water())
        assert -0.2 < mask.threshold < 0.3

    @pytest.mark.asyncio()
    async def test_custom_threshold_skips_histogram(self, backend, land_aoi) -> None:
        # The land-only AOI has a degenerate histogram; a manual threshold never needs one.
        config = OPTICAL.with_changes(use_custom_threshold=True, water_threshold=0.1)
        mask = await OpticalIndexClassifier().classify(
            _ndwi_raster(block_water()), land_aoi, config, backend
        )
        assert mask.water_pixels == 400

    @pytest.mark.asyncio()
    async def test_missing_band(self, backend) -> None:
        raster = make_raster({"B3": np.zeros((100, 100))}, sensor=Sensor.OPTICAL)
        with pytest.raises(ContractError) as exc_info:
            await OpticalIndexClassifier().classify(raster, _whole_grid(), OPTICAL, backend)
        assert exc_info.value.code == "MISSING_BAND"


class TestLandsatAWEI:
    @pytest.mark.asyncio()
    async def test_recovers_water_block(self, backend) -> None:
        mask = await LandsatAWEIClassifier().classify(
            _landsat_raster(block_water()), _whole_grid(), HISTORICAL, backend
        )
        assert np.array_equal(mask.data, block_water())
        assert mask.method == "landsat_awei"

    @pytest.mark.asyncio()
    async def test_uses_whole_footprint(self, backend, land_aoi) -> None:
        # The AOI sees only land; the footprint histogram still splits.
        mask = await LandsatAWEIClassifier().classify(
            _landsat_raster(block_water()), land_aoi, HISTORICAL, backend
        )
        assert mask.water_pixels == 400

    @pytest.mark.asyncio()
    async def test_constant_raster(self, backend) -> None:
        raster = _landsat_raster(np.zeros((100, 100), dtype=bool))
        with pytest.raises(NoValidHistogramError):
            await LandsatAWEIClassifier().classify(raster, _whole_grid(), HISTORICAL, backend)
