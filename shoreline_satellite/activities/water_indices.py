"""Per-pixel water index formulas over named reflectance bands.

Every formula is a pure function of a band lookup (``name -> ndarray``)
returning a float array.  Division by zero yields NaN, which later steps
treat as no data.

Sign convention: for every index except ``single_band`` (near-infrared
reflectance) water lies *above* the threshold; for ``single_band`` water
is dark and lies *below* it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

import numpy as np

from shoreline_satellite.core.constants import WaterIndex

BandLookup = Mapping[str, np.ndarray]
IndexFormula = Callable[[BandLookup], np.ndarray]


def normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """``(a - b) / (a + b)``, NaN where the denominator is zero."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denom = a + b
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(denom != 0, (a - b) / denom, np.nan)


def _ratio(num: np.ndarray, denom: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(denom != 0, num / denom, np.nan)


def _single_band(b: BandLookup) -> np.ndarray:
    return np.asarray(b["B8"], dtype=np.float64)


def _ndwi_variant_1(b: BandLookup) -> np.ndarray:
    # Green / NIR (McFeeters)
    return normalized_difference(b["B3"], b["B8"])


def _ndwi_variant_2(b: BandLookup) -> np.ndarray:
    # Green / SWIR1 (modified NDWI)
    return normalized_difference(b["B3"], b["B11"])


def _ndwi_variant_3(b: BandLookup) -> np.ndarray:
    # NIR / SWIR1 (Gao)
    return normalized_difference(b["B8"], b["B11"])


def _awei_variant_1(b: BandLookup) -> np.ndarray:
    # No-shadow form
    return 4.0 * (b["B3"] - b["B11"]) - (0.25 * b["B8"] + 2.75 * b["B12"])


def _awei_variant_2(b: BandLookup) -> np.ndarray:
    # Shadow form
    return b["B2"] + 2.5 * b["B3"] - 1.5 * (b["B8"] + b["B11"]) - 0.25 * b["B12"]


def _multi_band_ratio_1(b: BandLookup) -> np.ndarray:
    return _ratio(b["B2"] + b["B3"] + b["B4"], b["B8"] + b["B11"] + b["B12"])


def _multi_band_ratio_2(b: BandLookup) -> np.ndarray:
    return _ratio(b["B3"] + b["B4"], b["B8"] + b["B11"])


OPTICAL_INDEX_FORMULAS: dict[WaterIndex, IndexFormula] = {
    WaterIndex.SINGLE_BAND: _single_band,
    WaterIndex.NDWI_VARIANT_1: _ndwi_variant_1,
    WaterIndex.NDWI_VARIANT_2: _ndwi_variant_2,
    WaterIndex.NDWI_VARIANT_3: _ndwi_variant_3,
    WaterIndex.AWEI_VARIANT_1: _awei_variant_1,
    WaterIndex.AWEI_VARIANT_2: _awei_variant_2,
    WaterIndex.MULTI_BAND_RATIO_1: _multi_band_ratio_1,
    WaterIndex.MULTI_BAND_RATIO_2: _multi_band_ratio_2,
}

#: Indices where water is *below* the threshold.
WATER_BELOW_THRESHOLD: frozenset[WaterIndex] = frozenset({WaterIndex.SINGLE_BAND})


def compute_optical_index(index: WaterIndex, bands: BandLookup) -> np.ndarray:
    """Evaluate optical water *index* over *bands*.

    Raises:
        KeyError: If a required band is missing from *bands*.
    """
    return OPTICAL_INDEX_FORMULAS[index](bands)


def water_is_below(index: WaterIndex) -> bool:
    return index in WATER_BELOW_THRESHOLD


def landsat_awei(bands: BandLookup) -> np.ndarray:
    """AWEI (no-shadow form) from Landsat surface-reflectance bands.

    Uses green (``SR_B3``), NIR (``SR_B5``), SWIR1 (``SR_B6``) and SWIR2
    (``SR_B7``).
    """
    return 4.0 * (bands["SR_B3"] - bands["SR_B6"]) - (
        0.25 * bands["SR_B5"] + 2.75 * bands["SR_B7"]
    )


def db_to_linear(values: np.ndarray) -> np.ndarray:
    """Convert backscatter in decibels to linear power."""
    return np.power(10.0, np.asarray(values, dtype=np.float64) / 10.0)


def radar_ratio(vv_db: np.ndarray, vh_db: np.ndarray) -> np.ndarray:
    """Linear co-/cross-polarisation ratio ``VV / VH``."""
    return _ratio(db_to_linear(vv_db), db_to_linear(vh_db))
