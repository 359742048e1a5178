"""Shared pipeline constants.

Centralises sensor band names, native ground sample distances, histogram
limits, and retry defaults that would otherwise be duplicated across the
classifiers, the backend, and the orchestrator.
"""

from __future__ import annotations

import enum

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Sensor(enum.Enum):
    """Imagery source family.

    Values:
        RADAR:      C-band SAR backscatter (VV / VH, stored in dB).
        OPTICAL:    10 m multispectral surface reflectance.
        HISTORICAL: 30 m multispectral surface reflectance (15 m pan-sharpened).
    """

    RADAR = "radar"
    OPTICAL = "optical"
    HISTORICAL = "historical"


class CompositeMethod(enum.Enum):
    """Temporal reducer used to combine scenes into one composite."""

    MEAN = "mean"
    MEDIAN = "median"


class WaterIndex(enum.Enum):
    """Optical water index formulas selectable by name."""

    SINGLE_BAND = "single_band"
    NDWI_VARIANT_1 = "ndwi_variant_1"
    NDWI_VARIANT_2 = "ndwi_variant_2"
    NDWI_VARIANT_3 = "ndwi_variant_3"
    AWEI_VARIANT_1 = "awei_variant_1"
    AWEI_VARIANT_2 = "awei_variant_2"
    MULTI_BAND_RATIO_1 = "multi_band_ratio_1"
    MULTI_BAND_RATIO_2 = "multi_band_ratio_2"


# ---------------------------------------------------------------------------
# Ground sample distance (metres)
# ---------------------------------------------------------------------------

NATIVE_SCALE_M: dict[Sensor, float] = {
    Sensor.RADAR: 10.0,
    Sensor.OPTICAL: 10.0,
    # Pan-sharpened resolution of the historical sensor.
    Sensor.HISTORICAL: 15.0,
}

# ---------------------------------------------------------------------------
# Band names
# ---------------------------------------------------------------------------

RADAR_PRIMARY_BAND = "VV"
RADAR_SECONDARY_BAND = "VH"
RADAR_RATIO_BAND = "ratio"

OPTICAL_BANDS: tuple[str, ...] = ("B2", "B3", "B4", "B8", "B11", "B12")
HISTORICAL_BANDS: tuple[str, ...] = ("SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B6", "SR_B7")

WATER_BAND = "water"
WATER_INDEX_BAND = "water_index"

# ---------------------------------------------------------------------------
# Histogram reducer limits
# ---------------------------------------------------------------------------

HISTOGRAM_MAX_BUCKETS = 256
HISTOGRAM_MIN_BUCKET_WIDTH = 0.001

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

#: Tolerance (metres) for line / corridor intersection tests.
COASTAL_ERROR_MARGIN_M = 0.5

#: A line needs at least this many vertices to be considered.
MIN_LINE_VERTICES = 3

# ---------------------------------------------------------------------------
# Backend / retry defaults
# ---------------------------------------------------------------------------

DEFAULT_BACKEND_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_PIXELS = 100_000_000
DEFAULT_BACKEND_WORKERS = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SECONDS = 5.0
DEFAULT_MAX_COARSEN_STEPS = 2
DEFAULT_TILE_ROWS = 512
DEFAULT_TILE_BATCH_SIZE = 4
