"""Typed models for the imagery catalog layer.

Defines the data structures exchanged between the orchestrator and the
imagery catalogs:

- ``CompositeRequest``: What to composite (source, buffered AOI, dates,
  quality filter, reducer, target grid)
- ``SceneRecord``: A single scene returned by a catalog search
- ``ProviderConfig``: Configuration for a specific imagery catalog

Design notes:
- All models are frozen dataclasses.
- Explicit units on every numeric field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shoreline_satellite.core.constants import (
    HISTORICAL_BANDS,
    OPTICAL_BANDS,
    RADAR_PRIMARY_BAND,
    RADAR_SECONDARY_BAND,
    CompositeMethod,
    Sensor,
)
from shoreline_satellite.core.exceptions import PipelineError

if TYPE_CHECKING:
    from datetime import date, datetime

    from shapely.geometry.base import BaseGeometry


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, PipelineError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        PipelineError.__init__(self, formatted)


#: Bands a catalog must deliver for each sensor.
SENSOR_BANDS: dict[Sensor, tuple[str, ...]] = {
    Sensor.RADAR: (RADAR_PRIMARY_BAND, RADAR_SECONDARY_BAND),
    Sensor.OPTICAL: OPTICAL_BANDS,
    Sensor.HISTORICAL: HISTORICAL_BANDS,
}


# ---------------------------------------------------------------------------
# Composite request
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CompositeRequest:
    """Criteria for building one temporal composite.

    Attributes:
        sensor: Imagery source family.
        geometry: Buffered AOI in WGS 84; scenes must intersect it and
            the composite covers its bounds.
        crs: Target projected CRS of the composite (e.g. ``"EPSG:32630"``).
        scale_m: Target ground sample distance in metres.
        date_start: Earliest acquisition date (inclusive).
        date_end: Latest acquisition date (inclusive).
        cloud_cover_ceiling: Maximum scene cloud cover (0-100). Ignored
            for radar.
        method: Temporal reducer.
        collection: Catalog-specific collection identifier. Empty selects
            the catalog's default for *sensor*.
    """

    sensor: Sensor
    geometry: BaseGeometry
    crs: str
    scale_m: float
    date_start: date | None = None
    date_end: date | None = None
    cloud_cover_ceiling: float = 5.0
    method: CompositeMethod = CompositeMethod.MEDIAN
    collection: str = ""

    def __post_init__(self) -> None:
        if self.geometry is None or self.geometry.is_empty:
            raise ModelValidationError(
                "CompositeRequest", "geometry", self.geometry, "must not be empty"
            )
        _check_non_empty("CompositeRequest", "crs", self.crs)
        _check_min("CompositeRequest", "scale_m", self.scale_m, 0)
        _check_range(
            "CompositeRequest", "cloud_cover_ceiling", self.cloud_cover_ceiling, 0, 100
        )
        if (
            self.date_start is not None
            and self.date_end is not None
            and self.date_start > self.date_end
        ):
            raise ModelValidationError(
                "CompositeRequest",
                "date_start",
                self.date_start,
                f"must be <= date_end ({self.date_end})",
            )

    @property
    def bands(self) -> tuple[str, ...]:
        """Band names the composite must contain."""
        return SENSOR_BANDS[self.sensor]

    @property
    def datetime_range(self) -> str:
        """STAC ``datetime`` interval string (open ends as ``..``)."""
        start = self.date_start.isoformat() if self.date_start else ".."
        end = self.date_end.isoformat() if self.date_end else ".."
        return f"{start}/{end}"


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SceneRecord:
    """A single scene returned by a catalog search.

    Attributes:
        scene_id: Catalog-specific unique identifier for the scene.
        provider: Name of the imagery catalog.
        acquisition_date: Date/time the scene was captured.
        cloud_cover_pct: Cloud cover percentage (0-100, 0 for radar).
        crs: Native CRS of the scene assets.
        assets: Band name to asset href.
        extra: Catalog-specific metadata (collection, processing baseline).
    """

    scene_id: str
    provider: str
    acquisition_date: datetime | None = None
    cloud_cover_pct: float = 0.0
    crs: str = ""
    assets: dict[str, str] = field(default_factory=dict)
    extra: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("SceneRecord", "scene_id", self.scene_id)
        _check_non_empty("SceneRecord", "provider", self.provider)
        _check_range("SceneRecord", "cloud_cover_pct", self.cloud_cover_pct, 0, 100)


# ---------------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Configuration for a specific imagery catalog.

    Attributes:
        name: Catalog identifier (must match the adapter registry key).
        api_base_url: Base URL (STAC API) or root directory (local files).
        extra_params: Catalog-specific configuration parameters.
    """

    name: str
    api_base_url: str = ""
    extra_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("ProviderConfig", "name", self.name)


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _check_range(model: str, field_name: str, value: float, lo: float, hi: float) -> None:
    """Raise `ModelValidationError` if *value* falls outside [lo, hi]."""
    if value < lo or value > hi:
        raise ModelValidationError(model, field_name, value, f"must be between {lo} and {hi}")


def _check_min(model: str, field_name: str, value: float | int, lo: float | int) -> None:
    """Raise `ModelValidationError` if *value* is not above *lo*."""
    if value <= lo:
        raise ModelValidationError(model, field_name, value, f"must be > {lo}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or blank."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")
