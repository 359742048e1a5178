"""Run configuration for one shoreline extraction.

``RunConfiguration`` is an immutable record threaded through every step
of a run.  It replaces any notion of process-wide mutable state: callers
build a configuration, hand it to the orchestrator, and derive a new one
(``with_changes``) between runs.

Fail-fast validation:
    Construction raises ``ConfigValidationError`` if any value is out of
    its valid range, so a bad configuration never reaches a classifier.
    ``from_env()`` applies the same validation to environment-sourced
    values.
"""

from __future__ import annotations

import dataclasses
import enum
import os
from dataclasses import dataclass
from datetime import date

from shoreline_satellite.core.constants import (
    NATIVE_SCALE_M,
    CompositeMethod,
    Sensor,
    WaterIndex,
)
from shoreline_satellite.core.exceptions import ValidationError

ENV_PREFIX = "SHORELINE_"

VOTE_THRESHOLDS = (1, 2, 3)
MIN_WATER_BODY_PIXELS = (5, 100)
SMOOTHING_KERNEL_RADIUS = (1, 5)
SMOOTHING_ITERATIONS = (1, 5)
WATER_THRESHOLD_RANGE = (-1.0, 1.0)
CLOUD_COVER_RANGE = (0.0, 100.0)


class ConfigValidationError(ValidationError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class RunConfiguration:
    """Immutable configuration for a single shoreline extraction run.

    Attributes:
        sensor: Imagery source (``radar``, ``optical`` or ``historical``).
        date_start: Earliest acquisition date (inclusive), ``None`` for open.
        date_end: Latest acquisition date (inclusive), ``None`` for open.
        cloud_cover_ceiling: Maximum scene cloud cover percentage (0-100).
        composite_method: Temporal reducer (``mean`` or ``median``).
        water_index: Optical water index formula (optical sensor only).
        sar_vote_threshold: Indicators that must agree for radar water (1-3).
        min_water_body_pixels: Smallest connected water body kept (5-100 px).
        smoothing_kernel_radius: Circular kernel radius in pixels (1-5).
        smoothing_iterations: Repeats of each morphological filter (1-5).
        coastal_buffer_distance: Half-width of the coastal corridor in metres.
        use_custom_threshold: Compare the index to ``water_threshold``
            instead of estimating an Otsu threshold.
        water_threshold: Manual index threshold (-1 to 1).
        aoi_buffer_m: Expansion of the AOI used for compositing and
            vectorization, in metres.
        scale_m: Ground sample distance override in metres. ``None`` uses
            the sensor's native resolution; never coarser than native.
    """

    sensor: Sensor = Sensor.OPTICAL
    date_start: date | None = None
    date_end: date | None = None
    cloud_cover_ceiling: float = 5.0
    composite_method: CompositeMethod = CompositeMethod.MEDIAN
    water_index: WaterIndex = WaterIndex.NDWI_VARIANT_2
    sar_vote_threshold: int = 2
    min_water_body_pixels: int = 10
    smoothing_kernel_radius: int = 2
    smoothing_iterations: int = 2
    coastal_buffer_distance: float = 1.0
    use_custom_threshold: bool = False
    water_threshold: float = 0.0
    aoi_buffer_m: float = 500.0
    scale_m: float | None = None

    def __post_init__(self) -> None:
        _coerce_enums(self)
        _validate(self)

    @property
    def scale(self) -> float:
        """Effective ground sample distance in metres."""
        if self.scale_m is not None:
            return float(self.scale_m)
        return NATIVE_SCALE_M[self.sensor]

    def with_changes(self, **changes: object) -> RunConfiguration:
        """Return a new, re-validated configuration with *changes* applied."""
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        """Serialise to plain values (enums by value, dates ISO 8601)."""
        return {
            "sensor": self.sensor.value,
            "date_start": self.date_start.isoformat() if self.date_start else None,
            "date_end": self.date_end.isoformat() if self.date_end else None,
            "cloud_cover_ceiling": self.cloud_cover_ceiling,
            "composite_method": self.composite_method.value,
            "water_index": self.water_index.value,
            "sar_vote_threshold": self.sar_vote_threshold,
            "min_water_body_pixels": self.min_water_body_pixels,
            "smoothing_kernel_radius": self.smoothing_kernel_radius,
            "smoothing_iterations": self.smoothing_iterations,
            "coastal_buffer_distance": self.coastal_buffer_distance,
            "use_custom_threshold": self.use_custom_threshold,
            "water_threshold": self.water_threshold,
            "aoi_buffer_m": self.aoi_buffer_m,
            "scale_m": self.scale_m,
        }

    @classmethod
    def from_env(cls) -> RunConfiguration:
        """Load and validate configuration from ``SHORELINE_*`` variables.

        Missing variables fall back to the dataclass defaults.

        Raises:
            ConfigValidationError: If a value is out of range or not
                parseable.
        """
        kwargs: dict[str, object] = {}
        for field in dataclasses.fields(cls):
            raw = os.getenv(f"{ENV_PREFIX}{field.name.upper()}")
            if raw is None or raw == "":
                continue
            kwargs[field.name] = _parse_env_value(field.name, raw)
        return cls(**kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Coercion and validation (module-private)
# ---------------------------------------------------------------------------

_ENUM_FIELDS: dict[str, type[enum.Enum]] = {
    "sensor": Sensor,
    "composite_method": CompositeMethod,
    "water_index": WaterIndex,
}


def _coerce_enums(config: RunConfiguration) -> None:
    """Accept enum values given as their string form."""
    for name, enum_cls in _ENUM_FIELDS.items():
        value = getattr(config, name)
        if isinstance(value, enum_cls):
            continue
        try:
            object.__setattr__(config, name, enum_cls(value))
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ConfigValidationError(
                name.upper(), value, f"must be one of: {allowed}"
            ) from None

    for name in ("date_start", "date_end"):
        value = getattr(config, name)
        if isinstance(value, str):
            try:
                object.__setattr__(config, name, date.fromisoformat(value))
            except ValueError:
                raise ConfigValidationError(
                    name.upper(), value, "must be an ISO 8601 date (YYYY-MM-DD)"
                ) from None


def _validate(config: RunConfiguration) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if config.date_start and config.date_end and config.date_start > config.date_end:
        raise ConfigValidationError(
            "DATE_START",
            config.date_start,
            f"must be <= DATE_END ({config.date_end})",
        )

    _check_range("CLOUD_COVER_CEILING", config.cloud_cover_ceiling, *CLOUD_COVER_RANGE)

    vote = config.sar_vote_threshold
    if isinstance(vote, bool) or vote not in VOTE_THRESHOLDS:
        raise ConfigValidationError(
            "SAR_VOTE_THRESHOLD",
            vote,
            "must be 1, 2 or 3 (indicators that must agree)",
        )

    _check_int_range("MIN_WATER_BODY_PIXELS", config.min_water_body_pixels, *MIN_WATER_BODY_PIXELS)
    _check_int_range(
        "SMOOTHING_KERNEL_RADIUS", config.smoothing_kernel_radius, *SMOOTHING_KERNEL_RADIUS
    )
    _check_int_range("SMOOTHING_ITERATIONS", config.smoothing_iterations, *SMOOTHING_ITERATIONS)

    if config.coastal_buffer_distance <= 0:
        raise ConfigValidationError(
            "COASTAL_BUFFER_DISTANCE",
            config.coastal_buffer_distance,
            "must be > 0 (metres)",
        )

    _check_range("WATER_THRESHOLD", config.water_threshold, *WATER_THRESHOLD_RANGE)

    if config.aoi_buffer_m <= 0:
        raise ConfigValidationError("AOI_BUFFER_M", config.aoi_buffer_m, "must be > 0 (metres)")

    if config.scale_m is not None:
        native = NATIVE_SCALE_M[config.sensor]
        if config.scale_m <= 0:
            raise ConfigValidationError("SCALE_M", config.scale_m, "must be > 0 (metres)")
        if config.scale_m > native:
            raise ConfigValidationError(
                "SCALE_M",
                config.scale_m,
                f"must not be coarser than the {config.sensor.value} native "
                f"resolution ({native} m)",
            )


def _check_range(key: str, value: float, lo: float, hi: float) -> None:
    if not lo <= value <= hi:
        raise ConfigValidationError(key, value, f"must be between {lo} and {hi}")


def _check_int_range(key: str, value: int, lo: int, hi: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(key, value, "must be an integer")
    _check_range(key, value, lo, hi)


def _parse_env_value(name: str, raw: str) -> object:
    """Coerce a raw environment string to the field's type."""
    if name in _ENUM_FIELDS or name in ("date_start", "date_end"):
        return raw.strip()
    if name == "use_custom_threshold":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    try:
        if name in (
            "sar_vote_threshold",
            "min_water_body_pixels",
            "smoothing_kernel_radius",
            "smoothing_iterations",
        ):
            return int(raw)
        return float(raw)
    except ValueError:
        raise ConfigValidationError(name.upper(), raw, "must be numeric") from None
