"""Raster models: composites, histograms and binary water masks.

All rasters share one georeferencing convention: a 2-D array in row-major
order plus a rasterio ``Affine`` transform from pixel to projected
coordinates (metres) and the CRS string.  Arrays are copied on
construction and frozen, so a raster cannot change after it is handed
to a step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import numpy as np

from shoreline_satellite.core.exceptions import ContractError
from shoreline_satellite.models.imagery import ModelValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from affine import Affine

    from shoreline_satellite.core.constants import CompositeMethod, Sensor


def _frozen(array: np.ndarray, dtype: type) -> np.ndarray:
    out = np.array(array, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


def pixel_size(transform: Affine) -> float:
    """Ground sample distance of a north-up *transform* in metres."""
    return float(abs(transform.a))


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CompositeRaster:
    """A multi-band temporal composite over the buffered AOI.

    Attributes:
        bands: Band name to 2-D float array (NaN where no data).
        valid: Boolean footprint; ``True`` where every band has data.
        transform: Pixel-to-projected affine transform.
        crs: Projected CRS string.
        sensor: Source family the bands came from.
        scene_count: Number of scenes that went into the composite.
            Zero means no imagery qualified.
        method: Temporal reducer used.
        scene_ids: Identifiers of contributing scenes.
    """

    bands: Mapping[str, np.ndarray]
    valid: np.ndarray
    transform: Affine
    crs: str
    sensor: Sensor
    scene_count: int
    method: CompositeMethod | None = None
    scene_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.scene_count < 0:
            raise ModelValidationError(
                "CompositeRaster", "scene_count", self.scene_count, "must be >= 0"
            )
        valid = _frozen(self.valid, bool)
        if valid.ndim != 2:
            raise ModelValidationError(
                "CompositeRaster", "valid", valid.shape, "must be a 2-D array"
            )
        frozen_bands: dict[str, np.ndarray] = {}
        for name, band in self.bands.items():
            arr = _frozen(band, np.float64)
            if arr.shape != valid.shape:
                raise ModelValidationError(
                    "CompositeRaster",
                    f"bands[{name}]",
                    arr.shape,
                    f"must match footprint shape {valid.shape}",
                )
            frozen_bands[name] = arr
        object.__setattr__(self, "valid", valid)
        object.__setattr__(self, "bands", MappingProxyType(frozen_bands))

    @property
    def shape(self) -> tuple[int, int]:
        return self.valid.shape  # type: ignore[return-value]

    @property
    def scale(self) -> float:
        """Pixel size in metres."""
        return pixel_size(self.transform)

    @property
    def is_empty(self) -> bool:
        """``True`` when no scene qualified for the composite."""
        return self.scene_count == 0

    def band(self, name: str) -> np.ndarray:
        """Return band *name*.

        Raises:
            ContractError: If the composite lacks the band.
        """
        try:
            return self.bands[name]
        except KeyError:
            msg = f"Composite has no band {name!r} (available: {', '.join(self.bands)})"
            raise ContractError(msg, stage="classifying", code="MISSING_BAND") from None

    def with_band(self, name: str, values: np.ndarray) -> CompositeRaster:
        """Return a copy with *name* added (or replaced)."""
        bands = dict(self.bands)
        bands[name] = values
        return CompositeRaster(
            bands=bands,
            valid=self.valid,
            transform=self.transform,
            crs=self.crs,
            sensor=self.sensor,
            scene_count=self.scene_count,
            method=self.method,
            scene_ids=self.scene_ids,
        )


# ---------------------------------------------------------------------------
# Histogram
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Histogram:
    """Bucketed value distribution, ordered by value.

    Attributes:
        means: Mean value of each bucket.
        counts: Pixel count (or weight) of each bucket, non-negative.
    """

    means: tuple[float, ...] = ()
    counts: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        means = tuple(float(m) for m in self.means)
        counts = tuple(float(c) for c in self.counts)
        if len(means) != len(counts):
            raise ModelValidationError(
                "Histogram",
                "counts",
                len(counts),
                f"must have one count per bucket mean ({len(means)})",
            )
        if any(c < 0 for c in counts):
            raise ModelValidationError("Histogram", "counts", counts, "must be non-negative")
        if any(b < a for a, b in zip(means, means[1:])):
            raise ModelValidationError("Histogram", "means", means, "must be ordered by value")
        object.__setattr__(self, "means", means)
        object.__setattr__(self, "counts", counts)

    def __len__(self) -> int:
        return len(self.means)

    @property
    def total(self) -> float:
        return float(sum(self.counts))


# ---------------------------------------------------------------------------
# Water masks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WaterMask:
    """Binary water raster.  ``True`` is water; everything else is masked out.

    Attributes:
        data: 2-D boolean array.
        transform: Pixel-to-projected affine transform.
        crs: Projected CRS string.
        sensor: Source family.
        method: Name of the classification method (e.g. ``"radar_vote"``).
        threshold: Threshold applied, when a single one was used.
        thresholds: Per-indicator thresholds (radar voting).
    """

    data: np.ndarray
    transform: Affine
    crs: str
    sensor: Sensor
    method: str
    threshold: float | None = None
    thresholds: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        data = _frozen(self.data, bool)
        if data.ndim != 2:
            raise ModelValidationError("WaterMask", "data", data.shape, "must be a 2-D array")
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "thresholds", MappingProxyType(dict(self.thresholds)))

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape  # type: ignore[return-value]

    @property
    def scale(self) -> float:
        """Pixel size in metres."""
        return pixel_size(self.transform)

    @property
    def water_pixels(self) -> int:
        return int(self.data.sum())

    @property
    def has_water(self) -> bool:
        return bool(self.data.any())


@dataclass(frozen=True, slots=True)
class CleanedMask(WaterMask):
    """A water mask after small-object removal and morphological smoothing.

    Attributes:
        coarsen_factor: Cumulative resolution reduction applied before
            cleanup succeeded (1 means native resolution).
    """

    coarsen_factor: int = 1

    def with_data(self, data: np.ndarray) -> CleanedMask:
        """Return a copy carrying *data* on the same grid."""
        return CleanedMask(
            data=data,
            transform=self.transform,
            crs=self.crs,
            sensor=self.sensor,
            method=self.method,
            threshold=self.threshold,
            thresholds=self.thresholds,
            coarsen_factor=self.coarsen_factor,
        )
