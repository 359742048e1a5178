"""Shoreline line features and feature sets.

A ``ShorelineFeature`` is one simple polyline traced from the outer ring
of a water polygon.  A ``ShorelineFeatureSet`` is the ordered, immutable
result of a run; only ``coastal=True`` features survive into the final
product.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from shapely.geometry import LineString, mapping

from shoreline_satellite.models.imagery import ModelValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from datetime import datetime

    from shoreline_satellite.core.constants import Sensor
    from shoreline_satellite.models.raster import CleanedMask


@dataclass(frozen=True, slots=True)
class ShorelineFeature:
    """A single shoreline polyline in projected coordinates.

    Attributes:
        geometry: Simple ``LineString`` (metres, in the set's CRS).
        coastal: Whether the line intersects the coastal corridor.
        sensor: Source family.
        method: Classification method name.
        timestamp: When the feature was produced (UTC).
    """

    geometry: LineString
    coastal: bool
    sensor: Sensor
    method: str
    timestamp: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.geometry, LineString):
            raise ModelValidationError(
                "ShorelineFeature",
                "geometry",
                type(self.geometry).__name__,
                "must be a LineString",
            )

    @property
    def length_m(self) -> float:
        return float(self.geometry.length)

    def properties(self) -> dict[str, Any]:
        """Flat attribute mapping used for export."""
        return {
            "coastal": self.coastal,
            "sensor": self.sensor.value,
            "method": self.method,
            "timestamp": self.timestamp.isoformat(),
            "length_m": round(self.length_m, 3),
        }

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry),
            "properties": self.properties(),
        }


@dataclass(frozen=True, slots=True)
class ShorelineFeatureSet:
    """Ordered, immutable collection of shoreline features.

    Attributes:
        features: The line features, in production order.
        crs: Projected CRS of every geometry.
        partial: ``True`` if one or more vectorization tiles were dropped.
        dropped_tiles: Indices of tiles that failed and were left out.
        dropped_features: Count of features rejected as invalid geometry.
    """

    features: tuple[ShorelineFeature, ...] = ()
    crs: str = ""
    partial: bool = False
    dropped_tiles: tuple[int, ...] = ()
    dropped_features: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "dropped_tiles", tuple(self.dropped_tiles))
        if self.dropped_tiles and not self.partial:
            raise ModelValidationError(
                "ShorelineFeatureSet",
                "partial",
                self.partial,
                "must be True when tiles were dropped",
            )

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[ShorelineFeature]:
        return iter(self.features)

    @property
    def is_empty(self) -> bool:
        return not self.features

    @property
    def total_length_m(self) -> float:
        return float(sum(f.length_m for f in self.features))

    def coastal_only(self) -> ShorelineFeatureSet:
        """Return a set holding only ``coastal=True`` features."""
        return self.with_features(f for f in self.features if f.coastal)

    def with_features(self, features: Iterable[ShorelineFeature]) -> ShorelineFeatureSet:
        return replace(self, features=tuple(features))

    def to_geojson(self) -> dict[str, Any]:
        """Return a GeoJSON ``FeatureCollection`` (projected coordinates)."""
        return {
            "type": "FeatureCollection",
            "features": [f.to_geojson() for f in self.features],
            "crs": self.crs,
            "partial": self.partial,
            "dropped_tiles": list(self.dropped_tiles),
        }


@dataclass(frozen=True, slots=True)
class ShorelineProducts:
    """Final products of a successful run.

    Attributes:
        water_mask: Cleaned water mask clipped to the unbuffered AOI.
        shoreline: Coastal features intersected with the AOI.
    """

    water_mask: CleanedMask
    shoreline: ShorelineFeatureSet
