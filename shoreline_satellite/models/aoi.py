"""Data model for a prepared Area of Interest (AOI).

An AOI carries the same polygon twice: in WGS 84 (for catalog searches
and exported metadata) and in a local UTM projection (for every metric
operation: buffers, corridors, rasterization).  It is the output of the
``prepare_aoi`` activity and the input to every later step.
"""

from __future__ import annotations

from dataclasses import dataclass

from shapely.geometry import MultiPolygon, Polygon, mapping

from shoreline_satellite.core.exceptions import ValidationError


class AOIError(ValidationError):
    """Raised when an AOI is empty, invalid, or cannot be prepared."""

    default_stage = "prepare_aoi"
    default_code = "INVALID_AOI"


@dataclass(frozen=True, slots=True)
class AreaOfInterest:
    """A validated polygonal Area of Interest.

    Attributes:
        name: Human-readable name (used for product naming).
        geometry: Polygon in WGS 84 (EPSG:4326), ``(lon, lat)`` order.
        projected: The same polygon in ``crs`` (metres).
        crs: Projected CRS string, e.g. ``"EPSG:32630"``.
        source_file: File the AOI was loaded from, if any.
    """

    name: str
    geometry: Polygon | MultiPolygon
    projected: Polygon | MultiPolygon
    crs: str
    source_file: str = ""

    def __post_init__(self) -> None:
        for label, geom in (("geometry", self.geometry), ("projected", self.projected)):
            if not isinstance(geom, Polygon | MultiPolygon):
                msg = f"AOI {label} must be a Polygon or MultiPolygon, got {type(geom).__name__}"
                raise AOIError(msg, context={"aoi": self.name})
            if geom.is_empty:
                msg = f"AOI {label} is empty"
                raise AOIError(msg, context={"aoi": self.name})
            if not geom.is_valid:
                msg = f"AOI {label} is not a valid polygon (self-intersecting?)"
                raise AOIError(msg, context={"aoi": self.name})
        if not self.crs:
            raise AOIError("AOI projected CRS must not be empty", context={"aoi": self.name})

    @property
    def area_m2(self) -> float:
        return float(self.projected.area)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """WGS 84 bounds ``(min_lon, min_lat, max_lon, max_lat)``."""
        return tuple(self.geometry.bounds)  # type: ignore[return-value]

    @property
    def projected_bounds(self) -> tuple[float, float, float, float]:
        return tuple(self.projected.bounds)  # type: ignore[return-value]

    def to_dict(self) -> dict[str, object]:
        """Serialise to a GeoJSON-flavoured dict (WGS 84 geometry)."""
        return {
            "name": self.name,
            "crs": self.crs,
            "source_file": self.source_file,
            "area_m2": self.area_m2,
            "bounds": list(self.bounds),
            "geometry": mapping(self.geometry),
        }
