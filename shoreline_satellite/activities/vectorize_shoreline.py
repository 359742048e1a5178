"""Vectorization and coastal filtering activity.

Converts a cleaned water mask into shoreline line features:

1. Trace polygons around water (8-connected) inside the expanded AOI at
   the run's ground sample distance.
2. Keep each polygon's outer ring as a ``LineString``; holes are dropped.
   Rings with fewer than three vertices are excluded, non-simple rings are
   dropped as invalid geometry (logged and counted, never fatal).
3. Build the coastal corridor ``aoi.buffer(+d) - aoi.buffer(-d)`` and keep
   lines that come within the error margin of it.

``clip_to_aoi`` then produces the final products: the mask restricted to
the unbuffered AOI and the lines intersected with it.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from shapely.geometry import GeometryCollection, LineString, MultiLineString
from shapely.ops import linemerge

from shoreline_satellite.core.constants import COASTAL_ERROR_MARGIN_M, MIN_LINE_VERTICES
from shoreline_satellite.core.exceptions import InvalidGeometryError
from shoreline_satellite.models.shoreline import (
    ShorelineFeature,
    ShorelineFeatureSet,
    ShorelineProducts,
)
from shoreline_satellite.utils.helpers import region_mask

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from shapely.geometry import Polygon
    from shapely.geometry.base import BaseGeometry

    from shoreline_satellite.backends.base import ComputeBackend
    from shoreline_satellite.core.config import RunConfiguration
    from shoreline_satellite.models.aoi import AreaOfInterest
    from shoreline_satellite.models.raster import CleanedMask

logger = logging.getLogger("shoreline_satellite.activities.vectorize_shoreline")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def vectorize(
    mask: CleanedMask,
    aoi: AreaOfInterest,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    keep_all: bool = False,
) -> ShorelineFeatureSet:
    """Trace *mask* into shoreline features near the AOI boundary.

    Args:
        mask: Cleaned binary water mask.
        aoi: Area of interest (its projected polygon drives the corridor).
        config: Supplies GSD, corridor half-width and AOI expansion.
        backend: Compute backend.
        keep_all: Return non-coastal lines too (flagged ``coastal=False``).

    Returns:
        A possibly empty ``ShorelineFeatureSet``.

    Raises:
        ResourceLimitError: If the backend refuses the mask as too large.
    """
    region = await expanded_region(aoi, config, backend)
    polygons = await backend.vectorize(
        mask, region, vectorize_scale(mask, config), eight_connected=True
    )
    return await build_shoreline(polygons, aoi, config, backend, mask=mask, keep_all=keep_all)


def vectorize_scale(mask: CleanedMask, config: RunConfiguration) -> float:
    """Tracing resolution: the run GSD, never finer than a coarsened mask."""
    return max(config.scale, mask.scale)


async def expanded_region(
    aoi: AreaOfInterest, config: RunConfiguration, backend: ComputeBackend
) -> BaseGeometry:
    """The AOI expanded by ``aoi_buffer_m`` metres (projected)."""
    return await backend.geometry_buffer(aoi.projected, config.aoi_buffer_m)


async def coastal_corridor(
    aoi: AreaOfInterest, distance: float, backend: ComputeBackend
) -> BaseGeometry:
    """Band of half-width *distance* metres straddling the AOI boundary."""
    outer = await backend.geometry_buffer(aoi.projected, distance)
    inner = await backend.geometry_buffer(aoi.projected, -distance)
    return await backend.geometry_difference(outer, inner)


def ring_to_line(polygon: Polygon) -> LineString | None:
    """Return the outer ring of *polygon* as a ``LineString``.

    Returns ``None`` for rings with fewer than three vertices.

    Raises:
        InvalidGeometryError: If the ring crosses itself.
    """
    coords = list(polygon.exterior.coords)
    if len(coords) < MIN_LINE_VERTICES:
        return None
    line = LineString(coords)
    if not line.is_simple:
        msg = f"Shoreline ring with {len(coords)} vertices is not simple"
        raise InvalidGeometryError(msg, context={"vertices": len(coords)})
    return line


async def build_shoreline(
    polygons: Sequence[Polygon],
    aoi: AreaOfInterest,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    mask: CleanedMask,
    keep_all: bool = False,
    dropped_tiles: Iterable[int] = (),
) -> ShorelineFeatureSet:
    """Turn traced water polygons into a flagged ``ShorelineFeatureSet``."""
    lines: list[LineString] = []
    short = 0
    invalid = 0
    for polygon in polygons:
        try:
            line = ring_to_line(polygon)
        except InvalidGeometryError as exc:
            invalid += 1
            logger.warning("Dropping invalid shoreline | reason=%s", exc.message)
            continue
        if line is None:
            short += 1
            continue
        lines.append(line)

    corridor = await coastal_corridor(aoi, config.coastal_buffer_distance, backend)
    timestamp = datetime.now(UTC)
    features: list[ShorelineFeature] = []
    for line in lines:
        coastal = await backend.geometry_intersects(line, corridor, COASTAL_ERROR_MARGIN_M)
        if coastal or keep_all:
            features.append(
                ShorelineFeature(
                    geometry=line,
                    coastal=coastal,
                    sensor=mask.sensor,
                    method=mask.method,
                    timestamp=timestamp,
                )
            )

    dropped = tuple(sorted(dropped_tiles))
    result = ShorelineFeatureSet(
        features=tuple(features),
        crs=mask.crs,
        partial=bool(dropped),
        dropped_tiles=dropped,
        dropped_features=invalid,
    )
    logger.info(
        "Shoreline vectorized | polygons=%d | lines=%d | coastal=%d | short=%d | "
        "invalid=%d | partial=%s",
        len(polygons),
        len(lines),
        sum(1 for f in features if f.coastal),
        short,
        invalid,
        result.partial,
    )
    return result


def clip_to_aoi(
    mask: CleanedMask,
    shoreline: ShorelineFeatureSet,
    aoi: AreaOfInterest,
) -> ShorelineProducts:
    """Restrict the products to the unbuffered AOI.

    The mask keeps only pixels whose centre lies inside the AOI.  Each
    coastal line is intersected with the AOI; multi-part results are
    merged where they touch and split into separate features otherwise.
    """
    clipped_data = mask.data & region_mask(mask.shape, mask.transform, aoi.projected)
    clipped_mask = mask.with_data(clipped_data)

    features: list[ShorelineFeature] = []
    for feature in shoreline.coastal_only():
        clipped = feature.geometry.intersection(aoi.projected)
        for part in _line_parts(clipped):
            features.append(
                ShorelineFeature(
                    geometry=part,
                    coastal=True,
                    sensor=feature.sensor,
                    method=feature.method,
                    timestamp=feature.timestamp,
                )
            )

    logger.info(
        "Clipped to AOI | aoi=%s | water_pixels=%d | features_in=%d | features_out=%d",
        aoi.name,
        int(clipped_data.sum()),
        len(shoreline),
        len(features),
    )
    return ShorelineProducts(
        water_mask=clipped_mask,
        shoreline=shoreline.with_features(features),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _line_parts(geometry: BaseGeometry) -> list[LineString]:
    if geometry.is_empty:
        return []
    if isinstance(geometry, LineString):
        return [geometry]
    if isinstance(geometry, MultiLineString):
        merged = linemerge(geometry)
        if isinstance(merged, LineString):
            return [merged]
        return [part for part in merged.geoms if not part.is_empty]
    if isinstance(geometry, GeometryCollection):
        parts: list[LineString] = []
        for part in geometry.geoms:
            parts.extend(_line_parts(part))
        return parts
    # Points where a line only touches the AOI boundary.
    return []
