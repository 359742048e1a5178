"""In-process compute backend built on numpy, scipy, scikit-image and rasterio.

CPU-bound work runs on a bounded thread pool under a timeout, so the
event loop stays responsive and a stuck evaluation surfaces as
``BackendUnavailableError`` rather than a hang.  Threads cannot be
interrupted: a timed-out evaluation holds its worker until it returns,
and the pool size caps how many can pile up across retries.  Requests
above ``max_pixels`` are refused with ``ResourceLimitError`` before any
work starts.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np
from rasterio import features as rio_features
from rasterio.transform import Affine
from scipy import ndimage
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.validation import make_valid
from skimage.measure import block_reduce
from skimage.morphology import disk

from shoreline_satellite.backends.base import ComputeBackend, FocalOp
from shoreline_satellite.core.constants import (
    DEFAULT_BACKEND_TIMEOUT_SECONDS,
    DEFAULT_BACKEND_WORKERS,
    DEFAULT_MAX_PIXELS,
    HISTOGRAM_MAX_BUCKETS,
    HISTOGRAM_MIN_BUCKET_WIDTH,
)
from shoreline_satellite.core.exceptions import BackendUnavailableError, ResourceLimitError
from shoreline_satellite.models.raster import Histogram
from shoreline_satellite.utils.helpers import region_mask

if TYPE_CHECKING:
    from collections.abc import Callable

    from shapely.geometry.base import BaseGeometry

    from shoreline_satellite.models.raster import CompositeRaster, WaterMask

logger = logging.getLogger("shoreline_satellite.backends.local")

T = TypeVar("T")

EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)
FOUR_CONNECTED = ndimage.generate_binary_structure(2, 1)


class LocalBackend(ComputeBackend):
    """Evaluate every primitive in-process.

    Args:
        timeout_seconds: Wall-clock limit per primitive.
        max_pixels: Largest raster (rows x cols, after any upsampling) a
            primitive accepts.
        max_workers: Size of the worker pool.  A timed-out evaluation keeps
            its worker until it returns, so at most this many run at once
            and later requests queue behind them.
    """

    name = "local"

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        max_pixels: int = DEFAULT_MAX_PIXELS,
        max_workers: int = DEFAULT_BACKEND_WORKERS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_pixels = max_pixels
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="shoreline-backend"
        )

    # ------------------------------------------------------------------
    # Raster primitives
    # ------------------------------------------------------------------

    async def histogram(
        self,
        raster: CompositeRaster,
        band: str,
        geometry: BaseGeometry | None,
        scale: float,
    ) -> Histogram:
        self._check_size("histogram", raster.shape)
        values = raster.band(band)
        return await self._run(
            "histogram",
            _histogram_in_region,
            values,
            raster.valid,
            raster.transform,
            geometry,
            _sampling_step(raster.scale, scale),
        )

    async def focal_filter(
        self,
        mask: np.ndarray,
        kernel_radius: int,
        op: FocalOp,
        iterations: int,
    ) -> np.ndarray:
        self._check_size("focal_filter", mask.shape)
        return await self._run(
            "focal_filter", _focal_filter, mask, kernel_radius, op, iterations
        )

    async def connected_component_size(
        self,
        mask: np.ndarray,
        max_size: int,
        eight_connected: bool = True,
    ) -> np.ndarray:
        self._check_size("connected_component_size", mask.shape)
        return await self._run(
            "connected_component_size",
            _component_sizes,
            mask,
            max_size,
            eight_connected,
        )

    async def vectorize(
        self,
        mask: WaterMask,
        geometry: BaseGeometry | None,
        scale: float,
        eight_connected: bool = True,
    ) -> list[Polygon]:
        factor = _upsample_factor(mask.scale, scale)
        rows, cols = mask.shape
        self._check_size("vectorize", (rows * factor, cols * factor))
        return await self._run(
            "vectorize",
            _trace_polygons,
            mask.data,
            mask.transform,
            geometry,
            factor,
            eight_connected,
        )

    async def coarsen(self, mask: WaterMask, factor: int) -> WaterMask:
        if factor < 1:
            msg = f"coarsen factor must be >= 1, got {factor}"
            raise ValueError(msg)
        data = await self._run("coarsen", _majority_reduce, mask.data, factor)
        return dataclasses.replace(
            mask, data=data, transform=mask.transform * Affine.scale(factor)
        )

    # ------------------------------------------------------------------
    # Geometry primitives
    # ------------------------------------------------------------------

    async def geometry_buffer(self, geometry: BaseGeometry, distance: float) -> BaseGeometry:
        return geometry.buffer(distance)

    async def geometry_difference(self, a: BaseGeometry, b: BaseGeometry) -> BaseGeometry:
        return a.difference(b)

    async def geometry_intersects(
        self,
        a: BaseGeometry,
        b: BaseGeometry,
        error_margin: float,
    ) -> bool:
        if a.is_empty or b.is_empty:
            return False
        return bool(a.distance(b) <= error_margin)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_size(self, operation: str, shape: tuple[int, ...]) -> None:
        pixels = math.prod(shape)
        if pixels > self.max_pixels:
            msg = (
                f"{operation} refused: {pixels} pixels exceeds the local limit "
                f"of {self.max_pixels}"
            )
            raise ResourceLimitError(
                msg,
                context={"operation": operation, "pixels": pixels, "max_pixels": self.max_pixels},
            )

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, functools.partial(func, *args))
        try:
            return await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            msg = f"{operation} timed out after {self.timeout_seconds:.1f}s"
            logger.warning(
                "Backend timeout | backend=%s | operation=%s | max_workers=%d",
                self.name,
                operation,
                self.max_workers,
            )
            raise BackendUnavailableError(msg, context={"operation": operation}) from exc

    def close(self) -> None:
        """Wait for in-flight evaluations and release the worker pool."""
        self._executor.shutdown(wait=True, cancel_futures=True)


# ---------------------------------------------------------------------------
# Pure helpers (run in worker threads)
# ---------------------------------------------------------------------------


def bucket_histogram(values: np.ndarray) -> Histogram:
    """Bucket finite *values* into at most 256 buckets of width >= 0.001.

    Bucket means are the mean of the values that fell in each bucket;
    empty buckets report their centre.
    """
    values = np.asarray(values, dtype=np.float64).ravel()
    values = values[np.isfinite(values)]
    if values.size == 0:
        return Histogram()

    lo = float(values.min())
    span = float(values.max()) - lo
    width = max(span / HISTOGRAM_MAX_BUCKETS, HISTOGRAM_MIN_BUCKET_WIDTH)
    n = min(HISTOGRAM_MAX_BUCKETS, int(math.floor(span / width)) + 1)

    idx = np.clip(((values - lo) / width).astype(np.int64), 0, n - 1)
    counts = np.bincount(idx, minlength=n).astype(np.float64)
    sums = np.bincount(idx, weights=values, minlength=n)
    centres = lo + (np.arange(n) + 0.5) * width
    means = np.where(counts > 0, sums / np.maximum(counts, 1.0), centres)
    # Guard against rounding pushing a mean past its neighbour.
    means = np.maximum.accumulate(means)
    return Histogram(means=tuple(means.tolist()), counts=tuple(counts.tolist()))


def _histogram_in_region(
    values: np.ndarray,
    valid: np.ndarray,
    transform: Affine,
    geometry: BaseGeometry | None,
    step: int,
) -> Histogram:
    selected = valid & region_mask(values.shape, transform, geometry)
    return bucket_histogram(values[::step, ::step][selected[::step, ::step]])


def _sampling_step(pixel: float, scale: float) -> int:
    if scale <= pixel:
        return 1
    return max(1, int(round(scale / pixel)))


def _upsample_factor(pixel: float, scale: float) -> int:
    if scale >= pixel:
        return 1
    return max(1, int(round(pixel / scale)))


def _focal_filter(mask: np.ndarray, radius: int, op: FocalOp, iterations: int) -> np.ndarray:
    mask = np.asarray(mask, dtype=bool)
    kernel = disk(radius).astype(bool)
    # Edge padding keeps the raster border from acting as land or water.
    pad = radius * iterations
    padded = np.pad(mask, pad, mode="edge")
    if op is FocalOp.MAX:
        out = ndimage.binary_dilation(padded, structure=kernel, iterations=iterations)
    else:
        out = ndimage.binary_erosion(padded, structure=kernel, iterations=iterations)
    return out[pad : pad + mask.shape[0], pad : pad + mask.shape[1]]


def _component_sizes(mask: np.ndarray, max_size: int, eight_connected: bool) -> np.ndarray:
    mask = np.asarray(mask, dtype=bool)
    structure = EIGHT_CONNECTED if eight_connected else FOUR_CONNECTED
    labels, count = ndimage.label(mask, structure=structure)
    if count == 0:
        return np.zeros(mask.shape, dtype=np.int64)
    sizes = np.bincount(labels.ravel())
    sizes[0] = 0
    return np.minimum(sizes[labels], max_size)


def _majority_reduce(data: np.ndarray, factor: int) -> np.ndarray:
    if factor == 1:
        return np.asarray(data, dtype=bool)
    fraction = block_reduce(np.asarray(data, dtype=np.float64), (factor, factor), np.mean, cval=0)
    return fraction >= 0.5


def _trace_polygons(
    data: np.ndarray,
    transform: Affine,
    geometry: BaseGeometry | None,
    factor: int,
    eight_connected: bool,
) -> list[Polygon]:
    data = np.asarray(data, dtype=bool)
    if factor > 1:
        data = np.repeat(np.repeat(data, factor, axis=0), factor, axis=1)
        transform = transform * Affine.scale(1.0 / factor)
    data = data & region_mask(data.shape, transform, geometry)
    if not data.any():
        return []

    polygons: list[Polygon] = []
    for geom, value in rio_features.shapes(
        data.astype(np.uint8),
        mask=data,
        connectivity=8 if eight_connected else 4,
        transform=transform,
    ):
        if value != 1:
            continue
        polygon = shape(geom)
        if not polygon.is_valid:
            polygon = make_valid(polygon)
        polygons.extend(_polygon_parts(polygon))
    return polygons


def _polygon_parts(geometry: BaseGeometry) -> list[Polygon]:
    if isinstance(geometry, Polygon):
        return [] if geometry.is_empty else [geometry]
    if isinstance(geometry, MultiPolygon):
        return [p for p in geometry.geoms if not p.is_empty]
    # GeometryCollection from make_valid; lines and points are slivers.
    parts: list[Polygon] = []
    for part in getattr(geometry, "geoms", ()):
        parts.extend(_polygon_parts(part))
    return parts

