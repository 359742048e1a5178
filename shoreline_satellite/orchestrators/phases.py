"""Bounded phase helpers for the shoreline pipeline orchestrator.

Each helper wraps one pipeline step with the recovery policy the
orchestrator applies to it.  The top-level orchestrator in
``shoreline_pipeline.py`` calls these sequentially.

Phases
------
1. **Backend retries**: any backend call that raises
   ``BackendUnavailableError`` is retried with exponential backoff.
2. **Cleanup with coarsening**: a ``ResourceLimitError`` during cleanup
   retries on a mask coarsened by a factor of two, a bounded number of
   times.
3. **Tiled vectorization**: a ``ResourceLimitError`` on the whole mask
   falls back to row-band tiles processed in bounded batches.  Tile
   polygons are merged as they arrive; a tile that still fails after its
   retries is dropped and the result is flagged partial.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any, TypedDict, TypeVar

from rasterio.transform import Affine
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union

from shoreline_satellite.activities.cleanup_mask import cleanup
from shoreline_satellite.activities.vectorize_shoreline import (
    build_shoreline,
    expanded_region,
    vectorize_scale,
)
from shoreline_satellite.core.constants import (
    DEFAULT_MAX_COARSEN_STEPS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_SECONDS,
    DEFAULT_TILE_BATCH_SIZE,
    DEFAULT_TILE_ROWS,
)
from shoreline_satellite.core.exceptions import (
    BackendUnavailableError,
    ResourceLimitError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from shapely.geometry.base import BaseGeometry

    from shoreline_satellite.backends.base import ComputeBackend
    from shoreline_satellite.core.config import RunConfiguration
    from shoreline_satellite.models.aoi import AreaOfInterest
    from shoreline_satellite.models.raster import CleanedMask, WaterMask
    from shoreline_satellite.models.shoreline import ShorelineFeatureSet

logger = logging.getLogger("shoreline_satellite.orchestrators.phases")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Phase result contracts
# ---------------------------------------------------------------------------


class TileResult(TypedDict):
    """Outcome of vectorizing one row-band tile."""

    index: int
    row_start: int
    rows: int
    polygons: list[Polygon]
    attempts: int
    error: str


class TilingSummary(TypedDict):
    """Aggregate of a tiled vectorization."""

    tile_count: int
    tiles_succeeded: int
    dropped_tiles: list[int]
    polygon_count: int
    batches: int


# ---------------------------------------------------------------------------
# Phase 1: Backend retries
# ---------------------------------------------------------------------------


async def with_backend_retries(
    factory: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation: str = "",
) -> T:
    """Await ``factory()``, retrying ``BackendUnavailableError``.

    The delay before retry *n* (1-based) is ``base_delay * 2 ** (n - 1)``.

    Args:
        factory: Zero-argument callable producing a fresh awaitable.
        max_retries: Retries after the first attempt.
        base_delay: Backoff base in seconds.
        sleep: Awaitable sleep (injectable for tests).
        operation: Label for log messages.

    Raises:
        BackendUnavailableError: Once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await factory()
        except BackendUnavailableError as exc:
            attempt += 1
            if attempt > max_retries:
                logger.error(
                    "Backend retries exhausted | operation=%s | retries=%d | error=%s",
                    operation,
                    max_retries,
                    exc.message,
                )
                raise
            backoff = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Backend unavailable (retry %d/%d) | operation=%s | backoff=%.1fs | error=%s",
                attempt,
                max_retries,
                operation,
                backoff,
                exc.message,
            )
            await sleep(backoff)


# ---------------------------------------------------------------------------
# Phase 2: Cleanup with coarsening
# ---------------------------------------------------------------------------


async def cleanup_with_coarsening(
    mask: WaterMask,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    max_steps: int = DEFAULT_MAX_COARSEN_STEPS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CleanedMask:
    """Run cleanup, coarsening the mask by 2 whenever the backend refuses it.

    Raises:
        ResourceLimitError: If the mask is still refused after
            ``max_steps`` coarsenings.
    """
    current = mask
    factor = 1
    steps = 0
    while True:
        try:
            return await with_backend_retries(
                lambda m=current, f=factor: cleanup(m, config, backend, coarsen_factor=f),
                max_retries=max_retries,
                base_delay=retry_base_seconds,
                sleep=sleep,
                operation="cleanup",
            )
        except ResourceLimitError as exc:
            if steps >= max_steps:
                logger.error(
                    "Cleanup refused at coarsest level | factor=%d | steps=%d",
                    factor,
                    steps,
                )
                exc.with_context(coarsen_factor=factor)
                raise
            logger.warning(
                "Cleanup refused, coarsening | factor=%d -> %d | reason=%s",
                factor,
                factor * 2,
                exc.message,
            )
        current = await with_backend_retries(
            lambda m=current: backend.coarsen(m, 2),
            max_retries=max_retries,
            base_delay=retry_base_seconds,
            sleep=sleep,
            operation="coarsen",
        )
        factor *= 2
        steps += 1


# ---------------------------------------------------------------------------
# Phase 3: Tiled vectorization
# ---------------------------------------------------------------------------


async def vectorize_with_tiling(
    mask: CleanedMask,
    aoi: AreaOfInterest,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    tile_rows: int = DEFAULT_TILE_ROWS,
    batch_size: int = DEFAULT_TILE_BATCH_SIZE,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    keep_all: bool = False,
) -> ShorelineFeatureSet:
    """Vectorize *mask*, falling back to row-band tiles if it is too large.

    Returns:
        A ``ShorelineFeatureSet``; ``partial`` is set when tiles were dropped.
    """
    region = await expanded_region(aoi, config, backend)
    scale = vectorize_scale(mask, config)
    try:
        polygons = await with_backend_retries(
            lambda: backend.vectorize(mask, region, scale, eight_connected=True),
            max_retries=max_retries,
            base_delay=retry_base_seconds,
            sleep=sleep,
            operation="vectorize",
        )
        dropped: list[int] = []
    except ResourceLimitError as exc:
        logger.warning(
            "Vectorize refused, tiling | rows=%d | tile_rows=%d | reason=%s",
            mask.shape[0],
            tile_rows,
            exc.message,
        )
        summary, polygons = await _vectorize_tiles(
            mask,
            region,
            scale,
            backend,
            tile_rows=tile_rows,
            batch_size=batch_size,
            max_retries=max_retries,
            retry_base_seconds=retry_base_seconds,
            sleep=sleep,
        )
        dropped = summary["dropped_tiles"]

    return await build_shoreline(
        polygons,
        aoi,
        config,
        backend,
        mask=mask,
        keep_all=keep_all,
        dropped_tiles=dropped,
    )


def split_rows(mask: CleanedMask, tile_rows: int) -> list[tuple[int, CleanedMask]]:
    """Split *mask* into row bands of at most *tile_rows* rows.

    Each band keeps the geographic placement of its rows.
    """
    if tile_rows < 1:
        msg = f"tile_rows must be >= 1, got {tile_rows}"
        raise ValueError(msg)
    tiles: list[tuple[int, CleanedMask]] = []
    for row_start in range(0, mask.shape[0], tile_rows):
        tile = dataclasses.replace(
            mask,
            data=mask.data[row_start : row_start + tile_rows],
            transform=mask.transform * Affine.translation(0, row_start),
        )
        tiles.append((row_start, tile))
    return tiles


async def _vectorize_tiles(
    mask: CleanedMask,
    region: BaseGeometry,
    scale: float,
    backend: ComputeBackend,
    *,
    tile_rows: int,
    batch_size: int,
    max_retries: int,
    retry_base_seconds: float,
    sleep: Callable[[float], Awaitable[Any]],
) -> tuple[TilingSummary, list[Polygon]]:
    tiles = split_rows(mask, tile_rows)
    results: list[TileResult] = []
    merged: BaseGeometry = Polygon()
    batches = 0

    for batch_start in range(0, len(tiles), batch_size):
        batch = tiles[batch_start : batch_start + batch_size]
        batches += 1
        tasks = [
            asyncio.ensure_future(
                _vectorize_tile(
                    batch_start + offset,
                    row_start,
                    tile,
                    region,
                    scale,
                    backend,
                    max_retries=max_retries,
                    retry_base_seconds=retry_base_seconds,
                    sleep=sleep,
                )
            )
            for offset, (row_start, tile) in enumerate(batch)
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                results.append(result)
                if result["polygons"]:
                    # Union is order-independent, so arrival order is fine.
                    merged = unary_union([merged, *result["polygons"]])
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    dropped = sorted(r["index"] for r in results if r["error"])
    polygons = _polygon_parts(merged)
    summary = TilingSummary(
        tile_count=len(tiles),
        tiles_succeeded=len(tiles) - len(dropped),
        dropped_tiles=dropped,
        polygon_count=len(polygons),
        batches=batches,
    )
    log = logger.warning if dropped else logger.info
    log(
        "Tiled vectorize completed | tiles=%d | succeeded=%d | dropped=%s | "
        "polygons=%d | batches=%d",
        summary["tile_count"],
        summary["tiles_succeeded"],
        ",".join(str(i) for i in dropped) or "-",
        summary["polygon_count"],
        batches,
    )
    return summary, polygons


async def _vectorize_tile(
    index: int,
    row_start: int,
    tile: CleanedMask,
    region: BaseGeometry,
    scale: float,
    backend: ComputeBackend,
    *,
    max_retries: int,
    retry_base_seconds: float,
    sleep: Callable[[float], Awaitable[Any]],
) -> TileResult:
    attempts = 0
    error = ""
    while attempts <= max_retries:
        attempts += 1
        try:
            polygons = await backend.vectorize(tile, region, scale, eight_connected=True)
        except (BackendUnavailableError, ResourceLimitError) as exc:
            error = exc.message
            logger.warning(
                "Tile failed | tile=%d | row_start=%d | attempt=%d/%d | error=%s",
                index,
                row_start,
                attempts,
                max_retries + 1,
                exc.message,
            )
            if attempts <= max_retries:
                await sleep(retry_base_seconds * (2 ** (attempts - 1)))
            continue
        return TileResult(
            index=index,
            row_start=row_start,
            rows=tile.shape[0],
            polygons=polygons,
            attempts=attempts,
            error="",
        )

    logger.warning("Dropping tile | tile=%d | row_start=%d | error=%s", index, row_start, error)
    return TileResult(
        index=index,
        row_start=row_start,
        rows=tile.shape[0],
        polygons=[],
        attempts=attempts,
        error=error,
    )


def _polygon_parts(geometry: BaseGeometry) -> list[Polygon]:
    if geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, MultiPolygon):
        return list(geometry.geoms)
    return [g for g in getattr(geometry, "geoms", ()) if isinstance(g, Polygon)]
