"""Mask cleanup activity.

Removes water bodies smaller than ``min_water_body_pixels`` (8-connected)
and then smooths the mask with a morphological closing followed by an
opening, both using a circular kernel of radius
``smoothing_kernel_radius`` repeated ``smoothing_iterations`` times.

Removal always precedes smoothing.  Smoothing can detach fragments below
the size floor, so remove-then-smooth repeats until the mask is stable
(bounded by ``MAX_CLEANUP_PASSES``); applying cleanup to its own output
with the same configuration then changes nothing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from shoreline_satellite.backends.base import FocalOp
from shoreline_satellite.models.raster import CleanedMask

if TYPE_CHECKING:
    from shoreline_satellite.backends.base import ComputeBackend
    from shoreline_satellite.core.config import RunConfiguration
    from shoreline_satellite.models.raster import WaterMask

logger = logging.getLogger("shoreline_satellite.activities.cleanup_mask")

# Remove-then-smooth passes run until the mask stops changing.
MAX_CLEANUP_PASSES = 8


async def cleanup(
    mask: WaterMask,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    coarsen_factor: int = 1,
) -> CleanedMask:
    """Remove small water bodies and smooth *mask*.

    Args:
        mask: Binary water mask from a classifier.
        config: Supplies minimum body size, kernel radius and iterations.
        backend: Compute backend for component sizing and focal filters.
        coarsen_factor: Resolution reduction already applied to *mask*,
            recorded on the result.

    Raises:
        ResourceLimitError: If the backend refuses the mask as too large.
        BackendUnavailableError: If the backend times out.
    """
    min_pixels = config.min_water_body_pixels
    radius = config.smoothing_kernel_radius
    iterations = config.smoothing_iterations

    current = mask.data
    removed = 0
    passes = 0
    while passes < MAX_CLEANUP_PASSES:
        passes += 1
        sizes = await backend.connected_component_size(current, min_pixels, eight_connected=True)
        kept = current & (sizes >= min_pixels)
        removed += int(current.sum() - kept.sum())

        smoothed = await _close(kept, radius, iterations, backend)
        smoothed = await _open(smoothed, radius, iterations, backend)
        # Opening can split off fragments below the size floor.
        if np.array_equal(smoothed, current):
            break
        current = smoothed

    logger.info(
        "Mask cleaned | sensor=%s | min_pixels=%d | radius=%d | iterations=%d | "
        "removed=%d | water_pixels=%d | passes=%d | coarsen_factor=%d",
        mask.sensor.value,
        min_pixels,
        radius,
        iterations,
        removed,
        int(smoothed.sum()),
        passes,
        coarsen_factor,
    )
    return CleanedMask(
        data=smoothed,
        transform=mask.transform,
        crs=mask.crs,
        sensor=mask.sensor,
        method=mask.method,
        threshold=mask.threshold,
        thresholds=mask.thresholds,
        coarsen_factor=coarsen_factor,
    )


async def _close(
    data: np.ndarray, radius: int, iterations: int, backend: ComputeBackend
) -> np.ndarray:
    dilated = await backend.focal_filter(data, radius, FocalOp.MAX, iterations)
    return await backend.focal_filter(dilated, radius, FocalOp.MIN, iterations)


async def _open(
    data: np.ndarray, radius: int, iterations: int, backend: ComputeBackend
) -> np.ndarray:
    eroded = await backend.focal_filter(data, radius, FocalOp.MIN, iterations)
    return await backend.focal_filter(eroded, radius, FocalOp.MAX, iterations)
