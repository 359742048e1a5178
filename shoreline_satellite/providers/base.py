"""ImageryCatalog abstract base class.

Defines the contract every imagery catalog adapter implements.  The
orchestrator only ever calls ``composite(request)``; it never knows which
concrete catalog is behind it.

Lifecycle of ``composite``:
    1. ``search(request)``           -- find qualifying scenes.
    2. ``read_scene(scene, grid)``   -- warp each scene's bands onto the
       common target grid.
    3. Reduce the per-scene stacks with the requested temporal reducer
       (NaN-aware mean or median) into one ``CompositeRaster``.

When no scene qualifies the catalog still returns a raster, with
``scene_count == 0`` and an all-invalid footprint; deciding what that
means is the orchestrator's job.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import math
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import rasterio
from pyproj import Transformer
from rasterio.enums import Resampling
from rasterio.transform import Affine, from_origin
from rasterio.warp import reproject
from shapely.ops import transform as shapely_transform

from shoreline_satellite.core.constants import CompositeMethod
from shoreline_satellite.core.exceptions import PipelineError
from shoreline_satellite.models.raster import CompositeRaster

if TYPE_CHECKING:
    from rasterio.io import DatasetReader

    from shoreline_satellite.models.imagery import (
        CompositeRequest,
        ProviderConfig,
        SceneRecord,
    )

logger = logging.getLogger("shoreline_satellite.providers.base")

#: Scenes read concurrently while building one composite.
DEFAULT_READ_CONCURRENCY = 4


@dataclass(frozen=True, slots=True)
class TargetGrid:
    """Common pixel grid every scene is warped onto.

    Attributes:
        transform: Pixel-to-projected affine transform (north-up).
        shape: ``(rows, cols)``.
        crs: Projected CRS string.
    """

    transform: Affine
    shape: tuple[int, int]
    crs: str

    @classmethod
    def for_request(cls, request: CompositeRequest) -> TargetGrid:
        """Grid covering the request geometry's projected bounds at ``scale_m``."""
        to_target = Transformer.from_crs("EPSG:4326", request.crs, always_xy=True)
        projected = shapely_transform(to_target.transform, request.geometry)
        min_x, min_y, max_x, max_y = projected.bounds
        scale = request.scale_m
        # Snap the origin to the scale so neighbouring runs share pixel edges.
        origin_x = math.floor(min_x / scale) * scale
        origin_y = math.ceil(max_y / scale) * scale
        cols = max(1, math.ceil((max_x - origin_x) / scale))
        rows = max(1, math.ceil((origin_y - min_y) / scale))
        return cls(
            transform=from_origin(origin_x, origin_y, scale, scale),
            shape=(rows, cols),
            crs=request.crs,
        )


class ImageryCatalog(abc.ABC):
    """Abstract base class for imagery catalog adapters.

    Concrete implementations override ``search`` and ``read_scene``.  The
    constructor receives a ``ProviderConfig`` carrying the endpoint and
    catalog-specific parameters.

    Example usage::

        catalog = get_provider("planetary_computer")
        raster = await catalog.composite(request)
    """

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Return the catalog name from configuration."""
        return self._config.name

    @property
    def config(self) -> ProviderConfig:
        """Return the catalog configuration (read-only)."""
        return self._config

    # ------------------------------------------------------------------
    # Abstract methods
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def search(self, request: CompositeRequest) -> list[SceneRecord]:
        """Return scenes matching *request* (footprint, dates, cloud cover).

        Returns:
            Possibly empty list, best scenes first.

        Raises:
            ProviderSearchError: On catalog errors.
        """

    @abc.abstractmethod
    async def read_scene(
        self,
        scene: SceneRecord,
        request: CompositeRequest,
        grid: TargetGrid,
    ) -> dict[str, np.ndarray]:
        """Warp the requested bands of *scene* onto *grid*.

        Returns:
            Band name to float array of ``grid.shape`` (NaN where no data).

        Raises:
            ProviderReadError: If the scene cannot be read.
        """

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    async def composite(self, request: CompositeRequest) -> CompositeRaster:
        """Build a temporal composite for *request*.

        Returns:
            A ``CompositeRaster``; ``scene_count == 0`` when nothing qualified.
        """
        grid = TargetGrid.for_request(request)
        scenes = await self.search(request)
        if not scenes:
            logger.warning(
                "No qualifying scenes | catalog=%s | sensor=%s | dates=%s | cloud<=%.1f",
                self.name,
                request.sensor.value,
                request.datetime_range,
                request.cloud_cover_ceiling,
            )
            return empty_composite(request, grid)

        semaphore = asyncio.Semaphore(DEFAULT_READ_CONCURRENCY)

        async def _read(scene: SceneRecord) -> dict[str, np.ndarray]:
            async with semaphore:
                return await self.read_scene(scene, request, grid)

        stacks = await asyncio.gather(*(_read(s) for s in scenes))
        bands = reduce_scenes(stacks, request.bands, request.method)
        valid = np.logical_and.reduce([np.isfinite(bands[b]) for b in request.bands])

        logger.info(
            "Composite built | catalog=%s | sensor=%s | method=%s | scenes=%d | "
            "shape=%dx%d | valid=%.1f%%",
            self.name,
            request.sensor.value,
            request.method.value,
            len(scenes),
            grid.shape[0],
            grid.shape[1],
            100.0 * float(valid.mean()),
        )
        return CompositeRaster(
            bands=bands,
            valid=valid,
            transform=grid.transform,
            crs=grid.crs,
            sensor=request.sensor,
            scene_count=len(scenes),
            method=request.method,
            scene_ids=tuple(s.scene_id for s in scenes),
        )


# ---------------------------------------------------------------------------
# Composite helpers
# ---------------------------------------------------------------------------


def empty_composite(request: CompositeRequest, grid: TargetGrid) -> CompositeRaster:
    """All-NaN composite with ``scene_count == 0``."""
    blank = np.full(grid.shape, np.nan)
    return CompositeRaster(
        bands={b: blank for b in request.bands},
        valid=np.zeros(grid.shape, dtype=bool),
        transform=grid.transform,
        crs=grid.crs,
        sensor=request.sensor,
        scene_count=0,
        method=request.method,
    )


def reduce_scenes(
    stacks: list[dict[str, np.ndarray]],
    bands: tuple[str, ...],
    method: CompositeMethod,
) -> dict[str, np.ndarray]:
    """Reduce per-scene band arrays pixel-wise, ignoring NaN."""
    reducer = np.nanmedian if method is CompositeMethod.MEDIAN else np.nanmean
    out: dict[str, np.ndarray] = {}
    with warnings.catch_warnings():
        # All-NaN pixels legitimately reduce to NaN.
        warnings.simplefilter("ignore", category=RuntimeWarning)
        for band in bands:
            out[band] = reducer(np.stack([s[band] for s in stacks]), axis=0)
    return out


def warp_to_grid(
    dataset: DatasetReader,
    band_index: int,
    grid: TargetGrid,
    *,
    resampling: Resampling = Resampling.bilinear,
) -> np.ndarray:
    """Reproject band *band_index* (1-based) of an open *dataset* onto *grid*.

    Source nodata and pixels outside the source footprint become NaN.
    """
    destination = np.full(grid.shape, np.nan, dtype=np.float64)
    reproject(
        source=rasterio.band(dataset, band_index),
        destination=destination,
        src_nodata=dataset.nodata,
        dst_transform=grid.transform,
        dst_crs=grid.crs,
        dst_nodata=np.nan,
        resampling=resampling,
    )
    return destination


# ---------------------------------------------------------------------------
# Catalog exceptions
# ---------------------------------------------------------------------------


class ProviderError(PipelineError):
    """Base exception for imagery catalog errors.

    Attributes:
        provider: Name of the catalog that raised the error.
        message: Human-readable error description.
        retryable: Whether the caller could retry the operation.
    """

    default_stage = "building_composite"
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        super().__init__(
            message,
            retryable=retryable,
            code=self.default_code,
            stage=self.default_stage,
            context={"provider": provider},
        )

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class ProviderAuthError(ProviderError):
    """Failure obtaining credentials (e.g. an asset signing token)."""

    default_code = "PROVIDER_AUTH_FAILED"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(provider, message, retryable=False)


class ProviderSearchError(ProviderError):
    """Error during catalog search."""

    default_code = "PROVIDER_SEARCH_FAILED"


class ProviderReadError(ProviderError):
    """Error while reading or warping scene assets."""

    default_code = "PROVIDER_READ_FAILED"
