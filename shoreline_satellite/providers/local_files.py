"""Local GeoTIFF directory catalog.

Serves scenes from a directory of multi-band GeoTIFFs, one file per
scene.  Each file describes itself through GDAL metadata:

- band descriptions name the bands (``VV``, ``B3``, ``SR_B5``, ...)
- dataset tags ``SENSOR`` (``radar`` / ``optical`` / ``historical``),
  ``ACQUISITION_DATE`` (ISO 8601) and optionally ``CLOUD_COVER`` (0-100)

Useful for offline processing of pre-downloaded scenes and for tests.

Configuration:
    ``ProviderConfig.api_base_url`` is the root directory.  Files are
    discovered recursively with the ``pattern`` extra parameter
    (default ``*.tif``).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.warp import transform_bounds
from shapely.geometry import box

from shoreline_satellite.models.imagery import SceneRecord
from shoreline_satellite.providers.base import (
    ImageryCatalog,
    ProviderReadError,
    ProviderSearchError,
    warp_to_grid,
)

if TYPE_CHECKING:
    from shoreline_satellite.models.imagery import CompositeRequest, ProviderConfig
    from shoreline_satellite.providers.base import TargetGrid

logger = logging.getLogger("shoreline_satellite.providers.local_files")

DEFAULT_PATTERN = "*.tif"

TAG_SENSOR = "SENSOR"
TAG_ACQUISITION_DATE = "ACQUISITION_DATE"
TAG_CLOUD_COVER = "CLOUD_COVER"


class LocalFilesCatalog(ImageryCatalog):
    """Catalog over a local directory of self-describing GeoTIFFs."""

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        if not config.api_base_url:
            msg = "local_files catalog needs api_base_url set to a directory"
            raise ProviderSearchError(provider=config.name, message=msg)
        self._root = Path(config.api_base_url)
        self._pattern = config.extra_params.get("pattern", DEFAULT_PATTERN)

    async def search(self, request: CompositeRequest) -> list[SceneRecord]:
        return await asyncio.to_thread(self._search_sync, request)

    async def read_scene(
        self,
        scene: SceneRecord,
        request: CompositeRequest,
        grid: TargetGrid,
    ) -> dict[str, np.ndarray]:
        return await asyncio.to_thread(self._read_sync, scene, request, grid)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _search_sync(self, request: CompositeRequest) -> list[SceneRecord]:
        if not self._root.is_dir():
            msg = f"Scene directory does not exist: {self._root}"
            raise ProviderSearchError(provider=self.name, message=msg)

        scenes: list[SceneRecord] = []
        for path in sorted(self._root.rglob(self._pattern)):
            record = self._describe(path)
            if record is None or not self._qualifies(path, record, request):
                continue
            scenes.append(record)

        scenes.sort(key=lambda s: (s.cloud_cover_pct, s.scene_id))
        logger.info(
            "Local search | root=%s | sensor=%s | matches=%d",
            self._root,
            request.sensor.value,
            len(scenes),
        )
        return scenes

    def _describe(self, path: Path) -> SceneRecord | None:
        try:
            with rasterio.open(path) as src:
                tags = src.tags()
                descriptions = src.descriptions
                crs = src.crs.to_string() if src.crs else ""
        except RasterioError:
            logger.warning("Skipping unreadable scene file: %s", path, exc_info=True)
            return None

        acquired = tags.get(TAG_ACQUISITION_DATE, "")
        try:
            acquisition_date = datetime.fromisoformat(acquired) if acquired else None
            cloud_cover = float(tags.get(TAG_CLOUD_COVER, 0.0))
        except ValueError:
            logger.warning("Skipping scene with malformed tags: %s", path)
            return None

        return SceneRecord(
            scene_id=path.stem,
            provider=self.name,
            acquisition_date=acquisition_date,
            cloud_cover_pct=cloud_cover,
            crs=crs,
            assets={
                name: f"{path}#{index}"
                for index, name in enumerate(descriptions, start=1)
                if name
            },
        )

    def _qualifies(self, path: Path, record: SceneRecord, request: CompositeRequest) -> bool:
        with rasterio.open(path) as src:
            sensor = src.tags().get(TAG_SENSOR, "")
            if sensor != request.sensor.value:
                return False
            footprint = box(*transform_bounds(src.crs, "EPSG:4326", *src.bounds))
        if not footprint.intersects(request.geometry):
            return False
        if not set(request.bands) <= set(record.assets):
            logger.warning(
                "Skipping scene missing bands | scene=%s | needed=%s",
                record.scene_id,
                ",".join(request.bands),
            )
            return False
        if record.cloud_cover_pct > request.cloud_cover_ceiling:
            return False
        if record.acquisition_date is not None:
            day = record.acquisition_date.date()
            if request.date_start and day < request.date_start:
                return False
            if request.date_end and day > request.date_end:
                return False
        return True

    def _read_sync(
        self,
        scene: SceneRecord,
        request: CompositeRequest,
        grid: TargetGrid,
    ) -> dict[str, np.ndarray]:
        out: dict[str, np.ndarray] = {}
        try:
            for band in request.bands:
                path, _, index = scene.assets[band].rpartition("#")
                with rasterio.open(path) as src:
                    out[band] = warp_to_grid(src, int(index), grid)
        except (KeyError, RasterioError) as exc:
            msg = f"Failed to read scene {scene.scene_id}: {exc}"
            raise ProviderReadError(provider=self.name, message=msg) from exc
        return out
