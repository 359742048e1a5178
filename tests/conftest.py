"""Shared pytest fixtures for the shoreline satellite test suite.

All synthetic rasters live on one grid: 100 x 100 pixels of 10 m in
UTM zone 30N with the top-left corner at (500000, 5000000).  Row ``r``
covers northings ``5000000 - 10 * (r + 1)`` to ``5000000 - 10 * r`` and
column ``c`` covers eastings ``500000 + 10 * c`` to ``500000 + 10 * (c + 1)``.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from shoreline_satellite.activities.prepare_aoi import prepare_aoi
from shoreline_satellite.backends.local import LocalBackend
from shoreline_satellite.core.constants import CompositeMethod, Sensor
from shoreline_satellite.models.aoi import AreaOfInterest
from shoreline_satellite.models.imagery import CompositeRequest, ProviderConfig, SceneRecord
from shoreline_satellite.models.raster import CleanedMask, CompositeRaster, WaterMask
from shoreline_satellite.providers.base import ImageryCatalog, TargetGrid

# ---------------------------------------------------------------------------
# Grid constants
# ---------------------------------------------------------------------------

TEST_CRS = "EPSG:32630"
ORIGIN_X = 500_000.0
ORIGIN_Y = 5_000_000.0
PIXEL_M = 10.0
GRID_SHAPE = (100, 100)
TEST_TRANSFORM = from_origin(ORIGIN_X, ORIGIN_Y, PIXEL_M, PIXEL_M)

# Radar backscatter (dB)
LAND_VV, LAND_VH = -8.0, -14.0
WATER_VV, WATER_VH = -20.0, -28.0


def pixel_box(row_start: int, row_stop: int, col_start: int, col_stop: int) -> Any:
    """Projected polygon covering rows ``[row_start, row_stop)`` x cols ``[col_start, col_stop)``."""
    return box(
        ORIGIN_X + PIXEL_M * col_start,
        ORIGIN_Y - PIXEL_M * row_stop,
        ORIGIN_X + PIXEL_M * col_stop,
        ORIGIN_Y - PIXEL_M * row_start,
    )


def make_aoi(
    row_start: int,
    row_stop: int,
    col_start: int,
    col_stop: int,
    *,
    name: str = "test bay",
) -> AreaOfInterest:
    """AOI on the test grid, given in pixel rows/cols."""
    return prepare_aoi(pixel_box(row_start, row_stop, col_start, col_stop), name=name, crs=TEST_CRS)


def make_raster(
    bands: dict[str, np.ndarray],
    *,
    sensor: Sensor = Sensor.RADAR,
    valid: np.ndarray | None = None,
    scene_count: int = 1,
) -> CompositeRaster:
    shape = next(iter(bands.values())).shape
    return CompositeRaster(
        bands=bands,
        valid=np.ones(shape, dtype=bool) if valid is None else valid,
        transform=TEST_TRANSFORM,
        crs=TEST_CRS,
        sensor=sensor,
        scene_count=scene_count,
        method=CompositeMethod.MEDIAN,
        scene_ids=tuple(f"scene-{i}" for i in range(scene_count)),
    )


def block_water(
    row_start: int = 40,
    row_stop: int = 60,
    col_start: int = 40,
    col_stop: int = 60,
    shape: tuple[int, int] = GRID_SHAPE,
) -> np.ndarray:
    water = np.zeros(shape, dtype=bool)
    water[row_start:row_stop, col_start:col_stop] = True
    return water


def make_radar_raster(water: np.ndarray, *, scene_count: int = 1) -> CompositeRaster:
    """Radar composite: distinctly low backscatter where *water* is set."""
    vv = np.where(water, WATER_VV, LAND_VV)
    vh = np.where(water, WATER_VH, LAND_VH)
    return make_raster({"VV": vv, "VH": vh}, sensor=Sensor.RADAR, scene_count=scene_count)


def make_mask(
    water: np.ndarray,
    *,
    sensor: Sensor = Sensor.RADAR,
    cleaned: bool = False,
) -> WaterMask:
    cls = CleanedMask if cleaned else WaterMask
    return cls(
        data=water,
        transform=TEST_TRANSFORM,
        crs=TEST_CRS,
        sensor=sensor,
        method="radar_vote",
    )


# ---------------------------------------------------------------------------
# Fake catalog
# ---------------------------------------------------------------------------


class FakeCatalog(ImageryCatalog):
    """Catalog returning a prepared composite; records every request."""

    def __init__(self, raster: CompositeRaster | None = None) -> None:
        super().__init__(ProviderConfig(name="fake"))
        self.raster = raster
        self.requests: list[CompositeRequest] = []

    async def search(self, request: CompositeRequest) -> list[SceneRecord]:
        if self.raster is None or self.raster.scene_count == 0:
            return []
        return [SceneRecord(scene_id="fake-scene", provider=self.name)]

    async def read_scene(
        self,
        scene: SceneRecord,
        request: CompositeRequest,
        grid: TargetGrid,
    ) -> dict[str, np.ndarray]:
        assert self.raster is not None
        return dict(self.raster.bands)

    async def composite(self, request: CompositeRequest) -> CompositeRaster:
        self.requests.append(request)
        if self.raster is None:
            rows, cols = GRID_SHAPE
            blank = np.full((rows, cols), np.nan)
            return CompositeRaster(
                bands={b: blank for b in request.bands},
                valid=np.zeros((rows, cols), dtype=bool),
                transform=TEST_TRANSFORM,
                crs=TEST_CRS,
                sensor=request.sensor,
                scene_count=0,
            )
        return self.raster


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def backend() -> LocalBackend:
    """In-process backend with generous limits."""
    return LocalBackend(timeout_seconds=30.0)


@pytest.fixture()
def straddling_aoi() -> AreaOfInterest:
    """AOI whose boundary cuts through the default 20 x 20 water block."""
    return make_aoi(10, 50, 50, 90, name="straddling")


@pytest.fixture()
def land_aoi() -> AreaOfInterest:
    """AOI far from any water in the default block raster."""
    return make_aoi(70, 95, 5, 30, name="inland")


@pytest.fixture()
def radar_block_raster() -> CompositeRaster:
    """100 x 100 radar composite with a 20 x 20 water block at rows/cols 40-59."""
    return make_radar_raster(block_water())


@pytest.fixture()
def fake_catalog(radar_block_raster: CompositeRaster) -> FakeCatalog:
    return FakeCatalog(radar_block_raster)
