"""Tests for mask cleanup (small-body removal and smoothing)."""

from __future__ import annotations

import numpy as np
import pytest

from shoreline_satellite.activities.cleanup_mask import cleanup
from shoreline_satellite.core.config import RunConfiguration
from shoreline_satellite.core.constants import Sensor
from shoreline_satellite.models.raster import CleanedMask
from tests.conftest import block_water, make_mask

RADAR = RunConfiguration(sensor=Sensor.RADAR)


def _irregular_lake() -> np.ndarray:
    water = block_water(30, 60, 30, 60)
    water[40:50, 60:70] = True  # bay
    water[45, 45] = False  # pinhole
    water[30:33, 30:33] = False  # notched corner
    return water


class TestSmallBodyRemoval:
    @pytest.mark.asyncio()
    async def test_isolated_pixels_removed(self, backend) -> None:
        water = block_water()
        water[5, 5] = True
        water[90:92, 90:92] = True
        cleaned = await cleanup(make_mask(water), RADAR, backend)
        assert not cleaned.data[5, 5]
        assert not cleaned.data[88:94, 88:94].any()
        assert cleaned.data[50, 50]

    @pytest.mark.asyncio()
    async def test_everything_small_leaves_nothing(self, backend) -> None:
        water = np.zeros((100, 100), dtype=bool)
        water[10:12, 10:13] = True
        cleaned = await cleanup(make_mask(water), RADAR, backend)
        assert not cleaned.has_water

    @pytest.mark.asyncio()
    async def test_empty_mask(self, backend) -> None:
        cleaned = await cleanup(make_mask(np.zeros((100, 100), dtype=bool)), RADAR, backend)
        assert cleaned.water_pixels == 0


class TestSmoothing:
    @pytest.mark.asyncio()
    async def test_pinhole_filled(self, backend) -> None:
        water = block_water()
        water[50, 50] = False
        cleaned = await cleanup(make_mask(water), RADAR, backend)
        assert cleaned.data[50, 50]

    @pytest.mark.asyncio()
    async def test_large_body_survives(self, backend) -> None:
        cleaned = await cleanup(make_mask(block_water()), RADAR, backend)
        assert cleaned.data[45:55, 45:55].all()
        assert cleaned.water_pixels > 300
        assert not cleaned.data[:35, :].any()

    @pytest.mark.asyncio()
    async def test_thin_spit_removed(self, backend) -> None:
        water = block_water()
        water[50, 60:80] = True  # one-pixel-wide channel
        cleaned = await cleanup(make_mask(water), RADAR, backend)
        assert not cleaned.data[50, 70:80].any()


class TestIdempotence:
    @pytest.mark.asyncio()
    async def test_second_pass_changes_nothing(self, backend) -> None:
        once = await cleanup(make_mask(_irregular_lake()), RADAR, backend)
        twice = await cleanup(once, RADAR, backend)
        assert np.array_equal(once.data, twice.data)

    @pytest.mark.asyncio()
    async def test_idempotent_with_small_kernel(self, backend) -> None:
        config = RADAR.with_changes(smoothing_kernel_radius=1, smoothing_iterations=1)
        once = await cleanup(make_mask(_irregular_lake()), config, backend)
        twice = await cleanup(once, config, backend)
        assert np.array_equal(once.data, twice.data)

    @pytest.mark.asyncio()
    async def test_fragment_cut_by_opening_is_removed(self, backend) -> None:
        water = np.zeros((100, 100), dtype=bool)
        water[20:40, 20:40] = True  # lake
        water[30, 40:50] = True  # one-pixel neck
        water[29:32, 50:53] = True  # pond at the end of the neck
        config = RADAR.with_changes(
            min_water_body_pixels=20, smoothing_kernel_radius=1, smoothing_iterations=1
        )
        once = await cleanup(make_mask(water), config, backend)
        twice = await cleanup(once, config, backend)
        assert np.array_equal(once.data, twice.data)
        assert not once.data[:, 45:].any()
        assert once.data[25:35, 25:35].all()


class TestResultMetadata:
    @pytest.mark.asyncio()
    async def test_carries_mask_metadata(self, backend) -> None:
        mask = make_mask(block_water(), sensor=Sensor.RADAR)
        cleaned = await cleanup(mask, RADAR, backend, coarsen_factor=2)
        assert isinstance(cleaned, CleanedMask)
        assert cleaned.sensor is Sensor.RADAR
        assert cleaned.method == "radar_vote"
        assert cleaned.coarsen_factor == 2
        assert cleaned.transform == mask.transform
        assert cleaned.crs == mask.crs
