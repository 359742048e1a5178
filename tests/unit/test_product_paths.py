"""Tests for deterministic product path generation."""

from __future__ import annotations

import unittest
from datetime import UTC, datetime, timedelta, timezone

import pytest

from shoreline_satellite.utils.product_paths import (
    build_shoreline_path,
    build_water_mask_path,
    product_stem,
    sanitise_slug,
)

TS = datetime(2024, 3, 9, 7, 5, 1, tzinfo=UTC)


class TestSanitiseSlug(unittest.TestCase):
    def test_spaces_and_case(self) -> None:
        assert sanitise_slug("Bay of Biscay") == "bay-of-biscay"

    def test_underscores_become_hyphens(self) -> None:
        assert sanitise_slug("north_sea  coast") == "north-sea-coast"

    def test_special_characters_stripped(self) -> None:
        assert sanitise_slug("Côte d'Azur (east)") == "cte-dazur-east"

    def test_nothing_left(self) -> None:
        assert sanitise_slug("!!!") == "unknown"
        assert sanitise_slug("") == "unknown"


class TestPaths(unittest.TestCase):
    def test_shoreline_path(self) -> None:
        path = build_shoreline_path("Bay of Biscay", "radar", timestamp=TS)
        assert path == "shoreline/2024/03/bay-of-biscay/radar_20240309T070501.geojson"

    def test_shoreline_shapefile(self) -> None:
        path = build_shoreline_path("x", "optical", timestamp=TS, driver="ESRI Shapefile")
        assert path.endswith("/optical_20240309T070501.shp")

    def test_unsupported_driver(self) -> None:
        with pytest.raises(ValueError, match="Unsupported vector driver"):
            build_shoreline_path("x", "radar", timestamp=TS, driver="KML")

    def test_water_mask_path(self) -> None:
        path = build_water_mask_path("Sydney Harbour", "historical", timestamp=TS)
        assert path == "water_mask/2024/03/sydney-harbour/historical_20240309T070501.tif"

    def test_deterministic(self) -> None:
        assert build_water_mask_path("a", "radar", timestamp=TS) == build_water_mask_path(
            "a", "radar", timestamp=TS
        )

    def test_converted_to_utc(self) -> None:
        local = datetime(2024, 4, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        path = build_water_mask_path("a", "radar", timestamp=local)
        assert path == "water_mask/2024/03/a/radar_20240331T230000.tif"

    def test_stem(self) -> None:
        assert product_stem("Radar", TS) == "radar_20240309T070501"
