"""Tests for the catalog factory and registry."""

from __future__ import annotations

import unittest

import pytest

from shoreline_satellite.models.imagery import CompositeRequest, ProviderConfig, SceneRecord
from shoreline_satellite.providers import factory
from shoreline_satellite.providers.base import (
    ImageryCatalog,
    ProviderError,
    ProviderSearchError,
    TargetGrid,
)
from shoreline_satellite.providers.factory import (
    LOCAL_FILES,
    PLANETARY_COMPUTER,
    get_provider,
    list_providers,
    register_provider,
)
from shoreline_satellite.providers.local_files import LocalFilesCatalog
from shoreline_satellite.providers.planetary_computer import PlanetaryComputerAdapter


class _NullCatalog(ImageryCatalog):
    """Catalog that never finds anything."""

    async def search(self, request: CompositeRequest) -> list[SceneRecord]:
        return []

    async def read_scene(
        self, scene: SceneRecord, request: CompositeRequest, grid: TargetGrid
    ) -> dict:
        raise AssertionError("never called")


class TestGetProvider(unittest.TestCase):
    """Resolution of built-in adapters by name."""

    def test_planetary_computer(self) -> None:
        catalog = get_provider(PLANETARY_COMPUTER)
        assert isinstance(catalog, PlanetaryComputerAdapter)
        assert catalog.name == "planetary_computer"

    def test_local_files_with_config(self) -> None:
        config = ProviderConfig(name=LOCAL_FILES, api_base_url="/data/scenes")
        catalog = get_provider(LOCAL_FILES, config)
        assert isinstance(catalog, LocalFilesCatalog)
        assert catalog.config is config

    def test_local_files_needs_directory(self) -> None:
        with pytest.raises(ProviderSearchError):
            get_provider(LOCAL_FILES)

    def test_unknown_name(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            get_provider("sentinel_hub")
        message = str(exc_info.value)
        assert "Unknown imagery catalog" in message
        assert "planetary_computer" in message

    def test_config_name_mismatch(self) -> None:
        with pytest.raises(ProviderError, match="does not match"):
            get_provider(PLANETARY_COMPUTER, ProviderConfig(name="other"))


class TestRegistry(unittest.TestCase):
    """Custom adapter registration."""

    def tearDown(self) -> None:
        factory._ADAPTER_REGISTRY.pop("fake", None)

    def test_builtins_listed(self) -> None:
        names = list_providers()
        assert PLANETARY_COMPUTER in names
        assert LOCAL_FILES in names
        assert names == sorted(names)

    def test_register_custom(self) -> None:
        register_provider("fake", lambda: _NullCatalog)
        assert "fake" in list_providers()
        catalog = get_provider("fake")
        assert isinstance(catalog, _NullCatalog)
        assert catalog.name == "fake"

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            register_provider("", lambda: _NullCatalog)

    def test_loader_called_lazily(self) -> None:
        calls: list[str] = []

        def _loader() -> type[ImageryCatalog]:
            calls.append("loaded")
            return _NullCatalog

        register_provider("fake", _loader)
        assert calls == []
        get_provider("fake")
        assert calls == ["loaded"]
