"""Catalog factory: selects the active imagery catalog by name.

The factory keeps a registry of known adapters.  Built-in adapters are
registered lazily so that heavyweight dependencies (``pystac-client``,
``httpx``) load only when that adapter is selected.

Usage::

    from shoreline_satellite.providers.factory import get_provider

    catalog = get_provider("planetary_computer")
    raster = await catalog.composite(request)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shoreline_satellite.models.imagery import ProviderConfig
from shoreline_satellite.providers.base import ImageryCatalog, ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("shoreline_satellite.providers.factory")

PLANETARY_COMPUTER = "planetary_computer"
LOCAL_FILES = "local_files"

_ADAPTER_REGISTRY: dict[str, Callable[[], type[ImageryCatalog]]] = {}


def _register_builtin_adapters() -> None:
    def _planetary_computer() -> type[ImageryCatalog]:
        from shoreline_satellite.providers.planetary_computer import (
            PlanetaryComputerAdapter,
        )

        return PlanetaryComputerAdapter

    def _local_files() -> type[ImageryCatalog]:
        from shoreline_satellite.providers.local_files import LocalFilesCatalog

        return LocalFilesCatalog

    _ADAPTER_REGISTRY[PLANETARY_COMPUTER] = _planetary_computer
    _ADAPTER_REGISTRY[LOCAL_FILES] = _local_files


def _ensure_registry() -> None:
    if not _ADAPTER_REGISTRY:
        _register_builtin_adapters()


def register_provider(
    name: str,
    loader: Callable[[], type[ImageryCatalog]],
) -> None:
    """Register a custom catalog adapter.

    Args:
        name: Catalog name (e.g. ``"my_archive"``).
        loader: A zero-argument callable that returns the adapter class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Provider name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _ADAPTER_REGISTRY[name] = loader
    logger.debug("Registered catalog adapter: %s", name)


def get_provider(
    name: str,
    config: ProviderConfig | None = None,
) -> ImageryCatalog:
    """Create and return an imagery catalog instance.

    Args:
        name: Catalog identifier (``"planetary_computer"``, ``"local_files"``).
        config: Optional ``ProviderConfig``; defaults to one carrying just
            the name.

    Raises:
        ProviderError: If the name is not registered or *config* names a
            different catalog.
    """
    _ensure_registry()

    loader = _ADAPTER_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_ADAPTER_REGISTRY))
        msg = f"Unknown imagery catalog: {name!r}. Available: {available}"
        raise ProviderError(provider=name, message=msg)

    if config is None:
        config = ProviderConfig(name=name)
    elif config.name != name:
        msg = f"ProviderConfig.name {config.name!r} does not match requested catalog {name!r}"
        raise ProviderError(provider=name, message=msg)

    adapter_cls = loader()
    logger.info("Creating imagery catalog: %s", name)
    return adapter_cls(config)


def list_providers() -> list[str]:
    """Return the names of all registered catalog adapters."""
    _ensure_registry()
    return sorted(_ADAPTER_REGISTRY)
