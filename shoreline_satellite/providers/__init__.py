"""Imagery catalog adapters.

- ImageryCatalog: abstract base; builds composites from search + read
- PlanetaryComputerAdapter: Microsoft Planetary Computer (STAC, free)
- LocalFilesCatalog: directory of self-describing GeoTIFFs

The active catalog is selected by name through the factory.
"""

from shoreline_satellite.providers.base import (
    ImageryCatalog,
    ProviderAuthError,
    ProviderError,
    ProviderReadError,
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

__all__ = [
    "LOCAL_FILES",
    "PLANETARY_COMPUTER",
    "ImageryCatalog",
    "ProviderAuthError",
    "ProviderError",
    "ProviderReadError",
    "ProviderSearchError",
    "TargetGrid",
    "get_provider",
    "list_providers",
    "register_provider",
]
