"""Microsoft Planetary Computer catalog adapter (STAC API).

Concrete ``ImageryCatalog`` using the free Planetary Computer STAC API.
One collection per sensor family:

- radar:      ``sentinel-1-rtc`` (IW mode, ``vv``/``vh`` gamma0, linear)
- optical:    ``sentinel-2-l2a`` (``B02``..``B12``, scaled reflectance)
- historical: ``landsat-c2-l2``  (Landsat 8/9 surface reflectance)

Assets are cloud-optimised GeoTIFFs read directly with rasterio after
signing the href with a short-lived SAS token fetched via ``httpx``.
Values are converted on read: radar to decibels, optical and historical
to unit reflectance.

Configuration:
    The STAC catalogue URL defaults to
    ``https://planetarycomputer.microsoft.com/api/stac/v1``.
    Override via ``ProviderConfig.api_base_url`` if needed.
    ``extra_params["max_items"]`` caps the scenes per composite.

References:
    Planetary Computer STAC API:
        https://planetarycomputer.microsoft.com/docs/reference/stac/
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np
import pystac_client
import rasterio
from rasterio.errors import RasterioError
from shapely.geometry import mapping

from shoreline_satellite.core.constants import Sensor
from shoreline_satellite.models.imagery import SceneRecord
from shoreline_satellite.providers.base import (
    ImageryCatalog,
    ProviderAuthError,
    ProviderReadError,
    ProviderSearchError,
    warp_to_grid,
)

if TYPE_CHECKING:
    import pystac

    from shoreline_satellite.models.imagery import CompositeRequest, ProviderConfig
    from shoreline_satellite.providers.base import TargetGrid

logger = logging.getLogger("shoreline_satellite.providers.planetary_computer")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_STAC_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
_SAS_TOKEN_URL = "https://planetarycomputer.microsoft.com/api/sas/v1/token/{collection}"

_DEFAULT_MAX_ITEMS = 50
_HTTP_TIMEOUT_SECONDS = 30.0

_DEFAULT_COLLECTIONS: dict[Sensor, str] = {
    Sensor.RADAR: "sentinel-1-rtc",
    Sensor.OPTICAL: "sentinel-2-l2a",
    Sensor.HISTORICAL: "landsat-c2-l2",
}

# Pipeline band name -> STAC asset key.
_ASSET_KEYS: dict[Sensor, dict[str, str]] = {
    Sensor.RADAR: {"VV": "vv", "VH": "vh"},
    Sensor.OPTICAL: {
        "B2": "B02",
        "B3": "B03",
        "B4": "B04",
        "B8": "B08",
        "B11": "B11",
        "B12": "B12",
    },
    Sensor.HISTORICAL: {
        "SR_B2": "blue",
        "SR_B3": "green",
        "SR_B4": "red",
        "SR_B5": "nir08",
        "SR_B6": "swir16",
        "SR_B7": "swir22",
    },
}

_S2_SCALE = 1.0 / 10_000.0
# L2A products from processing baseline 04.00 carry a -1000 DN offset.
_S2_OFFSET_BASELINE = "04.00"
_S2_OFFSET_DN = -1000.0

_LANDSAT_SCALE = 0.0000275
_LANDSAT_OFFSET = -0.2


class PlanetaryComputerAdapter(ImageryCatalog):
    """Planetary Computer STAC catalog.

    Uses ``pystac-client`` for search (in a worker thread, it is
    synchronous) and ``httpx`` for SAS token retrieval.  Tokens are cached
    per collection for the lifetime of the adapter.
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self._stac_url = config.api_base_url or _DEFAULT_STAC_URL
        self._max_items = int(config.extra_params.get("max_items", _DEFAULT_MAX_ITEMS))
        self._tokens: dict[str, str] = {}
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    async def search(self, request: CompositeRequest) -> list[SceneRecord]:
        """Search the STAC catalogue for scenes matching *request*.

        Returns:
            List of ``SceneRecord`` sorted by cloud cover (ascending).

        Raises:
            ProviderSearchError: On STAC API errors.
        """
        collection = request.collection or _DEFAULT_COLLECTIONS[request.sensor]
        query = _build_query(request)

        try:
            items = await asyncio.to_thread(self._search_items, request, collection, query)
        except Exception as exc:
            msg = f"STAC search failed: {exc}"
            raise ProviderSearchError(provider=self.name, message=msg, retryable=True) from exc

        results: list[SceneRecord] = []
        for item in items:
            record = self._item_to_scene(item, request.sensor, collection)
            if record is not None:
                results.append(record)

        results.sort(key=lambda r: r.cloud_cover_pct)
        logger.info(
            "Planetary Computer search: %d items found | collection=%s | datetime=%s",
            len(results),
            collection,
            request.datetime_range,
        )
        return results

    def _search_items(
        self,
        request: CompositeRequest,
        collection: str,
        query: dict[str, Any],
    ) -> list[pystac.Item]:
        catalogue = pystac_client.Client.open(self._stac_url)
        stac_search = catalogue.search(
            intersects=mapping(request.geometry),
            collections=[collection],
            datetime=request.datetime_range if (request.date_start or request.date_end) else None,
            query=query or None,
            max_items=self._max_items,
        )
        return list(stac_search.items())

    def _item_to_scene(
        self,
        item: pystac.Item,
        sensor: Sensor,
        collection: str,
    ) -> SceneRecord | None:
        """Convert a STAC item to a ``SceneRecord``, or ``None`` if unusable."""
        try:
            properties = item.properties or {}
            assets = item.assets or {}
            band_hrefs: dict[str, str] = {}
            for band, key in _ASSET_KEYS[sensor].items():
                asset = assets.get(key)
                if asset is None or not asset.href:
                    logger.debug("Item %s lacks asset %s", item.id, key)
                    return None
                band_hrefs[band] = str(asset.href)

            dt_str = properties.get("datetime") or ""
            acquired = datetime.fromisoformat(dt_str.replace("Z", "+00:00")) if dt_str else None
            epsg = properties.get("proj:epsg")

            return SceneRecord(
                scene_id=item.id,
                provider=self.name,
                acquisition_date=acquired,
                cloud_cover_pct=float(properties.get("eo:cloud_cover", 0.0)),
                crs=f"EPSG:{epsg}" if epsg else "",
                assets=band_hrefs,
                extra={
                    "collection": collection,
                    "platform": properties.get("platform", ""),
                    "processing_baseline": properties.get("s2:processing_baseline", ""),
                },
            )
        except (KeyError, ValueError, TypeError, AttributeError):
            logger.warning(
                "Skipping unparseable STAC item: %s",
                getattr(item, "id", "?"),
                exc_info=True,
            )
            return None

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------

    async def read_scene(
        self,
        scene: SceneRecord,
        request: CompositeRequest,
        grid: TargetGrid,
    ) -> dict[str, np.ndarray]:
        collection = str(scene.extra.get("collection", _DEFAULT_COLLECTIONS[request.sensor]))
        token = await self._sas_token(collection)
        hrefs = {band: _sign(scene.assets[band], token) for band in request.bands}
        try:
            raw = await asyncio.to_thread(_read_bands, hrefs, grid)
        except RasterioError as exc:
            msg = f"Failed to read assets for {scene.scene_id}: {exc}"
            raise ProviderReadError(provider=self.name, message=msg, retryable=True) from exc
        return {
            band: _to_physical(values, request.sensor, scene) for band, values in raw.items()
        }

    async def _sas_token(self, collection: str) -> str:
        async with self._token_lock:
            if collection in self._tokens:
                return self._tokens[collection]
            url = _SAS_TOKEN_URL.format(collection=collection)
            try:
                async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    token = str(response.json()["token"])
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                msg = f"Failed to obtain SAS token for {collection}: {exc}"
                raise ProviderAuthError(provider=self.name, message=msg) from exc
            self._tokens[collection] = token
            logger.debug("SAS token cached | collection=%s", collection)
            return token


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _build_query(request: CompositeRequest) -> dict[str, Any]:
    if request.sensor is Sensor.RADAR:
        return {"sar:instrument_mode": {"eq": "IW"}}
    query: dict[str, Any] = {}
    if request.cloud_cover_ceiling < 100.0:
        query["eo:cloud_cover"] = {"lte": request.cloud_cover_ceiling}
    if request.sensor is Sensor.HISTORICAL:
        query["platform"] = {"in": ["landsat-8", "landsat-9"]}
    return query


def _sign(href: str, token: str) -> str:
    separator = "&" if "?" in href else "?"
    return f"{href}{separator}{token}"


def _read_bands(hrefs: dict[str, str], grid: TargetGrid) -> dict[str, np.ndarray]:
    out: dict[str, np.ndarray] = {}
    for band, href in hrefs.items():
        with rasterio.open(href) as src:
            out[band] = warp_to_grid(src, 1, grid)
    return out


def _to_physical(values: np.ndarray, sensor: Sensor, scene: SceneRecord) -> np.ndarray:
    """Convert stored digital numbers to dB (radar) or reflectance."""
    if sensor is Sensor.RADAR:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(values > 0, 10.0 * np.log10(values), np.nan)
    if sensor is Sensor.OPTICAL:
        baseline = str(scene.extra.get("processing_baseline", ""))
        offset = _S2_OFFSET_DN if baseline and baseline >= _S2_OFFSET_BASELINE else 0.0
        return (values + offset) * _S2_SCALE
    return values * _LANDSAT_SCALE + _LANDSAT_OFFSET
