"""Export activity: persist shoreline products to disk.

Writes the two products of a successful run:

- the shoreline as a vector file via fiona (GeoJSON by default;
  Shapefile and GeoPackage are accepted), one record per line with the
  ``coastal``, ``sensor``, ``method``, ``timestamp`` and ``length_m``
  attributes, plus ``partial`` and ``dropped`` (comma-separated tile
  indices) so a partial result reads back flagged;
- the water mask as a single-band ``uint8`` GeoTIFF via rasterio
  (1 = water, 0 = not water), with the method, sensor and thresholds
  stored as dataset tags.

Coordinates are written in the products' projected CRS and survive a
write/read round trip unchanged.  Paths follow ``utils.product_paths``
so the same run always lands in the same place.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import fiona
import numpy as np
import rasterio
from fiona.errors import FionaError
from rasterio.errors import RasterioError
from shapely.geometry import mapping, shape

from shoreline_satellite.core.constants import Sensor
from shoreline_satellite.core.exceptions import PipelineError
from shoreline_satellite.models.raster import CleanedMask
from shoreline_satellite.models.shoreline import ShorelineFeature, ShorelineFeatureSet
from shoreline_satellite.utils.product_paths import (
    VECTOR_EXTENSIONS,
    build_shoreline_path,
    build_water_mask_path,
)

if TYPE_CHECKING:
    from shoreline_satellite.models.aoi import AreaOfInterest
    from shoreline_satellite.models.shoreline import ShorelineProducts

logger = logging.getLogger("shoreline_satellite.activities.export_products")

DEFAULT_VECTOR_DRIVER = "GeoJSON"

SHORELINE_SCHEMA: dict[str, Any] = {
    "geometry": "LineString",
    "properties": {
        "coastal": "int",
        "sensor": "str",
        "method": "str",
        "timestamp": "str",
        "length_m": "float",
        "partial": "int",
        "dropped": "str",
    },
}

TAG_SENSOR = "SENSOR"
TAG_METHOD = "METHOD"
TAG_THRESHOLD = "THRESHOLD"
TAG_THRESHOLDS = "THRESHOLDS"
TAG_COARSEN_FACTOR = "COARSEN_FACTOR"


class ExportError(PipelineError):
    """Raised when a product cannot be written or read back."""

    default_stage = "export"
    default_code = "EXPORT_FAILED"


# ---------------------------------------------------------------------------
# Shoreline vector
# ---------------------------------------------------------------------------


def export_shoreline(
    feature_set: ShorelineFeatureSet,
    path: Path | str,
    *,
    driver: str = DEFAULT_VECTOR_DRIVER,
) -> Path:
    """Write *feature_set* to *path* with the given fiona *driver*.

    Raises:
        ExportError: On unsupported drivers or write failures.
    """
    path = Path(path)
    if driver not in VECTOR_EXTENSIONS:
        msg = f"Unsupported vector driver {driver!r}"
        raise ExportError(msg, context={"path": str(path)})
    if not feature_set.crs:
        msg = "Shoreline feature set has no CRS"
        raise ExportError(msg, context={"path": str(path)})
    if feature_set.partial and not len(feature_set):
        # No record to carry the partial flag.
        msg = "Cannot export an empty partial shoreline"
        raise ExportError(
            msg,
            context={"path": str(path), "dropped_tiles": list(feature_set.dropped_tiles)},
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with fiona.open(
            str(path),
            "w",
            driver=driver,
            schema=SHORELINE_SCHEMA,
            crs=feature_set.crs,
        ) as sink:
            sink.writerecords(_to_record(f, feature_set) for f in feature_set)
    except (FionaError, OSError) as exc:
        msg = f"Failed to write shoreline to {path}: {exc}"
        raise ExportError(msg, context={"path": str(path), "driver": driver}) from exc

    logger.info(
        "Shoreline exported | path=%s | driver=%s | features=%d | length=%.1f m | "
        "partial=%s",
        path,
        driver,
        len(feature_set),
        feature_set.total_length_m,
        feature_set.partial,
    )
    return path


def read_shoreline(path: Path | str) -> ShorelineFeatureSet:
    """Read a shoreline vector written by ``export_shoreline``."""
    path = Path(path)
    try:
        with fiona.open(str(path)) as source:
            crs = source.crs.to_string() if source.crs else ""
            records = list(source)
    except (FionaError, OSError) as exc:
        msg = f"Failed to read shoreline from {path}: {exc}"
        raise ExportError(msg, context={"path": str(path)}) from exc
    features = tuple(_from_record(record) for record in records)
    partial = any(record.properties.get("partial") for record in records)
    dropped: set[int] = set()
    for record in records:
        dropped.update(_parse_dropped(record.properties.get("dropped")))
    return ShorelineFeatureSet(
        features=features,
        crs=crs,
        partial=partial or bool(dropped),
        dropped_tiles=tuple(sorted(dropped)),
    )


def _to_record(feature: ShorelineFeature, feature_set: ShorelineFeatureSet) -> dict[str, Any]:
    properties = feature.properties()
    properties["coastal"] = int(feature.coastal)
    properties["partial"] = int(feature_set.partial)
    properties["dropped"] = ",".join(str(i) for i in feature_set.dropped_tiles)
    return {"geometry": mapping(feature.geometry), "properties": properties}


def _from_record(record: Any) -> ShorelineFeature:
    properties = dict(record.properties)
    timestamp = datetime.fromisoformat(str(properties["timestamp"]))
    return ShorelineFeature(
        geometry=shape(record.geometry),
        coastal=bool(properties["coastal"]),
        sensor=Sensor(properties["sensor"]),
        method=str(properties["method"]),
        timestamp=timestamp,
    )


def _parse_dropped(value: Any) -> list[int]:
    if not value:
        return []
    return [int(part) for part in str(value).split(",") if part.strip()]


# ---------------------------------------------------------------------------
# Water mask raster
# ---------------------------------------------------------------------------


def export_water_mask(mask: CleanedMask, path: Path | str) -> Path:
    """Write *mask* as a single-band ``uint8`` GeoTIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows, cols = mask.shape
    profile = {
        "driver": "GTiff",
        "height": rows,
        "width": cols,
        "count": 1,
        "dtype": "uint8",
        "crs": mask.crs,
        "transform": mask.transform,
        "compress": "deflate",
    }
    tags = {
        TAG_SENSOR: mask.sensor.value,
        TAG_METHOD: mask.method,
        TAG_THRESHOLDS: json.dumps(
            {k: float(v) for k, v in mask.thresholds.items()}, sort_keys=True
        ),
        TAG_COARSEN_FACTOR: str(mask.coarsen_factor),
    }
    if mask.threshold is not None:
        tags[TAG_THRESHOLD] = str(float(mask.threshold))

    try:
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(mask.data.astype(np.uint8), 1)
            dst.update_tags(**tags)
            dst.set_band_description(1, "water")
    except (RasterioError, OSError) as exc:
        msg = f"Failed to write water mask to {path}: {exc}"
        raise ExportError(msg, context={"path": str(path)}) from exc

    logger.info(
        "Water mask exported | path=%s | shape=%dx%d | water_pixels=%d",
        path,
        rows,
        cols,
        mask.water_pixels,
    )
    return path


def read_water_mask(path: Path | str) -> CleanedMask:
    """Read a water mask written by ``export_water_mask``."""
    path = Path(path)
    try:
        with rasterio.open(path) as src:
            data = src.read(1) == 1
            tags = src.tags()
            transform = src.transform
            crs = src.crs.to_string() if src.crs else ""
    except (RasterioError, OSError) as exc:
        msg = f"Failed to read water mask from {path}: {exc}"
        raise ExportError(msg, context={"path": str(path)}) from exc

    threshold = tags.get(TAG_THRESHOLD)
    return CleanedMask(
        data=data,
        transform=transform,
        crs=crs,
        sensor=Sensor(tags[TAG_SENSOR]),
        method=tags.get(TAG_METHOD, ""),
        threshold=float(threshold) if threshold is not None else None,
        thresholds=json.loads(tags.get(TAG_THRESHOLDS, "{}")),
        coarsen_factor=int(tags.get(TAG_COARSEN_FACTOR, "1")),
    )


# ---------------------------------------------------------------------------
# Both products
# ---------------------------------------------------------------------------


def export_products(
    products: ShorelineProducts,
    aoi: AreaOfInterest,
    out_dir: Path | str,
    *,
    timestamp: datetime | None = None,
    driver: str = DEFAULT_VECTOR_DRIVER,
) -> dict[str, str]:
    """Write both products of a run under *out_dir*.

    Returns:
        ``{"shoreline": path, "water_mask": path}``.
    """
    out_dir = Path(out_dir)
    ts = timestamp or datetime.now(UTC)
    sensor = products.water_mask.sensor.value

    shoreline_path = out_dir / build_shoreline_path(aoi.name, sensor, timestamp=ts, driver=driver)
    mask_path = out_dir / build_water_mask_path(aoi.name, sensor, timestamp=ts)

    export_shoreline(products.shoreline, shoreline_path, driver=driver)
    export_water_mask(products.water_mask, mask_path)
    return {"shoreline": str(shoreline_path), "water_mask": str(mask_path)}
