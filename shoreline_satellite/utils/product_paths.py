"""Deterministic product path generation.

Output products are laid out as::

    shoreline/{YYYY}/{MM}/{aoi-name}/{sensor}_{YYYYMMDDTHHMMSS}.geojson
    water_mask/{YYYY}/{MM}/{aoi-name}/{sensor}_{YYYYMMDDTHHMMSS}.tif

All path components are sanitised to lowercase slug form: only ``a-z``,
``0-9`` and ``-`` are allowed.  Spaces become hyphens; other characters
are stripped.  The same inputs always produce the same path.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

SHORELINE_PREFIX = "shoreline"
WATER_MASK_PREFIX = "water_mask"

#: Vector driver to file extension.
VECTOR_EXTENSIONS: dict[str, str] = {
    "GeoJSON": "geojson",
    "ESRI Shapefile": "shp",
    "GPKG": "gpkg",
}
RASTER_EXTENSION = "tif"

_SLUG_RE = re.compile(r"[^a-z0-9-]+")


def sanitise_slug(value: str) -> str:
    """Convert a string to a path-safe slug, ``"unknown"`` if nothing is left."""
    slug = value.lower().strip().replace(" ", "-").replace("_", "-")
    slug = _SLUG_RE.sub("", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug if slug else "unknown"


def product_stem(sensor: str, timestamp: datetime) -> str:
    """``{sensor}_{YYYYMMDDTHHMMSS}`` in UTC."""
    ts = timestamp.astimezone(UTC) if timestamp.tzinfo else timestamp
    return f"{sanitise_slug(sensor)}_{ts:%Y%m%dT%H%M%S}"


def build_shoreline_path(
    aoi_name: str,
    sensor: str,
    *,
    timestamp: datetime | None = None,
    driver: str = "GeoJSON",
) -> str:
    """Relative path for a shoreline vector product.

    Raises:
        ValueError: If *driver* is not a supported vector driver.
    """
    try:
        extension = VECTOR_EXTENSIONS[driver]
    except KeyError:
        supported = ", ".join(sorted(VECTOR_EXTENSIONS))
        msg = f"Unsupported vector driver {driver!r}; expected one of: {supported}"
        raise ValueError(msg) from None
    return _build_path(SHORELINE_PREFIX, aoi_name, sensor, extension, timestamp)


def build_water_mask_path(
    aoi_name: str,
    sensor: str,
    *,
    timestamp: datetime | None = None,
) -> str:
    """Relative path for a water mask GeoTIFF."""
    return _build_path(WATER_MASK_PREFIX, aoi_name, sensor, RASTER_EXTENSION, timestamp)


def _build_path(
    prefix: str,
    aoi_name: str,
    sensor: str,
    extension: str,
    timestamp: datetime | None,
) -> str:
    ts = timestamp or datetime.now(UTC)
    if ts.tzinfo:
        ts = ts.astimezone(UTC)
    stem = product_stem(sensor, ts)
    return f"{prefix}/{ts.year:04d}/{ts.month:02d}/{sanitise_slug(aoi_name)}/{stem}.{extension}"
