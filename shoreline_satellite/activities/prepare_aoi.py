"""AOI preparation activity.

Builds an ``AreaOfInterest`` from a polygon (WGS 84 or projected) or from
a vector file, and pairs it with a local UTM projection so every later
metric operation (buffers, corridors, rasterization) happens in metres,
never in degrees.

Supported inputs:
- shapely ``Polygon`` / ``MultiPolygon`` or a GeoJSON-like mapping
- GeoJSON, Shapefile or GeoPackage files (fiona)
- KML files (fiona KML driver, with an lxml fallback)

Multi-feature files are dissolved into one AOI.  Slightly invalid
polygons (bow-ties, touching rings) are repaired with ``make_valid``;
anything that does not repair to a polygon is rejected with ``AOIError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pyproj import CRS, Transformer
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.ops import transform as shapely_transform
from shapely.ops import unary_union
from shapely.validation import make_valid

from shoreline_satellite.models.aoi import AOIError, AreaOfInterest

if TYPE_CHECKING:
    from collections.abc import Mapping

    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger("shoreline_satellite.activities.prepare_aoi")

WGS84 = "EPSG:4326"
KML_NAMESPACE = "http://www.opengis.net/kml/2.2"
KML_SUFFIXES = frozenset({".kml"})

# WGS 84 coordinate bounds
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0
MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def prepare_aoi(
    geometry: BaseGeometry | Mapping[str, Any],
    *,
    name: str = "aoi",
    crs: str = WGS84,
    source_file: str = "",
) -> AreaOfInterest:
    """Build an ``AreaOfInterest`` from *geometry* expressed in *crs*.

    A geographic input is projected to the UTM zone of its centroid.  A
    projected input keeps its own CRS as the working projection.

    Raises:
        AOIError: If the geometry is empty, not polygonal, out of WGS 84
            bounds, or cannot be repaired.
    """
    geom = _repair(_as_polygonal(geometry, name), name)
    source_crs = CRS.from_user_input(crs)

    if source_crs.is_geographic:
        wgs84 = _project(geom, source_crs, WGS84) if source_crs.to_epsg() != 4326 else geom
        _validate_wgs84_bounds(wgs84, name)
        centroid = wgs84.centroid
        working_crs = _get_utm_crs(centroid.x, centroid.y)
        projected = _project(wgs84, WGS84, working_crs)
    else:
        projected = geom
        working_crs = _crs_string(source_crs)
        wgs84 = _project(geom, working_crs, WGS84)

    aoi = AreaOfInterest(
        name=name,
        geometry=_repair(wgs84, name),
        projected=_repair(projected, name),
        crs=working_crs,
        source_file=source_file,
    )
    logger.info(
        "AOI prepared | aoi=%s | crs=%s | area=%.1f m2 | bounds=[%.5f, %.5f, %.5f, %.5f] | "
        "source=%s",
        aoi.name,
        aoi.crs,
        aoi.area_m2,
        *aoi.bounds,
        source_file or "-",
    )
    return aoi


def load_aoi(path: Path | str, *, name: str = "", layer: str | None = None) -> AreaOfInterest:
    """Load and dissolve the polygon features of a vector file into one AOI.

    Args:
        path: GeoJSON, Shapefile, GeoPackage or KML file.
        name: AOI name; defaults to the file stem.
        layer: Layer to read from multi-layer sources.

    Raises:
        AOIError: If the file cannot be read or holds no polygon.
    """
    path = Path(path)
    aoi_name = name or path.stem
    logger.info("Loading AOI file: %s", path.name)

    if path.suffix.lower() in KML_SUFFIXES:
        polygons, crs = _read_kml(path), WGS84
    else:
        polygons, crs = _read_with_fiona(path, layer=layer)

    if not polygons:
        msg = f"No polygon features found in {path.name}"
        raise AOIError(msg, context={"source": str(path)})

    dissolved = unary_union(polygons)
    logger.info("Loaded %d polygon(s) from %s", len(polygons), path.name)
    return prepare_aoi(dissolved, name=aoi_name, crs=crs, source_file=path.name)


# ---------------------------------------------------------------------------
# Vector readers
# ---------------------------------------------------------------------------


def _read_with_fiona(path: Path, *, layer: str | None = None) -> tuple[list[Polygon], str]:
    import fiona
    from fiona.errors import FionaError

    try:
        with fiona.open(str(path), layer=layer) as collection:
            crs = _collection_crs(collection)
            polygons: list[Polygon] = []
            for record in collection:
                geom = record.geometry
                if geom is None:
                    continue
                polygons.extend(_polygon_parts(shape(geom)))
    except FionaError as exc:
        msg = f"Cannot read AOI file {path.name}: {exc}"
        raise AOIError(msg, context={"source": str(path)}) from exc
    return polygons, crs


def _collection_crs(collection: Any) -> str:
    crs = getattr(collection, "crs", None)
    if not crs:
        return WGS84
    return _crs_string(CRS.from_user_input(crs))


def _read_kml(path: Path) -> list[Polygon]:
    """Read KML polygons with fiona, falling back to lxml when OGR fails."""
    _validate_kml(path)
    try:
        polygons, _crs = _read_with_fiona(path)
    except AOIError as fiona_err:
        logger.warning(
            "Fiona parse failed for %s, trying lxml fallback: %s", path.name, fiona_err.message
        )
        polygons = _read_kml_with_lxml(path)
    return polygons


def _validate_kml(path: Path) -> None:
    from lxml import etree  # type: ignore[attr-defined]

    try:
        content = path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read KML file: {exc}"
        raise AOIError(msg, context={"source": str(path)}) from exc
    if not content.strip():
        raise AOIError("KML file is empty", context={"source": str(path)})

    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    try:
        root = etree.fromstring(content, parser=parser)
    except etree.XMLSyntaxError as exc:
        msg = f"Not valid XML: {exc}"
        raise AOIError(msg, context={"source": str(path)}) from exc

    tag = root.tag
    if f"{{{KML_NAMESPACE}}}" not in tag and "kml" not in tag.lower():
        msg = f"Not a KML file: root element is <{tag}>"
        raise AOIError(msg, context={"source": str(path)})


def _read_kml_with_lxml(path: Path) -> list[Polygon]:
    from lxml import etree  # type: ignore[attr-defined]

    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    root = etree.fromstring(path.read_bytes(), parser=parser)
    ns = {"kml": KML_NAMESPACE}

    polygons: list[Polygon] = []
    for polygon_elem in root.iterfind(".//kml:Polygon", ns):
        outer = polygon_elem.find("kml:outerBoundaryIs/kml:LinearRing/kml:coordinates", ns)
        if outer is None or not (outer.text or "").strip():
            logger.warning("Skipping KML Polygon without outer boundary in %s", path.name)
            continue
        holes = [
            _parse_coordinates_text(inner.text)
            for inner in polygon_elem.iterfind(
                "kml:innerBoundaryIs/kml:LinearRing/kml:coordinates", ns
            )
            if (inner.text or "").strip()
        ]
        polygons.append(Polygon(_parse_coordinates_text(outer.text), holes=holes or None))
    return polygons


def _parse_coordinates_text(text: str) -> list[tuple[float, float]]:
    """Parse KML ``lon,lat[,alt]`` tuples separated by whitespace."""
    coords: list[tuple[float, float]] = []
    for token in text.split():
        parts = token.split(",")
        if len(parts) < 2:
            continue
        try:
            coords.append((float(parts[0]), float(parts[1])))
        except ValueError as exc:
            msg = f"Malformed KML coordinate {token!r}"
            raise AOIError(msg) from exc
    return coords


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def _as_polygonal(geometry: BaseGeometry | Mapping[str, Any], name: str) -> BaseGeometry:
    geom = geometry if hasattr(geometry, "geom_type") else shape(geometry)
    if geom.is_empty:
        raise AOIError("AOI geometry is empty", context={"aoi": name})
    parts = _polygon_parts(geom)
    if not parts:
        msg = f"AOI must be polygonal, got {geom.geom_type}"
        raise AOIError(msg, context={"aoi": name})
    return parts[0] if len(parts) == 1 else MultiPolygon(parts)


def _polygon_parts(geometry: BaseGeometry) -> list[Polygon]:
    if isinstance(geometry, Polygon):
        return [] if geometry.is_empty else [geometry]
    if isinstance(geometry, MultiPolygon):
        return [p for p in geometry.geoms if not p.is_empty]
    parts: list[Polygon] = []
    for part in getattr(geometry, "geoms", ()):
        parts.extend(_polygon_parts(part))
    return parts


def _repair(geometry: BaseGeometry, name: str) -> BaseGeometry:
    if geometry.is_valid:
        return geometry
    repaired = make_valid(geometry)
    parts = _polygon_parts(repaired)
    if not parts:
        msg = "AOI polygon is invalid and could not be repaired"
        raise AOIError(msg, context={"aoi": name})
    logger.warning("Repaired invalid AOI geometry | aoi=%s | parts=%d", name, len(parts))
    return parts[0] if len(parts) == 1 else MultiPolygon(parts)


def _validate_wgs84_bounds(geometry: BaseGeometry, name: str) -> None:
    min_lon, min_lat, max_lon, max_lat = geometry.bounds
    if min_lon < MIN_LONGITUDE or max_lon > MAX_LONGITUDE:
        msg = f"Longitude out of WGS 84 range [{MIN_LONGITUDE}, {MAX_LONGITUDE}]"
        raise AOIError(msg, context={"aoi": name, "bounds": list(geometry.bounds)})
    if min_lat < MIN_LATITUDE or max_lat > MAX_LATITUDE:
        msg = f"Latitude out of WGS 84 range [{MIN_LATITUDE}, {MAX_LATITUDE}]"
        raise AOIError(msg, context={"aoi": name, "bounds": list(geometry.bounds)})


def _project(geometry: BaseGeometry, src: Any, dst: Any) -> BaseGeometry:
    transformer = Transformer.from_crs(src, dst, always_xy=True)
    return shapely_transform(transformer.transform, geometry)


def _crs_string(crs: CRS) -> str:
    epsg = crs.to_epsg()
    return f"EPSG:{epsg}" if epsg is not None else crs.to_wkt()


def _get_utm_crs(lon: float, lat: float) -> str:
    """Determine the UTM CRS for a given WGS 84 coordinate.

    Returns an EPSG code like ``"EPSG:32610"`` (UTM zone 10N) or
    ``"EPSG:32710"`` (UTM zone 10S).
    """
    # UTM zone number: 1-based, 6 degrees wide, starting at -180
    zone_number = int((lon + 180) / 6) + 1
    zone_number = max(1, min(60, zone_number))

    if lat >= 0:
        return f"EPSG:{32600 + zone_number}"
    return f"EPSG:{32700 + zone_number}"
