"""Small geographic helpers: centroids, bounds, distances, coordinate hygiene."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Mapping, Sequence

_LOGGER = logging.getLogger("mapframe.geo_utils")

EARTH_RADIUS_KM = 6371.0

Coordinates = tuple[float, float]


def is_valid_coordinates(value: Any) -> bool:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return False
    lon, lat = value
    for item in (lon, lat):
        if isinstance(item, bool) or not isinstance(item, (int, float)) or not math.isfinite(item):
            return False
    return abs(lon) <= 180 and abs(lat) <= 90


def normalize_longitude(lon: float) -> float:
    while lon > 180:
        lon -= 360
    while lon < -180:
        lon += 360
    return lon


def normalize_latitude(lat: float) -> float:
    return max(-90.0, min(90.0, lat))


def normalize_coordinates(lon: float, lat: float) -> Coordinates:
    return (normalize_longitude(float(lon)), normalize_latitude(float(lat)))


def haversine_km(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance between two (lon, lat) points in kilometers."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def mean_center(points: Sequence[Sequence[float]]) -> Coordinates:
    if not points:
        return (0.0, 0.0)
    return (
        sum(p[0] for p in points) / len(points),
        sum(p[1] for p in points) / len(points),
    )


def coordinate_bounds(points: Sequence[Sequence[float]]) -> tuple[float, float, float, float]:
    """(min_lon, min_lat, max_lon, max_lat); all zeros for no points."""
    if not points:
        return (0.0, 0.0, 0.0, 0.0)
    lons = [p[0] for p in points]
    lats = [p[1] for p in points]
    return (min(lons), min(lats), max(lons), max(lats))


def _geometry_of(feature: Any) -> Mapping[str, Any] | None:
    if not isinstance(feature, Mapping):
        return None
    geometry = feature.get("geometry") if feature.get("type") == "Feature" else feature
    return geometry if isinstance(geometry, Mapping) else None


def _to_shape(feature: Any) -> Any | None:
    geometry = _geometry_of(feature)
    if geometry is None:
        return None
    shape, geos_error = _require_shapely_shape()
    try:
        geom = shape(geometry)
    except (geos_error, AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
        _LOGGER.debug("Cannot build geometry for %s: %s", geometry.get("type"), exc)
        return None
    if geom.is_empty:
        return None
    return geom


def geography_centroid(feature: Any) -> Coordinates | None:
    """Planar centroid of a feature's geometry in lon/lat degrees."""
    geom = _to_shape(feature)
    if geom is None:
        return None
    point = geom.centroid
    coords = (float(point.x), float(point.y))
    return coords if is_valid_coordinates(coords) else None


def geography_bounds(feature: Any) -> tuple[Coordinates, Coordinates] | None:
    """((west, south), (east, north)) of a feature's geometry."""
    geom = _to_shape(feature)
    if geom is None:
        return None
    min_x, min_y, max_x, max_y = (float(v) for v in geom.bounds)
    southwest, northeast = (min_x, min_y), (max_x, max_y)
    if not (is_valid_coordinates(southwest) and is_valid_coordinates(northeast)):
        return None
    return (southwest, northeast)


def first_coordinates(feature: Any) -> Coordinates | None:
    """First vertex of a feature's geometry, descending into nested rings."""
    geometry = _geometry_of(feature)
    if geometry is None:
        return None
    if geometry.get("type") == "GeometryCollection":
        for member in geometry.get("geometries") or []:
            found = first_coordinates(member)
            if found is not None:
                return found
        return None
    node: Any = geometry.get("coordinates")
    while isinstance(node, (list, tuple)) and node and isinstance(node[0], (list, tuple)):
        node = node[0]
    if isinstance(node, (list, tuple)) and len(node) >= 2:
        candidate = (node[0], node[1])
        if is_valid_coordinates(candidate):
            return (float(candidate[0]), float(candidate[1]))
    return None


def best_coordinates(feature: Any) -> Coordinates | None:
    """Centroid when available, otherwise the first vertex."""
    return geography_centroid(feature) or first_coordinates(feature)


@lru_cache(maxsize=1)
def _require_shapely_shape() -> tuple[Any, type[Exception]]:
    try:
        from shapely.errors import GEOSException
        from shapely.geometry import shape
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for centroid and bounds helpers") from exc
    return (shape, GEOSException)
