"""SVG path generation for GeoJSON geometry through a projection."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Mapping, Sequence

from .cache import function_identity
from .models import Feature, MeshResult, PreparedFeature, PreparedGeography

_LOGGER = logging.getLogger("mapframe.paths")

Point = tuple[float, float]
PathFn = Callable[[Any], "str | None"]

DEFAULT_POINT_RADIUS = 4.5


def fmt(value: float) -> str:
    text = f"{value:.3f}"
    text = text.rstrip("0").rstrip(".")
    if text == "-0":
        return "0"
    return text


def _is_finite_point(point: Sequence[float] | None) -> bool:
    return point is not None and len(point) >= 2 and math.isfinite(point[0]) and math.isfinite(point[1])


class PathGenerator:
    """Turn a GeoJSON geometry or feature into an SVG path string.

    Vertices that do not project to finite values break the current line, as
    do jumps wider than half the projected world width (antimeridian wraps).
    Points are drawn as small circles.
    """

    def __init__(
        self,
        projection: Any,
        *,
        point_radius: float = DEFAULT_POINT_RADIUS,
        identity: str | None = None,
    ) -> None:
        self.projection = projection
        self.point_radius = point_radius
        base = identity or getattr(projection, "identity", None) or function_identity(projection)
        self.cache_identity = f"path:{base}"
        world_width = getattr(projection, "world_width", None)
        self._jump_threshold = world_width / 2.0 if world_width and math.isfinite(world_width) else None

    def __call__(self, obj: Any) -> str | None:
        if not isinstance(obj, Mapping):
            return None
        parts: list[str] = []
        if obj.get("type") == "Feature":
            self._geometry(obj.get("geometry"), parts)
        elif obj.get("type") == "FeatureCollection":
            for item in obj.get("features") or []:
                if isinstance(item, Mapping):
                    self._geometry(item.get("geometry"), parts)
        else:
            self._geometry(obj, parts)
        return "".join(parts) or None

    def _project_all(self, coords: Sequence[Sequence[float]]) -> list[Point | None]:
        many = getattr(self.projection, "project_many", None)
        if many is not None:
            return many(coords)
        out: list[Point | None] = []
        for coord in coords:
            try:
                out.append(self.projection((coord[0], coord[1])))
            except (TypeError, ValueError, IndexError, ZeroDivisionError, OverflowError):
                out.append(None)
        return out

    def _geometry(self, geometry: Any, parts: list[str]) -> None:
        if not isinstance(geometry, Mapping):
            return
        kind = geometry.get("type")
        coords = geometry.get("coordinates")
        try:
            if kind == "Point":
                self._points([coords], parts)
            elif kind == "MultiPoint":
                self._points(coords, parts)
            elif kind == "LineString":
                self._line(coords, parts, closed=False)
            elif kind == "MultiLineString":
                for line in coords:
                    self._line(line, parts, closed=False)
            elif kind == "Polygon":
                for ring in coords:
                    self._line(ring, parts, closed=True)
            elif kind == "MultiPolygon":
                for polygon in coords:
                    for ring in polygon:
                        self._line(ring, parts, closed=True)
            elif kind == "GeometryCollection":
                for member in geometry.get("geometries") or []:
                    self._geometry(member, parts)
        except (TypeError, IndexError) as exc:
            _LOGGER.debug("Skipping malformed %s geometry: %s", kind, exc)

    def _points(self, coords: Sequence[Sequence[float]], parts: list[str]) -> None:
        r = self.point_radius
        circle = f"m0,{fmt(r)}a{fmt(r)},{fmt(r)} 0 1,1 0,{fmt(-2 * r)}a{fmt(r)},{fmt(r)} 0 1,1 0,{fmt(2 * r)}z"
        for point in self._project_all(coords):
            if _is_finite_point(point):
                parts.append(f"M{fmt(point[0])},{fmt(point[1])}{circle}")

    def _line(self, coords: Sequence[Sequence[float]], parts: list[str], *, closed: bool) -> None:
        if not coords:
            return
        if closed and len(coords) > 1 and list(coords[0][:2]) == list(coords[-1][:2]):
            coords = coords[:-1]
        segments = self._split_segments(self._project_all(coords))
        if not segments:
            return
        unbroken = len(segments) == 1 and len(segments[0]) == len(coords)
        for segment in segments:
            head, *tail = segment
            parts.append(f"M{fmt(head[0])},{fmt(head[1])}")
            parts.extend(f"L{fmt(x)},{fmt(y)}" for x, y in tail)
            if closed and unbroken:
                parts.append("Z")

    def _split_segments(self, projected: Sequence[Point | None]) -> list[list[Point]]:
        segments: list[list[Point]] = []
        current: list[Point] = []
        for point in projected:
            if not _is_finite_point(point):
                if len(current) >= 2:
                    segments.append(current)
                current = []
                continue
            point = (float(point[0]), float(point[1]))
            if current and self._is_large_jump(current[-1], point):
                if len(current) >= 2:
                    segments.append(current)
                current = [point]
                continue
            current.append(point)
        if len(current) >= 2:
            segments.append(current)
        return segments

    def _is_large_jump(self, left: Point, right: Point) -> bool:
        if self._jump_threshold is None:
            return False
        return abs(right[0] - left[0]) > self._jump_threshold


def _path_or_none(path_fn: PathFn, geometry: Any) -> str | None:
    if geometry is None:
        return None
    if isinstance(geometry, Mapping) and not geometry.get("coordinates") and not geometry.get("geometries"):
        return None
    return path_fn(geometry) or None


def prepare(
    features: Sequence[Feature],
    mesh: MeshResult | None,
    path_fn: PathFn,
) -> PreparedGeography:
    """Render features and mesh lines to path strings.

    Features with an empty path are dropped; keys keep the original index.
    """
    prepared: list[PreparedFeature] = []
    for idx, feature in enumerate(features):
        svg_path = path_fn(feature)
        if not svg_path:
            continue
        prepared.append(PreparedFeature(feature=feature, svg_path=svg_path, key=f"geo-{idx}"))
    dropped = len(features) - len(prepared)
    if dropped:
        _LOGGER.debug("Dropped %d features without a renderable path", dropped)

    outline_path = borders_path = None
    if mesh is not None:
        outline_path = _path_or_none(path_fn, mesh.outline)
        borders_path = _path_or_none(path_fn, mesh.borders)
    return PreparedGeography(
        prepared_features=tuple(prepared),
        outline_path=outline_path,
        borders_path=borders_path,
    )
