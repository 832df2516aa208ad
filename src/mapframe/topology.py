"""TopoJSON decoding: quantized arcs to GeoJSON features and line meshes."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from .models import Feature, Topology

_LOGGER = logging.getLogger("mapframe.topology")

Position = list[float]
GeometryFilter = Callable[[Mapping[str, Any], Mapping[str, Any]], bool]


class ArcDecoder:
    """Decode a topology's shared arcs once, applying the quantization transform."""

    def __init__(self, topology: Topology) -> None:
        transform = topology.get("transform")
        if isinstance(transform, Mapping):
            sx, sy = (float(v) for v in transform["scale"])
            tx, ty = (float(v) for v in transform["translate"])
            self._transform: tuple[float, float, float, float] | None = (sx, sy, tx, ty)
        else:
            self._transform = None
        raw_arcs = topology.get("arcs") or []
        self.arcs: list[list[Position]] = [self._decode_arc(arc) for arc in raw_arcs]

    def point(self, position: Sequence[float]) -> Position:
        """Transform an absolute (non delta-encoded) position."""
        if self._transform is None:
            return [float(v) for v in position]
        sx, sy, tx, ty = self._transform
        return [position[0] * sx + tx, position[1] * sy + ty, *position[2:]]

    def _decode_arc(self, arc: Sequence[Sequence[float]]) -> list[Position]:
        if self._transform is None:
            return [[float(v) for v in p] for p in arc]
        sx, sy, tx, ty = self._transform
        x = y = 0.0
        out: list[Position] = []
        for p in arc:
            x += p[0]
            y += p[1]
            out.append([x * sx + tx, y * sy + ty, *p[2:]])
        return out

    def arc(self, index: int) -> list[Position]:
        """Arc by signed index; negative indices (~i) are reversed."""
        if index < 0:
            return list(reversed(self.arcs[~index]))
        return list(self.arcs[index])

    def line(self, indices: Sequence[int]) -> list[Position]:
        points: list[Position] = []
        for index in indices:
            # Consecutive arcs share their joining point.
            if points:
                points.pop()
            points.extend(self.arc(index))
        if len(points) < 2 and points:
            points.append(list(points[0]))
        return points

    def ring(self, indices: Sequence[int]) -> list[Position]:
        points = self.line(indices)
        while points and len(points) < 4:
            points.append(list(points[0]))
        return points

    def geometry(self, obj: Mapping[str, Any]) -> dict[str, Any] | None:
        kind = obj.get("type")
        if kind is None:
            return None
        if kind == "GeometryCollection":
            return {
                "type": "GeometryCollection",
                "geometries": [
                    geom
                    for geom in (self.geometry(member) for member in obj.get("geometries") or [])
                    if geom is not None
                ],
            }
        if kind == "Point":
            coordinates: Any = self.point(obj["coordinates"])
        elif kind == "MultiPoint":
            coordinates = [self.point(p) for p in obj["coordinates"]]
        elif kind == "LineString":
            coordinates = self.line(obj["arcs"])
        elif kind == "MultiLineString":
            coordinates = [self.line(arcs) for arcs in obj["arcs"]]
        elif kind == "Polygon":
            coordinates = [self.ring(arcs) for arcs in obj["arcs"]]
        elif kind == "MultiPolygon":
            coordinates = [[self.ring(arcs) for arcs in polygon] for polygon in obj["arcs"]]
        else:
            raise ValueError(f"Unsupported topology geometry type: {kind}")
        return {"type": kind, "coordinates": coordinates}


def _as_feature(decoder: ArcDecoder, obj: Mapping[str, Any]) -> Feature:
    out: Feature = {"type": "Feature"}
    if obj.get("id") is not None:
        out["id"] = obj["id"]
    props = obj.get("properties")
    out["properties"] = dict(props) if isinstance(props, Mapping) else {}
    out["geometry"] = decoder.geometry(obj)
    return out


def to_features(topology: Topology, obj: Mapping[str, Any]) -> list[Feature]:
    """Convert one topology object to features.

    A GeometryCollection yields one feature per member; members that fail to
    decode are skipped with a warning. Any other object yields one feature.
    """
    decoder = ArcDecoder(topology)
    if obj.get("type") != "GeometryCollection":
        return [_as_feature(decoder, obj)]
    features: list[Feature] = []
    for idx, member in enumerate(obj.get("geometries") or []):
        try:
            features.append(_as_feature(decoder, member))
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            _LOGGER.warning("Skipping undecodable geometry %d: %s", idx, exc)
    return features


def _collect_arc_owners(
    obj: Mapping[str, Any],
    owners: dict[int, list[Mapping[str, Any]]],
    order: list[int],
) -> None:
    def walk_arcs(arcs: Any, geom: Mapping[str, Any]) -> None:
        if isinstance(arcs, int):
            index = ~arcs if arcs < 0 else arcs
            if index not in owners:
                owners[index] = []
                order.append(index)
            owners[index].append(geom)
            return
        for item in arcs:
            walk_arcs(item, geom)

    def walk(geom: Mapping[str, Any]) -> None:
        if geom.get("type") == "GeometryCollection":
            for member in geom.get("geometries") or []:
                walk(member)
        elif "arcs" in geom:
            walk_arcs(geom["arcs"], geom)

    walk(obj)


def mesh(
    topology: Topology,
    obj: Mapping[str, Any],
    geometry_filter: GeometryFilter | None = None,
) -> dict[str, Any]:
    """MultiLineString of the arcs of `obj` selected by `geometry_filter`.

    The filter receives the first and last geometry referencing each arc;
    an arc referenced by one geometry only is passed that geometry twice.
    Without a filter every arc is kept.
    """
    decoder = ArcDecoder(topology)
    owners: dict[int, list[Mapping[str, Any]]] = {}
    order: list[int] = []
    _collect_arc_owners(obj, owners, order)
    lines: list[list[Position]] = []
    for index in order:
        geoms = owners[index]
        if geometry_filter is None or geometry_filter(geoms[0], geoms[-1]):
            lines.append(decoder.arc(index))
    return {"type": "MultiLineString", "coordinates": lines}


def outline_filter(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
    return a is b


def borders_filter(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
    return a is not b


def first_object(topology: Topology) -> Mapping[str, Any] | None:
    """First geometry object in the topology's own key order."""
    objects = topology.get("objects")
    if not isinstance(objects, Mapping) or not objects:
        return None
    first = next(iter(objects.values()))
    return first if isinstance(first, Mapping) else None
