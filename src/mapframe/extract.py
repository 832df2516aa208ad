"""Normalize any geography source shape into features plus mesh geometry."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from .models import ExtractionResult, Feature, MeshResult
from .topology import borders_filter, first_object, mesh, outline_filter, to_features

_LOGGER = logging.getLogger("mapframe.extract")

ParseFn = Callable[[list[Feature]], Sequence[Feature]]

_DECODE_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


def source_kind(data: Any) -> str:
    """Classify parsed data as `topology`, `collection`, `features`, or `unknown`."""
    if isinstance(data, list):
        return "features"
    if isinstance(data, Mapping):
        if data.get("type") == "Topology" or "objects" in data:
            return "topology"
        if data.get("type") == "FeatureCollection" or "features" in data:
            return "collection"
    return "unknown"


def _topology_mesh(topology: Mapping[str, Any], obj: Mapping[str, Any]) -> MeshResult | None:
    try:
        return MeshResult(
            outline=mesh(topology, obj, outline_filter),
            borders=mesh(topology, obj, borders_filter),
        )
    except _DECODE_ERRORS as exc:
        _LOGGER.warning("Could not derive mesh from topology: %s", exc)
        return None


def _from_topology(topology: Mapping[str, Any]) -> tuple[list[Feature], MeshResult | None]:
    obj = first_object(topology)
    if obj is None:
        return [], None
    try:
        features = to_features(topology, obj)
    except _DECODE_ERRORS as exc:
        _LOGGER.warning("Could not decode topology object: %s", exc)
        features = []
    return features, _topology_mesh(topology, obj)


def _only_features(items: Any) -> list[Feature]:
    if not isinstance(items, list):
        return []
    features = [item for item in items if isinstance(item, Mapping)]
    dropped = len(items) - len(features)
    if dropped:
        _LOGGER.warning("Dropped %d non-object entries from feature list", dropped)
    return features


def extract(data: Any, parse: ParseFn | None = None) -> ExtractionResult:
    """Canonical feature list and, for topologies, outline/borders mesh.

    Malformed input degrades to whatever could be decoded; it never raises.
    `parse` receives the full feature list last.
    """
    kind = source_kind(data)
    mesh_result: MeshResult | None = None
    if kind == "topology":
        features, mesh_result = _from_topology(data)
    elif kind == "collection":
        features = _only_features(data.get("features"))
    elif kind == "features":
        features = _only_features(data)
    else:
        _LOGGER.warning("Unrecognized geography data; expected Topology, FeatureCollection or list")
        features = []

    if parse is not None:
        features = list(parse(features))
    return ExtractionResult(features=tuple(features), mesh=mesh_result)
