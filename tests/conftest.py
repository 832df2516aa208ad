"""Shared fixtures for mapframe tests."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from mapframe.cache import CacheManager
from mapframe.config import SecurityConfig
from mapframe.fetch import GeographyFetcher


# ---------------------------------------------------------------------------
# Geography fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def single_polygon_topology() -> dict[str, Any]:
    """One square polygon on one closed arc."""
    return {
        "type": "Topology",
        "objects": {
            "land": {"type": "Polygon", "arcs": [[0]], "properties": {"name": "Square"}},
        },
        "arcs": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]],
    }


@pytest.fixture
def two_region_topology() -> dict[str, Any]:
    """Two adjacent squares sharing the arc x=10 (arc 0)."""
    return {
        "type": "Topology",
        "objects": {
            "regions": {
                "type": "GeometryCollection",
                "geometries": [
                    {"type": "Polygon", "arcs": [[0, 1]], "id": "L", "properties": {"name": "Left"}},
                    {"type": "Polygon", "arcs": [[2, -1]], "id": "R", "properties": {"name": "Right"}},
                ],
            },
            "ignored": {"type": "GeometryCollection", "geometries": []},
        },
        "arcs": [
            [[10, 0], [10, 10]],
            [[10, 10], [0, 10], [0, 0], [10, 0]],
            [[10, 0], [20, 0], [20, 10], [10, 10]],
        ],
    }


@pytest.fixture
def feature_collection() -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": "A",
                "properties": {"name": "Alpha"},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]],
                },
            },
            {
                "type": "Feature",
                "id": "B",
                "properties": {"name": "Bravo"},
                "geometry": {"type": "Point", "coordinates": [5, 5]},
            },
        ],
    }


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

def make_response(
    payload: Any = None,
    *,
    body: bytes | None = None,
    status_code: int = 200,
    reason: str = "OK",
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Build a streamed `requests.Response` stand-in."""
    if body is None:
        body = json.dumps(payload).encode("utf-8")
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = (
        headers if headers is not None else {"Content-Type": "application/json; charset=utf-8"}
    )
    response.iter_content.return_value = [body[i:i + 1024] for i in range(0, len(body), 1024)]
    return response


@pytest.fixture
def session() -> MagicMock:
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def fetcher(session: MagicMock) -> GeographyFetcher:
    return GeographyFetcher(SecurityConfig(), cache=CacheManager(), session=session)


@pytest.fixture
def response_factory():
    return make_response
