"""Domain models shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

Feature = dict[str, Any]
Topology = Mapping[str, Any]
FeatureCollection = Mapping[str, Any]
GeographySource = Union[str, Mapping[str, Any], Sequence[Feature]]


def _finite(value: float, field_name: str) -> float:
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"Expected finite number for '{field_name}'")
    return out


@dataclass(frozen=True, slots=True)
class MeshResult:
    """Outline and border line geometry derived from a topology."""

    outline: Mapping[str, Any] | None
    borders: Mapping[str, Any] | None


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    features: tuple[Feature, ...]
    mesh: MeshResult | None = None


@dataclass(frozen=True, slots=True)
class PreparedFeature:
    """Feature plus its rendered path; valid for one projection identity."""

    feature: Feature
    svg_path: str
    key: str

    @property
    def properties(self) -> Mapping[str, Any]:
        props = self.feature.get("properties")
        return props if isinstance(props, Mapping) else {}

    @property
    def id(self) -> Any:
        return self.feature.get("id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "id": self.id,
            "properties": dict(self.properties),
            "svg_path": self.svg_path,
        }


@dataclass(frozen=True, slots=True)
class PreparedGeography:
    prepared_features: tuple[PreparedFeature, ...]
    outline_path: str | None = None
    borders_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "geographies": [item.to_dict() for item in self.prepared_features],
        }
        if self.outline_path is not None:
            payload["outline"] = self.outline_path
        if self.borders_path is not None:
            payload["borders"] = self.borders_path
        return payload


@dataclass(frozen=True, slots=True)
class ZoomPanState:
    """Pixel-space translation and scale."""

    x: float = 0.0
    y: float = 0.0
    k: float = 1.0

    @property
    def transform_string(self) -> str:
        return f"translate({self.x} {self.y}) scale({self.k})"

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.k))


@dataclass(frozen=True, slots=True)
class Position:
    """Caller-facing geographic viewport position."""

    coordinates: tuple[float, float]
    zoom: float = 1.0

    @classmethod
    def create(cls, lon: float, lat: float, zoom: float = 1.0) -> Position:
        return cls(
            coordinates=(_finite(lon, "coordinates[0]"), _finite(lat, "coordinates[1]")),
            zoom=_finite(zoom, "zoom"),
        )


@dataclass(frozen=True, slots=True)
class LoadResult:
    """Outcome of one geography pipeline run: data or a typed error, never both."""

    geography: PreparedGeography | None = None
    features: tuple[Feature, ...] = ()
    error: Exception | None = None
    attempt: int = 1
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None
