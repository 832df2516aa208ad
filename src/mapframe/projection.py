"""Named map projections resolved to pixel-space forward/inverse functions.

Catalog projections use pyproj raw unit-sphere projections. On top of those
this module applies a spherical three-axis rotation and a screen transform:
the map is translated to the viewport center, then shifted so the configured
geographic `center` lands there, and scaled in pixels per unit-sphere radian.
Default scales match the d3-geo projections of the same name, so configs
written for those libraries render at the same size.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Sequence

from .cache import function_identity
from .config import ProjectionConfig
from .errors import ConfigurationError
from .paths import PathGenerator

_LOGGER = logging.getLogger("mapframe.projection")

Point = tuple[float, float]
ProjectionFn = Callable[[Point], "Point | None"]

_EPSILON = 1e-6


class ProjectionName(str, Enum):
    EQUAL_EARTH = "geoEqualEarth"
    MERCATOR = "geoMercator"
    TRANSVERSE_MERCATOR = "geoTransverseMercator"
    EQUIRECTANGULAR = "geoEquirectangular"
    NATURAL_EARTH_1 = "geoNaturalEarth1"
    ORTHOGRAPHIC = "geoOrthographic"
    STEREOGRAPHIC = "geoStereographic"
    GNOMONIC = "geoGnomonic"
    AZIMUTHAL_EQUAL_AREA = "geoAzimuthalEqualArea"
    AZIMUTHAL_EQUIDISTANT = "geoAzimuthalEquidistant"
    CONIC_EQUAL_AREA = "geoConicEqualArea"
    CONIC_CONFORMAL = "geoConicConformal"
    CONIC_EQUIDISTANT = "geoConicEquidistant"
    ALBERS = "geoAlbers"

    @classmethod
    def parse(cls, value: str | ProjectionName) -> ProjectionName:
        try:
            return cls(value)
        except ValueError as exc:
            valid = ", ".join(item.value for item in cls)
            raise ConfigurationError(
                f"Unknown projection: {value}. Valid projections: {valid}",
                cause=exc,
            ) from exc


DEFAULT_PROJECTION = ProjectionName.EQUAL_EARTH


@dataclass(frozen=True, slots=True)
class _CatalogEntry:
    proj: str
    scale: float
    center: Point = (0.0, 0.0)
    rotate: tuple[float, float, float] = (0.0, 0.0, 0.0)
    parallels: Point | None = None
    # Ratio between the d3 raw projection and the PROJ one on the unit sphere.
    raw_factor: float = 1.0

    def proj_string(self, parallels: Point | None) -> str:
        out = f"+proj={self.proj} +R=1"
        if parallels is not None:
            out += f" +lat_1={parallels[0]} +lat_2={parallels[1]}"
        return out


_CATALOG: dict[ProjectionName, _CatalogEntry] = {
    ProjectionName.EQUAL_EARTH: _CatalogEntry("eqearth", 177.158),
    ProjectionName.MERCATOR: _CatalogEntry("merc", 961 / (2 * math.pi)),
    ProjectionName.TRANSVERSE_MERCATOR: _CatalogEntry("tmerc", 159.155),
    ProjectionName.EQUIRECTANGULAR: _CatalogEntry("eqc", 152.63),
    ProjectionName.NATURAL_EARTH_1: _CatalogEntry("natearth", 175.295),
    ProjectionName.ORTHOGRAPHIC: _CatalogEntry("ortho", 249.5),
    ProjectionName.STEREOGRAPHIC: _CatalogEntry("stere +lat_0=0", 250.0, raw_factor=0.5),
    ProjectionName.GNOMONIC: _CatalogEntry("gnom +lat_0=0", 144.049),
    ProjectionName.AZIMUTHAL_EQUAL_AREA: _CatalogEntry("laea", 124.75),
    ProjectionName.AZIMUTHAL_EQUIDISTANT: _CatalogEntry("aeqd", 79.4188),
    ProjectionName.CONIC_EQUAL_AREA: _CatalogEntry(
        "aea", 155.424, center=(0.0, 33.6442), parallels=(0.0, 60.0)
    ),
    ProjectionName.CONIC_CONFORMAL: _CatalogEntry("lcc", 109.5, parallels=(30.0, 30.0)),
    ProjectionName.CONIC_EQUIDISTANT: _CatalogEntry(
        "eqdc", 131.154, center=(0.0, 13.9389), parallels=(0.0, 60.0)
    ),
    ProjectionName.ALBERS: _CatalogEntry(
        "aea",
        1070.0,
        center=(-0.6, 38.7),
        rotate=(96.0, 0.0, 0.0),
        parallels=(29.5, 45.5),
    ),
}


@lru_cache(maxsize=1)
def _require_pyproj_transformer() -> Any:
    try:
        from pyproj import Transformer
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for catalog projections") from exc
    return Transformer


@lru_cache(maxsize=64)
def _raw_transformer(proj_string: str) -> Any:
    transformer_cls = _require_pyproj_transformer()
    pipeline = (
        "+proj=pipeline "
        "+step +proj=unitconvert +xy_in=deg +xy_out=rad "
        f"+step {proj_string}"
    )
    return transformer_cls.from_pipeline(pipeline)


def _wrap_lambda(value: float) -> float:
    if value > math.pi:
        return value - 2 * math.pi
    if value < -math.pi:
        return value + 2 * math.pi
    return value


def _clamped_asin(value: float) -> float:
    return math.asin(max(-1.0, min(1.0, value)))


class SphericalRotation:
    """Rotate the sphere by (λ, φ, γ) degrees before projecting."""

    def __init__(self, rotate: Sequence[float] = (0.0, 0.0, 0.0)) -> None:
        lam, phi, gamma = (list(rotate) + [0.0, 0.0, 0.0])[:3]
        self.degrees = (float(lam), float(phi), float(gamma))
        self._d_lambda = math.radians(lam)
        self._cos_phi = math.cos(math.radians(phi))
        self._sin_phi = math.sin(math.radians(phi))
        self._cos_gamma = math.cos(math.radians(gamma))
        self._sin_gamma = math.sin(math.radians(gamma))
        self._tilted = bool(phi or gamma)

    def forward(self, lam: float, phi: float) -> Point:
        lam = _wrap_lambda(lam + self._d_lambda)
        if not self._tilted:
            return lam, phi
        cos_p = math.cos(phi)
        x = math.cos(lam) * cos_p
        y = math.sin(lam) * cos_p
        z = math.sin(phi)
        k = z * self._cos_phi + x * self._sin_phi
        return (
            math.atan2(y * self._cos_gamma - k * self._sin_gamma, x * self._cos_phi - z * self._sin_phi),
            _clamped_asin(k * self._cos_gamma + y * self._sin_gamma),
        )

    def invert(self, lam: float, phi: float) -> Point:
        if self._tilted:
            cos_p = math.cos(phi)
            x = math.cos(lam) * cos_p
            y = math.sin(lam) * cos_p
            z = math.sin(phi)
            k = z * self._cos_gamma - y * self._sin_gamma
            lam = math.atan2(y * self._cos_gamma + z * self._sin_gamma, x * self._cos_phi + k * self._sin_phi)
            phi = _clamped_asin(k * self._cos_phi - x * self._sin_phi)
        return _wrap_lambda(lam - self._d_lambda), phi


def _finite_or_none(x: float, y: float) -> Point | None:
    if math.isfinite(x) and math.isfinite(y):
        return (float(x), float(y))
    return None


class CatalogProjection:
    """Forward/inverse pixel projection for one catalog entry and config."""

    def __init__(
        self,
        name: ProjectionName,
        width: float,
        height: float,
        config: ProjectionConfig,
    ) -> None:
        entry = _CATALOG[name]
        self.name = name
        self.translate: Point = (width / 2.0, height / 2.0)
        center = entry.center
        rotate = entry.rotate
        scale = entry.scale
        parallels = entry.parallels
        if config.center is not None:
            center = config.center
        if config.rotate is not None:
            rotate = config.rotate
        if config.scale is not None:
            scale = config.scale
        if config.parallels is not None:
            if parallels is None:
                _LOGGER.warning("Projection %s has no standard parallels; ignoring parallels", name.value)
            else:
                parallels = config.parallels
        self.center: Point = (float(center[0]), float(center[1]))
        self.rotation = SphericalRotation(rotate)
        self.scale = float(scale)
        self.parallels = parallels
        self._raw_factor = entry.raw_factor
        self._transformer = _raw_transformer(entry.proj_string(parallels))

        cx, cy = self._raw(*self.center)
        if not (math.isfinite(cx) and math.isfinite(cy)):
            raise ConfigurationError(f"Projection center {self.center} is outside the {name.value} domain")
        self._x0 = self.translate[0] - self.scale * cx
        self._y0 = self.translate[1] + self.scale * cy

    def _raw(self, lon: float, lat: float) -> Point:
        x, y = self._transformer.transform(lon, lat)
        return x * self._raw_factor, y * self._raw_factor

    def _rotated(self, lon: float, lat: float) -> Point:
        lam, phi = self.rotation.forward(math.radians(lon), math.radians(lat))
        return math.degrees(lam), math.degrees(phi)

    def __call__(self, coordinates: Sequence[float]) -> Point | None:
        lon, lat = self._rotated(float(coordinates[0]), float(coordinates[1]))
        x, y = self._raw(lon, lat)
        return _finite_or_none(self._x0 + self.scale * x, self._y0 - self.scale * y)

    def project_many(self, coordinates: Sequence[Sequence[float]]) -> list[Point | None]:
        if not coordinates:
            return []
        rotated = [self._rotated(float(c[0]), float(c[1])) for c in coordinates]
        xs, ys = self._transformer.transform([p[0] for p in rotated], [p[1] for p in rotated])
        f = self._raw_factor
        return [
            _finite_or_none(self._x0 + self.scale * x * f, self._y0 - self.scale * y * f)
            for x, y in zip(xs, ys)
        ]

    def invert(self, point: Sequence[float]) -> Point | None:
        px = (float(point[0]) - self._x0) / self.scale / self._raw_factor
        py = (self._y0 - float(point[1])) / self.scale / self._raw_factor
        lon, lat = self._transformer.transform(px, py, direction="INVERSE")
        if not (math.isfinite(lon) and math.isfinite(lat)):
            return None
        lam, phi = self.rotation.invert(math.radians(lon), math.radians(lat))
        return (math.degrees(lam), math.degrees(phi))

    @property
    def world_width(self) -> float | None:
        """Projected pixel width of the equator, when the projection has one."""
        east, _ = self._raw(180.0 - _EPSILON, 0.0)
        west, _ = self._raw(-180.0 + _EPSILON, 0.0)
        width = abs(east - west) * self.scale
        return width if math.isfinite(width) and width > 0 else None


@dataclass(frozen=True)
class ResolvedProjection:
    """A projection bound to a viewport size, plus its path generator."""

    projection: Any
    identity: str
    width: float
    height: float
    name: ProjectionName | None = None
    path: PathGenerator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", PathGenerator(self.projection, identity=self.identity))

    def project(self, coordinates: Sequence[float]) -> Point | None:
        out = self.projection((coordinates[0], coordinates[1]))
        if out is None:
            return None
        return _finite_or_none(float(out[0]), float(out[1]))

    def invert(self, point: Sequence[float]) -> Point | None:
        inverse = getattr(self.projection, "invert", None)
        if inverse is None:
            return None
        out = inverse((point[0], point[1]))
        if out is None:
            return None
        return _finite_or_none(float(out[0]), float(out[1]))


def _check_dimensions(width: float, height: float) -> None:
    for label, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"Map {label} must be a number, got {value!r}")
        if not math.isfinite(value) or value <= 0:
            raise ConfigurationError(f"Map {label} must be a finite number > 0, got {value}")


@lru_cache(maxsize=64)
def _resolve_catalog(
    name: ProjectionName,
    width: float,
    height: float,
    config: ProjectionConfig,
) -> ResolvedProjection:
    projection = CatalogProjection(name, width, height, config)
    identity = f"{name.value}:{width}x{height}:{config.cache_key()}"
    _LOGGER.debug("Resolved projection %s", identity)
    return ResolvedProjection(
        projection=projection,
        identity=identity,
        width=width,
        height=height,
        name=name,
    )


def resolve_projection(
    projection: str | ProjectionName | ProjectionFn | None = None,
    width: float = 800,
    height: float = 600,
    config: ProjectionConfig | None = None,
) -> ResolvedProjection:
    """Resolve a catalog name or a custom projection callable.

    Custom callables are used as-is; `config` only applies to catalog names.
    Identical arguments return the same memoized object.
    """
    _check_dimensions(width, height)
    if projection is None:
        projection = DEFAULT_PROJECTION
    if callable(projection) and not isinstance(projection, (str, ProjectionName)):
        return ResolvedProjection(
            projection=projection,
            identity=f"custom:{function_identity(projection)}:{width}x{height}",
            width=width,
            height=height,
        )
    name = ProjectionName.parse(projection)
    return _resolve_catalog(name, width, height, config or ProjectionConfig())


def available_projections() -> list[str]:
    return [item.value for item in ProjectionName]
