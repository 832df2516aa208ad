"""Typed configuration loader for `mapframe.yaml`."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

_PRODUCTION = "production"
_DEVELOPMENT = "development"

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_MAX_RESPONSE_SIZE = 50 * 1024 * 1024
DEFAULT_CONTENT_TYPES = ("application/json", "application/geo+json")


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _optional_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    return _mapping(value, field_name)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip().lower() in {"inf", "+inf", "-inf", "infinity", "-infinity"}:
        return float(value.strip())
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _float_tuple(value: Any, field_name: str, size: int) -> tuple[float, ...]:
    if not isinstance(value, (list, tuple)) or len(value) != size:
        raise ValueError(f"Expected list of {size} numbers for '{field_name}'")
    return tuple(_float(item, f"{field_name}[{idx}]") for idx, item in enumerate(value))


def _protocol(value: str) -> str:
    return value.strip().lower().rstrip(":")


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_response_size: int = DEFAULT_MAX_RESPONSE_SIZE
    allowed_content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES
    allowed_protocols: tuple[str, ...] = ("https",)
    allow_http_localhost: bool = False
    strict_https_only: bool = True
    environment: str = _PRODUCTION
    integrity: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.environment == _PRODUCTION

    def integrity_for(self, url: str) -> str | None:
        return self.integrity.get(url)

    @classmethod
    def development(cls, *, allow_http_localhost: bool = True) -> SecurityConfig:
        """Relaxed preset for local development servers."""
        return cls(
            allowed_protocols=("https", "http"),
            allow_http_localhost=allow_http_localhost,
            strict_https_only=False,
            environment=_DEVELOPMENT,
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SecurityConfig:
        defaults = cls()
        timeout_ms = _int(raw.get("timeout_ms", defaults.timeout_ms), "security.timeout_ms")
        max_size = _int(
            raw.get("max_response_size", defaults.max_response_size),
            "security.max_response_size",
        )
        if timeout_ms <= 0:
            raise ValueError("security.timeout_ms must be > 0")
        if max_size <= 0:
            raise ValueError("security.max_response_size must be > 0")

        content_types_raw = raw.get("allowed_content_types")
        content_types = (
            defaults.allowed_content_types
            if content_types_raw is None
            else tuple(
                item.lower()
                for item in _str_list(content_types_raw, "security.allowed_content_types")
            )
        )
        protocols_raw = raw.get("allowed_protocols")
        protocols = (
            defaults.allowed_protocols
            if protocols_raw is None
            else tuple(_protocol(item) for item in _str_list(protocols_raw, "security.allowed_protocols"))
        )

        environment = _str(raw.get("environment", defaults.environment), "security.environment").casefold()
        allowed_envs = {_PRODUCTION, _DEVELOPMENT}
        if environment not in allowed_envs:
            raise ValueError(
                "security.environment must be one of: " + ", ".join(sorted(allowed_envs))
            )

        integrity_raw = _optional_mapping(raw.get("integrity"), "security.integrity")
        integrity = {
            _str(url, "security.integrity key"): _str(pin, f"security.integrity[{url}]")
            for url, pin in integrity_raw.items()
        }

        return cls(
            timeout_ms=timeout_ms,
            max_response_size=max_size,
            allowed_content_types=content_types,
            allowed_protocols=protocols,
            allow_http_localhost=_bool(
                raw.get("allow_http_localhost", defaults.allow_http_localhost),
                "security.allow_http_localhost",
            ),
            strict_https_only=_bool(
                raw.get("strict_https_only", defaults.strict_https_only),
                "security.strict_https_only",
            ),
            environment=environment,
            integrity=integrity,
        )


@dataclass(frozen=True, slots=True)
class ProjectionConfig:
    """Optional projection adjustments; `None` means "leave untouched"."""

    center: tuple[float, float] | None = None
    rotate: tuple[float, float, float] | None = None
    scale: float | None = None
    parallels: tuple[float, float] | None = None

    def __post_init__(self) -> None:
        # Instances key the projection memo, so sequence fields must be hashable.
        for name in ("center", "rotate", "parallels"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    def cache_key(self) -> str:
        parts = []
        for name in ("center", "rotate", "scale", "parallels"):
            value = getattr(self, name)
            parts.append(f"{name}={value!r}")
        return ";".join(parts)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProjectionConfig:
        center_raw = raw.get("center")
        rotate_raw = raw.get("rotate")
        scale_raw = raw.get("scale")
        parallels_raw = raw.get("parallels")

        rotate: tuple[float, float, float] | None = None
        if rotate_raw is not None:
            if isinstance(rotate_raw, (list, tuple)) and len(rotate_raw) == 2:
                rotate_raw = [*rotate_raw, 0.0]
            rotate = cast(
                tuple[float, float, float],
                _float_tuple(rotate_raw, "projection.rotate", 3),
            )

        scale: float | None = None
        if scale_raw is not None:
            scale = _float(scale_raw, "projection.scale")
            if scale <= 0 or not math.isfinite(scale):
                raise ValueError("projection.scale must be a finite number > 0")

        return cls(
            center=(
                cast(tuple[float, float], _float_tuple(center_raw, "projection.center", 2))
                if center_raw is not None
                else None
            ),
            rotate=rotate,
            scale=scale,
            parallels=(
                cast(tuple[float, float], _float_tuple(parallels_raw, "projection.parallels", 2))
                if parallels_raw is not None
                else None
            ),
        )


@dataclass(frozen=True, slots=True)
class MapConfig:
    width: int = 800
    height: int = 600
    projection: str = "geoEqualEarth"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MapConfig:
        defaults = cls()
        width = _int(raw.get("width", defaults.width), "map.width")
        height = _int(raw.get("height", defaults.height), "map.height")
        if width <= 0 or height <= 0:
            raise ValueError("map.width and map.height must be > 0")
        return cls(
            width=width,
            height=height,
            projection=_str(raw.get("projection", defaults.projection), "map.projection"),
        )


_INFINITE_EXTENT = ((-math.inf, -math.inf), (math.inf, math.inf))


@dataclass(frozen=True, slots=True)
class ViewportConfig:
    center: tuple[float, float] = (0.0, 0.0)
    zoom: float = 1.0
    scale_extent: tuple[float, float] = (1.0, 8.0)
    translate_extent: tuple[tuple[float, float], tuple[float, float]] = _INFINITE_EXTENT

    @property
    def min_zoom(self) -> float:
        return self.scale_extent[0]

    @property
    def max_zoom(self) -> float:
        return self.scale_extent[1]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ViewportConfig:
        defaults = cls()
        center = defaults.center
        if raw.get("center") is not None:
            center = cast(tuple[float, float], _float_tuple(raw["center"], "viewport.center", 2))
        zoom = _float(raw.get("zoom", defaults.zoom), "viewport.zoom")

        scale_extent = defaults.scale_extent
        if raw.get("scale_extent") is not None:
            scale_extent = cast(
                tuple[float, float],
                _float_tuple(raw["scale_extent"], "viewport.scale_extent", 2),
            )
        if scale_extent[0] <= 0 or scale_extent[0] > scale_extent[1]:
            raise ValueError("viewport.scale_extent must satisfy 0 < min <= max")

        translate_extent = defaults.translate_extent
        extent_raw = raw.get("translate_extent")
        if extent_raw is not None:
            if not isinstance(extent_raw, list) or len(extent_raw) != 2:
                raise ValueError("Expected [[x0, y0], [x1, y1]] for 'viewport.translate_extent'")
            top_left = _float_tuple(extent_raw[0], "viewport.translate_extent[0]", 2)
            bottom_right = _float_tuple(extent_raw[1], "viewport.translate_extent[1]", 2)
            translate_extent = (
                (top_left[0], top_left[1]),
                (bottom_right[0], bottom_right[1]),
            )

        return cls(
            center=center,
            zoom=zoom,
            scale_extent=scale_extent,
            translate_extent=translate_extent,
        )


@dataclass(frozen=True, slots=True)
class CacheConfig:
    features_size: int = 50
    prepared_size: int = 30
    mesh_size: int = 40
    object_ttl_s: float = 300.0
    object_max_entries: int = 100

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CacheConfig:
        defaults = cls()
        out = cls(
            features_size=_int(raw.get("features_size", defaults.features_size), "cache.features_size"),
            prepared_size=_int(raw.get("prepared_size", defaults.prepared_size), "cache.prepared_size"),
            mesh_size=_int(raw.get("mesh_size", defaults.mesh_size), "cache.mesh_size"),
            object_ttl_s=_float(raw.get("object_ttl_s", defaults.object_ttl_s), "cache.object_ttl_s"),
            object_max_entries=_int(
                raw.get("object_max_entries", defaults.object_max_entries),
                "cache.object_max_entries",
            ),
        )
        for name in ("features_size", "prepared_size", "mesh_size", "object_max_entries"):
            if getattr(out, name) < 1:
                raise ValueError(f"cache.{name} must be >= 1")
        if out.object_ttl_s <= 0:
            raise ValueError("cache.object_ttl_s must be > 0")
        return out


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    verbose: bool = False
    log_file: Path | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> LoggingConfig:
        log_file: Path | None = None
        if raw.get("log_file") is not None:
            p = Path(_str(raw["log_file"], "logging.log_file"))
            log_file = p if p.is_absolute() else root_dir / p
        return cls(
            verbose=_bool(raw.get("verbose", False), "logging.verbose"),
            log_file=log_file,
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path | None = None
    map: MapConfig = field(default_factory=MapConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    viewport: ViewportConfig = field(default_factory=ViewportConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path | None = None) -> AppConfig:
        root_dir = source_path.parent.resolve() if source_path is not None else Path.cwd()
        return cls(
            source_path=source_path.resolve() if source_path is not None else None,
            map=MapConfig.from_mapping(_optional_mapping(raw.get("map"), "map")),
            security=SecurityConfig.from_mapping(_optional_mapping(raw.get("security"), "security")),
            projection=ProjectionConfig.from_mapping(
                _optional_mapping(raw.get("projection"), "projection")
            ),
            viewport=ViewportConfig.from_mapping(_optional_mapping(raw.get("viewport"), "viewport")),
            cache=CacheConfig.from_mapping(_optional_mapping(raw.get("cache"), "cache")),
            logging=LoggingConfig.from_mapping(
                _optional_mapping(raw.get("logging"), "logging"), root_dir
            ),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
