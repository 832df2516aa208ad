"""Render-ready map geography and viewport transforms."""

from .cache import CacheManager, LRUCache
from .config import AppConfig, ProjectionConfig, SecurityConfig, ViewportConfig, load_config
from .errors import (
    ConfigurationError,
    FetchTimeoutError,
    GeographyError,
    NetworkError,
    ParseError,
    SecurityError,
    ValidationError,
)
from .extract import extract
from .fetch import GeographyFetcher
from .geo_utils import best_coordinates, geography_bounds, geography_centroid
from .models import LoadResult, Position, PreparedFeature, PreparedGeography, ZoomPanState
from .paths import PathGenerator, prepare
from .pipeline import GeographyPipeline
from .projection import ProjectionName, ResolvedProjection, resolve_projection
from .validate import GeographyValidator
from .viewport import ManualGestureSource, ViewportCallbacks, ViewportEngine

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "CacheManager",
    "ConfigurationError",
    "FetchTimeoutError",
    "GeographyError",
    "GeographyFetcher",
    "GeographyPipeline",
    "GeographyValidator",
    "LRUCache",
    "LoadResult",
    "ManualGestureSource",
    "NetworkError",
    "ParseError",
    "PathGenerator",
    "Position",
    "PreparedFeature",
    "PreparedGeography",
    "ProjectionConfig",
    "ProjectionName",
    "ResolvedProjection",
    "SecurityConfig",
    "SecurityError",
    "ValidationError",
    "ViewportCallbacks",
    "ViewportConfig",
    "ViewportEngine",
    "ZoomPanState",
    "best_coordinates",
    "extract",
    "geography_bounds",
    "geography_centroid",
    "load_config",
    "prepare",
    "resolve_projection",
]
