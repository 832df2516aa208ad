"""Logging setup and geography JSON file I/O for the CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .errors import ParseError, ValidationError
from .geo_utils import best_coordinates, geography_bounds
from .models import PreparedGeography
from .projection import ResolvedProjection


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Per-connection chatter from requests' transport.
_QUIET_LOGGERS = ("urllib3", "pyproj")


def setup_logging(log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure root logging to console and optionally a file."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def read_geography_file(path: Path) -> Any:
    """Load a local TopoJSON/GeoJSON document, mapping failures to typed errors."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except OSError as exc:
        raise ValidationError(f"Cannot read geography file: {exc}", url=str(path), cause=exc) from exc
    except ValueError as exc:
        raise ParseError(f"Invalid JSON in geography file: {exc}", url=str(path), cause=exc) from exc


def _anchor(feature: Any) -> dict[str, Any]:
    center = best_coordinates(feature)
    bounds = geography_bounds(feature)
    return {
        "centroid": list(center) if center is not None else None,
        "bounds": [list(corner) for corner in bounds] if bounds is not None else None,
    }


def prepared_payload(geography: PreparedGeography, projection: ResolvedProjection) -> dict[str, Any]:
    """Serializable form of a prepared geography, with label anchors per feature."""
    payload = geography.to_dict()
    for entry, item in zip(payload["geographies"], geography.prepared_features):
        entry.update(_anchor(item.feature))
    payload["projection"] = projection.identity
    payload["width"] = projection.width
    payload["height"] = projection.height
    return payload


def write_prepared(path: Path, geography: PreparedGeography, projection: ResolvedProjection) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(prepared_payload(geography, projection), fh, indent=2, ensure_ascii=False)
        fh.write("\n")
