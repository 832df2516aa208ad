"""CLI entrypoint for mapframe."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Sequence

from .cache import CacheManager
from .config import AppConfig, load_config
from .errors import GeographyError, ValidationError
from .extract import extract, source_kind
from .fetch import GeographyFetcher
from .pipeline import GeographyPipeline
from .projection import ResolvedProjection, available_projections, resolve_projection
from .util import read_geography_file, setup_logging, write_prepared
from .validate import GeographyValidator, compute_integrity

LOGGER = logging.getLogger("mapframe.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mapframe",
        description="Secure geography loading and map projection tools.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, help="Path to YAML config (defaults are secure).")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    def add_projection(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--projection",
            default=None,
            help=f"Projection name; one of: {', '.join(available_projections())}.",
        )
        p.add_argument("--width", type=int, default=None, help="Viewport width in pixels.")
        p.add_argument("--height", type=int, default=None, help="Viewport height in pixels.")

    check_p = subparsers.add_parser("check-url", help="Validate a geography URL against the security policy.")
    add_common(check_p)
    check_p.add_argument("url")

    fetch_p = subparsers.add_parser("fetch", help="Fetch a geography URL and summarize it.")
    add_common(fetch_p)
    fetch_p.add_argument("url")

    prepare_p = subparsers.add_parser("prepare", help="Extract and project geography into SVG paths.")
    add_common(prepare_p)
    add_projection(prepare_p)
    prepare_p.add_argument("source", help="Geography URL or local JSON file.")
    prepare_p.add_argument("--output", required=True, help="Output JSON path.")

    project_p = subparsers.add_parser("project", help="Project a lon/lat pair to pixels and back.")
    add_common(project_p)
    add_projection(project_p)
    project_p.add_argument("lon", type=float)
    project_p.add_argument("lat", type=float)

    sri_p = subparsers.add_parser("sri", help="Print the subresource-integrity string for a file.")
    add_common(sri_p)
    sri_p.add_argument("file")
    sri_p.add_argument(
        "--algorithm",
        choices=("sha256", "sha384", "sha512"),
        default="sha384",
        help="Digest algorithm.",
    )
    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config) if args.config else AppConfig()
    setup_logging(cfg.logging.log_file, verbose=bool(args.verbose) or cfg.logging.verbose)
    return cfg


def _is_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def _resolve_from_args(cfg: AppConfig, args: argparse.Namespace) -> ResolvedProjection:
    return resolve_projection(
        args.projection or cfg.map.projection,
        args.width or cfg.map.width,
        args.height or cfg.map.height,
        cfg.projection,
    )


def _run_check_url(cfg: AppConfig, url: str) -> int:
    try:
        checked = GeographyValidator(cfg.security).validate_url(url)
    except GeographyError as exc:
        LOGGER.error("[ERROR] %s: %s", exc.kind, exc)
        return 1
    LOGGER.info("[OK] %s passes the security policy.", checked)
    return 0


def _run_fetch(cfg: AppConfig, url: str) -> int:
    fetcher = GeographyFetcher(cfg.security, cache=CacheManager(cfg.cache))
    try:
        data = asyncio.run(fetcher.fetch(url))
    except GeographyError as exc:
        LOGGER.error("[ERROR] %s: %s", exc.kind, exc)
        return 1
    finally:
        fetcher.close()
    result = extract(data)
    LOGGER.info("Type: %s", data.get("type"))
    LOGGER.info("Features: %d", len(result.features))
    LOGGER.info("Mesh: %s", "yes" if result.mesh is not None else "no")
    return 0


def _load_source(source: str) -> Any:
    if _is_url(source):
        return source
    data = read_geography_file(Path(source))
    if source_kind(data) == "unknown":
        raise ValidationError(
            "Invalid geography data: expected Topology, FeatureCollection or feature list",
            url=source,
        )
    return data


def _run_prepare(cfg: AppConfig, args: argparse.Namespace) -> int:
    try:
        projection = _resolve_from_args(cfg, args)
        source = _load_source(str(args.source))
    except GeographyError as exc:
        LOGGER.error("[ERROR] %s: %s", exc.kind, exc)
        return 1
    cache = CacheManager(cfg.cache)
    fetcher = GeographyFetcher(cfg.security, cache=cache)
    pipeline = GeographyPipeline(
        source,
        projection=projection,
        fetcher=fetcher,
        cache=cache,
    )
    try:
        result = asyncio.run(pipeline.load())
    finally:
        fetcher.close()
    if result.error is not None or result.geography is None:
        LOGGER.error("[ERROR] %s", result.error)
        return 1
    for warning in result.warnings:
        LOGGER.warning("[WARN] %s", warning)

    output = Path(args.output)
    write_prepared(output, result.geography, projection)
    LOGGER.info(
        "Wrote %d prepared features to %s",
        len(result.geography.prepared_features),
        output,
    )
    return 0


def _run_project(cfg: AppConfig, args: argparse.Namespace) -> int:
    try:
        projection = _resolve_from_args(cfg, args)
    except GeographyError as exc:
        LOGGER.error("[ERROR] %s: %s", exc.kind, exc)
        return 1
    point = projection.project((args.lon, args.lat))
    if point is None:
        LOGGER.error("[ERROR] (%s, %s) is outside the %s domain", args.lon, args.lat, projection.identity)
        return 1
    back = projection.invert(point)
    print(f"pixel: {point[0]:.3f} {point[1]:.3f}")
    if back is not None:
        print(f"inverse: {back[0]:.6f} {back[1]:.6f}")
    return 0


def _run_sri(args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.is_file():
        LOGGER.error("[ERROR] File not found: %s", path)
        return 1
    print(compute_integrity(path.read_bytes(), args.algorithm))
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "check-url":
        return _run_check_url(cfg, str(args.url))
    if command == "fetch":
        return _run_fetch(cfg, str(args.url))
    if command == "prepare":
        return _run_prepare(cfg, args)
    if command == "project":
        return _run_project(cfg, args)
    if command == "sri":
        return _run_sri(args)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
