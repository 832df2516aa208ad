"""End-to-end geography loading: fetch, extract, and prepare with caching."""

from __future__ import annotations

import logging
from typing import Any

from .cache import CacheManager, fingerprint, function_identity
from .errors import GeographyError
from .extract import ParseFn, extract, source_kind
from .fetch import GeographyFetcher
from .models import ExtractionResult, GeographySource, LoadResult, PreparedGeography
from .paths import prepare
from .projection import ResolvedProjection, resolve_projection

_LOGGER = logging.getLogger("mapframe.pipeline")

_FINGERPRINT_SLOT = "fingerprint"


class GeographyPipeline:
    """Load one geography source into render-ready paths.

    `load` never raises for pipeline failures: the typed error is returned on
    the `LoadResult`. A failed URL fetch stays cached until `retry` or
    `reset` is called.
    """

    def __init__(
        self,
        source: GeographySource,
        *,
        projection: ResolvedProjection | None = None,
        parse: ParseFn | None = None,
        fetcher: GeographyFetcher | None = None,
        cache: CacheManager | None = None,
    ) -> None:
        self.source = source
        self.projection = projection or resolve_projection()
        self.parse = parse
        if fetcher is None:
            fetcher = GeographyFetcher(cache=cache)
        self.fetcher = fetcher
        self.cache = cache or fetcher.cache
        self._attempt = 1
        self._last: LoadResult | None = None

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def last_result(self) -> LoadResult | None:
        return self._last

    async def load(self) -> LoadResult:
        try:
            data = await self._resolve_data()
        except GeographyError as exc:
            _LOGGER.warning("[pipeline] attempt %d failed: %s", self._attempt, exc)
            self._last = LoadResult(error=exc, attempt=self._attempt)
            return self._last

        extraction = self._extract(data)
        geography = self._prepare(data, extraction)
        warnings: list[str] = []
        if not extraction.features:
            warnings.append("No features extracted from geography data")
        elif len(geography.prepared_features) < len(extraction.features):
            dropped = len(extraction.features) - len(geography.prepared_features)
            warnings.append(f"{dropped} feature(s) have no renderable path")
        self._last = LoadResult(
            geography=geography,
            features=extraction.features,
            attempt=self._attempt,
            warnings=tuple(warnings),
        )
        _LOGGER.info(
            "[pipeline] prepared %d/%d features (attempt %d)",
            len(geography.prepared_features),
            len(extraction.features),
            self._attempt,
        )
        return self._last

    async def retry(self) -> LoadResult:
        self._attempt += 1
        self._invalidate()
        return await self.load()

    def reset(self) -> None:
        self._attempt = 1
        self._last = None
        self._invalidate()

    def _invalidate(self) -> None:
        if isinstance(self.source, str):
            self.cache.invalidate_request(self.source.strip())

    async def _resolve_data(self) -> Any:
        if isinstance(self.source, str):
            return await self.fetcher.fetch(self.source)
        if source_kind(self.source) == "unknown":
            _LOGGER.warning("[pipeline] inline source is not a Topology, FeatureCollection or list")
        return self.source

    def _fingerprint(self, data: Any) -> str:
        cached = self.cache.objects.get(data, _FINGERPRINT_SLOT)
        if cached is None:
            cached = fingerprint(data)
            self.cache.objects.set(data, _FINGERPRINT_SLOT, cached)
        return cached

    def _extract(self, data: Any) -> ExtractionResult:
        parse_id = function_identity(self.parse)
        slot = f"extract:{parse_id}"
        cached = self.cache.objects.get(data, slot)
        if cached is not None:
            return cached
        key = (self._fingerprint(data), parse_id)
        result = self.cache.features.get(key)
        if result is None:
            result = extract(data, self.parse)
            self.cache.features.set(key, result)
        self.cache.objects.set(data, slot, result)
        return result

    def _prepare(self, data: Any, extraction: ExtractionResult) -> PreparedGeography:
        path = self.projection.path
        parse_id = function_identity(self.parse)
        fp = self._fingerprint(data)

        features_key = (fp, parse_id, path.cache_identity)
        features_part = self.cache.prepared.get(features_key)
        if features_part is None:
            features_part = prepare(extraction.features, None, path)
            self.cache.prepared.set(features_key, features_part)

        mesh_key = (fp, path.cache_identity)
        mesh_part = self.cache.mesh.get(mesh_key)
        if mesh_part is None:
            mesh_part = prepare((), extraction.mesh, path)
            self.cache.mesh.set(mesh_key, mesh_part)

        return PreparedGeography(
            prepared_features=features_part.prepared_features,
            outline_path=mesh_part.outline_path,
            borders_path=mesh_part.borders_path,
        )
