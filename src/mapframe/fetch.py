"""Secure, single-flight retrieval of geography JSON over HTTPS."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Callable

import requests

from .cache import CacheManager
from .config import SecurityConfig
from .errors import FetchTimeoutError, NetworkError, ParseError, ValidationError
from .validate import GeographyValidator

_LOGGER = logging.getLogger("mapframe.fetch")

CACHE_CONTROL = "public, max-age=3600"
_CHUNK_SIZE = 64 * 1024


class GeographyFetcher:
    """Fetch, validate, and parse geography documents.

    Concurrent `fetch` calls for the same URL share one request task held in
    the cache manager's request tier. The outcome (data or error) stays
    cached until `retry` drops it.
    """

    def __init__(
        self,
        cfg: SecurityConfig | None = None,
        *,
        cache: CacheManager | None = None,
        session: requests.Session | None = None,
        validator: GeographyValidator | None = None,
    ) -> None:
        self.cfg = cfg or SecurityConfig()
        self.cache = cache or CacheManager()
        self.validator = validator or GeographyValidator(self.cfg)
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": ", ".join(self.cfg.allowed_content_types),
                "Cache-Control": CACHE_CONTROL,
            }
        )

    async def fetch(self, url: str) -> dict[str, Any]:
        checked = self.validator.validate_url(url)
        task = self.cache.single_flight(checked, lambda: self._fetch_once(checked))
        # A cancelled caller must not cancel the request other callers share.
        return await asyncio.shield(task)

    async def retry(self, url: str) -> dict[str, Any]:
        checked = self.validator.validate_url(url)
        if self.cache.invalidate_request(checked):
            _LOGGER.info("[fetch] retrying %s", checked)
        return await self.fetch(checked)

    def preload(self, url: str) -> asyncio.Future[Any]:
        """Start fetching `url` in the background; must run inside an event loop.

        A failure is not raised here; it stays cached and surfaces from the
        next `fetch` of the same URL.
        """
        checked = self.validator.validate_url(url)
        return self.cache.single_flight(checked, lambda: self._fetch_once(checked))

    def close(self) -> None:
        self._session.close()

    async def _fetch_once(self, url: str) -> dict[str, Any]:
        timeout_s = self.cfg.timeout_ms / 1000.0
        _LOGGER.info("[fetch] GET %s", url)
        transfer = _Transfer(lambda: self._retrieve(url, transfer))
        try:
            data = await asyncio.wait_for(transfer.start(), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            transfer.abandon()
            raise FetchTimeoutError(
                f"Request timeout after {self.cfg.timeout_ms}ms", url=url, cause=exc
            ) from exc
        _LOGGER.debug("[fetch] loaded %s (%s)", url, data.get("type"))
        return data

    def _retrieve(self, url: str, transfer: _Transfer | None = None) -> dict[str, Any]:
        timeout_s = self.cfg.timeout_ms / 1000.0
        try:
            response = self._session.get(url, timeout=timeout_s, stream=True)
            if transfer is not None:
                transfer.attach(response)
        except requests.Timeout as exc:
            raise FetchTimeoutError(
                f"Request timeout after {self.cfg.timeout_ms}ms", url=url, cause=exc
            ) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Network error: {exc}", url=url, cause=exc) from exc

        try:
            if not 200 <= response.status_code < 300:
                raise NetworkError(
                    f"HTTP {response.status_code}: {response.reason}",
                    url=url,
                )
            self.validator.validate_content_type(response, url=url)
            self.validator.validate_size(response, url=url)
            body = self._read_body(response, url, transfer)
        finally:
            response.close()

        pin = self.cfg.integrity_for(url)
        if pin is not None:
            self.validator.verify_integrity(body, pin, url=url)

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise ParseError(f"Invalid JSON response: {exc}", url=url, cause=exc) from exc
        self.validator.validate_shape(data, url=url)
        return data

    def _read_body(
        self,
        response: requests.Response,
        url: str,
        transfer: _Transfer | None = None,
    ) -> bytes:
        limit = self.cfg.max_response_size
        chunks: list[bytes] = []
        received = 0
        try:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if transfer is not None and transfer.abandoned:
                    raise FetchTimeoutError(
                        f"Request timeout after {self.cfg.timeout_ms}ms", url=url
                    )
                if not chunk:
                    continue
                received += len(chunk)
                if received > limit:
                    raise ValidationError(
                        f"Response too large: exceeded {limit} bytes while reading",
                        url=url,
                    )
                chunks.append(chunk)
        except requests.RequestException as exc:
            raise NetworkError(f"Network error while reading body: {exc}", url=url, cause=exc) from exc
        return b"".join(chunks)


class _Transfer:
    """One blocking retrieval on a daemon thread.

    The awaiting task can give up on it at the deadline: `abandon` closes the
    open response so the body read stops, and nothing ever joins the thread,
    so neither the event loop shutdown nor interpreter exit waits for it.
    """

    def __init__(self, target: Callable[[], dict[str, Any]]) -> None:
        self._target = target
        self._lock = threading.Lock()
        self._response: requests.Response | None = None
        self.abandoned = False

    def start(self) -> asyncio.Future[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        thread = threading.Thread(
            target=self._run,
            args=(loop, future),
            name="mapframe-fetch",
            daemon=True,
        )
        thread.start()
        return future

    def attach(self, response: requests.Response) -> None:
        with self._lock:
            self._response = response
            abandoned = self.abandoned
        if abandoned:
            response.close()

    def abandon(self) -> None:
        with self._lock:
            self.abandoned = True
            response = self._response
        if response is not None:
            response.close()

    def _run(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future[dict[str, Any]]) -> None:
        try:
            outcome: Any = self._target()
        except Exception as exc:
            outcome = exc
        try:
            loop.call_soon_threadsafe(_settle, future, outcome)
        except RuntimeError:
            # Loop already closed; the caller gave up at the deadline.
            _LOGGER.debug("[fetch] dropped late result: %r", outcome)


def _settle(future: asyncio.Future[dict[str, Any]], outcome: Any) -> None:
    if future.done():
        return
    if isinstance(outcome, BaseException):
        future.set_exception(outcome)
    else:
        future.set_result(outcome)
