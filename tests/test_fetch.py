"""Unit tests for mapframe.fetch: ordering, error classification, single-flight."""

from __future__ import annotations

import asyncio
import threading
import time
from unittest.mock import patch

import pytest
import requests

from mapframe.cache import CacheManager
from mapframe.config import SecurityConfig
from mapframe.errors import (
    FetchTimeoutError,
    NetworkError,
    ParseError,
    SecurityError,
    ValidationError,
)
from mapframe.fetch import GeographyFetcher
from mapframe.validate import compute_integrity

URL = "https://cdn.example.com/world.json"
TOPOLOGY = {"type": "Topology", "objects": {}, "arcs": []}


@pytest.mark.unit
class TestSessionSetup:
    """Request headers installed on the requests session."""

    def test_headers(self, fetcher, session):
        assert session.headers["Accept"] == "application/json, application/geo+json"
        assert session.headers["Cache-Control"] == "public, max-age=3600"

    def test_default_session_is_requests_session(self):
        with patch("mapframe.fetch.requests.Session") as session_cls:
            session_cls.return_value.headers = {}
            GeographyFetcher()
        session_cls.assert_called_once_with()


@pytest.mark.unit
class TestFetchSuccess:
    """Happy-path retrieval."""

    def test_returns_parsed_json(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(TOPOLOGY)
        data = asyncio.run(fetcher.fetch(URL))
        assert data == TOPOLOGY
        session.get.assert_called_once()
        args, kwargs = session.get.call_args
        assert args[0] == URL
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == pytest.approx(10.0)

    def test_response_is_closed(self, fetcher, session, response_factory):
        response = response_factory(TOPOLOGY)
        session.get.return_value = response
        asyncio.run(fetcher.fetch(URL))
        response.close.assert_called_once()

    def test_integrity_pin_verified(self, session, response_factory):
        response = response_factory(TOPOLOGY)
        body = b"".join(response.iter_content.return_value)
        cfg = SecurityConfig(integrity={URL: compute_integrity(body)})
        fetcher = GeographyFetcher(cfg, session=session)
        session.get.return_value = response
        assert asyncio.run(fetcher.fetch(URL)) == TOPOLOGY


@pytest.mark.unit
class TestFetchErrors:
    """Each failure maps to exactly one typed error."""

    def test_url_rejected_before_any_request(self, fetcher, session):
        with pytest.raises(SecurityError):
            asyncio.run(fetcher.fetch("http://example.com/world.json"))
        session.get.assert_not_called()

    def test_non_2xx_is_network_error(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(
            TOPOLOGY, status_code=404, reason="Not Found"
        )
        with pytest.raises(NetworkError, match="HTTP 404: Not Found") as excinfo:
            asyncio.run(fetcher.fetch(URL))
        assert excinfo.value.url == URL

    def test_transport_failure_is_network_error_with_cause(self, fetcher, session):
        boom = requests.ConnectionError("connection refused")
        session.get.side_effect = boom
        with pytest.raises(NetworkError) as excinfo:
            asyncio.run(fetcher.fetch(URL))
        assert excinfo.value.cause is boom
        assert excinfo.value.__cause__ is boom

    def test_requests_timeout_is_timeout_error(self, fetcher, session):
        session.get.side_effect = requests.Timeout("read timed out")
        with pytest.raises(FetchTimeoutError) as excinfo:
            asyncio.run(fetcher.fetch(URL))
        assert excinfo.value.kind == "TIMEOUT_ERROR"

    def test_deadline_is_timeout_error(self, session, response_factory):
        def slow_get(*_args, **_kwargs):
            time.sleep(0.3)
            return response_factory(TOPOLOGY)

        session.get.side_effect = slow_get
        fetcher = GeographyFetcher(SecurityConfig(timeout_ms=50), session=session)
        with pytest.raises(FetchTimeoutError, match="50ms"):
            asyncio.run(fetcher.fetch(URL))

    def test_deadline_returns_control_while_request_hangs(self, session, response_factory):
        release = threading.Event()

        def hanging_get(*_args, **_kwargs):
            release.wait(3.0)
            return response_factory(TOPOLOGY)

        session.get.side_effect = hanging_get
        fetcher = GeographyFetcher(SecurityConfig(timeout_ms=50), session=session)
        started = time.monotonic()
        try:
            with pytest.raises(FetchTimeoutError):
                asyncio.run(fetcher.fetch(URL))
            elapsed = time.monotonic() - started
        finally:
            release.set()
        assert elapsed < 1.0

    def test_deadline_closes_response_during_slow_body(self, session, response_factory):
        release = threading.Event()
        response = response_factory(TOPOLOGY)

        def slow_body(*_args, **_kwargs):
            yield b'{"type": '
            release.wait(3.0)
            yield b'"Topology", "objects": {}, "arcs": []}'

        response.iter_content.side_effect = slow_body
        response.close.side_effect = lambda: release.set()
        session.get.return_value = response
        fetcher = GeographyFetcher(SecurityConfig(timeout_ms=50), session=session)
        started = time.monotonic()
        with pytest.raises(FetchTimeoutError):
            asyncio.run(fetcher.fetch(URL))
        assert time.monotonic() - started < 1.0
        assert release.wait(1.0)
        response.close.assert_called()

    def test_wrong_content_type(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(TOPOLOGY, headers={"Content-Type": "text/html"})
        with pytest.raises(ValidationError, match="Invalid content type"):
            asyncio.run(fetcher.fetch(URL))

    def test_declared_oversize_rejected_before_body_read(self, fetcher, session, response_factory):
        response = response_factory(
            TOPOLOGY,
            headers={
                "Content-Type": "application/json",
                "Content-Length": str(100 * 1024 * 1024),
            },
        )
        session.get.return_value = response
        with pytest.raises(ValidationError, match="Response too large"):
            asyncio.run(fetcher.fetch(URL))
        response.iter_content.assert_not_called()

    def test_body_read_is_capped(self, session, response_factory):
        fetcher = GeographyFetcher(SecurityConfig(max_response_size=16), session=session)
        session.get.return_value = response_factory(TOPOLOGY)
        with pytest.raises(ValidationError, match="exceeded 16 bytes"):
            asyncio.run(fetcher.fetch(URL))

    def test_invalid_json_is_parse_error(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(body=b"{not json")
        with pytest.raises(ParseError):
            asyncio.run(fetcher.fetch(URL))

    def test_wrong_shape(self, fetcher, session, response_factory):
        session.get.return_value = response_factory({"type": "Feature"})
        with pytest.raises(ValidationError, match="expected Topology or FeatureCollection"):
            asyncio.run(fetcher.fetch(URL))

    def test_integrity_mismatch(self, session, response_factory):
        cfg = SecurityConfig(integrity={URL: compute_integrity(b"something else")})
        fetcher = GeographyFetcher(cfg, session=session)
        session.get.return_value = response_factory(TOPOLOGY)
        with pytest.raises(SecurityError, match="Integrity check failed"):
            asyncio.run(fetcher.fetch(URL))

    def test_read_failure_is_network_error(self, fetcher, session, response_factory):
        response = response_factory(TOPOLOGY)
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("cut")
        session.get.return_value = response
        with pytest.raises(NetworkError, match="while reading body"):
            asyncio.run(fetcher.fetch(URL))


@pytest.mark.unit
class TestSingleFlight:
    """Concurrent fetches share one request and one outcome."""

    def test_concurrent_fetches_share_request(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(TOPOLOGY)

        async def scenario():
            return await asyncio.gather(fetcher.fetch(URL), fetcher.fetch(URL), fetcher.fetch(URL))

        first, second, third = asyncio.run(scenario())
        assert session.get.call_count == 1
        assert first is second is third

    def test_failure_is_shared_and_cached_until_retry(self, fetcher, session, response_factory):
        session.get.side_effect = [
            requests.ConnectionError("down"),
            response_factory(TOPOLOGY),
        ]

        async def scenario():
            results = await asyncio.gather(
                fetcher.fetch(URL), fetcher.fetch(URL), return_exceptions=True
            )
            with pytest.raises(NetworkError):
                await fetcher.fetch(URL)
            assert session.get.call_count == 1
            recovered = await fetcher.retry(URL)
            return results, recovered

        results, recovered = asyncio.run(scenario())
        assert all(isinstance(item, NetworkError) for item in results)
        assert results[0] is results[1]
        assert recovered == TOPOLOGY
        assert session.get.call_count == 2

    def test_timeout_cached_as_failure(self, session, response_factory):
        calls = []

        def slow_get(*_args, **_kwargs):
            calls.append(1)
            time.sleep(0.2)
            return response_factory(TOPOLOGY)

        session.get.side_effect = slow_get
        fetcher = GeographyFetcher(SecurityConfig(timeout_ms=20), session=session)

        async def scenario():
            for _ in range(2):
                with pytest.raises(FetchTimeoutError):
                    await fetcher.fetch(URL)

        asyncio.run(scenario())
        assert len(calls) == 1

    def test_preload_then_fetch_reuses_request(self, fetcher, session, response_factory):
        session.get.return_value = response_factory(TOPOLOGY)

        async def scenario():
            task = fetcher.preload(URL)
            data = await fetcher.fetch(URL)
            return task, data

        task, data = asyncio.run(scenario())
        assert task.done()
        assert data == TOPOLOGY
        assert session.get.call_count == 1

    def test_preload_failure_surfaces_on_fetch(self, fetcher, session):
        session.get.side_effect = requests.ConnectionError("down")

        async def scenario():
            fetcher.preload(URL)
            await asyncio.sleep(0.05)
            with pytest.raises(NetworkError):
                await fetcher.fetch(URL)

        asyncio.run(scenario())
        assert session.get.call_count == 1

    def test_separate_urls_do_not_share(self, fetcher, session, response_factory):
        session.get.side_effect = lambda *_a, **_k: response_factory(TOPOLOGY)

        async def scenario():
            await fetcher.fetch(URL)
            await fetcher.fetch(URL + "?v=2")

        asyncio.run(scenario())
        assert session.get.call_count == 2

    def test_cache_manager_is_injected(self, session):
        cache = CacheManager()
        fetcher = GeographyFetcher(cache=cache, session=session)
        assert fetcher.cache is cache

    def test_close_closes_session(self, fetcher, session):
        fetcher.close()
        session.close.assert_called_once()
