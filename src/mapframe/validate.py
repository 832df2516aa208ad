"""Security and shape validation for geography retrieval."""

from __future__ import annotations

import base64
import hashlib
import hmac
import ipaddress
import logging
from typing import Any, Mapping
from urllib.parse import urlsplit

from .config import SecurityConfig
from .errors import ConfigurationError, SecurityError, ValidationError

_LOGGER = logging.getLogger("mapframe.validate")

_GEOGRAPHY_TYPES = ("Topology", "FeatureCollection")
_SRI_ALGORITHMS = ("sha256", "sha384", "sha512")
_LOCALHOST_NAMES = {"localhost", "127.0.0.1", "::1"}


def _header(response: Any, name: str) -> str | None:
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    if value is None and isinstance(headers, Mapping):
        lowered = name.lower()
        for key, item in headers.items():
            if str(key).lower() == lowered:
                value = item
                break
    if value is None:
        return None
    return str(value)


def _is_restricted_host(hostname: str) -> bool:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return hostname == "localhost"
    return bool(
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


class GeographyValidator:
    """Checks applied to a geography URL, its response, and the parsed payload."""

    def __init__(self, cfg: SecurityConfig | None = None) -> None:
        self.cfg = cfg or SecurityConfig()

    def validate_url(self, url: Any) -> str:
        """Validate a geography URL; returns the trimmed URL."""
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("URL must be a non-empty string", url=url if isinstance(url, str) else None)
        candidate = url.strip()
        try:
            parts = urlsplit(candidate)
            hostname = parts.hostname or ""
        except ValueError as exc:
            raise ValidationError(f"Invalid URL format: {candidate}", url=candidate, cause=exc) from exc
        scheme = parts.scheme.lower()
        if not scheme:
            raise ValidationError(f"Invalid URL format: {candidate}", url=candidate)

        if self.cfg.strict_https_only:
            if scheme != "https":
                raise SecurityError(
                    f"Strict HTTPS-only mode: {scheme}: is not allowed. Only HTTPS is permitted.",
                    url=candidate,
                )
        elif scheme not in self.cfg.allowed_protocols:
            allowed = ", ".join(f"{item}:" for item in self.cfg.allowed_protocols)
            raise SecurityError(
                f"Unsupported protocol: {scheme}:. Only {allowed} are allowed.",
                url=candidate,
            )

        if not parts.netloc or not hostname:
            raise ValidationError(f"Invalid URL format: {candidate}", url=candidate)
        if scheme == "http":
            self._check_http_localhost(hostname, candidate)

        if hostname in _LOCALHOST_NAMES and self.cfg.is_production:
            raise SecurityError("Localhost access is not allowed in production", url=candidate)

        if _is_restricted_host(hostname) and not (
            self._local_access_enabled() and hostname in _LOCALHOST_NAMES
        ):
            raise SecurityError(
                f"Access to private IP address {hostname} is not allowed",
                url=candidate,
            )
        return candidate

    def validate_content_type(self, response: Any, *, url: str | None = None) -> None:
        content_type = _header(response, "Content-Type")
        if not content_type:
            raise ValidationError("Missing Content-Type header", url=url)
        lowered = content_type.lower()
        if not any(allowed in lowered for allowed in self.cfg.allowed_content_types):
            raise ValidationError(
                f"Invalid content type: {content_type}. "
                f"Expected one of: {', '.join(self.cfg.allowed_content_types)}",
                url=url,
            )

    def validate_size(self, response: Any, *, url: str | None = None) -> None:
        """Reject a declared Content-Length above the limit; the body is not touched."""
        raw = _header(response, "Content-Length")
        if raw is None:
            return
        try:
            size = int(raw.strip())
        except ValueError:
            _LOGGER.debug("Ignoring unparseable Content-Length %r for %s", raw, url)
            return
        if size > self.cfg.max_response_size:
            raise ValidationError(
                f"Response too large: {size} bytes. "
                f"Maximum allowed: {self.cfg.max_response_size} bytes",
                url=url,
            )

    def validate_shape(self, data: Any, *, url: str | None = None) -> None:
        if not isinstance(data, Mapping):
            raise ValidationError("Invalid geography data: not a valid object", url=url)
        kind = data.get("type")
        if kind not in _GEOGRAPHY_TYPES:
            raise ValidationError(
                f"Invalid geography data: expected Topology or FeatureCollection, got {kind}",
                url=url,
            )

    def verify_integrity(self, body: bytes, pin: str, *, url: str | None = None) -> None:
        """Check raw bytes against a subresource-integrity string."""
        options = _parse_integrity(pin, url=url)
        for algorithm, expected in options:
            actual = hashlib.new(algorithm, body).digest()
            if hmac.compare_digest(actual, expected):
                return
        raise SecurityError(
            f"Integrity check failed: content does not match pinned {options[0][0]} digest",
            url=url,
        )

    def _check_http_localhost(self, hostname: str, url: str) -> None:
        if not self.cfg.allow_http_localhost:
            raise SecurityError(
                "HTTP protocol is disabled for security. "
                "Use HTTPS or enable development mode explicitly.",
                url=url,
            )
        if hostname not in ("localhost", "127.0.0.1"):
            raise SecurityError(
                "HTTP protocol is only allowed for localhost. Use HTTPS for remote URLs.",
                url=url,
            )
        if self.cfg.is_production:
            raise SecurityError("HTTP localhost access is not allowed in production", url=url)
        _LOGGER.warning(
            "Using HTTP for localhost (%s). This should only be used in development.", url
        )

    def _local_access_enabled(self) -> bool:
        return self.cfg.allow_http_localhost and not self.cfg.is_production


def _parse_integrity(pin: str, *, url: str | None) -> list[tuple[str, bytes]]:
    options: list[tuple[str, bytes]] = []
    for token in pin.split():
        algorithm, sep, encoded = token.partition("-")
        algorithm = algorithm.lower()
        if not sep or algorithm not in _SRI_ALGORITHMS:
            raise ConfigurationError(f"Unsupported integrity value: {token}", url=url)
        try:
            digest = base64.b64decode(encoded, validate=True)
        except ValueError as exc:
            raise ConfigurationError(f"Malformed integrity digest: {token}", url=url, cause=exc) from exc
        options.append((algorithm, digest))
    if not options:
        raise ConfigurationError("Empty integrity value", url=url)
    return options


def compute_integrity(body: bytes, algorithm: str = "sha384") -> str:
    """Build an SRI string (`<alg>-<base64>`) for `body`."""
    algorithm = algorithm.lower()
    if algorithm not in _SRI_ALGORITHMS:
        raise ConfigurationError(f"Unsupported integrity algorithm: {algorithm}")
    digest = hashlib.new(algorithm, body).digest()
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"
