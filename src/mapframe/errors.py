"""Typed error taxonomy for the geography pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class GeographyError(Exception):
    """Base error carrying the source URL and the wrapped cause."""

    kind = "GEOGRAPHY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "url": self.url,
            "timestamp": self.timestamp,
        }
        if self.cause is not None:
            payload["cause"] = {
                "name": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return payload

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} (url={self.url})"
        return self.message


class ValidationError(GeographyError):
    """Malformed input, response metadata, or data shape."""

    kind = "VALIDATION_ERROR"


class SecurityError(GeographyError):
    """Disallowed protocol or host, or an integrity mismatch."""

    kind = "SECURITY_ERROR"


class NetworkError(GeographyError):
    """Transport failure or non-2xx response."""

    kind = "NETWORK_ERROR"


class FetchTimeoutError(GeographyError):
    """Request deadline exceeded."""

    kind = "TIMEOUT_ERROR"


class ParseError(GeographyError):
    """Response body is not valid JSON."""

    kind = "PARSE_ERROR"


class ConfigurationError(GeographyError):
    """Unknown projection name or malformed runtime configuration."""

    kind = "CONFIGURATION_ERROR"
