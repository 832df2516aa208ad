"""Unit tests for mapframe.validate: URL policy, response checks, integrity."""

from __future__ import annotations

import base64
import hashlib
from types import SimpleNamespace

import pytest

from mapframe.config import SecurityConfig
from mapframe.errors import ConfigurationError, SecurityError, ValidationError
from mapframe.validate import GeographyValidator, compute_integrity


@pytest.fixture
def validator() -> GeographyValidator:
    return GeographyValidator(SecurityConfig())


@pytest.fixture
def dev_validator() -> GeographyValidator:
    return GeographyValidator(SecurityConfig.development())


def _response(headers: dict[str, str]) -> SimpleNamespace:
    return SimpleNamespace(headers=headers)


# ---------------------------------------------------------------------------
# URL policy
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestValidateUrl:
    """Protocol, host, and format checks on geography URLs."""

    def test_accepts_public_https(self, validator):
        url = "https://cdn.example.com/world-110m.json"
        assert validator.validate_url(url) == url

    def test_strips_whitespace(self, validator):
        assert validator.validate_url("  https://8.8.8.8/a.json ") == "https://8.8.8.8/a.json"

    @pytest.mark.parametrize("url", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, validator, url):
        with pytest.raises(ValidationError):
            validator.validate_url(url)

    def test_rejects_relative_url(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_url("/data/world.json")

    @pytest.mark.parametrize(
        "url",
        [
            "ftp://example.com/world.json",
            "file:///etc/passwd",
            "javascript:alert(1)",
            "data:application/json,{}",
            "http://example.com/world.json",
        ],
    )
    def test_disallowed_schemes_raise_security_error(self, validator, url):
        with pytest.raises(SecurityError) as excinfo:
            validator.validate_url(url)
        assert excinfo.value.kind == "SECURITY_ERROR"
        assert excinfo.value.url == url

    def test_non_strict_reports_unsupported_protocol(self):
        cfg = SecurityConfig(strict_https_only=False, allowed_protocols=("https",))
        with pytest.raises(SecurityError, match="Unsupported protocol: ftp:"):
            GeographyValidator(cfg).validate_url("ftp://example.com/a.json")

    @pytest.mark.parametrize(
        "url",
        [
            "https://10.1.2.3/a.json",
            "https://172.16.0.5/a.json",
            "https://192.168.1.10/a.json",
            "https://127.0.0.1/a.json",
            "https://169.254.10.10/a.json",
            "https://[::1]/a.json",
            "https://[fe80::1]/a.json",
            "https://[fc00::1]/a.json",
        ],
    )
    def test_private_hosts_rejected(self, validator, url):
        with pytest.raises(SecurityError):
            validator.validate_url(url)

    def test_localhost_rejected_in_production(self, validator):
        with pytest.raises(SecurityError, match="production"):
            validator.validate_url("https://localhost/world.json")

    def test_development_allows_http_localhost(self, dev_validator):
        url = "http://localhost:8080/world.json"
        assert dev_validator.validate_url(url) == url

    def test_development_allows_http_loopback_ip(self, dev_validator):
        assert dev_validator.validate_url("http://127.0.0.1:3000/a.json")

    def test_development_http_remote_rejected(self, dev_validator):
        with pytest.raises(SecurityError, match="only allowed for localhost"):
            dev_validator.validate_url("http://example.com/world.json")

    def test_development_private_network_still_rejected(self, dev_validator):
        with pytest.raises(SecurityError):
            dev_validator.validate_url("https://192.168.0.2/world.json")

    def test_http_localhost_flag_off_rejects_http(self):
        cfg = SecurityConfig(
            allowed_protocols=("https", "http"),
            strict_https_only=False,
            allow_http_localhost=False,
            environment="development",
        )
        with pytest.raises(SecurityError, match="HTTP protocol is disabled"):
            GeographyValidator(cfg).validate_url("http://localhost/world.json")

    def test_http_localhost_refused_in_production(self):
        cfg = SecurityConfig(
            allowed_protocols=("https", "http"),
            strict_https_only=False,
            allow_http_localhost=True,
            environment="production",
        )
        with pytest.raises(SecurityError):
            GeographyValidator(cfg).validate_url("http://localhost/world.json")


# ---------------------------------------------------------------------------
# Response checks
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestResponseChecks:
    """Content-Type, Content-Length, and payload shape."""

    def test_content_type_json_accepted(self, validator):
        validator.validate_content_type(_response({"Content-Type": "application/json"}))

    def test_content_type_geo_json_case_insensitive(self, validator):
        validator.validate_content_type(_response({"content-type": "Application/GEO+JSON; charset=utf-8"}))

    def test_missing_content_type(self, validator):
        with pytest.raises(ValidationError, match="Missing Content-Type"):
            validator.validate_content_type(_response({}))

    def test_wrong_content_type(self, validator):
        with pytest.raises(ValidationError, match="Invalid content type: text/html"):
            validator.validate_content_type(_response({"Content-Type": "text/html"}))

    def test_declared_size_over_limit(self, validator):
        too_big = str(100 * 1024 * 1024)
        with pytest.raises(ValidationError, match="Response too large"):
            validator.validate_size(_response({"Content-Length": too_big}))

    def test_declared_size_at_limit_ok(self, validator):
        validator.validate_size(_response({"Content-Length": str(50 * 1024 * 1024)}))

    def test_size_absent_or_garbage_is_ignored(self, validator):
        validator.validate_size(_response({}))
        validator.validate_size(_response({"Content-Length": "lots"}))

    @pytest.mark.parametrize("data", [{"type": "Topology"}, {"type": "FeatureCollection"}])
    def test_shape_accepted(self, validator, data):
        validator.validate_shape(data)

    @pytest.mark.parametrize("data", [None, [], "x", {"type": "Feature"}, {}])
    def test_shape_rejected(self, validator, data):
        with pytest.raises(ValidationError):
            validator.validate_shape(data)


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestIntegrity:
    """Subresource-integrity pins over the raw response body."""

    BODY = b'{"type":"Topology","objects":{},"arcs":[]}'

    def test_compute_integrity_format(self):
        expected = base64.b64encode(hashlib.sha384(self.BODY).digest()).decode("ascii")
        assert compute_integrity(self.BODY) == f"sha384-{expected}"

    @pytest.mark.parametrize("algorithm", ["sha256", "sha384", "sha512"])
    def test_matching_pin_passes(self, validator, algorithm):
        validator.verify_integrity(self.BODY, compute_integrity(self.BODY, algorithm))

    def test_any_listed_option_may_match(self, validator):
        pin = f"{compute_integrity(b'other', 'sha256')} {compute_integrity(self.BODY, 'sha512')}"
        validator.verify_integrity(self.BODY, pin)

    def test_mismatch_raises_security_error(self, validator):
        with pytest.raises(SecurityError, match="Integrity check failed"):
            validator.verify_integrity(self.BODY, compute_integrity(b"tampered"), url="https://x.org/a")

    def test_unknown_algorithm_is_configuration_error(self, validator):
        with pytest.raises(ConfigurationError):
            validator.verify_integrity(self.BODY, "md5-abcd")

    def test_malformed_digest_is_configuration_error(self, validator):
        with pytest.raises(ConfigurationError):
            validator.verify_integrity(self.BODY, "sha256-***")

    def test_compute_rejects_unknown_algorithm(self):
        with pytest.raises(ConfigurationError):
            compute_integrity(self.BODY, "md5")
