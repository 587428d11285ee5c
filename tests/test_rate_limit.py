"""Tests for rate limiting functionality."""

from unittest.mock import patch

from starlette.requests import Request

from school_orchestrator.api.limiter import (
    DEFAULT_RATE_LIMIT,
    get_rate_limit,
    get_rate_limit_key,
    is_rate_limit_enabled,
    limiter,
)


def _request(headers: list[tuple[bytes, bytes]]) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/students",
        "headers": headers,
        "client": ("192.168.1.100", 12345),
    })


class TestGetRateLimitKey:
    """Tests for get_rate_limit_key function."""

    def test_tenant_and_address(self):
        """Buckets are per tenant and client address."""
        key = get_rate_limit_key(_request([(b"x-orchestrator-id", b"TENANT_A")]))

        assert key == "tenant:TENANT_A:192.168.1.100"

    def test_address_only_without_tenant(self):
        assert get_rate_limit_key(_request([])) == "192.168.1.100"

    def test_long_tenant_is_truncated(self):
        key = get_rate_limit_key(_request([(b"x-orchestrator-id", b"T" * 500)]))

        assert key == f"tenant:{'T' * 64}:192.168.1.100"


class TestConfiguration:
    """Tests for the environment-driven settings."""

    def test_default_rate_limit(self):
        with patch.dict("os.environ", {}, clear=True):
            assert get_rate_limit() == DEFAULT_RATE_LIMIT == "120/minute"

    def test_custom_rate_limit(self):
        with patch.dict("os.environ", {"ORCHESTRATOR_RATE_LIMIT": "10/second"}):
            assert get_rate_limit() == "10/second"

    def test_enabled_by_default(self):
        with patch.dict("os.environ", {}, clear=True):
            assert is_rate_limit_enabled() is True

    def test_can_be_disabled(self):
        with patch.dict("os.environ", {"ORCHESTRATOR_RATE_LIMIT_ENABLED": "false"}):
            assert is_rate_limit_enabled() is False

    def test_limiter_uses_custom_key_func(self):
        assert limiter._key_func == get_rate_limit_key


class TestExemptEndpoints:
    """Health and metrics never count against a bucket."""

    def test_health(self, client):
        for _ in range(3):
            assert client.get("/health").status_code == 200

    def test_metrics(self, client):
        assert client.get("/metrics").status_code == 200
