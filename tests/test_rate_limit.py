"""Tests for rate limiting middleware."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from exam_generator.config import get_settings
from exam_generator.main import app
from exam_generator.middleware.rate_limit import (
    exam_rate_limit,
    get_client_ip,
    get_limiter,
    parse_trusted_proxies,
    rate_limit_exceeded_handler,
)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the rate limiter before each test."""
    limiter = get_limiter()
    limiter.reset()


@pytest.fixture(autouse=True)
def env(monkeypatch):
    monkeypatch.setenv("TEST_MODE", "true")
    monkeypatch.delenv("TRUSTED_PROXIES", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    """Create FastAPI test client."""
    return TestClient(app)


# Client IP Detection Tests


def test_get_client_ip_direct() -> None:
    """Test getting client IP from direct connection."""
    mock_request = MagicMock(spec=Request)
    mock_request.headers = {}

    with patch("exam_generator.middleware.rate_limit.get_remote_address") as mock_get_remote:
        mock_get_remote.return_value = "192.168.1.100"
        ip = get_client_ip(mock_request)
        assert ip == "192.168.1.100"


def test_forwarded_for_ignored_without_trusted_proxies() -> None:
    """X-Forwarded-For from an untrusted peer must not change the key."""
    mock_request = MagicMock(spec=Request)
    mock_request.headers = {"X-Forwarded-For": "10.0.0.1"}

    with patch("exam_generator.middleware.rate_limit.get_remote_address", return_value="203.0.113.9"):
        assert get_client_ip(mock_request) == "203.0.113.9"


def test_forwarded_for_from_trusted_proxy(monkeypatch) -> None:
    monkeypatch.setenv("TRUSTED_PROXIES", "127.0.0.1, 10.0.0.254")
    get_settings.cache_clear()
    mock_request = MagicMock(spec=Request)
    mock_request.headers = {"X-Forwarded-For": "  198.51.100.7 , 10.0.0.254"}

    with patch("exam_generator.middleware.rate_limit.get_remote_address", return_value="10.0.0.254"):
        assert get_client_ip(mock_request) == "198.51.100.7"


def test_forwarded_for_from_untrusted_peer_with_proxy_list(monkeypatch) -> None:
    monkeypatch.setenv("TRUSTED_PROXIES", "10.0.0.254")
    get_settings.cache_clear()
    mock_request = MagicMock(spec=Request)
    mock_request.headers = {"X-Forwarded-For": "198.51.100.7"}

    with patch("exam_generator.middleware.rate_limit.get_remote_address", return_value="203.0.113.9"):
        assert get_client_ip(mock_request) == "203.0.113.9"


# Rate Limit Configuration Tests


def test_exam_rate_limit_from_settings(monkeypatch) -> None:
    """Test the route limit follows the configured window."""
    assert exam_rate_limit() == "100 per 15 minutes"

    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "10")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MINUTES", "1")
    get_settings.cache_clear()

    assert exam_rate_limit() == "10 per 1 minutes"


def test_limiter_instance() -> None:
    """Test limiter instance is properly configured."""
    limiter = get_limiter()
    assert limiter is not None
    assert app.state.limiter is limiter


# Rate Limit Exceeded Handler Tests


def exceeded(expiry=None, detail: str = "100 per 15 minute") -> SimpleNamespace:
    """Stand-in for RateLimitExceeded, which needs a full slowapi Limit."""
    limit = SimpleNamespace(limit=SimpleNamespace(get_expiry=lambda: expiry)) if expiry else None
    return SimpleNamespace(limit=limit, detail=detail)


def test_rate_limit_exceeded_handler() -> None:
    """Test rate limit exceeded handler returns proper response."""
    mock_request = MagicMock(spec=Request)

    response = rate_limit_exceeded_handler(mock_request, exceeded(expiry=45))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "45"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["X-RateLimit-Limit"] == "100 per 15 minute"

    body = json.loads(response.body.decode())
    assert body["detail"] == "Rate limit exceeded"
    assert body["retry_after"] == 45
    assert "45 Sekunden" in body["message"]


def test_rate_limit_exceeded_handler_window_in_minutes() -> None:
    response = rate_limit_exceeded_handler(MagicMock(spec=Request), exceeded(expiry=900))

    assert response.headers["Retry-After"] == "900"
    assert "15 Minuten" in json.loads(response.body.decode())["message"]


def test_rate_limit_exceeded_handler_default_retry() -> None:
    """Test rate limit exceeded handler with default retry time."""
    mock_request = MagicMock(spec=Request)

    response = rate_limit_exceeded_handler(mock_request, exceeded())

    assert response.status_code == 429
    # Default is 60 seconds
    assert response.headers["Retry-After"] == "60"


def test_parse_trusted_proxies() -> None:
    assert parse_trusted_proxies("") == frozenset()
    assert parse_trusted_proxies(" 10.0.0.1,, 10.0.0.2 ") == {"10.0.0.1", "10.0.0.2"}


# Integration Tests with FastAPI


def test_health_endpoint_no_rate_limit(client: TestClient) -> None:
    """Test that health endpoint is not rate limited."""
    with patch("exam_generator.main.shutil.which", return_value="/usr/bin/pdflatex"):
        for _ in range(20):
            response = client.get("/health")
            # Should not get 429
            assert response.status_code in [200, 503]


def test_version_endpoint_no_rate_limit(client: TestClient) -> None:
    """Test that version endpoint is not rate limited."""
    for _ in range(20):
        response = client.get("/version")
        # Should not get 429
        assert response.status_code == 200


def test_rate_limit_exceeded_on_analyze(client: TestClient, monkeypatch) -> None:
    """Test rate limiting is enforced on upload routes after the limit."""
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "1")
    get_settings.cache_clear()

    # No image: rejected with 400, but still counted against the limit
    first = client.post("/analyze")
    second = client.post("/analyze")

    assert first.status_code == 400
    assert second.status_code == 429
    assert "Retry-After" in second.headers
    assert second.json()["detail"] == "Rate limit exceeded"
