"""
Per-client rate limiting for the upload routes.

slowapi keys each window on the client address. /analyze and /generate
share the configured budget (RATE_LIMIT_MAX_REQUESTS per
RATE_LIMIT_WINDOW_MINUTES); /health, /version and the static frontend are
not limited.
"""

import math
from typing import Any, FrozenSet

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from exam_generator.config import get_settings

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_trusted_proxies(value: str) -> FrozenSet[str]:
    """Split the comma separated TRUSTED_PROXIES setting."""
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def get_client_ip(request: Request) -> str:
    """
    Address a request is counted against.

    X-Forwarded-For is honoured only when the peer is a configured trusted
    proxy; otherwise a client could pick its own bucket.
    """
    peer: str = get_remote_address(request)
    if peer not in parse_trusted_proxies(get_settings().trusted_proxies):
        return peer

    forwarded = request.headers.get("X-Forwarded-For", "")
    origin = forwarded.split(",")[0].strip()
    return origin or peer


# /analyze and /generate draw from one window per client
EXAM_UPLOAD_SCOPE = "exam_uploads"


def exam_rate_limit() -> str:
    """Limit string for the upload routes, resolved per request."""
    return get_settings().rate_limit


limiter = Limiter(key_func=get_client_ip)


def _seconds_until_reset(exc: RateLimitExceeded) -> int:
    # RateLimitExceeded.limit wraps the limits RateLimitItem that tripped
    item = getattr(getattr(exc, "limit", None), "limit", None)
    expiry = item.get_expiry() if hasattr(item, "get_expiry") else None
    if isinstance(expiry, int) and expiry > 0:
        return expiry
    return DEFAULT_RETRY_AFTER_SECONDS


def _wait_hint(seconds: int) -> str:
    if seconds < 120:
        return f"{seconds} Sekunden"
    return f"{math.ceil(seconds / 60)} Minuten"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Answer 429 with a German hint for the frontend and Retry-After."""
    retry_after = _seconds_until_reset(exc)

    headers = {
        "Retry-After": str(retry_after),
        "X-RateLimit-Remaining": "0",
    }
    limit_text = getattr(exc, "detail", None)
    if limit_text:
        headers["X-RateLimit-Limit"] = str(limit_text)

    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "message": f"Zu viele Anfragen. Bitte in {_wait_hint(retry_after)} erneut versuchen.",
            "retry_after": retry_after,
        },
        headers=headers,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Report the remaining budget on responses of limited routes."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response: Response = await call_next(request)
        if response.status_code == 429:
            return response

        # Set by slowapi's route decorator: (RateLimitItem, [key, scope])
        applied = getattr(request.state, "view_rate_limit", None)
        if applied:
            item, args = applied
            _, remaining = limiter.limiter.get_window_stats(item, *args)
            response.headers["X-RateLimit-Limit"] = str(item.amount)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


def get_limiter() -> Limiter:
    return limiter
