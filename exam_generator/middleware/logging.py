"""Structured per-request logging.

One JSON line is written per request. Routes that run the exam pipeline
attach their run context (run id, exam kind, artifact size) to
``request.state`` so the access line ties back to the pipeline logs.
"""

import json
import logging
import re
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
# Client supplied ids end up in log lines; anything else is replaced.
_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# request.state attributes copied into the access line when a route sets them
RUN_CONTEXT_FIELDS = ("run_id", "exam_kind", "image_count", "pdf_bytes")


def resolve_request_id(request: Request) -> str:
    """Reuse a well-formed X-Request-ID from the client, otherwise mint one."""
    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if _CLIENT_REQUEST_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


def run_context(request: Request) -> Dict[str, Any]:
    return {
        name: getattr(request.state, name)
        for name in RUN_CONTEXT_FIELDS
        if getattr(request.state, name, None) is not None
    }


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request as a single JSON object.

    Fields: request_id, method, path, client_ip, content_length, status_code,
    duration_ms and, for pipeline routes, the run context. Upload bodies,
    form fields and API keys are never logged.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        started = time.perf_counter()

        entry: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }
        if request.headers.get("content-length"):
            entry["content_length"] = int(request.headers["content-length"])

        try:
            response = await call_next(request)
        except Exception as e:
            entry.update({
                "status_code": 500,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(e).__name__,
                **run_context(request),
            })
            logger.error(json.dumps(entry), exc_info=True)
            raise

        entry.update({
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            **run_context(request),
        })
        logger.log(_level_for(response.status_code), json.dumps(entry))

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Request id assigned by RequestLoggingMiddleware ('unknown' outside it)."""
    return getattr(request.state, "request_id", "unknown")
