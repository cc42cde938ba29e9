"""FastAPI application for the exam generator service."""

import logging
import re
import shutil
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Union

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from slowapi.errors import RateLimitExceeded  # type: ignore[import-not-found]

from exam_generator.config import VERSION, get_settings
from exam_generator.errors import ExamGeneratorError
from exam_generator.middleware.logging import RequestLoggingMiddleware, get_request_id
from exam_generator.middleware.rate_limit import (
    get_limiter,
    rate_limit_exceeded_handler,
    RateLimitMiddleware,
)
from exam_generator.routers import exams

logger = logging.getLogger(__name__)

FRONTEND_VERSION_PATTERN = re.compile(
    r'<meta\s+name=["\']app-version["\']\s+content=["\']([^"\']*)["\']',
    re.IGNORECASE,
)


def read_frontend_version(index_path: Path) -> str:
    """Version declared by the bundled frontend's app-version meta tag."""
    try:
        html = index_path.read_text(encoding="utf-8")
    except OSError:
        return "unknown"
    match = FRONTEND_VERSION_PATTERN.search(html)
    return match.group(1) if match and match.group(1) else "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log the effective configuration once; fail fast when it is invalid."""
    settings = get_settings()
    logger.info(
        f"Exam Generator API v{VERSION} starting "
        f"(model={settings.model_name}, test_mode={settings.test_mode}, work_dir={settings.work_dir})"
    )
    if shutil.which(settings.latex_command) is None:
        logger.warning(f"{settings.latex_command} is not on PATH; /generate will fail until it is installed")

    yield

    logger.info("Exam Generator API stopped")


app = FastAPI(
    title="Exam Generator API",
    description="Turns photos of handwritten notes into printable exams with grading table and answer key",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# slowapi looks the limiter up on app.state
app.state.limiter = get_limiter()
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(ExamGeneratorError)
async def exam_generator_error_handler(request: Request, exc: ExamGeneratorError) -> JSONResponse:
    """Map classified pipeline failures to their status and public message."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{exc.error_type} on {request.method} {request.url.path} "
        f"(request {get_request_id(request)}): {exc.message}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message, "error_type": exc.error_type},
    )


# Last added runs first: CORS, then rate limit headers, then access logging
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.get("/", include_in_schema=False)
async def index() -> FileResponse:
    """Serve the bundled frontend."""
    index_path = get_settings().index_path
    if not index_path.is_file():
        raise HTTPException(status_code=404, detail="Frontend not found")
    return FileResponse(index_path, media_type="text/html")


@app.get("/assets/{asset_path:path}", include_in_schema=False)
async def asset(asset_path: str) -> FileResponse:
    """Serve branding assets (logo and frontend resources)."""
    assets_dir = get_settings().assets_dir.resolve()
    target = (assets_dir / asset_path).resolve()
    if assets_dir not in target.parents or not target.is_file():
        raise HTTPException(status_code=404, detail="Asset not found")
    return FileResponse(target)


def probe_compiler(latex_command: str) -> Optional[str]:
    """None when the compiler binary is reachable, else the problem."""
    if shutil.which(latex_command):
        return None
    return f"{latex_command} not found"


def probe_model(test_mode: bool, api_key: Optional[str]) -> Optional[str]:
    if test_mode or api_key:
        return None
    return "GEMINI_API_KEY not set"


@app.get("/health", response_model=None)
async def health_check() -> Union[Dict[str, Any], Response]:
    """
    Report whether documents can be compiled and the model can be called.

    Status Codes:
        200: Compiler present and model configured (or test mode)
        503: Either dependency missing
    """
    settings = get_settings()
    problems = {
        "latex": probe_compiler(settings.latex_command),
        "gemini_api": probe_model(settings.test_mode, settings.gemini_api_key),
    }

    services = {name: f"unhealthy: {problem}" if problem else "healthy" for name, problem in problems.items()}
    if settings.test_mode:
        services["gemini_api"] = "skipped: test mode"

    healthy = not any(problems.values())
    body: Dict[str, Any] = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
    }
    if healthy:
        return body
    return JSONResponse(status_code=503, content=body)


@app.get("/version")
async def version_info() -> Dict[str, str]:
    """Backend version and the version the bundled frontend declares."""
    return {
        "version": VERSION,
        "frontend_version": read_frontend_version(get_settings().index_path),
    }


app.include_router(exams.router)
