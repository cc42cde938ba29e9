"""Configuration management for the exam generator service.

This module uses Pydantic Settings to load configuration from environment
variables. All settings are validated at startup to catch configuration
errors early.
"""

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent

# Application metadata
VERSION = "1.0.0"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The Gemini API key must be provided via environment variables or .env
    file unless TEST_MODE is enabled, in which case no model call is made.
    """

    # Gemini API Configuration
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key for note analysis and exam drafting"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use for analysis and drafting"
    )
    ai_timeout_seconds: float = Field(
        default=15.0,
        description="Client-side deadline for a single model call"
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Listening interface")
    port: int = Field(default=8080, description="Listening port")
    test_mode: bool = Field(
        default=False,
        description="Serve canned model output instead of calling Gemini"
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Per-image size cap in bytes"
    )
    max_analyze_images: int = Field(default=3, description="Image cap for /analyze")
    max_generate_images: int = Field(default=5, description="Image cap for /generate")

    # Rate limiting
    rate_limit_max_requests: int = Field(
        default=100,
        description="Requests allowed per client within one window"
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Length of the rate limit window in minutes"
    )
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs whose X-Forwarded-For is trusted"
    )

    # Document compilation
    latex_command: str = Field(default="pdflatex", description="LaTeX compiler binary")
    compile_passes: int = Field(
        default=2,
        description="Compiler passes (the second resolves page references)"
    )
    compile_timeout_seconds: float = Field(
        default=60.0,
        description="Deadline for a single compiler pass"
    )
    work_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "exam_generator",
        description="Parent directory for per-request workspaces"
    )

    # Output and branding
    counter_path: Path = Field(
        default=Path("counter.json"),
        description="JSON file holding the download counter"
    )
    static_dir: Path = Field(
        default=PACKAGE_DIR / "static",
        description="Directory holding index.html and assets/"
    )
    brand_name: str = Field(default="efectoTEC", description="Branding used in documents")
    gap_width: str = Field(default="3cm", description="Width of fill-in gaps")
    grade_thresholds: Literal["default", "alt"] = Field(
        default="default",
        description="Grade scale threshold family"
    )

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    @field_validator("gemini_api_key")
    @classmethod
    def strip_gemini_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Normalize surrounding whitespace; empty values count as unset."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator(
        "max_upload_bytes",
        "max_analyze_images",
        "max_generate_images",
        "rate_limit_max_requests",
        "rate_limit_window_minutes",
        "compile_passes",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("ai_timeout_seconds", "compile_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @model_validator(mode="after")
    def require_api_key_outside_test_mode(self) -> "Settings":
        """Validate that GEMINI_API_KEY is present unless TEST_MODE is on."""
        if not self.test_mode and not self.gemini_api_key:
            raise ValueError(
                "GEMINI_API_KEY must be set in environment variables "
                "(or enable TEST_MODE). Get your API key from https://ai.google.dev/"
            )
        return self

    @property
    def rate_limit(self) -> str:
        """Rate limit string in slowapi notation, e.g. '100 per 15 minutes'."""
        return f"{self.rate_limit_max_requests} per {self.rate_limit_window_minutes} minutes"

    @property
    def index_path(self) -> Path:
        return self.static_dir / "index.html"

    @property
    def assets_dir(self) -> Path:
        return self.static_dir / "assets"


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifetime.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    return Settings()
