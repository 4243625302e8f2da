"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates required fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional (all have defaults):
        CACHE_DIR: Directory holding one gzip blob per cached URL
        FETCH_TIMEOUT_SECONDS: Deadline for a single fetch (must be > 0)
        FETCH_BACKEND: "http" for plain GET, "browser" for a rendering endpoint
        BROWSER_ENDPOINT: Base URL of the rendering endpoint (browser backend only)
        BROWSER_TOKEN: Access token for the rendering endpoint
        USER_AGENT: User-Agent header sent by the HTTP backend
        MAX_CONTENT_BYTES: Largest response body accepted
        MINIFY_HTML: Whether fetched pages are minified before caching
        COMPRESSION_LEVEL: gzip level used for stored blobs
        LOG_LEVEL: Logging level
        LOG_FILE: Optional JSON Lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    CACHE_DIR: Path = Field(
        default=Path(".cache/downloads"), description="Cache directory"
    )
    COMPRESSION_LEVEL: int = Field(
        default=6, ge=1, le=9, description="gzip compression level for blobs"
    )

    # Fetching
    FETCH_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0.0, description="Timeout for a single fetch in seconds"
    )
    FETCH_BACKEND: Literal["http", "browser"] = Field(
        default="http", description="Retrieval backend (http|browser)"
    )
    BROWSER_ENDPOINT: str | None = Field(
        default=None, description="Headless browser rendering endpoint base URL"
    )
    BROWSER_TOKEN: str | None = Field(
        default=None, description="Token for the rendering endpoint"
    )
    USER_AGENT: str = Field(
        default="DownloadCache/1.0",
        description="User-Agent header for plain HTTP fetches",
    )
    MAX_CONTENT_BYTES: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Maximum accepted body size"
    )

    # Transformation
    MINIFY_HTML: bool = Field(default=True, description="Minify fetched HTML")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    @field_validator("BROWSER_ENDPOINT")
    @classmethod
    def validate_browser_endpoint(cls, v: str | None) -> str | None:
        """Strip trailing slashes and require an http(s) scheme."""
        if v is None or not v.strip():
            return None
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("BROWSER_ENDPOINT must start with http:// or https://")
        return v

    @model_validator(mode="after")
    def validate_backend_requirements(self) -> Settings:
        """Ensure the browser backend has an endpoint to talk to."""
        if self.FETCH_BACKEND == "browser" and not self.BROWSER_ENDPOINT:
            raise ValueError(
                "FETCH_BACKEND=browser requires BROWSER_ENDPOINT to be set"
            )
        return self

    @property
    def cache_dir(self) -> Path:
        """Get cache directory (lowercase alias)."""
        return self.CACHE_DIR

    @property
    def fetch_timeout(self) -> float:
        """Get fetch timeout in seconds (lowercase alias)."""
        return self.FETCH_TIMEOUT_SECONDS

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)
        if self.LOG_FILE:
            self.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with secrets redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:4]}...{value[-2:]}" if len(value) > 8 else "***"

        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "COMPRESSION_LEVEL": self.COMPRESSION_LEVEL,
            "FETCH_TIMEOUT_SECONDS": self.FETCH_TIMEOUT_SECONDS,
            "FETCH_BACKEND": self.FETCH_BACKEND,
            "BROWSER_ENDPOINT": self.BROWSER_ENDPOINT,
            "BROWSER_TOKEN": redact(self.BROWSER_TOKEN),
            "USER_AGENT": self.USER_AGENT,
            "MAX_CONTENT_BYTES": self.MAX_CONTENT_BYTES,
            "MINIFY_HTML": self.MINIFY_HTML,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
