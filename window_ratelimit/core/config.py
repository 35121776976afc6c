"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_MESSAGE = "Too many requests, please try again later."

CountingMode = Literal["legacy", "exact"]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    BaseSettings is populated from environment variables, but static type
    checkers treat its fields as constructor arguments.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    title: str = Field(
        "Window Rate Limit",
        description="Title of the FastAPI application",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window rate limiter configuration.

    The window store and the limiter middleware are both built from these
    values when no explicit store/options are provided.
    """

    enabled: bool = Field(
        True,
        description="Install the rate limit middleware on the application",
    )
    window_seconds: float = Field(
        60,
        description="Length of the fixed window in seconds (0 disables limiting)",
        ge=0,
    )
    max_connections: int = Field(
        5,
        description="Maximum number of hits per key within one window",
        ge=0,
    )
    status_code: int = Field(
        429,
        description="HTTP status code sent to rate limited clients",
        ge=400,
        le=599,
    )
    message: str = Field(
        DEFAULT_MESSAGE,
        description="Response body sent to rate limited clients",
    )
    legacy_headers: bool = Field(
        True,
        description="Send X-RateLimit-* and X-Retry-After headers",
    )
    standard_headers: bool = Field(
        False,
        description="Send RateLimit-* and Retry-After headers",
    )
    counting_mode: CountingMode = Field(
        "legacy",
        description=(
            "legacy: report the stored count, freeze it once over the limit; "
            "exact: report the post-increment count and keep counting"
        ),
    )
    shard_count: int = Field(
        16,
        description="Number of independently locked partitions of the store",
        ge=1,
    )
    sweep_interval_seconds: float | None = Field(
        30.0,
        description="Seconds between background expiry sweeps ('none' to disable)",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
        env_parse_none_str="none",
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
