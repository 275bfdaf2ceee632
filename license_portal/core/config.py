"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

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


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat fields as required constructor arguments,
    which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_api_key_required: bool = Field(
        True,
        description="Whether admin endpoints require an API key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    stats_max_keys: int = Field(
        50,
        description="Maximum number of tracked keys listed by the stats endpoint",
        ge=0,
    )
    stats_top_n: int = Field(
        10,
        description="Entries listed in the top blocked clients and top endpoints reports",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration.

    Each preset is a (window_ms, max_requests) pair applied to a class of
    routes. Values are validated at startup so a bad deployment fails before
    serving traffic.
    """

    enabled: bool = Field(
        True,
        description="Enable the API rate limiting middleware",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on allowed responses",
    )
    cleanup_interval_seconds: float = Field(
        300.0,
        description="Seconds between cleanup sweeps of stale rate limit keys",
        gt=0,
    )
    exempt_paths: str = Field(
        "/health,/docs,/redoc,/openapi.json",
        description="Comma-separated path prefixes never rate limited",
    )
    stats_max_tracked: int = Field(
        1000,
        description="Per-preset bound on client and endpoint counters kept for stats",
        ge=1,
    )

    general_window_ms: int = Field(60_000, ge=1)
    general_max_requests: int = Field(100, ge=1)
    auth_window_ms: int = Field(60_000, ge=1)
    auth_max_requests: int = Field(5, ge=1)
    sensitive_window_ms: int = Field(3_600_000, ge=1)
    sensitive_max_requests: int = Field(10, ge=1)
    upload_window_ms: int = Field(60_000, ge=1)
    upload_max_requests: int = Field(5, ge=1)
    admin_window_ms: int = Field(60_000, ge=1)
    admin_max_requests: int = Field(30, ge=1)
    public_window_ms: int = Field(3_600_000, ge=1)
    public_max_requests: int = Field(1000, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    def exempt_path_prefixes(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.exempt_paths.split(",") if p.strip())


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after N bytes (0 disables)")
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and propagate request ids",
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


# Nested settings are created via default_factory so env loading works.
settings = Settings()
