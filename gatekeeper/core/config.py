"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Every admission tier (window, ceiling, on/off switch) and every abuse
threshold is tunable here without touching code.
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


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate after N bytes (0 disables rotation)", ge=0)
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(env_prefix="LOG_", case_sensitive=False)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(False, description="Enable debug mode with verbose logging")
    title: str = Field("Gatekeeper", description="Service title shown in OpenAPI docs")
    host: str = Field("0.0.0.0", description="Bind address for the bundled server")
    port: int = Field(8000, description="Listen port for the bundled server", ge=1, le=65535)

    model_config = SettingsConfigDict(env_prefix="APP_", case_sensitive=False)


class RateLimitSettings(BaseSettings):
    """Admission tiers and window store tuning.

    Operation rules are comma-separated entries of the form
    ``[METHOD ]<glob path>``, e.g. ``"POST /v1/auth/refresh, /v1/ai/*"``.
    """

    enabled: bool = Field(True, description="Master switch for rate limiting")
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on allowed and throttled responses",
    )
    store_shards: int = Field(64, description="Number of lock shards in the window store", ge=1)
    user_agent_prefix: int = Field(
        50,
        description="User-agent characters kept in address-based keys",
        ge=0,
    )

    flood_enabled: bool = Field(True, description="Per-address flood protection tier")
    flood_window_seconds: float = Field(60, gt=0)
    flood_max_requests: int = Field(100, ge=1)

    global_enabled: bool = Field(True, description="Coarse per-address volumetric tier")
    global_window_seconds: float = Field(15 * 60, gt=0)
    global_max_requests: int = Field(10_000, ge=1)

    user_enabled: bool = Field(True, description="Per-identity tier")
    user_window_seconds: float = Field(15 * 60, gt=0)
    user_max_requests: int = Field(1_000, ge=1)

    sensitive_window_seconds: float = Field(60, gt=0)
    sensitive_max_requests: int = Field(10, ge=1)
    sensitive_operations: str = Field(
        "POST /v1/auth/refresh, DELETE /v1/auth/account, POST /v1/auth/password",
        description="Operations charged against the strict per-endpoint tier",
    )

    inference_window_seconds: float = Field(60 * 60, gt=0)
    inference_premium_max_requests: int = Field(1_000, ge=1)
    inference_free_max_requests: int = Field(50, ge=1)
    inference_operations: str = Field("/v1/ai/*", description="Resource-intensive operations")
    premium_tiers: str = Field("premium", description="Subscription tiers granted the premium ceiling")

    upload_window_seconds: float = Field(60, gt=0)
    upload_max_requests: int = Field(5, ge=1)
    upload_operations: str = Field("POST /v1/uploads*, POST /v1/images*")

    admin_window_seconds: float = Field(60, gt=0)
    admin_max_requests: int = Field(100, ge=1)
    admin_operations: str = Field("/v1/admin/*")

    eviction_period_seconds: float = Field(5 * 60, description="Evictor sweep period", gt=0)
    eviction_grace_seconds: float = Field(60, description="Keep expired windows this long", ge=0)

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", case_sensitive=False)


class AbuseSettings(BaseSettings):
    """Suspicious-activity heuristics."""

    enabled: bool = Field(True, description="Run the abuse detector after rate limits pass")
    window_seconds: float = Field(60, description="Trailing history window", gt=0)
    rapid_request_threshold: int = Field(50, ge=0)
    source_address_threshold: int = Field(3, ge=0)
    failure_threshold: int = Field(10, ge=0)
    min_indicators: int = Field(2, description="Indicators required to block", ge=1, le=4)
    block_seconds: int = Field(300, description="Cool-down returned on block", ge=1)
    history_timeout_seconds: float = Field(
        2.0,
        description="Upper bound on the history lookup before failing open",
        gt=0,
    )
    history_max_entries: int = Field(
        500,
        description="Per-identity cap of the in-memory request history",
        ge=1,
    )
    user_agent_patterns: str = Field(
        "bot,crawler,spider,scraper,curl,wget,python,java,postman,insomnia",
        description="Comma-separated automation signatures (case-insensitive regexes)",
    )

    model_config = SettingsConfigDict(env_prefix="ABUSE_", case_sensitive=False)


class IdentitySettings(BaseSettings):
    """Headers populated by the upstream authentication layer."""

    user_header: str = Field("X-User-ID", description="Authenticated identity header")
    tier_header: str = Field("X-Subscription-Tier", description="Subscription tier header")

    model_config = SettingsConfigDict(env_prefix="IDENTITY_", case_sensitive=False)


class AuditSettings(BaseSettings):
    """Audit event dispatch."""

    enabled: bool = Field(True, description="Emit audit records")
    queue_size: int = Field(1_000, description="Pending audit events before dropping", ge=1)

    model_config = SettingsConfigDict(env_prefix="AUDIT_", case_sensitive=False)


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are out of range.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=LogSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    abuse: AbuseSettings = Field(default_factory=AbuseSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    model_config = SettingsConfigDict(case_sensitive=False)


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> split_csv("a, b ,,c")
        ['a', 'b', 'c']
        >>> split_csv(None)
        []
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# Global settings instance - composed from domain-specific settings
settings = Settings()
