"""Settings for the rate limit gateway.

Three groups, each read from its own environment prefix:
- ``APP_*``: admin auth, admission behavior and policy overrides
- ``REDIS_*``: the shared counter store connection
- ``LOG_*``: log level and output

Values are read from the process environment after ``.env.{APP_ENV}``
(development, testing, staging or production) has been loaded into it.
``APP_RATE_LIMIT_FAILURE_MODE`` has no default: startup fails until an
operator picks ``open`` or ``closed``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.schemas.policy import PolicyConfig

APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILES = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}


def _load_env_file(app_env: str) -> Path | None:
    """Push ``.env.{app_env}`` into os.environ, if the file exists.

    Nested BaseSettings do not inherit ``env_file``, so the variables have to
    be in the environment before any of them is instantiated.
    """

    env_path = PROJECT_ROOT / ENV_FILES.get(app_env, ENV_FILES["development"])
    if not env_path.is_file():
        return None
    load_dotenv(env_path, override=True)
    return env_path


_load_env_file(APP_ENV)


def _build_app_settings() -> "AppSettings":
    # Required fields come from the environment, not the constructor
    return AppSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class AppSettings(BaseSettings):
    """Admin API and admission control settings (``APP_*``)."""

    debug: bool = Field(
        False,
        description="Log at DEBUG level regardless of LOG_LEVEL",
    )
    admin_auth_required: bool = Field(
        True,
        description="Whether the rate limit admin API requires an X-Admin-Key header",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of operator keys for the admin API",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable admission control on guarded routes and the global middleware",
    )
    rate_limit_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Counter store backend; 'memory' is per-process only",
    )
    rate_limit_failure_mode: Literal["open", "closed"] = Field(
        ...,
        description=(
            "Behavior when the counter store is unavailable: 'open' lets requests "
            "through, 'closed' fails them with a server error"
        ),
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on guarded responses",
    )
    rate_limit_global_policy: str | None = Field(
        "global",
        description="Policy applied to every request by the middleware (empty disables it)",
    )
    rate_limit_policies: dict[str, PolicyConfig] = Field(
        default_factory=dict,
        description="JSON object of policy overrides/additions keyed by policy name",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as the client address",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared counter store connection settings."""

    url: str | None = Field(
        None,
        description="Full redis:// URL; takes precedence over host/port/db",
    )
    host: str = Field("localhost", description="Redis host")
    port: int = Field(6379, description="Redis port")
    password: str | None = Field(None, description="Redis password")
    db: int = Field(0, description="Redis database index")
    socket_timeout_seconds: float = Field(
        0.5,
        description="Per-operation socket timeout; a timeout counts as store unavailable",
        gt=0,
    )
    key_prefix: str = Field(
        "rl",
        description="Prefix prepended to every counter key",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings groups, built once at import time.

    A missing or invalid required value raises ``ValidationError`` here, so a
    misconfigured gateway never starts serving.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
