"""
Service settings for SQLExplain.

Uses environment variables with sensible defaults for local development.
Settings are loaded from environment variables with the SQLEXPLAIN_ prefix.
The Anthropic key is also accepted under its conventional name,
ANTHROPIC_API_KEY.

Examples:
    SQLEXPLAIN_BACKEND=stub
    SQLEXPLAIN_REDIS_URL=redis://localhost:6379/0
    SQLEXPLAIN_DATABASE_URL=postgresql+asyncpg://user:pass@db/sqlexplain
    SQLEXPLAIN_ENABLE_RATE_LIMITING=true
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import Enum

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from sqlexplain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ENV_PREFIX = "SQLEXPLAIN_"

# Conventional names accepted as a fallback for specific fields
_FALLBACK_ENV = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
}


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class BackendKind(str, Enum):
    """Which explanation backend to construct."""

    REMOTE = "remote"
    STUB = "stub"


class Settings(BaseModel):
    """Configuration for the SQLExplain service."""

    # ── Server ──────────────────────────────────────────────────────────
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Explanation backend ─────────────────────────────────────────────
    backend: BackendKind = Field(
        default=BackendKind.REMOTE,
        description="remote (Anthropic) or stub (deterministic stand-in)",
    )
    anthropic_api_key: str | None = Field(default=None, repr=False)
    model: str = Field(default="claude-sonnet-4-20250514")
    max_tokens: int = Field(default=2048, gt=0)
    backend_timeout_seconds: float = Field(default=30.0, gt=0)
    request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="End-to-end budget for one explain request"
    )

    # ── Cache ───────────────────────────────────────────────────────────
    redis_url: str | None = Field(
        default=None, description="Redis URL; in-memory store when unset"
    )
    cache_ttl_seconds: int = Field(default=3600, gt=0)
    lock_ttl_seconds: int = Field(default=10, gt=0)
    lock_poll_attempts: int = Field(default=3, ge=0)
    memory_cache_max_entries: int = Field(
        default=10_000, gt=0, description="Key bound for the in-memory store"
    )
    privacy_mode_default: bool = Field(default=True)

    # ── Database ────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./sqlexplain.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # ── Limits ──────────────────────────────────────────────────────────
    enable_rate_limiting: bool = Field(default=False)
    daily_token_budget: int = Field(
        default=100, gt=0, description="Explain requests per identity per day"
    )
    metrics_enabled: bool = Field(default=True)

    @property
    def is_test(self) -> bool:
        return self.environment is Environment.TEST


def get_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Load settings from environment variables.

    Lookup order per field:
    1. SQLEXPLAIN_<FIELD>
    2. A conventional fallback name, where one exists (ANTHROPIC_API_KEY)

    Raises:
        ConfigurationError: If a value cannot be coerced to its field type.
    """
    env = os.environ if environ is None else environ

    overrides: dict[str, str] = {}
    for field_name in Settings.model_fields:
        key = f"{_ENV_PREFIX}{field_name.upper()}"
        if key in env:
            overrides[field_name] = env[key]
        elif field_name in _FALLBACK_ENV and _FALLBACK_ENV[field_name] in env:
            overrides[field_name] = env[_FALLBACK_ENV[field_name]]

    # Empty strings mean "unset" for optional URLs and keys
    for optional in ("redis_url", "anthropic_api_key"):
        if overrides.get(optional) == "":
            del overrides[optional]

    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except PydanticValidationError as e:
        first = e.errors()[0]
        config_key = str(first["loc"][0]) if first["loc"] else None
        raise ConfigurationError(
            f"Invalid setting {config_key}: {first['msg']}",
            config_key=config_key,
        ) from e
