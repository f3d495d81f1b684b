"""
Package-level exception hierarchy for SQLExplain.

All exceptions inherit from SQLExplainError, enabling:
- Catching all SQLExplain errors with a single except clause
- Structured serialization via to_dict() for JSON error responses

Hierarchy:
    SQLExplainError
    ├── ValidationError              – Malformed explain request
    ├── ConfigurationError           – Invalid settings
    ├── PlanParseError               – EXPLAIN output could not be parsed
    │   ├── UnsupportedDialectError  – No parser for the dialect
    │   └── UnsupportedFormatError   – Known dialect, unsupported sub-format
    ├── BackendError                 – Explanation backend failed
    │   ├── BackendTimeoutError      – Backend did not answer in time
    │   └── InvalidBackendResponseError – Reply was not the expected JSON
    ├── CacheUnavailableError        – Cache store unreachable
    └── PersistenceError             – Durable store write failed

Only ValidationError and BackendError ever reach a caller of the
explanation service. Everything else is recovered where it is raised.
"""

from __future__ import annotations

from typing import Any


class SQLExplainError(Exception):
    """
    Base exception for all SQLExplain errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Request Errors ───────────────────────────────────────────────────────


class ValidationError(SQLExplainError):
    """
    Malformed explain request (missing SQL, unknown dialect, ...).

    Attributes:
        field: The offending request field, if known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        return result


class ConfigurationError(SQLExplainError):
    """
    Invalid configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Plan Errors ──────────────────────────────────────────────────────────


class PlanParseError(SQLExplainError):
    """
    Failed to parse EXPLAIN output.

    Attributes:
        dialect: Dialect the output was parsed as.
        detail: Technical details for debugging.
        source: Stage that failed ("json_decode", "structure", "resource_limit", ...).
    """

    def __init__(
        self,
        message: str,
        *,
        dialect: str | None = None,
        detail: str | None = None,
        source: str = "unknown",
    ) -> None:
        self.dialect = dialect
        self.detail = detail
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["dialect"] = self.dialect
        result["detail"] = self.detail
        result["source"] = self.source
        return result


class UnsupportedDialectError(PlanParseError):
    """No plan parser exists for the requested dialect."""

    def __init__(self, dialect: str) -> None:
        super().__init__(
            f"Unsupported dialect: {dialect}",
            dialect=dialect,
            source="dispatch",
        )


class UnsupportedFormatError(PlanParseError):
    """The dialect is known but this EXPLAIN output format is not handled."""

    def __init__(self, dialect: str, format_name: str) -> None:
        self.format_name = format_name
        super().__init__(
            f"{format_name} EXPLAIN format is not supported for {dialect}",
            dialect=dialect,
            source="dispatch",
        )


# ── Backend Errors ───────────────────────────────────────────────────────


class BackendError(SQLExplainError):
    """
    The explanation backend failed.

    Fatal to the request: never cached, never replaced with stale data.

    Attributes:
        provider: Backend name ("claude", "deterministic", ...).
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["provider"] = self.provider
        return result


class BackendTimeoutError(BackendError):
    """The backend (or the whole request) exceeded its time budget."""
    pass


class InvalidBackendResponseError(BackendError):
    """
    The backend replied with something that is not a valid explanation.

    Attributes:
        response_text: The raw reply, truncated for logging.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        response_text: str | None = None,
    ) -> None:
        self.response_text = response_text[:500] if response_text else None
        super().__init__(message, provider=provider)


# ── Infrastructure Errors ────────────────────────────────────────────────


class CacheUnavailableError(SQLExplainError):
    """
    The cache store could not be reached.

    Always recovered: the cache is an accelerator, never a dependency.

    Attributes:
        operation: The store operation that failed.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class PersistenceError(SQLExplainError):
    """Durable store write failed. Logged, never surfaced."""
    pass
