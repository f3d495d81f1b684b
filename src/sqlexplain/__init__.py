"""SQLExplain - natural-language explanations and index advice for SQL."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from sqlexplain.exceptions import (
    SQLExplainError,
    ValidationError,
    ConfigurationError,
    PlanParseError,
    UnsupportedDialectError,
    UnsupportedFormatError,
    BackendError,
    BackendTimeoutError,
    InvalidBackendResponseError,
    CacheUnavailableError,
    PersistenceError,
)

# Public API exports
from sqlexplain.models import (
    Confidence,
    Dialect,
    ExplainRequest,
    ExplanationResult,
    OptimizationSuggestion,
    QueryFingerprint,
    Severity,
)
from sqlexplain.sql import fingerprint, sanitize_sql
from sqlexplain.plans import PlanNode, analyze_plan, parse_plan
from sqlexplain.engine import ExplanationService
from sqlexplain.settings import Settings, get_settings

__all__ = [
    "__version__",
    # Exceptions
    "SQLExplainError",
    "ValidationError",
    "ConfigurationError",
    "PlanParseError",
    "UnsupportedDialectError",
    "UnsupportedFormatError",
    "BackendError",
    "BackendTimeoutError",
    "InvalidBackendResponseError",
    "CacheUnavailableError",
    "PersistenceError",
    # Models
    "Confidence",
    "Dialect",
    "ExplainRequest",
    "ExplanationResult",
    "OptimizationSuggestion",
    "QueryFingerprint",
    "Severity",
    # SQL and plans
    "fingerprint",
    "sanitize_sql",
    "PlanNode",
    "parse_plan",
    "analyze_plan",
    # Orchestration
    "ExplanationService",
    "Settings",
    "get_settings",
]
