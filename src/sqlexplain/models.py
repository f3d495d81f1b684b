"""
Pydantic models for explain requests and explanation results.

The wire format uses camelCase keys (sql, explainPlan, planAnalysis, ...),
which map to snake_case attributes via Pydantic aliases for Pythonic
access. Models accept either form on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from sqlexplain.exceptions import ValidationError


class Dialect(str, Enum):
    """SQL dialects the service can explain."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Operation(str, Enum):
    """Normalized plan operations shared by every dialect."""

    SEQ_SCAN = "SeqScan"
    INDEX_SCAN = "IndexScan"
    INDEX_ONLY_SCAN = "IndexOnlyScan"
    BITMAP_HEAP_SCAN = "BitmapHeapScan"
    HASH_JOIN = "HashJoin"
    NESTED_LOOP = "NestedLoop"
    SORT = "Sort"
    AGGREGATE = "Aggregate"
    LIMIT = "Limit"
    OTHER = "Other"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Request
# =============================================================================


class ExplainRequest(_WireModel):
    """Input contract for one explanation."""

    sql: str = Field(..., min_length=1, description="SQL statement to explain")
    dialect: Dialect = Field(default=Dialect.POSTGRES)
    schema_: str | None = Field(
        default=None,
        alias="schema",
        description="Optional schema summary (DDL or free text)",
    )
    explain_plan: str | None = Field(
        default=None,
        alias="explainPlan",
        description="Raw EXPLAIN output (JSON or text) for the statement",
    )
    privacy_mode: bool = Field(default=True, alias="privacyMode")
    cache: bool = Field(default=True)

    @field_validator("sql")
    @classmethod
    def _sql_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("SQL required")
        return value

    @classmethod
    def from_body(cls, data: dict[str, Any]) -> "ExplainRequest":
        """
        Validate a raw request body.

        Raises:
            ValidationError: With the first offending field.
        """
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(x) for x in first["loc"]) or None
            prefix = f"{loc}: " if loc else ""
            raise ValidationError(
                f"Invalid request: {prefix}{first['msg']}",
                field=loc,
            ) from e


# =============================================================================
# Result
# =============================================================================


class QueryFingerprint(_WireModel):
    """
    Stable identity for a SQL statement.

    Statements differing only in literal values, whitespace, comments or
    keyword case share the same hash.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hash: str
    pattern: str
    tables: list[str] = Field(default_factory=list)
    join_count: int = Field(default=0, alias="joinCount")
    where_clause_complexity: int = Field(default=0, alias="whereClauseComplexity")


class Cost(_WireModel):
    startup: float
    total: float


class PlanAnalysisNode(_WireModel):
    """One plan node as described by the explanation backend."""

    node_id: str = Field(..., alias="nodeId")
    operation: Operation = Operation.OTHER
    estimated_rows: float | None = Field(default=None, alias="estimatedRows")
    actual_rows: float | None = Field(default=None, alias="actualRows")
    cost: Cost | None = None
    hotness_score: float = Field(default=0, alias="hotnessScore")
    explanation: str = ""

    @field_validator("operation", mode="before")
    @classmethod
    def _unknown_operation(cls, value: Any) -> Any:
        # Backends sometimes invent operation names; keep the node.
        if isinstance(value, str) and value not in Operation._value2member_map_:
            return Operation.OTHER
        return value


class OptimizationSuggestion(_WireModel):
    title: str
    severity: Severity
    reason: str
    change: str
    estimated_impact: str = Field(..., alias="estimatedImpact")


class Antipattern(_WireModel):
    name: str
    severity: Severity
    explain: str


class BackendExplanation(_WireModel):
    """
    The explanation shape a backend must produce.

    A remote reply is validated against this model as a whole; a reply
    missing any required part is rejected rather than partially accepted.
    """

    summary: str
    walkthrough: list[str]
    plan_analysis: list[PlanAnalysisNode] = Field(..., alias="planAnalysis")
    optimizations: list[OptimizationSuggestion]
    antipatterns: list[Antipattern]
    rewritten_sql: str | None = Field(default=None, alias="rewrittenSQL")
    confidence: Confidence


class ExplanationResult(BackendExplanation):
    """
    A complete explanation as returned to callers and stored in the cache.

    Attributes:
        fingerprint: Identity of the explained statement.
        execution_time_ms: Time spent computing the explanation.
        cached: True when served from the result cache.
    """

    fingerprint: QueryFingerprint
    execution_time_ms: float = Field(default=0.0, alias="executionTimeMs")
    cached: bool = False

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
