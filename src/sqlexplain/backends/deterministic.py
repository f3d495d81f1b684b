"""
Deterministic explanation backend.

Answers from a few lexical checks on the SQL text. Used in tests, in
offline development, and whenever no API key is configured. The same
input always produces the same explanation.
"""

from __future__ import annotations

import logging

from sqlexplain.backends.base import BackendRequest, ExplanationBackend
from sqlexplain.models import (
    BackendExplanation,
    Confidence,
    Cost,
    Operation,
    OptimizationSuggestion,
    PlanAnalysisNode,
    Severity,
)
from sqlexplain.observability import ServiceMetrics

logger = logging.getLogger(__name__)


class DeterministicBackend(ExplanationBackend):
    """Stand-in backend with canned, rule-driven answers."""

    name = "deterministic"

    def __init__(self, metrics: ServiceMetrics | None = None) -> None:
        self.metrics = metrics

    async def explain_sql(self, request: BackendRequest) -> BackendExplanation:
        upper = request.sql.upper()
        is_select = "SELECT" in upper
        is_join = "JOIN" in upper
        has_where = "WHERE" in upper

        logger.info("Using deterministic backend (%d chars of SQL)", len(request.sql))

        if is_select:
            summary = f"Execute a {'join ' if is_join else ''}SELECT query{' with filtering' if has_where else ''}"
        else:
            summary = "Execute a data modification"

        optimizations = []
        if has_where:
            optimizations.append(
                OptimizationSuggestion(
                    title="Add index on filtered column",
                    severity=Severity.MEDIUM,
                    reason="WHERE clause would benefit from index",
                    change="CREATE INDEX idx_filtered ON table(column)",
                    estimated_impact="2-5x faster filtering",
                )
            )

        if self.metrics is not None:
            self.metrics.record_backend_call(self.name, "success")

        return BackendExplanation(
            summary=summary,
            walkthrough=[
                "Parse SELECT columns" if is_select else "Parse statement",
                "Join tables" if is_join else "Access table",
                "Apply WHERE filters" if has_where else "Process all rows",
                "Return results",
            ],
            plan_analysis=[
                PlanAnalysisNode(
                    node_id="node_0",
                    operation=Operation.SEQ_SCAN,
                    estimated_rows=1000,
                    cost=Cost(startup=0, total=100),
                    hotness_score=75 if has_where else 30,
                    explanation="Basic table scan",
                )
            ],
            optimizations=optimizations,
            antipatterns=[],
            rewritten_sql=request.sql,
            confidence=Confidence.LOW,
        )
