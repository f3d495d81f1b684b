"""
Explanation backend protocol.

A backend turns one SQL statement (plus optional schema and EXPLAIN
output) into a BackendExplanation. The orchestrator does not care whether
that comes from a remote model or from lexical rules.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlexplain.models import BackendExplanation


@dataclass(frozen=True)
class BackendRequest:
    """
    Everything a backend may look at.

    Attributes:
        sql: The statement as submitted.
        sanitized_sql: The statement with literals redacted.
        dialect: Target dialect name.
        schema: Optional schema summary.
        explain_plan: Raw EXPLAIN text as the caller submitted it.
        privacy_mode: When True, only ``sanitized_sql`` may leave the process.
    """

    sql: str
    sanitized_sql: str
    dialect: str
    schema: str | None = None
    explain_plan: str | None = None
    privacy_mode: bool = True

    @property
    def outbound_sql(self) -> str:
        """The SQL text that may be sent to a third party."""
        return self.sanitized_sql if self.privacy_mode else self.sql


class ExplanationBackend(ABC):
    """
    Abstract base for explanation backends.

    Implementations raise BackendError (or a subclass) on failure and
    never return a partial explanation.
    """

    name: str = "backend"

    @abstractmethod
    async def explain_sql(self, request: BackendRequest) -> BackendExplanation:
        """Explain a single statement."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
