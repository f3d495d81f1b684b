"""
Dialect dispatch for EXPLAIN output.

parse_plan() is the single entry point the orchestrator uses. It picks the
parser for the dialect, sniffs JSON vs text where a dialect has both, and
enforces the resource limits from ParserConfig on every result.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError as PydanticValidationError

from sqlexplain.exceptions import PlanParseError, UnsupportedDialectError, UnsupportedFormatError
from sqlexplain.models import Dialect
from sqlexplain.plans.config import DEFAULT_CONFIG, ParserConfig
from sqlexplain.plans.models import PlanNode
from sqlexplain.plans.mysql import parse_mysql_json
from sqlexplain.plans.postgres import parse_postgres_json, parse_postgres_text
from sqlexplain.plans.sqlite import parse_sqlite_text

logger = logging.getLogger(__name__)


def parse_plan(
    explain_output: str,
    dialect: Dialect | str,
    config: ParserConfig | None = None,
) -> PlanNode:
    """
    Parse EXPLAIN output for ``dialect`` into a normalized PlanNode tree.

    - postgres: JSON array, a bare ``{"Plan": ...}`` object, or text format
    - mysql: FORMAT=JSON or traditional rows as a JSON array
    - sqlite: EXPLAIN QUERY PLAN text

    Args:
        explain_output: Raw EXPLAIN text as the database printed it.
        dialect: Target dialect.
        config: Resource limits (default: DEFAULT_CONFIG).

    Raises:
        UnsupportedDialectError: For dialects without a parser.
        UnsupportedFormatError: For MySQL output that is not JSON.
        PlanParseError: For malformed output or exceeded limits. Wrong field
            types and over-deep JSON surface here too, never as other errors.
    """
    config = config or DEFAULT_CONFIG
    dialect_name = dialect.value if isinstance(dialect, Dialect) else str(dialect).lower()

    if dialect_name not in {d.value for d in Dialect}:
        raise UnsupportedDialectError(dialect_name)

    size = len(explain_output.encode("utf-8"))
    if size > config.max_input_bytes:
        raise PlanParseError(
            f"EXPLAIN output too large ({size:,} bytes, max {config.max_input_bytes:,})",
            dialect=dialect_name,
            source="resource_limit",
        )

    try:
        if dialect_name == Dialect.POSTGRES.value:
            root = _parse_postgres(explain_output, config)
        elif dialect_name == Dialect.MYSQL.value:
            root = _parse_mysql(explain_output, config)
        else:
            root = parse_sqlite_text(explain_output, config)
        _check_limits(root, dialect_name, config)
    except (PydanticValidationError, TypeError, ValueError, RecursionError) as e:
        # Valid JSON in the wrong shape, or nesting deeper than the decoder allows
        raise PlanParseError(
            f"Malformed {dialect_name} EXPLAIN output ({type(e).__name__})",
            dialect=dialect_name,
            source="structure",
            detail=str(e)[:200],
        ) from e

    logger.debug("Parsed %s plan: %d nodes", dialect_name, root.node_count)
    return root


def _parse_postgres(text: str, config: ParserConfig) -> PlanNode:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return parse_postgres_text(text, config)

    if isinstance(data, dict) and "Plan" in data:
        data = [data]
    if not isinstance(data, list):
        raise PlanParseError(
            f"Expected a JSON array, got {type(data).__name__}",
            dialect="postgres",
            source="structure",
        )
    return parse_postgres_json(data, config)


def _parse_mysql(text: str, config: ParserConfig) -> PlanNode:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise UnsupportedFormatError("mysql", "text") from e
    return parse_mysql_json(data, config)


def _check_limits(root: PlanNode, dialect: str, config: ParserConfig) -> None:
    count = root.node_count
    if count > config.max_nodes:
        raise PlanParseError(
            f"Plan has too many nodes ({count:,}, max {config.max_nodes:,})",
            dialect=dialect,
            source="resource_limit",
        )
    if root.depth > config.max_depth:
        raise PlanParseError(
            f"Plan too deeply nested (max {config.max_depth})",
            dialect=dialect,
            source="resource_limit",
        )
