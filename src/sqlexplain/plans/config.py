"""
Plan parser configuration with resource limits.

EXPLAIN output arrives from untrusted callers. These limits stop
pathological inputs from exhausting memory or recursion depth before a
plan ever reaches the heuristics.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ParserConfig(BaseModel):
    """
    Configuration for the plan parsers.

    Attributes:
        max_input_bytes: Maximum size of the raw EXPLAIN text.
        max_nodes: Maximum number of plan nodes.
        max_depth: Maximum tree depth (nesting level).

    Example:
        config = ParserConfig(max_nodes=1000)
        plan = parse_plan(text, "postgres", config=config)
    """

    max_input_bytes: int = Field(
        default=2 * 1024 * 1024,
        gt=0,
        description="Maximum EXPLAIN input size in bytes",
    )

    max_nodes: int = Field(
        default=5_000,
        gt=0,
        description="Maximum number of plan nodes",
    )

    max_depth: int = Field(
        default=100,
        gt=0,
        description="Maximum tree depth (nesting level)",
    )


DEFAULT_CONFIG = ParserConfig()
