"""
EXPLAIN plan parsing and heuristics.

Usage:
    from sqlexplain.plans import parse_plan, analyze_plan

    plan = parse_plan(explain_text, "postgres")
    for rec in analyze_plan(plan).recommendations:
        print(rec.reason)
"""

from sqlexplain.plans.config import DEFAULT_CONFIG, ParserConfig
from sqlexplain.plans.dispatch import parse_plan
from sqlexplain.plans.heuristics import (
    HeuristicAnalyzer,
    HeuristicReport,
    Recommendation,
    analyze_plan,
    to_suggestion,
)
from sqlexplain.plans.models import PlanNode

__all__ = [
    "parse_plan",
    "analyze_plan",
    "to_suggestion",
    "HeuristicAnalyzer",
    "HeuristicReport",
    "Recommendation",
    "PlanNode",
    "ParserConfig",
    "DEFAULT_CONFIG",
]
