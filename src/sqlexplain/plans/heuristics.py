"""
Plan heuristics: index recommendations from a normalized plan tree.

Rules, applied to every node in pre-order:

1. Sequential scan with a filter -> index on the filtered columns
   (equality columns first, then range columns).
2. Hash join / nested loop whose inner side is an unfiltered sequential
   scan -> index on the inner table's join columns.
3. Sort over a sequential or bitmap scan -> index on the sort columns.

Recommendations on the same (table, columns) are reported once. The
analyzer is pure: the same plan always yields the same list in the same
order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from sqlexplain.models import OptimizationSuggestion, Operation, Severity
from sqlexplain.plans.models import PlanNode

_KEYWORDS = frozenset({"AND", "OR", "NOT", "NULL", "TRUE", "FALSE", "ANY", "ALL", "IS", "IN"})
_MAX_INDEX_COLUMNS = 3


# =============================================================================
# Data
# =============================================================================


@dataclass(frozen=True)
class ColumnRef:
    """
    A column referenced in a plan condition.

    Attributes:
        table: Table name or alias, if qualified.
        column: Column name.
        is_equality: True for ``=`` / ``IS`` / ``IN`` comparisons.
        is_range: True for ``<``, ``>``, ``BETWEEN``.
    """

    table: str | None
    column: str
    is_equality: bool = False
    is_range: bool = False

    @classmethod
    def from_match(cls, table: str | None, column: str, operator: str) -> "ColumnRef":
        op = operator.lower().strip()
        return cls(
            table=table,
            column=column,
            is_equality=op in ("=", "is", "in", "any") or op.startswith("is "),
            is_range=op in (">", "<", ">=", "<=", "between"),
        )


@dataclass(frozen=True)
class Recommendation:
    """One index suggestion derived from the plan."""

    type: str
    table: str
    columns: tuple[str, ...]
    reason: str


@dataclass
class HeuristicReport:
    recommendations: list[Recommendation] = field(default_factory=list)


# =============================================================================
# Condition parsing
# =============================================================================


class ConditionParser:
    """
    Extracts column references from EXPLAIN condition strings.

    Handles:
    - Simple: (status = 'active')
    - Compound: ((status = 'active') AND (created_at > '2024-01-01'))
    - Qualified: (o.customer_id = c.id)
    - Type casts: ((status)::text = 'pending'::text)
    - MySQL: (`shop`.`o`.`status` = 'paid')
    """

    SIMPLE_PATTERN = re.compile(
        r"[\(\s]"
        r"([a-zA-Z_][a-zA-Z0-9_]*)"
        r"(?:\.([a-zA-Z_][a-zA-Z0-9_]*))?"
        r"(?:\s*\)?\s*::[a-zA-Z_ ]+?)?"
        r"\s*"
        r"([=<>!]+|(?:IS\s+(?:NOT\s+)?NULL)|(?:~~?\*?)|(?:LIKE|ILIKE|IN|ANY|BETWEEN)\b)",
        re.IGNORECASE,
    )

    TYPECAST_PATTERN = re.compile(r"\(\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\)\s*::")

    QUALIFIED_PATTERN = re.compile(r"\b([a-zA-Z_][a-zA-Z0-9_]*)\.([a-zA-Z_][a-zA-Z0-9_]*)\b")

    _STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
    _SCHEMA_QUALIFIED = re.compile(
        r"\b[a-zA-Z_][a-zA-Z0-9_]*\.([a-zA-Z_][a-zA-Z0-9_]*\.[a-zA-Z_][a-zA-Z0-9_]*)\b"
    )

    @classmethod
    def clean(cls, condition: str) -> str:
        """Drop literals, backticks and schema prefixes."""
        text = cls._STRING_LITERAL.sub("?", condition)
        text = text.replace("`", "").replace('"', "")
        return cls._SCHEMA_QUALIFIED.sub(r"\1", text)

    @classmethod
    def parse(cls, condition: str | None) -> list[ColumnRef]:
        if not condition:
            return []

        text = " " + cls.clean(condition)
        refs: list[ColumnRef] = []
        seen: set[tuple[str | None, str]] = set()

        def add(ref: ColumnRef) -> None:
            key = (ref.table, ref.column)
            if key not in seen and ref.column.upper() not in _KEYWORDS:
                seen.add(key)
                refs.append(ref)

        for match in cls.TYPECAST_PATTERN.finditer(text):
            add(ColumnRef.from_match(None, match.group(1), "="))

        for match in cls.SIMPLE_PATTERN.finditer(text):
            first, second, operator = match.groups()
            if second:
                add(ColumnRef.from_match(first, second, operator))
            else:
                add(ColumnRef.from_match(None, first, operator))

        # Right-hand sides of joins ("= c.id") carry no operator of their own
        for match in cls.QUALIFIED_PATTERN.finditer(text):
            add(ColumnRef.from_match(match.group(1), match.group(2), "="))

        return refs

    @classmethod
    def parse_sort_keys(cls, sort_keys: list[str]) -> list[ColumnRef]:
        """Sort Key entries such as ``o.created_at DESC`` or ``name NULLS FIRST``."""
        refs: list[ColumnRef] = []
        for key in sort_keys:
            key = cls.clean(key.strip())
            key = re.sub(r"\s+(DESC|ASC|NULLS\s+(?:FIRST|LAST))(\s+NULLS\s+(?:FIRST|LAST))?\s*$", "", key, flags=re.I)
            key = key.strip("()")
            table, _, column = key.rpartition(".")
            if re.fullmatch(r"[a-zA-Z_][a-zA-Z0-9_]*", column):
                refs.append(ColumnRef(table=table or None, column=column))
        return refs


# =============================================================================
# Analyzer
# =============================================================================


class HeuristicAnalyzer:
    """
    Rule engine over a PlanNode tree.

    Usage:
        report = HeuristicAnalyzer().analyze(plan)
        for rec in report.recommendations:
            print(rec.table, rec.columns, rec.reason)
    """

    def __init__(self, min_rows: float = 0) -> None:
        self.min_rows = min_rows
        self.parser = ConditionParser()

    def analyze(self, plan: PlanNode) -> HeuristicReport:
        recommendations: list[Recommendation] = []
        seen: set[tuple[str, tuple[str, ...]]] = set()

        for node in plan.iter_nodes():
            for rec in self._analyze_node(node):
                key = (rec.table, rec.columns)
                if key not in seen:
                    seen.add(key)
                    recommendations.append(rec)

        return HeuristicReport(recommendations=recommendations)

    def _analyze_node(self, node: PlanNode) -> list[Recommendation]:
        recs: list[Recommendation | None] = []

        if node.operation == Operation.SEQ_SCAN:
            recs.append(self._analyze_seq_scan(node))

        if node.operation in (Operation.HASH_JOIN, Operation.NESTED_LOOP):
            recs.append(self._analyze_join(node))

        if node.operation == Operation.SORT and node.sort_keys:
            recs.append(self._analyze_sort(node))

        return [rec for rec in recs if rec is not None]

    def _large_enough(self, node: PlanNode) -> bool:
        rows = node.actual_rows if node.actual_rows is not None else node.estimated_rows
        return rows is None or rows >= self.min_rows

    def _analyze_seq_scan(self, node: PlanNode) -> Recommendation | None:
        if not node.relation_name or not node.filter or not self._large_enough(node):
            return None

        columns = _index_columns(node, self.parser.parse(node.filter))
        if not columns:
            return None

        return Recommendation(
            type="btree",
            table=node.relation_name,
            columns=columns,
            reason=(
                f"Sequential scan on {node.relation_name} filtering by "
                f"{', '.join(columns)}; missing index on filtered column(s)"
            ),
        )

    def _analyze_join(self, node: PlanNode) -> Recommendation | None:
        if not node.join_condition or len(node.children) < 2:
            return None

        inner = _first_scan(node.children[1], (Operation.SEQ_SCAN,))
        if inner is None or inner.filter or not inner.relation_name or not self._large_enough(inner):
            return None

        refs = [ref for ref in self.parser.parse(node.join_condition) if ref.table is not None]
        columns = _index_columns(inner, refs)
        if not columns:
            return None

        return Recommendation(
            type="btree",
            table=inner.relation_name,
            columns=columns,
            reason=(
                f"Join on {node.join_condition} scans {inner.relation_name} "
                f"sequentially for every outer row; missing index on join column"
            ),
        )

    def _analyze_sort(self, node: PlanNode) -> Recommendation | None:
        refs = self.parser.parse_sort_keys(node.sort_keys)
        if not refs:
            return None

        for child in node.children:
            for scan in child.iter_nodes():
                if scan.operation not in (Operation.SEQ_SCAN, Operation.BITMAP_HEAP_SCAN):
                    continue
                if not scan.relation_name or not self._large_enough(scan):
                    continue
                columns = _index_columns(scan, refs, keep_order=True)
                if columns:
                    return Recommendation(
                        type="btree",
                        table=scan.relation_name,
                        columns=columns,
                        reason=(
                            f"Sort on {', '.join(columns)} could be served by "
                            f"an index on {scan.relation_name}"
                        ),
                    )
        return None


def _first_scan(node: PlanNode, operations: tuple[Operation, ...]) -> PlanNode | None:
    for candidate in node.iter_nodes():
        if candidate.operation in operations:
            return candidate
    return None


def _index_columns(
    scan: PlanNode,
    refs: list[ColumnRef],
    keep_order: bool = False,
) -> tuple[str, ...]:
    """Columns of ``refs`` that belong to ``scan``, equality columns first."""
    own = [ref for ref in refs if ref.table is None or scan.matches_relation(ref.table)]

    if keep_order:
        ordered = own
    else:
        ordered = (
            [ref for ref in own if ref.is_equality]
            + [ref for ref in own if ref.is_range and not ref.is_equality]
            + [ref for ref in own if not ref.is_equality and not ref.is_range]
        )

    columns: list[str] = []
    for ref in ordered:
        if ref.column not in columns:
            columns.append(ref.column)
    return tuple(columns[:_MAX_INDEX_COLUMNS])


def analyze_plan(plan: PlanNode, min_rows: float = 0) -> HeuristicReport:
    """Run every heuristic over ``plan``."""
    return HeuristicAnalyzer(min_rows=min_rows).analyze(plan)


# =============================================================================
# Suggestion mapping
# =============================================================================


def to_suggestion(rec: Recommendation) -> OptimizationSuggestion:
    """Turn a recommendation into a user-facing optimization suggestion."""
    reason = rec.reason.lower()
    severity = Severity.HIGH if "missing" in reason or "sequential" in reason else Severity.MEDIUM
    cols = ",".join(rec.columns)
    return OptimizationSuggestion(
        title=f"Add {rec.type} index on {rec.table}({cols})",
        severity=severity,
        reason=rec.reason,
        change=f"CREATE INDEX idx_{rec.table}_{rec.columns[0]} ON {rec.table}({cols})",
        estimated_impact="2-10x faster queries",
    )
