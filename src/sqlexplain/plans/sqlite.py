"""
Parser for SQLite EXPLAIN QUERY PLAN output.

Two layouts are accepted:

Tree (sqlite3 shell, 3.24+)::

    QUERY PLAN
    |--SCAN users
    `--SEARCH orders USING INDEX idx_orders_user (user_id=?)

Legacy rows (``id|parent|notused|detail``)::

    2|0|0|SCAN TABLE users
    3|0|0|SEARCH TABLE orders USING INDEX idx_orders_user (user_id=?)

SQLite lists joined tables as siblings, outermost loop first, and temp
b-tree steps (ORDER BY, GROUP BY, DISTINCT) as separate siblings. Siblings
are folded into a NestedLoop chain wrapped by the Sort/Aggregate steps.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from sqlexplain.exceptions import PlanParseError
from sqlexplain.models import Operation
from sqlexplain.plans.config import DEFAULT_CONFIG, ParserConfig
from sqlexplain.plans.models import PlanNode, assign_node_ids

_TREE_LINE = re.compile(r"^(?P<prefix>(?:\|  |   )*)(?:\|--|`--)(?P<detail>.+)$")
_LEGACY_LINE = re.compile(r"^\s*(?P<id>\d+)\s*\|\s*(?P<parent>\d+)\s*\|\s*\d+\s*\|\s*(?P<detail>.+)$")

_ACCESS = re.compile(
    r"^(?P<verb>SCAN|SEARCH)(?: TABLE)? (?P<table>\S+)(?: AS (?P<alias>\S+))?"
    r"(?: USING (?P<how>AUTOMATIC (?:PARTIAL )?COVERING INDEX|COVERING INDEX|INDEX|INTEGER PRIMARY KEY|PRIMARY KEY)"
    r"(?: (?P<index>[^\s(]+))?)?"
    r"(?: \((?P<cond>.*)\))?$"
)
_TEMP_BTREE = re.compile(r"^USE TEMP B-TREE FOR (?P<purpose>.+)$")


@dataclass
class _Entry:
    detail: str
    children: list["_Entry"] = field(default_factory=list)


def parse_sqlite_text(text: str, config: ParserConfig | None = None) -> PlanNode:
    """
    Parse EXPLAIN QUERY PLAN output into a normalized tree.

    Raises:
        PlanParseError: If no plan steps are found.
    """
    config = config or DEFAULT_CONFIG
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]

    if any(_LEGACY_LINE.match(line) for line in lines):
        top = _read_legacy(lines, config)
    else:
        top = _read_tree(lines, config)

    if not top:
        raise PlanParseError(
            "No plan steps found in EXPLAIN QUERY PLAN output",
            dialect="sqlite",
            source="text",
        )

    root = _fold(top)
    assign_node_ids(root)
    return root


# =============================================================================
# Layout readers
# =============================================================================


def _read_tree(lines: list[str], config: ParserConfig) -> list[_Entry]:
    top: list[_Entry] = []
    stack: list[_Entry] = []

    for line in lines:
        if line.strip() == "QUERY PLAN":
            continue
        match = _TREE_LINE.match(line)
        if match:
            depth = len(match.group("prefix")) // 3
            detail = match.group("detail").strip()
        else:
            # Single-step plans printed without connectors
            depth = 0
            detail = line.strip()

        if depth + 1 > config.max_depth:
            raise PlanParseError(
                f"Plan too deeply nested (max {config.max_depth})",
                dialect="sqlite",
                source="resource_limit",
            )
        if depth > len(stack):
            raise PlanParseError(
                "Malformed EXPLAIN QUERY PLAN indentation",
                dialect="sqlite",
                detail=line[:120],
                source="text",
            )

        entry = _Entry(detail)
        del stack[depth:]
        if stack:
            stack[-1].children.append(entry)
        else:
            top.append(entry)
        stack.append(entry)

    return top


def _read_legacy(lines: list[str], config: ParserConfig) -> list[_Entry]:
    top: list[_Entry] = []
    by_id: dict[str, tuple[_Entry, int]] = {}

    for line in lines:
        match = _LEGACY_LINE.match(line)
        if match is None:
            continue
        entry = _Entry(match.group("detail").strip())
        parent = by_id.get(match.group("parent"))
        if parent is None:
            top.append(entry)
            depth = 1
        else:
            parent[0].children.append(entry)
            depth = parent[1] + 1
        if depth > config.max_depth:
            raise PlanParseError(
                f"Plan too deeply nested (max {config.max_depth})",
                dialect="sqlite",
                source="resource_limit",
            )
        by_id[match.group("id")] = (entry, depth)

    return top


# =============================================================================
# Normalization
# =============================================================================


def _fold(entries: list[_Entry]) -> PlanNode:
    """Turn one level of sibling steps into a single subtree."""
    loops: list[PlanNode] = []
    wrappers: list[PlanNode] = []

    for entry in entries:
        node = _convert(entry)
        if node.operation in (Operation.SORT, Operation.AGGREGATE) and not node.children:
            wrappers.append(node)
        else:
            loops.append(node)

    if loops:
        acc = loops[0]
        for inner in loops[1:]:
            acc = PlanNode(
                node_id="",
                operation=Operation.NESTED_LOOP,
                raw_node_type="NESTED LOOP",
                children=[acc, inner],
            )
    else:
        acc = wrappers.pop(0)

    # GROUP BY/DISTINCT run before ORDER BY
    wrappers.sort(key=lambda node: node.operation != Operation.AGGREGATE)
    for wrapper in wrappers:
        wrapper.children = [acc]
        acc = wrapper
    return acc


def _convert(entry: _Entry) -> PlanNode:
    detail = entry.detail
    children = [_fold(entry.children)] if entry.children else []

    access = _ACCESS.match(detail)
    if access:
        table = access.group("table")
        how = access.group("how") or ""
        if not how:
            operation = Operation.SEQ_SCAN
        elif "COVERING INDEX" in how:
            operation = Operation.INDEX_ONLY_SCAN
        else:
            operation = Operation.INDEX_SCAN
        return PlanNode(
            node_id="",
            operation=operation,
            raw_node_type=f"{access.group('verb')} {how}".strip(),
            relation_name=None if table.startswith("(") else table,
            alias=access.group("alias"),
            index_name=access.group("index") or (how if "PRIMARY KEY" in how else None),
            filter=access.group("cond"),
            children=children,
        )

    temp = _TEMP_BTREE.match(detail)
    if temp:
        purpose = temp.group("purpose")
        operation = Operation.SORT if "ORDER BY" in purpose else Operation.AGGREGATE
        return PlanNode(
            node_id="",
            operation=operation,
            raw_node_type=detail,
            children=children,
        )

    return PlanNode(
        node_id="",
        operation=Operation.OTHER,
        raw_node_type=detail,
        children=children,
    )
