"""
Parsers for PostgreSQL EXPLAIN output.

Two formats are supported:
- EXPLAIN (FORMAT JSON): ``[{"Plan": {...}}]``
- EXPLAIN text: the default indented tree, with or without ANALYZE,
  optionally wrapped in psql's "QUERY PLAN" header and row-count footer.

Both produce the same normalized PlanNode tree.
"""

from __future__ import annotations

import re
from typing import Any

from sqlexplain.exceptions import PlanParseError
from sqlexplain.models import Cost, Operation
from sqlexplain.plans.config import DEFAULT_CONFIG, ParserConfig
from sqlexplain.plans.models import NodeIdAllocator, PlanNode, list_field, text_field

_NODE_TYPES: dict[str, Operation] = {
    "Seq Scan": Operation.SEQ_SCAN,
    "Index Scan": Operation.INDEX_SCAN,
    "Index Only Scan": Operation.INDEX_ONLY_SCAN,
    "Bitmap Heap Scan": Operation.BITMAP_HEAP_SCAN,
    "Hash Join": Operation.HASH_JOIN,
    "Nested Loop": Operation.NESTED_LOOP,
    "Sort": Operation.SORT,
    "Incremental Sort": Operation.SORT,
    "Aggregate": Operation.AGGREGATE,
    "HashAggregate": Operation.AGGREGATE,
    "GroupAggregate": Operation.AGGREGATE,
    "MixedAggregate": Operation.AGGREGATE,
    "Limit": Operation.LIMIT,
}


def operation_for(node_type: str) -> Operation:
    """Map a PostgreSQL node type to the normalized operation."""
    base = node_type
    if base.startswith("Parallel "):
        base = base[len("Parallel "):]
    return _NODE_TYPES.get(base, Operation.OTHER)


# =============================================================================
# JSON format
# =============================================================================


def parse_postgres_json(
    data: list[Any],
    config: ParserConfig | None = None,
) -> PlanNode:
    """
    Parse decoded EXPLAIN (FORMAT JSON) output.

    Args:
        data: The decoded top-level array, ``[{"Plan": {...}}]``.

    Raises:
        PlanParseError: If the structure is not EXPLAIN JSON.
    """
    config = config or DEFAULT_CONFIG

    if not data:
        raise PlanParseError(
            "Empty array - no EXPLAIN output found",
            dialect="postgres",
            source="structure",
        )
    inner = data[0]
    if not isinstance(inner, dict) or not isinstance(inner.get("Plan"), dict):
        raise PlanParseError(
            "Missing 'Plan' object - this doesn't look like EXPLAIN output",
            dialect="postgres",
            source="structure",
        )

    _check_json_depth(inner["Plan"], config)
    return _convert_json_node(inner["Plan"], NodeIdAllocator())


def _check_json_depth(plan: dict[str, Any], config: ParserConfig) -> None:
    """Reject deep trees before recursive conversion."""
    stack: list[tuple[dict[str, Any], int]] = [(plan, 1)]
    while stack:
        node, depth = stack.pop()
        if depth > config.max_depth:
            raise PlanParseError(
                f"Plan too deeply nested (max {config.max_depth})",
                dialect="postgres",
                source="resource_limit",
            )
        for child in list_field(node.get("Plans")):
            if isinstance(child, dict):
                stack.append((child, depth + 1))


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _first_text(raw: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = text_field(raw.get(key))
        if value:
            return value
    return None


def _convert_json_node(raw: dict[str, Any], next_id: NodeIdAllocator) -> PlanNode:
    node_type = raw.get("Node Type")
    if not isinstance(node_type, str):
        raise PlanParseError(
            "Plan node without 'Node Type'",
            dialect="postgres",
            source="structure",
        )

    node_id = next_id()

    startup = _number(raw.get("Startup Cost"))
    total = _number(raw.get("Total Cost"))
    cost = Cost(startup=startup, total=total) if startup is not None and total is not None else None

    join_condition = _first_text(raw, "Hash Cond", "Merge Cond", "Join Filter")
    filter_ = _first_text(raw, "Filter", "Index Cond", "Recheck Cond")

    sort_keys = raw.get("Sort Key") or raw.get("Presorted Key")
    if isinstance(sort_keys, str):
        sort_keys = [sort_keys]
    sort_keys = [key for key in list_field(sort_keys) if isinstance(key, str)]

    children = [
        _convert_json_node(child, next_id)
        for child in list_field(raw.get("Plans"))
        if isinstance(child, dict)
    ]

    return PlanNode(
        node_id=node_id,
        operation=operation_for(node_type),
        raw_node_type=node_type,
        relation_name=text_field(raw.get("Relation Name")),
        alias=text_field(raw.get("Alias")),
        index_name=text_field(raw.get("Index Name")),
        estimated_rows=_number(raw.get("Plan Rows")),
        actual_rows=_number(raw.get("Actual Rows")),
        cost=cost,
        filter=filter_,
        join_condition=join_condition,
        sort_keys=sort_keys,
        children=children,
    )


# =============================================================================
# Text format
# =============================================================================

_COST = re.compile(
    r"\(cost=(?P<startup>[\d.]+)\.\.(?P<total>[\d.]+)\s+rows=(?P<rows>[\d.]+)\s+width=\d+\)"
)
_ACTUAL = re.compile(
    r"\(actual (?:time=[\d.]+\.\.[\d.]+\s+)?rows=(?P<rows>[\d.]+)\s+loops=[\d.]+\)"
)
_NEVER_EXECUTED = re.compile(r"\(never executed\)")
_DESCRIPTION = re.compile(
    r"^(?P<type>.+?)"
    r"(?:\s+using\s+(?P<index>\S+))?"
    r"\s+on\s+(?P<relation>\S+)"
    r"(?:\s+(?P<alias>\S+))?$"
)
_PROPERTY = re.compile(r"^(?P<key>[A-Z][A-Za-z ]*?):\s+(?P<value>.*)$")
_NOISE = re.compile(r"^(QUERY PLAN|-+|\(\d+ rows?\))$")


def parse_postgres_text(text: str, config: ParserConfig | None = None) -> PlanNode:
    """
    Parse PostgreSQL's indented text EXPLAIN format.

    Node lines are the first line and every line starting with ``->``;
    ``Key: value`` lines attach to the node printed just before them.

    Raises:
        PlanParseError: If no plan node can be found.
    """
    config = config or DEFAULT_CONFIG
    next_id = NodeIdAllocator()

    root: PlanNode | None = None
    stack: list[tuple[int, PlanNode]] = []
    current: PlanNode | None = None

    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        stripped = line.strip().strip('"')
        if not stripped or _NOISE.match(stripped):
            continue

        indent = len(line) - len(line.lstrip())
        is_child = stripped.startswith("->")

        if root is not None and not is_child:
            if current is not None:
                _apply_property(current, stripped)
            continue

        if is_child:
            stripped = stripped[2:].strip()
        node = _node_from_line(stripped, next_id)
        if node is None:
            raise PlanParseError(
                "Unrecognized EXPLAIN line",
                dialect="postgres",
                detail=stripped[:120],
                source="text",
            )

        if root is None:
            root = node
            stack = [(-1, node)]
        else:
            while len(stack) > 1 and stack[-1][0] >= indent:
                stack.pop()
            stack[-1][1].children.append(node)
            stack.append((indent, node))
            if len(stack) - 1 > config.max_depth:
                raise PlanParseError(
                    f"Plan too deeply nested (max {config.max_depth})",
                    dialect="postgres",
                    source="resource_limit",
                )
        current = node

    if root is None:
        raise PlanParseError(
            "No plan nodes found in EXPLAIN text",
            dialect="postgres",
            source="text",
        )
    return root


def _node_from_line(line: str, next_id: NodeIdAllocator) -> PlanNode | None:
    cost_match = _COST.search(line)
    actual_match = _ACTUAL.search(line)

    cut = len(line)
    for match in (cost_match, actual_match, _NEVER_EXECUTED.search(line)):
        if match is not None:
            cut = min(cut, match.start())
    description = line[:cut].strip()
    if not description or not description[0].isalpha() or _PROPERTY.match(description):
        return None

    node_type = description
    relation = alias = index = None
    desc_match = _DESCRIPTION.match(description)
    if desc_match:
        node_type = desc_match.group("type")
        relation = desc_match.group("relation")
        alias = desc_match.group("alias")
        index = desc_match.group("index")
    elif " using " in description:
        # "Index Scan using idx" without a relation (COSTS OFF output of some nodes)
        node_type, _, index = description.partition(" using ")

    # "Index Scan Backward" scans the same way as "Index Scan"
    node_type = node_type.replace(" Backward", "")

    cost = None
    estimated = None
    if cost_match:
        cost = Cost(
            startup=float(cost_match.group("startup")),
            total=float(cost_match.group("total")),
        )
        estimated = float(cost_match.group("rows"))

    return PlanNode(
        node_id=next_id(),
        operation=operation_for(node_type),
        raw_node_type=node_type,
        relation_name=relation,
        alias=alias if alias and alias != relation else None,
        index_name=index,
        estimated_rows=estimated,
        actual_rows=float(actual_match.group("rows")) if actual_match else None,
        cost=cost,
    )


def _apply_property(node: PlanNode, line: str) -> None:
    match = _PROPERTY.match(line)
    if match is None:
        return
    key, value = match.group("key"), match.group("value").strip()

    if key in ("Filter", "Index Cond", "Recheck Cond"):
        node.filter = value if node.filter is None else f"({node.filter}) AND ({value})"
    elif key in ("Hash Cond", "Merge Cond", "Join Filter"):
        node.join_condition = value
    elif key in ("Sort Key", "Presorted Key"):
        node.sort_keys = _split_top_level(value)


def _split_top_level(value: str) -> list[str]:
    """Split on commas that are not inside parentheses."""
    parts: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(value):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(value[start:i].strip())
            start = i + 1
    tail = value[start:].strip()
    if tail:
        parts.append(tail)
    return parts
