"""
Parser for MySQL EXPLAIN output.

Supports:
- EXPLAIN FORMAT=JSON (``{"query_block": {...}}``)
- Traditional tabular EXPLAIN rows exported as a JSON array

MySQL describes joins as a flat ``nested_loop`` list rather than a tree,
so joined tables are folded into a left-deep chain of NestedLoop nodes.

Access types (worst to best): ALL, index, range, index_merge, ref,
eq_ref, const, system.
"""

from __future__ import annotations

from typing import Any

from sqlexplain.exceptions import PlanParseError
from sqlexplain.models import Cost, Operation
from sqlexplain.plans.config import DEFAULT_CONFIG, ParserConfig
from sqlexplain.plans.models import PlanNode, assign_node_ids, list_field, text_field

_INDEX_ACCESS = frozenset({"index", "range", "ref", "ref_or_null", "eq_ref", "const", "system", "fulltext"})


def access_operation(access_type: str | None, using_index: bool = False) -> Operation:
    """Map a MySQL access type to the normalized operation."""
    if access_type == "ALL":
        return Operation.SEQ_SCAN
    if access_type == "index_merge":
        return Operation.BITMAP_HEAP_SCAN
    if access_type in _INDEX_ACCESS:
        return Operation.INDEX_ONLY_SCAN if using_index else Operation.INDEX_SCAN
    return Operation.OTHER


def parse_mysql_json(
    data: dict[str, Any] | list[Any],
    config: ParserConfig | None = None,
) -> PlanNode:
    """
    Parse decoded MySQL EXPLAIN output.

    Args:
        data: ``{"query_block": ...}`` from FORMAT=JSON, or a list of
            traditional EXPLAIN rows.

    Raises:
        PlanParseError: If the structure is not recognized.
    """
    config = config or DEFAULT_CONFIG

    if isinstance(data, list):
        root = _parse_traditional(data)
    elif isinstance(data, dict) and isinstance(data.get("query_block"), dict):
        root = _parse_block(data["query_block"], config, depth=1)
    else:
        raise PlanParseError(
            "Unknown MySQL EXPLAIN format - expected 'query_block' or a list of rows",
            dialect="mysql",
            source="structure",
        )

    assign_node_ids(root)
    return root


# =============================================================================
# FORMAT=JSON
# =============================================================================


def _parse_block(block: dict[str, Any], config: ParserConfig, depth: int) -> PlanNode:
    if depth > config.max_depth:
        raise PlanParseError(
            f"Plan too deeply nested (max {config.max_depth})",
            dialect="mysql",
            source="resource_limit",
        )

    if isinstance(block.get("ordering_operation"), dict):
        inner = block["ordering_operation"]
        return PlanNode(
            node_id="",
            operation=Operation.SORT,
            raw_node_type="filesort" if inner.get("using_filesort") else "ordering_operation",
            children=[_parse_block(inner, config, depth + 1)],
        )

    if isinstance(block.get("grouping_operation"), dict):
        inner = block["grouping_operation"]
        return PlanNode(
            node_id="",
            operation=Operation.AGGREGATE,
            raw_node_type="grouping_operation",
            children=[_parse_block(inner, config, depth + 1)],
        )

    if isinstance(block.get("duplicates_removal"), dict):
        inner = block["duplicates_removal"]
        return PlanNode(
            node_id="",
            operation=Operation.OTHER,
            raw_node_type="duplicates_removal",
            children=[_parse_block(inner, config, depth + 1)],
        )

    if isinstance(block.get("nested_loop"), list):
        tables = [
            _parse_table(item["table"], config, depth + 1)
            for item in block["nested_loop"]
            if isinstance(item, dict) and isinstance(item.get("table"), dict)
        ]
        if not tables:
            raise PlanParseError("Empty nested_loop", dialect="mysql", source="structure")
        return _chain_nested_loop(tables)

    if isinstance(block.get("table"), dict):
        return _parse_table(block["table"], config, depth)

    if isinstance(block.get("union_result"), dict):
        union = block["union_result"]
        specs = list_field(union.get("query_specifications"))
        return PlanNode(
            node_id="",
            operation=Operation.OTHER,
            raw_node_type="union_result",
            children=[
                _parse_block(spec["query_block"], config, depth + 1)
                for spec in specs
                if isinstance(spec, dict) and isinstance(spec.get("query_block"), dict)
            ],
        )

    # SELECT without tables ("SELECT 1") or an unknown wrapper
    return PlanNode(
        node_id="",
        operation=Operation.OTHER,
        raw_node_type=str(block.get("message") or "query_block"),
        cost=_cost(block.get("cost_info")),
    )


def _chain_nested_loop(tables: list[PlanNode]) -> PlanNode:
    """Fold ``[t0, t1, t2]`` into NestedLoop(NestedLoop(t0, t1), t2)."""
    acc = tables[0]
    for inner in tables[1:]:
        acc = PlanNode(
            node_id="",
            operation=Operation.NESTED_LOOP,
            raw_node_type="nested_loop",
            estimated_rows=inner.estimated_rows,
            cost=inner.cost,
            join_condition=inner.join_condition,
            children=[acc, inner],
        )
    return acc


def _parse_table(table: dict[str, Any], config: ParserConfig, depth: int) -> PlanNode:
    access_type = text_field(table.get("access_type"))
    name = text_field(table.get("table_name"))

    children: list[PlanNode] = []
    materialized = table.get("materialized_from_subquery")
    if isinstance(materialized, dict) and isinstance(materialized.get("query_block"), dict):
        children.append(_parse_block(materialized["query_block"], config, depth + 1))

    # "ref": ["shop.u.id"] with "used_key_parts": ["user_id"] is the join predicate
    join_condition = None
    refs = list_field(table.get("ref"))
    key_parts = list_field(table.get("used_key_parts"))
    if name and refs and key_parts:
        pairs = [
            f"{name}.{part} = {ref}"
            for part, ref in zip(key_parts, refs)
            if isinstance(part, str) and isinstance(ref, str) and ref != "const"
        ]
        if pairs:
            join_condition = " AND ".join(pairs)

    rows = table.get("rows_examined_per_scan", table.get("rows"))

    return PlanNode(
        node_id="",
        operation=access_operation(access_type, bool(table.get("using_index"))),
        raw_node_type=access_type,
        relation_name=name,
        index_name=text_field(table.get("key")),
        estimated_rows=_rows(rows),
        cost=_cost(table.get("cost_info")),
        filter=text_field(table.get("attached_condition")),
        join_condition=join_condition,
        children=children,
    )


def _rows(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _cost(cost_info: Any) -> Cost | None:
    if not isinstance(cost_info, dict):
        return None
    raw = cost_info.get("prefix_cost", cost_info.get("query_cost"))
    try:
        total = float(raw)
    except (TypeError, ValueError):
        return None
    return Cost(startup=0.0, total=total)


# =============================================================================
# Traditional rows
# =============================================================================


def _parse_traditional(rows: list[Any]) -> PlanNode:
    tables: list[PlanNode] = []
    for row in rows:
        if not isinstance(row, dict):
            raise PlanParseError(
                "Traditional EXPLAIN rows must be objects",
                dialect="mysql",
                source="structure",
            )
        extra = text_field(row.get("Extra")) or ""
        access_type = text_field(row.get("type"))
        tables.append(
            PlanNode(
                node_id="",
                operation=access_operation(access_type, "Using index" in extra),
                raw_node_type=access_type,
                relation_name=text_field(row.get("table")),
                index_name=text_field(row.get("key")),
                estimated_rows=_rows(row.get("rows")),
            )
        )

    if not tables:
        raise PlanParseError(
            "Empty array - no EXPLAIN output found",
            dialect="mysql",
            source="structure",
        )
    return _chain_nested_loop(tables)
