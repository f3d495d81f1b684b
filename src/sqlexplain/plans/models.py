"""
Normalized plan tree shared by every dialect parser.

Each dialect has its own EXPLAIN vocabulary ("Seq Scan", access_type
"ALL", "SCAN t"). Parsers map them onto the small Operation enum and keep
the original name in ``raw_node_type`` so nothing is lost.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sqlexplain.models import Cost, Operation


class PlanNode(BaseModel):
    """
    A single node in a normalized query plan.

    This is a recursive structure: ``children`` execute first and feed their
    rows up to this node. Fields beyond operation, rows and cost are
    optional because not every dialect reports them.
    """

    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(..., alias="nodeId")
    operation: Operation = Operation.OTHER
    raw_node_type: str | None = Field(default=None, alias="rawNodeType")

    relation_name: str | None = Field(default=None, alias="relationName")
    alias: str | None = None
    index_name: str | None = Field(default=None, alias="indexName")

    estimated_rows: float | None = Field(default=None, alias="estimatedRows")
    actual_rows: float | None = Field(default=None, alias="actualRows")
    cost: Cost | None = None

    filter: str | None = None
    join_condition: str | None = Field(default=None, alias="joinCondition")
    sort_keys: list[str] = Field(default_factory=list, alias="sortKeys")

    children: list["PlanNode"] = Field(default_factory=list)

    def iter_nodes(self) -> Iterator["PlanNode"]:
        """Pre-order traversal, this node first."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    @property
    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())

    @property
    def depth(self) -> int:
        if not self.children:
            return 1
        return 1 + max(child.depth for child in self.children)

    @property
    def is_scan(self) -> bool:
        return self.operation in (
            Operation.SEQ_SCAN,
            Operation.INDEX_SCAN,
            Operation.INDEX_ONLY_SCAN,
            Operation.BITMAP_HEAP_SCAN,
        )

    def matches_relation(self, name: str | None) -> bool:
        """True if ``name`` refers to this node's table by name or alias."""
        if name is None:
            return False
        return name in (self.relation_name, self.alias)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys, unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def text_field(value: Any) -> str | None:
    """A string field from decoded JSON; anything else counts as absent."""
    return value if isinstance(value, str) else None


def list_field(value: Any) -> list[Any]:
    """A list field from decoded JSON; anything else counts as empty."""
    return value if isinstance(value, list) else []


class NodeIdAllocator:
    """Hands out stable pre-order node ids: node_0, node_1, ..."""

    def __init__(self) -> None:
        self._next = 0

    def __call__(self) -> str:
        node_id = f"node_{self._next}"
        self._next += 1
        return node_id


def assign_node_ids(root: PlanNode) -> None:
    """Renumber a tree built bottom-up so ids follow pre-order."""
    next_id = NodeIdAllocator()
    for node in root.iter_nodes():
        node.node_id = next_id()


PlanNode.model_rebuild()
