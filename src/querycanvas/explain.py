"""
Execution plan trees and hot-path analysis.

Database adapters normalize EXPLAIN output into PlanNode trees; this module
walks them to find where execution time goes. Node ids are assigned in
preorder (``plan-0`` is the root), matching the ids used by the plan graph.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

CRITICAL_THRESHOLD = 0.4
WARNING_THRESHOLD = 0.2
ROW_ESTIMATION_ERROR_THRESHOLD = 10

PLAN_ID_PREFIX = "plan"


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class PlanNode:
    """
    One operation in a normalized execution plan.

    ``actual_*`` fields are only present for EXPLAIN ANALYZE output.
    """

    type: str
    label: str = ""
    cost: float = 0.0
    rows: float = 0.0
    actual_time: Optional[float] = None
    actual_rows: Optional[float] = None
    loops: Optional[int] = None
    relation_name: Optional[str] = None
    children: List["PlanNode"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanNode":
        """
        Build a plan tree from an adapter dict.

        Keys may be camelCase (``actualTime``) or snake_case (``actual_time``).
        """
        node_type = _pick(data, "type", "nodeType", "node_type", default="")
        return cls(
            type=node_type,
            label=_pick(data, "label", default=node_type),
            cost=float(_pick(data, "cost", "totalCost", "total_cost", default=0.0)),
            rows=float(_pick(data, "rows", "planRows", "plan_rows", default=0.0)),
            actual_time=_pick(data, "actualTime", "actual_time", "actualTotalTime"),
            actual_rows=_pick(data, "actualRows", "actual_rows"),
            loops=_pick(data, "loops", "actualLoops", "actual_loops"),
            relation_name=_pick(data, "relationName", "relation_name"),
            children=[cls.from_dict(child) for child in data.get("children", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "label": self.label,
            "cost": self.cost,
            "rows": self.rows,
            "actualTime": self.actual_time,
            "actualRows": self.actual_rows,
            "loops": self.loops,
            "relationName": self.relation_name,
            "children": [child.to_dict() for child in self.children],
        }

    @property
    def effective_time(self) -> float:
        """Actual time multiplied by loops; 0 without ANALYZE data"""
        return (self.actual_time or 0.0) * (self.loops if self.loops is not None else 1)

    @property
    def row_estimation_ratio(self) -> float:
        """How far the planner's row estimate was off, as a ratio >= 1"""
        if self.actual_rows is None or self.rows == 0:
            return 1.0
        if self.actual_rows == 0:
            return float(self.rows)
        if self.actual_rows > self.rows:
            return self.actual_rows / self.rows
        return self.rows / self.actual_rows


def iter_plan_nodes(plan: Optional[PlanNode]) -> Iterator[Tuple[str, Optional[str], PlanNode]]:
    """
    Walk a plan tree in preorder.

    Yields:
        (node_id, parent_id, node) with ids ``plan-0``, ``plan-1``, ...
    """
    if plan is None:
        return
    counter = 0
    stack: List[Tuple[PlanNode, Optional[str]]] = [(plan, None)]
    while stack:
        node, parent_id = stack.pop()
        node_id = f"{PLAN_ID_PREFIX}-{counter}"
        counter += 1
        yield node_id, parent_id, node
        for child in reversed(node.children):
            stack.append((child, node_id))


# ============================================================================
# Hot-path analysis
# ============================================================================


class HotPathTier(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"


def determine_tier(share: float) -> HotPathTier:
    if share >= CRITICAL_THRESHOLD:
        return HotPathTier.CRITICAL
    if share >= WARNING_THRESHOLD:
        return HotPathTier.WARNING
    return HotPathTier.NORMAL


@dataclass
class NodeAnalysis:
    node_id: str
    node_type: str
    relation_name: Optional[str]
    effective_time: float
    share_of_total: float
    tier: HotPathTier
    row_estimation_ratio: float
    has_estimation_error: bool


@dataclass
class PlanAnalysis:
    """Per-node timing shares and the bottleneck list for one plan"""

    total_time: float = 0.0
    nodes: Dict[str, NodeAnalysis] = field(default_factory=dict)
    bottlenecks: List[NodeAnalysis] = field(default_factory=list)
    has_analyze_data: bool = False

    def get(self, node_id: str) -> Optional[NodeAnalysis]:
        return self.nodes.get(node_id)


def analyze_plan(plan: Optional[PlanNode]) -> PlanAnalysis:
    """
    Find the hot path of an EXPLAIN ANALYZE plan.

    Each node's effective time is compared against the root's effective
    time. Nodes at or above 40% are critical, at or above 20% warnings.
    Bottlenecks list the non-normal nodes, highest share first.

    Args:
        plan: Root of the plan tree

    Returns:
        PlanAnalysis; empty (``has_analyze_data=False``) when the root has
        no actual timing
    """
    if plan is None or plan.actual_time is None:
        return PlanAnalysis()

    total_time = plan.effective_time
    analysis = PlanAnalysis(total_time=total_time, has_analyze_data=True)

    for node_id, _, node in iter_plan_nodes(plan):
        effective_time = node.effective_time
        share = effective_time / total_time if total_time > 0 else 0.0
        ratio = node.row_estimation_ratio
        analysis.nodes[node_id] = NodeAnalysis(
            node_id=node_id,
            node_type=node.type,
            relation_name=node.relation_name,
            effective_time=effective_time,
            share_of_total=share,
            tier=determine_tier(share),
            row_estimation_ratio=ratio,
            has_estimation_error=ratio >= ROW_ESTIMATION_ERROR_THRESHOLD,
        )

    analysis.bottlenecks = sorted(
        (n for n in analysis.nodes.values() if n.tier != HotPathTier.NORMAL),
        key=lambda n: n.share_of_total,
        reverse=True,
    )
    return analysis


__all__ = [
    "PlanNode",
    "iter_plan_nodes",
    "HotPathTier",
    "NodeAnalysis",
    "PlanAnalysis",
    "analyze_plan",
    "determine_tier",
    "CRITICAL_THRESHOLD",
    "WARNING_THRESHOLD",
    "ROW_ESTIMATION_ERROR_THRESHOLD",
]
