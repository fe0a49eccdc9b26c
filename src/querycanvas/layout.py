"""
Graph synthesis and layered layout for query and plan visualization.

Two synthesis steps build a LayoutGraph:
- build_query_graph: a ParsedQuery as a dataflow pipeline
  (sources -> joins -> WHERE -> GROUP BY -> HAVING -> SELECT -> ORDER BY -> LIMIT)
- build_plan_graph: an execution plan tree, one planNode per operation

One layout pass positions either graph:
1. Drop edges whose endpoints are missing
2. Break cycles by reversing DFS back edges
3. Longest-path ranking, with sources pulled down next to their first consumer
4. Barycenter sweeps to reduce edge crossings
5. Cross-axis coordinates centered per rank
6. Axis mapping for TB / BT / LR / RL, then re-centering on x = 0
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from graphlib import TopologicalSorter
from typing import Any, Dict, List, Optional, Set, Tuple

from .explain import PlanAnalysis, PlanNode, analyze_plan, iter_plan_nodes
from .models import ParsedQuery
from .query_builder import QueryBuilder
from .sql_generator import ordered_from_items

logger = logging.getLogger(__name__)

# Node types are a stable contract with renderers
TABLE_SOURCE_NODE = "tableSourceNode"
JOIN_NODE = "joinNode"
FILTER_NODE = "filterNode"
GROUP_NODE = "groupNode"
PROJECTION_NODE = "projectionNode"
SORT_NODE = "sortNode"
LIMIT_NODE = "limitNode"
PLAN_NODE = "planNode"

CROSS_JOIN = "CROSS"
MAX_SWEEPS = 8


# ============================================================================
# Layout Models
# ============================================================================


class LayoutDirection(Enum):
    TB = "TB"  # top to bottom
    BT = "BT"
    LR = "LR"  # left to right
    RL = "RL"

    @property
    def is_horizontal(self) -> bool:
        return self in (LayoutDirection.LR, LayoutDirection.RL)


class HandlePosition(Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"


# direction -> (source handle side, target handle side)
_HANDLE_SIDES = {
    LayoutDirection.TB: (HandlePosition.BOTTOM, HandlePosition.TOP),
    LayoutDirection.BT: (HandlePosition.TOP, HandlePosition.BOTTOM),
    LayoutDirection.LR: (HandlePosition.RIGHT, HandlePosition.LEFT),
    LayoutDirection.RL: (HandlePosition.LEFT, HandlePosition.RIGHT),
}


@dataclass(frozen=True)
class LayoutOptions:
    """
    Spacing and orientation for one layout pass.

    ``direction`` accepts a LayoutDirection or its name ("LR").
    """

    direction: LayoutDirection = LayoutDirection.TB
    node_spacing: float = 60
    rank_spacing: float = 80
    node_width: float = 200
    node_height: float = 80

    def __post_init__(self):
        if not isinstance(self.direction, LayoutDirection):
            try:
                direction = LayoutDirection(str(self.direction).upper())
            except ValueError:
                raise ValueError(f"Invalid layout direction: {self.direction!r}") from None
            object.__setattr__(self, "direction", direction)


DEFAULT_LAYOUT_OPTIONS = LayoutOptions()
PLAN_LAYOUT_OPTIONS = LayoutOptions(node_width=280, node_height=180, rank_spacing=100)


@dataclass
class LayoutNode:
    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    position: Tuple[float, float] = (0.0, 0.0)  # top-left corner
    source_position: Optional[HandlePosition] = None
    target_position: Optional[HandlePosition] = None
    width: float = 0.0
    height: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "position": {"x": self.position[0], "y": self.position[1]},
            "width": self.width,
            "height": self.height,
        }
        if self.source_position is not None:
            result["sourcePosition"] = self.source_position.value
        if self.target_position is not None:
            result["targetPosition"] = self.target_position.value
        return result


@dataclass
class LayoutEdge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.source_handle is not None:
            result["sourceHandle"] = self.source_handle
        if self.target_handle is not None:
            result["targetHandle"] = self.target_handle
        if self.label is not None:
            result["label"] = self.label
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class LayoutGraph:
    nodes: List[LayoutNode] = field(default_factory=list)
    edges: List[LayoutEdge] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.nodes

    def get_node(self, node_id: str) -> Optional[LayoutNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_type(self, node_type: str) -> List[LayoutNode]:
        return [n for n in self.nodes if n.type == node_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


# ============================================================================
# Query graph synthesis
# ============================================================================


class _GraphBuilder:
    """Accumulates nodes and edges with sequential ``<prefix>-<n>`` ids"""

    def __init__(self):
        self.graph = LayoutGraph()
        self._counter = 0

    def node(self, prefix: str, node_type: str, data: Dict[str, Any]) -> str:
        node_id = f"{prefix}-{self._counter}"
        self._counter += 1
        self.graph.nodes.append(LayoutNode(id=node_id, type=node_type, data=data))
        return node_id

    def edge(self, source: str, target: str, target_handle: Optional[str] = None):
        edge_id = f"edge-{source}-{target}"
        if target_handle:
            edge_id += f"-{target_handle}"
        self.graph.edges.append(
            LayoutEdge(id=edge_id, source=source, target=target, target_handle=target_handle)
        )


def _projection_items(query: ParsedQuery) -> Tuple[List[str], List[str]]:
    columns = [
        f"{table.name}.{column}" for table in query.tables for column in table.selected_columns
    ]
    aggregates = []
    for aggregate in query.column_aggregates:
        text = f"{aggregate.function.value}({aggregate.column_ref})"
        aggregates.append(f"{text} AS {aggregate.alias}" if aggregate.alias else text)
    for aggregate in query.select_aggregates:
        text = f"{aggregate.function.value}({aggregate.expression})"
        aggregates.append(f"{text} AS {aggregate.alias}" if aggregate.alias else text)
    return columns, aggregates


def build_query_graph(query: Optional[ParsedQuery]) -> LayoutGraph:
    """
    Synthesize the dataflow graph of a parsed query.

    The first table feeds the backbone. Every further table gets its own
    source node feeding the ``right`` input of a join node, whose ``left``
    input is the backbone so far; tables without a join edge appear as
    CROSS joins. Clause nodes are chained after the joins.

    Args:
        query: Parsed model; None or an empty model gives an empty graph

    Returns:
        Unpositioned LayoutGraph
    """
    if query is None or query.is_empty():
        return LayoutGraph()

    builder = _GraphBuilder()
    previous: Optional[str] = None

    for table, join in ordered_from_items(query):
        source_id = builder.node(
            "source",
            TABLE_SOURCE_NODE,
            {
                "table": table.name,
                "alias": table.alias,
                "columns": list(table.selected_columns),
                "isFirst": previous is None,
            },
        )
        if previous is None:
            previous = source_id
            continue

        join_data: Dict[str, Any] = {
            "table": table.name,
            "joinType": join.join_type.value if join else CROSS_JOIN,
        }
        if join is not None:
            join_data.update(
                {
                    "sourceTable": join.source_table,
                    "sourceColumn": join.source_column,
                    "targetTable": join.target_table,
                    "targetColumn": join.target_column,
                }
            )
        join_id = builder.node("join", JOIN_NODE, join_data)
        builder.edge(previous, join_id, target_handle="left")
        builder.edge(source_id, join_id, target_handle="right")
        previous = join_id

    def chain(prefix: str, node_type: str, data: Dict[str, Any]):
        nonlocal previous
        node_id = builder.node(prefix, node_type, data)
        builder.edge(previous, node_id)
        previous = node_id

    if query.filters:
        chain(
            "filter",
            FILTER_NODE,
            {
                "filterType": "WHERE",
                "conditions": [
                    {
                        "column": f.column,
                        "operator": f.operator.value,
                        "value": f.value,
                        "connector": f.connector.value,
                    }
                    for f in query.filters
                ],
            },
        )
    if query.group_by:
        chain("group", GROUP_NODE, {"columns": [g.column for g in query.group_by]})
    if query.having:
        chain(
            "having",
            FILTER_NODE,
            {
                "filterType": "HAVING",
                "conditions": [
                    {
                        "aggregateFunction": h.aggregate_function.value,
                        "column": h.column,
                        "operator": h.operator.value,
                        "value": h.value,
                        "connector": h.connector.value,
                    }
                    for h in query.having
                ],
            },
        )

    columns, aggregates = _projection_items(query)
    chain("projection", PROJECTION_NODE, {"columns": columns, "aggregates": aggregates})

    if query.order_by:
        chain(
            "sort",
            SORT_NODE,
            {
                "orderBy": [
                    {"column": o.column, "direction": o.direction.value} for o in query.order_by
                ]
            },
        )
    if query.limit is not None:
        chain("limit", LIMIT_NODE, {"limit": query.limit})

    return builder.graph


# ============================================================================
# Plan graph synthesis
# ============================================================================


def build_plan_graph(
    plan: Optional[PlanNode], analysis: Optional[PlanAnalysis] = None
) -> LayoutGraph:
    """
    Synthesize the graph of an execution plan tree.

    Node ids are preorder (``plan-0`` is the root) and edges run parent to
    child. When an analysis is given, its tier and share are merged into
    each node's data and edges touching hot nodes are flagged.
    """
    graph = LayoutGraph()
    if plan is None:
        return graph

    tiers: Dict[str, str] = {}
    for node_id, parent_id, node in iter_plan_nodes(plan):
        data = node.to_dict()
        del data["children"]
        node_analysis = analysis.get(node_id) if analysis else None
        data.update(
            {
                "tier": node_analysis.tier.value if node_analysis else "normal",
                "shareOfTotal": node_analysis.share_of_total if node_analysis else 0.0,
                "hasEstimationError": node_analysis.has_estimation_error if node_analysis else False,
                "rowEstimationRatio": node_analysis.row_estimation_ratio if node_analysis else 1.0,
            }
        )
        tiers[node_id] = data["tier"]
        graph.nodes.append(LayoutNode(id=node_id, type=PLAN_NODE, data=data))

        if parent_id is not None:
            pair = (tiers[parent_id], data["tier"])
            graph.edges.append(
                LayoutEdge(
                    id=f"edge-{parent_id}-{node_id}",
                    source=parent_id,
                    target=node_id,
                    data={
                        "hot": any(t in ("critical", "warning") for t in pair),
                        "critical": "critical" in pair,
                    },
                )
            )
    return graph


# ============================================================================
# Layered layout
# ============================================================================


def _acyclic_pairs(node_ids: List[str], edges: List[LayoutEdge]) -> List[Tuple[str, str]]:
    """Edge endpoints with DFS back edges reversed, so the result is a DAG"""
    successors: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        successors[edge.source].append(edge.target)

    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    back_edges: Set[Tuple[str, str]] = set()

    for root in node_ids:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(successors[root]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node] = 2
                stack.pop()
            elif state.get(child) == 1:
                back_edges.add((node, child))
            elif child not in state:
                state[child] = 1
                stack.append((child, iter(successors[child])))

    if back_edges:
        logger.debug("Reversing %d back edge(s) to break cycles", len(back_edges))

    pairs = []
    for edge in edges:
        pair = (edge.source, edge.target)
        pairs.append((edge.target, edge.source) if pair in back_edges else pair)
    return pairs


def _assign_ranks(node_ids: List[str], pairs: List[Tuple[str, str]]) -> Dict[str, int]:
    predecessors: Dict[str, Set[str]] = {node_id: set() for node_id in node_ids}
    successors: Dict[str, Set[str]] = {node_id: set() for node_id in node_ids}
    for source, target in pairs:
        predecessors[target].add(source)
        successors[source].add(target)

    ranks: Dict[str, int] = {}
    for node_id in TopologicalSorter(predecessors).static_order():
        ranks[node_id] = max((ranks[p] + 1 for p in predecessors[node_id]), default=0)

    # Pull sources down so they sit just above their nearest consumer
    for node_id in node_ids:
        if not predecessors[node_id] and successors[node_id]:
            ranks[node_id] = min(ranks[s] for s in successors[node_id]) - 1
    return ranks


def _count_crossings(
    layers: List[List[str]], pairs: List[Tuple[str, str]], ranks: Dict[str, int]
) -> int:
    index = {node_id: i for layer in layers for i, node_id in enumerate(layer)}
    crossings = 0
    for rank in range(len(layers) - 1):
        segments = [
            (index[s], index[t]) for s, t in pairs if ranks[s] == rank and ranks[t] == rank + 1
        ]
        for i, (a_source, a_target) in enumerate(segments):
            for b_source, b_target in segments[i + 1 :]:
                if (a_source - b_source) * (a_target - b_target) < 0:
                    crossings += 1
    return crossings


def _order_layers(
    node_ids: List[str], pairs: List[Tuple[str, str]], ranks: Dict[str, int]
) -> List[List[str]]:
    """Barycenter sweeps, keeping the ordering with the fewest crossings"""
    layer_count = max(ranks.values()) + 1
    layers: List[List[str]] = [[] for _ in range(layer_count)]
    for node_id in node_ids:
        layers[ranks[node_id]].append(node_id)

    upper: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    lower: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for source, target in pairs:
        lower[source].append(target)
        upper[target].append(source)

    best = [list(layer) for layer in layers]
    best_crossings = _count_crossings(best, pairs, ranks)

    def reorder(layer: List[str], neighbours: Dict[str, List[str]], index: Dict[str, int]):
        def barycenter(position: int) -> float:
            placed = [index[n] for n in neighbours[layer[position]] if n in index]
            return sum(placed) / len(placed) if placed else float(position)

        keys = [barycenter(i) for i in range(len(layer))]
        return [node for _, node in sorted(zip(keys, layer), key=lambda item: item[0])]

    for sweep in range(MAX_SWEEPS):
        if best_crossings == 0:
            break
        downward = sweep % 2 == 0
        rank_order = range(1, layer_count) if downward else range(layer_count - 2, -1, -1)
        for rank in rank_order:
            neighbour_rank = rank - 1 if downward else rank + 1
            index = {n: i for i, n in enumerate(layers[neighbour_rank])}
            layers[rank] = reorder(layers[rank], upper if downward else lower, index)

        crossings = _count_crossings(layers, pairs, ranks)
        if crossings < best_crossings:
            best = [list(layer) for layer in layers]
            best_crossings = crossings

    return best


def layout_graph(graph: LayoutGraph, options: Optional[LayoutOptions] = None) -> LayoutGraph:
    """
    Position every node of a graph.

    Pure function: returns a new LayoutGraph with positions and handle
    sides set; edges with a missing endpoint are dropped.

    Args:
        graph: Graph from a synthesis step (positions are ignored)
        options: Spacing and direction; DEFAULT_LAYOUT_OPTIONS if omitted

    Returns:
        Positioned LayoutGraph; node positions are top-left corners and the
        bounding box is centered on x = 0
    """
    options = options or DEFAULT_LAYOUT_OPTIONS
    if graph.is_empty():
        return LayoutGraph()

    nodes: List[LayoutNode] = []
    seen: Set[str] = set()
    for node in graph.nodes:
        if node.id not in seen:
            seen.add(node.id)
            nodes.append(node)
    node_ids = [n.id for n in nodes]

    edges = [e for e in graph.edges if e.source in seen and e.target in seen]
    if len(edges) != len(graph.edges):
        logger.debug("Dropped %d dangling edge(s)", len(graph.edges) - len(edges))

    pairs = [p for p in _acyclic_pairs(node_ids, edges) if p[0] != p[1]]
    ranks = _assign_ranks(node_ids, pairs)
    layers = _order_layers(node_ids, pairs, ranks)

    horizontal = options.direction.is_horizontal
    main_size = options.node_width if horizontal else options.node_height
    cross_size = options.node_height if horizontal else options.node_width
    flip = options.direction in (LayoutDirection.BT, LayoutDirection.RL)

    centers: Dict[str, Tuple[float, float]] = {}
    for rank, layer in enumerate(layers):
        main = rank * (main_size + options.rank_spacing)
        if flip:
            main = -main
        extent = len(layer) * cross_size + (len(layer) - 1) * options.node_spacing
        start = -extent / 2 + cross_size / 2
        for i, node_id in enumerate(layer):
            cross = start + i * (cross_size + options.node_spacing)
            centers[node_id] = (main, cross) if horizontal else (cross, main)

    half_w, half_h = options.node_width / 2, options.node_height / 2
    min_x = min(x for x, _ in centers.values()) - half_w
    max_x = max(x for x, _ in centers.values()) + half_w
    min_y = min(y for _, y in centers.values()) - half_h
    offset_x = -(min_x + max_x) / 2

    source_side, target_side = _HANDLE_SIDES[options.direction]
    positioned = [
        replace(
            node,
            position=(
                centers[node.id][0] - half_w + offset_x,
                centers[node.id][1] - half_h - min_y,
            ),
            source_position=source_side,
            target_position=target_side,
            width=options.node_width,
            height=options.node_height,
        )
        for node in nodes
    ]
    return LayoutGraph(nodes=positioned, edges=[replace(e) for e in edges])


def layout(source: Any = None, options: Optional[LayoutOptions] = None) -> LayoutGraph:
    """
    Lay out whatever the host is showing.

    Args:
        source: A ParsedQuery, QueryBuilder, PlanNode, plan dict, or None
        options: Layout options; plans default to PLAN_LAYOUT_OPTIONS and
            queries to DEFAULT_LAYOUT_OPTIONS

    Returns:
        Positioned LayoutGraph; empty for None or an empty model

    Example:
        graph = layout(parse_query(sql, schema=catalog), LayoutOptions(direction="LR"))
    """
    if source is None:
        return LayoutGraph()
    if isinstance(source, QueryBuilder):
        source = source.to_parsed()
    if isinstance(source, dict):
        source = PlanNode.from_dict(source)

    if isinstance(source, ParsedQuery):
        return layout_graph(build_query_graph(source), options or DEFAULT_LAYOUT_OPTIONS)
    if isinstance(source, PlanNode):
        graph = build_plan_graph(source, analyze_plan(source))
        return layout_graph(graph, options or PLAN_LAYOUT_OPTIONS)
    raise TypeError(f"Cannot lay out {type(source).__name__}")


__all__ = [
    "LayoutDirection",
    "HandlePosition",
    "LayoutOptions",
    "DEFAULT_LAYOUT_OPTIONS",
    "PLAN_LAYOUT_OPTIONS",
    "LayoutNode",
    "LayoutEdge",
    "LayoutGraph",
    "build_query_graph",
    "build_plan_graph",
    "layout_graph",
    "layout",
    "TABLE_SOURCE_NODE",
    "JOIN_NODE",
    "FILTER_NODE",
    "GROUP_NODE",
    "PROJECTION_NODE",
    "SORT_NODE",
    "LIMIT_NODE",
    "PLAN_NODE",
]
