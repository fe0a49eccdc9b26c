"""
Pure visualization functions for query and plan graphs.

These functions translate layout graphs into Graphviz DOT format.
No business logic - just presentation layer.
"""

from typing import Any, Dict, Optional

import graphviz

from .layout import (
    DEFAULT_LAYOUT_OPTIONS,
    FILTER_NODE,
    GROUP_NODE,
    JOIN_NODE,
    LIMIT_NODE,
    PLAN_NODE,
    PROJECTION_NODE,
    SORT_NODE,
    TABLE_SOURCE_NODE,
    LayoutGraph,
    LayoutNode,
    LayoutOptions,
)

# Color scheme for different node types
NODE_COLORS = {
    TABLE_SOURCE_NODE: "#607D8B",  # Blue grey
    JOIN_NODE: "#2196F3",  # Blue
    FILTER_NODE: "#9C27B0",  # Purple
    GROUP_NODE: "#FF9800",  # Orange
    PROJECTION_NODE: "#4CAF50",  # Green
    SORT_NODE: "#00BCD4",  # Cyan
    LIMIT_NODE: "#795548",  # Brown
    PLAN_NODE: "#9E9E9E",  # Grey
}

# Plan nodes are colored by hot-path tier instead
TIER_COLORS = {
    "critical": "#ef4444",
    "warning": "#f97316",
    "normal": "#9E9E9E",
}


def _sanitize_graphviz_id(node_id: str) -> str:
    """
    Sanitize a node ID for use in Graphviz.

    Generated ids never contain colons or dots, but graphs assembled by the
    host and passed through layout_graph may. Graphviz reads colons as
    node:port syntax, so both are replaced.
    """
    return node_id.replace(":", "__").replace(".", "_")


def _node_label(node: LayoutNode) -> str:
    data: Dict[str, Any] = node.data
    if node.type == TABLE_SOURCE_NODE:
        name = data.get("table", node.id)
        alias = data.get("alias")
        return f"{name} AS {alias}" if alias else name
    if node.type == JOIN_NODE:
        label = f"{data.get('joinType', 'INNER')} JOIN {data.get('table', '')}"
        if data.get("sourceColumn"):
            label += (
                f"\\n{data['sourceTable']}.{data['sourceColumn']}"
                f" = {data['targetTable']}.{data['targetColumn']}"
            )
        return label
    if node.type == FILTER_NODE:
        conditions = data.get("conditions", [])
        return f"{data.get('filterType', 'WHERE')}\\n{len(conditions)} condition(s)"
    if node.type == GROUP_NODE:
        return "GROUP BY\\n" + ", ".join(data.get("columns", []))
    if node.type == PROJECTION_NODE:
        items = list(data.get("columns", [])) + list(data.get("aggregates", []))
        return "SELECT\\n" + (", ".join(items) if items else "*")
    if node.type == SORT_NODE:
        return "ORDER BY\\n" + ", ".join(
            f"{o['column']} {o['direction']}" for o in data.get("orderBy", [])
        )
    if node.type == LIMIT_NODE:
        return f"LIMIT {data.get('limit')}"
    if node.type == PLAN_NODE:
        label = data.get("label") or data.get("type", node.id)
        details = f"cost {data.get('cost', 0)} | rows {data.get('rows', 0)}"
        if data.get("actualTime") is not None:
            details += f"\\n{data['actualTime']} ms x {data.get('loops') or 1}"
        return f"{label}\\n{details}"
    return node.id


def visualize_layout_graph(
    graph: LayoutGraph, options: Optional[LayoutOptions] = None
) -> graphviz.Digraph:
    """
    Create Graphviz visualization of a query or plan LayoutGraph.

    Pure function: takes the graph, returns a Graphviz Digraph. Graphviz
    does its own positioning; only the direction is taken from the options.

    Args:
        graph: Graph from build_query_graph / build_plan_graph / layout
        options: Layout options supplying the rank direction

    Returns:
        graphviz.Digraph object ready to render
    """
    options = options or DEFAULT_LAYOUT_OPTIONS

    dot = graphviz.Digraph(comment="Query Canvas")
    dot.attr(rankdir=options.direction.value)
    dot.attr("node", shape="box", style="rounded,filled", fontname="Arial", fontsize="12")
    dot.attr("edge", fontsize="10", color="#555555")

    for node in graph.nodes:
        if node.type == PLAN_NODE:
            color = TIER_COLORS.get(node.data.get("tier", "normal"), TIER_COLORS["normal"])
        else:
            color = NODE_COLORS.get(node.type, "#9E9E9E")
        dot.node(
            _sanitize_graphviz_id(node.id),
            label=_node_label(node),
            shape="cylinder" if node.type == TABLE_SOURCE_NODE else "box",
            fillcolor=color,
            fontcolor="white",
            tooltip=f"{node.type}: {node.id}",
        )

    for edge in graph.edges:
        attrs: Dict[str, str] = {}
        if edge.target_handle:
            attrs["label"] = edge.target_handle
        elif edge.label:
            attrs["label"] = edge.label
        if edge.data.get("critical"):
            attrs.update(color=TIER_COLORS["critical"], penwidth="3.0")
        elif edge.data.get("hot"):
            attrs.update(color=TIER_COLORS["warning"], penwidth="2.0")
        dot.edge(_sanitize_graphviz_id(edge.source), _sanitize_graphviz_id(edge.target), **attrs)

    return dot


__all__ = [
    "NODE_COLORS",
    "TIER_COLORS",
    "visualize_layout_graph",
]
