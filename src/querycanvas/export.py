"""
Export functionality for layout graphs, builder state and plan analysis.

Supports exporting to various formats:
- JSON: Renderer-ready graphs and builder snapshots
- CSV: Per-node plan analysis for spreadsheets
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, Optional

from .explain import PlanAnalysis
from .layout import LayoutGraph, LayoutOptions, layout
from .query_builder import QueryBuilder


class JSONExporter:
    """
    Export layout graphs to JSON for node-graph renderers.

    Keys are camelCase (``sourcePosition``, ``targetHandle``) so the output
    can be handed to the renderer without a mapping step.
    """

    @staticmethod
    def export(graph: LayoutGraph, options: Optional[LayoutOptions] = None) -> Dict[str, Any]:
        """
        Export a layout graph to a JSON-serializable dictionary.

        Args:
            graph: The (usually positioned) layout graph
            options: Options the graph was laid out with, recorded for the
                renderer when given

        Returns:
            Dictionary with ``nodes`` and ``edges``, plus ``layout`` when
            options are given

        Example:
            data = JSONExporter.export(layout(query), options)
            with open("query-graph.json", "w") as f:
                json.dump(data, f)
        """
        result = graph.to_dict()
        if options is not None:
            result["layout"] = {
                "direction": options.direction.value,
                "nodeSpacing": options.node_spacing,
                "rankSpacing": options.rank_spacing,
                "nodeWidth": options.node_width,
                "nodeHeight": options.node_height,
            }
        return result

    @staticmethod
    def export_builder(
        builder: QueryBuilder, options: Optional[LayoutOptions] = None
    ) -> Dict[str, Any]:
        """
        Export everything a host needs to restore and display a builder.

        Returns:
            Dictionary with the editor ``sql``, the persisted ``state``
            (see QueryBuilder.from_dict) and the positioned ``graph``
        """
        return {
            "sql": builder.sql,
            "state": builder.to_dict(),
            "graph": JSONExporter.export(layout(builder, options), options),
        }

    @staticmethod
    def export_to_file(
        graph: LayoutGraph,
        file_path: str,
        options: Optional[LayoutOptions] = None,
        indent: int = 2,
    ):
        """
        Export a layout graph to a JSON file.

        Args:
            graph: The layout graph to export
            file_path: Path to output JSON file
            options: Layout options to record alongside the graph
            indent: JSON indentation (default: 2)
        """
        data = JSONExporter.export(graph, options)

        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(data, f, indent=indent)


class CSVExporter:
    """
    Export plan analysis to CSV format (one-way export only).

    Use this for sharing EXPLAIN ANALYZE hot spots in a spreadsheet.
    """

    @staticmethod
    def export_plan_analysis_to_file(analysis: PlanAnalysis, file_path: str):
        """
        Export per-node plan analysis to a CSV file, hottest nodes first.

        Args:
            analysis: Result of analyze_plan
            file_path: Path to output CSV file
        """
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)

            # Header
            writer.writerow(
                [
                    "node_id",
                    "node_type",
                    "relation_name",
                    "effective_time",
                    "share_of_total",
                    "tier",
                    "row_estimation_ratio",
                    "estimation_error",
                ]
            )

            # Rows
            for node in sorted(
                analysis.nodes.values(), key=lambda n: n.share_of_total, reverse=True
            ):
                writer.writerow(
                    [
                        node.node_id,
                        node.node_type,
                        node.relation_name or "",
                        f"{node.effective_time:.3f}",
                        f"{node.share_of_total:.4f}",
                        node.tier.value,
                        f"{node.row_estimation_ratio:.2f}",
                        "Yes" if node.has_estimation_error else "No",
                    ]
                )


__all__ = [
    "JSONExporter",
    "CSVExporter",
]
