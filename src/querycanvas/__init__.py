"""
QueryCanvas - SQL analysis and visual query modeling for SQL workbenches

Splits editor buffers into statements, parses SELECTs into an editable
visual model, regenerates SQL from that model, and lays out query and
execution-plan graphs for rendering.
"""

from importlib.metadata import version

__version__ = version("querycanvas")

from .explain import (
    HotPathTier,
    NodeAnalysis,
    PlanAnalysis,
    PlanNode,
    analyze_plan,
    iter_plan_nodes,
)

# Import export functionality
from .export import CSVExporter, JSONExporter
from .layout import (
    DEFAULT_LAYOUT_OPTIONS,
    PLAN_LAYOUT_OPTIONS,
    HandlePosition,
    LayoutDirection,
    LayoutEdge,
    LayoutGraph,
    LayoutNode,
    LayoutOptions,
    build_plan_graph,
    build_query_graph,
    layout,
    layout_graph,
)
from .model_extractor import QueryModelExtractor, parse_query, parse_query_with_diagnostics
from .models import (
    AggregateFunction,
    ColumnAggregate,
    Connector,
    ExtractionNotes,
    FilterOperator,
    JoinType,
    ParsedFilter,
    ParsedGroupBy,
    ParsedHaving,
    ParsedJoin,
    ParsedOrderBy,
    ParsedQuery,
    ParsedTable,
    ParseResult,
    RawSql,
    SchemaCatalog,
    SchemaColumn,
    SchemaTable,
    SelectAggregate,
    SortDirection,
    StatementKind,
    StatementSpan,
    Structured,
)
from .query_builder import QueryBuilder
from .query_parser import DEFAULT_DIALECT, get_parse_error, parse_statement
from .segmenter import classify_statement, is_write_statement, split_statements, statement_at
from .sql_generator import generate_sql

# Import visualization functions
from .visualizations import visualize_layout_graph

__all__ = [
    # Version
    "__version__",
    # Segmentation
    "split_statements",
    "statement_at",
    "classify_statement",
    "is_write_statement",
    "StatementSpan",
    "StatementKind",
    # Parsing
    "DEFAULT_DIALECT",
    "parse_statement",
    "get_parse_error",
    "parse_query",
    "parse_query_with_diagnostics",
    "QueryModelExtractor",
    "ParseResult",
    "ExtractionNotes",
    # Schema catalog
    "SchemaCatalog",
    "SchemaTable",
    "SchemaColumn",
    # Parsed model
    "ParsedQuery",
    "ParsedTable",
    "ParsedJoin",
    "ParsedFilter",
    "ParsedGroupBy",
    "ParsedHaving",
    "ParsedOrderBy",
    "SelectAggregate",
    "ColumnAggregate",
    "JoinType",
    "Connector",
    "FilterOperator",
    "AggregateFunction",
    "SortDirection",
    # Builder
    "QueryBuilder",
    "Structured",
    "RawSql",
    "generate_sql",
    # Execution plans
    "PlanNode",
    "PlanAnalysis",
    "NodeAnalysis",
    "HotPathTier",
    "analyze_plan",
    "iter_plan_nodes",
    # Layout
    "LayoutDirection",
    "LayoutOptions",
    "HandlePosition",
    "LayoutNode",
    "LayoutEdge",
    "LayoutGraph",
    "DEFAULT_LAYOUT_OPTIONS",
    "PLAN_LAYOUT_OPTIONS",
    "build_query_graph",
    "build_plan_graph",
    "layout_graph",
    "layout",
    # Export and visualization
    "JSONExporter",
    "CSVExporter",
    "visualize_layout_graph",
]
