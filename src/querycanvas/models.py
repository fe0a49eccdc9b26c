"""
Core data models for SQL analysis and visual query modeling.

Contains all dataclass definitions for:
- Statement segmentation
- Schema catalog (read-only input supplied by the host)
- Parsed query model (immutable result of a parse)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

# ============================================================================
# Statement Segmentation Models
# ============================================================================


@dataclass(frozen=True)
class StatementSpan:
    """
    One statement inside a multi-statement text buffer.

    ``text[start_offset:end_offset] == sql`` always holds: offsets are
    code-unit indices into the original buffer, end exclusive, and the span
    is trimmed of surrounding whitespace.
    """

    start_offset: int
    end_offset: int
    sql: str

    def contains(self, offset: int) -> bool:
        """Check if a cursor offset falls inside this span"""
        return self.start_offset <= offset < self.end_offset


class StatementKind(Enum):
    """Kind of SQL statement, used by hosts for selective execution"""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    OTHER = "other"


# ============================================================================
# Schema Catalog
# ============================================================================


@dataclass(frozen=True)
class SchemaColumn:
    """A column known to the host database"""

    name: str
    type: str = ""
    primary_key: bool = False


@dataclass(frozen=True)
class SchemaTable:
    """A table known to the host database"""

    name: str
    columns: Tuple[SchemaColumn, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def has_column(self, column_name: str) -> bool:
        return self.find_column(column_name) is not None

    def find_column(self, column_name: str) -> Optional[str]:
        """Return the catalog spelling of a column, matching case-insensitively"""
        lowered = column_name.lower()
        for column in self.columns:
            if column.name == column_name:
                return column.name
        for column in self.columns:
            if column.name.lower() == lowered:
                return column.name
        return None


class SchemaCatalog:
    """
    Read-only lookup over the tables supplied by the host.

    Shared across editing sessions; never mutated after construction.

    Example:
        catalog = SchemaCatalog.from_dicts([
            {"tableName": "orders", "columns": [{"name": "id", "type": "int"}]},
        ])
    """

    def __init__(self, tables: Iterable[SchemaTable] = ()):
        self._tables: Dict[str, SchemaTable] = {}
        for table in tables:
            self._tables[table.name] = table

    @classmethod
    def from_dicts(cls, tables: Iterable[Dict[str, Any]]) -> "SchemaCatalog":
        """
        Build a catalog from plain dicts.

        Accepts ``tableName`` or ``name`` for the table, and ``primaryKey`` or
        ``primary_key`` on columns. Extra keys are ignored.
        """
        schema_tables = []
        for table in tables:
            name = table.get("tableName") or table.get("name")
            if not name:
                continue
            columns = tuple(
                SchemaColumn(
                    name=col["name"],
                    type=col.get("type", ""),
                    primary_key=bool(col.get("primaryKey", col.get("primary_key", False))),
                )
                for col in table.get("columns", [])
            )
            schema_tables.append(SchemaTable(name=name, columns=columns))
        return cls(schema_tables)

    @classmethod
    def coerce(
        cls, schema: Union["SchemaCatalog", Iterable[Any], None]
    ) -> Optional["SchemaCatalog"]:
        """Accept a catalog, SchemaTable objects or plain dicts; None stays None"""
        if schema is None or isinstance(schema, SchemaCatalog):
            return schema
        items = list(schema)
        if all(isinstance(item, SchemaTable) for item in items):
            return cls(items)
        return cls.from_dicts(items)

    def __contains__(self, table_name: str) -> bool:
        return self.get_table(table_name) is not None

    def __iter__(self):
        return iter(self._tables.values())

    def __len__(self) -> int:
        return len(self._tables)

    def get_table(self, table_name: str) -> Optional[SchemaTable]:
        """Find a table by exact name, falling back to a case-insensitive match"""
        table = self._tables.get(table_name)
        if table is not None:
            return table
        lowered = table_name.lower()
        for name, candidate in self._tables.items():
            if name.lower() == lowered:
                return candidate
        return None

    def table_names(self) -> List[str]:
        return list(self._tables)


# ============================================================================
# Query Model Enums
# ============================================================================


class JoinType(Enum):
    """Join kinds representable in the visual builder"""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


class Connector(Enum):
    """Boolean operator joining a condition to the previous one"""

    AND = "AND"
    OR = "OR"


class AggregateFunction(Enum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


class SortDirection(Enum):
    ASC = "ASC"
    DESC = "DESC"


class FilterOperator(Enum):
    """Comparison operators for WHERE conditions"""

    EQ = "="
    NEQ = "!="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IN = "IN"
    NOT_IN = "NOT IN"
    BETWEEN = "BETWEEN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"
    IS_TRUE = "IS TRUE"
    IS_FALSE = "IS FALSE"
    IS_NOT_TRUE = "IS NOT TRUE"
    IS_NOT_FALSE = "IS NOT FALSE"

    @property
    def takes_value(self) -> bool:
        """IS-style operators carry no right-hand value"""
        return not self.value.startswith("IS ")


# HAVING conditions only compare aggregates numerically
HAVING_OPERATORS = frozenset(
    [
        FilterOperator.EQ,
        FilterOperator.NEQ,
        FilterOperator.GT,
        FilterOperator.LT,
        FilterOperator.GTE,
        FilterOperator.LTE,
    ]
)


# ============================================================================
# Parsed Query Model
# ============================================================================


def split_column_ref(column_ref: str) -> Tuple[str, str]:
    """
    Split a ``table.column`` reference into its parts.

    Table names may themselves be schema-qualified, so the split happens on
    the last dot only.
    """
    table, _, column = column_ref.rpartition(".")
    return table, column


@dataclass(frozen=True)
class ParsedTable:
    name: str
    alias: Optional[str] = None
    selected_columns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ParsedJoin:
    """
    A single-equality join edge.

    ``target_table`` is the table introduced by the JOIN clause and
    ``source_table`` the table it attaches to.
    """

    source_table: str
    source_column: str
    target_table: str
    target_column: str
    join_type: JoinType = JoinType.INNER


@dataclass(frozen=True)
class ParsedFilter:
    column: str  # "table.column"
    operator: FilterOperator
    value: str = ""
    connector: Connector = Connector.AND  # joins this item to the previous one


@dataclass(frozen=True)
class ParsedGroupBy:
    column: str


@dataclass(frozen=True)
class ParsedHaving:
    aggregate_function: AggregateFunction
    column: str  # "table.column", or "" for COUNT(*)
    operator: FilterOperator
    value: str
    connector: Connector = Connector.AND


@dataclass(frozen=True)
class ParsedOrderBy:
    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class SelectAggregate:
    """Whole-row aggregate such as COUNT(*); complex arguments are kept opaque"""

    function: AggregateFunction
    expression: str = "*"
    alias: Optional[str] = None


@dataclass(frozen=True)
class ColumnAggregate:
    """Aggregate bound to one table column, e.g. SUM(orders.price)"""

    table: str
    column: str
    function: AggregateFunction
    alias: Optional[str] = None

    @property
    def column_ref(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class ParsedQuery:
    """
    Normalized, immutable view of one SELECT statement.

    Built fresh on every parse and never mutated; the editable counterpart is
    ``QueryBuilder``.
    """

    tables: Tuple[ParsedTable, ...] = ()
    joins: Tuple[ParsedJoin, ...] = ()
    filters: Tuple[ParsedFilter, ...] = ()
    group_by: Tuple[ParsedGroupBy, ...] = ()
    having: Tuple[ParsedHaving, ...] = ()
    order_by: Tuple[ParsedOrderBy, ...] = ()
    limit: Optional[int] = None
    select_aggregates: Tuple[SelectAggregate, ...] = ()
    column_aggregates: Tuple[ColumnAggregate, ...] = ()

    def is_empty(self) -> bool:
        return not self.tables

    def get_table(self, name: str) -> Optional[ParsedTable]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]


@dataclass
class ExtractionNotes:
    """Things the extractor dropped while building a model, for diagnostics"""

    skipped_tables: List[str] = field(default_factory=list)
    skipped_joins: List[str] = field(default_factory=list)
    skipped_conditions: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.skipped_tables or self.skipped_joins or self.skipped_conditions)


@dataclass(frozen=True)
class ParseResult:
    """A parse outcome: either a query, or None with a diagnostic"""

    query: Optional[ParsedQuery]
    error: Optional[str] = None
    notes: ExtractionNotes = field(default_factory=ExtractionNotes)

    @property
    def ok(self) -> bool:
        return self.query is not None


# ============================================================================
# Builder source (structured vs. raw override)
# ============================================================================


@dataclass(frozen=True)
class Structured:
    """The builder's structured fields are authoritative"""

    query: ParsedQuery


@dataclass(frozen=True)
class RawSql:
    """Free-typed SQL that no longer maps to the structured form; render verbatim"""

    sql: str
    error: Optional[str] = None


__all__ = [
    # Segmentation
    "StatementSpan",
    "StatementKind",
    # Schema
    "SchemaColumn",
    "SchemaTable",
    "SchemaCatalog",
    # Enums
    "JoinType",
    "Connector",
    "AggregateFunction",
    "SortDirection",
    "FilterOperator",
    "HAVING_OPERATORS",
    # Parsed model
    "split_column_ref",
    "ParsedTable",
    "ParsedJoin",
    "ParsedFilter",
    "ParsedGroupBy",
    "ParsedHaving",
    "ParsedOrderBy",
    "SelectAggregate",
    "ColumnAggregate",
    "ParsedQuery",
    "ExtractionNotes",
    "ParseResult",
    # Builder source
    "Structured",
    "RawSql",
]
