"""
Editable query builder state.

QueryBuilder is the mutable counterpart of ParsedQuery. It carries stable ids
on every element, validates each mutation against the schema catalog, keeps
generated SQL memoized, and holds an optional raw-SQL override for text the
builder cannot represent.

Usage:
    builder = QueryBuilder(schema=catalog)
    builder.add_table("orders", alias="o")
    builder.toggle_column("orders", "id")
    builder.add_filter("orders.status", "=", "open")
    print(builder.sql)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

import sqlglot
from sqlglot import exp

from .model_extractor import format_between_values, format_in_values, parse_query_with_diagnostics
from .models import (
    AggregateFunction,
    ColumnAggregate,
    Connector,
    FilterOperator,
    HAVING_OPERATORS,
    JoinType,
    ParsedFilter,
    ParsedGroupBy,
    ParsedHaving,
    ParsedJoin,
    ParsedOrderBy,
    ParsedQuery,
    ParsedTable,
    RawSql,
    SchemaCatalog,
    SelectAggregate,
    SortDirection,
    Structured,
    split_column_ref,
)
from .query_parser import DEFAULT_DIALECT
from .sql_generator import format_literal, generate_sql, ordered_from_items

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


# ============================================================================
# Builder elements
# ============================================================================


@dataclass
class BuilderTable:
    id: str
    name: str
    alias: Optional[str] = None
    selected_columns: List[str] = field(default_factory=list)
    # column name -> (function, alias); at most one aggregate per column
    column_aggregates: Dict[str, Tuple[AggregateFunction, Optional[str]]] = field(
        default_factory=dict
    )

    @property
    def ref(self) -> str:
        return self.alias or self.name


@dataclass
class BuilderJoin:
    id: str
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    join_type: JoinType = JoinType.INNER


@dataclass
class BuilderFilter:
    id: str
    column: str
    operator: FilterOperator
    value: str = ""
    connector: Connector = Connector.AND


@dataclass
class BuilderGroupBy:
    id: str
    column: str


@dataclass
class BuilderHaving:
    id: str
    aggregate_function: AggregateFunction
    column: str
    operator: FilterOperator
    value: str
    connector: Connector = Connector.AND


@dataclass
class BuilderOrderBy:
    id: str
    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass
class BuilderSelectAggregate:
    id: str
    function: AggregateFunction
    expression: str = "*"
    alias: Optional[str] = None


def _coerce_enum(enum_cls: Type[E], value: Union[E, str], what: str) -> E:
    """Accept an enum member, its value or its name (case-insensitive)"""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        normalized = value.strip()
        for member in enum_cls:
            if member.value == normalized or member.value == normalized.upper():
                return member
            if member.name == normalized.upper().replace(" ", "_"):
                return member
        if normalized == "<>" and enum_cls is FilterOperator:
            return FilterOperator.NEQ
    raise ValueError(f"Invalid {what}: {value!r}")


# ============================================================================
# Query builder
# ============================================================================


class QueryBuilder:
    """
    Mutable, id-carrying query state owned by one editing session.

    Every mutation validates its arguments (raising ValueError), invalidates
    the memoized SQL and drops any raw-SQL override, so the structured state
    becomes authoritative again.

    Args:
        schema: SchemaCatalog or list of table dicts; None disables catalog
            checks
        dialect: sqlglot dialect used when applying typed SQL
    """

    def __init__(self, schema=None, dialect: str = DEFAULT_DIALECT):
        self.schema: Optional[SchemaCatalog] = SchemaCatalog.coerce(schema)
        self.dialect = dialect
        self._id_counter = 0

        self.tables: List[BuilderTable] = []
        self.joins: List[BuilderJoin] = []
        self.filters: List[BuilderFilter] = []
        self.group_by: List[BuilderGroupBy] = []
        self.having: List[BuilderHaving] = []
        self.order_by: List[BuilderOrderBy] = []
        self.limit: Optional[int] = None
        self.select_aggregates: List[BuilderSelectAggregate] = []

        self._generated_sql: Optional[str] = None
        self._raw_sql: Optional[str] = None
        self.parse_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        self._id_counter += 1
        return f"{prefix}-{self._id_counter}"

    def _changed(self):
        self._generated_sql = None
        self._raw_sql = None
        self.parse_error = None

    def _find(self, items: Sequence[Any], item_id: str, what: str):
        for item in items:
            if item.id == item_id:
                return item
        raise ValueError(f"Unknown {what} id: {item_id}")

    def get_table(self, name: str) -> Optional[BuilderTable]:
        """Find a builder table by name or alias"""
        for table in self.tables:
            if table.name == name:
                return table
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered or (table.alias and table.alias.lower() == lowered):
                return table
        return None

    def _require_table(self, name: str) -> BuilderTable:
        table = self.get_table(name)
        if table is None:
            raise ValueError(f"Table not in query: {name}")
        return table

    def _catalog_columns(self, table_name: str) -> Optional[List[str]]:
        if self.schema is None:
            return None
        schema_table = self.schema.get_table(table_name)
        if schema_table is None or not schema_table.columns:
            return None
        return schema_table.column_names

    def _require_column(self, table: BuilderTable, column: str) -> str:
        if self.schema is None:
            return column
        schema_table = self.schema.get_table(table.name)
        if schema_table is None or not schema_table.columns:
            return column
        known = schema_table.find_column(column)
        if known is None:
            raise ValueError(f"Unknown column {column!r} on table {table.name}")
        return known

    def _resolve_column_ref(self, column_ref: str) -> str:
        """Validate a ``table.column`` reference and return its canonical form"""
        table_name, column = split_column_ref(column_ref)
        if not table_name or not column:
            raise ValueError(f"Column must be written table.column: {column_ref!r}")
        table = self._require_table(table_name)
        return f"{table.name}.{self._require_column(table, column)}"

    def _normalize_filter_value(self, operator: FilterOperator, value: Any) -> str:
        if not operator.takes_value:
            return ""

        list_operators = (FilterOperator.IN, FilterOperator.NOT_IN)
        if isinstance(value, (list, tuple)):
            rendered = [format_literal(str(v)) for v in value]
            if operator in list_operators and rendered:
                return ", ".join(rendered)
            if operator == FilterOperator.BETWEEN and len(rendered) == 2:
                return f"{rendered[0]} AND {rendered[1]}"
            raise ValueError(f"Sequence value not valid for {operator.value}: {value!r}")

        text = "" if value is None else str(value)
        if operator in list_operators:
            return self._reformat_predicate(f"x IN ({text})", exp.In, format_in_values, text)
        if operator == FilterOperator.BETWEEN:
            return self._reformat_predicate(
                f"x BETWEEN {text}", exp.Between, format_between_values, text
            )
        return text

    def _reformat_predicate(self, probe: str, node_type, formatter, text: str) -> str:
        """Parse a probe predicate and re-render its literal operands canonically"""
        try:
            node = sqlglot.parse_one(probe, read=self.dialect)
        except sqlglot.errors.SqlglotError as e:
            raise ValueError(f"Invalid filter value: {text!r}") from e
        rendered = formatter(node) if isinstance(node, node_type) else None
        if rendered is None:
            raise ValueError(f"Filter value must be literals: {text!r}")
        return rendered

    # ------------------------------------------------------------------
    # Tables and columns
    # ------------------------------------------------------------------

    def add_table(self, name: str, alias: Optional[str] = None) -> BuilderTable:
        """
        Add a table to the query.

        Raises:
            ValueError: If the table is unknown to the catalog, already in the
                query, or the alias collides with another table reference
        """
        if self.schema is not None:
            schema_table = self.schema.get_table(name)
            if schema_table is None:
                raise ValueError(f"Unknown table: {name}")
            name = schema_table.name
        existing = self.get_table(name)
        if existing is not None:
            if existing.name.lower() == name.lower():
                raise ValueError(f"Table already in query: {name}")
            raise ValueError(f"Table name {name} clashes with alias {existing.alias}")
        alias = alias or None
        if alias and self.get_table(alias) is not None:
            raise ValueError(f"Alias already in use: {alias}")

        table = BuilderTable(id=self._next_id("table"), name=name, alias=alias)
        self.tables.append(table)
        self._changed()
        return table

    def remove_table(self, name: str):
        """Remove a table and everything that references it"""
        table = self._require_table(name)
        prefix = f"{table.name}."

        def references(column_ref: str) -> bool:
            return column_ref.startswith(prefix) and "." not in column_ref[len(prefix) :]

        self.tables.remove(table)
        self.joins = [
            j for j in self.joins if table.name not in (j.source_table, j.target_table)
        ]
        if self.tables:
            # A new leading table cannot keep an incoming join
            leading = self.tables[0].name
            self.joins = [j for j in self.joins if j.target_table != leading]
        self.filters = [f for f in self.filters if not references(f.column)]
        self.group_by = [g for g in self.group_by if not references(g.column)]
        self.having = [h for h in self.having if not references(h.column)]
        self.order_by = [o for o in self.order_by if not references(o.column)]
        self._changed()

    def toggle_column(self, table_name: str, column: str) -> bool:
        """
        Select or deselect a column. Deselecting also drops its aggregate.

        Returns:
            True if the column is now selected
        """
        table = self._require_table(table_name)
        column = self._require_column(table, column)
        if column in table.selected_columns:
            table.selected_columns.remove(column)
            table.column_aggregates.pop(column, None)
            selected = False
        else:
            table.selected_columns.append(column)
            selected = True
        self._changed()
        return selected

    def select_all_columns(self, table_name: str):
        """Select every catalog column of a table, in catalog order"""
        table = self._require_table(table_name)
        columns = self._catalog_columns(table.name)
        if columns is None:
            raise ValueError(f"No catalog columns known for table {table.name}")
        table.selected_columns = list(columns)
        self._changed()

    def clear_columns(self, table_name: str):
        table = self._require_table(table_name)
        table.selected_columns = []
        table.column_aggregates = {}
        self._changed()

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def add_join(
        self,
        source_table: str,
        source_column: str,
        target_table: str,
        target_column: str,
        join_type: Union[JoinType, str] = JoinType.INNER,
    ) -> BuilderJoin:
        """
        Join ``target_table`` onto ``source_table`` with one equality.

        The target is the table introduced by the JOIN clause, so it cannot be
        the leading table and can have only one incoming join.
        """
        source = self._require_table(source_table)
        target = self._require_table(target_table)
        if source is target:
            raise ValueError("A table cannot be joined to itself")
        if target is self.tables[0]:
            raise ValueError(f"The leading table {target.name} cannot be a join target")
        if any(j.target_table == target.name for j in self.joins):
            raise ValueError(f"Table {target.name} is already joined")
        if target.name in self._join_ancestors(source.name):
            raise ValueError(f"Joining {target.name} onto {source.name} would form a cycle")

        join = BuilderJoin(
            id=self._next_id("join"),
            source_table=source.name,
            source_column=self._require_column(source, source_column),
            target_table=target.name,
            target_column=self._require_column(target, target_column),
            join_type=_coerce_enum(JoinType, join_type, "join type"),
        )
        self.joins.append(join)
        self._changed()
        return join

    def _join_ancestors(self, table_name: str) -> List[str]:
        """Tables reached by following incoming joins upstream from ``table_name``"""
        incoming = {j.target_table: j.source_table for j in self.joins}
        ancestors: List[str] = []
        current = incoming.get(table_name)
        while current is not None and current not in ancestors:
            ancestors.append(current)
            current = incoming.get(current)
        return ancestors

    def update_join_type(self, join_id: str, join_type: Union[JoinType, str]):
        join = self._find(self.joins, join_id, "join")
        join.join_type = _coerce_enum(JoinType, join_type, "join type")
        self._changed()

    def remove_join(self, join_id: str):
        self.joins.remove(self._find(self.joins, join_id, "join"))
        self._changed()

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def add_filter(
        self,
        column: str,
        operator: Union[FilterOperator, str],
        value: Any = "",
        connector: Union[Connector, str] = Connector.AND,
    ) -> BuilderFilter:
        """
        Add a WHERE condition.

        Args:
            column: ``table.column`` reference
            operator: FilterOperator or its SQL spelling (``"NOT LIKE"``)
            value: Raw value; IN takes ``"1, 2"`` or a list, BETWEEN takes
                ``"1 AND 5"`` or a two-item list, IS operators ignore it
            connector: AND/OR joining this condition to the previous one
        """
        operator = _coerce_enum(FilterOperator, operator, "filter operator")
        condition = BuilderFilter(
            id=self._next_id("filter"),
            column=self._resolve_column_ref(column),
            operator=operator,
            value=self._normalize_filter_value(operator, value),
            connector=_coerce_enum(Connector, connector, "connector"),
        )
        self.filters.append(condition)
        self._changed()
        return condition

    def update_filter(
        self,
        filter_id: str,
        column: Optional[str] = None,
        operator: Union[FilterOperator, str, None] = None,
        value: Any = None,
        connector: Union[Connector, str, None] = None,
    ):
        """Update any subset of a filter's fields; None leaves a field unchanged"""
        condition = self._find(self.filters, filter_id, "filter")
        new_column = self._resolve_column_ref(column) if column is not None else condition.column
        new_operator = (
            _coerce_enum(FilterOperator, operator, "filter operator")
            if operator is not None
            else condition.operator
        )
        new_value = self._normalize_filter_value(
            new_operator, value if value is not None else condition.value
        )
        new_connector = (
            _coerce_enum(Connector, connector, "connector")
            if connector is not None
            else condition.connector
        )

        condition.column = new_column
        condition.operator = new_operator
        condition.value = new_value
        condition.connector = new_connector
        self._changed()

    def remove_filter(self, filter_id: str):
        self.filters.remove(self._find(self.filters, filter_id, "filter"))
        self._changed()

    # ------------------------------------------------------------------
    # GROUP BY
    # ------------------------------------------------------------------

    def add_group_by(self, column: str) -> BuilderGroupBy:
        item = BuilderGroupBy(id=self._next_id("group"), column=self._resolve_column_ref(column))
        self.group_by.append(item)
        self._changed()
        return item

    def update_group_by(self, group_by_id: str, column: str):
        item = self._find(self.group_by, group_by_id, "group by")
        item.column = self._resolve_column_ref(column)
        self._changed()

    def remove_group_by(self, group_by_id: str):
        self.group_by.remove(self._find(self.group_by, group_by_id, "group by"))
        self._changed()

    def set_group_by(self, columns: Sequence[str]) -> List[BuilderGroupBy]:
        """Replace the GROUP BY list in one step"""
        resolved = [self._resolve_column_ref(c) for c in columns]
        self.group_by = [BuilderGroupBy(id=self._next_id("group"), column=c) for c in resolved]
        self._changed()
        return list(self.group_by)

    # ------------------------------------------------------------------
    # HAVING
    # ------------------------------------------------------------------

    def _having_column(self, column: Optional[str]) -> str:
        if not column or column == "*":
            return ""
        return self._resolve_column_ref(column)

    def _having_operator(self, operator: Union[FilterOperator, str]) -> FilterOperator:
        operator = _coerce_enum(FilterOperator, operator, "having operator")
        if operator not in HAVING_OPERATORS:
            raise ValueError(f"Operator not allowed in HAVING: {operator.value}")
        return operator

    def add_having(
        self,
        aggregate_function: Union[AggregateFunction, str],
        column: Optional[str],
        operator: Union[FilterOperator, str],
        value: Any,
        connector: Union[Connector, str] = Connector.AND,
    ) -> BuilderHaving:
        """
        Add a HAVING condition ``AGG(column) op value``.

        An empty column (or ``"*"``) aggregates over ``*``.
        """
        item = BuilderHaving(
            id=self._next_id("having"),
            aggregate_function=_coerce_enum(AggregateFunction, aggregate_function, "aggregate"),
            column=self._having_column(column),
            operator=self._having_operator(operator),
            value=str(value),
            connector=_coerce_enum(Connector, connector, "connector"),
        )
        self.having.append(item)
        self._changed()
        return item

    def update_having(
        self,
        having_id: str,
        aggregate_function: Union[AggregateFunction, str, None] = None,
        column: Optional[str] = None,
        operator: Union[FilterOperator, str, None] = None,
        value: Any = None,
        connector: Union[Connector, str, None] = None,
    ):
        item = self._find(self.having, having_id, "having")
        updates: Dict[str, Any] = {}
        if aggregate_function is not None:
            updates["aggregate_function"] = _coerce_enum(
                AggregateFunction, aggregate_function, "aggregate"
            )
        if column is not None:
            updates["column"] = self._having_column(column)
        if operator is not None:
            updates["operator"] = self._having_operator(operator)
        if value is not None:
            updates["value"] = str(value)
        if connector is not None:
            updates["connector"] = _coerce_enum(Connector, connector, "connector")
        for key, new_value in updates.items():
            setattr(item, key, new_value)
        self._changed()

    def remove_having(self, having_id: str):
        self.having.remove(self._find(self.having, having_id, "having"))
        self._changed()

    # ------------------------------------------------------------------
    # ORDER BY / LIMIT
    # ------------------------------------------------------------------

    def add_order_by(
        self, column: str, direction: Union[SortDirection, str] = SortDirection.ASC
    ) -> BuilderOrderBy:
        item = BuilderOrderBy(
            id=self._next_id("order"),
            column=self._resolve_column_ref(column),
            direction=_coerce_enum(SortDirection, direction, "sort direction"),
        )
        self.order_by.append(item)
        self._changed()
        return item

    def update_order_by(
        self,
        order_id: str,
        direction: Union[SortDirection, str, None] = None,
        column: Optional[str] = None,
    ):
        item = self._find(self.order_by, order_id, "order by")
        new_direction = (
            _coerce_enum(SortDirection, direction, "sort direction")
            if direction is not None
            else item.direction
        )
        new_column = self._resolve_column_ref(column) if column is not None else item.column
        item.direction = new_direction
        item.column = new_column
        self._changed()

    def remove_order_by(self, order_id: str):
        self.order_by.remove(self._find(self.order_by, order_id, "order by"))
        self._changed()

    def reorder_order_by(self, from_index: int, to_index: int):
        """Move one ORDER BY item to a new position"""
        size = len(self.order_by)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise ValueError(f"Order by index out of range: {from_index} -> {to_index}")
        item = self.order_by.pop(from_index)
        self.order_by.insert(to_index, item)
        self._changed()

    def set_limit(self, limit: Optional[int]):
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
                raise ValueError(f"Limit must be a non-negative integer: {limit!r}")
        self.limit = limit
        self._changed()

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def set_column_aggregate(
        self,
        table_name: str,
        column: str,
        function: Union[AggregateFunction, str, None],
        alias: Optional[str] = None,
    ):
        """
        Set (or clear, with ``function=None``) the aggregate on a column.

        Aggregating a column selects it.
        """
        table = self._require_table(table_name)
        column = self._require_column(table, column)
        if function is None:
            table.column_aggregates.pop(column, None)
        else:
            function = _coerce_enum(AggregateFunction, function, "aggregate")
            if column not in table.selected_columns:
                table.selected_columns.append(column)
            table.column_aggregates[column] = (function, alias or None)
        self._changed()

    def toggle_column_aggregate(
        self, table_name: str, column: str, function: Union[AggregateFunction, str]
    ) -> bool:
        """
        Apply ``function`` to a column, or clear it if already applied.

        Returns:
            True if the aggregate is now set
        """
        table = self._require_table(table_name)
        column = self._require_column(table, column)
        function = _coerce_enum(AggregateFunction, function, "aggregate")
        current = table.column_aggregates.get(column)
        if current is not None and current[0] == function:
            self.set_column_aggregate(table.name, column, None)
            return False
        self.set_column_aggregate(table.name, column, function)
        return True

    def add_select_aggregate(
        self, function: Union[AggregateFunction, str], alias: Optional[str] = None
    ) -> BuilderSelectAggregate:
        """Add a whole-row aggregate such as ``COUNT(*)``"""
        item = BuilderSelectAggregate(
            id=self._next_id("aggregate"),
            function=_coerce_enum(AggregateFunction, function, "aggregate"),
            alias=alias or None,
        )
        self.select_aggregates.append(item)
        self._changed()
        return item

    def update_select_aggregate(
        self,
        aggregate_id: str,
        function: Union[AggregateFunction, str, None] = None,
        alias: Optional[str] = None,
    ):
        item = self._find(self.select_aggregates, aggregate_id, "aggregate")
        if function is not None:
            item.function = _coerce_enum(AggregateFunction, function, "aggregate")
        if alias is not None:
            item.alias = alias or None
        self._changed()

    def remove_select_aggregate(self, aggregate_id: str):
        self.select_aggregates.remove(self._find(self.select_aggregates, aggregate_id, "aggregate"))
        self._changed()

    # ------------------------------------------------------------------
    # Whole-state operations
    # ------------------------------------------------------------------

    def reset(self):
        """Clear all structure and any raw override. Ids keep counting up."""
        self.tables = []
        self.joins = []
        self.filters = []
        self.group_by = []
        self.having = []
        self.order_by = []
        self.limit = None
        self.select_aggregates = []
        self._changed()

    def load(self, query: ParsedQuery):
        """Replace the builder state with a parsed model"""
        self.reset()
        for parsed_table in query.tables:
            self.tables.append(
                BuilderTable(
                    id=self._next_id("table"),
                    name=parsed_table.name,
                    alias=parsed_table.alias,
                    selected_columns=list(parsed_table.selected_columns),
                )
            )
        for aggregate in query.column_aggregates:
            table = self.get_table(aggregate.table)
            if table is None:
                continue
            if aggregate.column not in table.selected_columns:
                table.selected_columns.append(aggregate.column)
            table.column_aggregates[aggregate.column] = (aggregate.function, aggregate.alias)

        self.joins = [
            BuilderJoin(
                id=self._next_id("join"),
                source_table=j.source_table,
                source_column=j.source_column,
                target_table=j.target_table,
                target_column=j.target_column,
                join_type=j.join_type,
            )
            for j in query.joins
        ]
        self.filters = [
            BuilderFilter(
                id=self._next_id("filter"),
                column=f.column,
                operator=f.operator,
                value=f.value,
                connector=f.connector,
            )
            for f in query.filters
        ]
        self.group_by = [
            BuilderGroupBy(id=self._next_id("group"), column=g.column) for g in query.group_by
        ]
        self.having = [
            BuilderHaving(
                id=self._next_id("having"),
                aggregate_function=h.aggregate_function,
                column=h.column,
                operator=h.operator,
                value=h.value,
                connector=h.connector,
            )
            for h in query.having
        ]
        self.order_by = [
            BuilderOrderBy(id=self._next_id("order"), column=o.column, direction=o.direction)
            for o in query.order_by
        ]
        self.limit = query.limit
        self.select_aggregates = [
            BuilderSelectAggregate(
                id=self._next_id("aggregate"),
                function=a.function,
                expression=a.expression,
                alias=a.alias,
            )
            for a in query.select_aggregates
        ]
        self._changed()

    @classmethod
    def from_parsed(
        cls, query: ParsedQuery, schema=None, dialect: str = DEFAULT_DIALECT
    ) -> "QueryBuilder":
        builder = cls(schema=schema, dialect=dialect)
        builder.load(query)
        return builder

    def to_parsed(self) -> ParsedQuery:
        """
        Snapshot the structured state as an immutable ParsedQuery.

        Tables and joins come out in FROM-clause order and column aggregates
        in select-list order, which is the order a parse of the generated
        SQL reports them in.
        """
        draft = ParsedQuery(
            tables=tuple(
                ParsedTable(
                    name=t.name, alias=t.alias, selected_columns=tuple(t.selected_columns)
                )
                for t in self.tables
            ),
            joins=tuple(
                ParsedJoin(
                    source_table=j.source_table,
                    source_column=j.source_column,
                    target_table=j.target_table,
                    target_column=j.target_column,
                    join_type=j.join_type,
                )
                for j in self.joins
            ),
        )
        from_items = ordered_from_items(draft)

        column_aggregates = []
        for parsed_table, _ in from_items:
            table = self.get_table(parsed_table.name)
            for column in table.selected_columns:
                if column in table.column_aggregates:
                    function, alias = table.column_aggregates[column]
                    column_aggregates.append(
                        ColumnAggregate(
                            table=table.name, column=column, function=function, alias=alias
                        )
                    )

        return ParsedQuery(
            tables=tuple(t for t, _ in from_items),
            joins=tuple(j for _, j in from_items if j is not None),
            filters=tuple(
                ParsedFilter(
                    column=f.column,
                    operator=f.operator,
                    value=f.value,
                    connector=f.connector if index else Connector.AND,
                )
                for index, f in enumerate(self.filters)
            ),
            group_by=tuple(ParsedGroupBy(column=g.column) for g in self.group_by),
            having=tuple(
                ParsedHaving(
                    aggregate_function=h.aggregate_function,
                    column=h.column,
                    operator=h.operator,
                    value=h.value,
                    connector=h.connector if index else Connector.AND,
                )
                for index, h in enumerate(self.having)
            ),
            order_by=tuple(
                ParsedOrderBy(column=o.column, direction=o.direction) for o in self.order_by
            ),
            limit=self.limit,
            select_aggregates=tuple(
                SelectAggregate(function=a.function, expression=a.expression, alias=a.alias)
                for a in self.select_aggregates
            ),
            column_aggregates=tuple(column_aggregates),
        )

    def is_empty(self) -> bool:
        return not self.tables

    # ------------------------------------------------------------------
    # SQL text synchronization
    # ------------------------------------------------------------------

    @property
    def generated_sql(self) -> str:
        """SQL for the structured state, memoized until the next mutation"""
        if self._generated_sql is None:
            self._generated_sql = generate_sql(self.to_parsed(), self.schema)
        return self._generated_sql

    @property
    def has_raw_override(self) -> bool:
        return self._raw_sql is not None

    @property
    def source(self) -> Union[Structured, RawSql]:
        if self._raw_sql is not None:
            return RawSql(sql=self._raw_sql, error=self.parse_error)
        return Structured(query=self.to_parsed())

    @property
    def sql(self) -> str:
        """The text the editor should show"""
        if self._raw_sql is not None:
            return self._raw_sql
        return self.generated_sql

    def apply_sql(self, sql: str) -> bool:
        """
        Synchronize the builder from typed SQL.

        On success the structure is replaced and any override dropped. When
        the text cannot be modeled (a parse failure, or a statement with
        nothing the builder can show) the structure is kept and the text is
        stored verbatim as the raw override.

        Returns:
            True if the structured state was replaced
        """
        result = parse_query_with_diagnostics(sql, schema=self.schema, dialect=self.dialect)
        blank = not sql or not sql.strip()

        if result.query is not None and (blank or not result.query.is_empty()):
            self.load(result.query)
            return True

        logger.debug("Keeping raw SQL override: %s", result.error or "nothing to model")
        self._raw_sql = sql
        self._generated_sql = None
        self.parse_error = result.error
        return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot of the full builder state, ids included"""
        return {
            "dialect": self.dialect,
            "tables": [
                {
                    "id": t.id,
                    "name": t.name,
                    "alias": t.alias,
                    "selected_columns": list(t.selected_columns),
                    "column_aggregates": {
                        column: {"function": function.value, "alias": alias}
                        for column, (function, alias) in t.column_aggregates.items()
                    },
                }
                for t in self.tables
            ],
            "joins": [
                {
                    "id": j.id,
                    "source_table": j.source_table,
                    "source_column": j.source_column,
                    "target_table": j.target_table,
                    "target_column": j.target_column,
                    "join_type": j.join_type.value,
                }
                for j in self.joins
            ],
            "filters": [
                {
                    "id": f.id,
                    "column": f.column,
                    "operator": f.operator.value,
                    "value": f.value,
                    "connector": f.connector.value,
                }
                for f in self.filters
            ],
            "group_by": [{"id": g.id, "column": g.column} for g in self.group_by],
            "having": [
                {
                    "id": h.id,
                    "aggregate_function": h.aggregate_function.value,
                    "column": h.column,
                    "operator": h.operator.value,
                    "value": h.value,
                    "connector": h.connector.value,
                }
                for h in self.having
            ],
            "order_by": [
                {"id": o.id, "column": o.column, "direction": o.direction.value}
                for o in self.order_by
            ],
            "limit": self.limit,
            "select_aggregates": [
                {"id": a.id, "function": a.function.value, "expression": a.expression, "alias": a.alias}
                for a in self.select_aggregates
            ],
            "raw_sql": self._raw_sql,
            "parse_error": self.parse_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], schema=None) -> "QueryBuilder":
        """
        Restore a builder saved with ``to_dict``.

        Element ids are kept and the id counter resumes after the largest one.
        """
        builder = cls(schema=schema, dialect=data.get("dialect", DEFAULT_DIALECT))

        builder.tables = [
            BuilderTable(
                id=t["id"],
                name=t["name"],
                alias=t.get("alias"),
                selected_columns=list(t.get("selected_columns", [])),
                column_aggregates={
                    column: (AggregateFunction(spec["function"]), spec.get("alias"))
                    for column, spec in t.get("column_aggregates", {}).items()
                },
            )
            for t in data.get("tables", [])
        ]
        builder.joins = [
            BuilderJoin(
                id=j["id"],
                source_table=j["source_table"],
                source_column=j["source_column"],
                target_table=j["target_table"],
                target_column=j["target_column"],
                join_type=JoinType(j.get("join_type", "INNER")),
            )
            for j in data.get("joins", [])
        ]
        builder.filters = [
            BuilderFilter(
                id=f["id"],
                column=f["column"],
                operator=FilterOperator(f["operator"]),
                value=f.get("value", ""),
                connector=Connector(f.get("connector", "AND")),
            )
            for f in data.get("filters", [])
        ]
        builder.group_by = [
            BuilderGroupBy(id=g["id"], column=g["column"]) for g in data.get("group_by", [])
        ]
        builder.having = [
            BuilderHaving(
                id=h["id"],
                aggregate_function=AggregateFunction(h["aggregate_function"]),
                column=h.get("column", ""),
                operator=FilterOperator(h["operator"]),
                value=h["value"],
                connector=Connector(h.get("connector", "AND")),
            )
            for h in data.get("having", [])
        ]
        builder.order_by = [
            BuilderOrderBy(
                id=o["id"], column=o["column"], direction=SortDirection(o.get("direction", "ASC"))
            )
            for o in data.get("order_by", [])
        ]
        builder.limit = data.get("limit")
        builder.select_aggregates = [
            BuilderSelectAggregate(
                id=a["id"],
                function=AggregateFunction(a["function"]),
                expression=a.get("expression", "*"),
                alias=a.get("alias"),
            )
            for a in data.get("select_aggregates", [])
        ]

        builder._id_counter = max(
            [_id_number(item.id) for item in builder._all_elements()], default=0
        )
        builder._raw_sql = data.get("raw_sql")
        builder.parse_error = data.get("parse_error")
        return builder

    def _all_elements(self) -> List[Any]:
        return [
            *self.tables,
            *self.joins,
            *self.filters,
            *self.group_by,
            *self.having,
            *self.order_by,
            *self.select_aggregates,
        ]


def _id_number(element_id: str) -> int:
    _, _, suffix = element_id.rpartition("-")
    return int(suffix) if suffix.isdigit() else 0


__all__ = [
    "QueryBuilder",
    "BuilderTable",
    "BuilderJoin",
    "BuilderFilter",
    "BuilderGroupBy",
    "BuilderHaving",
    "BuilderOrderBy",
    "BuilderSelectAggregate",
]
