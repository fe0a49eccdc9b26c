"""
SQL generation from the parsed query model.

Produces deterministic, formatted SQL text that parses back into an
equivalent ParsedQuery. Output shape:

    SELECT o.id, SUM(o.price) AS total
    FROM orders AS o
      LEFT JOIN customers AS c ON o.customer_id = c.id
    WHERE o.status = 'open'
      AND o.price > 10
    GROUP BY o.id
    HAVING COUNT(*) > 1
    ORDER BY o.id DESC
    LIMIT 50
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from .models import (
    ColumnAggregate,
    FilterOperator,
    ParsedFilter,
    ParsedHaving,
    ParsedJoin,
    ParsedQuery,
    ParsedTable,
    SchemaCatalog,
    split_column_ref,
)

_NUMBER_RE = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")
_BOOLEAN_LITERALS = {"TRUE", "FALSE"}
_SIMPLE_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Keywords that cannot appear as bare identifiers in the generated shape
_RESERVED_IDENTIFIERS = {
    "all",
    "and",
    "as",
    "asc",
    "between",
    "by",
    "case",
    "cross",
    "desc",
    "distinct",
    "end",
    "from",
    "full",
    "group",
    "having",
    "in",
    "inner",
    "is",
    "join",
    "left",
    "like",
    "limit",
    "not",
    "null",
    "on",
    "or",
    "order",
    "right",
    "select",
    "table",
    "then",
    "union",
    "user",
    "when",
    "where",
}

INDENT = "  "


# ============================================================================
# Literal and identifier formatting
# ============================================================================


def quote_identifier(name: str) -> str:
    """Double-quote an identifier unless it is a plain, non-reserved word"""
    if _SIMPLE_IDENTIFIER_RE.match(name) and name.lower() not in _RESERVED_IDENTIFIERS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_table_name(name: str) -> str:
    """Quote each part of a possibly schema-qualified table name"""
    return ".".join(quote_identifier(part) for part in name.split("."))


def quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def format_literal(value: str) -> str:
    """
    Render a raw filter value as a SQL literal.

    Numbers and booleans are emitted bare; everything else is a
    single-quoted string.

    Example:
        >>> format_literal("42"), format_literal("O'Brien")
        ('42', "'O''Brien'")
    """
    if _NUMBER_RE.match(value) or value in _BOOLEAN_LITERALS:
        return value
    return quote_string(value)


# ============================================================================
# FROM clause ordering
# ============================================================================


def ordered_from_items(query: ParsedQuery) -> List[Tuple[ParsedTable, Optional[ParsedJoin]]]:
    """
    Order tables for the FROM clause.

    The first table leads. Every other table follows once the source of its
    join has been emitted; tables without a join are paired with None and
    become CROSS JOINs. If join sources never resolve (a cycle, or a source
    missing from the model) the remaining tables keep list order.

    Returns:
        List of (table, join targeting it or None)
    """
    if not query.tables:
        return []

    first = query.tables[0]
    join_by_target: Dict[str, ParsedJoin] = {}
    for join in query.joins:
        if join.target_table != first.name and join.target_table not in join_by_target:
            join_by_target[join.target_table] = join

    ordered: List[Tuple[ParsedTable, Optional[ParsedJoin]]] = [(first, None)]
    emitted: Set[str] = {first.name}
    pending = list(query.tables[1:])

    while pending:
        chosen = None
        for table in pending:
            join = join_by_target.get(table.name)
            if join is None or join.source_table in emitted:
                chosen = table
                break
        if chosen is None:
            chosen = pending[0]
        pending.remove(chosen)
        ordered.append((chosen, join_by_target.get(chosen.name)))
        emitted.add(chosen.name)

    return ordered


# ============================================================================
# Generator
# ============================================================================


class SQLGenerator:
    """
    Render one ParsedQuery as SQL text.

    The schema catalog is optional; with it, a table whose selection is its
    full column list collapses to ``t.*``.
    """

    def __init__(self, query: ParsedQuery, schema: Optional[SchemaCatalog] = None):
        self.query = query
        self.schema = schema
        self._refs: Dict[str, str] = {
            table.name: quote_identifier(table.alias) if table.alias else quote_table_name(table.name)
            for table in query.tables
        }

    def generate(self) -> str:
        if self.query.is_empty():
            return ""

        lines = ["SELECT " + ", ".join(self._select_list())]
        lines.extend(self._from_lines())

        if self.query.filters:
            lines.extend(self._condition_lines("WHERE", self.query.filters, self._render_filter))
        if self.query.group_by:
            lines.append(
                "GROUP BY " + ", ".join(self._column(g.column) for g in self.query.group_by)
            )
        if self.query.having:
            lines.extend(self._condition_lines("HAVING", self.query.having, self._render_having))
        if self.query.order_by:
            lines.append(
                "ORDER BY "
                + ", ".join(
                    f"{self._column(o.column)} {o.direction.value}" for o in self.query.order_by
                )
            )
        if self.query.limit is not None:
            lines.append(f"LIMIT {self.query.limit}")

        return "\n".join(lines)

    # ------------------------------------------------------------------

    def _column(self, column_ref: str) -> str:
        table, column = split_column_ref(column_ref)
        if not table:
            return quote_identifier(column)
        ref = self._refs.get(table, quote_table_name(table))
        return f"{ref}.{quote_identifier(column)}"

    def _selects_whole_table(self, table: ParsedTable, aggregated: Set[Tuple[str, str]]) -> bool:
        if self.schema is None or not table.selected_columns:
            return False
        schema_table = self.schema.get_table(table.name)
        if schema_table is None or not schema_table.columns:
            return False
        if any(t == table.name for t, _ in aggregated):
            return False
        return list(table.selected_columns) == schema_table.column_names

    def _select_list(self) -> List[str]:
        aggregates_by_column: Dict[Tuple[str, str], List[ColumnAggregate]] = {}
        for aggregate in self.query.column_aggregates:
            aggregates_by_column.setdefault((aggregate.table, aggregate.column), []).append(
                aggregate
            )

        items: List[str] = []
        rendered: Set[Tuple[str, str]] = set()
        for table in self.query.tables:
            if self._selects_whole_table(table, set(aggregates_by_column)):
                items.append(f"{self._refs[table.name]}.*")
                continue
            for column in table.selected_columns:
                key = (table.name, column)
                if key in aggregates_by_column:
                    items.extend(self._render_aggregate(a) for a in aggregates_by_column[key])
                    rendered.add(key)
                else:
                    items.append(self._column(f"{table.name}.{column}"))

        for aggregate in self.query.column_aggregates:
            if (aggregate.table, aggregate.column) not in rendered:
                items.append(self._render_aggregate(aggregate))

        for aggregate in self.query.select_aggregates:
            item = f"{aggregate.function.value}({aggregate.expression})"
            if aggregate.alias:
                item += f" AS {quote_identifier(aggregate.alias)}"
            items.append(item)

        if not items:
            items.append(f"{self._refs[self.query.tables[0].name]}.*")
        return items

    def _render_aggregate(self, aggregate: ColumnAggregate) -> str:
        item = f"{aggregate.function.value}({self._column(aggregate.column_ref)})"
        if aggregate.alias:
            item += f" AS {quote_identifier(aggregate.alias)}"
        return item

    def _table_clause(self, table: ParsedTable) -> str:
        clause = quote_table_name(table.name)
        if table.alias:
            clause += f" AS {quote_identifier(table.alias)}"
        return clause

    def _from_lines(self) -> List[str]:
        lines = []
        for table, join in ordered_from_items(self.query):
            if not lines:
                lines.append(f"FROM {self._table_clause(table)}")
            elif join is None:
                lines.append(f"{INDENT}CROSS JOIN {self._table_clause(table)}")
            else:
                source = self._column(f"{join.source_table}.{join.source_column}")
                target = self._column(f"{join.target_table}.{join.target_column}")
                lines.append(
                    f"{INDENT}{join.join_type.value} JOIN {self._table_clause(table)} "
                    f"ON {source} = {target}"
                )
        return lines

    def _condition_lines(self, keyword: str, items, render) -> List[str]:
        lines = []
        for index, item in enumerate(items):
            if index == 0:
                lines.append(f"{keyword} {render(item)}")
            else:
                lines.append(f"{INDENT}{item.connector.value} {render(item)}")
        return lines

    def _render_filter(self, item: ParsedFilter) -> str:
        column = self._column(item.column)
        operator = item.operator
        if not operator.takes_value:
            return f"{column} {operator.value}"
        if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            return f"{column} {operator.value} ({item.value})"
        if operator == FilterOperator.BETWEEN:
            return f"{column} BETWEEN {item.value}"
        if operator in (FilterOperator.LIKE, FilterOperator.NOT_LIKE):
            return f"{column} {operator.value} {quote_string(item.value)}"
        return f"{column} {operator.value} {format_literal(item.value)}"

    def _render_having(self, item: ParsedHaving) -> str:
        argument = self._column(item.column) if item.column else "*"
        return (
            f"{item.aggregate_function.value}({argument}) "
            f"{item.operator.value} {format_literal(item.value)}"
        )


def generate_sql(query: Optional[ParsedQuery], schema=None) -> str:
    """
    Generate formatted SQL for a query model.

    Args:
        query: The model to render; None or an empty model yields ""
        schema: Optional schema catalog (SchemaCatalog or table dicts)

    Returns:
        Deterministic SQL text
    """
    if query is None:
        return ""
    return SQLGenerator(query, SchemaCatalog.coerce(schema)).generate()


__all__ = [
    "SQLGenerator",
    "generate_sql",
    "ordered_from_items",
    "format_literal",
    "quote_identifier",
    "quote_table_name",
]
