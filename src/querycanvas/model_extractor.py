"""
Query model extraction.

Walks a sqlglot SELECT AST into the normalized ParsedQuery used by the
visual builder and the layout engine. Extraction is best-effort: anything
that cannot be represented (unknown tables or columns, multi-condition joins,
non-literal comparisons) is dropped, never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

import sqlglot
from sqlglot import exp

from .models import (
    AggregateFunction,
    ColumnAggregate,
    Connector,
    ExtractionNotes,
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
    ParseResult,
    SchemaCatalog,
    SelectAggregate,
    SortDirection,
)
from .query_parser import DEFAULT_DIALECT, GENERIC_PARSE_ERROR, get_parse_error, parse_statement

logger = logging.getLogger(__name__)

# ============================================================================
# sqlglot expression registries
# ============================================================================

AGGREGATE_EXPRESSIONS: Dict[type, AggregateFunction] = {
    exp.Count: AggregateFunction.COUNT,
    exp.Sum: AggregateFunction.SUM,
    exp.Avg: AggregateFunction.AVG,
    exp.Min: AggregateFunction.MIN,
    exp.Max: AggregateFunction.MAX,
}

COMPARISON_EXPRESSIONS: Dict[type, FilterOperator] = {
    exp.EQ: FilterOperator.EQ,
    exp.NEQ: FilterOperator.NEQ,
    exp.GT: FilterOperator.GT,
    exp.LT: FilterOperator.LT,
    exp.GTE: FilterOperator.GTE,
    exp.LTE: FilterOperator.LTE,
}

JOIN_SIDES: Dict[str, JoinType] = {
    "LEFT": JoinType.LEFT,
    "RIGHT": JoinType.RIGHT,
    "FULL": JoinType.FULL,
}

SchemaInput = Union[SchemaCatalog, Sequence, None]


def _unwrap_paren(node: exp.Expression) -> exp.Expression:
    while isinstance(node, exp.Paren):
        node = node.this
    return node


def literal_value(node: Optional[exp.Expression]) -> Optional[str]:
    """
    Raw value of a literal right-hand side, or None if it is not a literal.

    Strings come back unquoted, numbers as written, booleans as TRUE/FALSE.
    """
    if node is None:
        return None
    node = _unwrap_paren(node)
    if isinstance(node, exp.Literal):
        return node.this
    if isinstance(node, exp.Neg):
        inner = _unwrap_paren(node.this)
        if isinstance(inner, exp.Literal) and inner.is_number:
            return f"-{inner.this}"
        return None
    if isinstance(node, exp.Boolean):
        return "TRUE" if node.this else "FALSE"
    return None


def literal_sql(node: Optional[exp.Expression]) -> Optional[str]:
    """Literal rendered as SQL text (strings quoted), or None if not a literal"""
    value = literal_value(node)
    if value is None:
        return None
    inner = _unwrap_paren(node)
    if isinstance(inner, exp.Literal) and inner.is_string:
        return "'" + value.replace("'", "''") + "'"
    return value


def format_in_values(node: exp.In) -> Optional[str]:
    """Render the literal list of an IN predicate as ``v1, v2``"""
    if node.args.get("query") is not None or not node.expressions:
        return None
    rendered = [literal_sql(item) for item in node.expressions]
    if any(item is None for item in rendered):
        return None
    return ", ".join(rendered)


def format_between_values(node: exp.Between) -> Optional[str]:
    """Render BETWEEN bounds as ``low AND high``"""
    low = literal_sql(node.args.get("low"))
    high = literal_sql(node.args.get("high"))
    if low is None or high is None:
        return None
    return f"{low} AND {high}"


@dataclass
class _TableScope:
    """Mutable per-table state while walking one SELECT"""

    name: str
    alias: Optional[str]
    selected: List[str] = field(default_factory=list)

    def select(self, column: str):
        if column not in self.selected:
            self.selected.append(column)


class QueryModelExtractor:
    """
    Extract a ParsedQuery from one sqlglot SELECT node.

    Example:
        statement = parse_statement("SELECT o.id FROM orders o")
        query = QueryModelExtractor(statement, schema=catalog).extract()
    """

    def __init__(self, select_node: exp.Select, schema: SchemaInput = None):
        self.select_node = select_node
        self.schema = SchemaCatalog.coerce(schema)
        self.notes = ExtractionNotes()

        self._tables: List[_TableScope] = []
        # alias or table name (lowercased) -> table scope
        self._scope: Dict[str, _TableScope] = {}

        self._joins: List[ParsedJoin] = []
        self._select_aggregates: List[SelectAggregate] = []
        self._column_aggregates: List[ColumnAggregate] = []

    def extract(self) -> ParsedQuery:
        """Walk the SELECT node clause by clause and build the model"""
        # Note: sqlglot >=28.0.0 uses "from_" instead of "from" (Python keyword)
        from_clause = self.select_node.args.get("from_") or self.select_node.args.get("from")
        if from_clause is not None:
            self._register_source(from_clause.this)

        for join in self.select_node.args.get("joins") or []:
            self._extract_join(join)

        for projection in self.select_node.expressions:
            self._extract_projection(projection)

        filters: List[ParsedFilter] = []
        where = self.select_node.args.get("where")
        if where is not None:
            self._flatten_conditions(where.this, Connector.AND, self._filter_visitor(filters))

        having: List[ParsedHaving] = []
        having_clause = self.select_node.args.get("having")
        if having_clause is not None:
            self._flatten_conditions(
                having_clause.this, Connector.AND, self._having_visitor(having)
            )

        return ParsedQuery(
            tables=tuple(
                ParsedTable(name=t.name, alias=t.alias, selected_columns=tuple(t.selected))
                for t in self._tables
            ),
            joins=tuple(self._joins),
            filters=tuple(filters),
            group_by=tuple(self._extract_group_by()),
            having=tuple(having),
            order_by=tuple(self._extract_order_by()),
            limit=self._extract_limit(),
            select_aggregates=tuple(self._select_aggregates),
            column_aggregates=tuple(self._column_aggregates),
        )

    # ------------------------------------------------------------------
    # FROM / JOIN
    # ------------------------------------------------------------------

    def _catalog_table_name(self, table: exp.Table) -> Optional[str]:
        """Name of a FROM table as the catalog knows it, or None if unknown"""
        name = table.name
        if not name:
            return None
        qualified = f"{table.db}.{name}" if table.db else name
        if self.schema is None:
            return qualified
        for candidate in (qualified, name):
            schema_table = self.schema.get_table(candidate)
            if schema_table is not None:
                return schema_table.name
        return None

    def _register_source(self, source: exp.Expression) -> Optional[_TableScope]:
        if not isinstance(source, exp.Table):
            self.notes.skipped_tables.append(source.sql())
            logger.debug("Skipping non-table source: %s", source.sql())
            return None

        name = self._catalog_table_name(source)
        if name is None:
            self.notes.skipped_tables.append(source.sql())
            logger.debug("Skipping table not in schema catalog: %s", source.sql())
            return None

        alias = source.alias or None
        scope = next((t for t in self._tables if t.name == name), None)
        if scope is None:
            scope = _TableScope(name=name, alias=alias)
            self._tables.append(scope)
        self._scope[name.lower()] = scope
        self._scope[source.name.lower()] = scope
        if alias:
            self._scope[alias.lower()] = scope
        return scope

    def _extract_join(self, join: exp.Join):
        target = self._register_source(join.this)
        if target is None:
            return

        condition = join.args.get("on")
        if condition is None:
            # CROSS JOIN, comma join or USING: the table stays, the edge does not
            return

        # One incoming edge per table, never into the leading table
        if target is self._tables[0] or any(j.target_table == target.name for j in self._joins):
            self.notes.skipped_joins.append(condition.sql())
            logger.debug("Dropping second join into table %s", target.name)
            return

        parsed = self._parse_join_condition(_unwrap_paren(condition), target)
        if parsed is None:
            self.notes.skipped_joins.append(condition.sql())
            logger.debug("Dropping join condition that is not a single equality: %s", condition.sql())
            return

        source_table, source_column, target_column = parsed
        join_type = JOIN_SIDES.get((join.side or "").upper(), JoinType.INNER)
        self._joins.append(
            ParsedJoin(
                source_table=source_table,
                source_column=source_column,
                target_table=target.name,
                target_column=target_column,
                join_type=join_type,
            )
        )

    def _parse_join_condition(self, condition: exp.Expression, target: _TableScope):
        """Accept exactly ``a.x = b.y`` where one side is the joined table"""
        if not isinstance(condition, exp.EQ):
            return None
        left, right = condition.left, condition.right
        if not (isinstance(left, exp.Column) and isinstance(right, exp.Column)):
            return None
        if not (left.table and right.table):
            return None

        left_scope = self._scope.get(left.table.lower())
        right_scope = self._scope.get(right.table.lower())
        if left_scope is None or right_scope is None or left_scope is right_scope:
            return None

        if right_scope is target:
            source_scope, source_col, target_col = left_scope, left, right
        elif left_scope is target:
            source_scope, source_col, target_col = right_scope, right, left
        else:
            return None

        source_name = self._known_column(source_scope, source_col.name)
        target_name = self._known_column(target, target_col.name)
        if source_name is None or target_name is None:
            return None
        return source_scope.name, source_name, target_name

    # ------------------------------------------------------------------
    # Column resolution
    # ------------------------------------------------------------------

    def _known_column(self, scope: _TableScope, column_name: str) -> Optional[str]:
        """Catalog spelling of a column on a table, or None if the catalog rules it out"""
        if not column_name:
            return None
        if self.schema is None:
            return column_name
        schema_table = self.schema.get_table(scope.name)
        if schema_table is None or not schema_table.columns:
            return column_name
        return schema_table.find_column(column_name)

    def _resolve_column(self, column: exp.Column) -> Optional[str]:
        """Resolve a column reference to ``table.column``, or None if unresolvable"""
        name = column.name
        if not name:
            return None

        if column.table:
            scope = self._scope.get(column.table.lower())
            if scope is None:
                return None
            known = self._known_column(scope, name)
            return f"{scope.name}.{known}" if known else None

        for scope in self._tables:
            known = self._known_column(scope, name)
            if known:
                return f"{scope.name}.{known}"
        return None

    def _resolve_or_note(self, node: exp.Expression) -> Optional[str]:
        node = _unwrap_paren(node)
        resolved = self._resolve_column(node) if isinstance(node, exp.Column) else None
        if resolved is None:
            self.notes.skipped_conditions.append(node.sql())
            logger.debug("Dropping unresolvable column reference: %s", node.sql())
        return resolved

    # ------------------------------------------------------------------
    # SELECT list
    # ------------------------------------------------------------------

    def _expand_star(self, scope: _TableScope):
        schema_table = self.schema.get_table(scope.name) if self.schema else None
        if schema_table is None or not schema_table.columns:
            logger.debug("Cannot expand %s.*: no catalog columns", scope.name)
            return
        for column in schema_table.column_names:
            scope.select(column)

    def _extract_projection(self, projection: exp.Expression):
        alias = projection.alias if isinstance(projection, exp.Alias) else None
        expression = projection.this if isinstance(projection, exp.Alias) else projection

        if isinstance(expression, exp.Star):
            for scope in self._tables:
                self._expand_star(scope)
            return

        if isinstance(expression, exp.Column) and isinstance(expression.this, exp.Star):
            scope = self._scope.get(expression.table.lower()) if expression.table else None
            if scope is not None:
                self._expand_star(scope)
            return

        if isinstance(expression, exp.Column):
            resolved = self._resolve_column(expression)
            if resolved is None:
                logger.debug("Dropping unresolvable projection: %s", expression.sql())
                return
            table, _, column = resolved.rpartition(".")
            self._scope[table.lower()].select(column)
            return

        function = AGGREGATE_EXPRESSIONS.get(type(expression))
        if function is None:
            logger.debug("Projection is not modeled: %s", expression.sql())
            return
        self._extract_aggregate(expression, function, alias or None)

    def _extract_aggregate(
        self, node: exp.Expression, function: AggregateFunction, alias: Optional[str]
    ):
        argument = node.this
        if isinstance(argument, exp.Column) and not isinstance(argument.this, exp.Star):
            resolved = self._resolve_column(argument)
            if resolved is None:
                logger.debug("Dropping aggregate over unknown column: %s", node.sql())
                return
            table, _, column = resolved.rpartition(".")
            self._column_aggregates.append(
                ColumnAggregate(table=table, column=column, function=function, alias=alias)
            )
            # The aggregated column is implicitly part of the selection
            self._scope[table.lower()].select(column)
            return

        # COUNT(*), COUNT(DISTINCT ...) and complex arguments stay opaque
        self._select_aggregates.append(
            SelectAggregate(function=function, expression="*", alias=alias)
        )

    # ------------------------------------------------------------------
    # WHERE / HAVING
    # ------------------------------------------------------------------

    def _flatten_conditions(
        self,
        node: exp.Expression,
        connector: Connector,
        visit: Callable[[exp.Expression, Connector], None],
    ):
        """
        Flatten an AND/OR tree into visits in textual order.

        Each leaf receives the operator that joins it to the previous leaf;
        parenthesized groups are flattened too.
        """
        node = _unwrap_paren(node)
        if isinstance(node, exp.And):
            self._flatten_conditions(node.left, connector, visit)
            self._flatten_conditions(node.right, Connector.AND, visit)
        elif isinstance(node, exp.Or):
            self._flatten_conditions(node.left, connector, visit)
            self._flatten_conditions(node.right, Connector.OR, visit)
        else:
            visit(node, connector)

    def _filter_visitor(self, filters: List[ParsedFilter]):
        def visit(node: exp.Expression, connector: Connector):
            parsed = self._parse_filter(node, connector)
            if parsed is None:
                self.notes.skipped_conditions.append(node.sql())
                logger.debug("Skipping WHERE condition: %s", node.sql())
            else:
                filters.append(parsed)

        return visit

    def _parse_filter(self, node: exp.Expression, connector: Connector) -> Optional[ParsedFilter]:
        negated = isinstance(node, exp.Not)
        if negated:
            node = _unwrap_paren(node.this)

        operator: Optional[FilterOperator] = None
        value: Optional[str] = None

        if isinstance(node, exp.Is):
            target = _unwrap_paren(node.expression)
            if isinstance(target, exp.Null):
                operator = FilterOperator.IS_NOT_NULL if negated else FilterOperator.IS_NULL
            elif isinstance(target, exp.Boolean):
                if target.this:
                    operator = FilterOperator.IS_NOT_TRUE if negated else FilterOperator.IS_TRUE
                else:
                    operator = FilterOperator.IS_NOT_FALSE if negated else FilterOperator.IS_FALSE
            value = ""
        elif isinstance(node, exp.In):
            operator = FilterOperator.NOT_IN if negated else FilterOperator.IN
            value = format_in_values(node)
        elif isinstance(node, exp.Like):
            operator = FilterOperator.NOT_LIKE if negated else FilterOperator.LIKE
            value = literal_value(node.expression)
        elif isinstance(node, exp.Between) and not negated:
            operator = FilterOperator.BETWEEN
            value = format_between_values(node)
        elif type(node) in COMPARISON_EXPRESSIONS and not negated:
            operator = COMPARISON_EXPRESSIONS[type(node)]
            value = literal_value(node.expression)

        if operator is None or value is None:
            return None

        column = self._resolve_or_note(node.this)
        if column is None:
            return None
        return ParsedFilter(column=column, operator=operator, value=value, connector=connector)

    def _having_visitor(self, having: List[ParsedHaving]):
        def visit(node: exp.Expression, connector: Connector):
            parsed = self._parse_having(node, connector)
            if parsed is None:
                self.notes.skipped_conditions.append(node.sql())
                logger.debug("Skipping HAVING condition: %s", node.sql())
            else:
                having.append(parsed)

        return visit

    def _parse_having(self, node: exp.Expression, connector: Connector) -> Optional[ParsedHaving]:
        operator = COMPARISON_EXPRESSIONS.get(type(node))
        if operator is None or operator not in HAVING_OPERATORS:
            return None

        aggregate = _unwrap_paren(node.left)
        function = AGGREGATE_EXPRESSIONS.get(type(aggregate))
        value = literal_value(node.right)
        if function is None or value is None:
            return None

        argument = aggregate.this
        if isinstance(argument, exp.Star):
            column = ""
        elif isinstance(argument, exp.Column):
            column = self._resolve_or_note(argument)
            if column is None:
                return None
        else:
            return None

        return ParsedHaving(
            aggregate_function=function,
            column=column,
            operator=operator,
            value=value,
            connector=connector,
        )

    # ------------------------------------------------------------------
    # GROUP BY / ORDER BY / LIMIT
    # ------------------------------------------------------------------

    def _extract_group_by(self) -> List[ParsedGroupBy]:
        group = self.select_node.args.get("group")
        if group is None:
            return []
        result = []
        for expression in group.expressions:
            column = self._resolve_or_note(expression)
            if column is not None:
                result.append(ParsedGroupBy(column=column))
        return result

    def _extract_order_by(self) -> List[ParsedOrderBy]:
        order = self.select_node.args.get("order")
        if order is None:
            return []
        result = []
        for ordered in order.expressions:
            expression = ordered.this if isinstance(ordered, exp.Ordered) else ordered
            column = self._resolve_or_note(expression)
            if column is None:
                continue
            desc = isinstance(ordered, exp.Ordered) and bool(ordered.args.get("desc"))
            result.append(
                ParsedOrderBy(
                    column=column,
                    direction=SortDirection.DESC if desc else SortDirection.ASC,
                )
            )
        return result

    def _extract_limit(self) -> Optional[int]:
        limit = self.select_node.args.get("limit")
        if limit is None:
            return None
        value = limit.args.get("expression")
        if not isinstance(value, exp.Literal) or value.is_string:
            return None
        try:
            parsed = int(value.this)
        except ValueError:
            return None
        return parsed if parsed >= 0 else None


# ============================================================================
# Public entry points
# ============================================================================


def parse_query_with_diagnostics(
    sql: str,
    schema: SchemaInput = None,
    dialect: str = DEFAULT_DIALECT,
) -> ParseResult:
    """
    Parse SQL into a ParsedQuery, returning a diagnostic on failure.

    Empty input (or only comments) yields an empty model, not a failure.
    Unparsable or non-SELECT input yields ``query=None`` and an error string
    from ``get_parse_error``.

    Args:
        sql: SQL text; only the first statement is modeled
        schema: Schema catalog (SchemaCatalog or list of table dicts). Tables
            absent from it are skipped. None accepts every table.
        dialect: sqlglot dialect name

    Returns:
        ParseResult with the query, or None plus a diagnostic
    """
    try:
        statement = parse_statement(sql, dialect)
    except sqlglot.errors.SqlglotError:
        logger.debug("SQL could not be parsed", exc_info=True)
        return ParseResult(query=None, error=get_parse_error(sql, dialect) or GENERIC_PARSE_ERROR)

    if statement is None:
        return ParseResult(query=ParsedQuery())

    if not isinstance(statement, exp.Select):
        return ParseResult(query=None, error=get_parse_error(sql, dialect) or GENERIC_PARSE_ERROR)

    extractor = QueryModelExtractor(statement, schema=schema)
    query = extractor.extract()
    return ParseResult(query=query, notes=extractor.notes)


def parse_query(
    sql: str,
    schema: SchemaInput = None,
    dialect: str = DEFAULT_DIALECT,
) -> Optional[ParsedQuery]:
    """
    Parse SQL into a ParsedQuery, or None if it cannot be modeled.

    Use ``get_parse_error`` (or ``parse_query_with_diagnostics``) for the
    companion diagnostic.

    Example:
        >>> query = parse_query("SELECT COUNT(*), SUM(price) FROM orders", schema=catalog)
        >>> query.select_aggregates[0].function
        <AggregateFunction.COUNT: 'COUNT'>
    """
    return parse_query_with_diagnostics(sql, schema=schema, dialect=dialect).query


__all__ = [
    "AGGREGATE_EXPRESSIONS",
    "COMPARISON_EXPRESSIONS",
    "QueryModelExtractor",
    "literal_value",
    "literal_sql",
    "format_in_values",
    "format_between_values",
    "parse_query",
    "parse_query_with_diagnostics",
]
