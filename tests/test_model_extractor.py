"""
Tests for parsing SQL into the visual query model.

Covers table/column resolution against the schema catalog, aggregates,
joins, WHERE/HAVING flattening, clause extraction and diagnostics.
"""

from querycanvas import (
    AggregateFunction,
    ColumnAggregate,
    Connector,
    FilterOperator,
    JoinType,
    ParsedJoin,
    ParsedQuery,
    ParsedTable,
    SelectAggregate,
    SortDirection,
    get_parse_error,
    parse_query,
    parse_query_with_diagnostics,
)

# ============================================================================
# Part 1: Empty input and diagnostics
# ============================================================================


class TestParseOutcomes:
    """Test the success/failure contract of parse_query"""

    def test_empty_input_gives_empty_model(self, catalog):
        assert parse_query("", schema=catalog) == ParsedQuery()
        assert parse_query("   \n", schema=catalog) == ParsedQuery()

    def test_comment_only_input_gives_empty_model(self, catalog):
        result = parse_query("-- nothing yet", schema=catalog)

        assert result is not None
        assert result.is_empty()

    def test_unparsable_input_gives_none_with_diagnostic(self, catalog):
        assert parse_query("not sql", schema=catalog) is None

        error = get_parse_error("not sql")
        assert error
        assert "\n" not in error

    def test_non_select_is_reported(self, catalog):
        result = parse_query_with_diagnostics("DELETE FROM orders", schema=catalog)

        assert result.query is None
        assert not result.ok
        assert "DELETE" in result.error

    def test_valid_select_has_no_error(self):
        assert get_parse_error("SELECT id FROM orders") is None
        assert get_parse_error("") is None

    def test_only_first_statement_is_modeled(self, catalog):
        query = parse_query("SELECT id FROM orders; SELECT id FROM customers", schema=catalog)

        assert query.table_names() == ["orders"]

    def test_broken_later_statement_does_not_affect_first(self, catalog):
        sql = "SELECT id FROM orders; SELEC garbage (("

        query = parse_query(sql, schema=catalog)

        assert query.table_names() == ["orders"]
        assert get_parse_error(sql) is None


# ============================================================================
# Part 2: Tables and columns
# ============================================================================


class TestTablesAndColumns:
    """Test FROM resolution and the select list"""

    def test_aliased_columns(self, catalog):
        query = parse_query("SELECT o.id, o.status FROM orders o", schema=catalog)

        assert query.tables == (
            ParsedTable(name="orders", alias="o", selected_columns=("id", "status")),
        )

    def test_star_expands_catalog_columns(self, catalog):
        query = parse_query("SELECT * FROM orders", schema=catalog)

        assert query.tables[0].selected_columns == (
            "id",
            "customer_id",
            "status",
            "price",
            "created_at",
        )

    def test_qualified_star_expands_one_table(self, catalog):
        sql = "SELECT c.* FROM orders o JOIN customers c ON o.customer_id = c.id"

        query = parse_query(sql, schema=catalog)

        assert query.get_table("orders").selected_columns == ()
        assert query.get_table("customers").selected_columns == ("id", "name", "email")

    def test_unknown_table_is_skipped(self, catalog):
        result = parse_query_with_diagnostics("SELECT * FROM audit_log", schema=catalog)

        assert result.query.is_empty()
        assert result.notes.skipped_tables == ["audit_log"]

    def test_without_catalog_every_table_is_accepted(self):
        query = parse_query("SELECT a.x FROM anything a")

        assert query.tables == (ParsedTable(name="anything", alias="a", selected_columns=("x",)),)

    def test_unqualified_column_resolves_to_owning_table(self, catalog):
        sql = "SELECT name FROM orders o JOIN customers c ON o.customer_id = c.id"

        query = parse_query(sql, schema=catalog)

        assert query.get_table("orders").selected_columns == ()
        assert query.get_table("customers").selected_columns == ("name",)

    def test_unknown_column_is_dropped(self, catalog):
        query = parse_query("SELECT o.id, o.nope FROM orders o", schema=catalog)

        assert query.tables[0].selected_columns == ("id",)


# ============================================================================
# Part 3: Aggregates and joins
# ============================================================================


class TestAggregates:
    """Test the split between whole-row and column aggregates"""

    def test_count_star_and_column_sum(self, catalog):
        query = parse_query("SELECT COUNT(*), SUM(price) FROM orders", schema=catalog)

        assert query.select_aggregates == (SelectAggregate(function=AggregateFunction.COUNT),)
        assert query.column_aggregates == (
            ColumnAggregate(table="orders", column="price", function=AggregateFunction.SUM),
        )
        # The aggregated column is part of the selection
        assert query.tables[0].selected_columns == ("price",)

    def test_aggregate_alias(self, catalog):
        query = parse_query("SELECT AVG(o.price) AS avg_price FROM orders o", schema=catalog)

        assert query.column_aggregates[0].alias == "avg_price"

    def test_count_distinct_stays_opaque(self, catalog):
        query = parse_query("SELECT COUNT(DISTINCT status) FROM orders", schema=catalog)

        assert query.select_aggregates == (
            SelectAggregate(function=AggregateFunction.COUNT, expression="*"),
        )
        assert query.column_aggregates == ()


class TestJoins:
    """Test single-equality join extraction"""

    def test_left_join(self, catalog):
        sql = "SELECT o.id FROM orders o LEFT JOIN customers c ON o.customer_id = c.id"

        query = parse_query(sql, schema=catalog)

        assert query.joins == (
            ParsedJoin(
                source_table="orders",
                source_column="customer_id",
                target_table="customers",
                target_column="id",
                join_type=JoinType.LEFT,
            ),
        )

    def test_reversed_equality_still_targets_joined_table(self, catalog):
        sql = "SELECT o.id FROM orders o JOIN customers c ON c.id = o.customer_id"

        join = parse_query(sql, schema=catalog).joins[0]

        assert join.source_table == "orders"
        assert join.target_table == "customers"
        assert join.join_type == JoinType.INNER

    def test_compound_condition_drops_edge_keeps_tables(self, catalog):
        sql = (
            "SELECT * FROM orders o JOIN customers c "
            "ON o.customer_id = c.id AND c.name = 'x'"
        )

        result = parse_query_with_diagnostics(sql, schema=catalog)

        assert result.query.joins == ()
        assert result.query.table_names() == ["orders", "customers"]
        assert result.notes.skipped_joins

    def test_cross_join_has_no_edge(self, catalog):
        query = parse_query("SELECT o.id FROM orders o CROSS JOIN products p", schema=catalog)

        assert query.table_names() == ["orders", "products"]
        assert query.joins == ()


# ============================================================================
# Part 4: WHERE / HAVING / GROUP BY / ORDER BY / LIMIT
# ============================================================================


class TestFilters:
    """Test WHERE flattening and operator coverage"""

    def _filters(self, catalog, where):
        query = parse_query(f"SELECT o.id FROM orders o WHERE {where}", schema=catalog)
        return [(f.column, f.operator, f.value, f.connector) for f in query.filters]

    def test_connectors_follow_text_order(self, catalog):
        filters = self._filters(catalog, "o.status = 'open' AND o.price > 10 OR o.price < 5")

        assert filters == [
            ("orders.status", FilterOperator.EQ, "open", Connector.AND),
            ("orders.price", FilterOperator.GT, "10", Connector.AND),
            ("orders.price", FilterOperator.LT, "5", Connector.OR),
        ]

    def test_parenthesized_groups_are_flattened(self, catalog):
        filters = self._filters(catalog, "o.id = 1 AND (o.price > 2 OR o.price < 0)")

        assert [f[3] for f in filters] == [Connector.AND, Connector.AND, Connector.OR]

    def test_not_equal_spellings(self, catalog):
        filters = self._filters(catalog, "o.status <> 'x' AND o.status != 'y'")

        assert [f[1] for f in filters] == [FilterOperator.NEQ, FilterOperator.NEQ]

    def test_in_and_between_values(self, catalog):
        filters = self._filters(
            catalog, "o.status IN ('a', 'b') AND o.price BETWEEN 1 AND 5 AND o.id NOT IN (1, 2)"
        )

        assert filters[0][1:3] == (FilterOperator.IN, "'a', 'b'")
        assert filters[1][1:3] == (FilterOperator.BETWEEN, "1 AND 5")
        assert filters[2][1:3] == (FilterOperator.NOT_IN, "1, 2")

    def test_is_and_like_operators(self, catalog):
        filters = self._filters(
            catalog,
            "o.status IS NULL AND o.created_at IS NOT NULL AND o.status LIKE 'op%' "
            "AND o.status NOT LIKE '%x'",
        )

        assert [f[1] for f in filters] == [
            FilterOperator.IS_NULL,
            FilterOperator.IS_NOT_NULL,
            FilterOperator.LIKE,
            FilterOperator.NOT_LIKE,
        ]
        assert filters[2][2] == "op%"

    def test_negative_number_value(self, catalog):
        assert self._filters(catalog, "o.price > -5")[0][2] == "-5"

    def test_non_literal_comparison_is_skipped(self, catalog):
        result = parse_query_with_diagnostics(
            "SELECT o.id FROM orders o WHERE o.price > o.id AND o.status = 'x'", schema=catalog
        )

        assert [f.column for f in result.query.filters] == ["orders.status"]
        assert result.notes.skipped_conditions


class TestClauses:
    """Test GROUP BY, HAVING, ORDER BY and LIMIT"""

    SQL = (
        "SELECT o.status, COUNT(*) FROM orders o "
        "GROUP BY o.status HAVING COUNT(*) > 1 AND SUM(o.price) >= 100 "
        "ORDER BY o.status DESC, o.id LIMIT 10"
    )

    def test_group_by(self, catalog):
        query = parse_query(self.SQL, schema=catalog)

        assert [g.column for g in query.group_by] == ["orders.status"]

    def test_having(self, catalog):
        having = parse_query(self.SQL, schema=catalog).having

        assert (having[0].aggregate_function, having[0].column, having[0].value) == (
            AggregateFunction.COUNT,
            "",
            "1",
        )
        assert having[1].aggregate_function == AggregateFunction.SUM
        assert having[1].column == "orders.price"
        assert having[1].operator == FilterOperator.GTE

    def test_order_by(self, catalog):
        order_by = parse_query(self.SQL, schema=catalog).order_by

        assert [(o.column, o.direction) for o in order_by] == [
            ("orders.status", SortDirection.DESC),
            ("orders.id", SortDirection.ASC),
        ]

    def test_limit(self, catalog):
        assert parse_query(self.SQL, schema=catalog).limit == 10
        assert parse_query("SELECT id FROM orders", schema=catalog).limit is None
