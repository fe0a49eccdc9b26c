"""
Tests for SQL generation from the parsed model.
"""

from querycanvas import (
    AggregateFunction,
    ColumnAggregate,
    Connector,
    FilterOperator,
    JoinType,
    ParsedFilter,
    ParsedJoin,
    ParsedQuery,
    ParsedTable,
    generate_sql,
    parse_query,
)
from querycanvas.sql_generator import format_literal, quote_identifier


class TestLiterals:
    """Test literal and identifier formatting"""

    def test_numbers_and_booleans_are_bare(self):
        assert format_literal("42") == "42"
        assert format_literal("-3.5") == "-3.5"
        assert format_literal("TRUE") == "TRUE"

    def test_strings_are_quoted_and_escaped(self):
        assert format_literal("open") == "'open'"
        assert format_literal("O'Brien") == "'O''Brien'"

    def test_non_ascii_digits_are_quoted(self):
        assert format_literal("١٢") == "'١٢'"
        assert format_literal("１") == "'１'"

    def test_reserved_identifiers_are_quoted(self):
        assert quote_identifier("orders") == "orders"
        assert quote_identifier("user") == '"user"'
        assert quote_identifier("my col") == '"my col"'


class TestGenerateSql:
    """Test the deterministic output shape"""

    def test_empty_model(self):
        assert generate_sql(ParsedQuery()) == ""
        assert generate_sql(None) == ""

    def test_full_shape(self):
        query = ParsedQuery(
            tables=(
                ParsedTable(name="orders", alias="o", selected_columns=("id",)),
                ParsedTable(name="customers", alias="c", selected_columns=("name",)),
            ),
            joins=(
                ParsedJoin(
                    source_table="orders",
                    source_column="customer_id",
                    target_table="customers",
                    target_column="id",
                    join_type=JoinType.LEFT,
                ),
            ),
            filters=(
                ParsedFilter(column="orders.status", operator=FilterOperator.EQ, value="open"),
                ParsedFilter(
                    column="orders.price",
                    operator=FilterOperator.GT,
                    value="10",
                    connector=Connector.OR,
                ),
            ),
            limit=5,
        )

        assert generate_sql(query) == (
            "SELECT o.id, c.name\n"
            "FROM orders AS o\n"
            "  LEFT JOIN customers AS c ON o.customer_id = c.id\n"
            "WHERE o.status = 'open'\n"
            "  OR o.price > 10\n"
            "LIMIT 5"
        )

    def test_unjoined_table_is_cross_joined_and_joined_table_follows_source(self):
        query = ParsedQuery(
            tables=(
                ParsedTable(name="orders", selected_columns=("id",)),
                ParsedTable(name="customers"),
                ParsedTable(name="products"),
            ),
            joins=(
                ParsedJoin(
                    source_table="products",
                    source_column="id",
                    target_table="customers",
                    target_column="id",
                ),
            ),
        )

        lines = generate_sql(query).splitlines()

        assert lines[1:] == [
            "FROM orders",
            "  CROSS JOIN products",
            "  INNER JOIN customers ON products.id = customers.id",
        ]

    def test_operator_rendering(self):
        filters = (
            ParsedFilter(column="t.a", operator=FilterOperator.IS_NOT_NULL),
            ParsedFilter(column="t.b", operator=FilterOperator.IN, value="1, 2"),
            ParsedFilter(column="t.c", operator=FilterOperator.BETWEEN, value="1 AND 5"),
            ParsedFilter(column="t.d", operator=FilterOperator.LIKE, value="12%"),
        )
        query = ParsedQuery(tables=(ParsedTable(name="t", selected_columns=("a",)),), filters=filters)

        lines = generate_sql(query).splitlines()

        assert lines[2:] == [
            "WHERE t.a IS NOT NULL",
            "  AND t.b IN (1, 2)",
            "  AND t.c BETWEEN 1 AND 5",
            "  AND t.d LIKE '12%'",
        ]

    def test_full_selection_collapses_to_star(self, catalog):
        query = ParsedQuery(
            tables=(
                ParsedTable(
                    name="customers", alias="c", selected_columns=("id", "name", "email")
                ),
            )
        )

        assert generate_sql(query, catalog).splitlines()[0] == "SELECT c.*"
        assert generate_sql(query).splitlines()[0] == "SELECT c.id, c.name, c.email"

    def test_aggregated_column_renders_as_aggregate(self):
        query = ParsedQuery(
            tables=(ParsedTable(name="orders", selected_columns=("status", "price")),),
            column_aggregates=(
                ColumnAggregate(
                    table="orders", column="price", function=AggregateFunction.SUM, alias="total"
                ),
            ),
        )

        assert generate_sql(query).splitlines()[0] == (
            "SELECT orders.status, SUM(orders.price) AS total"
        )

    def test_empty_selection_renders_first_table_star(self):
        query = ParsedQuery(tables=(ParsedTable(name="orders"),))

        assert generate_sql(query) == "SELECT orders.*\nFROM orders"


class TestIdempotence:
    """Generating from a parse of generated SQL changes nothing"""

    SQLS = [
        "SELECT o.id, c.name FROM orders o LEFT JOIN customers c ON o.customer_id = c.id "
        "WHERE o.status IN ('a', 'b') OR o.price BETWEEN 1 AND 9 ORDER BY o.id DESC LIMIT 3",
        "SELECT status, COUNT(*), SUM(price) FROM orders GROUP BY status HAVING COUNT(*) > 2",
        "SELECT * FROM orders CROSS JOIN products WHERE orders.status LIKE 'o''k%'",
    ]

    def test_generate_parse_generate(self, catalog):
        for sql in self.SQLS:
            first = generate_sql(parse_query(sql, schema=catalog), catalog)
            second = generate_sql(parse_query(first, schema=catalog), catalog)

            assert first == second, sql
