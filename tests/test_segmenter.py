"""
Tests for statement segmentation and classification.

Covers quote/comment awareness, span offsets, cursor resolution and the
statement kind probe used for selective execution.
"""

from querycanvas import (
    StatementKind,
    classify_statement,
    is_write_statement,
    split_statements,
    statement_at,
)


def _sqls(text):
    return [span.sql for span in split_statements(text)]


class TestSplitStatements:
    """Test splitting buffers into statement spans"""

    def test_two_statements(self):
        spans = split_statements("SELECT 1; SELECT 2;")

        assert [s.sql for s in spans] == ["SELECT 1", "SELECT 2"]
        assert (spans[0].start_offset, spans[0].end_offset) == (0, 8)
        assert (spans[1].start_offset, spans[1].end_offset) == (10, 18)

    def test_semicolon_inside_string(self):
        assert _sqls("SELECT ';'") == ["SELECT ';'"]

    def test_escaped_quote_inside_string(self):
        assert _sqls("SELECT 'it''s; fine'; SELECT 2") == ["SELECT 'it''s; fine'", "SELECT 2"]

    def test_semicolon_inside_double_quoted_identifier(self):
        assert _sqls('SELECT "a;b" FROM t; SELECT 2') == ['SELECT "a;b" FROM t', "SELECT 2"]

    def test_semicolon_inside_comments(self):
        text = "SELECT 1 -- not; a separator\n; SELECT /* ; */ 2"

        assert _sqls(text) == ["SELECT 1 -- not; a separator", "SELECT /* ; */ 2"]

    def test_dollar_quoted_blocks(self):
        assert _sqls("SELECT $$a;b$$; SELECT 2") == ["SELECT $$a;b$$", "SELECT 2"]

        text = "DO $body$ BEGIN PERFORM 1; END $body$; SELECT 3"
        assert _sqls(text) == ["DO $body$ BEGIN PERFORM 1; END $body$", "SELECT 3"]

    def test_empty_and_comment_only_segments_dropped(self):
        assert _sqls(";;  ; SELECT 1; -- trailing note") == ["SELECT 1"]
        assert _sqls("/* only a comment */") == []

    def test_empty_buffer(self):
        assert split_statements("") == []
        assert split_statements("   \n\t") == []

    def test_unterminated_quote_runs_to_end(self):
        assert _sqls("SELECT 'abc; SELECT 2") == ["SELECT 'abc; SELECT 2"]

    def test_offsets_slice_back_to_sql(self):
        text = "  SELECT 1 ;\n\n  SELECT 'x;y'  ;\nUPDATE t SET a = 1  "

        spans = split_statements(text)

        assert len(spans) == 3
        for span in spans:
            assert text[span.start_offset : span.end_offset] == span.sql
            assert span.sql == span.sql.strip()


class TestStatementAt:
    """Test resolving the statement under the cursor"""

    TEXT = "SELECT 1;\nSELECT 2;\nSELECT 3"

    def test_offset_inside_statement(self):
        assert statement_at(self.TEXT, 12).sql == "SELECT 2"

    def test_offset_on_separator_resolves_to_following(self):
        assert statement_at(self.TEXT, 8).sql == "SELECT 2"
        assert statement_at(self.TEXT, 9).sql == "SELECT 2"

    def test_offset_past_end_resolves_to_last(self):
        assert statement_at(self.TEXT, 500).sql == "SELECT 3"

    def test_offset_at_start(self):
        assert statement_at(self.TEXT, 0).sql == "SELECT 1"

    def test_no_statements(self):
        assert statement_at("  -- nothing here", 3) is None


class TestClassifyStatement:
    """Test statement kind detection"""

    def test_select_kinds(self):
        assert classify_statement("SELECT * FROM orders") == StatementKind.SELECT
        assert classify_statement("WITH x AS (SELECT 1) SELECT * FROM x") == StatementKind.SELECT
        assert classify_statement("SELECT 1 UNION SELECT 2") == StatementKind.SELECT

    def test_write_kinds(self):
        assert classify_statement("INSERT INTO orders (id) VALUES (1)") == StatementKind.INSERT
        assert classify_statement("UPDATE orders SET status = 'x'") == StatementKind.UPDATE
        assert classify_statement("DELETE FROM orders WHERE id = 1") == StatementKind.DELETE

    def test_keyword_fallback_for_incomplete_statements(self):
        assert classify_statement("-- draft\nUPDATE orders SET") == StatementKind.UPDATE

    def test_other(self):
        assert classify_statement("CREATE TABLE t (id int)") == StatementKind.OTHER

    def test_is_write_statement(self):
        assert is_write_statement("DELETE FROM orders")
        assert not is_write_statement("SELECT 1")
