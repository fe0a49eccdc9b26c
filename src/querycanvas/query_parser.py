"""
Structural SQL parsing on top of sqlglot.

Turns one statement into a sqlglot AST, and provides the separate
error-probe path that produces a one-line diagnostic for the host.
"""

from typing import Optional

import sqlglot
from sqlglot import exp

from .segmenter import split_statements

DEFAULT_DIALECT = "postgres"

GENERIC_PARSE_ERROR = "Unable to parse SQL query"


def parse_statement(sql: str, dialect: str = DEFAULT_DIALECT) -> Optional[exp.Expression]:
    """
    Parse the first statement of ``sql`` into a sqlglot expression.

    Args:
        sql: SQL text, possibly holding several statements
        dialect: sqlglot dialect name used for reading

    Returns:
        The first parsed statement, or None if the text holds no statement
        (empty, whitespace or comments only)

    Raises:
        sqlglot.errors.SqlglotError: On tokenizer or syntax errors
    """
    spans = split_statements(sql)
    if not spans:
        return None

    # Only the first statement is handed to sqlglot
    for statement in sqlglot.parse(spans[0].sql, read=dialect):
        if statement is not None:
            return statement
    return None


def _format_parse_error(error: sqlglot.errors.ParseError) -> str:
    """Reduce sqlglot's multi-line, highlighted message to a single line"""
    if error.errors:
        first = error.errors[0]
        description = first.get("description") or GENERIC_PARSE_ERROR
        line = first.get("line")
        col = first.get("col")
        if line is not None and col is not None:
            return f"Syntax error at line {line}, col {col}: {description}"
        return f"Syntax error: {description}"
    return _first_line(str(error))


def _first_line(message: str) -> str:
    for line in message.splitlines():
        line = line.strip()
        if line:
            return line
    return GENERIC_PARSE_ERROR


def get_parse_error(sql: str, dialect: str = DEFAULT_DIALECT) -> Optional[str]:
    """
    Probe ``sql`` and describe why it cannot be modeled.

    Kept separate from the extraction path so callers that only need a
    message do not pay for model extraction.

    Returns:
        None when the first statement is a parsable SELECT (or there is no
        statement at all), otherwise a non-empty one-line diagnostic.

    Example:
        >>> get_parse_error("SELECT * FROM")
        'Syntax error at line 1, col 13: ...'
    """
    try:
        statement = parse_statement(sql, dialect)
    except sqlglot.errors.ParseError as e:
        return _format_parse_error(e)
    except sqlglot.errors.SqlglotError as e:
        return _first_line(str(e))

    if statement is None or isinstance(statement, exp.Select):
        return None

    kind = (statement.key or type(statement).__name__).upper()
    return f"Only SELECT statements can be modeled (found {kind})"


__all__ = [
    "DEFAULT_DIALECT",
    "parse_statement",
    "get_parse_error",
]
