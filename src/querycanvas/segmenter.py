"""
Statement segmentation for multi-statement SQL buffers.

Splits editor text into statement spans so the host can run only the
statement under the cursor. The scanner is quote- and comment-aware:
a semicolon inside any of these is not a separator:

- Single-quoted strings ('...', with '' escapes)
- Double-quoted identifiers ("...")
- Line comments (-- ...)
- Block comments (/* ... */)
- Dollar-quoted blocks ($$...$$ or $tag$...$tag$)

Usage:
    from querycanvas.segmenter import split_statements, statement_at

    spans = split_statements("SELECT 1; SELECT 2;")
    current = statement_at(text, cursor_offset)
"""

import logging
import re
from typing import List, Optional, Tuple

import sqlglot
from sqlglot import exp

from .models import StatementKind, StatementSpan

logger = logging.getLogger(__name__)

_DOLLAR_TAG_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_LEADING_KEYWORD_RE = re.compile(r"^\s*([A-Za-z]+)")

# Scanner states
_NORMAL = "normal"
_SINGLE_QUOTE = "single_quote"
_DOUBLE_QUOTE = "double_quote"
_LINE_COMMENT = "line_comment"
_BLOCK_COMMENT = "block_comment"
_DOLLAR_QUOTE = "dollar_quote"


def _scan_segments(text: str) -> List[Tuple[int, int]]:
    """
    Return raw (start, end) bounds of every segment, separators excluded.

    Unterminated quotes or comments simply run to the end of the buffer, so
    the tail ends up in the last segment.
    """
    segments: List[Tuple[int, int]] = []
    state = _NORMAL
    dollar_tag = ""
    segment_start = 0
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        next_char = text[i + 1] if i + 1 < length else ""

        if state == _NORMAL:
            if char == "'":
                state = _SINGLE_QUOTE
            elif char == '"':
                state = _DOUBLE_QUOTE
            elif char == "-" and next_char == "-":
                state = _LINE_COMMENT
                i += 1
            elif char == "/" and next_char == "*":
                state = _BLOCK_COMMENT
                i += 1
            elif char == "$":
                match = _DOLLAR_TAG_RE.match(text, i)
                if match:
                    dollar_tag = match.group(0)
                    state = _DOLLAR_QUOTE
                    i += len(dollar_tag) - 1
            elif char == ";":
                segments.append((segment_start, i))
                segment_start = i + 1

        elif state == _SINGLE_QUOTE:
            if char == "'" and next_char == "'":
                i += 1  # escaped quote
            elif char == "'":
                state = _NORMAL

        elif state == _DOUBLE_QUOTE:
            if char == '"' and next_char == '"':
                i += 1
            elif char == '"':
                state = _NORMAL

        elif state == _LINE_COMMENT:
            if char == "\n":
                state = _NORMAL

        elif state == _BLOCK_COMMENT:
            if char == "*" and next_char == "/":
                state = _NORMAL
                i += 1

        elif state == _DOLLAR_QUOTE:
            if text.startswith(dollar_tag, i):
                i += len(dollar_tag) - 1
                state = _NORMAL
                dollar_tag = ""

        i += 1

    segments.append((segment_start, length))
    return segments


def _is_only_comments(sql: str) -> bool:
    """Check if a SQL fragment holds nothing but comments and whitespace"""
    i = 0
    length = len(sql)
    while i < length:
        if sql[i].isspace():
            i += 1
        elif sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = length if newline == -1 else newline + 1
        elif sql.startswith("/*", i):
            close = sql.find("*/", i + 2)
            i = length if close == -1 else close + 2
        else:
            return False
    return True


def _trim_bounds(text: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def split_statements(text: str) -> List[StatementSpan]:
    """
    Split a buffer of zero or more SQL statements into spans.

    Empty, whitespace-only and comment-only segments are dropped; order is
    preserved. Each span's offsets cover the trimmed statement text, so
    ``text[span.start_offset:span.end_offset] == span.sql``.

    Args:
        text: The editor buffer

    Returns:
        List of StatementSpan in buffer order

    Example:
        >>> [s.sql for s in split_statements("SELECT 1; SELECT 2;")]
        ['SELECT 1', 'SELECT 2']
    """
    if not text or not text.strip():
        return []

    try:
        raw_segments = _scan_segments(text)
    except Exception:
        logger.warning("Statement scanner failed; treating buffer as one statement", exc_info=True)
        start, end = _trim_bounds(text, 0, len(text))
        return [StatementSpan(start, end, text[start:end])]

    spans: List[StatementSpan] = []
    for raw_start, raw_end in raw_segments:
        start, end = _trim_bounds(text, raw_start, raw_end)
        if start == end:
            continue
        sql = text[start:end]
        if _is_only_comments(sql):
            continue
        spans.append(StatementSpan(start, end, sql))
    return spans


def statement_at(text: str, offset: int) -> Optional[StatementSpan]:
    """
    Resolve the statement covering a cursor offset.

    An offset inside a statement returns that statement. An offset landing on
    a separator, or in the gap between two statements, resolves to the
    following statement. Past the last statement the last one is returned.

    Args:
        text: The editor buffer
        offset: Cursor position as a code-unit index into ``text``

    Returns:
        The matching StatementSpan, or None if the buffer has no statements
    """
    spans = split_statements(text)
    if not spans:
        return None

    for span in spans:
        if span.contains(offset) or offset < span.start_offset:
            return span
    return spans[-1]


# ============================================================================
# Statement classification
# ============================================================================

_KEYWORD_KINDS = {
    "SELECT": StatementKind.SELECT,
    "WITH": StatementKind.SELECT,
    "VALUES": StatementKind.SELECT,
    "INSERT": StatementKind.INSERT,
    "UPDATE": StatementKind.UPDATE,
    "DELETE": StatementKind.DELETE,
}


def _strip_leading_comments(sql: str) -> str:
    stripped = sql.lstrip()
    while stripped.startswith("--") or stripped.startswith("/*"):
        if stripped.startswith("--"):
            newline = stripped.find("\n")
            stripped = "" if newline == -1 else stripped[newline + 1 :]
        else:
            close = stripped.find("*/")
            stripped = "" if close == -1 else stripped[close + 2 :]
        stripped = stripped.lstrip()
    return stripped


def classify_statement(sql: str, dialect: str = "postgres") -> StatementKind:
    """
    Determine what kind of statement a span holds.

    Uses sqlglot when the statement parses, and falls back to the leading
    keyword otherwise so half-typed statements still classify.
    """
    try:
        parsed = sqlglot.parse_one(sql, read=dialect)
    except sqlglot.errors.SqlglotError:
        parsed = None

    if parsed is not None:
        if isinstance(parsed, (exp.Select, exp.Union, exp.Intersect, exp.Except)):
            return StatementKind.SELECT
        if isinstance(parsed, exp.Insert):
            return StatementKind.INSERT
        if isinstance(parsed, exp.Update):
            return StatementKind.UPDATE
        if isinstance(parsed, exp.Delete):
            return StatementKind.DELETE

    match = _LEADING_KEYWORD_RE.match(_strip_leading_comments(sql))
    if not match:
        return StatementKind.OTHER
    return _KEYWORD_KINDS.get(match.group(1).upper(), StatementKind.OTHER)


def is_write_statement(sql: str, dialect: str = "postgres") -> bool:
    """Check if a statement modifies data (INSERT, UPDATE, DELETE)"""
    return classify_statement(sql, dialect) in (
        StatementKind.INSERT,
        StatementKind.UPDATE,
        StatementKind.DELETE,
    )


__all__ = [
    "split_statements",
    "statement_at",
    "classify_statement",
    "is_write_statement",
]
