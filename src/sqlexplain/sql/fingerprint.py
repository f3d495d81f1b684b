"""
Query fingerprinting for caching.

A fingerprint is a stable identity for a SQL statement: literals are
replaced by ``?``, whitespace and comments are dropped, keywords are
upper-cased and unquoted identifiers lower-cased. Statements that differ
only in those respects share a hash, so ``WHERE id = 1`` and
``WHERE id = 2`` hit the same cache entry.

Tokenizing is delegated to sqlparse; nothing here understands SQL
grammar beyond keyword positions.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator

import sqlparse
from sqlparse import tokens as T
from sqlparse.sql import Token

from sqlexplain.models import QueryFingerprint

# Keywords after which a table name is expected
_TABLE_KEYWORDS = frozenset({"FROM", "UPDATE", "INTO", "TABLE"})

# Keywords that end a WHERE clause at the same nesting depth
_WHERE_TERMINATORS = frozenset({
    "GROUP BY",
    "ORDER BY",
    "HAVING",
    "LIMIT",
    "OFFSET",
    "UNION",
    "UNION ALL",
    "INTERSECT",
    "EXCEPT",
    "RETURNING",
    "WINDOW",
})

_NO_SPACE_BEFORE = frozenset({",", ")", ".", ";"})
_NO_SPACE_AFTER = frozenset({"(", "."})

_IN_LIST = re.compile(r"\(\s*\?(?:\s*,\s*\?)+\s*\)")
_VALUES_ROWS = re.compile(r"\(\?\)(?:\s*,\s*\(\?\))+")

HASH_LENGTH = 32


def iter_tokens(sql: str) -> Iterator[Token]:
    """Yield the leaf tokens of every statement in ``sql``."""
    for statement in sqlparse.parse(sql):
        yield from statement.flatten()


def is_literal(token: Token) -> bool:
    """True for string and numeric literals (not quoted identifiers)."""
    return token.ttype in T.String.Single or token.ttype in T.Number


def _keyword(token: Token) -> str | None:
    if token.is_keyword:
        return " ".join(token.normalized.split())
    return None


def _identifier(token: Token) -> str | None:
    """Return the bare identifier for a name token, or None."""
    if token.ttype in T.Name and token.ttype not in T.Name.Placeholder:
        return token.value.strip("`").lower()
    if token.ttype in T.String.Symbol:
        return token.value.strip('"')
    return None


def normalize(sql: str) -> str:
    """
    Build the literal-free pattern for a statement.

    Example:
        >>> normalize("select * from Users where id in (1, 2, 3) -- hi")
        'SELECT * FROM users WHERE id IN (?)'
    """
    parts: list[str] = []
    for token in iter_tokens(sql):
        if token.is_whitespace or token.ttype in T.Comment:
            continue
        if is_literal(token) or token.ttype in T.Name.Placeholder:
            parts.append("?")
            continue
        keyword = _keyword(token)
        if keyword is not None:
            parts.append(keyword)
            continue
        identifier = _identifier(token)
        if identifier is not None and token.ttype not in T.String.Symbol:
            parts.append(identifier)
            continue
        parts.append(token.value)

    pattern = _join(parts).rstrip(";").strip()
    pattern = _IN_LIST.sub("(?)", pattern)
    pattern = _VALUES_ROWS.sub("(?)", pattern)
    return pattern


def _join(parts: list[str]) -> str:
    out: list[str] = []
    for part in parts:
        if out and part not in _NO_SPACE_BEFORE and out[-1] not in _NO_SPACE_AFTER:
            out.append(" ")
        out.append(part)
    return "".join(out)


def _analyze_structure(sql: str) -> tuple[list[str], int, int]:
    """
    Walk tokens once to collect tables, join count and WHERE complexity.

    WHERE complexity is the number of predicates: one per WHERE clause plus
    one per AND/OR inside it (the AND of BETWEEN x AND y is not counted).
    """
    tables: list[str] = []
    join_count = 0
    where_complexity = 0

    depth = 0
    expect_table = False
    in_from_list = False
    where_depth: int | None = None
    after_between = False
    qualified: list[str] = []

    def flush_qualified() -> None:
        if qualified:
            name = ".".join(qualified)
            if name not in tables:
                tables.append(name)
            qualified.clear()

    pending_dot = False

    for token in iter_tokens(sql):
        if token.is_whitespace or token.ttype in T.Comment:
            continue

        # Schema-qualified names arrive as Name . Name
        if qualified:
            if token.ttype in T.Punctuation and token.value == ".":
                pending_dot = True
                continue
            identifier = _identifier(token)
            if pending_dot and identifier is not None:
                qualified.append(identifier)
                pending_dot = False
                continue
            flush_qualified()
            pending_dot = False

        if token.ttype in T.Punctuation:
            if token.value == "(":
                depth += 1
                expect_table = False
            elif token.value == ")":
                depth -= 1
                if where_depth is not None and depth < where_depth:
                    where_depth = None
            elif token.value == "," and in_from_list:
                expect_table = True
            elif token.value == ";":
                where_depth = None
                in_from_list = False
            continue

        keyword = _keyword(token)
        if keyword is not None:
            if keyword.endswith("JOIN"):
                join_count += 1
                expect_table = True
                in_from_list = False
            elif keyword in _TABLE_KEYWORDS:
                expect_table = True
                in_from_list = keyword == "FROM"
            elif keyword == "AS":
                pass
            else:
                expect_table = False
                in_from_list = False

            if keyword == "WHERE":
                where_depth = depth
                where_complexity += 1
            elif where_depth is not None:
                if keyword in _WHERE_TERMINATORS and depth <= where_depth:
                    where_depth = None
                elif keyword == "BETWEEN":
                    after_between = True
                elif keyword in ("AND", "OR"):
                    if keyword == "AND" and after_between:
                        after_between = False
                    else:
                        where_complexity += 1
            continue

        identifier = _identifier(token)
        if identifier is not None and expect_table:
            qualified.append(identifier)
            expect_table = False

    flush_qualified()
    return tables, join_count, where_complexity


def fingerprint(sql: str) -> QueryFingerprint:
    """
    Compute the fingerprint of a SQL statement.

    Deterministic and side-effect free: the same text always yields the
    same fingerprint, and literal-only differences yield the same hash.
    """
    pattern = normalize(sql)
    digest = hashlib.sha256(pattern.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    tables, join_count, where_complexity = _analyze_structure(sql)
    return QueryFingerprint(
        hash=digest,
        pattern=pattern,
        tables=tables,
        join_count=join_count,
        where_clause_complexity=where_complexity,
    )
