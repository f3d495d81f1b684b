"""
Privacy redaction for SQL sent to external backends.

String and numeric literals are replaced with numbered placeholders
(``<str_0>``, ``<num_1>``). A value that appears more than once keeps the
same placeholder, so the redacted query still reads coherently.
Everything else, including identifiers and formatting, is left verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlparse import tokens as T

from sqlexplain.sql.fingerprint import is_literal, iter_tokens


@dataclass(frozen=True)
class SanitizedSQL:
    """Result of redacting a statement."""

    sanitized: str
    redacted_count: int = 0


def sanitize_sql(sql: str, *, enabled: bool = True) -> SanitizedSQL:
    """
    Redact literal values from ``sql``.

    Args:
        sql: Statement text.
        enabled: When False the text is returned unchanged.

    Example:
        >>> sanitize_sql("SELECT * FROM t WHERE a = 'x' AND b = 3").sanitized
        "SELECT * FROM t WHERE a = <str_0> AND b = <num_1>"
    """
    if not enabled:
        return SanitizedSQL(sanitized=sql)

    placeholders: dict[str, str] = {}
    out: list[str] = []
    for token in iter_tokens(sql):
        if not is_literal(token):
            out.append(token.value)
            continue
        kind = "str" if token.ttype in T.String.Single else "num"
        key = f"{kind}:{token.value}"
        if key not in placeholders:
            placeholders[key] = f"<{kind}_{len(placeholders)}>"
        out.append(placeholders[key])

    return SanitizedSQL(sanitized="".join(out), redacted_count=len(placeholders))
