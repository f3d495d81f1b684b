"""SQL text utilities: fingerprinting and privacy redaction."""

from sqlexplain.sql.fingerprint import fingerprint, normalize
from sqlexplain.sql.sanitize import SanitizedSQL, sanitize_sql

__all__ = [
    "fingerprint",
    "normalize",
    "sanitize_sql",
    "SanitizedSQL",
]
