"""
SQLAlchemy ORM models for the durable explanation store.

One row per query fingerprint. Rows outlive the Redis/in-memory cache
(7 days vs 1 hour) and serve as an audit trail of what was explained.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sqlexplain.storage.database import Base

RECORD_TTL_SECONDS = 7 * 24 * 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _expiry() -> datetime:
    return utcnow() + timedelta(seconds=RECORD_TTL_SECONDS)


def _new_uuid() -> str:
    return uuid.uuid4().hex


class ExplanationRecord(Base):
    """A persisted explanation for one query fingerprint."""

    __tablename__ = "explanation_cache"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_uuid)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    query_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    query_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    sql: Mapped[str] = mapped_column(Text, nullable=False)
    sanitized_sql: Mapped[str | None] = mapped_column(Text, nullable=True)
    dialect: Mapped[str] = mapped_column(String(20), nullable=False)
    explanation: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_expiry, nullable=False, index=True
    )
    ttl: Mapped[int] = mapped_column(Integer, default=RECORD_TTL_SECONDS, nullable=False)
