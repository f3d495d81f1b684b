"""
Durable explanation store.

Owns an async engine and session factory. The orchestrator writes here
in the background after every computed explanation; a failed write is
its problem to log, so every SQLAlchemy error leaves this module as
PersistenceError.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from sqlexplain.exceptions import PersistenceError
from sqlexplain.storage.database import Base, build_engine
from sqlexplain.storage.models import RECORD_TTL_SECONDS, ExplanationRecord, utcnow

logger = logging.getLogger(__name__)


class ExplanationStore:
    """
    Async persistence for explanation records.

    Example:
        store = ExplanationStore("sqlite+aiosqlite:///./sqlexplain.db")
        await store.init()
        await store.create_cache_record(query_hash=..., ...)
        await store.close()
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self, create_tables: bool = True) -> None:
        """Create the engine and, by default, any missing tables."""
        if self._engine is None:
            self._engine = build_engine(self.database_url, echo=self.echo)
            self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        if create_tables:
            try:
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not create tables: {e}") from e
        logger.info("Database initialized (%s)", self._engine.url.get_backend_name())

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database disconnected")

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise PersistenceError("Database not initialized. Call init() first.")
        return self._session_factory

    async def create_cache_record(
        self,
        *,
        query_hash: str,
        query_pattern: str,
        sql: str,
        sanitized_sql: str | None,
        dialect: str,
        explanation: dict[str, Any],
        confidence: str,
        user_id: str | None = None,
    ) -> ExplanationRecord:
        """
        Insert a record, or refresh the existing one for ``query_hash``.

        Refreshing resets the 7-day expiry. When a concurrent writer
        inserts the same hash between our lookup and our insert, the
        unique constraint rejects ours and the write is retried as a
        refresh of theirs.
        """
        values = {
            "query_pattern": query_pattern,
            "sql": sql,
            "sanitized_sql": sanitized_sql,
            "dialect": dialect,
            "explanation": explanation,
            "confidence": confidence,
            "user_id": user_id,
        }
        try:
            try:
                return await self._write_record(query_hash, values)
            except IntegrityError:
                logger.debug("Explanation %s inserted concurrently; refreshing it", query_hash)
                return await self._write_record(query_hash, values)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist explanation {query_hash}: {e}") from e

    async def _write_record(self, query_hash: str, values: dict[str, Any]) -> ExplanationRecord:
        sessions = self._sessions()
        async with sessions() as session:
            record = await self._find(session, query_hash)
            if record is None:
                record = ExplanationRecord(query_hash=query_hash)
                session.add(record)
            else:
                now = utcnow()
                record.created_at = now
                record.expires_at = now + timedelta(seconds=RECORD_TTL_SECONDS)

            for name, value in values.items():
                setattr(record, name, value)

            await session.commit()
            return record

    async def _find(self, session: AsyncSession, query_hash: str) -> ExplanationRecord | None:
        return await session.scalar(
            select(ExplanationRecord).where(ExplanationRecord.query_hash == query_hash)
        )

    async def get_cache_record(self, query_hash: str) -> ExplanationRecord | None:
        sessions = self._sessions()
        try:
            async with sessions() as session:
                return await self._find(session, query_hash)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load explanation {query_hash}: {e}") from e

    async def check_health(self) -> bool:
        """True if a trivial query succeeds."""
        if self._session_factory is None:
            return False
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database health check failed: %s", e)
            return False
