"""
ExplanationService - the orchestration layer for SQLExplain.

This is the single entry point for explaining a statement. The HTTP API and
the CLI are thin adapters around it.

Pipeline for one request:
    fingerprint -> cache lookup -> (hit: return)
    miss -> stampede lock -> parse plan -> backend -> heuristic merge
         -> cache write -> release lock -> background persistence

Lock contention policy: a request that finds the lock held polls the cache
``lock_poll_attempts`` times, ``lock_poll_interval`` seconds apart. If the
holder's result appears it is returned as a cache hit; otherwise the
request computes on its own. This bounds duplicate backend calls under a
stampede without making waiters depend on the holder finishing.

Cancellation: the computation runs as its own task. A caller that is
cancelled, or that exceeds ``request_timeout_seconds``, stops waiting,
but the computation still finishes and fills the cache.

Usage:
    from sqlexplain.engine import ExplanationService

    service = ExplanationService(backend, cache, store)
    result = await service.explain("SELECT * FROM users WHERE id = 1")
    await service.drain()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from sqlexplain.backends.base import BackendRequest, ExplanationBackend
from sqlexplain.cache.result_cache import ResultCache, result_key
from sqlexplain.exceptions import BackendTimeoutError, PersistenceError, PlanParseError, ValidationError
from sqlexplain.models import Dialect, ExplainRequest, ExplanationResult, QueryFingerprint
from sqlexplain.observability import ServiceMetrics
from sqlexplain.plans import DEFAULT_CONFIG, ParserConfig, PlanNode, analyze_plan, parse_plan, to_suggestion
from sqlexplain.sql import fingerprint, sanitize_sql
from sqlexplain.storage.store import ExplanationStore

logger = logging.getLogger(__name__)


class ExplanationService:
    """
    Cache-or-compute orchestration for SQL explanations.

    Args:
        backend: Explanation backend, chosen once at construction.
        cache: Result cache; None disables caching entirely.
        store: Durable store for background persistence; None skips it.
        metrics: Prometheus collectors; None disables metrics.
        cache_ttl_seconds: Lifetime of a cached explanation.
        lock_poll_attempts: Cache polls while another request holds the lock.
        lock_poll_interval: Seconds between polls. Defaults to spreading
            the polls evenly over the lock TTL.
        request_timeout_seconds: End-to-end budget for one computation.
        parser_config: Resource limits for EXPLAIN parsing.
    """

    def __init__(
        self,
        backend: ExplanationBackend,
        cache: ResultCache | None = None,
        store: ExplanationStore | None = None,
        metrics: ServiceMetrics | None = None,
        *,
        cache_ttl_seconds: int = 3600,
        lock_poll_attempts: int = 3,
        lock_poll_interval: float | None = None,
        request_timeout_seconds: float = 30.0,
        parser_config: ParserConfig | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.store = store
        self.metrics = metrics
        self.cache_ttl_seconds = cache_ttl_seconds
        self.lock_poll_attempts = lock_poll_attempts
        if lock_poll_interval is None:
            lock_ttl = cache.lock_ttl_seconds if cache is not None else 10
            lock_poll_interval = lock_ttl / (lock_poll_attempts + 1)
        self.lock_poll_interval = lock_poll_interval
        self.request_timeout_seconds = request_timeout_seconds
        self.parser_config = parser_config or DEFAULT_CONFIG

        self._background: set[asyncio.Task[Any]] = set()

    # ── Public API ───────────────────────────────────────────────────────

    async def explain_request(
        self,
        request: ExplainRequest,
        user_id: str | None = None,
    ) -> ExplanationResult:
        """Explain a validated request."""
        return await self.explain(
            request.sql,
            dialect=request.dialect,
            schema=request.schema_,
            explain_plan=request.explain_plan,
            use_cache=request.cache,
            privacy_mode=request.privacy_mode,
            user_id=user_id,
        )

    async def explain(
        self,
        sql: str,
        dialect: Dialect | str = Dialect.POSTGRES,
        schema: str | None = None,
        explain_plan: str | None = None,
        use_cache: bool = True,
        privacy_mode: bool = True,
        user_id: str | None = None,
    ) -> ExplanationResult:
        """
        Explain one statement.

        Raises:
            ValidationError: Empty SQL or unknown dialect.
            BackendError: The backend failed or the request timed out.
        """
        if not sql or not sql.strip():
            raise ValidationError("Invalid request: sql: SQL required", field="sql")
        try:
            dialect = Dialect(dialect)
        except ValueError as e:
            raise ValidationError(
                f"Invalid request: dialect: unsupported dialect {dialect!r}",
                field="dialect",
            ) from e

        fp = fingerprint(sql)
        key = result_key(fp.hash)
        caching = use_cache and self.cache is not None

        if caching:
            cached = await self._lookup(key)
            if cached is not None:
                self._record_cache(hit=True)
                logger.debug("Cache hit for %s", fp.hash)
                return cached
            self._record_cache(hit=False)

        task = asyncio.create_task(
            self._run(sql, dialect, schema, explain_plan, caching, privacy_mode, user_id, fp, key)
        )
        self._track(task)

        try:
            return await asyncio.wait_for(asyncio.shield(task), self.request_timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Explanation for %s exceeded %.1fs; finishing in background",
                fp.hash,
                self.request_timeout_seconds,
            )
            raise BackendTimeoutError(
                f"Request timed out after {self.request_timeout_seconds}s",
                provider=self.backend.name,
            ) from e

    async def drain(self) -> None:
        """Wait for every detached computation and persistence write."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Drain background work and release the backend."""
        await self.drain()
        await self.backend.close()

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    # ── Orchestration ────────────────────────────────────────────────────

    async def _run(
        self,
        sql: str,
        dialect: Dialect,
        schema: str | None,
        explain_plan: str | None,
        caching: bool,
        privacy_mode: bool,
        user_id: str | None,
        fp: QueryFingerprint,
        key: str,
    ) -> ExplanationResult:
        args = (sql, dialect, schema, explain_plan, caching, privacy_mode, user_id, fp, key)

        if not caching:
            return await self._compute(*args)

        assert self.cache is not None
        token = await self.cache.try_acquire_lock(key)
        if token is None:
            if self.metrics is not None:
                self.metrics.record_lock_contention()
            for _ in range(self.lock_poll_attempts):
                await asyncio.sleep(self.lock_poll_interval)
                cached = await self._lookup(key)
                if cached is not None:
                    logger.debug("Lock holder published %s while waiting", fp.hash)
                    return cached
            logger.info("Stampede lock for %s still held; computing independently", fp.hash)
            return await self._compute(*args)

        try:
            # Another request may have finished between our miss and the lock
            cached = await self._lookup(key)
            if cached is not None:
                return cached
            return await self._compute(*args)
        finally:
            await self.cache.release_lock(key, token)

    async def _compute(
        self,
        sql: str,
        dialect: Dialect,
        schema: str | None,
        explain_plan: str | None,
        caching: bool,
        privacy_mode: bool,
        user_id: str | None,
        fp: QueryFingerprint,
        key: str,
    ) -> ExplanationResult:
        start_time = time.perf_counter()

        plan = self._parse_plan(explain_plan, dialect) if explain_plan else None
        sanitized = sanitize_sql(sql).sanitized

        explanation = await self.backend.explain_sql(
            BackendRequest(
                sql=sql,
                sanitized_sql=sanitized,
                dialect=dialect.value,
                schema=schema,
                explain_plan=explain_plan,
                privacy_mode=privacy_mode,
            )
        )

        optimizations = list(explanation.optimizations)
        if plan is not None:
            report = analyze_plan(plan)
            optimizations.extend(to_suggestion(rec) for rec in report.recommendations)

        result = ExplanationResult(
            **explanation.model_dump(exclude={"optimizations"}),
            optimizations=optimizations,
            fingerprint=fp,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            cached=False,
        )

        if caching:
            assert self.cache is not None
            await self.cache.set(key, result.to_wire(), self.cache_ttl_seconds)

        if self.store is not None:
            self._spawn(self._persist(result, sql, sanitized, dialect, user_id))

        logger.info(
            "Explained %s (%d chars, %s) in %.0fms",
            fp.hash,
            len(sql),
            dialect.value,
            result.execution_time_ms,
        )
        return result

    def _parse_plan(self, explain_plan: str, dialect: Dialect) -> PlanNode | None:
        try:
            return parse_plan(explain_plan, dialect, self.parser_config)
        except PlanParseError as e:
            logger.warning("Failed to parse %s EXPLAIN plan: %s", dialect.value, e)
            if self.metrics is not None:
                self.metrics.record_parse_failure(dialect.value)
            return None

    async def _lookup(self, key: str) -> ExplanationResult | None:
        assert self.cache is not None
        data = await self.cache.get(key)
        if data is None:
            return None
        try:
            result = ExplanationResult.model_validate(data)
        except PydanticValidationError:
            logger.warning("Ignoring cache entry %s with unexpected shape", key)
            return None
        return result.model_copy(update={"cached": True})

    async def _persist(
        self,
        result: ExplanationResult,
        sql: str,
        sanitized_sql: str,
        dialect: Dialect,
        user_id: str | None,
    ) -> None:
        assert self.store is not None
        try:
            await self.store.create_cache_record(
                query_hash=result.fingerprint.hash,
                query_pattern=result.fingerprint.pattern,
                sql=sql,
                sanitized_sql=sanitized_sql,
                dialect=dialect.value,
                explanation=result.to_wire(),
                confidence=result.confidence.value,
                user_id=user_id,
            )
        except PersistenceError as e:
            logger.warning("Failed to persist explanation %s: %s", result.fingerprint.hash, e)

    # ── Background tasks ─────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self._track(asyncio.create_task(coro))

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._background.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background task finished with %r", task.exception())

    def _record_cache(self, hit: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_cache(hit)
