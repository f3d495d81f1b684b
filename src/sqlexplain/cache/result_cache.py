"""
Result cache with stampede locks and per-identity rate limits.

Wraps a CacheStore and owns key naming and JSON serialization. The cache
is an accelerator, not a dependency: any CacheUnavailableError from the
store is logged and turned into the harmless answer (miss, no-op, lock
taken, request allowed).

Keys:
    explain:{hash}                     cached ExplanationResult JSON
    lock:explain:{hash}                stampede lock, value is the owner token
    rate_limit:{identity}:{YYYY-MM-DD} daily request counter
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from sqlexplain.cache.store import CacheStore
from sqlexplain.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_LOCK_TTL_SECONDS = 10
RATE_LIMIT_WINDOW_SECONDS = 86400


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def result_key(query_hash: str) -> str:
    return f"explain:{query_hash}"


def lock_key(cache_key: str) -> str:
    return f"lock:{cache_key}"


class ResultCache:
    """
    JSON result cache over a CacheStore.

    Example:
        cache = ResultCache(InMemoryCacheStore())
        await cache.set("explain:abc", {"summary": "..."})
        token = await cache.try_acquire_lock("explain:abc")
        if token is not None:
            ...
            await cache.release_lock("explain:abc", token)
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self._today = today

    async def init(self) -> None:
        await self.store.init()

    async def close(self) -> None:
        await self.store.close()

    async def get(self, key: str) -> Any | None:
        """Decoded value, or None on miss, corrupt entry, or store failure."""
        try:
            raw = await self.store.get(key)
        except CacheUnavailableError as e:
            logger.error("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        try:
            await self.store.set(key, json.dumps(value), ttl_seconds or self.ttl_seconds)
        except CacheUnavailableError as e:
            logger.error("Cache set failed for %s: %s", key, e)

    async def try_acquire_lock(self, key: str) -> str | None:
        """
        Take the stampede lock for ``key``.

        Returns:
            The owner token to hand back to release_lock(), or None if
            another request holds the lock.

        The lock expires after ``lock_ttl_seconds`` even if never released.
        An unreachable store counts as unlocked: the caller gets a token
        and computes right away instead of polling a store that cannot
        answer.
        """
        token = uuid.uuid4().hex
        try:
            acquired = await self.store.set_if_absent(lock_key(key), token, self.lock_ttl_seconds)
        except CacheUnavailableError as e:
            logger.error("Stampede lock acquisition failed for %s: %s", key, e)
            return token
        return token if acquired else None

    async def release_lock(self, key: str, token: str) -> bool:
        """
        Drop the stampede lock if ``token`` still owns it.

        A lock that expired and was taken by another request is left alone.
        Returns True if a lock was removed.
        """
        try:
            released = await self.store.delete_if_equals(lock_key(key), token)
        except CacheUnavailableError as e:
            logger.error("Stampede lock release failed for %s: %s", key, e)
            return False
        if not released:
            logger.debug("Stampede lock for %s expired or changed owner before release", key)
        return released

    async def check_rate_limit(self, identity: str, max_tokens: int = 100) -> bool:
        """
        Count one request for ``identity`` today.

        Returns:
            True if the request is within the daily budget. Fails open.
        """
        key = f"rate_limit:{identity}:{self._today().isoformat()}"
        try:
            current = await self.store.incr(key, RATE_LIMIT_WINDOW_SECONDS)
        except CacheUnavailableError as e:
            logger.error("Rate limit check failed for %s: %s", identity, e)
            return True
        return current <= max_tokens

    async def ping(self) -> bool:
        try:
            return await self.store.ping()
        except CacheUnavailableError:
            return False

    async def flush(self) -> None:
        """Remove every cached entry, lock and counter."""
        try:
            await self.store.flush()
            logger.info("Cache flushed")
        except CacheUnavailableError as e:
            logger.error("Cache flush failed: %s", e)
