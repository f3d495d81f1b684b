"""
Key/value store protocol for the result cache.

Values are strings (the result cache serializes to JSON before storing).
Every write carries a TTL. Implementations raise CacheUnavailableError
when the underlying store cannot be reached; they never swallow errors
themselves, the ResultCache above them decides how to degrade.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000


class CacheStore(ABC):
    """Abstract async key/value store with expiry."""

    name: str = "store"

    async def init(self) -> None:
        """Open connections. Default: nothing to open."""
        return None

    async def close(self) -> None:
        """Close connections. Default: nothing to close."""
        return None

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Value for ``key``, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Atomically store ``value`` only if ``key`` does not exist.

        Returns:
            True if this call created the key.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""
        ...

    @abstractmethod
    async def delete_if_equals(self, key: str, value: str) -> bool:
        """
        Atomically remove ``key`` only while it still holds ``value``.

        Returns:
            True if the key was removed.
        """
        ...

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """
        Increment an integer counter.

        The expiry is set when the counter is created (first increment)
        and not extended by later increments.
        """
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def flush(self) -> None:
        """Remove every key."""
        ...


@dataclass
class _Entry:
    value: str
    expires_at: float


class InMemoryCacheStore(CacheStore):
    """
    Process-local store.

    Used when no Redis URL is configured and in tests. Expired entries
    are dropped lazily on access. Past ``max_entries`` keys the least
    recently used entry is evicted, expired entries first.

    Args:
        clock: Monotonic time source (tests pass a fake).
        max_entries: Key count above which the store evicts.

    Example:
        store = InMemoryCacheStore()
        await store.set("k", "v", ttl_seconds=60)
        assert await store.get("k") == "v"
    """

    name = "memory"

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._clock = clock
        self.max_entries = max_entries
        self._data: OrderedDict[str, _Entry] = OrderedDict()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry

    def _store(self, key: str, entry: _Entry) -> None:
        self._data[key] = entry
        self._data.move_to_end(key)
        if len(self._data) > self.max_entries:
            self._evict()

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in expired:
            del self._data[k]
        evicted = 0
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)
            evicted += 1
        logger.debug("Evicted %d expired and %d least recently used keys", len(expired), evicted)

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store(key, _Entry(value, self._clock() + ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._store(key, _Entry(value, self._clock() + ttl_seconds))
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def delete_if_equals(self, key: str, value: str) -> bool:
        entry = self._live(key)
        if entry is None or entry.value != value:
            return False
        del self._data[key]
        return True

    async def incr(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._store(key, _Entry("1", self._clock() + ttl_seconds))
            return 1
        current = int(entry.value) + 1
        entry.value = str(current)
        return current

    async def ping(self) -> bool:
        return True

    async def flush(self) -> None:
        self._data.clear()

    @property
    def size(self) -> int:
        """Number of stored keys, expired or not."""
        return len(self._data)
