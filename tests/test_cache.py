"""
Tests for the cache stores and the result cache.

The in-memory store runs on a fake clock so expiry is tested without
sleeping. Redis is replaced by small fakes; the real server is never
contacted.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sqlexplain.cache import (
    InMemoryCacheStore,
    RedisCacheStore,
    ResultCache,
    create_cache_store,
    lock_key,
    result_key,
)
from sqlexplain.cache.store import CacheStore
from sqlexplain.exceptions import CacheUnavailableError
from sqlexplain.settings import Settings


class BrokenStore(CacheStore):
    """Every operation fails as if the server were down."""

    name = "broken"

    async def get(self, key: str) -> str | None:
        raise CacheUnavailableError("down", operation="get")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise CacheUnavailableError("down", operation="set")

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        raise CacheUnavailableError("down", operation="set_if_absent")

    async def delete(self, key: str) -> bool:
        raise CacheUnavailableError("down", operation="delete")

    async def delete_if_equals(self, key: str, value: str) -> bool:
        raise CacheUnavailableError("down", operation="delete_if_equals")

    async def incr(self, key: str, ttl_seconds: int) -> int:
        raise CacheUnavailableError("down", operation="incr")

    async def ping(self) -> bool:
        raise CacheUnavailableError("down", operation="ping")

    async def flush(self) -> None:
        raise CacheUnavailableError("down", operation="flush")


class FakeRedis:
    """Just enough of redis.asyncio.Redis for RedisCacheStore."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.expiries: dict[str, int] = {}
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> int:
        # Only the compare-and-delete script is ever sent
        key, value = keys_and_args
        if self.data.get(key) != value:
            return 0
        del self.data[key]
        return 1

    async def incr(self, key: str) -> int:
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True

    async def flushdb(self) -> bool:
        self.data.clear()
        return True

    async def aclose(self) -> None:
        self.closed = True


class DownRedis(FakeRedis):
    async def ping(self) -> bool:
        raise RedisConnectionError("connection refused")

    async def get(self, key: str) -> Any:
        raise RedisConnectionError("connection refused")

    async def incr(self, key: str) -> int:
        raise RedisConnectionError("connection refused")


# =============================================================================
# In-memory store
# =============================================================================


class TestInMemoryCacheStore:
    """Process-local store with lazy expiry."""

    async def test_set_get(self, memory_store: InMemoryCacheStore) -> None:
        await memory_store.set("k", "v", ttl_seconds=60)
        assert await memory_store.get("k") == "v"
        assert await memory_store.get("missing") is None

    async def test_expiry(self, memory_store: InMemoryCacheStore, clock) -> None:
        await memory_store.set("k", "v", ttl_seconds=60)
        clock.advance(59)
        assert await memory_store.get("k") == "v"
        clock.advance(1)
        assert await memory_store.get("k") is None
        assert memory_store.size == 0

    async def test_set_if_absent(self, memory_store: InMemoryCacheStore, clock) -> None:
        assert await memory_store.set_if_absent("lock", "1", ttl_seconds=10)
        assert not await memory_store.set_if_absent("lock", "1", ttl_seconds=10)
        clock.advance(10)
        assert await memory_store.set_if_absent("lock", "1", ttl_seconds=10)

    async def test_delete(self, memory_store: InMemoryCacheStore) -> None:
        await memory_store.set("k", "v", ttl_seconds=60)
        assert await memory_store.delete("k")
        assert not await memory_store.delete("k")

    async def test_incr_keeps_first_expiry(self, memory_store: InMemoryCacheStore, clock) -> None:
        assert await memory_store.incr("n", ttl_seconds=100) == 1
        clock.advance(60)
        assert await memory_store.incr("n", ttl_seconds=100) == 2
        clock.advance(40)
        assert await memory_store.incr("n", ttl_seconds=100) == 1

    async def test_delete_if_equals(self, memory_store: InMemoryCacheStore) -> None:
        await memory_store.set("lock", "owner-a", ttl_seconds=10)
        assert not await memory_store.delete_if_equals("lock", "owner-b")
        assert await memory_store.get("lock") == "owner-a"
        assert await memory_store.delete_if_equals("lock", "owner-a")
        assert not await memory_store.delete_if_equals("lock", "owner-a")

    async def test_size_is_bounded(self, clock) -> None:
        store = InMemoryCacheStore(clock=clock, max_entries=3)
        for i in range(50):
            await store.set(f"explain:{i}", "v", ttl_seconds=3600)

        assert store.size == 3
        assert [await store.get(f"explain:{i}") for i in (47, 48, 49)] == ["v", "v", "v"]
        assert await store.get("explain:0") is None

    async def test_eviction_spares_recently_read_keys(self, clock) -> None:
        store = InMemoryCacheStore(clock=clock, max_entries=3)
        await store.set("a", "1", ttl_seconds=60)
        await store.set("b", "2", ttl_seconds=60)
        await store.set("c", "3", ttl_seconds=60)

        assert await store.get("a") == "1"
        await store.set("d", "4", ttl_seconds=60)

        assert await store.get("a") == "1"
        assert await store.get("b") is None
        assert store.size == 3

    async def test_eviction_drops_expired_keys_first(self, clock) -> None:
        store = InMemoryCacheStore(clock=clock, max_entries=3)
        await store.set("old", "1", ttl_seconds=60)
        await store.set("a", "2", ttl_seconds=3600)
        await store.set("b", "3", ttl_seconds=3600)
        await store.get("old")
        clock.advance(60)

        await store.set("c", "4", ttl_seconds=3600)

        assert store.size == 3
        assert [await store.get(k) for k in ("a", "b", "c")] == ["2", "3", "4"]

    async def test_counters_and_locks_count_toward_bound(self, clock) -> None:
        store = InMemoryCacheStore(clock=clock, max_entries=2)
        await store.incr("rate_limit:a", ttl_seconds=86400)
        await store.set_if_absent("lock:explain:x", "t", ttl_seconds=10)
        await store.incr("rate_limit:b", ttl_seconds=86400)
        assert store.size == 2

    def test_max_entries_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            InMemoryCacheStore(max_entries=0)

    async def test_flush(self, memory_store: InMemoryCacheStore) -> None:
        await memory_store.set("a", "1", ttl_seconds=60)
        await memory_store.set("b", "2", ttl_seconds=60)
        await memory_store.flush()
        assert memory_store.size == 0


# =============================================================================
# Redis store
# =============================================================================


class TestRedisCacheStore:
    """Command mapping and error translation."""

    async def test_commands(self) -> None:
        redis = FakeRedis()
        store = RedisCacheStore("redis://unused", client=redis)

        await store.set("k", "v", ttl_seconds=3600)
        assert await store.get("k") == "v"
        assert redis.expiries["k"] == 3600

        assert await store.set_if_absent("lock", "1", ttl_seconds=10)
        assert not await store.set_if_absent("lock", "1", ttl_seconds=10)
        assert redis.expiries["lock"] == 10

        assert await store.delete("lock")
        assert not await store.delete("lock")

    async def test_delete_if_equals(self) -> None:
        redis = FakeRedis()
        store = RedisCacheStore("redis://unused", client=redis)

        await store.set("lock", "owner-a", ttl_seconds=10)
        assert not await store.delete_if_equals("lock", "owner-b")
        assert redis.data["lock"] == "owner-a"
        assert await store.delete_if_equals("lock", "owner-a")
        assert "lock" not in redis.data

    async def test_incr_sets_expiry_once(self) -> None:
        redis = FakeRedis()
        store = RedisCacheStore("redis://unused", client=redis)

        assert await store.incr("rate", ttl_seconds=86400) == 1
        redis.expiries.clear()
        assert await store.incr("rate", ttl_seconds=86400) == 2
        assert "rate" not in redis.expiries

    async def test_errors_become_cache_unavailable(self) -> None:
        store = RedisCacheStore("redis://unused", client=DownRedis())
        with pytest.raises(CacheUnavailableError) as exc_info:
            await store.get("k")
        assert exc_info.value.operation == "get"
        assert not await store.ping()

    async def test_init_tolerates_outage(self) -> None:
        store = RedisCacheStore("redis://unused", client=DownRedis())
        await store.init()

    async def test_close(self) -> None:
        redis = FakeRedis()
        store = RedisCacheStore("redis://unused", client=redis)
        await store.close()
        assert redis.closed


# =============================================================================
# Result cache
# =============================================================================


class TestResultCache:
    """JSON values, stampede locks and rate limits."""

    def test_key_names(self) -> None:
        assert result_key("abc") == "explain:abc"
        assert lock_key(result_key("abc")) == "lock:explain:abc"

    async def test_json_round_trip(self, result_cache: ResultCache) -> None:
        await result_cache.set("explain:abc", {"summary": "s", "n": [1, 2]})
        assert await result_cache.get("explain:abc") == {"summary": "s", "n": [1, 2]}

    async def test_default_ttl(self, result_cache: ResultCache, clock) -> None:
        await result_cache.set("explain:abc", {"x": 1})
        clock.advance(3599)
        assert await result_cache.get("explain:abc") is not None
        clock.advance(1)
        assert await result_cache.get("explain:abc") is None

    async def test_corrupt_entry_is_a_miss(self, memory_store: InMemoryCacheStore, result_cache: ResultCache) -> None:
        await memory_store.set("explain:bad", "{not json", ttl_seconds=60)
        assert await result_cache.get("explain:bad") is None

    async def test_lock(self, result_cache: ResultCache, memory_store: InMemoryCacheStore, clock) -> None:
        token = await result_cache.try_acquire_lock("explain:abc")
        assert token is not None
        assert await memory_store.get("lock:explain:abc") == token
        assert await result_cache.try_acquire_lock("explain:abc") is None

        assert await result_cache.release_lock("explain:abc", token)
        token = await result_cache.try_acquire_lock("explain:abc")
        assert token is not None

        # An abandoned lock expires on its own
        clock.advance(10)
        assert await result_cache.try_acquire_lock("explain:abc") is not None

    async def test_lock_tokens_are_unique(self, result_cache: ResultCache) -> None:
        first = await result_cache.try_acquire_lock("explain:a")
        second = await result_cache.try_acquire_lock("explain:b")
        assert first and second and first != second

    async def test_release_after_expiry_keeps_new_owner(
        self, result_cache: ResultCache, memory_store: InMemoryCacheStore, clock
    ) -> None:
        stale = await result_cache.try_acquire_lock("explain:abc")
        clock.advance(10)
        current = await result_cache.try_acquire_lock("explain:abc")
        assert stale is not None and current is not None

        assert not await result_cache.release_lock("explain:abc", stale)
        assert await memory_store.get("lock:explain:abc") == current
        assert await result_cache.try_acquire_lock("explain:abc") is None

        assert await result_cache.release_lock("explain:abc", current)

    async def test_rate_limit(self, memory_store: InMemoryCacheStore) -> None:
        cache = ResultCache(memory_store, today=lambda: date(2024, 3, 1))

        assert await cache.check_rate_limit("key-1", max_tokens=2)
        assert await cache.check_rate_limit("key-1", max_tokens=2)
        assert not await cache.check_rate_limit("key-1", max_tokens=2)
        assert await cache.check_rate_limit("key-2", max_tokens=2)
        assert await memory_store.get("rate_limit:key-1:2024-03-01") == "3"

    async def test_unavailable_store_degrades(self) -> None:
        cache = ResultCache(BrokenStore())

        assert await cache.get("explain:abc") is None
        await cache.set("explain:abc", {"x": 1})
        token = await cache.try_acquire_lock("explain:abc")
        assert token is not None
        assert not await cache.release_lock("explain:abc", token)
        assert await cache.check_rate_limit("anyone", max_tokens=1)
        assert not await cache.ping()
        await cache.flush()


# =============================================================================
# Factory
# =============================================================================


class TestCreateCacheStore:
    def test_memory_store_bound_from_settings(self, settings: Settings) -> None:
        store = create_cache_store(settings.model_copy(update={"memory_cache_max_entries": 50}))
        assert isinstance(store, InMemoryCacheStore)
        assert store.max_entries == 50

    def test_redis_when_url_configured(self, settings: Settings) -> None:
        store = create_cache_store(settings.model_copy(update={"redis_url": "redis://localhost:6379/0"}))
        assert isinstance(store, RedisCacheStore)
        assert store.url == "redis://localhost:6379/0"
