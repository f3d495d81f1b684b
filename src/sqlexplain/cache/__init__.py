"""Result cache, stampede locks and the stores behind them."""

from __future__ import annotations

from sqlexplain.cache.redis_store import RedisCacheStore
from sqlexplain.cache.result_cache import ResultCache, lock_key, result_key
from sqlexplain.cache.store import CacheStore, InMemoryCacheStore
from sqlexplain.settings import Settings


def create_cache_store(settings: Settings) -> CacheStore:
    """Redis when a URL is configured, otherwise process memory."""
    if settings.redis_url:
        return RedisCacheStore(settings.redis_url)
    return InMemoryCacheStore(max_entries=settings.memory_cache_max_entries)


def create_result_cache(settings: Settings) -> ResultCache:
    return ResultCache(
        create_cache_store(settings),
        ttl_seconds=settings.cache_ttl_seconds,
        lock_ttl_seconds=settings.lock_ttl_seconds,
    )


__all__ = [
    "create_cache_store",
    "create_result_cache",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "ResultCache",
    "result_key",
    "lock_key",
]
