"""
Redis-backed cache store (redis.asyncio).

Shared across workers, so the stampede lock holds across processes. Every
Redis or socket error is re-raised as CacheUnavailableError.
"""

from __future__ import annotations

import logging
from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from sqlexplain.cache.store import CacheStore
from sqlexplain.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

_STORE_ERRORS = (RedisError, OSError)

# GET and DEL in one server-side step
_DELETE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisCacheStore(CacheStore):
    """
    Cache store on a Redis server.

    Args:
        url: ``redis://host:port/db`` URL.
        client: Pre-built ``redis.asyncio.Redis`` (tests); ``url`` is
            ignored when given.
    """

    name = "redis"

    def __init__(self, url: str, client: Any = None) -> None:
        self.url = url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        return self._client

    async def init(self) -> None:
        try:
            await self.client.ping()
            logger.info("Redis connected")
        except _STORE_ERRORS as e:
            # The service runs without a cache until Redis comes back
            logger.warning("Redis connection failed, cache degraded: %s", e)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis disconnected")

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(f"Redis GET failed: {e}", operation="get") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(f"Redis SET failed: {e}", operation="set") from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            # SET NX EX creates the key and its expiry in one command
            return bool(await self.client.set(key, value, nx=True, ex=ttl_seconds))
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(
                f"Redis SET NX failed: {e}", operation="set_if_absent"
            ) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(f"Redis DEL failed: {e}", operation="delete") from e

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            return bool(await self.client.eval(_DELETE_IF_EQUALS, 1, key, value))
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(
                f"Redis compare-and-delete failed: {e}", operation="delete_if_equals"
            ) from e

    async def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            current = int(await self.client.incr(key))
            if current == 1:
                await self.client.expire(key, ttl_seconds)
            return current
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(f"Redis INCR failed: {e}", operation="incr") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except _STORE_ERRORS:
            return False

    async def flush(self) -> None:
        try:
            await self.client.flushdb()
        except _STORE_ERRORS as e:
            raise CacheUnavailableError(f"Redis FLUSHDB failed: {e}", operation="flush") from e
