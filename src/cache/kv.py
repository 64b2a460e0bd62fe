"""Key-value cache used for embedding reuse and conversation sessions.

The cache is never a hard dependency: when Redis is unreachable every read
is a miss and every write is a no-op.
"""

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from src.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_MAX_UPDATE_RETRIES = 5


class KeyValueCache(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl: int | None = None,
    ) -> Any: ...


class RedisCache:
    """JSON values in Redis with optional per-key TTL."""

    def __init__(self, client: aioredis.Redis | None) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        """Build a cache for ``url``. Connection errors surface on first use, not here."""
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client)

    @property
    def available(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if self._client is None:
            return
        try:
            await self._client.set(key, json.dumps(value), ex=ttl)
        except RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(key)
        except RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns how many were removed."""
        if self._client is None:
            return 0
        removed = 0
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                removed += await self._client.delete(key)
        except RedisError as e:
            logger.warning("Cache prefix delete failed for %s: %s", prefix, e)
        return removed

    async def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl: int | None = None,
    ) -> Any:
        """Atomically replace the value at ``key`` with ``fn(current)``.

        Uses WATCH/MULTI and retries when another writer touched the key in
        between. Returns the new value. With no Redis, ``fn(None)`` is
        returned without being stored.

        Raises:
            ExternalServiceError: When every attempt lost to a concurrent
                writer, so the new value was never stored.
        """
        if self._client is None:
            return fn(None)

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(_MAX_UPDATE_RETRIES):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = json.loads(raw) if raw is not None else None
                        new_value = fn(current)
                        pipe.multi()
                        pipe.set(key, json.dumps(new_value), ex=ttl)
                        await pipe.execute()
                        return new_value
                    except WatchError:
                        logger.debug("Concurrent update on %s, retrying", key)
                        continue
        except RedisError as e:
            logger.warning("Cache update failed for %s: %s", key, e)
            return fn(None)

        logger.error("Gave up updating %s after %d conflicts", key, _MAX_UPDATE_RETRIES)
        raise ExternalServiceError(
            f"Could not update {key}: {_MAX_UPDATE_RETRIES} concurrent writes in a row",
            attempts=_MAX_UPDATE_RETRIES,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
