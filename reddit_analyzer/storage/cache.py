"""
Response cache used by the API client for listing results.

Both backends share the same contract: ``get`` returns the decoded value or
``None``, ``set`` stores a JSON-serializable value with a TTL and ``delete``
removes a key. Backend failures are logged and treated as a miss or a no-op;
they are never raised to the caller.
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from reddit_analyzer.exceptions import CacheError

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Protocol for cache backend implementations."""

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` if absent, expired or unreadable."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable value for ``ttl_seconds``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key. No-op if it does not exist."""
        ...


def _decode(raw: Any) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CacheError(f"Undecodable cache payload: {e}") from e


class InMemoryCache:
    """
    Process-local cache with TTL support.

    Used when Redis is disabled and in tests. Values are stored JSON-encoded
    so callers see the same round-trip behaviour as with Redis.
    """

    def __init__(self):
        self._store: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None

        raw, expires_at = entry
        if time.time() > expires_at:
            self._store.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._store[key] = (json.dumps(value), time.time() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisCache:
    """Redis-backed cache using ``redis.asyncio``."""

    def __init__(self, url: str = "redis://localhost:6379/0", client: Optional[aioredis.Redis] = None):
        """
        Initialize Redis cache.

        Args:
            url: Redis connection URL
            client: Optional pre-built client (mainly for tests)
        """
        self._client = client if client is not None else aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
            if raw is None:
                return None
            return _decode(raw)
        except (RedisError, CacheError) as e:
            logger.error(f"Redis get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, json.dumps(value))
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"Redis set error for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            logger.error(f"Redis delete error for {key}: {e}")

    async def close(self) -> None:
        await self._client.aclose()
