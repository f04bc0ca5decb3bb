"""Redis-based read cache implementation.

Provides a ReadCache shared by several processes (for example the web
worker and background job runners of one deployment), so a write made by
one process stales the cached reads of all of them.

Data Structures:
- {prefix}:values (HASH): serialized CacheKey -> JSON value
- {prefix}:stale (SET): serialized CacheKeys currently marked stale
- {prefix}:invalidations (PUBSUB channel): JSON list of keys just marked

Key Features:
- Atomic operations: MULTI/EXEC pipelines and a Lua compare-and-mark
  script keep value and stale mark in step
- Network-accessible: any process with the URL sees the same cache
- Connection pooling: redis-py connection pool for concurrent access

Design: Adapter Pattern
Implements the ReadCache interface for Redis.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError("redis-py is required for RedisReadCache. Install with: pip install redis")

from pysteady.models import CacheKey
from pysteady.storage.base import ReadCache, StorageError

# KEYS: values hash, stale set. ARGV: channel, then field/value pairs.
_MARK_STALE_SCRIPT = """
local values_key = KEYS[1]
local stale_key = KEYS[2]
local marked = {}

for i = 2, #ARGV, 2 do
    local field = ARGV[i]
    if redis.call('HGET', values_key, field) == ARGV[i + 1] then
        redis.call('SADD', stale_key, field)
        table.insert(marked, field)
    end
end

if #marked > 0 then
    redis.call('PUBLISH', ARGV[1], cjson.encode(marked))
end
return marked
"""


class RedisReadCache(ReadCache):
    """Redis read cache using connection pooling.

    All dependencies (Redis connection) passed explicitly.

    Usage:
        cache = RedisReadCache("redis://localhost:6379")
        await cache.connect()

        await cache.set(CacheKey("/api/residents"), residents)
        await cache.mark_stale([CacheKey("/api/residents")])
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        prefix: str = "pysteady:cache",
        max_connections: int = 16,
    ):
        """Initialize Redis read cache.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            prefix: Namespace for every key this cache writes
            max_connections: Maximum pool size
        """
        super().__init__()
        self._redis_url = redis_url
        self._prefix = prefix
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisReadCache({self._redis_url}, prefix={self._prefix!r})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> redis.Redis:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")
        return self._redis

    @property
    def values_key(self) -> str:
        return f"{self._prefix}:values"

    @property
    def stale_key(self) -> str:
        return f"{self._prefix}:stale"

    @property
    def channel(self) -> str:
        return f"{self._prefix}:invalidations"

    async def get(self, key: CacheKey) -> Any | None:
        client = self._check_connected()
        raw = await client.hget(self.values_key, key.serialize())
        return json.loads(raw) if raw is not None else None

    async def set(self, key: CacheKey, value: Any) -> None:
        client = self._check_connected()
        field = key.serialize()
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(self.values_key, field, json.dumps(value))
            pipe.srem(self.stale_key, field)
            await pipe.execute()

    async def keys(self) -> list[CacheKey]:
        client = self._check_connected()
        fields = await client.hkeys(self.values_key)
        return [CacheKey.parse(field) for field in fields]

    async def clear(self) -> None:
        client = self._check_connected()
        await client.delete(self.values_key, self.stale_key)

    async def mark_stale(self, patterns: Iterable[CacheKey]) -> set[CacheKey]:
        """Mark matching keys stale and announce them on the channel.

        Design: Optimistic Concurrency Control
        Matching runs client-side against a snapshot of the values hash. The
        Lua script marks a key only if its value is unchanged since the
        snapshot, so a value set concurrently by another process stays fresh.
        """
        client = self._check_connected()
        patterns = list(patterns)
        snapshot = await client.hgetall(self.values_key)
        candidates = {
            field: value
            for field, value in snapshot.items()
            if any(pattern.matches(CacheKey.parse(field)) for pattern in patterns)
        }
        if not candidates:
            return set()

        args: list[str] = [self.channel]
        for field, value in candidates.items():
            args.extend((field, value))

        marked_fields = await client.eval(_MARK_STALE_SCRIPT, 2, self.values_key, self.stale_key, *args)
        return {CacheKey.parse(field) for field in marked_fields}

    async def is_stale(self, key: CacheKey) -> bool:
        client = self._check_connected()
        return bool(await client.sismember(self.stale_key, key.serialize()))
