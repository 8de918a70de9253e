"""Key/value stores backing the holdings cache and the settlement lease."""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Protocol

from redis.asyncio import Redis

from karma_rewards.core.settings import settings

_COMPARE_AND_DELETE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class Cache(Protocol):
    """TTL key/value store. Values must be JSON serialisable."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ...

    async def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_if_equals(self, key: str, value: Any) -> bool:
        ...


class RedisCache:
    """Redis-backed cache; ``set_if_absent`` is a single ``SET NX EX``."""

    def __init__(self, redis_client: Redis | None = None, *, namespace: str = "karma") -> None:
        self._redis = redis_client or Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        await self._redis.set(self._key(key), json.dumps(value), ex=ttl_seconds or None)

    async def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int) -> bool:
        stored = await self._redis.set(self._key(key), json.dumps(value), ex=ttl_seconds, nx=True)
        return bool(stored)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def delete_if_equals(self, key: str, value: Any) -> bool:
        removed = await self._redis.eval(_COMPARE_AND_DELETE, 1, self._key(key), json.dumps(value))
        return bool(removed)

    async def aclose(self) -> None:
        await self._redis.aclose()


class InMemoryCache:
    """Process-local cache used by tests and single-process deployments."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return raw

    async def get(self, key: str) -> Any | None:
        raw = self._live(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = (json.dumps(value), expires_at)

    async def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (json.dumps(value), self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_if_equals(self, key: str, value: Any) -> bool:
        raw = self._live(key)
        if raw is None or raw != json.dumps(value):
            return False
        del self._entries[key]
        return True


__all__ = ["Cache", "InMemoryCache", "RedisCache"]
