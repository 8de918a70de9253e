"""Cache and lease primitives."""

from .lease import RunLease
from .store import Cache, InMemoryCache, RedisCache

__all__ = ["Cache", "InMemoryCache", "RedisCache", "RunLease"]
