"""Per-asset settlement lease layered on the shared cache."""

from __future__ import annotations

from uuid import uuid4

from loguru import logger

from karma_rewards.services.cache.store import Cache


class RunLease:
    """Short-lived lock keeping settlement runs for one asset from overlapping.

    ``acquire`` returns an opaque holder token, or ``None`` when another run
    holds the lease. Only the matching token can release it; an abandoned
    lease disappears when its TTL elapses.
    """

    def __init__(self, cache: Cache, *, ttl_seconds: int = 900) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def key(asset_id: int) -> str:
        return f"settlement:lease:{asset_id}"

    async def acquire(self, asset_id: int) -> str | None:
        token = uuid4().hex
        acquired = await self._cache.set_if_absent(self.key(asset_id), token, ttl_seconds=self._ttl_seconds)
        if not acquired:
            logger.info("Settlement lease already held", asset_id=asset_id)
            return None
        return token

    async def release(self, asset_id: int, token: str) -> bool:
        released = await self._cache.delete_if_equals(self.key(asset_id), token)
        if not released:
            logger.warning("Settlement lease was not released by its holder", asset_id=asset_id)
        return released

    async def is_held(self, asset_id: int) -> bool:
        return await self._cache.get(self.key(asset_id)) is not None


__all__ = ["RunLease"]
