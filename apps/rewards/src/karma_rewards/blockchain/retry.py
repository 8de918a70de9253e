"""Retry and rate-limit wrappers composed around remote ledger calls."""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from karma_rewards.errors import RemoteUnavailable, TransientRemoteError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff applied to transient remote failures."""

    max_attempts: int = 5
    base_backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 8.0
    jitter_seconds: float = 0.0
    retry_on: tuple[type[BaseException], ...] = field(default=(TransientRemoteError,))

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before the attempt following ``attempt``."""

        delay = max(self.base_backoff_seconds, 0.0) * (max(self.backoff_multiplier, 1.0) ** (attempt - 1))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return max(delay, 0.0)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


NO_RETRY = RetryPolicy(max_attempts=1, base_backoff_seconds=0.0)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``fn`` until it succeeds or the policy's attempt budget runs out.

    Errors the policy does not consider retryable propagate immediately.
    Exhausting the budget raises :class:`RemoteUnavailable` chained to the
    last transient failure.
    """

    max_attempts = max(policy.max_attempts, 1)
    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if not policy.is_retryable(exc):
                raise
            last_error = exc
            if attempt >= max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "Remote call failed, retrying",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay,
                error=str(exc),
            )
            if delay:
                await sleep(delay)

    logger.error(
        "Remote call exhausted retry budget",
        operation=operation,
        attempts=max_attempts,
        error=str(last_error),
    )
    raise RemoteUnavailable(operation, attempts=max_attempts, last_error=last_error) from last_error


class RateLimiter:
    """Caps concurrent remote calls and spaces out their start times."""

    def __init__(
        self,
        *,
        concurrency: int = 4,
        min_interval_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._semaphore = asyncio.Semaphore(max(concurrency, 1))
        self._min_interval = max(min_interval_seconds, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._spacing_lock = asyncio.Lock()
        self._next_slot = 0.0

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            await self._wait_for_slot()
            return await fn()

    async def _wait_for_slot(self) -> None:
        if not self._min_interval:
            return
        async with self._spacing_lock:
            now = self._clock()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._min_interval
        if wait > 0:
            await self._sleep(wait)


__all__ = ["NO_RETRY", "RateLimiter", "RetryPolicy", "with_retry"]
