import asyncio

import pytest

from karma_rewards.blockchain.retry import NO_RETRY, RateLimiter, RetryPolicy, with_retry
from karma_rewards.errors import RemoteRejectedError, RemoteUnavailable, TransientRemoteError


class _Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff():
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    fn = _Flaky([TransientRemoteError("reset"), TransientRemoteError("reset")])
    policy = RetryPolicy(max_attempts=5, base_backoff_seconds=0.5, backoff_multiplier=2.0)

    assert await with_retry(fn, policy, operation="submit", sleep=fake_sleep) == "ok"
    assert fn.calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_rejections_are_not_retried():
    fn = _Flaky([RemoteRejectedError("overspend")])

    with pytest.raises(RemoteRejectedError):
        await with_retry(fn, RetryPolicy(max_attempts=5, base_backoff_seconds=0.0), operation="submit")
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_exhausted_budget_raises_unavailable():
    fn = _Flaky([TransientRemoteError("down")] * 3)

    with pytest.raises(RemoteUnavailable) as excinfo:
        await with_retry(fn, RetryPolicy(max_attempts=3, base_backoff_seconds=0.0), operation="params")

    assert fn.calls == 3
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.__cause__, TransientRemoteError)
    assert str(excinfo.value) == "params unavailable after 3 attempts: down"


@pytest.mark.asyncio
async def test_no_retry_policy_makes_a_single_attempt():
    fn = _Flaky([TransientRemoteError("down")])

    with pytest.raises(RemoteUnavailable):
        await with_retry(fn, NO_RETRY, operation="status")
    assert fn.calls == 1


def test_delay_is_capped():
    policy = RetryPolicy(base_backoff_seconds=1.0, backoff_multiplier=3.0, max_backoff_seconds=5.0)

    assert [policy.delay_for(attempt) for attempt in range(1, 5)] == [1.0, 3.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_rate_limiter_caps_concurrency():
    limiter = RateLimiter(concurrency=2)
    active = 0
    peak = 0

    async def call() -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1

    await asyncio.gather(*(limiter.run(call) for _ in range(6)))

    assert peak == 2


@pytest.mark.asyncio
async def test_rate_limiter_spaces_out_calls():
    now = [100.0]
    waits: list[float] = []

    async def fake_sleep(delay: float) -> None:
        waits.append(delay)

    async def call() -> float:
        return now[0]

    limiter = RateLimiter(concurrency=1, min_interval_seconds=0.25, clock=lambda: now[0], sleep=fake_sleep)

    for _ in range(3):
        await limiter.run(call)

    assert waits == [0.25, 0.5]
