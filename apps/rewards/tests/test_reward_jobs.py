from pathlib import Path

import pytest

from karma_rewards.blockchain.retry import RetryPolicy
from karma_rewards.jobs.rewards import run_daily_claim, run_force_claim, run_network_balance_check
from karma_rewards.observability.scheduler import get_reward_scheduler_store
from karma_rewards.scheduling import JobDefinition, RewardJobScheduler, load_job_definitions

SCHEDULE_PATH = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"


@pytest.fixture(autouse=True)
def reset_scheduler_store():
    get_reward_scheduler_store().reset()
    yield
    get_reward_scheduler_store().reset()


@pytest.mark.asyncio
async def test_daily_claim_settles_above_threshold(session_factory, runtime, fake_remote, seed_wallet):
    rich = await seed_wallet("user-1", 650)
    await seed_wallet("user-2", 120)

    summary = await run_daily_claim(session_factory=session_factory, threshold=500, runtime=runtime)

    assert summary["claim"] == "daily"
    assert summary["unit_name"] == "KRMA"
    assert summary["claims_enqueued"] == 1
    assert summary["total_settled"] == 650
    assert fake_remote.submitted_transfers() == [[(rich, 650)]]


@pytest.mark.asyncio
async def test_force_claim_uses_explicit_threshold(session_factory, runtime, seed_wallet):
    await seed_wallet("user-1", 30)
    await seed_wallet("user-2", 60)

    summary = await run_force_claim(session_factory=session_factory, threshold=10, runtime=runtime)

    assert summary["claim"] == "force"
    assert summary["groups_submitted"] == 1
    assert summary["total_settled"] == 90


@pytest.mark.asyncio
async def test_network_balance_check_summary(session_factory, runtime, notifier):
    summary = await run_network_balance_check(session_factory=session_factory, runtime=runtime)

    assert summary["checked"] == 2
    assert summary["low"] == 0
    karma, enlightenment = summary["assets"]
    assert karma["balance"] == 10_000_000
    assert enlightenment["asset_id"] is None
    assert notifier.sent == []


def test_schedule_file_registers_claim_jobs():
    config = load_job_definitions(SCHEDULE_PATH)

    jobs = {job.id: job for job in config.jobs}
    assert config.timezone == "UTC"
    assert jobs["daily_claim"].cron == "0 2 * * *"
    assert jobs["daily_claim"].kwargs == {"threshold": 500}
    assert jobs["monthly_claim"].kwargs == {"threshold": 50}
    assert jobs["network_balance_check"].retry.max_attempts == 3
    for job in config.jobs:
        assert RewardJobScheduler.resolve(job.task)


def test_disabled_jobs_are_not_loaded(tmp_path):
    path = tmp_path / "schedules.toml"
    path.write_text(
        """
[jobs.daily_claim]
task = "karma_rewards.jobs.rewards.run_daily_claim"
cron = "0 2 * * *"
enabled = false

[jobs.network_balance_check]
task = "karma_rewards.jobs.rewards.run_network_balance_check"
cron = "0 3 * * *"
"""
    )

    assert [job.id for job in load_job_definitions(path).jobs] == ["network_balance_check"]


def test_resolve_rejects_sync_callables():
    with pytest.raises(TypeError):
        RewardJobScheduler.resolve("karma_rewards.scheduling.config.load_job_definitions")
    with pytest.raises(ValueError):
        RewardJobScheduler.resolve("not_a_path")


@pytest.mark.asyncio
async def test_wrapped_job_retries_then_succeeds(session_factory):
    sleeps: list[float] = []
    calls: list[dict] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    async def flaky_job(*, session_factory, threshold):
        calls.append({"threshold": threshold})
        if len(calls) == 1:
            raise RuntimeError("node offline")
        return {"total_settled": 42}

    job = JobDefinition(
        id="daily_claim",
        task="tests.flaky_job",
        cron="0 2 * * *",
        kwargs={"threshold": 500},
        retry=RetryPolicy(max_attempts=2, base_backoff_seconds=5.0, retry_on=(Exception,)),
    )
    scheduler = RewardJobScheduler(session_factory=session_factory, config_path=SCHEDULE_PATH, sleep=fake_sleep)

    result = await scheduler.wrap(job, flaky_job)()

    assert result == {"total_settled": 42}
    assert calls == [{"threshold": 500}, {"threshold": 500}]
    assert sleeps == [5.0]
    metrics = get_reward_scheduler_store().snapshot()["daily_claim"]
    assert metrics["totals"] == {"runs": 1, "success": 1, "failures": 0, "retries": 1}
    assert metrics["last_summary"] == {"total_settled": 42}


@pytest.mark.asyncio
async def test_wrapped_job_records_final_failure(session_factory):
    async def broken_job(*, session_factory):
        raise RuntimeError("ledger offline")

    job = JobDefinition(id="network_balance_check", task="tests.broken_job", cron="0 3 * * *")
    scheduler = RewardJobScheduler(session_factory=session_factory, config_path=SCHEDULE_PATH)

    assert await scheduler.wrap(job, broken_job)() is None

    metrics = get_reward_scheduler_store().snapshot()["network_balance_check"]
    assert metrics["totals"]["failures"] == 1
    assert metrics["last_error"] == "ledger offline"
    assert scheduler.health()["running"] is False
