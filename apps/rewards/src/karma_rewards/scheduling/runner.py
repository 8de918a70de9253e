"""APScheduler runtime for reward jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from karma_rewards.observability.scheduler import get_reward_scheduler_store
from karma_rewards.services.rewards.ledger import SessionFactory

from .config import JobDefinition, ScheduleConfig, load_job_definitions

Sleep = Callable[[float], Awaitable[None]]


class RewardJobScheduler:
    """Register cron jobs from the schedule file and run them with retries."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._sleep = sleep
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_reward_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        for job in config.jobs:
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(self.wrap(job), trigger=trigger, id=job.id, replace_existing=True)
            logger.info("Registered reward job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Reward job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Reward job scheduler stopped")

    @staticmethod
    def resolve(task: str) -> Callable[..., Awaitable[Any]]:
        module_name, _, attr = task.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {task}")
        func = getattr(import_module(module_name), attr, None)
        if func is None:
            raise AttributeError(f"Task {task} not found")
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Task {task} must be an async function")
        return func

    def wrap(
        self,
        job: JobDefinition,
        func: Callable[..., Awaitable[Any]] | None = None,
    ) -> Callable[[], Awaitable[Any]]:
        """Return a coroutine function running ``job`` under its retry policy."""

        func = func or self.resolve(job.task)
        policy = job.retry

        async def _runner() -> Any:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            max_attempts = max(policy.max_attempts, 1)
            for attempt in range(1, max_attempts + 1):
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    if attempt >= max_attempts:
                        self._observability.record_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=str(exc),
                        )
                        logger.exception(
                            "Reward job failed after retries",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                        )
                        return None
                    delay = policy.delay_for(attempt)
                    self._observability.record_retry(job.id, job.task, attempts=attempt, error=str(exc))
                    logger.warning(
                        "Reward job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    if delay:
                        await self._sleep(delay)
                    continue

                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=time.perf_counter() - started_at,
                    attempts=attempt,
                    summary=result if isinstance(result, dict) else None,
                )
                logger.info("Reward job completed", job_id=job.id, task=job.task, attempts=attempt)
                return result
            return None

        return _runner

    def health(self) -> dict[str, object]:
        snapshot = self._observability.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.retry.max_attempts,
                    "metrics": snapshot.get(job.id),
                }
                for job in jobs
            ],
        }


__all__ = ["RewardJobScheduler"]
