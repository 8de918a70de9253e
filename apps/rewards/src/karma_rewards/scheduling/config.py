"""Loader for the reward job schedule file."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib

from karma_rewards.blockchain.retry import RetryPolicy


@dataclass(slots=True)
class JobDefinition:
    """A cron-triggered call of an async job function."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=1, retry_on=(Exception,)))


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def _retry_policy(payload: dict[str, Any]) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(int(payload.get("max_attempts", 1) or 1), 1),
        base_backoff_seconds=max(float(payload.get("base_backoff_seconds", 30.0) or 0), 0.0),
        backoff_multiplier=max(float(payload.get("backoff_multiplier", 2.0) or 1), 1.0),
        max_backoff_seconds=max(float(payload.get("max_backoff_seconds", 300.0) or 0), 0.0),
        jitter_seconds=max(float(payload.get("jitter_seconds", 0.0) or 0), 0.0),
        retry_on=(Exception,),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Parse ``[jobs.<id>]`` tables from a TOML schedule file."""

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs: list[JobDefinition] = []
    for key, payload in (data.get("jobs") or {}).items():
        if not isinstance(payload, dict):
            continue
        task = payload.get("task")
        cron = payload.get("cron")
        if not isinstance(task, str) or not isinstance(cron, str):
            continue
        if payload.get("enabled", True) is False:
            continue
        kwargs = payload.get("kwargs", {})
        jobs.append(
            JobDefinition(
                id=str(payload.get("id") or key),
                task=task,
                cron=cron,
                kwargs=kwargs if isinstance(kwargs, dict) else {},
                retry=_retry_policy(payload),
            )
        )

    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
