"""Observability store for reward job scheduler dispatches."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RewardJobState:
    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_summary: Dict[str, object] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": {
                "runs": self.runs,
                "success": self.successes,
                "failures": self.failures,
                "retries": self.retries,
            },
            "runtime_seconds": self.runtime_seconds,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_summary": dict(self.last_summary),
        }


class RewardSchedulerObservabilityStore:
    """Tracks dispatch outcomes of scheduled reward jobs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, RewardJobState] = {}

    def _state(self, job_id: str, task: str) -> RewardJobState:
        state = self._jobs.get(job_id)
        if state is None:
            state = RewardJobState(job_id=job_id, task=task)
            self._jobs[job_id] = state
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_started_at = _utcnow()
            state.last_attempts = 0

    def record_retry(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_attempts = attempts
            state.last_error = error

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        summary: Dict[str, object] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.successes += 1
            state.runtime_seconds += runtime_seconds
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.last_error = None
            state.last_summary = dict(summary or {})

    def record_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.failures += 1
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_error = error

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {job_id: state.as_dict() for job_id, state in self._jobs.items()}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()


_STORE = RewardSchedulerObservabilityStore()


def get_reward_scheduler_store() -> RewardSchedulerObservabilityStore:
    return _STORE


__all__ = ["RewardSchedulerObservabilityStore", "get_reward_scheduler_store"]
