"""Scheduling utilities for recurring reward jobs."""

from .config import JobDefinition, load_job_definitions
from .runner import RewardJobScheduler

__all__ = ["JobDefinition", "RewardJobScheduler", "load_job_definitions"]
