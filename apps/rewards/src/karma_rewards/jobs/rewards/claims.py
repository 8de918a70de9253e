"""Scheduled and administrative bulk claim jobs."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from loguru import logger

from karma_rewards.core.settings import get_settings
from karma_rewards.runtime import RewardsRuntime, build_rewards_runtime
from karma_rewards.services.rewards.ledger import SessionFactory

# meta: job: reward-claims


@asynccontextmanager
async def rewards_runtime(
    session_factory: SessionFactory,
    runtime: RewardsRuntime | None = None,
) -> AsyncIterator[RewardsRuntime]:
    """Yield the given runtime, or build one that is closed on exit."""

    if runtime is not None:
        yield runtime
        return
    built = build_rewards_runtime(session_factory=session_factory)
    try:
        yield built
    finally:
        await built.aclose()


async def _run_claim(
    label: str,
    *,
    session_factory: SessionFactory,
    threshold: int,
    unit_name: str | None,
    runtime: RewardsRuntime | None,
) -> Dict[str, Any]:
    async with rewards_runtime(session_factory, runtime) as active:
        unit = unit_name or active.settings.karma_asset_unit_name
        asset = await active.service.resolve_asset(unit)
        logger.info("Reward claim started", claim=label, asset_id=asset.asset_id, threshold=threshold)
        summary = await active.service.run_scheduled_claim(asset.asset_id, threshold)
        payload = {"claim": label, "unit_name": unit, **summary.as_dict()}
        logger.bind(summary=payload).info("Reward claim finished")
        return payload


async def run_daily_claim(
    *,
    session_factory: SessionFactory,
    threshold: int | None = None,
    unit_name: str | None = None,
    runtime: RewardsRuntime | None = None,
) -> Dict[str, Any]:
    """Settle every wallet above the daily auto-claim threshold."""

    return await _run_claim(
        "daily",
        session_factory=session_factory,
        threshold=get_settings().karma_auto_claim_daily_threshold if threshold is None else threshold,
        unit_name=unit_name,
        runtime=runtime,
    )


async def run_monthly_claim(
    *,
    session_factory: SessionFactory,
    threshold: int | None = None,
    unit_name: str | None = None,
    runtime: RewardsRuntime | None = None,
) -> Dict[str, Any]:
    """Settle every wallet above the monthly auto-claim threshold."""

    return await _run_claim(
        "monthly",
        session_factory=session_factory,
        threshold=get_settings().karma_auto_claim_monthly_threshold if threshold is None else threshold,
        unit_name=unit_name,
        runtime=runtime,
    )


async def run_force_claim(
    *,
    session_factory: SessionFactory,
    threshold: int,
    unit_name: str | None = None,
    runtime: RewardsRuntime | None = None,
) -> Dict[str, Any]:
    """Operator-triggered claim with an explicit threshold."""

    async with rewards_runtime(session_factory, runtime) as active:
        unit = unit_name or active.settings.karma_asset_unit_name
        asset = await active.service.resolve_asset(unit)
        summary = await active.service.force_claim(asset.asset_id, threshold)
        payload = {"claim": "force", "unit_name": unit, **summary.as_dict()}
        logger.bind(summary=payload).info("Force claim finished")
        return payload


__all__ = ["rewards_runtime", "run_daily_claim", "run_force_claim", "run_monthly_claim"]
