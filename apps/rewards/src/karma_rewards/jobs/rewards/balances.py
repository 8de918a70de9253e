"""Daily check of the claim account's network balances."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from karma_rewards.jobs.rewards.claims import rewards_runtime
from karma_rewards.runtime import RewardsRuntime
from karma_rewards.services.rewards.ledger import SessionFactory

# meta: job: reward-network-balances


async def run_network_balance_check(
    *,
    session_factory: SessionFactory,
    runtime: RewardsRuntime | None = None,
) -> Dict[str, Any]:
    """Alert on low claim account balances and replenish karma when configured."""

    async with rewards_runtime(session_factory, runtime) as active:
        assets = await active.ledger.list_assets()
        results = await active.balance_monitor.check(assets, active.balance_rules)
        summary = {
            "checked": len(results),
            "low": sum(1 for result in results if result.low),
            "assets": [result.as_dict() for result in results],
        }
        logger.bind(summary=summary).info("Network balance check finished")
        return summary


__all__ = ["run_network_balance_check"]
