#!/usr/bin/env python3
"""Run an administrative force claim for one reward asset.

Settles every wallet whose unclaimed balance exceeds the given threshold,
using the same lease-guarded pipeline as the scheduled claims.

Example:
    python tooling/scripts/run_force_claim.py --unit-name KRMA --threshold 100

Use `--list-assets` to print the registered reward assets and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Force a reward settlement run")
    parser.add_argument("--unit-name", default=None, help="Asset unit name (defaults to the karma asset).")
    parser.add_argument(
        "--threshold",
        type=int,
        default=0,
        help="Settle wallets holding strictly more unclaimed tokens than this.",
    )
    parser.add_argument(
        "--list-assets",
        action="store_true",
        help="Print registered reward assets instead of claiming.",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    rewards_src = repo_root / "apps" / "rewards" / "src"
    if str(rewards_src) not in sys.path:
        sys.path.insert(0, str(rewards_src))

    from karma_rewards.db.session import async_session, engine  # type: ignore import-position
    from karma_rewards.jobs.rewards import run_force_claim  # type: ignore import-position
    from karma_rewards.services.rewards import LedgerStore  # type: ignore import-position

    try:
        if args.list_assets:
            assets = await LedgerStore(async_session).list_assets()
            return {
                "assets": [
                    {"asset_id": asset.asset_id, "name": asset.name, "unit_name": asset.unit_name}
                    for asset in assets
                ]
            }
        return await run_force_claim(
            session_factory=async_session,
            threshold=args.threshold,
            unit_name=args.unit_name,
        )
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    if args.threshold < 0:
        logger.error("Threshold must not be negative", threshold=args.threshold)
        return 2
    summary = asyncio.run(_run(args))
    print(json.dumps(summary, indent=2, default=str))
    if args.list_assets:
        return 0
    if summary.get("groups_failed"):
        logger.warning("Force claim finished with failed groups", groups_failed=summary["groups_failed"])
        return 1
    logger.success("Force claim completed", total_settled=summary.get("total_settled"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
