"""Reward job exports."""

from .balances import run_network_balance_check  # noqa: F401
from .claims import run_daily_claim, run_force_claim, run_monthly_claim  # noqa: F401

__all__ = [
    "run_daily_claim",
    "run_force_claim",
    "run_monthly_claim",
    "run_network_balance_check",
]
