"""Reward ledger, settlement engine and trigger surface."""

from .ledger import LedgerStore
from .replenish import BalanceCheckResult, BalanceRule, NetworkBalanceMonitor
from .service import RewardsService
from .settlement import SettlementEngine, SettlementRunSummary, SettlementState, chunk_claims
from .wallet_selection import WalletCandidate, WalletRole, WalletSelector

__all__ = [
    "BalanceCheckResult",
    "BalanceRule",
    "LedgerStore",
    "NetworkBalanceMonitor",
    "RewardsService",
    "SettlementEngine",
    "SettlementRunSummary",
    "SettlementState",
    "WalletCandidate",
    "WalletRole",
    "WalletSelector",
    "chunk_claims",
]
