"""Pick which of a user's wallets sends or receives an asset."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from karma_rewards.blockchain.client import AlgorandClient
from karma_rewards.services.rewards.ledger import LedgerStore


class WalletRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


@dataclass(frozen=True, slots=True)
class WalletCandidate:
    wallet_address: str
    on_chain_balance: int
    unclaimed: int

    @property
    def total(self) -> int:
        return self.on_chain_balance + self.unclaimed


class WalletSelector:
    """Deterministic wallet choice based on opt-in status and balances.

    Receivers are ranked by on-chain plus unclaimed balance, senders by
    on-chain balance alone. Ties keep the first wallet in address order.
    """

    def __init__(self, ledger: LedgerStore, client: AlgorandClient) -> None:
        self._ledger = ledger
        self._client = client

    async def opted_in_wallets(self, user_id: str, asset_id: int) -> list[WalletCandidate]:
        records = {record.wallet_address: record for record in await self._ledger.list_user_records(user_id, asset_id)}
        candidates: list[WalletCandidate] = []
        for wallet_address in await self._ledger.wallets_for_user(user_id):
            status = await self._client.get_opt_in_status(wallet_address, asset_id)
            if not status.opted_in:
                continue
            record = records.get(wallet_address)
            candidates.append(
                WalletCandidate(
                    wallet_address=wallet_address,
                    on_chain_balance=status.balance,
                    unclaimed=int(record.temporary_tokens) if record is not None else 0,
                )
            )
        return candidates

    async def select_wallet(self, user_id: str, asset_id: int, role: WalletRole) -> WalletCandidate | None:
        candidates = await self.opted_in_wallets(user_id, asset_id)
        if not candidates:
            logger.info("User has no opted-in wallet", user_id=user_id, asset_id=asset_id, role=role.value)
            return None

        best = candidates[0]
        for candidate in candidates[1:]:
            if _score(candidate, role) > _score(best, role):
                best = candidate
        return best


def _score(candidate: WalletCandidate, role: WalletRole) -> int:
    if role is WalletRole.SENDER:
        return candidate.on_chain_balance
    return candidate.total


__all__ = ["WalletCandidate", "WalletRole", "WalletSelector"]
