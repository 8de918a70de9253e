"""Entry points that credit rewards and trigger settlement."""

from __future__ import annotations

from loguru import logger

from karma_rewards.blockchain.client import AlgorandClient
from karma_rewards.blockchain.types import SettlementResult
from karma_rewards.errors import (
    LedgerUnderflowError,
    OptInRequiredError,
    RecordNotFoundError,
    SettlementInProgressError,
    TransferValidationError,
)
from karma_rewards.models import RewardAsset, RewardRecord
from karma_rewards.services.cache import RunLease
from karma_rewards.services.rewards.ledger import LedgerStore
from karma_rewards.services.rewards.settlement import SettlementEngine, SettlementRunSummary
from karma_rewards.services.rewards.wallet_selection import WalletRole, WalletSelector


class RewardsService:
    """Settlement trigger surface used by commands, jobs and operators."""

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        client: AlgorandClient,
        selector: WalletSelector,
        engine: SettlementEngine,
        lease: RunLease,
    ) -> None:
        self._ledger = ledger
        self._client = client
        self._selector = selector
        self._engine = engine
        self._lease = lease

    async def resolve_asset(self, unit_name: str) -> RewardAsset:
        asset = await self._ledger.get_asset_by_unit_name(unit_name)
        if asset is None:
            raise RecordNotFoundError(f"Reward asset {unit_name!r} is not registered")
        return asset

    async def sync_wallet(self, user_id: str, wallet_address: str) -> list[RewardRecord]:
        """Record the on-chain opt-in status of a wallet for every registered asset."""

        await self._client.invalidate_holdings(wallet_address)
        records: list[RewardRecord] = []
        for asset in await self._ledger.list_assets():
            status = await self._client.get_opt_in_status(wallet_address, asset.asset_id)
            records.append(
                await self._ledger.sync_wallet(
                    user_id,
                    wallet_address,
                    asset.asset_id,
                    opted_in=status.opted_in,
                    converted_tokens=status.balance,
                )
            )
        logger.info("Wallet synced", user_id=user_id, wallet_address=wallet_address, assets=len(records))
        return records

    async def issue_temporary_tokens(self, user_id: str, asset_id: int, amount: int) -> int:
        """Credit unclaimed tokens to the user's best receiving wallet.

        Returns the wallet's new unclaimed balance.
        """

        if amount < 0:
            raise TransferValidationError(f"Cannot issue a negative amount ({amount})")
        wallet = await self._selector.select_wallet(user_id, asset_id, WalletRole.RECEIVER)
        if wallet is None:
            raise OptInRequiredError(user_id, asset_id)
        if amount == 0:
            return wallet.unclaimed
        balance = await self._ledger.increment_temporary(user_id, wallet.wallet_address, asset_id, amount)
        logger.info(
            "Issued temporary tokens",
            user_id=user_id,
            wallet_address=wallet.wallet_address,
            asset_id=asset_id,
            amount=amount,
            balance=balance,
        )
        return balance

    async def claim_for_user(self, user_id: str, asset_id: int) -> list[SettlementResult]:
        """Settle every opted-in wallet of ``user_id`` with an individual transfer.

        Each amount is reserved before submission and credited back when the
        transfer fails. The asset's lease is held for the duration of the
        claim so that no automated run can overlap with it.
        """

        token = await self._lease.acquire(asset_id)
        if token is None:
            raise SettlementInProgressError(asset_id)
        try:
            opted_in = {
                candidate.wallet_address
                for candidate in await self._selector.opted_in_wallets(user_id, asset_id)
            }
            if not opted_in:
                raise OptInRequiredError(user_id, asset_id)

            results: list[SettlementResult] = []
            for record in await self._ledger.find_above_threshold(asset_id, 0, user_id):
                if record.wallet_address not in opted_in:
                    logger.info(
                        "Skipping claim for wallet without opt-in",
                        user_id=user_id,
                        wallet_address=record.wallet_address,
                        asset_id=asset_id,
                    )
                    continue
                amount = int(record.temporary_tokens)
                results.append(await self._claim_wallet(user_id, record.wallet_address, asset_id, amount))
            return results
        finally:
            await self._lease.release(asset_id, token)

    async def _claim_wallet(self, user_id: str, wallet_address: str, asset_id: int, amount: int) -> SettlementResult:
        try:
            await self._ledger.increment_temporary(user_id, wallet_address, asset_id, -amount)
        except LedgerUnderflowError as exc:
            logger.warning("Unclaimed balance changed before reservation", wallet_address=wallet_address, error=str(exc))
            return SettlementResult.failed(str(exc), amount=amount)

        try:
            result = await self._client.claim_token(asset_id, amount, wallet_address)
        except TransferValidationError as exc:
            result = SettlementResult.failed(str(exc), amount=amount)
        except BaseException as exc:
            # Nothing was confirmed; the reservation must not outlive the attempt.
            await self._ledger.increment_temporary(user_id, wallet_address, asset_id, amount)
            logger.error(
                "User claim aborted; unclaimed balance restored",
                claim=f"{wallet_address} -- {amount} -- {user_id}",
                asset_id=asset_id,
                error=repr(exc),
            )
            raise
        if not result.succeeded:
            await self._ledger.increment_temporary(user_id, wallet_address, asset_id, amount)
            logger.error(
                "User claim failed; unclaimed balance restored",
                claim=f"{wallet_address} -- {amount} -- {user_id}",
                asset_id=asset_id,
                error=result.error,
            )
            return result

        await self._engine.resync_wallet(user_id, wallet_address, asset_id)
        logger.info(
            "User claim settled",
            user_id=user_id,
            wallet_address=wallet_address,
            asset_id=asset_id,
            amount=amount,
            transaction_id=result.transaction_id,
        )
        return result

    async def run_scheduled_claim(self, asset_id: int, threshold: int) -> SettlementRunSummary:
        return await self._engine.settle_asset(asset_id, threshold)

    async def force_claim(self, asset_id: int, threshold: int) -> SettlementRunSummary:
        logger.warning("Administrative force claim requested", asset_id=asset_id, threshold=threshold)
        return await self._engine.settle_asset(asset_id, threshold)

    async def tip_tokens(self, asset_id: int, amount: int, *, sender_user_id: str, receiver_user_id: str) -> SettlementResult:
        """Move tokens between two users' wallets through a revocation transfer."""

        _require_positive(amount)
        sender = await self._selector.select_wallet(sender_user_id, asset_id, WalletRole.SENDER)
        if sender is None:
            raise OptInRequiredError(sender_user_id, asset_id)
        receiver = await self._selector.select_wallet(receiver_user_id, asset_id, WalletRole.RECEIVER)
        if receiver is None:
            raise OptInRequiredError(receiver_user_id, asset_id)

        result = await self._client.tip_token(asset_id, amount, receiver.wallet_address, sender.wallet_address)
        if result.succeeded:
            await self._engine.resync_wallet(sender_user_id, sender.wallet_address, asset_id)
            await self._engine.resync_wallet(receiver_user_id, receiver.wallet_address, asset_id)
        return result

    async def purchase_item(self, user_id: str, asset_id: int, amount: int) -> SettlementResult:
        """Charge ``amount`` from the user's best funded wallet."""

        _require_positive(amount)
        sender = await self._selector.select_wallet(user_id, asset_id, WalletRole.SENDER)
        if sender is None:
            raise OptInRequiredError(user_id, asset_id)
        result = await self._client.purchase_item(asset_id, amount, sender.wallet_address)
        if result.succeeded:
            await self._engine.resync_wallet(user_id, sender.wallet_address, asset_id)
        return result


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise TransferValidationError(f"Transfer amount must be positive, got {amount}")


__all__ = ["RewardsService"]
