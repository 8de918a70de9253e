"""Claim account balance monitoring and karma replenishment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence

from loguru import logger

from karma_rewards.blockchain.client import AlgorandClient
from karma_rewards.blockchain.types import SettlementResult
from karma_rewards.errors import TransferValidationError
from karma_rewards.models import RewardAsset
from karma_rewards.services.notifications import Notifier


@dataclass(frozen=True, slots=True)
class BalanceRule:
    """Low-balance threshold for one asset, optionally with automatic top-up."""

    unit_name: str
    low_amount: int
    replenish_amount: int = 0


@dataclass(slots=True)
class BalanceCheckResult:
    unit_name: str
    asset_id: int | None
    balance: int | None = None
    low: bool = False
    replenish: SettlementResult | None = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "unit_name": self.unit_name,
            "asset_id": self.asset_id,
            "balance": self.balance,
            "low": self.low,
        }
        if self.replenish is not None:
            payload["replenish"] = {
                "transaction_id": self.replenish.transaction_id,
                "error": self.replenish.error,
            }
        return payload


class NetworkBalanceMonitor:
    """Alert operators when the claim account runs low, and top it up."""

    def __init__(
        self,
        client: AlgorandClient,
        notifier: Notifier,
        *,
        replenish_address: str | None = None,
    ) -> None:
        self._client = client
        self._notifier = notifier
        self._replenish_address = replenish_address

    async def check(self, assets: Sequence[RewardAsset], rules: Sequence[BalanceRule]) -> list[BalanceCheckResult]:
        by_unit = {asset.unit_name: asset for asset in assets}
        results: list[BalanceCheckResult] = []
        for rule in rules:
            asset = by_unit.get(rule.unit_name)
            if asset is None:
                logger.warning("Balance rule references an unregistered asset", unit_name=rule.unit_name)
                results.append(BalanceCheckResult(unit_name=rule.unit_name, asset_id=None))
                continue
            results.append(await self._check_asset(asset, rule))
        return results

    async def _check_asset(self, asset: RewardAsset, rule: BalanceRule) -> BalanceCheckResult:
        claim_address = self._client.accounts.claim.address
        await self._client.invalidate_holdings(claim_address)
        status = await self._client.get_opt_in_status(claim_address, asset.asset_id)
        result = BalanceCheckResult(unit_name=rule.unit_name, asset_id=asset.asset_id, balance=status.balance)
        if status.balance >= rule.low_amount:
            return result

        result.low = True
        logger.warning(
            "Claim account balance is low",
            asset_id=asset.asset_id,
            unit_name=asset.unit_name,
            balance=status.balance,
            threshold=rule.low_amount,
        )
        await self._notifier.notify(
            f"{asset.name} tokens are low: {status.balance:,} left (threshold {rule.low_amount:,})",
            level="alert",
        )
        if rule.replenish_amount > 0:
            result.replenish = await self.replenish(asset, rule.replenish_amount)
        return result

    async def replenish(self, asset: RewardAsset, amount: int) -> SettlementResult:
        """Claw ``amount`` from the replenish account into the claim account."""

        if not self._replenish_address:
            logger.error("Replenish token address is not configured", asset_id=asset.asset_id)
            return SettlementResult.failed("Replenish token account not configured", amount=amount)

        claim_address = self._client.accounts.claim.address
        await self._notifier.notify(
            f"Attempting to replenish {asset.name} tokens from {self._replenish_address} -- amount {amount:,}"
        )
        try:
            result = await self._client.tip_token(asset.asset_id, amount, claim_address, self._replenish_address)
        except TransferValidationError as exc:
            result = SettlementResult.failed(str(exc), amount=amount)

        if result.succeeded:
            await self._notifier.notify(
                f"Replenished {asset.name} tokens -- txn {result.transaction_id} -- amount {amount:,}"
            )
        else:
            await self._notifier.notify(f"Failed to replenish {asset.name} tokens: {result.error}", level="alert")
        return result


__all__ = ["BalanceCheckResult", "BalanceRule", "NetworkBalanceMonitor"]
