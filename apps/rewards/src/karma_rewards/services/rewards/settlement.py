"""Settlement engine: turn unclaimed balances into confirmed asset transfers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Sequence

from loguru import logger
from opentelemetry import trace

from karma_rewards.blockchain.client import MAX_GROUP_SIZE, AlgorandClient
from karma_rewards.blockchain.types import ClaimItem, SettlementResult
from karma_rewards.errors import (
    LedgerUnderflowError,
    RecordNotFoundError,
    RewardsError,
    TransferValidationError,
)
from karma_rewards.observability.settlement import SettlementObservabilityStore, get_settlement_store
from karma_rewards.services.cache import RunLease
from karma_rewards.services.notifications import Notifier
from karma_rewards.services.rewards.ledger import LedgerStore
from karma_rewards.services.rewards.wallet_selection import WalletSelector

tracer = trace.get_tracer(__name__)


class SettlementState(str, Enum):
    IDLE = "idle"
    LOCKED = "locked"
    CHUNKING = "chunking"
    SUBMITTING = "submitting"
    RECONCILING = "reconciling"


@dataclass(slots=True)
class SettlementRunSummary:
    """Outcome of one settlement run for a single asset."""

    asset_id: int
    threshold: int | None = None
    skipped: bool = False
    claims_enqueued: int = 0
    opt_in_skipped: int = 0
    groups_submitted: int = 0
    groups_succeeded: int = 0
    groups_failed: int = 0
    total_settled: int = 0
    transaction_ids: list[str] = field(default_factory=list)
    failed_items: list[str] = field(default_factory=list)
    reconciliation_errors: list[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "threshold": self.threshold,
            "skipped": self.skipped,
            "claims_enqueued": self.claims_enqueued,
            "opt_in_skipped": self.opt_in_skipped,
            "groups_submitted": self.groups_submitted,
            "groups_succeeded": self.groups_succeeded,
            "groups_failed": self.groups_failed,
            "total_settled": self.total_settled,
            "transaction_ids": list(self.transaction_ids),
            "failed_items": list(self.failed_items),
            "reconciliation_errors": list(self.reconciliation_errors),
        }


def chunk_claims(items: Sequence[ClaimItem], size: int = MAX_GROUP_SIZE) -> list[list[ClaimItem]]:
    """Split ``items`` into consecutive groups of at most ``size``, preserving order."""

    if size < 1:
        raise ValueError("Group size must be positive")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class SettlementEngine:
    """Settle unclaimed balances for an asset through atomic transfer groups.

    Automated runs hold the asset's :class:`RunLease` for their whole
    duration. Each group is all-or-nothing: a confirmed group decrements
    every member's record by the amount snapshotted at enqueue time, a failed
    group leaves the ledger untouched. Groups are independent of each other.
    """

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        client: AlgorandClient,
        selector: WalletSelector,
        lease: RunLease,
        notifier: Notifier,
        observability: SettlementObservabilityStore | None = None,
        max_group_size: int | None = None,
    ) -> None:
        self._ledger = ledger
        self._client = client
        self._selector = selector
        self._lease = lease
        self._notifier = notifier
        self._observability = observability or get_settlement_store()
        self._max_group_size = min(max_group_size or client.max_group_size, MAX_GROUP_SIZE)
        self._states: dict[int, SettlementState] = {}

    def state(self, asset_id: int) -> SettlementState:
        return self._states.get(asset_id, SettlementState.IDLE)

    def _transition(self, asset_id: int, state: SettlementState) -> None:
        self._states[asset_id] = state
        logger.debug("Settlement state changed", asset_id=asset_id, state=state.value)

    async def enqueue(
        self,
        asset_id: int,
        threshold: int,
        user_id: str | None = None,
    ) -> tuple[list[ClaimItem], int]:
        """Snapshot records above ``threshold`` whose wallet is opted into the asset.

        Returns the claim items and the number of records skipped because the
        wallet is not among the user's opted-in wallets.
        """

        records = await self._ledger.find_above_threshold(asset_id, threshold, user_id)
        opted_in: dict[str, set[str]] = {}
        items: list[ClaimItem] = []
        skipped = 0
        for record in records:
            owner = record.user_id
            if owner not in opted_in:
                try:
                    candidates = await self._selector.opted_in_wallets(owner, asset_id)
                except RewardsError as exc:
                    logger.warning(
                        "Could not resolve opted-in wallets; skipping user",
                        user_id=owner,
                        asset_id=asset_id,
                        error=str(exc),
                    )
                    candidates = []
                opted_in[owner] = {candidate.wallet_address for candidate in candidates}

            if record.wallet_address not in opted_in[owner]:
                skipped += 1
                logger.info(
                    "Skipping claim for wallet without opt-in",
                    wallet_address=record.wallet_address,
                    user_id=owner,
                    asset_id=asset_id,
                    amount=record.temporary_tokens,
                )
                continue
            items.append(
                ClaimItem(
                    wallet_address=record.wallet_address,
                    amount=int(record.temporary_tokens),
                    user_id=owner,
                )
            )
        return items, skipped

    async def settle_asset(
        self,
        asset_id: int,
        threshold: int,
        *,
        user_id: str | None = None,
    ) -> SettlementRunSummary:
        """Run the full pipeline for one asset under its settlement lease."""

        summary = SettlementRunSummary(asset_id=asset_id, threshold=threshold)
        token = await self._lease.acquire(asset_id)
        if token is None:
            summary.skipped = True
            self._observability.record_skipped_run(asset_id)
            logger.info("Settlement skipped, already running", asset_id=asset_id, threshold=threshold)
            return summary

        with tracer.start_as_current_span("settlement.run") as span:
            span.set_attribute("rewards.asset_id", asset_id)
            span.set_attribute("rewards.threshold", threshold)
            try:
                self._transition(asset_id, SettlementState.LOCKED)
                self._observability.record_run(asset_id)
                items, skipped = await self.enqueue(asset_id, threshold, user_id)
                summary.opt_in_skipped = skipped
                self._observability.record_opt_in_skips(asset_id, skipped)
                await self.settle(items, asset_id, summary=summary)
                span.set_attribute("rewards.total_settled", summary.total_settled)
            except Exception as exc:
                span.record_exception(exc)
                await self._notifier.notify(
                    f"Settlement run for asset {asset_id} crashed after {summary.groups_succeeded} "
                    f"settled group(s): {exc}",
                    level="alert",
                )
                raise
            finally:
                await self._lease.release(asset_id, token)
                self._transition(asset_id, SettlementState.IDLE)

        await self._notify(summary)
        logger.bind(summary=summary.as_dict()).info("Settlement run finished")
        return summary

    async def settle(
        self,
        items: Sequence[ClaimItem],
        asset_id: int,
        *,
        summary: SettlementRunSummary | None = None,
    ) -> SettlementRunSummary:
        """Submit ``items`` and reconcile the ledger. The caller must hold the lease."""

        summary = summary or SettlementRunSummary(asset_id=asset_id)
        summary.claims_enqueued = len(items)
        if not items:
            logger.info("No claims to settle", asset_id=asset_id)
            return summary

        if len(items) == 1:
            await self._settle_group(asset_id, 0, list(items), summary, single=True)
            return summary

        self._transition(asset_id, SettlementState.CHUNKING)
        groups = chunk_claims(items, self._max_group_size)
        logger.info("Settling claims in atomic groups", asset_id=asset_id, claims=len(items), groups=len(groups))
        outcomes = await asyncio.gather(
            *(self._settle_group(asset_id, index, group, summary) for index, group in enumerate(groups)),
            return_exceptions=True,
        )
        unexpected = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        for error in unexpected:
            logger.opt(exception=error).error("Settlement group crashed", asset_id=asset_id)
        if unexpected:
            raise unexpected[0]
        return summary

    async def _settle_group(
        self,
        asset_id: int,
        index: int,
        group: list[ClaimItem],
        summary: SettlementRunSummary,
        *,
        single: bool = False,
    ) -> SettlementResult:
        self._transition(asset_id, SettlementState.SUBMITTING)
        amount = sum(item.amount for item in group)
        summary.groups_submitted += 1
        try:
            if single:
                item = group[0]
                result = await self._client.claim_token(asset_id, item.amount, item.wallet_address)
            else:
                result = await self._client.build_and_submit_group(group, asset_id)
        except TransferValidationError as exc:
            result = SettlementResult.failed(str(exc), amount=amount)

        if not result.succeeded:
            summary.groups_failed += 1
            self._observability.record_group(
                asset_id, succeeded=False, items=len(group), amount=amount, error=result.error
            )
            for item in group:
                summary.failed_items.append(item.describe())
                logger.error(
                    "Claim failed: {claim}",
                    claim=item.describe(),
                    asset_id=asset_id,
                    group=index,
                    error=result.error,
                )
            return result

        self._transition(asset_id, SettlementState.RECONCILING)
        summary.groups_succeeded += 1
        summary.total_settled += amount
        if result.transaction_id:
            summary.transaction_ids.append(result.transaction_id)
        self._observability.record_group(asset_id, succeeded=True, items=len(group), amount=amount)
        for item in group:
            await self._reconcile(asset_id, item, summary)
        logger.info(
            "Claimed {total} tokens for {wallets} wallets",
            total=amount,
            wallets=len(group),
            asset_id=asset_id,
            group=index,
            transaction_id=result.transaction_id,
            confirmed_round=result.confirmed_round,
        )
        return result

    async def _reconcile(self, asset_id: int, item: ClaimItem, summary: SettlementRunSummary) -> None:
        try:
            await self._ledger.increment_temporary(item.user_id, item.wallet_address, asset_id, -item.amount)
        except (LedgerUnderflowError, RecordNotFoundError) as exc:
            message = f"{item.describe()}: {exc}"
            summary.reconciliation_errors.append(message)
            self._observability.record_reconciliation_error(asset_id, message)
            logger.error("Ledger reconciliation failed after confirmed transfer", claim=item.describe(), error=str(exc))
            await self._notifier.notify(
                f"Ledger mismatch after confirmed settlement of asset {asset_id}: {message}",
                level="alert",
            )
        await self.resync_wallet(item.user_id, item.wallet_address, asset_id)

    async def resync_wallet(self, user_id: str, wallet_address: str, asset_id: int) -> None:
        """Refresh the stored on-chain view of a wallet after a transfer."""

        await self._client.invalidate_holdings(wallet_address)
        try:
            status = await self._client.get_opt_in_status(wallet_address, asset_id)
        except RewardsError as exc:
            logger.warning("Wallet re-sync failed", wallet_address=wallet_address, asset_id=asset_id, error=str(exc))
            return
        await self._ledger.sync_wallet(
            user_id,
            wallet_address,
            asset_id,
            opted_in=status.opted_in,
            converted_tokens=status.balance,
        )

    async def _notify(self, summary: SettlementRunSummary) -> None:
        if summary.groups_failed or summary.reconciliation_errors:
            lines = [
                f"Settlement for asset {summary.asset_id} finished with "
                f"{summary.groups_failed} failed group(s) and "
                f"{len(summary.reconciliation_errors)} reconciliation error(s)",
            ]
            lines.extend(f"- {entry}" for entry in summary.failed_items)
            lines.extend(f"- {entry}" for entry in summary.reconciliation_errors)
            await self._notifier.notify("\n".join(lines), level="alert")
        elif summary.total_settled:
            await self._notifier.notify(
                f"Settled {summary.total_settled} tokens of asset {summary.asset_id} "
                f"across {summary.claims_enqueued} wallet(s)",
            )


__all__ = [
    "SettlementEngine",
    "SettlementRunSummary",
    "SettlementState",
    "chunk_claims",
]
