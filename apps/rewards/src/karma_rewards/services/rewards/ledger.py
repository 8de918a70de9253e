"""Persisted reward ledger: unclaimed and converted balances per wallet."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from karma_rewards.errors import LedgerUnderflowError, RecordNotFoundError
from karma_rewards.models import RewardAsset, RewardRecord

SessionFactory = Callable[[], AsyncSession]


class LedgerStore:
    """Atomic operations over :class:`RewardRecord` rows.

    Each call runs in its own session and commits before returning, so the
    store can be shared by concurrently settling groups.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # Assets

    async def register_asset(self, asset_id: int, *, name: str, unit_name: str, decimals: int = 0) -> RewardAsset:
        async with self._session_factory() as session:
            asset = await session.get(RewardAsset, asset_id)
            if asset is None:
                asset = RewardAsset(asset_id=asset_id, name=name, unit_name=unit_name, decimals=decimals)
                session.add(asset)
            else:
                asset.name = name
                asset.unit_name = unit_name
                asset.decimals = decimals
            await session.commit()
            return asset

    async def get_asset(self, asset_id: int) -> RewardAsset | None:
        async with self._session_factory() as session:
            return await session.get(RewardAsset, asset_id)

    async def get_asset_by_unit_name(self, unit_name: str) -> RewardAsset | None:
        async with self._session_factory() as session:
            result = await session.execute(select(RewardAsset).where(RewardAsset.unit_name == unit_name))
            return result.scalar_one_or_none()

    async def list_assets(self) -> list[RewardAsset]:
        async with self._session_factory() as session:
            result = await session.execute(select(RewardAsset).order_by(RewardAsset.asset_id))
            return list(result.scalars().all())

    # Records

    async def find_record(self, wallet_address: str, asset_id: int) -> RewardRecord | None:
        async with self._session_factory() as session:
            return await self._load(session, wallet_address, asset_id)

    async def list_user_records(self, user_id: str, asset_id: int | None = None) -> list[RewardRecord]:
        stmt = select(RewardRecord).where(RewardRecord.user_id == user_id)
        if asset_id is not None:
            stmt = stmt.where(RewardRecord.asset_id == asset_id)
        stmt = stmt.order_by(RewardRecord.created_at, RewardRecord.wallet_address)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_above_threshold(
        self,
        asset_id: int,
        threshold: int,
        user_id: str | None = None,
    ) -> list[RewardRecord]:
        """Return records whose unclaimed balance is strictly greater than ``threshold``."""

        stmt = select(RewardRecord).where(
            RewardRecord.asset_id == asset_id,
            RewardRecord.temporary_tokens > threshold,
        )
        if user_id is not None:
            stmt = stmt.where(RewardRecord.user_id == user_id)
        stmt = stmt.order_by(RewardRecord.created_at, RewardRecord.wallet_address)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def increment_temporary(self, user_id: str, wallet_address: str, asset_id: int, delta: int) -> int:
        """Apply ``delta`` to a record's unclaimed balance and return the new value.

        Positive deltas create the record when it does not exist yet. Negative
        deltas are applied with a conditional update and raise
        :class:`LedgerUnderflowError` instead of driving the balance below zero.
        """

        async with self._session_factory() as session:
            if delta < 0:
                return await self._decrement(session, wallet_address, asset_id, delta)

            stmt = (
                update(RewardRecord)
                .where(RewardRecord.wallet_address == wallet_address, RewardRecord.asset_id == asset_id)
                .values(temporary_tokens=RewardRecord.temporary_tokens + delta)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                session.add(
                    RewardRecord(
                        user_id=user_id,
                        wallet_address=wallet_address,
                        asset_id=asset_id,
                        temporary_tokens=delta,
                    )
                )
                try:
                    await session.flush()
                except IntegrityError:
                    # Another writer created the row first.
                    await session.rollback()
                    await session.execute(stmt)
            await session.commit()
            return await self._current_amount(session, wallet_address, asset_id)

    async def _decrement(self, session: AsyncSession, wallet_address: str, asset_id: int, delta: int) -> int:
        stmt = (
            update(RewardRecord)
            .where(
                RewardRecord.wallet_address == wallet_address,
                RewardRecord.asset_id == asset_id,
                RewardRecord.temporary_tokens + delta >= 0,
            )
            .values(temporary_tokens=RewardRecord.temporary_tokens + delta)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            await session.rollback()
            record = await self._load(session, wallet_address, asset_id)
            if record is None:
                raise RecordNotFoundError(f"No reward record for {wallet_address} (asset {asset_id})")
            logger.error(
                "Ledger decrement refused",
                wallet_address=wallet_address,
                asset_id=asset_id,
                delta=delta,
                current=record.temporary_tokens,
            )
            raise LedgerUnderflowError(wallet_address, asset_id, delta=delta, current=record.temporary_tokens)
        await session.commit()
        return await self._current_amount(session, wallet_address, asset_id)

    async def sync_wallet(
        self,
        user_id: str,
        wallet_address: str,
        asset_id: int,
        *,
        opted_in: bool,
        converted_tokens: int,
    ) -> RewardRecord:
        """Store the latest on-chain view of a wallet, creating the record if needed."""

        async with self._session_factory() as session:
            record = await self._load(session, wallet_address, asset_id)
            if record is None:
                record = RewardRecord(user_id=user_id, wallet_address=wallet_address, asset_id=asset_id)
                session.add(record)
            record.opted_in = opted_in
            record.converted_tokens = max(converted_tokens, 0)
            record.last_synced_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(record)
            return record

    async def wallets_for_user(self, user_id: str) -> list[str]:
        stmt = (
            select(RewardRecord.wallet_address)
            .where(RewardRecord.user_id == user_id)
            .distinct()
            .order_by(RewardRecord.wallet_address)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def _load(session: AsyncSession, wallet_address: str, asset_id: int) -> RewardRecord | None:
        result = await session.execute(
            select(RewardRecord).where(
                RewardRecord.wallet_address == wallet_address,
                RewardRecord.asset_id == asset_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _current_amount(session: AsyncSession, wallet_address: str, asset_id: int) -> int:
        result = await session.execute(
            select(RewardRecord.temporary_tokens).where(
                RewardRecord.wallet_address == wallet_address,
                RewardRecord.asset_id == asset_id,
            )
        )
        return int(result.scalar_one())


__all__ = ["LedgerStore", "SessionFactory"]
