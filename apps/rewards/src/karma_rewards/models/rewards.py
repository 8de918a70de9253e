"""Reward ledger domain models."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    false,
    func,
)
from sqlalchemy.orm import relationship

from karma_rewards.db.base import Base


class RewardAsset(Base):
    """Standard asset whose balances the ledger tracks."""

    __tablename__ = "reward_assets"

    asset_id = Column(BigInteger, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    unit_name = Column(String, nullable=False, unique=True, index=True)
    decimals = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    records = relationship("RewardRecord", back_populates="asset")


class RewardRecord(Base):
    """Unclaimed and converted token amounts for one wallet and asset."""

    __tablename__ = "reward_records"
    __table_args__ = (
        UniqueConstraint("wallet_address", "asset_id", name="uq_reward_records_wallet_asset"),
        CheckConstraint("temporary_tokens >= 0", name="ck_reward_records_temporary_non_negative"),
        CheckConstraint("converted_tokens >= 0", name="ck_reward_records_converted_non_negative"),
        Index("ix_reward_records_asset_temporary", "asset_id", "temporary_tokens"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String, nullable=False, index=True)
    wallet_address = Column(String(58), nullable=False)
    asset_id = Column(
        BigInteger,
        ForeignKey("reward_assets.asset_id", ondelete="CASCADE"),
        nullable=False,
    )
    temporary_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    converted_tokens = Column(BigInteger, nullable=False, default=0, server_default="0")
    opted_in = Column(Boolean, nullable=False, default=False, server_default=false())
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    asset = relationship("RewardAsset", back_populates="records")
