"""Reward asset registry and ledger records.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "reward_assets",
        sa.Column("asset_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("unit_name", sa.String(), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reward_assets_unit_name", "reward_assets", ["unit_name"], unique=True)

    op.create_table(
        "reward_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("wallet_address", sa.String(length=58), nullable=False),
        sa.Column(
            "asset_id",
            sa.BigInteger(),
            sa.ForeignKey("reward_assets.asset_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("temporary_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("converted_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("opted_in", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("wallet_address", "asset_id", name="uq_reward_records_wallet_asset"),
        sa.CheckConstraint("temporary_tokens >= 0", name="ck_reward_records_temporary_non_negative"),
        sa.CheckConstraint("converted_tokens >= 0", name="ck_reward_records_converted_non_negative"),
    )
    op.create_index("ix_reward_records_user_id", "reward_records", ["user_id"])
    op.create_index("ix_reward_records_asset_temporary", "reward_records", ["asset_id", "temporary_tokens"])


def downgrade() -> None:
    op.drop_index("ix_reward_records_asset_temporary", table_name="reward_records")
    op.drop_index("ix_reward_records_user_id", table_name="reward_records")
    op.drop_table("reward_records")
    op.drop_index("ix_reward_assets_unit_name", table_name="reward_assets")
    op.drop_table("reward_assets")
