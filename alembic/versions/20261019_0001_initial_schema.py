"""Initial schema: positions, wallets and processing errors.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

from copytrade_tracker.storage.types import ExactDecimal

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Open positions, one per (wallet, token_mint)
    op.create_table(
        "positions",
        sa.Column("wallet", sa.String(64), nullable=False),
        sa.Column("token_mint", sa.String(64), nullable=False),
        sa.Column("quantity", ExactDecimal(), nullable=False),
        sa.Column("cost_basis_usd", ExactDecimal(), nullable=False),
        sa.Column("average_buy_price_sol", ExactDecimal(), nullable=False),
        sa.Column("buy_count", sa.Integer(), nullable=False),
        sa.Column("sell_count", sa.Integer(), nullable=False),
        sa.Column("last_trade_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("realized_profit_usd", ExactDecimal(), nullable=False),
        sa.Column("total_invested_usd", ExactDecimal(), nullable=False),
        sa.Column("percentage_gain", ExactDecimal(), nullable=False),
        sa.Column("notification_thread_id", sa.String(64), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("wallet", "token_mint"),
    )
    op.create_index("idx_positions_wallet", "positions", ["wallet"])
    op.create_index("idx_positions_token_mint", "positions", ["token_mint"])

    # Tracked wallets: channel, pinned report, realized profit aggregate
    op.create_table(
        "wallets",
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("channel_id", sa.String(64), nullable=True),
        sa.Column("realized_profit_usd", ExactDecimal(), nullable=False),
        sa.Column("pinned_message_ts", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    # Per-item processing errors
    op.create_table(
        "processing_errors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("signature", sa.String(128), nullable=False),
        sa.Column("wallet", sa.String(64), nullable=False),
        sa.Column("token_mint", sa.String(64), nullable=False),
        sa.Column("stage", sa.String(40), nullable=False),
        sa.Column("error_type", sa.String(80), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_processing_errors_wallet", "processing_errors", ["wallet"])
    op.create_index("idx_processing_errors_created_at", "processing_errors", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_processing_errors_created_at", table_name="processing_errors")
    op.drop_index("idx_processing_errors_wallet", table_name="processing_errors")
    op.drop_table("processing_errors")
    op.drop_table("wallets")
    op.drop_index("idx_positions_token_mint", table_name="positions")
    op.drop_index("idx_positions_wallet", table_name="positions")
    op.drop_table("positions")
