"""SQLAlchemy models for persistent storage.

This module defines the database schema for open positions, the per-wallet
notification record, and the processing error audit trail.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from copytrade_tracker.storage.types import ExactDecimal


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class PositionModel(Base):
    """SQLAlchemy model for open positions.

    One row per (wallet, token_mint). Closed positions are deleted, never
    stored. `version` guards compare-and-set writes.
    """

    __tablename__ = "positions"

    wallet: Mapped[str] = mapped_column(String(64), primary_key=True)
    token_mint: Mapped[str] = mapped_column(String(64), primary_key=True)

    quantity: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    cost_basis_usd: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    average_buy_price_sol: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    buy_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sell_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_trade_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    realized_profit_usd: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    total_invested_usd: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    percentage_gain: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)

    notification_thread_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_positions_wallet", "wallet"),
        Index("idx_positions_token_mint", "token_mint"),
    )


class WalletModel(Base):
    """SQLAlchemy model for tracked wallets.

    Holds the wallet's notification channel, the pinned profit message and
    the cumulative realized profit of positions that were closed.
    """

    __tablename__ = "wallets"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    realized_profit_usd: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    pinned_message_ts: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class ProcessingErrorModel(Base):
    """Per-item processing errors (strict, non-silent failures)."""

    __tablename__ = "processing_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    signature: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    wallet: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    token_mint: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    stage: Mapped[str] = mapped_column(String(40), nullable=False)
    error_type: Mapped[str] = mapped_column(String(80), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_processing_errors_wallet", "wallet"),
        Index("idx_processing_errors_created_at", "created_at"),
    )
