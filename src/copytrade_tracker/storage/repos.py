"""Repository pattern implementations for data access.

This module provides data access for open positions, tracked wallets and
processing errors. Position writes are compare-and-set on the `version`
column: a write that matches no row raises ConcurrentUpdateConflict and the
caller reruns its read-modify-write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from copytrade_tracker.errors import ConcurrentUpdateConflict
from copytrade_tracker.ledger.models import Position
from copytrade_tracker.storage.models import PositionModel, ProcessingErrorModel, WalletModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts


def _position_from_model(model: PositionModel) -> Position:
    return Position(
        wallet=model.wallet,
        token_mint=model.token_mint,
        quantity=model.quantity,
        cost_basis_usd=model.cost_basis_usd,
        average_buy_price_sol=model.average_buy_price_sol,
        buy_count=model.buy_count,
        sell_count=model.sell_count,
        last_trade_at=_as_utc(model.last_trade_at),
        realized_profit_usd=model.realized_profit_usd,
        total_invested_usd=model.total_invested_usd,
        percentage_gain=model.percentage_gain,
        notification_thread_id=model.notification_thread_id,
        version=model.version,
    )


def _ledger_values(position: Position) -> dict[str, object]:
    """Columns owned by the ledger (everything but identity, thread and version)."""
    return {
        "quantity": position.quantity,
        "cost_basis_usd": position.cost_basis_usd,
        "average_buy_price_sol": position.average_buy_price_sol,
        "buy_count": position.buy_count,
        "sell_count": position.sell_count,
        "last_trade_at": position.last_trade_at,
        "realized_profit_usd": position.realized_profit_usd,
        "total_invested_usd": position.total_invested_usd,
        "percentage_gain": position.percentage_gain,
    }


class PositionRepository:
    """Repository for open positions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, wallet: str, token_mint: str) -> Position | None:
        result = await self.session.execute(
            select(PositionModel).where(
                PositionModel.wallet == wallet,
                PositionModel.token_mint == token_mint,
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return _position_from_model(model) if model else None

    async def list_for_wallet(self, wallet: str) -> list[Position]:
        result = await self.session.execute(
            select(PositionModel)
            .where(PositionModel.wallet == wallet)
            .order_by(PositionModel.last_trade_at.desc())
            .execution_options(populate_existing=True)
        )
        return [_position_from_model(m) for m in result.scalars().all()]

    async def insert(self, position: Position) -> Position:
        """Insert a new position at version 1.

        Raises:
            ConcurrentUpdateConflict: If a row for the identity already exists.
        """
        now = datetime.now(UTC)
        model = PositionModel(
            wallet=position.wallet,
            token_mint=position.token_mint,
            notification_thread_id=position.notification_thread_id,
            version=1,
            created_at=now,
            updated_at=now,
            **_ledger_values(position),
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConcurrentUpdateConflict(
                position.wallet, position.token_mint, expected_version=None
            ) from e
        return replace(position, version=1)

    async def update(self, position: Position, *, expected_version: int) -> Position:
        """Overwrite the ledger columns if the stored version still matches.

        The notification thread id is not written here; see
        `set_thread_id_if_absent`.

        Raises:
            ConcurrentUpdateConflict: If the row is gone or its version moved.
        """
        new_version = expected_version + 1
        result = await self.session.execute(
            update(PositionModel)
            .where(
                PositionModel.wallet == position.wallet,
                PositionModel.token_mint == position.token_mint,
                PositionModel.version == expected_version,
            )
            .values(**_ledger_values(position), version=new_version, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateConflict(
                position.wallet, position.token_mint, expected_version=expected_version
            )
        return replace(position, version=new_version)

    async def delete(self, wallet: str, token_mint: str, *, expected_version: int) -> None:
        """Delete a position if the stored version still matches.

        Raises:
            ConcurrentUpdateConflict: If the row is gone or its version moved.
        """
        result = await self.session.execute(
            delete(PositionModel)
            .where(
                PositionModel.wallet == wallet,
                PositionModel.token_mint == token_mint,
                PositionModel.version == expected_version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateConflict(wallet, token_mint, expected_version=expected_version)

    async def set_thread_id_if_absent(self, wallet: str, token_mint: str, thread_id: str) -> bool:
        """Set the notification thread id once.

        Touches no other column and does not bump the version, so it never
        conflicts with a ledger write.

        Returns:
            True if the id was stored, False if the row is gone or already had one.
        """
        result = await self.session.execute(
            update(PositionModel)
            .where(
                PositionModel.wallet == wallet,
                PositionModel.token_mint == token_mint,
                PositionModel.notification_thread_id.is_(None),
            )
            .values(notification_thread_id=thread_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


@dataclass
class WalletRecord:
    """Data transfer object for tracked wallets."""

    address: str
    channel_id: str | None
    realized_profit_usd: Decimal
    pinned_message_ts: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletModel) -> WalletRecord:
        return cls(
            address=model.address,
            channel_id=model.channel_id,
            realized_profit_usd=model.realized_profit_usd,
            pinned_message_ts=model.pinned_message_ts,
            created_at=_as_utc(model.created_at) if model.created_at else None,
            updated_at=_as_utc(model.updated_at) if model.updated_at else None,
        )


class WalletRepository:
    """Repository for tracked wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_model(self, address: str, *, for_update: bool = False) -> WalletModel | None:
        stmt = select(WalletModel).where(WalletModel.address == address)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_create(self, address: str) -> WalletModel:
        model = await self._get_model(address, for_update=True)
        if model is not None:
            return model
        now = datetime.now(UTC)
        model = WalletModel(
            address=address,
            channel_id=None,
            realized_profit_usd=Decimal("0"),
            pinned_message_ts=None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Another writer created the row first; the caller retries.
            raise ConcurrentUpdateConflict(address, "", expected_version=None) from e
        return model

    async def get(self, address: str) -> WalletRecord | None:
        model = await self._get_model(address)
        return WalletRecord.from_model(model) if model else None

    async def set_channel(self, address: str, channel_id: str) -> WalletRecord:
        model = await self._get_or_create(address)
        model.channel_id = channel_id
        await self.session.flush()
        return WalletRecord.from_model(model)

    async def add_profit(self, address: str, amount: Decimal) -> WalletRecord:
        """Add realized profit to the wallet aggregate under a row lock.

        Creates the wallet row when it does not exist yet.
        """
        model = await self._get_or_create(address)
        model.realized_profit_usd = model.realized_profit_usd + amount
        await self.session.flush()
        logger.debug("Wallet %s realized profit now %s", address, model.realized_profit_usd)
        return WalletRecord.from_model(model)

    async def set_pinned_message(self, address: str, message_ts: str) -> WalletRecord:
        model = await self._get_or_create(address)
        model.pinned_message_ts = message_ts
        await self.session.flush()
        return WalletRecord.from_model(model)

    async def list_with_channel(self) -> list[WalletRecord]:
        result = await self.session.execute(
            select(WalletModel)
            .where(WalletModel.channel_id.is_not(None))
            .order_by(WalletModel.address)
        )
        return [WalletRecord.from_model(m) for m in result.scalars().all()]


@dataclass
class ProcessingErrorDTO:
    signature: str
    wallet: str
    token_mint: str
    stage: str
    error_type: str
    message: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ProcessingErrorModel) -> ProcessingErrorDTO:
        return cls(
            signature=model.signature,
            wallet=model.wallet,
            token_mint=model.token_mint,
            stage=model.stage,
            error_type=model.error_type,
            message=model.message,
            created_at=_as_utc(model.created_at),
        )


class ProcessingErrorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, errors: list[ProcessingErrorDTO]) -> None:
        if not errors:
            return
        rows = [
            {
                "signature": e.signature,
                "wallet": e.wallet,
                "token_mint": e.token_mint,
                "stage": e.stage,
                "error_type": e.error_type,
                "message": e.message,
                "created_at": e.created_at or datetime.now(UTC),
            }
            for e in errors
        ]
        await self.session.execute(sa.insert(ProcessingErrorModel), rows)
        await self.session.flush()

    async def list_recent(self, *, limit: int = 100) -> list[ProcessingErrorDTO]:
        result = await self.session.execute(
            select(ProcessingErrorModel)
            .order_by(ProcessingErrorModel.created_at.desc(), ProcessingErrorModel.id.desc())
            .limit(limit)
        )
        return [ProcessingErrorDTO.from_model(m) for m in result.scalars().all()]
