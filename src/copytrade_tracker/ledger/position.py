"""Position ledger state machine.

This module provides the PositionLedger class, a pure transition function
from (stored position or None, trade) to (new position, alerts). It does no
I/O, so the orchestrator can rerun it after losing a compare-and-set race.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

from copytrade_tracker.alerter.models import Alert, AlertKind
from copytrade_tracker.ingestor.models import Trade
from copytrade_tracker.ledger.models import Position

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CLOSE_THRESHOLD = Decimal("0.1")  # absorbs dust left after selling out
DEFAULT_THIRD_BUY_COUNT = 3

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class PositionLedger:
    """Applies trades to positions and derives position alerts.

    Transitions:
    - No position: open one from the trade and raise NEW_POSITION.
    - Buy: fold the trade into the weighted-average entry price; raise
      THIRD_BUY when the buy count reaches exactly `third_buy_count`.
    - Sell: realize profit on the sold fraction; raise FULL_SELL when the
      remaining quantity is at or below `close_threshold` (the position is
      marked closed), else HALF_SELL when more than half of the pre-trade
      quantity was sold.

    Example:
        ```python
        ledger = PositionLedger()
        position, alerts = ledger.apply(None, trade)
        ```
    """

    def __init__(
        self,
        *,
        close_threshold: Decimal = DEFAULT_CLOSE_THRESHOLD,
        third_buy_count: int = DEFAULT_THIRD_BUY_COUNT,
    ) -> None:
        """Initialize the ledger.

        Args:
            close_threshold: Remaining quantity at or below which a sell
                closes the position (default 0.1).
            third_buy_count: Buy count that raises the accumulation alert
                (default 3).
        """
        self._close_threshold = close_threshold
        self._third_buy_count = third_buy_count

    @property
    def close_threshold(self) -> Decimal:
        return self._close_threshold

    def apply(self, existing: Position | None, trade: Trade) -> tuple[Position, list[Alert]]:
        """Apply one trade to the current position.

        Args:
            existing: Stored position for the trade's identity, or None.
            trade: Classified trade.

        Returns:
            Tuple of (new position, alerts in emission order).
        """
        if existing is not None and existing.identity != trade.identity:
            raise ValueError(
                f"Trade for {trade.wallet}/{trade.token_mint} applied to position "
                f"{existing.wallet}/{existing.token_mint}"
            )
        if existing is None:
            return self._open(trade)
        if trade.is_buy:
            return self._buy(existing, trade)
        return self._sell(existing, trade)

    def _open(self, trade: Trade) -> tuple[Position, list[Alert]]:
        if trade.is_buy:
            position = Position(
                wallet=trade.wallet,
                token_mint=trade.token_mint,
                quantity=trade.token_quantity,
                cost_basis_usd=-trade.usd_amount,
                average_buy_price_sol=trade.entry_price_sol,
                buy_count=1,
                sell_count=0,
                last_trade_at=trade.occurred_at,
                total_invested_usd=trade.usd_amount,
            )
        else:
            # A sell without a stored position still opens a record; the
            # tokens were acquired before tracking started.
            logger.warning(
                "Sell without a tracked position: wallet=%s mint=%s qty=%s",
                trade.wallet,
                trade.token_mint,
                trade.token_quantity,
            )
            position = Position(
                wallet=trade.wallet,
                token_mint=trade.token_mint,
                quantity=trade.token_quantity,
                cost_basis_usd=trade.usd_amount,
                average_buy_price_sol=ZERO,
                buy_count=0,
                sell_count=1,
                last_trade_at=trade.occurred_at,
            )

        alert = Alert(
            kind=AlertKind.NEW_POSITION,
            wallet=trade.wallet,
            token_mint=trade.token_mint,
            usd_amount=trade.usd_amount,
            timestamp=trade.occurred_at,
        )
        return position, [alert]

    def _buy(self, existing: Position, trade: Trade) -> tuple[Position, list[Alert]]:
        new_quantity = existing.quantity + trade.token_quantity
        if new_quantity > 0:
            new_average = (
                existing.average_buy_price_sol * existing.quantity
                + trade.entry_price_sol * trade.token_quantity
            ) / new_quantity
        else:
            new_average = trade.entry_price_sol

        position = replace(
            existing,
            quantity=new_quantity,
            cost_basis_usd=existing.cost_basis_usd - trade.usd_amount,
            average_buy_price_sol=new_average,
            total_invested_usd=existing.total_invested_usd + trade.usd_amount,
            buy_count=existing.buy_count + 1,
            last_trade_at=trade.occurred_at,
        )

        alerts: list[Alert] = []
        if position.buy_count == self._third_buy_count:
            alerts.append(
                Alert(
                    kind=AlertKind.THIRD_BUY,
                    wallet=trade.wallet,
                    token_mint=trade.token_mint,
                    usd_amount=position.net_invested_usd,
                    timestamp=trade.occurred_at,
                    thread_id=existing.notification_thread_id,
                )
            )
        return position, alerts

    def _sell(self, existing: Position, trade: Trade) -> tuple[Position, list[Alert]]:
        pre_quantity = existing.quantity
        if pre_quantity > 0:
            sold_portion = trade.token_quantity / pre_quantity
        else:
            # Nothing held: the whole cost basis is attributed to this sell.
            sold_portion = Decimal("1")
        if trade.token_quantity > pre_quantity:
            logger.warning(
                "Oversell: wallet=%s mint=%s held=%s sold=%s",
                trade.wallet,
                trade.token_mint,
                pre_quantity,
                trade.token_quantity,
            )

        cost_for_sold = abs(existing.cost_basis_usd) * sold_portion
        profit = trade.usd_amount - cost_for_sold
        realized = existing.realized_profit_usd + profit
        invested_before = existing.total_invested_usd
        percentage_gain = realized / abs(invested_before) * HUNDRED if invested_before > 0 else ZERO

        position = replace(
            existing,
            quantity=pre_quantity - trade.token_quantity,
            cost_basis_usd=existing.cost_basis_usd + trade.usd_amount,
            realized_profit_usd=realized,
            total_invested_usd=invested_before * (1 - sold_portion),
            percentage_gain=percentage_gain,
            sell_count=existing.sell_count + 1,
            last_trade_at=trade.occurred_at,
        )

        if position.quantity <= self._close_threshold:
            position = replace(position, closed=True)
            kind = AlertKind.FULL_SELL
        elif position.quantity < pre_quantity / 2:
            kind = AlertKind.HALF_SELL
        else:
            return position, []

        alert = Alert(
            kind=kind,
            wallet=trade.wallet,
            token_mint=trade.token_mint,
            usd_amount=position.cost_basis_usd,
            timestamp=trade.occurred_at,
            thread_id=existing.notification_thread_id,
            realized_profit_usd=position.realized_profit_usd,
            percentage_gain=position.percentage_gain,
        )
        return position, [alert]
