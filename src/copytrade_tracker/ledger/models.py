"""Data models for the position ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class Position:
    """Running trading state of one wallet in one token.

    Identity is (wallet, token_mint). Sign convention: cost_basis_usd is
    negative while capital is net invested and moves toward zero or above
    as sells return capital.

    Attributes:
        wallet: Wallet address.
        token_mint: Token mint address.
        quantity: Tokens currently held.
        cost_basis_usd: Signed net USD flow (buys negative, sells positive).
        average_buy_price_sol: Quantity-weighted mean SOL paid per token.
        buy_count: Buys applied so far.
        sell_count: Sells applied so far.
        last_trade_at: Time of the last applied trade.
        realized_profit_usd: Profit realized by sells.
        total_invested_usd: Buy spend still attributed to held tokens.
        percentage_gain: realized_profit_usd relative to invested capital, in percent.
        notification_thread_id: Handle of the first alert; later alerts reply to it.
        version: Stored version for compare-and-set writes (0 = never stored).
        closed: True when the last sell made the position terminal.
    """

    wallet: str
    token_mint: str
    quantity: Decimal
    cost_basis_usd: Decimal
    average_buy_price_sol: Decimal
    buy_count: int
    sell_count: int
    last_trade_at: datetime
    realized_profit_usd: Decimal = Decimal("0")
    total_invested_usd: Decimal = Decimal("0")
    percentage_gain: Decimal = Decimal("0")
    notification_thread_id: str | None = None
    version: int = 0
    closed: bool = False

    @property
    def identity(self) -> tuple[str, str]:
        return (self.wallet, self.token_mint)

    @property
    def trade_count(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def net_invested_usd(self) -> Decimal:
        """Return the net USD still invested, shown positive."""
        return -self.cost_basis_usd
