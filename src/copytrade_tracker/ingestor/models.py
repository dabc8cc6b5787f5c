"""Data models for the ingestor module."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TradeSide(str, Enum):
    """Direction of a swap from the tracked wallet's point of view."""

    BUY = "BUY"
    SELL = "SELL"


class SkipReason(str, Enum):
    """Why a raw record did not produce a Trade."""

    NOT_SWAP = "not-swap"
    NO_TOKEN_SIDE = "no-token-side"


@dataclass(frozen=True)
class Skip:
    """Result of classifying a record that is not a trade."""

    reason: SkipReason
    signature: str = ""


@dataclass(frozen=True)
class Trade:
    """A normalized swap executed by a tracked wallet.

    Only the primary leg of the swap is represented: multi-leg swaps
    collapse to their first token input or output.

    Attributes:
        wallet: Fee payer of the swap (the tracked wallet).
        token_mint: Mint of the non-SOL token bought or sold.
        side: BUY when tokens were received, SELL when tokens were given up.
        token_quantity: Token amount scaled by the mint's decimals (> 0).
        sol_amount: Native SOL paid (buy) or received (sell).
        usd_amount: sol_amount valued at the batch's SOL/USD price.
        occurred_at: Block time of the transaction (UTC).
        signature: Transaction signature, empty when the payload omits it.
    """

    wallet: str
    token_mint: str
    side: TradeSide
    token_quantity: Decimal
    sol_amount: Decimal
    usd_amount: Decimal
    occurred_at: datetime
    signature: str = ""

    @property
    def identity(self) -> tuple[str, str]:
        """Return the (wallet, token_mint) pair this trade belongs to."""
        return (self.wallet, self.token_mint)

    @property
    def is_buy(self) -> bool:
        return self.side is TradeSide.BUY

    @property
    def entry_price_sol(self) -> Decimal:
        """Return the SOL paid or received per token."""
        return self.sol_amount / self.token_quantity
