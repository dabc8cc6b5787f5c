"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class AlertKind(str, Enum):
    """Notable events raised by the ledger, the detector, or the profit report."""

    NEW_POSITION = "NEW_POSITION"
    THIRD_BUY = "THIRD_BUY"
    HALF_SELL = "HALF_SELL"
    FULL_SELL = "FULL_SELL"
    COORDINATED_BUY = "COORDINATED_BUY"
    PROFIT_UPDATE = "PROFIT_UPDATE"


@dataclass(frozen=True)
class Alert:
    """An event to deliver to the notifier.

    Attributes:
        kind: Which event this is.
        wallet: Wallet the event belongs to (the triggering buyer for
            coordinated buys).
        token_mint: Token involved; empty for profit updates.
        usd_amount: Headline amount; its meaning depends on the kind
            (trade value, net invested, or position value).
        timestamp: Trade time for ledger events, detection time otherwise.
        thread_id: Message handle to reply under; None starts a new thread.
        wallets: Participating wallets (coordinated buys only).
        realized_profit_usd: Realized profit after the sell (sell alerts).
        percentage_gain: Realized gain in percent (sell alerts).
    """

    kind: AlertKind
    wallet: str
    token_mint: str
    usd_amount: Decimal
    timestamp: datetime
    thread_id: str | None = None
    wallets: tuple[str, ...] = ()
    realized_profit_usd: Decimal | None = None
    percentage_gain: Decimal | None = None

    @property
    def is_threaded(self) -> bool:
        return self.thread_id is not None

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary (used in dry-run logs)."""
        return {
            "kind": self.kind.value,
            "wallet": self.wallet,
            "token_mint": self.token_mint,
            "usd_amount": str(self.usd_amount),
            "timestamp": self.timestamp.isoformat(),
            "thread_id": self.thread_id,
            "wallets": list(self.wallets),
            "realized_profit_usd": (
                str(self.realized_profit_usd) if self.realized_profit_usd is not None else None
            ),
            "percentage_gain": str(self.percentage_gain) if self.percentage_gain is not None else None,
        }


@dataclass(frozen=True)
class FormattedAlert:
    """An alert rendered for delivery.

    Attributes:
        title: One-line headline.
        text: Plain-text fallback (notifications, clients without blocks).
        blocks: Slack Block Kit payload.
    """

    title: str
    text: str
    blocks: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class WalletStats:
    """Wallet-level trading stats reported by an external source.

    Any field may be None when the source does not report it.

    Attributes:
        profit_7d: Realized profit over the last 7 days (USD).
        profit_30d: Realized profit over the last 30 days (USD).
        profit_total: All-time realized profit (USD).
        win_rate: Fraction of profitable trades, 0 to 1.
    """

    profit_7d: Decimal | None = None
    profit_30d: Decimal | None = None
    profit_total: Decimal | None = None
    win_rate: Decimal | None = None
