"""Alert message formatter for Slack delivery.

This module transforms Alert objects into Slack Block Kit messages with a
plain-text fallback, and renders the pinned per-wallet profit report.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from copytrade_tracker.alerter.models import Alert, AlertKind, FormattedAlert, WalletStats

# Explorer URLs
SOLSCAN_TOKEN_URL = "https://solscan.io/token/{mint}"
GMGN_WALLET_URL = "https://gmgn.ai/sol/address/{wallet}"
DEXSCREENER_TOKEN_URL = "https://dexscreener.com/solana/{mint}"

DEFAULT_DISPLAY_TIMEZONE = "America/New_York"
DEFAULT_COORDINATED_WINDOW_SECONDS = 3600

TITLES = {
    AlertKind.NEW_POSITION: "🟢 New Position",
    AlertKind.THIRD_BUY: "🔁 Third Buy",
    AlertKind.HALF_SELL: "🟠 Sold Over Half",
    AlertKind.FULL_SELL: "🔴 Position Closed",
    AlertKind.COORDINATED_BUY: "🚨 Coordinated Buy Alert",
    AlertKind.PROFIT_UPDATE: "📊 Profit Update",
}


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate a base58 address to ABCD...WXYZ format."""
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_usd(amount: Decimal) -> str:
    """Format a USD amount with commas and 2 decimal places."""
    if amount < 0:
        return f"-${-amount:,.2f}"
    return f"${amount:,.2f}"


def format_percent(value: Decimal) -> str:
    return f"{value:+,.2f}%"


def format_window(seconds: int) -> str:
    """Render a window length the way a person would say it."""
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "1 hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        minutes = seconds // 60
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


class AlertFormatter:
    """Formats Alerts into Slack messages.

    Every message is one mrkdwn section followed by a context block of
    links, so the plain `text` field doubles as the notification preview.
    """

    def __init__(
        self,
        *,
        display_timezone: str = DEFAULT_DISPLAY_TIMEZONE,
        coordinated_window_seconds: int = DEFAULT_COORDINATED_WINDOW_SECONDS,
    ) -> None:
        """Initialize the formatter.

        Args:
            display_timezone: IANA zone used for timestamps in messages.
            coordinated_window_seconds: Window named in coordinated-buy text.
        """
        self._tz = ZoneInfo(display_timezone)
        self._window_seconds = coordinated_window_seconds

    def local_time(self, ts: datetime) -> str:
        return ts.astimezone(self._tz).strftime("%Y-%m-%d %I:%M:%S %p %Z")

    def format(self, alert: Alert) -> FormattedAlert:
        """Format an alert.

        Args:
            alert: The alert to format.

        Returns:
            FormattedAlert with title, fallback text and blocks.
        """
        title = TITLES[alert.kind]
        lines = [f"*{title}*"]
        lines.extend(self._body_lines(alert))
        lines.append(f"Time: {self.local_time(alert.timestamp)}")
        text = "\n".join(lines)

        links = self._links(alert)
        return FormattedAlert(title=title, text=text, blocks=self._blocks(text, links))

    def format_profit_report(
        self,
        wallet: str,
        realized_profit_usd: Decimal,
        *,
        stats: WalletStats | None = None,
        as_of: datetime,
    ) -> FormattedAlert:
        """Format the pinned per-wallet profit summary.

        Args:
            wallet: Wallet address.
            realized_profit_usd: Stored aggregate of closed-position profit.
            stats: Optional WalletStats from an external provider.
            as_of: Report time.
        """
        title = TITLES[AlertKind.PROFIT_UPDATE]
        lines = [
            f"*{title}*",
            f"Wallet: `{wallet}`",
            f"Realized profit (tracked): {format_usd(realized_profit_usd)}",
        ]
        if stats is not None:
            if stats.profit_7d is not None:
                lines.append(f"Realized profit 7d: {format_usd(stats.profit_7d)}")
            if stats.profit_30d is not None:
                lines.append(f"Realized profit 30d: {format_usd(stats.profit_30d)}")
            if stats.profit_total is not None:
                lines.append(f"Realized profit all time: {format_usd(stats.profit_total)}")
            if stats.win_rate is not None:
                lines.append(f"Win rate: {stats.win_rate * 100:.1f}%")
        lines.append(f"Updated: {self.local_time(as_of)}")
        text = "\n".join(lines)

        links = [f"<{GMGN_WALLET_URL.format(wallet=wallet)}|GMGN>"]
        return FormattedAlert(title=title, text=text, blocks=self._blocks(text, links))

    def _body_lines(self, alert: Alert) -> list[str]:
        wallet = f"Wallet: `{truncate_address(alert.wallet)}`"
        token = f"Token: `{alert.token_mint}`"

        if alert.kind == AlertKind.NEW_POSITION:
            return [wallet, token, f"Amount: {format_usd(alert.usd_amount)}"]

        if alert.kind == AlertKind.THIRD_BUY:
            return [wallet, token, f"Net invested: {format_usd(alert.usd_amount)}"]

        if alert.kind in (AlertKind.HALF_SELL, AlertKind.FULL_SELL):
            lines = [wallet, token, f"Cost basis: {format_usd(alert.usd_amount)}"]
            if alert.realized_profit_usd is not None:
                lines.append(f"Realized profit: {format_usd(alert.realized_profit_usd)}")
            if alert.percentage_gain is not None:
                lines.append(f"Gain: {format_percent(alert.percentage_gain)}")
            return lines

        if alert.kind == AlertKind.COORDINATED_BUY:
            count = len(alert.wallets)
            lines = [
                f"{count} wallets bought `{alert.token_mint}` "
                f"within {format_window(self._window_seconds)}!"
            ]
            lines.extend(f"• `{w}`" for w in alert.wallets)
            return lines

        return [wallet, f"Realized profit: {format_usd(alert.usd_amount)}"]

    def _links(self, alert: Alert) -> list[str]:
        links: list[str] = []
        if alert.token_mint:
            links.append(f"<{SOLSCAN_TOKEN_URL.format(mint=alert.token_mint)}|Solscan>")
            links.append(f"<{DEXSCREENER_TOKEN_URL.format(mint=alert.token_mint)}|DexScreener>")
        if alert.kind != AlertKind.COORDINATED_BUY:
            links.append(f"<{GMGN_WALLET_URL.format(wallet=alert.wallet)}|GMGN>")
        return links

    @staticmethod
    def _blocks(text: str, links: list[str]) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
        ]
        if links:
            blocks.append(
                {
                    "type": "context",
                    "elements": [{"type": "mrkdwn", "text": " | ".join(links)}],
                }
            )
        return blocks
