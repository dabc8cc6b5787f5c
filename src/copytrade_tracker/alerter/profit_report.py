"""Per-wallet profit report.

Posts and pins a profit summary in every wallet channel. The summary holds
the tracked realized-profit aggregate and, when a stats provider is
configured, the provider's wallet-level figures.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from copytrade_tracker.alerter.dispatcher import Notifier
from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import WalletStats
from copytrade_tracker.errors import UpstreamUnavailableError
from copytrade_tracker.storage.database import DatabaseManager
from copytrade_tracker.storage.repos import WalletRecord, WalletRepository

logger = logging.getLogger(__name__)

DEFAULT_WALLET_DELAY_SECONDS = 10.0


class WalletStatsProvider(Protocol):
    """External source of wallet-level trading stats."""

    async def get_stats(self, wallet: str) -> WalletStats:
        """Return stats for `wallet`.

        Raises:
            UpstreamUnavailableError: If the source cannot be reached.
        """
        ...


class ProfitReporter:
    """Posts and pins the profit summary for every wallet with a channel.

    Example:
        ```python
        reporter = ProfitReporter(slack, formatter, db)
        posted = await reporter.run()
        ```
    """

    def __init__(
        self,
        notifier: Notifier,
        formatter: AlertFormatter,
        db: DatabaseManager,
        *,
        stats_provider: WalletStatsProvider | None = None,
        wallet_delay_seconds: float = DEFAULT_WALLET_DELAY_SECONDS,
        dry_run: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._notifier = notifier
        self._formatter = formatter
        self._db = db
        self._stats_provider = stats_provider
        self._delay = wallet_delay_seconds
        self._dry_run = dry_run
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(self) -> int:
        """Report every wallet once.

        Returns:
            Number of wallets whose report was posted.
        """
        async with self._db.get_async_session() as session:
            wallets = await WalletRepository(session).list_with_channel()
        logger.info("Reporting profits for %d wallets", len(wallets))

        posted = 0
        for index, wallet in enumerate(wallets):
            if index > 0 and self._delay > 0:
                await self._sleep(self._delay)
            try:
                if await self._report(wallet):
                    posted += 1
            except (UpstreamUnavailableError, SQLAlchemyError) as e:
                logger.warning("Profit report for %s failed: %s", wallet.address, e)
        logger.info("Profit reports posted: %d/%d", posted, len(wallets))
        return posted

    async def _report(self, wallet: WalletRecord) -> bool:
        stats = await self._fetch_stats(wallet.address)
        message = self._formatter.format_profit_report(
            wallet.address,
            wallet.realized_profit_usd,
            stats=stats,
            as_of=self._clock(),
        )

        if self._dry_run:
            logger.info("[DRY RUN] Would post profit report for %s: %s", wallet.address, message.text)
            return False

        if wallet.channel_id is None:
            logger.warning("Wallet %s has no channel; skipping profit report", wallet.address)
            return False
        ts = await self._notifier.post(wallet.channel_id, message)
        await self._notifier.pin(wallet.channel_id, ts)
        async with self._db.get_async_session() as session:
            await WalletRepository(session).set_pinned_message(wallet.address, ts)
        logger.info("Pinned profit report for %s (ts=%s)", wallet.address, ts)
        return True

    async def _fetch_stats(self, address: str) -> WalletStats | None:
        if self._stats_provider is None:
            return None
        try:
            return await self._stats_provider.get_stats(address)
        except UpstreamUnavailableError as e:
            logger.warning("Wallet stats unavailable for %s: %s", address, e)
            return None
