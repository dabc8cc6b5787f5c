"""Alert routing and delivery.

This module decides where each alert goes and delivers it:
- Wallet alerts go to the wallet's own channel, threaded under the
  position's first message.
- THIRD_BUY replies are broadcast into the channel and mirrored to the
  operations channel.
- COORDINATED_BUY alerts go only to the operations channel.

Delivery failures are logged and swallowed; a lost notification never fails
the trade that produced it.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import Alert, AlertKind, FormattedAlert
from copytrade_tracker.errors import ConcurrentUpdateConflict, StoreFailure, UpstreamUnavailableError
from copytrade_tracker.storage.database import DatabaseManager
from copytrade_tracker.storage.repos import WalletRepository

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Message delivery backend (SlackNotifier in production)."""

    async def post(
        self,
        channel: str,
        message: FormattedAlert,
        *,
        thread_id: str | None = None,
        reply_broadcast: bool = False,
    ) -> str: ...

    async def find_channel(self, name: str) -> str | None: ...

    async def create_channel(self, name: str) -> str: ...

    async def pin(self, channel: str, ts: str) -> None: ...


def channel_name_for(wallet: str) -> str:
    """Slack channel names are lower-case; wallet addresses are not."""
    return wallet.lower()


class ChannelDirectory:
    """Resolves a wallet to its notification channel.

    Lookup order: the stored channel id, then a Slack channel named after
    the wallet, then (when enabled) a newly created one. Any id found in
    Slack is stored on the wallet record.
    """

    def __init__(
        self,
        notifier: Notifier,
        db: DatabaseManager,
        *,
        auto_create: bool = False,
    ) -> None:
        self._notifier = notifier
        self._db = db
        self._auto_create = auto_create

    async def resolve(self, wallet: str) -> str | None:
        """Return the channel id for `wallet`, or None if it has none.

        Raises:
            UpstreamUnavailableError: If Slack fails.
            StoreFailure: If the wallet record cannot be read or written.
        """
        try:
            async with self._db.get_async_session() as session:
                record = await WalletRepository(session).get(wallet)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to read wallet {wallet}: {e}") from e
        if record is not None and record.channel_id:
            return record.channel_id

        name = channel_name_for(wallet)
        channel_id = await self._notifier.find_channel(name)
        if channel_id is None and self._auto_create:
            channel_id = await self._notifier.create_channel(name)
        if channel_id is None:
            return None

        await self._store_channel(wallet, channel_id)
        logger.info("Wallet %s mapped to channel %s", wallet, channel_id)
        return channel_id

    async def _store_channel(self, wallet: str, channel_id: str) -> None:
        # A lost race on the wallet insert leaves the row in place; one more
        # attempt updates it.
        for attempt in range(2):
            try:
                async with self._db.get_async_session() as session:
                    await WalletRepository(session).set_channel(wallet, channel_id)
                return
            except ConcurrentUpdateConflict as e:
                if attempt:
                    raise StoreFailure(f"Failed to store channel for wallet {wallet}: {e}") from e
                logger.debug("Wallet %s created concurrently, retrying channel update", wallet)
            except SQLAlchemyError as e:
                raise StoreFailure(f"Failed to store channel for wallet {wallet}: {e}") from e


class AlertDispatcher:
    """Formats and routes alerts to their channels.

    Example:
        ```python
        dispatcher = AlertDispatcher(slack, formatter, channels, ops_channel="C0OPS")
        handle = await dispatcher.dispatch(alert)
        ```
    """

    def __init__(
        self,
        notifier: Notifier,
        formatter: AlertFormatter,
        channels: ChannelDirectory,
        *,
        ops_channel: str | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            notifier: Delivery backend.
            formatter: Message formatter.
            channels: Wallet channel resolver.
            ops_channel: Channel for coordinated buys and third-buy mirrors.
            dry_run: Log alerts instead of sending them.
        """
        self._notifier = notifier
        self._formatter = formatter
        self._channels = channels
        self._ops_channel = ops_channel
        self._dry_run = dry_run

    async def dispatch(self, alert: Alert) -> str | None:
        """Deliver one alert.

        Args:
            alert: Alert to deliver.

        Returns:
            Handle (message ts) of the primary message, or None when nothing
            was posted.
        """
        formatted = self._formatter.format(alert)

        if self._dry_run:
            logger.info("[DRY RUN] Would send alert: %s", alert.to_dict())
            return None

        if alert.kind == AlertKind.COORDINATED_BUY:
            return await self._post_ops(alert, formatted)

        handle = await self._post_wallet(alert, formatted)
        if alert.kind == AlertKind.THIRD_BUY:
            await self._post_ops(alert, formatted)
        return handle

    async def _post_wallet(self, alert: Alert, formatted: FormattedAlert) -> str | None:
        try:
            channel = await self._channels.resolve(alert.wallet)
            if channel is None:
                logger.warning("No channel for wallet %s; dropping %s alert", alert.wallet, alert.kind.value)
                return None
            handle = await self._notifier.post(
                channel,
                formatted,
                thread_id=alert.thread_id,
                reply_broadcast=alert.kind == AlertKind.THIRD_BUY and alert.is_threaded,
            )
        except (UpstreamUnavailableError, StoreFailure) as e:
            logger.warning(
                "Failed to deliver %s alert for %s/%s: %s",
                alert.kind.value,
                alert.wallet,
                alert.token_mint,
                e,
            )
            return None

        logger.info(
            "Sent %s alert for %s/%s (ts=%s)",
            alert.kind.value,
            alert.wallet,
            alert.token_mint,
            handle,
        )
        return handle

    async def _post_ops(self, alert: Alert, formatted: FormattedAlert) -> str | None:
        if not self._ops_channel:
            logger.warning("No operations channel configured; dropping %s alert", alert.kind.value)
            return None
        try:
            handle = await self._notifier.post(self._ops_channel, formatted)
        except UpstreamUnavailableError as e:
            logger.warning("Failed to deliver %s alert to operations channel: %s", alert.kind.value, e)
            return None
        logger.info("Sent %s alert for %s to operations channel", alert.kind.value, alert.token_mint)
        return handle
