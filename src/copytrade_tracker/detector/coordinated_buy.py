"""Coordinated-buy detection.

This module provides the CoordinatedBuyDetector class that flags tokens
bought by several distinct tracked wallets within a short trailing window.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from copytrade_tracker.alerter.models import Alert, AlertKind
from copytrade_tracker.ingestor.models import Trade
from copytrade_tracker.ingestor.recent_buys import RecentBuyWindow

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_WINDOW = timedelta(hours=1)
DEFAULT_RECORD_TTL = timedelta(hours=1)
DEFAULT_MIN_WALLETS = 2


def _epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return int(ts.timestamp() * 1000)


class CoordinatedBuyDetector:
    """Detector for several wallets buying the same token close together.

    On every buy the detector:
    1. Upserts the wallet's recent-buy record for the token (one record per
       wallet, so repeat buys do not inflate the count)
    2. Reads every record for the token newer than `now - window`
    3. Raises a COORDINATED_BUY alert when at least `min_wallets` distinct
       wallets remain

    Records are filtered by timestamp locally as well, so stale members the
    store has not yet expired never count.

    Example:
        ```python
        window = RecentBuyWindow(redis)
        detector = CoordinatedBuyDetector(window)

        alert = await detector.observe(trade)
        if alert is not None:
            print(f"{len(alert.wallets)} wallets bought {alert.token_mint}")
        ```
    """

    def __init__(
        self,
        recent_buys: RecentBuyWindow,
        *,
        window: timedelta = DEFAULT_WINDOW,
        record_ttl: timedelta = DEFAULT_RECORD_TTL,
        min_wallets: int = DEFAULT_MIN_WALLETS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            recent_buys: Shared recent-buy store.
            window: Trailing window for counting buyers (default 1 hour).
            record_ttl: Retention requested from the store (default 1 hour).
            min_wallets: Distinct wallets needed to alert (default 2).
            clock: Source of the processing time (defaults to UTC now).
        """
        self._recent_buys = recent_buys
        self._window = window
        self._record_ttl = record_ttl
        self._min_wallets = min_wallets
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def window(self) -> timedelta:
        return self._window

    async def observe(self, trade: Trade, *, now: datetime | None = None) -> Alert | None:
        """Record a buy and check whether it completes a coordinated buy.

        Args:
            trade: Classified trade; sells are ignored.
            now: Processing time (defaults to the detector clock).

        Returns:
            COORDINATED_BUY alert, or None.

        Raises:
            StoreFailure: If the recent-buy store is unavailable.
        """
        if not trade.is_buy:
            return None

        now = now or self._clock()
        now_ms = _epoch_ms(now)
        ttl_seconds = int(self._record_ttl.total_seconds())
        since_ms = now_ms - int(self._window.total_seconds() * 1000)

        await self._recent_buys.upsert(
            trade.wallet,
            trade.token_mint,
            timestamp_ms=now_ms,
            ttl_seconds=ttl_seconds,
        )
        records = await self._recent_buys.query_by_token(
            trade.token_mint,
            since_ms=since_ms,
            ttl_seconds=ttl_seconds,
        )

        wallets = sorted({r.wallet for r in records if r.timestamp_ms >= since_ms})
        if len(wallets) < self._min_wallets:
            logger.debug(
                "No coordinated buy: mint=%s wallets=%d (< %d)",
                trade.token_mint,
                len(wallets),
                self._min_wallets,
            )
            return None

        logger.info(
            "Coordinated buy: mint=%s wallets=%d window=%s",
            trade.token_mint,
            len(wallets),
            self._window,
        )
        return Alert(
            kind=AlertKind.COORDINATED_BUY,
            wallet=trade.wallet,
            token_mint=trade.token_mint,
            usd_amount=trade.usd_amount,
            timestamp=now,
            wallets=tuple(wallets),
        )
