"""Batch orchestrator for the copy-trade tracker.

This module provides the BatchProcessor class that carries one webhook batch
from raw records through classification, the position ledger, coordinated
buy detection and alert delivery, and the Tracker class that wires those
components from Settings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

import httpx
from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from copytrade_tracker.alerter.dispatcher import AlertDispatcher, ChannelDirectory
from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import Alert, AlertKind
from copytrade_tracker.alerter.profit_report import ProfitReporter, WalletStatsProvider
from copytrade_tracker.alerter.slack import SlackNotifier
from copytrade_tracker.config import Settings, get_settings
from copytrade_tracker.detector.coordinated_buy import CoordinatedBuyDetector
from copytrade_tracker.errors import (
    ConcurrentUpdateConflict,
    MalformedInputError,
    StoreFailure,
    UpstreamUnavailableError,
)
from copytrade_tracker.ingestor.classifier import TradeClassifier
from copytrade_tracker.ingestor.models import Skip, Trade
from copytrade_tracker.ingestor.price import CoinGeckoPriceSource
from copytrade_tracker.ingestor.recent_buys import RecentBuyWindow
from copytrade_tracker.ledger.position import PositionLedger
from copytrade_tracker.storage.database import DatabaseManager
from copytrade_tracker.storage.repos import (
    PositionRepository,
    ProcessingErrorDTO,
    ProcessingErrorRepository,
    WalletRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_SOL_USD = Decimal("190")
DEFAULT_MAX_CONFLICT_RETRIES = 3
DEFAULT_MAX_CONCURRENCY = 1


class PriceSource(Protocol):
    async def get_spot_price_usd(self, asset: str = ...) -> Decimal: ...


class AlertSink(Protocol):
    async def dispatch(self, alert: Alert) -> str | None: ...


@dataclass
class BatchResult:
    """Counters for one processed batch."""

    received: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    alerts_sent: int = 0
    sol_price_usd: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "alerts_sent": self.alerts_sent,
            "sol_price_usd": str(self.sol_price_usd),
        }


class BatchProcessor:
    """Processes webhook batches.

    Per batch:
    1. Fetch the SOL/USD price once, falling back to a fixed price
    2. Classify every record (skips and malformed records are counted)
    3. Group trades into per-(wallet, token) lanes that keep arrival order
    4. Apply each trade to its position in one transaction, retrying the
       read-modify-write when a concurrent writer wins the version check
    5. Feed buys to the coordinated-buy detector
    6. Dispatch ledger alerts, then the coordinated-buy alert

    A failing item is logged, persisted to the error table and counted; it
    never stops the rest of the batch.

    Example:
        ```python
        processor = BatchProcessor(
            db=db,
            ledger=PositionLedger(),
            detector=detector,
            dispatcher=dispatcher,
            price_source=price_source,
        )
        result = await processor.process_batch(records)
        print(result.to_dict())
        ```
    """

    def __init__(
        self,
        *,
        db: DatabaseManager,
        ledger: PositionLedger,
        detector: CoordinatedBuyDetector | None,
        dispatcher: AlertSink,
        price_source: PriceSource,
        classifier: TradeClassifier | None = None,
        fallback_sol_usd: Decimal = DEFAULT_FALLBACK_SOL_USD,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            db: Database manager for positions, wallets and errors.
            ledger: Position state machine.
            detector: Coordinated-buy detector, or None to disable detection.
            dispatcher: Alert delivery.
            price_source: SOL/USD spot price source.
            classifier: Record classifier (defaults to TradeClassifier()).
            fallback_sol_usd: Price used when the lookup fails.
            max_conflict_retries: Retries after a lost version check.
            max_concurrency: Lanes processed at the same time (1 = sequential).
            clock: Processing clock handed to the detector.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._db = db
        self._ledger = ledger
        self._detector = detector
        self._dispatcher = dispatcher
        self._price_source = price_source
        self._classifier = classifier or TradeClassifier()
        self._fallback_sol_usd = fallback_sol_usd
        self._max_conflict_retries = max_conflict_retries
        self._max_concurrency = max_concurrency
        self._clock = clock or (lambda: datetime.now(UTC))

    async def process_batch(self, records: Sequence[Any]) -> BatchResult:
        """Process one batch of raw records.

        Args:
            records: Raw enhanced-transaction records, in arrival order.

        Returns:
            BatchResult counters.
        """
        result = BatchResult(received=len(records))
        result.sol_price_usd = await self._get_sol_price()

        lanes: dict[tuple[str, str], list[Trade]] = {}
        for record in records:
            try:
                outcome = self._classifier.classify(record, sol_price_usd=result.sol_price_usd)
            except MalformedInputError as e:
                result.failed += 1
                signature = str(record.get("signature") or "") if isinstance(record, Mapping) else ""
                logger.warning("Malformed record %s: %s", signature or "?", e)
                await self._record_error(stage="classify", error=e, signature=signature)
                continue

            if isinstance(outcome, Skip):
                result.skipped += 1
                logger.info("Skipping record %s: %s", outcome.signature or "?", outcome.reason.value)
                continue

            lanes.setdefault(outcome.identity, []).append(outcome)

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_lane(trades: list[Trade]) -> None:
            async with semaphore:
                for trade in trades:
                    await self._process_trade(trade, result)

        await asyncio.gather(*(run_lane(trades) for trades in lanes.values()))

        logger.info(
            "Batch done: received=%d processed=%d skipped=%d failed=%d alerts=%d",
            result.received,
            result.processed,
            result.skipped,
            result.failed,
            result.alerts_sent,
        )
        return result

    async def _get_sol_price(self) -> Decimal:
        try:
            return await self._price_source.get_spot_price_usd()
        except UpstreamUnavailableError as e:
            logger.warning("SOL price unavailable, using fallback %s: %s", self._fallback_sol_usd, e)
            return self._fallback_sol_usd

    async def _process_trade(self, trade: Trade, result: BatchResult) -> None:
        try:
            alerts = await self._apply_with_retry(trade)
        except Exception as e:
            result.failed += 1
            logger.error(
                "Failed to apply %s %s/%s (sig=%s): %s",
                trade.side.value,
                trade.wallet,
                trade.token_mint,
                trade.signature or "?",
                e,
            )
            await self._record_error(stage="ledger", error=e, trade=trade)
            return
        result.processed += 1

        if trade.is_buy and self._detector is not None:
            try:
                coordinated = await self._detector.observe(trade, now=self._clock())
            except Exception as e:
                logger.warning(
                    "Coordinated-buy check failed for %s/%s: %s",
                    trade.wallet,
                    trade.token_mint,
                    e,
                )
                await self._record_error(stage="detect", error=e, trade=trade)
            else:
                if coordinated is not None:
                    alerts.append(coordinated)

        for alert in alerts:
            try:
                handle = await self._dispatcher.dispatch(alert)
            except Exception as e:
                logger.error(
                    "Failed to dispatch %s alert for %s/%s: %s",
                    alert.kind.value,
                    trade.wallet,
                    trade.token_mint,
                    e,
                )
                await self._record_error(stage="dispatch", error=e, trade=trade)
                continue
            if handle is None:
                continue
            result.alerts_sent += 1
            if alert.kind == AlertKind.NEW_POSITION:
                await self._store_thread_id(trade, handle)

    async def _apply_with_retry(self, trade: Trade) -> list[Alert]:
        """Read, apply and conditionally write one trade.

        Raises:
            ConcurrentUpdateConflict: After exhausting the retries.
            StoreFailure: On database errors.
        """
        attempt = 0
        while True:
            try:
                return await self._apply_once(trade)
            except ConcurrentUpdateConflict as e:
                attempt += 1
                if attempt > self._max_conflict_retries:
                    raise
                logger.warning(
                    "Concurrent update on %s/%s, retrying (%d/%d): %s",
                    trade.wallet,
                    trade.token_mint,
                    attempt,
                    self._max_conflict_retries,
                    e,
                )
            except SQLAlchemyError as e:
                raise StoreFailure(
                    f"Database error for {trade.wallet}/{trade.token_mint}: {e}"
                ) from e

    async def _apply_once(self, trade: Trade) -> list[Alert]:
        async with self._db.get_async_session() as session:
            positions = PositionRepository(session)
            existing = await positions.get(trade.wallet, trade.token_mint)
            position, alerts = self._ledger.apply(existing, trade)

            if position.closed:
                if existing is not None:
                    await positions.delete(
                        trade.wallet, trade.token_mint, expected_version=existing.version
                    )
                await WalletRepository(session).add_profit(trade.wallet, position.realized_profit_usd)
                logger.info(
                    "Closed position %s/%s realized=%s",
                    trade.wallet,
                    trade.token_mint,
                    position.realized_profit_usd,
                )
            elif existing is None:
                await positions.insert(position)
                logger.info("Opened position %s/%s qty=%s", trade.wallet, trade.token_mint, position.quantity)
            else:
                await positions.update(position, expected_version=existing.version)
                logger.debug(
                    "Updated position %s/%s qty=%s buys=%d sells=%d",
                    trade.wallet,
                    trade.token_mint,
                    position.quantity,
                    position.buy_count,
                    position.sell_count,
                )
        return alerts

    async def _store_thread_id(self, trade: Trade, handle: str) -> None:
        try:
            async with self._db.get_async_session() as session:
                stored = await PositionRepository(session).set_thread_id_if_absent(
                    trade.wallet, trade.token_mint, handle
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to store thread id for %s/%s: %s", trade.wallet, trade.token_mint, e)
            return
        if not stored:
            logger.debug("Thread id for %s/%s already set or position gone", trade.wallet, trade.token_mint)

    async def _record_error(
        self,
        *,
        stage: str,
        error: BaseException,
        trade: Trade | None = None,
        signature: str = "",
    ) -> None:
        dto = ProcessingErrorDTO(
            signature=trade.signature if trade else signature,
            wallet=trade.wallet if trade else "",
            token_mint=trade.token_mint if trade else "",
            stage=stage,
            error_type=error.__class__.__name__,
            message=str(error),
            created_at=datetime.now(UTC),
        )
        try:
            async with self._db.get_async_session() as session:
                await ProcessingErrorRepository(session).insert_many([dto])
        except SQLAlchemyError as e:
            logger.error("Failed to persist %s error: %s", stage, e)


class TrackerState(str, Enum):
    """Tracker lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class Tracker:
    """Wires the tracker's components from Settings.

    Owns the Redis client, the database engine and the HTTP client used for
    the price feed and Slack.

    Example:
        ```python
        async with Tracker(get_settings()) as tracker:
            result = await tracker.processor.process_batch(records)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        stats_provider: WalletStatsProvider | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alerts instead of sending them. Overrides settings.dry_run.
            stats_provider: Optional wallet stats source for profit reports.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._stats_provider = stats_provider

        self._state = TrackerState.STOPPED
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._http: httpx.AsyncClient | None = None
        self._processor: BatchProcessor | None = None
        self._reporter: ProfitReporter | None = None

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def processor(self) -> BatchProcessor:
        if self._processor is None:
            raise RuntimeError("Tracker is not started")
        return self._processor

    @property
    def reporter(self) -> ProfitReporter:
        if self._reporter is None:
            raise RuntimeError("Tracker is not started")
        return self._reporter

    async def start(self) -> None:
        """Create clients and components.

        Raises:
            RuntimeError: If the tracker is already running.
        """
        if self._state != TrackerState.STOPPED:
            raise RuntimeError(f"Cannot start tracker in state {self._state}")
        self._state = TrackerState.STARTING
        logger.info("Starting tracker...")

        try:
            self._initialize_components()
            self._state = TrackerState.RUNNING
            logger.info("Tracker started (dry_run=%s)", self._dry_run)
        except Exception as e:
            self._state = TrackerState.ERROR
            logger.error("Failed to start tracker: %s", e)
            await self._cleanup()
            raise

    def _initialize_components(self) -> None:
        s = self._settings

        self._redis = Redis.from_url(s.redis.url)
        self._db_manager = DatabaseManager(s.database.url)
        self._http = httpx.AsyncClient()

        token = s.slack.bot_token.get_secret_value() if s.slack.bot_token else ""
        notifier = SlackNotifier(
            self._http,
            token=token,
            api_url=s.slack.api_url,
            timeout_seconds=s.slack.timeout_seconds,
        )
        formatter = AlertFormatter(
            display_timezone=s.display_timezone,
            coordinated_window_seconds=s.coordinated.window_seconds,
        )
        channels = ChannelDirectory(
            notifier,
            self._db_manager,
            auto_create=s.slack.auto_create_channels,
        )
        dispatcher = AlertDispatcher(
            notifier,
            formatter,
            channels,
            ops_channel=s.slack.ops_channel,
            dry_run=self._dry_run,
        )
        detector = CoordinatedBuyDetector(
            RecentBuyWindow(self._redis),
            window=timedelta(seconds=s.coordinated.window_seconds),
            record_ttl=timedelta(seconds=s.coordinated.record_ttl_seconds),
            min_wallets=s.coordinated.min_wallets,
        )
        self._processor = BatchProcessor(
            db=self._db_manager,
            ledger=PositionLedger(
                close_threshold=s.ledger.close_threshold,
                third_buy_count=s.ledger.third_buy_count,
            ),
            detector=detector,
            dispatcher=dispatcher,
            price_source=CoinGeckoPriceSource(
                self._http,
                api_url=s.price.api_url,
                timeout_seconds=s.price.timeout_seconds,
            ),
            fallback_sol_usd=s.price.fallback_sol_usd,
            max_conflict_retries=s.processing.max_conflict_retries,
            max_concurrency=s.processing.max_concurrency,
        )
        self._reporter = ProfitReporter(
            notifier,
            formatter,
            self._db_manager,
            stats_provider=self._stats_provider,
            wallet_delay_seconds=s.report.wallet_delay_seconds,
            dry_run=self._dry_run,
        )

    async def init_schema(self) -> None:
        """Create the tables directly (development and SQLite setups)."""
        if self._db_manager is None:
            raise RuntimeError("Tracker is not started")
        await self._db_manager.init_schema_async()

    async def stop(self) -> None:
        """Release all clients."""
        if self._state == TrackerState.STOPPED:
            return
        self._state = TrackerState.STOPPING
        logger.info("Stopping tracker...")
        await self._cleanup()
        self._state = TrackerState.STOPPED
        logger.info("Tracker stopped")

    async def _cleanup(self) -> None:
        """Clean up resources."""
        self._processor = None
        self._reporter = None

        if self._http is not None:
            await self._http.aclose()
            self._http = None

        if self._db_manager is not None:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def __aenter__(self) -> Tracker:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
