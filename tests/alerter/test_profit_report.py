"""Tests for ProfitReporter."""

from __future__ import annotations

from decimal import Decimal

from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import WalletStats
from copytrade_tracker.alerter.profit_report import ProfitReporter
from copytrade_tracker.storage.database import DatabaseManager
from copytrade_tracker.storage.repos import WalletRecord, WalletRepository
from tests.factories import T0, WALLET_A, WALLET_B, WALLET_C
from tests.fakes import FakeNotifier, StaticStatsProvider


async def _seed(db: DatabaseManager) -> None:
    async with db.get_async_session() as session:
        repo = WalletRepository(session)
        await repo.set_channel(WALLET_A, "C_A")
        await repo.add_profit(WALLET_A, Decimal("150"))
        await repo.set_channel(WALLET_B, "C_B")
        await repo.add_profit(WALLET_C, Decimal("99"))


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestProfitReporter:
    async def test_posts_and_pins_every_wallet_with_channel(self, db: DatabaseManager) -> None:
        await _seed(db)
        notifier = FakeNotifier()
        sleeps = _Sleeps()
        reporter = ProfitReporter(
            notifier, AlertFormatter(), db, wallet_delay_seconds=10, sleep=sleeps, clock=lambda: T0
        )

        posted = await reporter.run()

        assert posted == 2
        assert [p["channel"] for p in notifier.posts] == ["C_A", "C_B"]
        assert "Realized profit (tracked): $150.00" in notifier.posts[0]["text"]
        assert notifier.pins == [("C_A", notifier.posts[0]["ts"]), ("C_B", notifier.posts[1]["ts"])]
        assert sleeps.calls == [10]

        async with db.get_async_session() as session:
            record = await WalletRepository(session).get(WALLET_A)
        assert record is not None
        assert record.pinned_message_ts == notifier.posts[0]["ts"]

    async def test_includes_provider_stats(self, db: DatabaseManager) -> None:
        await _seed(db)
        notifier = FakeNotifier()
        provider = StaticStatsProvider({WALLET_A: WalletStats(profit_30d=Decimal("500"))})
        reporter = ProfitReporter(
            notifier, AlertFormatter(), db, stats_provider=provider, wallet_delay_seconds=0
        )

        await reporter.run()

        assert "Realized profit 30d: $500.00" in notifier.posts[0]["text"]
        # Provider failure for the second wallet degrades to the tracked figure.
        assert "30d" not in notifier.posts[1]["text"]

    async def test_post_failure_continues_with_next_wallet(self, db: DatabaseManager) -> None:
        await _seed(db)
        notifier = FakeNotifier(fail_posts=True)
        reporter = ProfitReporter(notifier, AlertFormatter(), db, wallet_delay_seconds=0)

        assert await reporter.run() == 0
        assert notifier.pins == []

    async def test_dry_run_posts_nothing(self, db: DatabaseManager) -> None:
        await _seed(db)
        notifier = FakeNotifier()
        reporter = ProfitReporter(notifier, AlertFormatter(), db, wallet_delay_seconds=0, dry_run=True)

        assert await reporter.run() == 0
        assert notifier.posts == []

    async def test_no_wallets(self, db: DatabaseManager) -> None:
        notifier = FakeNotifier()
        assert await ProfitReporter(notifier, AlertFormatter(), db).run() == 0

    async def test_wallet_without_channel_is_skipped(self, db: DatabaseManager, monkeypatch) -> None:
        await _seed(db)

        async def listed(self):
            return [
                WalletRecord(address=WALLET_A, channel_id="C_A", realized_profit_usd=Decimal("150")),
                WalletRecord(address=WALLET_B, channel_id=None, realized_profit_usd=Decimal("0")),
            ]

        monkeypatch.setattr(WalletRepository, "list_with_channel", listed)
        notifier = FakeNotifier()
        reporter = ProfitReporter(notifier, AlertFormatter(), db, wallet_delay_seconds=0)

        assert await reporter.run() == 1
        assert [p["channel"] for p in notifier.posts] == ["C_A"]
