"""Tests for ChannelDirectory and AlertDispatcher."""

from __future__ import annotations

from decimal import Decimal

import pytest

from copytrade_tracker.alerter.dispatcher import AlertDispatcher, ChannelDirectory, channel_name_for
from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import Alert, AlertKind
from copytrade_tracker.errors import ConcurrentUpdateConflict, StoreFailure
from copytrade_tracker.storage.database import DatabaseManager
from copytrade_tracker.storage.repos import WalletRepository
from tests.factories import T0, TOKEN_MINT, WALLET_A, WALLET_B
from tests.fakes import FakeNotifier

OPS = "C0OPS"


def _alert(kind: AlertKind, **overrides) -> Alert:
    fields = {
        "kind": kind,
        "wallet": WALLET_A,
        "token_mint": TOKEN_MINT,
        "usd_amount": Decimal("200"),
        "timestamp": T0,
    }
    fields.update(overrides)
    return Alert(**fields)


def _dispatcher(
    notifier: FakeNotifier,
    db: DatabaseManager,
    *,
    ops_channel: str | None = OPS,
    dry_run: bool = False,
    auto_create: bool = False,
) -> AlertDispatcher:
    return AlertDispatcher(
        notifier,
        AlertFormatter(),
        ChannelDirectory(notifier, db, auto_create=auto_create),
        ops_channel=ops_channel,
        dry_run=dry_run,
    )


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier(channels={channel_name_for(WALLET_A): "C_A"})


# ============================================================================
# ChannelDirectory Tests
# ============================================================================


class TestChannelDirectory:
    def test_channel_name_is_lower_case(self) -> None:
        assert channel_name_for("AbC123") == "abc123"

    async def test_resolves_by_name_and_stores_id(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        directory = ChannelDirectory(notifier, db)

        assert await directory.resolve(WALLET_A) == "C_A"

        async with db.get_async_session() as session:
            record = await WalletRepository(session).get(WALLET_A)
        assert record is not None
        assert record.channel_id == "C_A"

    async def test_stored_id_wins(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            await WalletRepository(session).set_channel(WALLET_A, "C_STORED")

        assert await ChannelDirectory(notifier, db).resolve(WALLET_A) == "C_STORED"

    async def test_unknown_wallet_without_auto_create(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        assert await ChannelDirectory(notifier, db).resolve(WALLET_B) is None
        assert notifier.created == []

    async def test_auto_create(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        channel_id = await ChannelDirectory(notifier, db, auto_create=True).resolve(WALLET_B)

        assert channel_id is not None
        assert notifier.created == [WALLET_B.lower()]

    async def test_wallet_insert_race_is_retried(
        self, notifier: FakeNotifier, db: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        original = WalletRepository.set_channel
        calls = 0

        async def racing_set_channel(self, address, channel_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConcurrentUpdateConflict(address, "", expected_version=None)
            return await original(self, address, channel_id)

        monkeypatch.setattr(WalletRepository, "set_channel", racing_set_channel)

        assert await ChannelDirectory(notifier, db).resolve(WALLET_A) == "C_A"
        assert calls == 2

    async def test_repeated_insert_race_becomes_store_failure(
        self, notifier: FakeNotifier, db: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def always_racing(self, address, channel_id):
            raise ConcurrentUpdateConflict(address, "", expected_version=None)

        monkeypatch.setattr(WalletRepository, "set_channel", always_racing)

        with pytest.raises(StoreFailure):
            await ChannelDirectory(notifier, db).resolve(WALLET_A)
        # The dispatcher logs the failure and drops the alert.
        assert await _dispatcher(notifier, db).dispatch(_alert(AlertKind.NEW_POSITION)) is None
        assert notifier.posts == []


# ============================================================================
# AlertDispatcher Tests
# ============================================================================


class TestDispatch:
    async def test_new_position_starts_thread(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        handle = await _dispatcher(notifier, db).dispatch(_alert(AlertKind.NEW_POSITION))

        assert handle == notifier.posts[0]["ts"]
        assert len(notifier.posts) == 1
        post = notifier.posts[0]
        assert post["channel"] == "C_A"
        assert post["thread_id"] is None
        assert post["reply_broadcast"] is False

    async def test_sell_replies_in_thread(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        await _dispatcher(notifier, db).dispatch(_alert(AlertKind.HALF_SELL, thread_id="ts-1"))

        post = notifier.posts[0]
        assert post["thread_id"] == "ts-1"
        assert post["reply_broadcast"] is False

    async def test_third_buy_broadcasts_and_mirrors(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        handle = await _dispatcher(notifier, db).dispatch(_alert(AlertKind.THIRD_BUY, thread_id="ts-1"))

        assert [p["channel"] for p in notifier.posts] == ["C_A", OPS]
        assert notifier.posts[0]["reply_broadcast"] is True
        assert notifier.posts[1]["thread_id"] is None
        assert handle == notifier.posts[0]["ts"]

    async def test_third_buy_without_thread_is_not_broadcast(
        self, notifier: FakeNotifier, db: DatabaseManager
    ) -> None:
        await _dispatcher(notifier, db).dispatch(_alert(AlertKind.THIRD_BUY))
        assert notifier.posts[0]["reply_broadcast"] is False

    async def test_coordinated_buy_goes_to_ops_only(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        alert = _alert(AlertKind.COORDINATED_BUY, wallets=(WALLET_A, WALLET_B))

        handle = await _dispatcher(notifier, db).dispatch(alert)

        assert [p["channel"] for p in notifier.posts] == [OPS]
        assert handle is not None

    async def test_coordinated_buy_without_ops_channel(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        alert = _alert(AlertKind.COORDINATED_BUY, wallets=(WALLET_A, WALLET_B))
        assert await _dispatcher(notifier, db, ops_channel=None).dispatch(alert) is None
        assert notifier.posts == []

    async def test_wallet_without_channel_drops_alert(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        handle = await _dispatcher(notifier, db).dispatch(_alert(AlertKind.NEW_POSITION, wallet=WALLET_B))
        assert handle is None
        assert notifier.posts == []

    async def test_delivery_failure_is_swallowed(self, db: DatabaseManager) -> None:
        notifier = FakeNotifier(channels={channel_name_for(WALLET_A): "C_A"}, fail_posts=True)

        assert await _dispatcher(notifier, db).dispatch(_alert(AlertKind.NEW_POSITION)) is None
        assert await _dispatcher(notifier, db).dispatch(_alert(AlertKind.THIRD_BUY, thread_id="ts-1")) is None

    async def test_dry_run_posts_nothing(self, notifier: FakeNotifier, db: DatabaseManager) -> None:
        dispatcher = _dispatcher(notifier, db, dry_run=True)

        assert await dispatcher.dispatch(_alert(AlertKind.NEW_POSITION)) is None
        assert notifier.posts == []
