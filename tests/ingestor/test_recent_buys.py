"""Tests for RecentBuyWindow."""

from __future__ import annotations

import pytest

from copytrade_tracker.errors import StoreFailure
from copytrade_tracker.ingestor.recent_buys import DEFAULT_KEY_PREFIX, RecentBuyWindow
from tests.factories import TOKEN_MINT, WALLET_A, WALLET_B
from tests.fakes import FakeRedis

TTL = 3600
NOW_MS = 1_700_000_000_000


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def window(redis: FakeRedis) -> RecentBuyWindow:
    return RecentBuyWindow(redis)


class TestUpsert:
    async def test_returns_record_with_expiry(self, window: RecentBuyWindow) -> None:
        record = await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)

        assert record.wallet == WALLET_A
        assert record.token_mint == TOKEN_MINT
        assert record.timestamp_ms == NOW_MS
        assert record.expire_at_ms == NOW_MS + TTL * 1000

    async def test_sets_key_ttl(self, window: RecentBuyWindow, redis: FakeRedis) -> None:
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)
        assert redis.ttls[f"{DEFAULT_KEY_PREFIX}{TOKEN_MINT}"] == TTL

    async def test_repeat_buy_overwrites(self, window: RecentBuyWindow) -> None:
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS + 5_000, ttl_seconds=TTL)

        records = await window.query_by_token(TOKEN_MINT, since_ms=0, ttl_seconds=TTL)

        assert len(records) == 1
        assert records[0].timestamp_ms == NOW_MS + 5_000

    async def test_prunes_members_older_than_ttl(self, window: RecentBuyWindow) -> None:
        await window.upsert(WALLET_B, TOKEN_MINT, timestamp_ms=NOW_MS - (TTL + 1) * 1000, ttl_seconds=TTL)
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)

        records = await window.query_by_token(TOKEN_MINT, since_ms=0, ttl_seconds=TTL)

        assert [r.wallet for r in records] == [WALLET_A]

    async def test_redis_failure_is_store_failure(self) -> None:
        window = RecentBuyWindow(FakeRedis(fail=True))
        with pytest.raises(StoreFailure):
            await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)


class TestQueryByToken:
    async def test_filters_by_since(self, window: RecentBuyWindow) -> None:
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS - 10_000, ttl_seconds=TTL)
        await window.upsert(WALLET_B, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)

        records = await window.query_by_token(TOKEN_MINT, since_ms=NOW_MS - 5_000, ttl_seconds=TTL)

        assert [r.wallet for r in records] == [WALLET_B]

    async def test_since_is_inclusive(self, window: RecentBuyWindow) -> None:
        await window.upsert(WALLET_A, TOKEN_MINT, timestamp_ms=NOW_MS, ttl_seconds=TTL)

        records = await window.query_by_token(TOKEN_MINT, since_ms=NOW_MS, ttl_seconds=TTL)

        assert len(records) == 1

    async def test_unknown_token_is_empty(self, window: RecentBuyWindow) -> None:
        assert await window.query_by_token("unknown", since_ms=0, ttl_seconds=TTL) == []

    async def test_redis_failure_is_store_failure(self) -> None:
        window = RecentBuyWindow(FakeRedis(fail=True))
        with pytest.raises(StoreFailure):
            await window.query_by_token(TOKEN_MINT, since_ms=0, ttl_seconds=TTL)
