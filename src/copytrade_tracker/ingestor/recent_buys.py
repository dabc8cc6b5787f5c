"""Recent-buy window (Redis-backed).

Stores, per token mint, the last buy time of every wallet in a sorted set:
  key    = {prefix}{token_mint}
  member = wallet address
  score  = buy time in epoch milliseconds

ZADD overwrites the score of an existing member, so repeated buys of the
same token by one wallet coalesce into a single record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from copytrade_tracker.errors import StoreFailure

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "copytrade:recent_buys:"


@dataclass(frozen=True)
class RecentBuyRecord:
    """One wallet's most recent buy of a token."""

    wallet: str
    token_mint: str
    timestamp_ms: int
    expire_at_ms: int


class RecentBuyWindow:
    """Sliding set of recent buyers per token."""

    def __init__(self, redis: Redis, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        self._redis = redis
        self._prefix = key_prefix

    def _key(self, token_mint: str) -> str:
        return f"{self._prefix}{token_mint}"

    async def upsert(
        self,
        wallet: str,
        token_mint: str,
        *,
        timestamp_ms: int,
        ttl_seconds: int,
    ) -> RecentBuyRecord:
        """Record (or refresh) a wallet's buy of a token.

        Members older than the TTL are dropped in the same round trip and the
        key expires once no buy refreshed it for a full TTL.
        """
        key = self._key(token_mint)
        ttl_ms = ttl_seconds * 1000
        pipe = self._redis.pipeline()
        pipe.zadd(key, {wallet: timestamp_ms})
        pipe.zremrangebyscore(key, "-inf", f"({timestamp_ms - ttl_ms}")
        pipe.expire(key, ttl_seconds)
        try:
            await pipe.execute()
        except RedisError as e:
            raise StoreFailure(f"Failed to record recent buy {wallet}/{token_mint}: {e}") from e
        return RecentBuyRecord(
            wallet=wallet,
            token_mint=token_mint,
            timestamp_ms=timestamp_ms,
            expire_at_ms=timestamp_ms + ttl_ms,
        )

    async def query_by_token(
        self,
        token_mint: str,
        *,
        since_ms: int,
        ttl_seconds: int,
    ) -> list[RecentBuyRecord]:
        """Return buy records for `token_mint` with timestamp_ms >= since_ms."""
        try:
            raw = await self._redis.zrangebyscore(self._key(token_mint), since_ms, "+inf", withscores=True)
        except RedisError as e:
            raise StoreFailure(f"Failed to query recent buys for {token_mint}: {e}") from e

        records: list[RecentBuyRecord] = []
        for member, score in raw:
            wallet = member.decode() if isinstance(member, bytes) else str(member)
            timestamp_ms = int(score)
            records.append(
                RecentBuyRecord(
                    wallet=wallet,
                    token_mint=token_mint,
                    timestamp_ms=timestamp_ms,
                    expire_at_ms=timestamp_ms + ttl_seconds * 1000,
                )
            )
        return records
