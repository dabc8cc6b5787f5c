"""In-memory stand-ins for the tracker's external collaborators."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError

from copytrade_tracker.alerter.models import Alert, FormattedAlert, WalletStats
from copytrade_tracker.errors import UpstreamUnavailableError


def _bound(value: Any) -> tuple[float, bool]:
    """Parse a Redis score bound into (value, exclusive)."""
    text = str(value)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    return float(text), exclusive


def _in_range(score: float, low: Any, high: Any) -> bool:
    lo, lo_ex = _bound(low)
    hi, hi_ex = _bound(high)
    above = score > lo if lo_ex else score >= lo
    below = score < hi if hi_ex else score <= hi
    return above and below


class FakeRedis:
    """Sorted-set subset of redis.asyncio.Redis.

    Members are stored as bytes, like a client created without
    decode_responses.
    """

    def __init__(self, *, fail: bool = False) -> None:
        self.zsets: dict[str, dict[bytes, float]] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self._check()
        zset = self.zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            raw = member.encode() if isinstance(member, str) else member
            if raw not in zset:
                added += 1
            zset[raw] = float(score)
        return added

    async def zremrangebyscore(self, key: str, low: Any, high: Any) -> int:
        self._check()
        zset = self.zsets.get(key, {})
        doomed = [m for m, s in zset.items() if _in_range(s, low, high)]
        for member in doomed:
            del zset[member]
        return len(doomed)

    async def zrangebyscore(
        self, key: str, low: Any, high: Any, withscores: bool = False
    ) -> list[Any]:
        self._check()
        zset = self.zsets.get(key, {})
        items = sorted(
            ((m, s) for m, s in zset.items() if _in_range(s, low, high)),
            key=lambda item: (item[1], item[0]),
        )
        if withscores:
            return items
        return [m for m, _ in items]

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.ttls[key] = seconds
        return key in self.zsets

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def zadd(self, *args: Any, **kwargs: Any) -> FakePipeline:
        self._ops.append(("zadd", args, kwargs))
        return self

    def zremrangebyscore(self, *args: Any, **kwargs: Any) -> FakePipeline:
        self._ops.append(("zremrangebyscore", args, kwargs))
        return self

    def expire(self, *args: Any, **kwargs: Any) -> FakePipeline:
        self._ops.append(("expire", args, kwargs))
        return self

    async def execute(self) -> list[Any]:
        self._redis._check()
        results = []
        for name, args, kwargs in self._ops:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._ops.clear()
        return results


class FakeNotifier:
    """Records Slack calls and hands out increasing message timestamps."""

    def __init__(
        self,
        *,
        channels: dict[str, str] | None = None,
        fail_posts: bool = False,
    ) -> None:
        self.channels = dict(channels or {})
        self.fail_posts = fail_posts
        self.posts: list[dict[str, Any]] = []
        self.pins: list[tuple[str, str]] = []
        self.created: list[str] = []
        self._counter = 0

    async def post(
        self,
        channel: str,
        message: FormattedAlert,
        *,
        thread_id: str | None = None,
        reply_broadcast: bool = False,
    ) -> str:
        if self.fail_posts:
            raise UpstreamUnavailableError("slack is down", service="slack")
        self._counter += 1
        ts = f"1700000000.{self._counter:06d}"
        self.posts.append(
            {
                "channel": channel,
                "text": message.text,
                "thread_id": thread_id,
                "reply_broadcast": reply_broadcast,
                "ts": ts,
            }
        )
        return ts

    async def find_channel(self, name: str) -> str | None:
        return self.channels.get(name)

    async def create_channel(self, name: str) -> str:
        channel_id = f"C{len(self.channels) + 1:04d}"
        self.channels[name] = channel_id
        self.created.append(name)
        return channel_id

    async def pin(self, channel: str, ts: str) -> None:
        self.pins.append((channel, ts))


class RecordingDispatcher:
    """AlertSink that records alerts and returns a handle per alert."""

    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    async def dispatch(self, alert: Alert) -> str | None:
        self.alerts.append(alert)
        return f"ts-{len(self.alerts)}"


class StaticPriceSource:
    def __init__(self, price: Decimal | None) -> None:
        self.price = price
        self.calls = 0

    async def get_spot_price_usd(self, asset: str = "solana") -> Decimal:
        self.calls += 1
        if self.price is None:
            raise UpstreamUnavailableError("price feed down", service="price")
        return self.price


class StaticStatsProvider:
    def __init__(self, stats: dict[str, WalletStats]) -> None:
        self.stats = stats

    async def get_stats(self, wallet: str) -> WalletStats:
        if wallet not in self.stats:
            raise UpstreamUnavailableError(f"no stats for {wallet}", service="stats")
        return self.stats[wallet]
