"""Data ingestion layer - Swap classification, pricing and recent-buy tracking."""

from copytrade_tracker.ingestor.classifier import TradeClassifier
from copytrade_tracker.ingestor.models import Skip, SkipReason, Trade, TradeSide
from copytrade_tracker.ingestor.price import CoinGeckoPriceSource
from copytrade_tracker.ingestor.recent_buys import RecentBuyRecord, RecentBuyWindow

__all__ = [
    "CoinGeckoPriceSource",
    "RecentBuyRecord",
    "RecentBuyWindow",
    "Skip",
    "SkipReason",
    "Trade",
    "TradeClassifier",
    "TradeSide",
]
