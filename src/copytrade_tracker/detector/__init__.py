"""Detector module - Cross-wallet signal detection."""

from copytrade_tracker.detector.coordinated_buy import CoordinatedBuyDetector

__all__ = [
    "CoordinatedBuyDetector",
]
