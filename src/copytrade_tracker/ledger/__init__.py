"""Position ledger - Per-wallet, per-token position state transitions."""

from copytrade_tracker.ledger.models import Position
from copytrade_tracker.ledger.position import PositionLedger

__all__ = [
    "Position",
    "PositionLedger",
]
