"""Error taxonomy shared across the tracker.

Each class maps to one recovery policy in the batch orchestrator:

- MalformedInputError: skip the item, log, continue.
- UpstreamUnavailableError: degrade (fallback price, skipped notification).
- ConcurrentUpdateConflict: retry the read-modify-write a bounded number of times.
- StoreFailure: fail the item, log with identity context.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


class MalformedInputError(TrackerError):
    """Raised when a raw swap record cannot be interpreted."""


class UpstreamUnavailableError(TrackerError):
    """Raised when an external service (price feed, Slack) fails or times out."""

    def __init__(self, message: str, *, service: str) -> None:
        super().__init__(message)
        self.service = service


class ConcurrentUpdateConflict(TrackerError):
    """Raised when a conditional position write loses a race."""

    def __init__(self, wallet: str, token_mint: str, *, expected_version: int | None) -> None:
        super().__init__(
            f"Position {wallet}/{token_mint} changed concurrently (expected version {expected_version})"
        )
        self.wallet = wallet
        self.token_mint = token_mint
        self.expected_version = expected_version


class StoreFailure(TrackerError):
    """Raised when a persistent backend (database, Redis) fails."""
