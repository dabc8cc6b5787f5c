"""Swap record classification.

This module turns one raw enhanced-transaction record (as delivered by the
webhook) into a typed Trade, or a Skip when the record is not a token swap.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from copytrade_tracker.errors import MalformedInputError
from copytrade_tracker.ingestor.models import Skip, SkipReason, Trade, TradeSide

logger = logging.getLogger(__name__)

SWAP_TYPE = "SWAP"
LAMPORTS_PER_SOL_EXPONENT = 9


def _to_decimal(value: Any, *, field_name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise MalformedInputError(f"{field_name} is missing or not numeric: {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise MalformedInputError(f"{field_name} is not numeric: {value!r}") from e
    if not result.is_finite():
        raise MalformedInputError(f"{field_name} is not finite: {value!r}")
    return result


def lamports_to_sol(lamports: Any) -> Decimal:
    """Convert a lamport amount to SOL without float rounding."""
    return _to_decimal(lamports, field_name="native amount").scaleb(-LAMPORTS_PER_SOL_EXPONENT)


def scale_token_amount(raw_token_amount: Any) -> Decimal:
    """Scale a `rawTokenAmount` object ({tokenAmount, decimals}) to token units."""
    if not isinstance(raw_token_amount, Mapping):
        raise MalformedInputError("rawTokenAmount is missing")
    amount = _to_decimal(raw_token_amount.get("tokenAmount"), field_name="tokenAmount")
    decimals = raw_token_amount.get("decimals")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        raise MalformedInputError(f"decimals is invalid: {decimals!r}")
    return amount.scaleb(-decimals)


def _native_amount(swap: Mapping[str, Any], key: str) -> Any:
    native = swap.get(key)
    if not isinstance(native, Mapping):
        return 0
    return native.get("amount") or 0


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedInputError(f"timestamp is missing or not numeric: {raw!r}")
    try:
        return datetime.fromtimestamp(raw, tz=UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedInputError(f"timestamp out of range: {raw!r}") from e


class TradeClassifier:
    """Classifies raw swap records into buys and sells.

    Rules:
    1. Records whose ``type`` is not ``SWAP`` are skipped.
    2. A swap with at least one token output is a buy of the first output's
       mint, paid with the native input.
    3. Otherwise a swap with at least one token input is a sell of the first
       input's mint, paid out as native output.
    4. Anything else is skipped.

    Example:
        ```python
        classifier = TradeClassifier()
        outcome = classifier.classify(record, sol_price_usd=Decimal("200"))
        if isinstance(outcome, Trade):
            print(outcome.side, outcome.token_quantity)
        ```
    """

    def classify(self, record: Any, *, sol_price_usd: Decimal) -> Trade | Skip:
        """Classify one raw record.

        Args:
            record: Raw enhanced-transaction payload.
            sol_price_usd: SOL/USD price used to value the swap.

        Returns:
            Trade for token swaps, Skip otherwise.

        Raises:
            MalformedInputError: If the record is a swap but its token side
                or identity fields cannot be interpreted.
        """
        if not isinstance(record, Mapping):
            raise MalformedInputError(f"record is not an object: {type(record).__name__}")

        signature = str(record.get("signature") or "")
        if record.get("type") != SWAP_TYPE:
            return Skip(reason=SkipReason.NOT_SWAP, signature=signature)

        events = record.get("events")
        swap = events.get("swap") if isinstance(events, Mapping) else None
        if not isinstance(swap, Mapping):
            swap = {}

        token_outputs = swap.get("tokenOutputs") or []
        token_inputs = swap.get("tokenInputs") or []

        if token_outputs:
            side = TradeSide.BUY
            leg = token_outputs[0]
            sol_amount = lamports_to_sol(_native_amount(swap, "nativeInput"))
        elif token_inputs:
            side = TradeSide.SELL
            leg = token_inputs[0]
            sol_amount = lamports_to_sol(_native_amount(swap, "nativeOutput"))
        else:
            return Skip(reason=SkipReason.NO_TOKEN_SIDE, signature=signature)

        wallet = record.get("feePayer")
        if not isinstance(wallet, str) or not wallet:
            raise MalformedInputError(f"swap {signature or '?'} has no feePayer")
        if not isinstance(leg, Mapping):
            raise MalformedInputError(f"swap {signature or '?'} has a malformed token leg")
        token_mint = leg.get("mint")
        if not isinstance(token_mint, str) or not token_mint:
            raise MalformedInputError(f"swap {signature or '?'} has a token leg without a mint")

        token_quantity = scale_token_amount(leg.get("rawTokenAmount"))
        if token_quantity <= 0:
            raise MalformedInputError(
                f"swap {signature or '?'} has non-positive token quantity {token_quantity}"
            )
        if sol_amount < 0:
            raise MalformedInputError(f"swap {signature or '?'} has negative native amount")

        trade = Trade(
            wallet=wallet,
            token_mint=token_mint,
            side=side,
            token_quantity=token_quantity,
            sol_amount=sol_amount,
            usd_amount=sol_amount * sol_price_usd,
            occurred_at=_parse_timestamp(record.get("timestamp")),
            signature=signature,
        )
        logger.debug(
            "Classified %s: wallet=%s mint=%s qty=%s sol=%s",
            trade.side.value,
            trade.wallet,
            trade.token_mint,
            trade.token_quantity,
            trade.sol_amount,
        )
        return trade
