"""Tests for TradeClassifier."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from copytrade_tracker.errors import MalformedInputError
from copytrade_tracker.ingestor.classifier import (
    TradeClassifier,
    lamports_to_sol,
    scale_token_amount,
)
from copytrade_tracker.ingestor.models import Skip, SkipReason, Trade, TradeSide
from tests.factories import TOKEN_MINT, WALLET_A, make_swap

PRICE = Decimal("200")


@pytest.fixture
def classifier() -> TradeClassifier:
    return TradeClassifier()


class TestHelpers:
    def test_lamports_to_sol_is_exact(self) -> None:
        assert lamports_to_sol("1500000001") == Decimal("1.500000001")
        assert lamports_to_sol(1) == Decimal("0.000000001")

    def test_scale_token_amount(self) -> None:
        assert scale_token_amount({"tokenAmount": "123456", "decimals": 3}) == Decimal("123.456")
        assert scale_token_amount({"tokenAmount": "5", "decimals": 0}) == Decimal("5")

    def test_scale_token_amount_rejects_bad_decimals(self) -> None:
        with pytest.raises(MalformedInputError):
            scale_token_amount({"tokenAmount": "5", "decimals": -1})
        with pytest.raises(MalformedInputError):
            scale_token_amount({"tokenAmount": "5", "decimals": "6"})

    def test_scale_token_amount_requires_object(self) -> None:
        with pytest.raises(MalformedInputError):
            scale_token_amount(None)


class TestClassifyBuy:
    def test_buy_from_token_output(self, classifier: TradeClassifier) -> None:
        record = make_swap(side="BUY", token_amount="10000000", decimals=6, lamports=1_000_000_000)

        trade = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(trade, Trade)
        assert trade.side == TradeSide.BUY
        assert trade.wallet == WALLET_A
        assert trade.token_mint == TOKEN_MINT
        assert trade.token_quantity == Decimal("10")
        assert trade.sol_amount == Decimal("1")
        assert trade.usd_amount == Decimal("200")
        assert trade.entry_price_sol == Decimal("0.1")
        assert trade.signature == "sig"

    def test_timestamp_is_utc(self, classifier: TradeClassifier) -> None:
        trade = classifier.classify(make_swap(timestamp=1_700_000_000), sol_price_usd=PRICE)
        assert isinstance(trade, Trade)
        assert trade.occurred_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    def test_out_of_range_timestamp(self, classifier: TradeClassifier) -> None:
        # Epoch milliseconds are not accepted; the field is epoch seconds.
        with pytest.raises(MalformedInputError):
            classifier.classify(make_swap(timestamp=1_700_000_000_000), sol_price_usd=PRICE)

    def test_first_output_wins(self, classifier: TradeClassifier) -> None:
        record = make_swap(side="BUY")
        extra = {
            "mint": "So11111111111111111111111111111111111111112",
            "rawTokenAmount": {"tokenAmount": "1", "decimals": 0},
        }
        record["events"]["swap"]["tokenOutputs"].append(extra)

        trade = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(trade, Trade)
        assert trade.token_mint == TOKEN_MINT

    def test_missing_native_input_is_zero(self, classifier: TradeClassifier) -> None:
        record = make_swap(side="BUY")
        del record["events"]["swap"]["nativeInput"]

        trade = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(trade, Trade)
        assert trade.sol_amount == 0
        assert trade.usd_amount == 0


class TestClassifySell:
    def test_sell_from_token_input(self, classifier: TradeClassifier) -> None:
        record = make_swap(side="SELL", token_amount="5000000", lamports=750_000_000)

        trade = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(trade, Trade)
        assert trade.side == TradeSide.SELL
        assert trade.token_quantity == Decimal("5")
        assert trade.sol_amount == Decimal("0.75")
        assert trade.usd_amount == Decimal("150")


class TestSkips:
    def test_non_swap_is_skipped(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        record["type"] = "TRANSFER"

        outcome = classifier.classify(record, sol_price_usd=PRICE)

        assert outcome == Skip(reason=SkipReason.NOT_SWAP, signature="sig")

    def test_swap_without_token_legs_is_skipped(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        record["events"]["swap"]["tokenOutputs"] = []

        outcome = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(outcome, Skip)
        assert outcome.reason == SkipReason.NO_TOKEN_SIDE

    def test_swap_without_events_is_skipped(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        del record["events"]

        outcome = classifier.classify(record, sol_price_usd=PRICE)

        assert isinstance(outcome, Skip)
        assert outcome.reason == SkipReason.NO_TOKEN_SIDE


class TestMalformed:
    def test_non_object_record(self, classifier: TradeClassifier) -> None:
        with pytest.raises(MalformedInputError):
            classifier.classify(["not", "a", "record"], sol_price_usd=PRICE)

    def test_missing_fee_payer(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        del record["feePayer"]
        with pytest.raises(MalformedInputError):
            classifier.classify(record, sol_price_usd=PRICE)

    def test_missing_mint(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        del record["events"]["swap"]["tokenOutputs"][0]["mint"]
        with pytest.raises(MalformedInputError):
            classifier.classify(record, sol_price_usd=PRICE)

    def test_missing_raw_token_amount(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        del record["events"]["swap"]["tokenOutputs"][0]["rawTokenAmount"]
        with pytest.raises(MalformedInputError):
            classifier.classify(record, sol_price_usd=PRICE)

    def test_zero_quantity(self, classifier: TradeClassifier) -> None:
        with pytest.raises(MalformedInputError):
            classifier.classify(make_swap(token_amount="0"), sol_price_usd=PRICE)

    def test_non_numeric_token_amount(self, classifier: TradeClassifier) -> None:
        with pytest.raises(MalformedInputError):
            classifier.classify(make_swap(token_amount="lots"), sol_price_usd=PRICE)

    def test_missing_timestamp(self, classifier: TradeClassifier) -> None:
        record = make_swap()
        del record["timestamp"]
        with pytest.raises(MalformedInputError):
            classifier.classify(record, sol_price_usd=PRICE)
