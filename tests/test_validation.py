"""Tests for the ingestion boundary: loose records -> validated Orders."""

import dataclasses
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from trade_core.contracts import OrderSide
from trade_core.errors import MalformedOrder
from trade_core.validation import OrderLimits, canonical_order, order_from_record, validate_order


def _record(**overrides) -> dict:
    record = {
        "order_id": "a1",
        "symbol": "aapl",
        "side": "buy",
        "quantity": "100",
        "price": "189.25",
        "executed_at": "2024-01-02T14:30:00Z",
    }
    record.update(overrides)
    return record


class TestOrderFromRecord:
    def test_converts_strings(self) -> None:
        order = order_from_record(_record(), sequence=7)
        assert order.symbol == "AAPL"
        assert order.side is OrderSide.BUY
        assert order.quantity == 100
        assert order.price == Decimal("189.25")
        assert order.executed_at == datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)
        assert order.sequence == 7
        assert order.commission == Decimal("0")

    def test_float_price_becomes_exact_decimal(self) -> None:
        order = order_from_record(_record(price=10.1, quantity=3))
        assert order.price == Decimal("10.1")

    def test_negative_commission_is_debit(self) -> None:
        order = order_from_record(_record(commission="-1.00", fees=-0.02))
        assert order.commission == Decimal("1.00")
        assert order.fees == Decimal("0.02")

    def test_naive_timestamp_is_utc(self) -> None:
        order = order_from_record(_record(executed_at="2024-01-02 09:30:00"))
        assert order.executed_at.tzinfo is not None
        assert order.executed_at.hour == 9

    def test_offset_timestamp_normalized(self) -> None:
        order = order_from_record(_record(executed_at="2024-01-02T09:30:00-05:00"))
        assert order.executed_at == datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)

    def test_external_id_kept_as_string(self) -> None:
        order = order_from_record(_record(external_activity_id=12345))
        assert order.external_activity_id == "12345"

    def test_missing_field(self) -> None:
        record = _record()
        del record["price"]
        with pytest.raises(MalformedOrder) as exc:
            order_from_record(record)
        assert exc.value.order_id == "a1"
        assert "price" in exc.value.reason

    @pytest.mark.parametrize(
        "overrides",
        [
            {"quantity": 0},
            {"quantity": -5},
            {"quantity": "1.5"},
            {"quantity": 2.5},
            {"price": "0"},
            {"price": "-3"},
            {"price": "abc"},
            {"side": "SHORT"},
            {"executed_at": "yesterday"},
            {"symbol": ""},
        ],
    )
    def test_rejects_bad_values(self, overrides) -> None:
        with pytest.raises(MalformedOrder):
            order_from_record(_record(**overrides))

    def test_limits(self) -> None:
        limits = OrderLimits(max_price=Decimal("1000"), max_quantity=500)
        with pytest.raises(MalformedOrder, match="exceeds limit"):
            order_from_record(_record(price="1000.01"), limits=limits)
        with pytest.raises(MalformedOrder, match="exceeds limit"):
            order_from_record(_record(quantity=501), limits=limits)


class TestValidateOrder:
    def test_valid_order_passes(self, make_order) -> None:
        order = make_order("BUY", 10, "5")
        assert validate_order(order) is order

    def test_float_price_rejected(self, make_order) -> None:
        order = dataclasses.replace(make_order("BUY", 10, "5"), price=5.0)
        with pytest.raises(MalformedOrder, match="Decimal"):
            validate_order(order)

    def test_missing_order_id(self, make_order) -> None:
        order = dataclasses.replace(make_order("BUY", 10, "5"), order_id="")
        with pytest.raises(MalformedOrder, match="order_id"):
            validate_order(order)

    def test_negative_fees(self, make_order) -> None:
        order = make_order("BUY", 10, "5", fees="-1")
        with pytest.raises(MalformedOrder, match="fees"):
            validate_order(order)


class TestCanonicalOrder:
    def test_symbol_stripped_and_upper_cased(self, make_order) -> None:
        order = canonical_order(make_order("BUY", 1, "1", symbol=" aapl "))
        assert order.symbol == "AAPL"

    def test_naive_timestamp_becomes_utc(self, make_order) -> None:
        naive = dataclasses.replace(make_order("BUY", 1, "1"), executed_at=datetime(2024, 1, 2, 14, 30))
        order = canonical_order(naive)
        assert order.executed_at == datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)

    def test_still_validates(self, make_order) -> None:
        with pytest.raises(MalformedOrder, match="quantity"):
            canonical_order(make_order("BUY", 0, "1", symbol="aapl"))
