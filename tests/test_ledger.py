"""Tests for the FIFO position ledger."""

from decimal import Decimal

import pytest

from trade_core.contracts import Lot, TradeSide
from trade_core.errors import ArithmeticInconsistency
from trade_core.ledger import PositionLedger


def _apply_all(ledger: PositionLedger, orders) -> list:
    return [ledger.apply(o) for o in orders]


class TestOpenAndExtend:
    def test_first_buy_opens_long(self, make_order) -> None:
        ledger = PositionLedger("u")
        result = ledger.apply(make_order("BUY", 100, "10"))
        assert result.side_before is None
        assert result.consumed == ()
        assert result.new_lot.side is TradeSide.LONG
        pos = ledger.position("AAPL")
        assert pos.side is TradeSide.LONG
        assert pos.quantity == 100

    def test_first_sell_opens_short(self, make_order) -> None:
        ledger = PositionLedger("u")
        ledger.apply(make_order("SELL", 40, "50"))
        assert ledger.position("AAPL").net_quantity == -40

    def test_same_side_appends_lot(self, make_order) -> None:
        ledger = PositionLedger("u")
        _apply_all(ledger, [make_order("BUY", 100, "10"), make_order("BUY", 50, "12")])
        pos = ledger.position("AAPL")
        assert [lot.remaining_quantity for lot in pos.lots] == [100, 50]
        assert [lot.price for lot in pos.lots] == [Decimal("10"), Decimal("12")]


class TestFifoConsumption:
    def test_oldest_lot_consumed_first(self, ledger_fifo) -> None:
        ledger, results = ledger_fifo
        sell = results[-1]
        assert [(m.lot_slice.order_id, m.quantity) for m in sell.consumed] == [("o1", 100), ("o2", 20)]
        assert sell.closed is False
        assert sell.flipped is False

    def test_partial_lot_keeps_price_and_time(self, ledger_fifo, fifo_orders) -> None:
        ledger, _ = ledger_fifo
        pos = ledger.position("AAPL")
        assert len(pos.lots) == 1
        lot = pos.lots[0]
        assert lot.order_id == "o2"
        assert lot.remaining_quantity == 30
        assert lot.original_quantity == 50
        assert lot.price == Decimal("12")
        assert lot.executed_at == fifo_orders[1].executed_at

    def test_exact_close_goes_flat(self, make_order) -> None:
        ledger = PositionLedger("u")
        _, result = _apply_all(ledger, [make_order("BUY", 10, "5"), make_order("SELL", 10, "6")])
        assert result.closed is True
        assert result.new_lot is None
        assert ledger.position("AAPL").is_flat
        assert ledger.open_positions() == []

    def test_short_covered_by_buy(self, make_order) -> None:
        ledger = PositionLedger("u")
        _, result = _apply_all(ledger, [make_order("SELL", 30, "20"), make_order("BUY", 10, "18")])
        assert result.side_before is TradeSide.SHORT
        assert result.matched_quantity == 10
        assert ledger.position("AAPL").net_quantity == -20

    def test_equal_timestamps_keep_insertion_order(self, make_order) -> None:
        ledger = PositionLedger("u")
        orders = [
            make_order("BUY", 10, "9", minute=30),
            make_order("BUY", 10, "7", minute=30),
            make_order("SELL", 10, "8", minute=31),
        ]
        result = _apply_all(ledger, orders)[-1]
        # the cheaper lot is not preferred; insertion order wins
        assert result.consumed[0].lot_slice.order_id == "o1"

    def test_symbols_are_independent(self, make_order) -> None:
        ledger = PositionLedger("u")
        _apply_all(ledger, [make_order("BUY", 10, "5", symbol="AAPL"), make_order("SELL", 5, "9", symbol="MSFT")])
        assert ledger.position("AAPL").net_quantity == 10
        assert ledger.position("MSFT").net_quantity == -5
        assert [p.symbol for p in ledger.open_positions()] == ["AAPL", "MSFT"]


class TestFlip:
    def test_oversized_exit_flips(self, flip_orders) -> None:
        ledger = PositionLedger("u")
        _, result = _apply_all(ledger, flip_orders)
        assert result.flipped is True
        assert result.closed is True
        assert result.matched_quantity == 50
        assert result.new_lot.side is TradeSide.SHORT
        assert result.new_lot.remaining_quantity == 30
        assert result.new_lot.price == Decimal("18")
        pos = ledger.position("AAPL")
        assert pos.net_quantity == -30


class TestGuards:
    def test_mixed_side_queue_detected(self, make_order) -> None:
        ledger = PositionLedger("u")
        ledger.apply(make_order("BUY", 10, "5"))
        pos = ledger.position("AAPL")
        pos.lots.append(
            Lot("bad", TradeSide.SHORT, Decimal("5"), pos.lots[0].executed_at, 99, 5, 5)
        )
        with pytest.raises(ArithmeticInconsistency, match="mixed-side"):
            ledger.apply(make_order("BUY", 1, "5"))

    def test_exhausted_lot_in_queue_detected(self, make_order) -> None:
        ledger = PositionLedger("u")
        ledger.apply(make_order("BUY", 10, "5"))
        ledger.position("AAPL").lots[0].remaining_quantity = 0
        with pytest.raises(ArithmeticInconsistency):
            ledger.apply(make_order("SELL", 5, "6"))


@pytest.fixture
def ledger_fifo(fifo_orders):
    ledger = PositionLedger("u")
    return ledger, _apply_all(ledger, fifo_orders)
