"""Tests for the trade aggregator: grouping, P&L, fee pro-rating, derived fields."""

from datetime import timedelta
from decimal import Decimal

import pytest

from trade_core.aggregator import TradeAggregator, trade_key
from trade_core.contracts import (
    HoldingPeriod,
    MarketSession,
    TradeGrouping,
    TradeSide,
    TradeStatus,
)
from trade_core.errors import ArithmeticInconsistency
from trade_core.ledger import PositionLedger


def _build(orders, grouping: TradeGrouping = TradeGrouping.PER_EXIT):
    ledger = PositionLedger("u")
    agg = TradeAggregator("u", grouping=grouping)
    updates = [agg.fold(ledger.apply(o), o.symbol, "u") for o in orders]
    return agg, updates


class TestFifoScenario:
    def test_per_exit_closes_matched_quantity(self, fifo_orders) -> None:
        agg, _ = _build(fifo_orders)
        closed, still_open = agg.trades()

        assert closed.status is TradeStatus.CLOSED
        assert closed.side is TradeSide.LONG
        assert closed.quantity == 120
        assert closed.closed_quantity == 120
        assert closed.entry_price == Decimal("1240") / 120
        assert closed.exit_price == Decimal("15")
        assert closed.realized_pnl == Decimal("560")
        assert closed.contributing_order_ids == ("o1", "o2", "o3")
        assert closed.allocations == (("o1", 100), ("o2", 20), ("o3", 120))

        assert still_open.status is TradeStatus.OPEN
        assert still_open.quantity == 30
        assert still_open.closed_quantity == 0
        assert still_open.entry_price == Decimal("12")
        assert still_open.exit_price is None
        assert still_open.realized_pnl == Decimal("0")
        assert still_open.allocations == (("o2", 30),)
        assert still_open.opened_at == fifo_orders[1].executed_at

    def test_round_trip_keeps_one_open_trade(self, fifo_orders) -> None:
        agg, _ = _build(fifo_orders, TradeGrouping.ROUND_TRIP)
        (trade,) = agg.trades()
        assert trade.status is TradeStatus.OPEN
        assert trade.quantity == 150
        assert trade.closed_quantity == 120
        assert trade.open_quantity == 30
        assert trade.realized_pnl == Decimal("560")
        assert trade.exit_price == Decimal("15")

    def test_round_trip_closes_when_flat(self, fifo_orders, make_order) -> None:
        orders = fifo_orders + [make_order("SELL", 30, "16", day=5)]
        agg, _ = _build(orders, TradeGrouping.ROUND_TRIP)
        (trade,) = agg.trades()
        assert trade.status is TradeStatus.CLOSED
        assert trade.quantity == trade.closed_quantity == 150
        assert trade.realized_pnl == Decimal("560") + Decimal("120")

    def test_pnl_identical_under_both_groupings(self, fifo_orders, make_order) -> None:
        orders = fifo_orders + [make_order("SELL", 30, "16", day=5)]
        per_exit, _ = _build(orders, TradeGrouping.PER_EXIT)
        round_trip, _ = _build(orders, TradeGrouping.ROUND_TRIP)
        total = lambda agg: sum(t.realized_pnl for t in agg.trades())  # noqa: E731
        assert total(per_exit) == total(round_trip) == Decimal("680")


def test_partial_fills_one_trade(partial_fill_orders) -> None:
    agg, _ = _build(partial_fill_orders)
    (trade,) = agg.trades()
    assert trade.status is TradeStatus.CLOSED
    assert trade.quantity == 30
    assert trade.entry_price == Decimal("6")
    assert trade.exit_price == Decimal("10")
    assert trade.realized_pnl == Decimal("120")
    assert trade.cost_basis == Decimal("180")
    assert trade.proceeds == Decimal("300")
    assert trade.holding_period is HoldingPeriod.INTRADAY
    assert trade.time_in_trade_seconds == 29 * 60
    assert trade.market_session is MarketSession.REGULAR


def test_flip_closes_and_opens_short(flip_orders) -> None:
    agg, updates = _build(flip_orders)
    closed, short = agg.trades()
    assert closed.status is TradeStatus.CLOSED
    assert closed.side is TradeSide.LONG
    assert closed.quantity == 50
    assert closed.realized_pnl == Decimal("-100")

    assert short.status is TradeStatus.OPEN
    assert short.side is TradeSide.SHORT
    assert short.quantity == 30
    assert short.entry_price == Decimal("18")
    assert short.allocations == (("o2", 30),)

    assert updates[-1].closed_trade == closed
    assert updates[-1].new_trade == short


def test_short_round_trip_pnl(make_order) -> None:
    agg, _ = _build([make_order("SELL", 20, "50"), make_order("BUY", 20, "45", minute=45)])
    (trade,) = agg.trades()
    assert trade.side is TradeSide.SHORT
    assert trade.realized_pnl == Decimal("100")


class TestFees:
    def test_commission_split_sums_exactly(self, make_order) -> None:
        orders = [
            make_order("BUY", 100, "10", day=2, commission="1.00"),
            make_order("BUY", 50, "12", day=3, commission="1.00"),
            make_order("SELL", 120, "15", day=4, commission="1.20"),
            make_order("SELL", 30, "16", day=5, commission="0.30"),
        ]
        agg, _ = _build(orders)
        first, second = agg.trades()
        assert first.commission == Decimal("2.60")
        assert second.commission == Decimal("0.90")
        assert first.commission + second.commission == Decimal("3.50")
        assert first.net_pnl == Decimal("560") - Decimal("2.60")

    def test_open_trade_shows_unallocated_opening_costs(self, make_order) -> None:
        orders = [
            make_order("BUY", 100, "10", day=2, fees="0.50"),
            make_order("BUY", 50, "12", day=3, fees="1.00"),
            make_order("SELL", 120, "15", day=4),
        ]
        agg, _ = _build(orders)
        closed, still_open = agg.trades()
        assert closed.fees == Decimal("0.50") + Decimal("0.4")
        assert still_open.fees == Decimal("0.6")

    def test_thirds_do_not_drift(self, make_order) -> None:
        orders = [
            make_order("BUY", 3, "10", commission="1.00"),
            make_order("SELL", 1, "11", minute=31),
            make_order("SELL", 1, "11", minute=32),
            make_order("SELL", 1, "11", minute=33),
        ]
        agg, _ = _build(orders)
        trades = agg.trades()
        assert len(trades) == 3
        assert sum(t.commission for t in trades) == Decimal("1.00")


class TestDerivedFields:
    def test_swing_trade(self, fifo_orders) -> None:
        agg, _ = _build(fifo_orders)
        closed = agg.trades()[0]
        assert closed.holding_period is HoldingPeriod.SWING
        assert closed.time_in_trade_seconds == int(timedelta(days=2).total_seconds())

    def test_open_trade_has_no_holding_period(self, make_order) -> None:
        agg, _ = _build([make_order("BUY", 1, "1")])
        (trade,) = agg.trades()
        assert trade.holding_period is None
        assert trade.time_in_trade_seconds is None

    @pytest.mark.parametrize(
        "hour,expected",
        [(12, MarketSession.PRE_MARKET), (15, MarketSession.REGULAR), (21, MarketSession.AFTER_HOURS)],
    )
    def test_market_session_in_new_york(self, make_order, hour, expected) -> None:
        agg, _ = _build([make_order("BUY", 1, "1", hour=hour, minute=0)])
        assert agg.trades()[0].market_session is expected


class TestIdentity:
    def test_trade_key_is_deterministic(self, fifo_orders) -> None:
        first, _ = _build(fifo_orders)
        second, _ = _build(fifo_orders)
        assert [t.trade_key for t in first.trades()] == [t.trade_key for t in second.trades()]
        assert first.trades() == second.trades()

    def test_trade_key_depends_on_orders(self) -> None:
        a = trade_key("u", "AAPL", TradeSide.LONG, ("o1", "o2"))
        assert a == trade_key("u", "AAPL", TradeSide.LONG, ("o1", "o2"))
        assert a != trade_key("u", "AAPL", TradeSide.LONG, ("o1", "o3"))
        assert a != trade_key("u2", "AAPL", TradeSide.LONG, ("o1", "o2"))
        assert len(a) == 32


class TestUpdates:
    def test_update_sequence(self, fifo_orders) -> None:
        _, (opened, extended, exited) = _build(fifo_orders)
        assert opened.new_trade is not None and opened.closed_trade is None
        assert extended.updated_open_trade is not None
        assert extended.updated_open_trade.quantity == 150
        assert exited.closed_trade.quantity == 120
        assert exited.new_trade.quantity == 30

    def test_closing_fill_without_open_trade_is_inconsistent(self, make_order) -> None:
        ledger = PositionLedger("u")
        ledger.apply(make_order("BUY", 10, "5"))
        sell = ledger.apply(make_order("SELL", 10, "6"))
        with pytest.raises(ArithmeticInconsistency):
            TradeAggregator("u").fold(sell)

    def test_foreign_user_rejected(self, make_order) -> None:
        ledger = PositionLedger("u")
        with pytest.raises(ValueError):
            TradeAggregator("u").fold(ledger.apply(make_order("BUY", 1, "1")), user_id="someone-else")
