"""
Trade aggregator: folds ledger match results into Trade records.

Per matched (lot slice, order slice):
  realized_pnl += qty * (exit_price - lot_price) * side_sign
  commission/fees += pro-rated share of both the opening and the closing order

Pro-rating telescopes per order (see money.prorate), so one order's
commission split across several trades always sums back to exactly the
order's commission. No rounding happens here.

Grouping (TradeGrouping):
  PER_EXIT    a closing order finalizes a CLOSED trade for the lots it
              consumed; lots left over continue as a new OPEN trade.
  ROUND_TRIP  a trade closes only when the position is flat again.
A flip always closes the current trade at the flip point and opens a new
trade on the other side.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from trade_core.contracts import (
    HoldingPeriod,
    Lot,
    MarketSession,
    MatchResult,
    Order,
    Trade,
    TradeGrouping,
    TradeSide,
    TradeStatus,
    TradeUpdate,
)
from trade_core.errors import ArithmeticInconsistency
from trade_core.money import ZERO, prorate, weighted_average

logger = logging.getLogger("tradebook.aggregator")

REGULAR_OPEN_MINUTES = 9 * 60 + 30
REGULAR_CLOSE_MINUTES = 16 * 60


def trade_key(user_id: str, symbol: str, side: TradeSide, order_ids: tuple[str, ...]) -> str:
    """Stable derived identity: same contributing orders, same key, across rebuilds."""
    hash_input = "|".join([user_id, symbol, side.value, *order_ids])
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()[:32]


def market_session(opened_at: datetime, tz: ZoneInfo) -> MarketSession:
    local = opened_at.astimezone(tz)
    minutes = local.hour * 60 + local.minute
    if minutes < REGULAR_OPEN_MINUTES:
        return MarketSession.PRE_MARKET
    if minutes < REGULAR_CLOSE_MINUTES:
        return MarketSession.REGULAR
    return MarketSession.AFTER_HOURS


def holding_period(opened_at: datetime, closed_at: datetime, threshold: timedelta) -> HoldingPeriod:
    return HoldingPeriod.INTRADAY if closed_at - opened_at <= threshold else HoldingPeriod.SWING


class _FeeAllocator:
    """Tracks how much of each order's quantity has had its costs attributed."""

    def __init__(self) -> None:
        self._taken: dict[str, int] = {}

    def take(self, order: Order, quantity: int) -> tuple[Decimal, Decimal]:
        before = self._taken.get(order.order_id, 0)
        self._taken[order.order_id] = before + quantity
        return (
            prorate(order.commission, before, quantity, order.quantity),
            prorate(order.fees, before, quantity, order.quantity),
        )

    def peek(self, order: Order, quantity: int) -> tuple[Decimal, Decimal]:
        before = self._taken.get(order.order_id, 0)
        return (
            prorate(order.commission, before, quantity, order.quantity),
            prorate(order.fees, before, quantity, order.quantity),
        )


@dataclass
class _OpenLot:
    price: Decimal
    quantity: int
    executed_at: datetime
    sequence: int


@dataclass
class _ActiveTrade:
    """Running state of the trade currently open on one symbol."""

    ordinal: int
    symbol: str
    side: TradeSide
    opened_at: datetime
    matched_quantity: int = 0
    consumed_cost: Decimal = ZERO
    exit_value: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    commission: Decimal = ZERO
    fees: Decimal = ZERO
    open_lots: dict[str, _OpenLot] = field(default_factory=dict)
    allocations: dict[str, int] = field(default_factory=dict)

    @property
    def open_quantity(self) -> int:
        return sum(lot.quantity for lot in self.open_lots.values())

    @property
    def open_cost(self) -> Decimal:
        return sum((lot.price * lot.quantity for lot in self.open_lots.values()), ZERO)

    def allocate(self, order_id: str, quantity: int) -> None:
        self.allocations[order_id] = self.allocations.get(order_id, 0) + quantity


class TradeAggregator:
    """All derived trades for one user, built by folding match results in order."""

    def __init__(
        self,
        user_id: str,
        *,
        grouping: TradeGrouping = TradeGrouping.PER_EXIT,
        market_timezone: str = "America/New_York",
        swing_threshold: timedelta = timedelta(hours=24),
    ) -> None:
        self.user_id = user_id
        self.grouping = grouping
        self._tz = ZoneInfo(market_timezone)
        self._swing_threshold = swing_threshold
        self._fees = _FeeAllocator()
        self._orders: dict[str, Order] = {}
        self._active: dict[str, _ActiveTrade] = {}
        self._closed: list[tuple[int, Trade]] = []
        self._next_ordinal = 0

    # ------------------------------------------------------------------
    # Folding
    # ------------------------------------------------------------------

    def fold(self, result: MatchResult, symbol: str | None = None, user_id: str | None = None) -> TradeUpdate:
        order = result.order
        symbol = symbol or order.symbol
        if user_id is not None and user_id != self.user_id:
            raise ValueError(f"aggregator for user {self.user_id} cannot fold orders of {user_id}")
        self._orders[order.order_id] = order

        active = self._active.get(symbol)
        existed_before = active is not None
        new_trade: _ActiveTrade | None = None
        closed_trade: Trade | None = None

        if result.consumed:
            if active is None or active.side is not result.side_before:
                raise ArithmeticInconsistency(
                    "closing fill matched lots but no trade is open on that side",
                    symbol=symbol,
                    order_id=order.order_id,
                    user_id=self.user_id,
                )
            for matched in result.consumed:
                self._apply_match(active, matched.lot_slice.order_id, matched.quantity, order)

            if result.closed or self.grouping is TradeGrouping.PER_EXIT:
                closed_trade = self._finalize(active, closed_at=order.executed_at)
                del self._active[symbol]
                if active.open_lots:
                    new_trade = self._continue(active)
                    self._active[symbol] = new_trade
                active = new_trade

        if result.new_lot is not None:
            lot = result.new_lot
            if active is None:
                new_trade = self._start(symbol, lot)
                self._active[symbol] = new_trade
                active = new_trade
            elif active.side is not lot.side:
                raise ArithmeticInconsistency(
                    f"{lot.side.value} lot pushed onto open {active.side.value} trade",
                    symbol=symbol,
                    order_id=order.order_id,
                    user_id=self.user_id,
                )
            active.open_lots[lot.order_id] = _OpenLot(
                price=lot.price,
                quantity=lot.remaining_quantity,
                executed_at=lot.executed_at,
                sequence=lot.sequence,
            )

        return TradeUpdate(
            new_trade=self._snapshot(new_trade) if new_trade is not None else None,
            updated_open_trade=(
                self._snapshot(active)
                if active is not None and existed_before and active is not new_trade
                else None
            ),
            closed_trade=closed_trade,
        )

    def _apply_match(self, active: _ActiveTrade, lot_order_id: str, quantity: int, closing: Order) -> None:
        lot = active.open_lots.get(lot_order_id)
        if lot is None or lot.quantity < quantity:
            raise ArithmeticInconsistency(
                f"matched {quantity} against lot {lot_order_id} holding "
                f"{lot.quantity if lot else 0} in the open trade",
                symbol=active.symbol,
                order_id=closing.order_id,
                user_id=self.user_id,
            )
        opening = self._orders[lot_order_id]
        open_commission, open_fees = self._fees.take(opening, quantity)
        close_commission, close_fees = self._fees.take(closing, quantity)

        active.matched_quantity += quantity
        active.consumed_cost += lot.price * quantity
        active.exit_value += closing.price * quantity
        active.realized_pnl += quantity * (closing.price - lot.price) * active.side.sign
        active.commission += open_commission + close_commission
        active.fees += open_fees + close_fees
        active.allocate(lot_order_id, quantity)
        active.allocate(closing.order_id, quantity)

        lot.quantity -= quantity
        if lot.quantity == 0:
            del active.open_lots[lot_order_id]

    def _start(self, symbol: str, lot: Lot) -> _ActiveTrade:
        trade = _ActiveTrade(
            ordinal=self._next_ordinal,
            symbol=symbol,
            side=lot.side,
            opened_at=lot.executed_at,
        )
        self._next_ordinal += 1
        return trade

    def _continue(self, finished: _ActiveTrade) -> _ActiveTrade:
        """Leftover lots after a per-exit close become their own open trade."""
        trade = _ActiveTrade(
            ordinal=self._next_ordinal,
            symbol=finished.symbol,
            side=finished.side,
            opened_at=min(lot.executed_at for lot in finished.open_lots.values()),
            open_lots=dict(finished.open_lots),
        )
        self._next_ordinal += 1
        finished.open_lots = {}
        return trade

    # ------------------------------------------------------------------
    # Trade records
    # ------------------------------------------------------------------

    def _finalize(self, active: _ActiveTrade, *, closed_at: datetime) -> Trade:
        trade = self._build(active, status=TradeStatus.CLOSED, closed_at=closed_at, include_open=False)
        if trade.quantity != trade.closed_quantity:
            raise ArithmeticInconsistency(
                f"closed trade quantity {trade.quantity} != closed quantity {trade.closed_quantity}",
                symbol=active.symbol,
                user_id=self.user_id,
            )
        self._closed.append((active.ordinal, trade))
        logger.debug(
            "Trade closed: user=%s symbol=%s side=%s qty=%d pnl=%s",
            self.user_id, trade.symbol, trade.side.value, trade.quantity, trade.realized_pnl,
        )
        return trade

    def _snapshot(self, active: _ActiveTrade) -> Trade:
        return self._build(active, status=TradeStatus.OPEN, closed_at=None, include_open=True)

    def _build(
        self,
        active: _ActiveTrade,
        *,
        status: TradeStatus,
        closed_at: datetime | None,
        include_open: bool,
    ) -> Trade:
        allocations = dict(active.allocations)
        commission, fees = active.commission, active.fees
        open_quantity, open_cost = 0, ZERO
        if include_open:
            for order_id, lot in active.open_lots.items():
                allocations[order_id] = allocations.get(order_id, 0) + lot.quantity
                lot_commission, lot_fees = self._fees.peek(self._orders[order_id], lot.quantity)
                commission += lot_commission
                fees += lot_fees
            open_quantity, open_cost = active.open_quantity, active.open_cost

        ordered = sorted(allocations, key=lambda oid: self._orders[oid].sort_key)
        order_ids = tuple(ordered)
        quantity = active.matched_quantity + open_quantity
        cost_basis = active.consumed_cost + open_cost

        return Trade(
            trade_key=trade_key(self.user_id, active.symbol, active.side, order_ids),
            user_id=self.user_id,
            symbol=active.symbol,
            side=active.side,
            status=status,
            quantity=quantity,
            closed_quantity=active.matched_quantity,
            entry_price=weighted_average(cost_basis, quantity) or ZERO,
            exit_price=weighted_average(active.exit_value, active.matched_quantity),
            realized_pnl=active.realized_pnl,
            commission=commission,
            fees=fees,
            opened_at=active.opened_at,
            closed_at=closed_at,
            contributing_order_ids=order_ids,
            allocations=tuple((oid, allocations[oid]) for oid in ordered),
            cost_basis=cost_basis,
            proceeds=active.exit_value,
            holding_period=(
                holding_period(active.opened_at, closed_at, self._swing_threshold)
                if closed_at is not None
                else None
            ),
            market_session=market_session(active.opened_at, self._tz),
            time_in_trade_seconds=(
                int((closed_at - active.opened_at).total_seconds()) if closed_at is not None else None
            ),
        )

    def trades(self) -> list[Trade]:
        """Closed and open trades in the order they were opened."""
        rows = list(self._closed)
        rows.extend((active.ordinal, self._snapshot(active)) for active in self._active.values())
        rows.sort(key=lambda row: row[0])
        return [trade for _, trade in rows]

    def open_trade(self, symbol: str) -> Trade | None:
        active = self._active.get(symbol)
        return self._snapshot(active) if active is not None else None
