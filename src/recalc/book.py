"""
UserBook: the in-memory derivation state for one user.

Deduplicator + ledger + aggregator, plus the bookkeeping the orchestrator
needs (which order ids it has seen, where incremental appends may resume).
A book is always built by replaying orders oldest-first; it is thrown away
and rebuilt rather than patched whenever history changes underneath it.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from trade_core.aggregator import TradeAggregator
from trade_core.contracts import Lot, Order, Trade, TradeGrouping, TradeSide, TradeUpdate
from trade_core.dedup import ActivityDeduplicator, DedupDecision
from trade_core.errors import MalformedOrder, OrderError
from trade_core.ledger import PositionLedger
from trade_core.money import weighted_average
from trade_core.validation import DEFAULT_LIMITS, OrderLimits, canonical_order, to_utc

logger = logging.getLogger("tradebook.book")


@dataclass(frozen=True)
class OpenPosition:
    """Read-only view of a symbol's open lots."""

    symbol: str
    side: TradeSide
    quantity: int
    lots: tuple[Lot, ...]

    @property
    def average_price(self) -> Decimal | None:
        return weighted_average(sum((lot.cost for lot in self.lots), Decimal("0")), self.quantity)


class UserBook:
    def __init__(
        self,
        user_id: str,
        *,
        grouping: TradeGrouping = TradeGrouping.PER_EXIT,
        market_timezone: str = "America/New_York",
        swing_threshold: timedelta = timedelta(hours=24),
        limits: OrderLimits = DEFAULT_LIMITS,
    ) -> None:
        self.user_id = user_id
        self.limits = limits
        self.dedup = ActivityDeduplicator(user_id)
        self.ledger = PositionLedger(user_id)
        self.aggregator = TradeAggregator(
            user_id,
            grouping=grouping,
            market_timezone=market_timezone,
            swing_threshold=swing_threshold,
        )
        self.last_applied_at: datetime | None = None
        # (stored order count, highest sequence) this book was derived from
        self.watermark: tuple[int, int] = (0, 0)
        self.orders_processed = 0
        self.errors: list[OrderError] = []
        self._applied: set[str] = set()
        self._known: set[str] = set()

    @property
    def duplicates_skipped(self) -> int:
        return self.dedup.duplicates_skipped

    def knows(self, order_id: str) -> bool:
        """True for any order id this book has replayed, applied or not."""
        return order_id in self._known

    def is_duplicate(self, order: Order) -> bool:
        return self.dedup.seen(order)

    def appends_in_order(self, order: Order) -> bool:
        """An order may be applied incrementally only at or after the last applied fill."""
        return self.last_applied_at is None or to_utc(order.executed_at) >= self.last_applied_at

    def apply(self, order: Order) -> TradeUpdate | None:
        """Validate, dedup and fold one order. Returns None for a duplicate.

        Raises MalformedOrder (nothing mutated) or ArithmeticInconsistency
        (book is corrupt and must be discarded).
        """
        self._known.add(order.order_id)
        order = canonical_order(order, limits=self.limits)
        if order.order_id in self._applied:
            raise MalformedOrder(
                f"order_id {order.order_id} appears more than once in history",
                order_id=order.order_id,
                symbol=order.symbol,
            )
        if self.dedup.accept(order) is DedupDecision.DUPLICATE:
            return None

        result = self.ledger.apply(order)
        update = self.aggregator.fold(result, order.symbol, self.user_id)

        self._applied.add(order.order_id)
        self.orders_processed += 1
        executed = to_utc(order.executed_at)
        if self.last_applied_at is None or executed > self.last_applied_at:
            self.last_applied_at = executed
        return update

    def record_error(self, exc: MalformedOrder, order: Order) -> OrderError:
        error = OrderError.from_exception(exc, order_id=order.order_id, symbol=order.symbol)
        self.errors.append(error)
        logger.warning(
            "Skipping malformed order: user=%s order=%s symbol=%s reason=%s",
            self.user_id, error.order_id, error.symbol, error.reason,
        )
        return error

    def trades(self) -> list[Trade]:
        return self.aggregator.trades()

    def open_positions(self) -> list[OpenPosition]:
        return [
            OpenPosition(
                symbol=pos.symbol,
                side=pos.side,
                quantity=pos.quantity,
                lots=tuple(dataclasses.replace(lot) for lot in pos.lots),
            )
            for pos in self.ledger.open_positions()
        ]
