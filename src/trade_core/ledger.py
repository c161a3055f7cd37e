"""
Position ledger: per-symbol FIFO queue of open lots.

Strict FIFO cost basis. Opposing fills consume the oldest lot first; a
partially consumed lot keeps its original price and timestamp. Lots with the
same executed_at stay in insertion order (they are never re-sorted by price).
An opposing fill larger than the open position flips it: the excess opens a
new lot on the other side.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from trade_core.contracts import (
    Lot,
    LotSlice,
    MatchedSlice,
    MatchResult,
    Order,
    OrderSlice,
    TradeSide,
)
from trade_core.errors import ArithmeticInconsistency

logger = logging.getLogger("tradebook.ledger")


@dataclass
class Position:
    """Live lot queue for one symbol. Ephemeral; rebuilt on every recalculation."""

    symbol: str
    lots: deque[Lot] = field(default_factory=deque)

    @property
    def side(self) -> TradeSide | None:
        return self.lots[0].side if self.lots else None

    @property
    def is_flat(self) -> bool:
        return not self.lots

    @property
    def quantity(self) -> int:
        return sum(lot.remaining_quantity for lot in self.lots)

    @property
    def net_quantity(self) -> int:
        """Signed: positive long, negative short."""
        side = self.side
        return 0 if side is None else side.sign * self.quantity

    def check(self, order_id: str | None = None) -> None:
        """Every lot on one side, every remainder positive."""
        side = self.side
        for lot in self.lots:
            if lot.side is not side:
                raise ArithmeticInconsistency(
                    f"mixed-side lot queue ({lot.side.value} lot {lot.order_id} in {side.value} position)",
                    symbol=self.symbol,
                    order_id=order_id,
                )
            if lot.remaining_quantity <= 0 or lot.remaining_quantity > lot.original_quantity:
                raise ArithmeticInconsistency(
                    f"lot {lot.order_id} remaining {lot.remaining_quantity} outside (0, {lot.original_quantity}]",
                    symbol=self.symbol,
                    order_id=order_id,
                )


class PositionLedger:
    """All open positions for one user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self._positions: dict[str, Position] = {}

    def position(self, symbol: str) -> Position:
        return self._positions.setdefault(symbol, Position(symbol))

    def open_positions(self) -> list[Position]:
        return [p for _, p in sorted(self._positions.items()) if not p.is_flat]

    def apply(self, order: Order) -> MatchResult:
        """Apply one validated order. Opens, extends, reduces, closes or flips."""
        pos = self.position(order.symbol)
        order_side = TradeSide.for_opening(order.side)
        side_before = pos.side

        if pos.is_flat or side_before is order_side:
            lot = self._new_lot(order, order.quantity)
            pos.lots.append(lot)
            pos.check(order.order_id)
            return MatchResult(order=order, side_before=side_before, new_lot=lot)

        remaining = order.quantity
        consumed: list[MatchedSlice] = []
        while remaining > 0 and pos.lots:
            lot = pos.lots[0]
            if lot.remaining_quantity <= 0:
                raise ArithmeticInconsistency(
                    f"lot {lot.order_id} has no remaining quantity but is still queued",
                    symbol=order.symbol,
                    order_id=order.order_id,
                    user_id=self.user_id,
                )
            take = min(lot.remaining_quantity, remaining)
            consumed.append(
                MatchedSlice(
                    lot_slice=LotSlice(
                        order_id=lot.order_id,
                        price=lot.price,
                        quantity=take,
                        executed_at=lot.executed_at,
                        sequence=lot.sequence,
                    ),
                    order_slice=OrderSlice(
                        order_id=order.order_id,
                        price=order.price,
                        quantity=take,
                        executed_at=order.executed_at,
                        sequence=order.sequence,
                    ),
                )
            )
            lot.remaining_quantity -= take
            remaining -= take
            if lot.remaining_quantity == 0:
                pos.lots.popleft()

        closed = pos.is_flat
        new_lot = None
        if remaining > 0:
            new_lot = self._new_lot(order, remaining)
            pos.lots.append(new_lot)
            logger.debug(
                "Position flip: user=%s symbol=%s %s -> %s excess=%d",
                self.user_id, order.symbol, side_before.value, order_side.value, remaining,
            )
        pos.check(order.order_id)

        matched = order.quantity - remaining
        if matched + (new_lot.remaining_quantity if new_lot else 0) != order.quantity:
            raise ArithmeticInconsistency(
                f"order quantity {order.quantity} not conserved (matched {matched}, excess {remaining})",
                symbol=order.symbol,
                order_id=order.order_id,
                user_id=self.user_id,
            )

        return MatchResult(
            order=order,
            side_before=side_before,
            consumed=tuple(consumed),
            new_lot=new_lot,
            flipped=new_lot is not None,
            closed=closed,
        )

    @staticmethod
    def _new_lot(order: Order, quantity: int) -> Lot:
        return Lot(
            order_id=order.order_id,
            side=TradeSide.for_opening(order.side),
            price=order.price,
            executed_at=order.executed_at,
            sequence=order.sequence,
            original_quantity=order.quantity,
            remaining_quantity=quantity,
        )
