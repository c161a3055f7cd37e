"""
Error taxonomy for trade construction.

Per-order errors (MalformedOrder) are local and recoverable: the order is
skipped and reported. Per-user structural errors (ArithmeticInconsistency)
abort that user's rebuild only. Duplicates are not errors; they are counted.
"""

from __future__ import annotations

from dataclasses import dataclass


class TradeEngineError(Exception):
    """Base class for all trade engine errors."""


class MalformedOrder(TradeEngineError):
    """Order is missing a required field or carries an invalid value."""

    def __init__(self, reason: str, *, order_id: str | None = None, symbol: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.order_id = order_id
        self.symbol = symbol


class ArithmeticInconsistency(TradeEngineError):
    """Position state that FIFO consumption can never produce (upstream corruption)."""

    def __init__(
        self,
        reason: str,
        *,
        symbol: str,
        order_id: str | None = None,
        user_id: str | None = None,
    ) -> None:
        super().__init__(f"{symbol}: {reason}" + (f" (order {order_id})" if order_id else ""))
        self.reason = reason
        self.symbol = symbol
        self.order_id = order_id
        self.user_id = user_id


class ConcurrentRebuildConflict(TradeEngineError):
    """A rebuild or ingest for this user is already in progress."""

    def __init__(self, user_id: str, waited_seconds: float | None = None) -> None:
        detail = f" after waiting {waited_seconds:.1f}s" if waited_seconds else ""
        super().__init__(f"Trade processing already in progress for user {user_id}{detail}")
        self.user_id = user_id


class RebuildCancelled(TradeEngineError):
    """Rebuild aborted on request before commit; no state was changed."""

    def __init__(self, user_id: str, orders_seen: int) -> None:
        super().__init__(f"Rebuild for user {user_id} cancelled after {orders_seen} orders")
        self.user_id = user_id
        self.orders_seen = orders_seen


@dataclass(frozen=True)
class OrderError:
    """Actionable record of a skipped order, reported in rebuild summaries."""

    order_id: str
    symbol: str
    reason: str

    @classmethod
    def from_exception(cls, exc: MalformedOrder, *, order_id: str = "", symbol: str = "") -> "OrderError":
        return cls(
            order_id=exc.order_id or order_id,
            symbol=exc.symbol or symbol,
            reason=exc.reason,
        )
