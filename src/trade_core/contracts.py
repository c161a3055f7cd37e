"""
Data contracts for trade-core: Order, Lot, MatchResult, Trade.

trade-core consumes normalized Orders and produces Trades.
No I/O; these are plain dataclasses. Money fields are Decimal throughout.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OrderSide(str, Enum):
    """Execution side of a fill."""

    BUY = "BUY"
    SELL = "SELL"


class TradeSide(str, Enum):
    """Direction of a round-trip trade."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is TradeSide.LONG else -1

    @property
    def opening_side(self) -> OrderSide:
        return OrderSide.BUY if self is TradeSide.LONG else OrderSide.SELL

    @classmethod
    def for_opening(cls, side: OrderSide) -> "TradeSide":
        return cls.LONG if side is OrderSide.BUY else cls.SHORT


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class HoldingPeriod(str, Enum):
    """Closed within the swing threshold (default 24h) or held longer."""

    INTRADAY = "INTRADAY"
    SWING = "SWING"


class MarketSession(str, Enum):
    """US equity session in which a trade was opened."""

    PRE_MARKET = "PRE_MARKET"
    REGULAR = "REGULAR"
    AFTER_HOURS = "AFTER_HOURS"


class TradeGrouping(str, Enum):
    """When a trade is finalized.

    PER_EXIT: every closing order closes a trade for the lots it consumed;
    any remaining lots continue as a fresh open trade.
    ROUND_TRIP: a trade closes only when the position returns to flat.
    """

    PER_EXIT = "per_exit"
    ROUND_TRIP = "round_trip"


# ---------------------------------------------------------------------------
# Orders and lots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Order:
    """One executed brokerage fill, already normalized upstream."""

    order_id: str
    symbol: str
    side: OrderSide
    quantity: int
    price: Decimal
    executed_at: datetime
    source_id: str = ""
    external_activity_id: str | None = None
    commission: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    sequence: int = 0

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Chronological order; ingestion sequence breaks timestamp ties."""
        return (self.executed_at, self.sequence)


@dataclass
class Lot:
    """Unconsumed slice of an opening order. Price and timestamp never change."""

    order_id: str
    side: TradeSide
    price: Decimal
    executed_at: datetime
    sequence: int
    original_quantity: int
    remaining_quantity: int

    @property
    def cost(self) -> Decimal:
        return self.price * self.remaining_quantity


@dataclass(frozen=True)
class LotSlice:
    """Portion of a lot consumed by one closing order."""

    order_id: str
    price: Decimal
    quantity: int
    executed_at: datetime
    sequence: int


@dataclass(frozen=True)
class OrderSlice:
    """Portion of a closing order matched against one lot."""

    order_id: str
    price: Decimal
    quantity: int
    executed_at: datetime
    sequence: int


@dataclass(frozen=True)
class MatchedSlice:
    lot_slice: LotSlice
    order_slice: OrderSlice

    @property
    def quantity(self) -> int:
        return self.order_slice.quantity


@dataclass(frozen=True)
class MatchResult:
    """Outcome of applying one order to a position.

    ``side_before`` is the position side the matches were taken against;
    ``new_lot`` is the opening lot pushed (same-side extension or flip excess).
    """

    order: Order
    side_before: TradeSide | None
    consumed: tuple[MatchedSlice, ...] = ()
    new_lot: Lot | None = None
    flipped: bool = False
    closed: bool = False

    @property
    def matched_quantity(self) -> int:
        return sum(m.quantity for m in self.consumed)


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Trade:
    """Derived round-trip (or still-open) trade for one symbol."""

    trade_key: str
    user_id: str
    symbol: str
    side: TradeSide
    status: TradeStatus
    quantity: int
    closed_quantity: int
    entry_price: Decimal
    exit_price: Decimal | None
    realized_pnl: Decimal
    commission: Decimal
    fees: Decimal
    opened_at: datetime
    closed_at: datetime | None
    contributing_order_ids: tuple[str, ...]
    allocations: tuple[tuple[str, int], ...] = ()
    cost_basis: Decimal = Decimal("0")
    proceeds: Decimal = Decimal("0")
    holding_period: HoldingPeriod | None = None
    market_session: MarketSession | None = None
    time_in_trade_seconds: int | None = None
    notes: str = ""
    tags: tuple[str, ...] = ()

    @property
    def net_pnl(self) -> Decimal:
        return self.realized_pnl - self.commission - self.fees

    @property
    def open_quantity(self) -> int:
        return self.quantity - self.closed_quantity

    @property
    def is_closed(self) -> bool:
        return self.status is TradeStatus.CLOSED


@dataclass(frozen=True)
class TradeUpdate:
    """What one fold step did to the symbol's trades."""

    new_trade: Trade | None = None
    updated_open_trade: Trade | None = None
    closed_trade: Trade | None = None


@dataclass(frozen=True)
class Annotation:
    """User-entered notes/tags layered on a derived trade, keyed by trade_key."""

    trade_key: str
    notes: str = ""
    tags: tuple[str, ...] = field(default_factory=tuple)
