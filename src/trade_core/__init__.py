"""
trade-core: deterministic trade construction from executed fills.

Pure: dedup, FIFO position ledger, trade aggregation. No I/O.
"""

from trade_core.aggregator import TradeAggregator, trade_key
from trade_core.contracts import (
    Annotation,
    Lot,
    MatchResult,
    Order,
    OrderSide,
    Trade,
    TradeGrouping,
    TradeSide,
    TradeStatus,
    TradeUpdate,
)
from trade_core.dedup import ActivityDeduplicator, DedupDecision, identity_key
from trade_core.errors import (
    ArithmeticInconsistency,
    ConcurrentRebuildConflict,
    MalformedOrder,
    OrderError,
    RebuildCancelled,
    TradeEngineError,
)
from trade_core.ledger import Position, PositionLedger
from trade_core.validation import canonical_order, order_from_record, validate_order

__all__ = [
    "ActivityDeduplicator",
    "Annotation",
    "ArithmeticInconsistency",
    "ConcurrentRebuildConflict",
    "DedupDecision",
    "Lot",
    "MalformedOrder",
    "MatchResult",
    "Order",
    "OrderError",
    "OrderSide",
    "Position",
    "PositionLedger",
    "RebuildCancelled",
    "Trade",
    "TradeAggregator",
    "TradeEngineError",
    "TradeGrouping",
    "TradeSide",
    "TradeStatus",
    "TradeUpdate",
    "canonical_order",
    "identity_key",
    "order_from_record",
    "trade_key",
    "validate_order",
]
