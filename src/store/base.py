"""
Order + Trade store abstraction. The engine depends only on this Protocol.
"""

import dataclasses
from typing import Iterable, Protocol

from trade_core.contracts import Annotation, Order, Trade


class TradeStore(Protocol):
    """Narrow persistence interface: raw orders in, derived trades replaced atomically."""

    def add_order(self, user_id: str, order: Order) -> Order:
        """Persist an order; returns it with its ingestion sequence assigned."""
        ...

    def orders_for_user(self, user_id: str) -> list[Order]:
        """All stored orders, ascending by (executed_at, sequence)."""
        ...

    def delete_orders(self, user_id: str, order_ids: Iterable[str]) -> int:
        ...

    def order_watermark(self, user_id: str) -> tuple[int, int]:
        """(stored order count, highest sequence) for the user; changes on any add or delete."""
        ...

    def replace_trades(self, user_id: str, trades: list[Trade]) -> None:
        """Swap the user's derived trades in one transaction; no partial state is ever visible."""
        ...

    def trades_for_user(self, user_id: str) -> list[Trade]:
        """Derived trades in derivation order, with annotations attached by trade_key."""
        ...

    def annotate_trade(self, user_id: str, trade_key: str, *, notes: str = "", tags: Iterable[str] = ()) -> None:
        ...

    def annotations_for_user(self, user_id: str) -> dict[str, Annotation]:
        ...

    def user_ids(self) -> list[str]:
        ...


def attach_annotation(trade: Trade, annotation: Annotation | None) -> Trade:
    if annotation is None:
        return trade
    return dataclasses.replace(trade, notes=annotation.notes, tags=annotation.tags)
