"""
In-memory TradeStore. For tests and for embedding the engine in a process
that owns persistence elsewhere.
"""

from __future__ import annotations

import dataclasses
import threading
from typing import Iterable

from store.base import attach_annotation
from trade_core.contracts import Annotation, Order, Trade


class MemoryTradeStore:
    """Dict-backed store; one lock guards all tables."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, dict[str, Order]] = {}
        self._trades: dict[str, list[Trade]] = {}
        self._annotations: dict[str, dict[str, Annotation]] = {}
        self._next_sequence = 1

    def add_order(self, user_id: str, order: Order) -> Order:
        with self._lock:
            user_orders = self._orders.setdefault(user_id, {})
            if order.order_id in user_orders:
                raise ValueError(f"order {order.order_id} already stored for user {user_id}")
            stored = dataclasses.replace(order, sequence=self._next_sequence)
            self._next_sequence += 1
            user_orders[order.order_id] = stored
            return stored

    def orders_for_user(self, user_id: str) -> list[Order]:
        with self._lock:
            orders = list(self._orders.get(user_id, {}).values())
        return sorted(orders, key=lambda o: o.sort_key)

    def delete_orders(self, user_id: str, order_ids: Iterable[str]) -> int:
        with self._lock:
            user_orders = self._orders.get(user_id, {})
            removed = 0
            for order_id in order_ids:
                if user_orders.pop(order_id, None) is not None:
                    removed += 1
            return removed

    def order_watermark(self, user_id: str) -> tuple[int, int]:
        with self._lock:
            orders = self._orders.get(user_id, {})
            return len(orders), max((o.sequence for o in orders.values()), default=0)

    def replace_trades(self, user_id: str, trades: list[Trade]) -> None:
        snapshot = list(trades)
        with self._lock:
            self._trades[user_id] = snapshot

    def trades_for_user(self, user_id: str) -> list[Trade]:
        with self._lock:
            trades = list(self._trades.get(user_id, []))
            annotations = dict(self._annotations.get(user_id, {}))
        return [attach_annotation(t, annotations.get(t.trade_key)) for t in trades]

    def annotate_trade(self, user_id: str, trade_key: str, *, notes: str = "", tags: Iterable[str] = ()) -> None:
        with self._lock:
            self._annotations.setdefault(user_id, {})[trade_key] = Annotation(
                trade_key=trade_key, notes=notes, tags=tuple(tags)
            )

    def annotations_for_user(self, user_id: str) -> dict[str, Annotation]:
        with self._lock:
            return dict(self._annotations.get(user_id, {}))

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(uid for uid, orders in self._orders.items() if orders)
