"""Pytest fixtures: order sequences and stores for deterministic tests."""

from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Callable

import pytest

from store.memory_store import MemoryTradeStore
from trade_core.contracts import Order, OrderSide


def _ts(year: int, month: int, day: int, hour: int = 14, minute: int = 30) -> datetime:
    """UTC timestamp; the 14:30 default is 09:30/10:30 New York (regular session)."""
    return datetime(year, month, day, hour, minute, 0, tzinfo=timezone.utc)


@pytest.fixture
def user_id() -> str:
    return "user-1"


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Factory for Orders with sequential ids and sequences.

    make_order("BUY", 100, "10", day=2) -> Order o1 on 2024-01-02.
    """
    ids = count(1)

    def _make(
        side: str,
        quantity: int,
        price: str,
        *,
        symbol: str = "AAPL",
        day: int = 2,
        hour: int = 14,
        minute: int = 30,
        order_id: str | None = None,
        external_activity_id: str | None = None,
        commission: str = "0",
        fees: str = "0",
        source_id: str = "csv",
    ) -> Order:
        n = next(ids)
        return Order(
            order_id=order_id or f"o{n}",
            symbol=symbol,
            side=OrderSide(side),
            quantity=quantity,
            price=Decimal(price),
            executed_at=_ts(2024, 1, day, hour, minute),
            source_id=source_id,
            external_activity_id=external_activity_id,
            commission=Decimal(commission),
            fees=Decimal(fees),
            sequence=n,
        )

    return _make


@pytest.fixture
def memory_store() -> MemoryTradeStore:
    return MemoryTradeStore()


@pytest.fixture
def fifo_orders(make_order) -> list[Order]:
    """buy 100 @ 10, buy 50 @ 12, sell 120 @ 15."""
    return [
        make_order("BUY", 100, "10", day=2),
        make_order("BUY", 50, "12", day=3),
        make_order("SELL", 120, "15", day=4),
    ]


@pytest.fixture
def partial_fill_orders(make_order) -> list[Order]:
    """Three 10-share entries at 5/6/7 closed by one 30-share exit at 10."""
    return [
        make_order("BUY", 10, "5", hour=14, minute=31),
        make_order("BUY", 10, "6", hour=14, minute=32),
        make_order("BUY", 10, "7", hour=14, minute=33),
        make_order("SELL", 30, "10", hour=15, minute=0),
    ]


@pytest.fixture
def flip_orders(make_order) -> list[Order]:
    """Long 50 @ 20, then sell 80 @ 18."""
    return [
        make_order("BUY", 50, "20", day=2),
        make_order("SELL", 80, "18", day=3),
    ]
