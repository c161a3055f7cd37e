"""
Ingestion boundary: loose order records -> validated Order.

Entry points:
  order_from_record(mapping)  CSV/broker-adapter dict -> Order (schema + conversion)
  validate_order(order)       Order already in hand (e.g. loaded from a store)
  canonical_order(order)      validate_order, then upper-case symbol and UTC timestamp

All raise MalformedOrder. Money is converted to Decimal here and nowhere else.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from trade_core.contracts import Order, OrderSide
from trade_core.errors import MalformedOrder
from trade_core.money import ZERO, to_money

SCHEMA_PATH = Path(__file__).resolve().parent / "order.schema.json"


@dataclass(frozen=True)
class OrderLimits:
    """Sanity bounds; anything outside is treated as a malformed record."""

    max_price: Decimal = Decimal("1000000000")
    max_quantity: int = 1_000_000_000


DEFAULT_LIMITS = OrderLimits()


@lru_cache(maxsize=1)
def _schema() -> dict[str, Any]:
    with open(SCHEMA_PATH) as f:
        return json.load(f)


def to_utc(ts: datetime) -> datetime:
    """Naive timestamps are interpreted as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"executed_at must be an ISO timestamp, got {value!r}")
    return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def _parse_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"quantity must be a number, got {value!r}")
    dec = Decimal(value) if isinstance(value, int) else to_money(value)
    if dec != dec.to_integral_value():
        raise ValueError(f"quantity must be a whole number of shares/contracts, got {value!r}")
    return int(dec)


def _cost(value: Any) -> Decimal:
    # Broker exports report commissions and fees as negative cash debits.
    if value is None or value == "":
        return ZERO
    return abs(to_money(value))


def order_from_record(
    record: Mapping[str, Any],
    *,
    sequence: int = 0,
    limits: OrderLimits = DEFAULT_LIMITS,
) -> Order:
    """Validate a loose record against the order schema and convert it.

    Floats are accepted for money but converted immediately, so the rest of
    the engine only ever sees Decimal.
    """
    data = dict(record)
    if isinstance(data.get("executed_at"), datetime):
        data["executed_at"] = data["executed_at"].isoformat()
    order_id = str(data.get("order_id") or "")
    symbol = str(data.get("symbol") or "")
    try:
        jsonschema.validate(instance=data, schema=_schema())
    except jsonschema.ValidationError as exc:
        field_path = ".".join(str(p) for p in exc.absolute_path) or "record"
        raise MalformedOrder(f"{field_path}: {exc.message}", order_id=order_id, symbol=symbol) from exc

    try:
        ext_id = data.get("external_activity_id")
        order = Order(
            order_id=order_id,
            symbol=symbol.strip().upper(),
            side=OrderSide(str(data["side"]).upper()),
            quantity=_parse_quantity(data["quantity"]),
            price=to_money(data["price"]),
            executed_at=parse_timestamp(data["executed_at"]),
            source_id=str(data.get("source_id") or ""),
            external_activity_id=str(ext_id) if ext_id not in (None, "") else None,
            commission=_cost(data.get("commission")),
            fees=_cost(data.get("fees")),
            sequence=sequence,
        )
    except ValueError as exc:
        raise MalformedOrder(str(exc), order_id=order_id, symbol=symbol) from exc

    validate_order(order, limits=limits)
    return order


def validate_order(order: Order, *, limits: OrderLimits = DEFAULT_LIMITS) -> Order:
    """Check an Order's invariants. Returns the order unchanged or raises MalformedOrder."""

    def bad(reason: str) -> MalformedOrder:
        return MalformedOrder(reason, order_id=order.order_id or None, symbol=order.symbol or None)

    if not order.order_id:
        raise bad("order_id is required")
    if not order.symbol or not order.symbol.strip():
        raise bad("symbol is required")
    if not isinstance(order.side, OrderSide):
        raise bad(f"side must be BUY or SELL, got {order.side!r}")
    if isinstance(order.quantity, bool) or not isinstance(order.quantity, int):
        raise bad(f"quantity must be an integer, got {order.quantity!r}")
    if order.quantity <= 0:
        raise bad(f"quantity must be > 0, got {order.quantity}")
    if order.quantity > limits.max_quantity:
        raise bad(f"quantity {order.quantity} exceeds limit {limits.max_quantity}")
    if not isinstance(order.price, Decimal):
        raise bad(f"price must be Decimal, got {type(order.price).__name__}")
    if not order.price.is_finite() or order.price <= ZERO:
        raise bad(f"price must be > 0, got {order.price}")
    if order.price > limits.max_price:
        raise bad(f"price {order.price} exceeds limit {limits.max_price}")
    if not isinstance(order.executed_at, datetime):
        raise bad("executed_at is required")
    for name in ("commission", "fees"):
        amount = getattr(order, name)
        if not isinstance(amount, Decimal) or not amount.is_finite():
            raise bad(f"{name} must be a finite Decimal, got {amount!r}")
        if amount < ZERO:
            raise bad(f"{name} must be >= 0, got {amount}")
    return order


def canonical_order(order: Order, *, limits: OrderLimits = DEFAULT_LIMITS) -> Order:
    """Validated order with the symbol stripped and upper-cased and executed_at in UTC.

    Positions and dedup fingerprints are keyed on these forms, so "aapl" and
    "AAPL" are one instrument.
    """
    validate_order(order, limits=limits)
    symbol = order.symbol.strip().upper()
    executed_at = to_utc(order.executed_at)
    if symbol == order.symbol and executed_at is order.executed_at:
        return order
    return dataclasses.replace(order, symbol=symbol, executed_at=executed_at)
