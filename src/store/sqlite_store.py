"""
Persist orders, derived trades and trade annotations (SQLite). Timestamps in UTC.

Money is stored as TEXT so Decimal values round-trip exactly.
"""

import json
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from store.base import attach_annotation
from trade_core.contracts import (
    Annotation,
    HoldingPeriod,
    MarketSession,
    Order,
    OrderSide,
    Trade,
    TradeSide,
    TradeStatus,
)


def _utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    # SQLite has no native datetime; we store ISO strings
    if value is None:
        return None
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


class SQLiteTradeStore:
    """SQLite-backed TradeStore. One file per path; safe for one writer per user."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    order_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    price TEXT NOT NULL,
                    executed_at TEXT NOT NULL,
                    source_id TEXT NOT NULL DEFAULT '',
                    external_activity_id TEXT,
                    commission TEXT NOT NULL DEFAULT '0',
                    fees TEXT NOT NULL DEFAULT '0',
                    UNIQUE (user_id, order_id)
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    user_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    trade_key TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    status TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    closed_quantity INTEGER NOT NULL,
                    entry_price TEXT NOT NULL,
                    exit_price TEXT,
                    realized_pnl TEXT NOT NULL,
                    commission TEXT NOT NULL,
                    fees TEXT NOT NULL,
                    opened_at TEXT NOT NULL,
                    closed_at TEXT,
                    contributing_order_ids TEXT NOT NULL,
                    allocations TEXT NOT NULL,
                    cost_basis TEXT NOT NULL,
                    proceeds TEXT NOT NULL,
                    holding_period TEXT,
                    market_session TEXT,
                    time_in_trade_seconds INTEGER,
                    PRIMARY KEY (user_id, position)
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS trade_annotations (
                    user_id TEXT NOT NULL,
                    trade_key TEXT NOT NULL,
                    notes TEXT NOT NULL DEFAULT '',
                    tags TEXT NOT NULL DEFAULT '[]',
                    PRIMARY KEY (user_id, trade_key)
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS idx_orders_user_time ON orders (user_id, executed_at)")

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def add_order(self, user_id: str, order: Order) -> Order:
        with self._conn() as c:
            cur = c.execute(
                """
                INSERT INTO orders (user_id, order_id, symbol, side, quantity, price, executed_at,
                                    source_id, external_activity_id, commission, fees)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    order.order_id,
                    order.symbol,
                    order.side.value,
                    order.quantity,
                    str(order.price),
                    _utc_iso(order.executed_at),
                    order.source_id,
                    order.external_activity_id,
                    str(order.commission),
                    str(order.fees),
                ),
            )
            sequence = cur.lastrowid
        return Order(
            order_id=order.order_id,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=order.price,
            executed_at=order.executed_at,
            source_id=order.source_id,
            external_activity_id=order.external_activity_id,
            commission=order.commission,
            fees=order.fees,
            sequence=sequence,
        )

    def orders_for_user(self, user_id: str) -> list[Order]:
        with self._conn() as c:
            rows = c.execute(
                """
                SELECT sequence, order_id, symbol, side, quantity, price, executed_at,
                       source_id, external_activity_id, commission, fees
                FROM orders WHERE user_id = ? ORDER BY executed_at ASC, sequence ASC
                """,
                (user_id,),
            ).fetchall()
        orders = [
            Order(
                order_id=order_id,
                symbol=symbol,
                side=OrderSide(side),
                quantity=quantity,
                price=Decimal(price),
                executed_at=_parse_ts(executed_at),
                source_id=source_id,
                external_activity_id=ext_id,
                commission=Decimal(commission),
                fees=Decimal(fees),
                sequence=sequence,
            )
            for (sequence, order_id, symbol, side, quantity, price, executed_at,
                 source_id, ext_id, commission, fees) in rows
        ]
        # ISO strings with and without fractional seconds do not sort lexically
        return sorted(orders, key=lambda o: o.sort_key)

    def delete_orders(self, user_id: str, order_ids: Iterable[str]) -> int:
        ids = list(order_ids)
        if not ids:
            return 0
        with self._conn() as c:
            placeholders = ",".join("?" for _ in ids)
            cur = c.execute(
                f"DELETE FROM orders WHERE user_id = ? AND order_id IN ({placeholders})",
                [user_id, *ids],
            )
            return cur.rowcount

    def order_watermark(self, user_id: str) -> tuple[int, int]:
        with self._conn() as c:
            count, top = c.execute(
                "SELECT COUNT(*), COALESCE(MAX(sequence), 0) FROM orders WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return count, top

    def user_ids(self) -> list[str]:
        with self._conn() as c:
            rows = c.execute("SELECT DISTINCT user_id FROM orders ORDER BY user_id").fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def replace_trades(self, user_id: str, trades: list[Trade]) -> None:
        """Delete and re-insert in one transaction; rolled back on any error."""
        with self._conn() as c:
            c.execute("DELETE FROM trades WHERE user_id = ?", (user_id,))
            for position, t in enumerate(trades):
                c.execute(
                    """
                    INSERT INTO trades (user_id, position, trade_key, symbol, side, status, quantity,
                                        closed_quantity, entry_price, exit_price, realized_pnl, commission,
                                        fees, opened_at, closed_at, contributing_order_ids, allocations,
                                        cost_basis, proceeds, holding_period, market_session,
                                        time_in_trade_seconds)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        position,
                        t.trade_key,
                        t.symbol,
                        t.side.value,
                        t.status.value,
                        t.quantity,
                        t.closed_quantity,
                        str(t.entry_price),
                        str(t.exit_price) if t.exit_price is not None else None,
                        str(t.realized_pnl),
                        str(t.commission),
                        str(t.fees),
                        _utc_iso(t.opened_at),
                        _utc_iso(t.closed_at) if t.closed_at is not None else None,
                        json.dumps(list(t.contributing_order_ids)),
                        json.dumps([[oid, qty] for oid, qty in t.allocations]),
                        str(t.cost_basis),
                        str(t.proceeds),
                        t.holding_period.value if t.holding_period else None,
                        t.market_session.value if t.market_session else None,
                        t.time_in_trade_seconds,
                    ),
                )

    def trades_for_user(self, user_id: str) -> list[Trade]:
        with self._conn() as c:
            rows = c.execute(
                """
                SELECT trade_key, symbol, side, status, quantity, closed_quantity, entry_price, exit_price,
                       realized_pnl, commission, fees, opened_at, closed_at, contributing_order_ids,
                       allocations, cost_basis, proceeds, holding_period, market_session,
                       time_in_trade_seconds
                FROM trades WHERE user_id = ? ORDER BY position ASC
                """,
                (user_id,),
            ).fetchall()
        annotations = self.annotations_for_user(user_id)
        out: list[Trade] = []
        for (key, symbol, side, status, qty, closed_qty, entry, exit_, pnl, commission, fees,
             opened_at, closed_at, order_ids, allocations, cost_basis, proceeds, holding, session,
             seconds) in rows:
            trade = Trade(
                trade_key=key,
                user_id=user_id,
                symbol=symbol,
                side=TradeSide(side),
                status=TradeStatus(status),
                quantity=qty,
                closed_quantity=closed_qty,
                entry_price=Decimal(entry),
                exit_price=_dec(exit_),
                realized_pnl=Decimal(pnl),
                commission=Decimal(commission),
                fees=Decimal(fees),
                opened_at=_parse_ts(opened_at),
                closed_at=_parse_ts(closed_at),
                contributing_order_ids=tuple(json.loads(order_ids)),
                allocations=tuple((oid, int(q)) for oid, q in json.loads(allocations)),
                cost_basis=Decimal(cost_basis),
                proceeds=Decimal(proceeds),
                holding_period=HoldingPeriod(holding) if holding else None,
                market_session=MarketSession(session) if session else None,
                time_in_trade_seconds=seconds,
            )
            out.append(attach_annotation(trade, annotations.get(key)))
        return out

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def annotate_trade(self, user_id: str, trade_key: str, *, notes: str = "", tags: Iterable[str] = ()) -> None:
        with self._conn() as c:
            c.execute(
                """
                INSERT OR REPLACE INTO trade_annotations (user_id, trade_key, notes, tags)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, trade_key, notes, json.dumps(list(tags))),
            )

    def annotations_for_user(self, user_id: str) -> dict[str, Annotation]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT trade_key, notes, tags FROM trade_annotations WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        return {
            key: Annotation(trade_key=key, notes=notes, tags=tuple(json.loads(tags)))
            for key, notes, tags in rows
        }
