"""
Recalculation orchestrator: ingest orders and rebuild a user's derived trades.

Drivers over the same fold:
  ingest_order(user_id, order)   incremental; appends to the cached book when
                                 the order is not older than the last applied
                                 fill, otherwise falls back to a full rebuild
  ingest_batch(user_id, orders)  the same per order, writing trades once at the end
  rebuild_trades(user_id)        replays the full stored history from scratch
                                 and atomically replaces the stored trades

All are serialized per user (UserLocks). A cached book is replayed again
whenever the store's order watermark moved behind it. Derived trades carry
no wall-clock or random data, so rebuilding unchanged orders yields
identical trades.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from config.loader import EngineConfig
from recalc.book import OpenPosition, UserBook
from recalc.locks import UserLocks
from store.base import TradeStore
from trade_core.contracts import Order, Trade, TradeUpdate
from trade_core.dedup import identity_key
from trade_core.errors import (
    ArithmeticInconsistency,
    ConcurrentRebuildConflict,
    MalformedOrder,
    OrderError,
    RebuildCancelled,
    TradeEngineError,
)
from trade_core.money import ZERO
from trade_core.validation import canonical_order, order_from_record

logger = logging.getLogger("tradebook.engine")

EventCallback = Callable[[str, dict], None]


class IngestStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class RebuildSummary:
    """Outcome of one full recalculation for one user."""

    user_id: str
    trades_created: int = 0
    completed_trades: int = 0
    open_trades: int = 0
    total_pnl: Decimal = ZERO
    orders_processed: int = 0
    duplicates_skipped: int = 0
    errors: tuple[OrderError, ...] = ()
    annotations_reattached: int = 0

    @property
    def clean(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    order_id: str
    identity_key: str = ""
    rebuilt: bool = False
    summary: RebuildSummary | None = None
    error: OrderError | None = None
    update: TradeUpdate | None = None


@dataclass
class BatchRebuildResult:
    """rebuild_all outcome: per-user summaries, and per-user failures that did not stop the batch."""

    summaries: dict[str, RebuildSummary] = field(default_factory=dict)
    failures: dict[str, TradeEngineError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class TradeEngine:
    def __init__(
        self,
        store: TradeStore,
        config: EngineConfig | None = None,
        *,
        on_event: EventCallback | None = None,
    ) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._on_event = on_event
        self._locks = UserLocks(self._config.lock_timeout_seconds)
        self._books: dict[str, UserBook] = {}
        self._stats_lock = threading.Lock()
        self._stats = {
            "orders_accepted": 0,
            "duplicates_skipped": 0,
            "orders_rejected": 0,
            "rebuilds": 0,
            "rebuilds_aborted": 0,
        }

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def _count(self, name: str, n: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += n

    def _emit(self, event_type: str, payload: dict) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event_type, payload)
        except Exception:
            logger.exception("Event handler failed for %s", event_type)

    def _new_book(self, user_id: str) -> UserBook:
        return UserBook(
            user_id,
            grouping=self._config.grouping,
            market_timezone=self._config.market_timezone,
            swing_threshold=self._config.swing_threshold,
            limits=self._config.order_limits,
        )

    # ------------------------------------------------------------------
    # Incremental ingestion
    # ------------------------------------------------------------------

    def ingest_order(
        self,
        user_id: str,
        order: Order | Mapping[str, Any],
        *,
        blocking: bool = True,
    ) -> IngestResult:
        """Accept one executed fill for a user.

        ``order`` may be a validated Order or a loose record (see
        trade_core.validation.order_from_record). Malformed input is
        REJECTED and never stored; a re-delivered execution is a DUPLICATE
        and changes nothing.
        """
        with self._locks.acquire(user_id, blocking=blocking):
            result = self._ingest_locked(user_id, order)
            if _appended(result):
                self._store.replace_trades(user_id, self._books[user_id].trades())
            return result

    def ingest_batch(
        self,
        user_id: str,
        orders: Iterable[Order | Mapping[str, Any]],
        *,
        blocking: bool = True,
    ) -> list[IngestResult]:
        """Ingest many fills under one lock hold and write the user's trades once.

        Results are in input order. Feed orders oldest first: a backfilled
        order still triggers a full rebuild.
        """
        results: list[IngestResult] = []
        with self._locks.acquire(user_id, blocking=blocking):
            pending = False
            for order in orders:
                result = self._ingest_locked(user_id, order)
                results.append(result)
                if result.rebuilt:
                    pending = False
                elif _appended(result):
                    pending = True
            if pending:
                self._store.replace_trades(user_id, self._books[user_id].trades())
        return results

    def _ingest_locked(self, user_id: str, order: Order | Mapping[str, Any]) -> IngestResult:
        raw_id = str(order.get("order_id") or "") if isinstance(order, Mapping) else order.order_id
        try:
            if isinstance(order, Mapping):
                order = order_from_record(order, limits=self._config.order_limits)
            order = canonical_order(order, limits=self._config.order_limits)
        except MalformedOrder as exc:
            symbol = "" if isinstance(order, Mapping) else order.symbol
            return self._reject(user_id, OrderError.from_exception(exc, order_id=raw_id, symbol=symbol))

        book = self._cached_book(user_id)

        key = identity_key(user_id, order)
        if book.is_duplicate(order):
            book.dedup.accept(order)
            self._count("duplicates_skipped")
            self._emit("duplicate_skipped", {
                "user_id": user_id, "order_id": order.order_id, "symbol": order.symbol, "identity_key": key,
            })
            return IngestResult(IngestStatus.DUPLICATE, order.order_id, identity_key=key)

        if book.knows(order.order_id):
            return self._reject(
                user_id,
                OrderError(
                    order_id=order.order_id,
                    symbol=order.symbol,
                    reason="order_id already stored with different execution details; delete it before re-ingesting",
                ),
            )

        stored = self._store.add_order(user_id, order)
        self._count("orders_accepted")
        self._emit("order_ingested", {
            "user_id": user_id,
            "order_id": stored.order_id,
            "symbol": stored.symbol,
            "side": stored.side.value,
            "quantity": stored.quantity,
            "price": stored.price,
            "identity_key": key,
        })

        expected = (book.watermark[0] + 1, stored.sequence)
        watermark = self._store.order_watermark(user_id)
        if watermark != expected:
            logger.info(
                "Store changed while ingesting %s (expected %s, found %s); rebuilding user=%s",
                stored.order_id, expected, watermark, user_id,
            )
            summary = self._rebuild_locked(user_id)
            return IngestResult(
                IngestStatus.ACCEPTED, stored.order_id, identity_key=key, rebuilt=True, summary=summary,
            )
        book.watermark = watermark

        if not book.appends_in_order(stored):
            logger.info(
                "Backfilled order %s at %s precedes last applied %s; rebuilding user=%s",
                stored.order_id, stored.executed_at.isoformat(), book.last_applied_at.isoformat(), user_id,
            )
            summary = self._rebuild_locked(user_id)
            return IngestResult(
                IngestStatus.ACCEPTED, stored.order_id, identity_key=key, rebuilt=True, summary=summary,
            )

        try:
            update = book.apply(stored)
        except ArithmeticInconsistency as exc:
            self._abort(user_id, exc)
            raise
        if update is not None and update.closed_trade is not None:
            self._emit("trade_closed", {"user_id": user_id, "trade": update.closed_trade})
        return IngestResult(IngestStatus.ACCEPTED, stored.order_id, identity_key=key, update=update)

    def _reject(self, user_id: str, error: OrderError) -> IngestResult:
        self._count("orders_rejected")
        logger.warning(
            "Rejected order: user=%s order=%s symbol=%s reason=%s",
            user_id, error.order_id, error.symbol, error.reason,
        )
        self._emit("order_rejected", {"user_id": user_id, "error": error})
        return IngestResult(IngestStatus.REJECTED, error.order_id, error=error)

    def delete_orders(self, user_id: str, order_ids: Iterable[str], *, blocking: bool = True) -> RebuildSummary:
        """Remove stored orders (e.g. before re-ingesting corrected ones) and rebuild."""
        with self._locks.acquire(user_id, blocking=blocking):
            removed = self._store.delete_orders(user_id, order_ids)
            logger.info("Deleted %d orders for user=%s", removed, user_id)
            return self._rebuild_locked(user_id)

    # ------------------------------------------------------------------
    # Full recalculation
    # ------------------------------------------------------------------

    def rebuild_trades(
        self,
        user_id: str,
        *,
        cancel: threading.Event | None = None,
        blocking: bool = True,
    ) -> RebuildSummary:
        """Discard and re-derive every trade for the user from stored orders.

        Raises ArithmeticInconsistency (nothing committed), RebuildCancelled
        (nothing committed) or ConcurrentRebuildConflict.
        """
        with self._locks.acquire(user_id, blocking=blocking):
            return self._rebuild_locked(user_id, cancel=cancel)

    def rebuild_all(self, *, cancel: threading.Event | None = None) -> BatchRebuildResult:
        """Rebuild every user in the store. One user's failure does not stop the others."""
        result = BatchRebuildResult()
        for user_id in self._store.user_ids():
            try:
                result.summaries[user_id] = self.rebuild_trades(user_id, cancel=cancel)
            except (ArithmeticInconsistency, ConcurrentRebuildConflict) as exc:
                logger.error("Rebuild failed for user=%s: %s", user_id, exc)
                result.failures[user_id] = exc
        return result

    def _rebuild_locked(self, user_id: str, *, cancel: threading.Event | None = None) -> RebuildSummary:
        orders = self._store.orders_for_user(user_id)
        logger.info("Rebuild started: user=%s orders=%d", user_id, len(orders))
        self._emit("rebuild_started", {"user_id": user_id, "orders": len(orders)})

        try:
            book = self._replay(user_id, orders, cancel=cancel)
        except ArithmeticInconsistency as exc:
            self._abort(user_id, exc)
            raise
        except RebuildCancelled as exc:
            self._count("rebuilds_aborted")
            logger.warning("Rebuild cancelled: user=%s after %d orders", user_id, exc.orders_seen)
            self._emit("rebuild_aborted", {"user_id": user_id, "reason": "cancelled", "detail": str(exc)})
            raise

        trades = book.trades()
        annotations = self._store.annotations_for_user(user_id)
        self._store.replace_trades(user_id, trades)
        self._books[user_id] = book
        self._count("rebuilds")

        summary = _summarize(user_id, book, trades, annotations)
        logger.info(
            "Rebuild completed: user=%s trades=%d closed=%d open=%d processed=%d duplicates=%d errors=%d",
            user_id, summary.trades_created, summary.completed_trades, summary.open_trades,
            summary.orders_processed, summary.duplicates_skipped, len(summary.errors),
        )
        self._emit("rebuild_completed", {"user_id": user_id, "summary": summary})
        return summary

    def _replay(
        self,
        user_id: str,
        orders: list[Order],
        *,
        cancel: threading.Event | None = None,
    ) -> UserBook:
        book = self._new_book(user_id)
        for seen, order in enumerate(orders):
            if cancel is not None and cancel.is_set():
                raise RebuildCancelled(user_id, seen)
            try:
                book.apply(order)
            except MalformedOrder as exc:
                error = book.record_error(exc, order)
                self._emit("order_rejected", {"user_id": user_id, "error": error})
            except ArithmeticInconsistency as exc:
                if exc.user_id is None:
                    exc.user_id = user_id
                if exc.order_id is None:
                    exc.order_id = order.order_id
                raise
        book.watermark = (len(orders), max((o.sequence for o in orders), default=0))
        return book

    def _cached_book(self, user_id: str) -> UserBook:
        """The user's live book; replayed (not committed) from the store on first use
        and whenever the stored orders changed behind it (another engine or process)."""
        book = self._books.get(user_id)
        if book is not None:
            watermark = self._store.order_watermark(user_id)
            if watermark != book.watermark:
                logger.info(
                    "Cached book for user=%s is stale (book %s, store %s); replaying",
                    user_id, book.watermark, watermark,
                )
                book = None
        if book is None:
            try:
                book = self._replay(user_id, self._store.orders_for_user(user_id))
            except ArithmeticInconsistency as exc:
                self._abort(user_id, exc)
                raise
            self._books[user_id] = book
        return book

    def _abort(self, user_id: str, exc: ArithmeticInconsistency) -> None:
        if exc.user_id is None:
            exc.user_id = user_id
        self._books.pop(user_id, None)
        self._count("rebuilds_aborted")
        logger.error(
            "Rebuild aborted: user=%s symbol=%s order=%s reason=%s",
            user_id, exc.symbol, exc.order_id, exc.reason,
        )
        self._emit("rebuild_aborted", {
            "user_id": user_id,
            "reason": "arithmetic_inconsistency",
            "detail": str(exc),
            "symbol": exc.symbol,
            "order_id": exc.order_id,
        })

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def trades(self, user_id: str) -> list[Trade]:
        return self._store.trades_for_user(user_id)

    def positions(self, user_id: str) -> list[OpenPosition]:
        """Open lots per symbol, replayed from stored orders if not cached."""
        with self._locks.acquire(user_id):
            return self._cached_book(user_id).open_positions()

    def annotate(self, user_id: str, trade_key: str, *, notes: str = "", tags: Iterable[str] = ()) -> None:
        self._store.annotate_trade(user_id, trade_key, notes=notes, tags=tuple(tags))


def _summarize(user_id: str, book: UserBook, trades: list[Trade], annotations: dict) -> RebuildSummary:
    completed = [t for t in trades if t.is_closed]
    return RebuildSummary(
        user_id=user_id,
        trades_created=len(trades),
        completed_trades=len(completed),
        open_trades=len(trades) - len(completed),
        total_pnl=sum((t.realized_pnl for t in trades), ZERO),
        orders_processed=book.orders_processed,
        duplicates_skipped=book.duplicates_skipped,
        errors=tuple(book.errors),
        annotations_reattached=sum(1 for t in trades if t.trade_key in annotations),
    )


def _appended(result: IngestResult) -> bool:
    """True when the fill was folded into the cached book and the stored trades are behind it."""
    return result.status is IngestStatus.ACCEPTED and not result.rebuilt
