"""
Structured JSON event logger for ingest/rebuild observability.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: when configured, operator-facing events (order_rejected,
rebuild_aborted, error) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger("tradebook.events")

ALERT_EVENTS = frozenset({"order_rejected", "rebuild_aborted", "error"})


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        service: str = "tradebook",
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._service = service
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "service": self._service,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record, default=_json_default) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record, default=_json_default).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def order_ingested(
        self,
        user_id: str,
        order_id: str,
        symbol: str,
        side: str,
        quantity: int,
        price: Decimal,
        identity_key: str,
    ) -> dict:
        return self._emit(
            "order_ingested",
            user_id=user_id,
            order_id=order_id,
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            identity_key=identity_key,
        )

    def duplicate_skipped(self, user_id: str, order_id: str, symbol: str, identity_key: str) -> dict:
        return self._emit(
            "duplicate_skipped",
            user_id=user_id,
            order_id=order_id,
            symbol=symbol,
            identity_key=identity_key,
        )

    def order_rejected(self, user_id: str, order_id: str, symbol: str, reason: str) -> dict:
        return self._emit("order_rejected", user_id=user_id, order_id=order_id, symbol=symbol, reason=reason)

    def rebuild_started(self, user_id: str, orders: int) -> dict:
        return self._emit("rebuild_started", user_id=user_id, orders=orders)

    def rebuild_completed(
        self,
        user_id: str,
        trades: int,
        open_trades: int,
        total_pnl: Decimal,
        orders_processed: int,
        duplicates_skipped: int,
        errors: int,
    ) -> dict:
        return self._emit(
            "rebuild_completed",
            user_id=user_id,
            trades=trades,
            open_trades=open_trades,
            total_pnl=total_pnl,
            orders_processed=orders_processed,
            duplicates_skipped=duplicates_skipped,
            errors=errors,
        )

    def rebuild_aborted(self, user_id: str, reason: str, detail: str = "") -> dict:
        return self._emit("rebuild_aborted", user_id=user_id, reason=reason, detail=detail)

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)
