"""
Structured journal: append-only JSON lines. Audit trail of closed trades,
skipped duplicates, rejected orders and rebuild summaries.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "__dataclass_fields__") and not isinstance(obj, type):
        return {k: _serialize(getattr(obj, k)) for k in obj.__dataclass_fields__ if not k.startswith("_")}
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with open(self._path, "a") as f:
            f.write(line)
        if self._echo:
            print(line.rstrip())

    def trade_closed(self, user_id: str, trade: Any, **extra: Any) -> None:
        self._write(
            "trade_closed",
            {
                "user_id": user_id,
                "trade_key": trade.trade_key,
                "symbol": trade.symbol,
                "side": trade.side,
                "quantity": trade.quantity,
                "entry_price": trade.entry_price,
                "exit_price": trade.exit_price,
                "realized_pnl": trade.realized_pnl,
                "net_pnl": trade.net_pnl,
                "order_ids": trade.contributing_order_ids,
                **extra,
            },
        )

    def duplicate(self, user_id: str, order_id: str, identity_key: str, **extra: Any) -> None:
        self._write("duplicate", {"user_id": user_id, "order_id": order_id, "identity_key": identity_key, **extra})

    def order_error(self, user_id: str, order_id: str, symbol: str, reason: str, **extra: Any) -> None:
        self._write("order_error", {"user_id": user_id, "order_id": order_id, "symbol": symbol, "reason": reason, **extra})

    def rebuild(self, summary: Any, **extra: Any) -> None:
        self._write("rebuild", {"summary": summary, **extra})
