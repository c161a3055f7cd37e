"""
Canonical order CSV reader.

Expected header (case-insensitive, extra columns ignored):
  order_id, symbol, side, quantity, price, executed_at
  [source_id, external_activity_id, commission, fees]

Rows that fail validation are collected, not raised, so one bad line never
blocks the rest of the file.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path

from trade_core.contracts import Order
from trade_core.errors import MalformedOrder, OrderError
from trade_core.validation import DEFAULT_LIMITS, OrderLimits, order_from_record

logger = logging.getLogger("tradebook.csv")

REQUIRED_COLUMNS = ("order_id", "symbol", "side", "quantity", "price", "executed_at")


@dataclass
class CsvReadResult:
    orders: list[Order] = field(default_factory=list)
    errors: list[OrderError] = field(default_factory=list)
    rows: int = 0


def read_orders_csv(
    path: str | Path,
    *,
    source_id: str = "csv",
    limits: OrderLimits = DEFAULT_LIMITS,
) -> CsvReadResult:
    """Parse a canonical order CSV. Raises ValueError if required columns are missing."""
    csv_path = Path(path)
    result = CsvReadResult()
    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        header = [h.strip().lower() for h in (reader.fieldnames or [])]
        missing = [c for c in REQUIRED_COLUMNS if c not in header]
        if missing:
            raise ValueError(f"{csv_path}: missing required columns: {', '.join(missing)}")

        for line_no, row in enumerate(reader, start=2):
            result.rows += 1
            record = {
                k.strip().lower(): v.strip()
                for k, v in row.items()
                if k is not None and v is not None and v.strip() != ""
            }
            record.setdefault("source_id", source_id)
            try:
                result.orders.append(order_from_record(record, limits=limits))
            except MalformedOrder as exc:
                error = OrderError.from_exception(
                    exc,
                    order_id=record.get("order_id", f"line {line_no}"),
                    symbol=record.get("symbol", ""),
                )
                result.errors.append(error)
                logger.warning("%s line %d: %s", csv_path.name, line_no, error.reason)

    logger.info(
        "Read %s: rows=%d orders=%d errors=%d",
        csv_path.name, result.rows, len(result.orders), len(result.errors),
    )
    return result
