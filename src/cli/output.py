"""
Human-readable trade output for the terminal.

The only place money is rounded: two decimals, ROUND_HALF_UP. Everything
upstream keeps full Decimal precision.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from trade_core.contracts import Trade
from trade_core.errors import OrderError

if TYPE_CHECKING:
    from data.csv_orders import CsvReadResult
    from recalc.book import OpenPosition
    from recalc.engine import BatchRebuildResult, RebuildSummary

CENT = Decimal("0.01")


def format_money(value: Decimal | None) -> str:
    if value is None:
        return "-"
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _signed(value: Decimal) -> str:
    text = format_money(value)
    return text if value < 0 else f"+{text}"


def format_summary(summary: RebuildSummary) -> str:
    """Format one user's rebuild summary."""
    lines = [
        f"=== Rebuild: {summary.user_id} ===",
        f"Trades           : {summary.trades_created} ({summary.completed_trades} closed, {summary.open_trades} open)",
        f"Realized P&L     : {_signed(summary.total_pnl)}",
        f"Orders processed : {summary.orders_processed}",
        f"Duplicates       : {summary.duplicates_skipped}",
        f"Notes reattached : {summary.annotations_reattached}",
        f"Errors           : {len(summary.errors)}",
    ]
    for err in summary.errors:
        lines.append(f"  - {err.order_id} {err.symbol}: {err.reason}")
    lines.append("===")
    return "\n".join(lines)


def format_batch(result: BatchRebuildResult) -> str:
    lines = [format_summary(s) for _, s in sorted(result.summaries.items())]
    for user_id, exc in sorted(result.failures.items()):
        lines.append(f"!!! Rebuild FAILED for {user_id}: {exc}")
    return "\n".join(lines) if lines else "No users with stored orders."


def format_trades(trades: list[Trade]) -> str:
    """One line per trade, oldest first."""
    if not trades:
        return "No trades."
    lines = [
        f"{'KEY':<10} {'SYMBOL':<8} {'SIDE':<5} {'STATUS':<6} {'QTY':>7} {'ENTRY':>10} {'EXIT':>10} "
        f"{'P&L':>11} {'NET':>11} {'OPENED':<20} TAGS"
    ]
    for t in trades:
        qty = str(t.quantity) if t.is_closed else f"{t.open_quantity}/{t.quantity}"
        lines.append(
            f"{t.trade_key[:10]:<10} {t.symbol:<8} {t.side.value:<5} {t.status.value:<6} {qty:>7} "
            f"{format_money(t.entry_price):>10} {format_money(t.exit_price):>10} "
            f"{_signed(t.realized_pnl):>11} {_signed(t.net_pnl):>11} "
            f"{t.opened_at.strftime('%Y-%m-%d %H:%M'):<20} {','.join(t.tags)}"
        )
        if t.notes:
            lines.append(f"{'':<10} note: {t.notes}")
    closed = [t for t in trades if t.is_closed]
    total = sum((t.realized_pnl for t in trades), Decimal("0"))
    wins = sum(1 for t in closed if t.realized_pnl > 0)
    lines.append(f"\n{len(trades)} trades, {len(closed)} closed, {wins} winners, realized P&L {_signed(total)}")
    return "\n".join(lines)


def format_positions(positions: list[OpenPosition]) -> str:
    if not positions:
        return "No open positions."
    lines = []
    for pos in positions:
        lines.append(
            f"{pos.symbol:<8} {pos.side.value:<5} {pos.quantity:>7} @ avg {format_money(pos.average_price)}"
        )
        for lot in pos.lots:
            lines.append(
                f"    lot {lot.order_id}: {lot.remaining_quantity}/{lot.original_quantity} "
                f"@ {format_money(lot.price)} ({lot.executed_at.isoformat()})"
            )
    return "\n".join(lines)


def format_import(path: str, read: CsvReadResult, counts: dict[str, int], rejected: list[OrderError]) -> str:
    lines = [
        f"=== Import: {path} ===",
        f"Rows read   : {read.rows}",
        f"Accepted    : {counts.get('ACCEPTED', 0)}",
        f"Duplicates  : {counts.get('DUPLICATE', 0)}",
        f"Rejected    : {len(read.errors) + len(rejected)}",
    ]
    for err in [*read.errors, *rejected]:
        lines.append(f"  - {err.order_id} {err.symbol}: {err.reason}")
    lines.append("===")
    return "\n".join(lines)
