"""
CLI entry point: tradebook import | rebuild | trades | positions | annotate | health.

Every command loads config from --config (default config.yaml), works
against the configured SQLite store, and logs to the journal.
"""

import logging
import sys
from collections import Counter

import click
from dotenv import load_dotenv

from config import load_config

load_dotenv()

logger = logging.getLogger("tradebook")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _event_router(events, journal):
    """Fan engine events out to the structured log and the journal."""

    def on_event(event_type: str, payload: dict) -> None:
        user_id = payload.get("user_id", "")
        if event_type == "order_ingested":
            if events:
                events.order_ingested(
                    user_id, payload["order_id"], payload["symbol"], payload["side"],
                    payload["quantity"], payload["price"], payload["identity_key"],
                )
        elif event_type == "duplicate_skipped":
            if events:
                events.duplicate_skipped(user_id, payload["order_id"], payload["symbol"], payload["identity_key"])
            journal.duplicate(user_id, payload["order_id"], payload["identity_key"])
        elif event_type == "order_rejected":
            err = payload["error"]
            if events:
                events.order_rejected(user_id, err.order_id, err.symbol, err.reason)
            journal.order_error(user_id, err.order_id, err.symbol, err.reason)
        elif event_type == "trade_closed":
            journal.trade_closed(user_id, payload["trade"])
        elif event_type == "rebuild_started":
            if events:
                events.rebuild_started(user_id, payload["orders"])
        elif event_type == "rebuild_completed":
            summary = payload["summary"]
            if events:
                events.rebuild_completed(
                    user_id, summary.trades_created, summary.open_trades, summary.total_pnl,
                    summary.orders_processed, summary.duplicates_skipped, len(summary.errors),
                )
            journal.rebuild(summary)
        elif event_type == "rebuild_aborted":
            if events:
                events.rebuild_aborted(user_id, payload["reason"], payload.get("detail", ""))

    return on_event


def _build_engine(cfg):
    from cli.structured_log import StructuredEventLogger
    from journal import JournalWriter
    from recalc import TradeEngine
    from store import SQLiteTradeStore

    store = SQLiteTradeStore(cfg.store.path)
    journal = JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout)
    events = None
    if cfg.alerting.structured_logs or cfg.alerting.webhook_url:
        events = StructuredEventLogger(
            enabled=cfg.alerting.structured_logs,
            webhook_url=cfg.alerting.webhook_url,
        )
    return TradeEngine(store, cfg.engine, on_event=_event_router(events, journal))


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """tradebook: derive round-trip trades from executed fills (FIFO, exact P&L)."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- tradebook import ----------


@cli.command("import")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--user", "user_id", required=True, help="User the fills belong to.")
@click.option("--source", "source_id", default="csv", help="Ingestion channel recorded on each order.")
@click.pass_context
def import_orders(ctx: click.Context, csv_path: str, user_id: str, source_id: str) -> None:
    """Ingest a canonical order CSV for one user.

    Rows are ingested oldest first. Re-importing the same file is safe:
    every row already seen is reported as a duplicate.
    """
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_import
    from data import read_orders_csv

    engine = _build_engine(cfg)
    read = read_orders_csv(csv_path, source_id=source_id, limits=cfg.engine.order_limits)

    counts: Counter = Counter()
    rejected = []
    ordered = sorted(read.orders, key=lambda o: o.executed_at)
    for result in engine.ingest_batch(user_id, ordered):
        counts[result.status.value] += 1
        if result.error is not None:
            rejected.append(result.error)

    click.echo(format_import(csv_path, read, dict(counts), rejected))


# ---------- tradebook rebuild ----------


@cli.command()
@click.option("--user", "user_id", default=None, help="Rebuild one user.")
@click.option("--all", "all_users", is_flag=True, default=False, help="Rebuild every user in the store.")
@click.pass_context
def rebuild(ctx: click.Context, user_id: str | None, all_users: bool) -> None:
    """Discard and re-derive trades from stored orders."""
    if bool(user_id) == all_users:
        raise click.UsageError("Pass exactly one of --user or --all.")
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_batch, format_summary
    from trade_core.errors import TradeEngineError

    engine = _build_engine(cfg)
    if all_users:
        result = engine.rebuild_all()
        click.echo(format_batch(result))
        raise SystemExit(0 if result.ok else 1)

    try:
        summary = engine.rebuild_trades(user_id)
    except TradeEngineError as exc:
        click.echo(f"Rebuild FAILED for {user_id}: {exc}", err=True)
        raise SystemExit(1)
    click.echo(format_summary(summary))


# ---------- tradebook trades ----------


@cli.command()
@click.option("--user", "user_id", required=True)
@click.option("--status", type=click.Choice(["open", "closed", "all"]), default="all", show_default=True)
@click.option("--symbol", default=None, help="Only trades for this symbol.")
@click.pass_context
def trades(ctx: click.Context, user_id: str, status: str, symbol: str | None) -> None:
    """List a user's derived trades."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_trades

    engine = _build_engine(cfg)
    rows = engine.trades(user_id)
    if status != "all":
        rows = [t for t in rows if t.status.value.lower() == status]
    if symbol:
        rows = [t for t in rows if t.symbol == symbol.upper()]
    click.echo(format_trades(rows))


# ---------- tradebook positions ----------


@cli.command()
@click.option("--user", "user_id", required=True)
@click.pass_context
def positions(ctx: click.Context, user_id: str) -> None:
    """Show open FIFO lots per symbol."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_positions

    engine = _build_engine(cfg)
    click.echo(format_positions(engine.positions(user_id)))


# ---------- tradebook annotate ----------


@cli.command()
@click.option("--user", "user_id", required=True)
@click.option("--trade", "key_prefix", required=True, help="Trade key (or a unique prefix of it).")
@click.option("--note", "notes", default="", help="Free-text note.")
@click.option("--tag", "tags", multiple=True, help="Tag; repeat for several.")
@click.pass_context
def annotate(ctx: click.Context, user_id: str, key_prefix: str, notes: str, tags: tuple[str, ...]) -> None:
    """Attach notes/tags to a trade. They survive rebuilds while the trade's orders are unchanged."""
    cfg = load_config(ctx.obj["config_path"])
    engine = _build_engine(cfg)

    matches = [t for t in engine.trades(user_id) if t.trade_key.startswith(key_prefix)]
    if not matches:
        raise click.ClickException(f"No trade for {user_id} with key {key_prefix}")
    if len(matches) > 1:
        raise click.ClickException(f"Key prefix {key_prefix} is ambiguous ({len(matches)} trades)")

    trade = matches[0]
    engine.annotate(user_id, trade.trade_key, notes=notes, tags=tags)
    click.echo(f"Annotated {trade.symbol} {trade.side.value} trade {trade.trade_key}")


# ---------- tradebook health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, store access, journal path.

    Exit code 0 = healthy, 1 = unhealthy, so cron jobs and schedulers can gate on it.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = load_config(ctx.obj["config_path"])
        checks.append(("config", True, f"loaded (grouping={cfg.engine.grouping.value})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from store import SQLiteTradeStore
        store = SQLiteTradeStore(cfg.store.path)
        users = store.user_ids()
        checks.append(("store", True, f"{cfg.store.path} ({len(users)} users)"))
    except Exception as e:
        checks.append(("store", False, str(e)))

    try:
        from journal import JournalWriter
        journal = JournalWriter(cfg.journal.path)
        checks.append(("journal", True, str(journal.path)))
    except Exception as e:
        checks.append(("journal", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
