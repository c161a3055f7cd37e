"""Tests for the activity deduplicator."""

import dataclasses
import threading
from datetime import timedelta
from decimal import Decimal

from trade_core.contracts import OrderSide
from trade_core.dedup import ActivityDeduplicator, DedupDecision, fingerprint, identity_key


def test_external_id_is_identity(make_order) -> None:
    order = make_order("BUY", 10, "5", external_activity_id="act-9")
    assert identity_key("u", order) == "ext:act-9"


def test_fingerprint_identity_without_external_id(make_order) -> None:
    order = make_order("BUY", 10, "5")
    key = identity_key("u", order)
    assert key.startswith("fp:")
    assert key == f"fp:{fingerprint('u', order)}"


def test_fingerprint_ignores_order_id_and_price_scale(make_order) -> None:
    a = make_order("BUY", 10, "5.10")
    b = dataclasses.replace(a, order_id="other", price=Decimal("5.1"), source_id="broker")
    assert fingerprint("u", a) == fingerprint("u", b)


def test_fingerprint_truncates_to_second(make_order) -> None:
    a = make_order("BUY", 10, "5")
    b = dataclasses.replace(a, executed_at=a.executed_at + timedelta(milliseconds=400))
    assert fingerprint("u", a) == fingerprint("u", b)


def test_fingerprint_differs_by_user_and_side(make_order) -> None:
    order = make_order("BUY", 10, "5")
    sell = dataclasses.replace(order, side=OrderSide.SELL)
    assert fingerprint("u1", order) != fingerprint("u2", order)
    assert fingerprint("u1", order) != fingerprint("u1", sell)


def test_accept_then_duplicate(make_order) -> None:
    dedup = ActivityDeduplicator("u")
    first = make_order("BUY", 10, "5", external_activity_id="act-1")
    again = dataclasses.replace(first, order_id="resent", source_id="broker")
    assert dedup.accept(first) is DedupDecision.ACCEPT
    assert dedup.accept(again) is DedupDecision.DUPLICATE
    assert dedup.duplicates_skipped == 1
    assert len(dedup) == 1
    assert dedup.seen(first)


def test_same_csv_fill_from_two_channels(make_order) -> None:
    dedup = ActivityDeduplicator("u")
    csv_fill = make_order("SELL", 25, "101.5", source_id="csv")
    synced = dataclasses.replace(csv_fill, order_id="sync-1", source_id="broker-sync")
    assert dedup.accept(csv_fill) is DedupDecision.ACCEPT
    assert dedup.accept(synced) is DedupDecision.DUPLICATE


def test_concurrent_accept_marks_once(make_order) -> None:
    dedup = ActivityDeduplicator("u")
    order = make_order("BUY", 1, "1", external_activity_id="race")
    results: list[DedupDecision] = []
    lock = threading.Lock()

    def worker() -> None:
        decision = dedup.accept(order)
        with lock:
            results.append(decision)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(DedupDecision.ACCEPT) == 1
    assert dedup.duplicates_skipped == 15
