"""
Activity deduplicator: stable identity per execution, reject re-delivery.

Identity key:
  ext:<external_activity_id>   broker sync supplies a unique activity id
  fp:<sha256>                  CSV fills without one: user, symbol, side,
                               quantity, normalized price, executed_at to the second

Duplicates are not errors. They are counted and logged so operators can see
how often the same execution is re-delivered.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from enum import Enum

from trade_core.contracts import Order
from trade_core.validation import to_utc

logger = logging.getLogger("tradebook.dedup")


class DedupDecision(str, Enum):
    ACCEPT = "ACCEPT"
    DUPLICATE = "DUPLICATE"


def fingerprint(user_id: str, order: Order) -> str:
    """Composite fingerprint for fills lacking a broker-supplied id."""
    executed = to_utc(order.executed_at).replace(microsecond=0)
    price = order.price.normalize()
    hash_input = "|".join(
        [
            user_id,
            order.symbol.upper(),
            order.side.value,
            str(order.quantity),
            format(price, "f"),
            executed.isoformat(),
        ]
    )
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def identity_key(user_id: str, order: Order) -> str:
    if order.external_activity_id:
        return f"ext:{order.external_activity_id}"
    return f"fp:{fingerprint(user_id, order)}"


class ActivityDeduplicator:
    """Per-user seen-set. Check-and-mark is a single atomic step."""

    def __init__(self, user_id: str) -> None:
        self._user_id = user_id
        self._seen: dict[str, str] = {}
        self._lock = threading.Lock()
        self.duplicates_skipped = 0

    @property
    def user_id(self) -> str:
        return self._user_id

    def __len__(self) -> int:
        return len(self._seen)

    def key_for(self, order: Order) -> str:
        return identity_key(self._user_id, order)

    def seen(self, order: Order) -> bool:
        with self._lock:
            return self.key_for(order) in self._seen

    def accept(self, order: Order) -> DedupDecision:
        key = self.key_for(order)
        with self._lock:
            first = self._seen.get(key)
            if first is None:
                self._seen[key] = order.order_id
                return DedupDecision.ACCEPT
            self.duplicates_skipped += 1
        logger.info(
            "Duplicate execution skipped: user=%s order=%s symbol=%s key=%s first_seen_as=%s",
            self._user_id, order.order_id, order.symbol, key, first,
        )
        return DedupDecision.DUPLICATE
