"""
Per-user mutual exclusion for ingest and rebuild.

Different users proceed in parallel; one user's ingest/rebuild calls are
strictly serialized.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from trade_core.errors import ConcurrentRebuildConflict

logger = logging.getLogger("tradebook.locks")


class UserLocks:
    """Registry of one Lock per user_id, created on first use."""

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self._timeout = timeout_seconds
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def is_locked(self, user_id: str) -> bool:
        return self._lock_for(user_id).locked()

    @contextmanager
    def acquire(
        self,
        user_id: str,
        *,
        blocking: bool = True,
        timeout: float | None = None,
    ) -> Iterator[None]:
        """Hold the user's lock for the duration of the block.

        Raises ConcurrentRebuildConflict when the lock is busy and either
        ``blocking`` is False or the timeout elapses.
        """
        lock = self._lock_for(user_id)
        wait = self._timeout if timeout is None else timeout
        started = time.monotonic()
        if blocking:
            acquired = lock.acquire(timeout=wait) if wait >= 0 else lock.acquire()
        else:
            acquired = lock.acquire(blocking=False)
        if not acquired:
            waited = time.monotonic() - started
            logger.warning("Lock busy for user=%s (waited %.2fs)", user_id, waited)
            raise ConcurrentRebuildConflict(user_id, waited_seconds=waited if blocking else None)
        try:
            yield
        finally:
            lock.release()
