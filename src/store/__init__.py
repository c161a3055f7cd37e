"""
Persistence for raw orders, derived trades and trade annotations.
"""

from store.base import TradeStore
from store.memory_store import MemoryTradeStore
from store.sqlite_store import SQLiteTradeStore

__all__ = ["MemoryTradeStore", "SQLiteTradeStore", "TradeStore"]
