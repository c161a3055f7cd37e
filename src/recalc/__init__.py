"""
Recalculation: incremental ingest and full per-user rebuild over a TradeStore.
"""

from recalc.engine import BatchRebuildResult, IngestResult, IngestStatus, RebuildSummary, TradeEngine

__all__ = ["BatchRebuildResult", "IngestResult", "IngestStatus", "RebuildSummary", "TradeEngine"]
