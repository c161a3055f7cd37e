"""
Order files: read canonical order CSVs into validated Orders.

Broker-specific normalization happens upstream; this only handles the
canonical column layout.
"""

from data.csv_orders import CsvReadResult, read_orders_csv

__all__ = ["CsvReadResult", "read_orders_csv"]
