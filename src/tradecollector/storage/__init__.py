"""Storage components for checkpoints and CSV export.

This package provides:
- CheckpointStore: atomic, monotonic progress marker
- CsvEventSink: exactly-once CSV writer with a fixed column set
- verify_csv: post-hoc check of an exported file
"""

from tradecollector.storage.checkpoint import CheckpointStore
from tradecollector.storage.csv_sink import CsvEventSink
from tradecollector.storage.verify import VerifyReport, verify_csv

__all__ = [
    "CheckpointStore",
    "CsvEventSink",
    "VerifyReport",
    "verify_csv",
]
