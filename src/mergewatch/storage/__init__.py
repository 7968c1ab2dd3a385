from mergewatch.storage.history_store import (
    STALENESS_THRESHOLD,
    DiskHistoryStore,
    HistoryStore,
    MemoryHistoryStore,
)
from mergewatch.storage.types import RetryHistory, utcnow

__all__ = [
    "STALENESS_THRESHOLD",
    "DiskHistoryStore",
    "HistoryStore",
    "MemoryHistoryStore",
    "RetryHistory",
    "utcnow",
]
