"""Sync queue and reconciliation package."""

from kakeibo.sync.queue import QUEUE_COLLECTION, SyncQueue
from kakeibo.sync.engine import (
    BUDGETS,
    EXPENSES,
    OfflineError,
    SyncEngine,
    SyncError,
)

__all__ = [
    "BUDGETS",
    "EXPENSES",
    "OfflineError",
    "QUEUE_COLLECTION",
    "SyncEngine",
    "SyncError",
    "SyncQueue",
]
