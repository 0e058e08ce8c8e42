"""
Storage Services Package

Provides the local record store and the key-value backends behind it.
The backend is swappable: files on disk in production, memory in tests.
"""

from kakeibo.services.storage.interface import (
    KeyValueBackend,
    LocalPersistenceError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
)
from kakeibo.services.storage.backends import (
    FileKeyValueBackend,
    InMemoryKeyValueBackend,
)
from kakeibo.services.storage.record_store import LocalRecordStore, StoreListener

__all__ = [
    # Interfaces
    "KeyValueBackend",
    "StoreListener",
    # Exceptions
    "LocalPersistenceError",
    "NotFoundError",
    "QuotaExceededError",
    "StorageError",
    # Implementations
    "FileKeyValueBackend",
    "InMemoryKeyValueBackend",
    "LocalRecordStore",
]
