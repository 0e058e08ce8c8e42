"""Services package."""

from kakeibo.services.connectivity import (
    ConnectivityGate,
    ConnectivitySignal,
    ManualConnectivitySignal,
)
from kakeibo.services.remote import (
    InMemoryRemoteStore,
    RemoteError,
    RemoteNotFoundError,
    RemoteRejectedError,
    RemoteStoreInterface,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from kakeibo.services.storage import (
    FileKeyValueBackend,
    InMemoryKeyValueBackend,
    KeyValueBackend,
    LocalPersistenceError,
    LocalRecordStore,
    NotFoundError,
    QuotaExceededError,
    StorageError,
)

__all__ = [
    # Connectivity
    "ConnectivityGate",
    "ConnectivitySignal",
    "ManualConnectivitySignal",
    # Remote store
    "InMemoryRemoteStore",
    "RemoteError",
    "RemoteNotFoundError",
    "RemoteRejectedError",
    "RemoteStoreInterface",
    "RemoteTimeoutError",
    "RemoteUnavailableError",
    # Local storage
    "FileKeyValueBackend",
    "InMemoryKeyValueBackend",
    "KeyValueBackend",
    "LocalPersistenceError",
    "LocalRecordStore",
    "NotFoundError",
    "QuotaExceededError",
    "StorageError",
]
