"""Remote store collaborator package."""

from kakeibo.services.remote.interface import (
    RemoteError,
    RemoteNotFoundError,
    RemoteRejectedError,
    RemoteStoreInterface,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from kakeibo.services.remote.memory import InMemoryRemoteStore

__all__ = [
    "InMemoryRemoteStore",
    "RemoteError",
    "RemoteNotFoundError",
    "RemoteRejectedError",
    "RemoteStoreInterface",
    "RemoteTimeoutError",
    "RemoteUnavailableError",
]
