"""
Abstract Key-Value Backend Interface

DESIGN DECISION: The record store never touches a file or a browser-style
storage API directly. It talks to a small synchronous key-value interface.
This allows us to:
1. Use a directory of JSON files on a desktop install
2. Use in-memory storage for testing
3. Enforce a storage quota the same way on every backend

The interface is intentionally tiny: string keys, string values, and a quota.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueBackend(ABC):
    """
    Synchronous string-keyed persistence with a practical size quota.

    Any backend (files, sqlite, a platform key store) must implement these.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Read a value.

        Returns:
            The stored string, or None if the key is absent
        """
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            QuotaExceededError: If the write would exceed the quota
            LocalPersistenceError: If the write fails for another reason
        """
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys."""
        pass

    @abstractmethod
    def used_bytes(self) -> int:
        """Total size of stored values in bytes."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class LocalPersistenceError(StorageError):
    """A change could not be made durable; it only lives in memory."""
    pass


class QuotaExceededError(LocalPersistenceError):
    """The backend is full."""
    pass


class NotFoundError(StorageError):
    """Record not found in storage."""
    pass
