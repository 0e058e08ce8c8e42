"""
Abstract Remote Store Interface

DESIGN DECISION: The sync engine never speaks HTTP. It consumes an opaque
async collaborator with create/update/delete/list and budget calls.
This allows us to:
1. Swap the transport (REST, a hosted database SDK) without touching sync logic
2. Use an in-memory remote in tests, with failure injection
3. Keep timeouts the transport's concern; a timeout is just another error

Every method may raise any RemoteError. The engine treats all of them as
"the remote attempt failed" and turns them into status transitions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from kakeibo.models.records import Budget, Expense


class RemoteStoreInterface(ABC):
    """
    Asynchronous mirror of the user's records.

    The remote store assigns canonical ids on create and echoes back the
    stored representation.
    """

    @abstractmethod
    async def create(self, expense: Expense) -> Expense:
        """
        Persist a new expense.

        Returns:
            The canonical record, carrying the server-assigned id
        """
        pass

    @abstractmethod
    async def update(self, expense_id: str, patch: dict[str, Any]) -> Expense:
        """
        Apply field changes to an existing expense.

        Raises:
            RemoteNotFoundError: If the expense does not exist remotely
        """
        pass

    @abstractmethod
    async def delete(self, expense_id: str) -> None:
        """
        Delete an expense.

        Raises:
            RemoteNotFoundError: If the expense does not exist remotely
        """
        pass

    @abstractmethod
    async def list(self) -> list[Expense]:
        """All expenses known to the remote store."""
        pass

    @abstractmethod
    async def get_current_budget(self) -> Optional[Budget]:
        """The budget for the current month, if one was set."""
        pass

    @abstractmethod
    async def set_budget(self, amount: Decimal, month: Optional[str] = None) -> Budget:
        """
        Create or overwrite a month's budget.

        Args:
            amount: Budget limit
            month: Month key (YYYY-MM), current month when omitted
        """
        pass


class RemoteError(Exception):
    """Base exception for remote store calls."""
    pass


class RemoteUnavailableError(RemoteError):
    """The remote store could not be reached."""
    pass


class RemoteTimeoutError(RemoteError):
    """The remote store did not answer in time."""
    pass


class RemoteNotFoundError(RemoteError):
    """The record does not exist remotely."""
    pass


class RemoteRejectedError(RemoteError):
    """The remote store answered with a non-success status."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(message or f"Remote store rejected the request ({status_code})")
