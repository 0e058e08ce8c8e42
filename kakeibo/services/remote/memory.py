"""
In-Memory Remote Store

A stand-in for the hosted backend, used in development and tests.
Supports failure injection so sync behaviour can be exercised without
a network.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog

from kakeibo.models.records import Budget, Expense, SyncStatus
from kakeibo.services.remote.interface import (
    RemoteError,
    RemoteNotFoundError,
    RemoteStoreInterface,
    RemoteUnavailableError,
)


logger = structlog.get_logger(__name__)


class InMemoryRemoteStore(RemoteStoreInterface):
    """
    Remote store held in a dictionary.

    Ids are assigned as `srv-<n>`. Every call is recorded in `calls`
    as (method, argument) so tests can assert on what reached the remote.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._expenses: dict[str, Expense] = {}
        self._budgets: dict[str, Budget] = {}
        self._next_id = 1
        self._clock = clock
        self._failures: list[Exception] = []
        self.fail_always: Optional[Exception] = None
        self.calls: list[tuple[str, Any]] = []

    # ===== FAILURE INJECTION =====

    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next `count` calls raise `error`."""
        for _ in range(count):
            self._failures.append(error or RemoteUnavailableError("Injected failure"))

    def _maybe_fail(self, method: str) -> None:
        if self.fail_always is not None:
            raise self.fail_always
        if self._failures:
            error = self._failures.pop(0)
            logger.debug("remote_injected_failure", method=method, error=str(error))
            raise error

    # ===== EXPENSES =====

    async def create(self, expense: Expense) -> Expense:
        self.calls.append(("create", expense.id))
        self._maybe_fail("create")

        server_id = f"srv-{self._next_id}"
        self._next_id += 1
        stored = expense.model_copy(
            update={
                "id": server_id,
                "sync_status": SyncStatus.SYNCED,
                "updated_at": self._clock(),
            }
        )
        self._expenses[server_id] = stored
        return stored

    async def update(self, expense_id: str, patch: dict[str, Any]) -> Expense:
        self.calls.append(("update", expense_id))
        self._maybe_fail("update")

        current = self._expenses.get(expense_id)
        if current is None:
            raise RemoteNotFoundError(f"Expense not found: {expense_id}")
        stored = Expense.model_validate(
            {
                **current.model_dump(),
                **patch,
                "sync_status": SyncStatus.SYNCED,
                "updated_at": self._clock(),
            }
        )
        self._expenses[expense_id] = stored
        return stored

    async def delete(self, expense_id: str) -> None:
        self.calls.append(("delete", expense_id))
        self._maybe_fail("delete")

        if self._expenses.pop(expense_id, None) is None:
            raise RemoteNotFoundError(f"Expense not found: {expense_id}")

    async def list(self) -> list[Expense]:
        self.calls.append(("list", None))
        self._maybe_fail("list")
        return list(self._expenses.values())

    # ===== BUDGETS =====

    async def get_current_budget(self) -> Optional[Budget]:
        self.calls.append(("get_current_budget", None))
        self._maybe_fail("get_current_budget")
        return self._budgets.get(self._clock().strftime("%Y-%m"))

    async def set_budget(self, amount: Decimal, month: Optional[str] = None) -> Budget:
        month = month or self._clock().strftime("%Y-%m")
        self.calls.append(("set_budget", month))
        self._maybe_fail("set_budget")

        budget = Budget(
            id=month,
            limit=amount,
            sync_status=SyncStatus.SYNCED,
            updated_at=self._clock(),
        )
        self._budgets[month] = budget
        return budget

    # ===== INSPECTION =====

    def stored_expenses(self) -> list[Expense]:
        return list(self._expenses.values())

    def seed(self, expense: Expense) -> Expense:
        """Place a record directly in the remote store, bypassing failures."""
        if expense.id in self._expenses:
            raise RemoteError(f"Duplicate remote id: {expense.id}")
        stored = expense.model_copy(update={"sync_status": SyncStatus.SYNCED})
        self._expenses[expense.id] = stored
        return stored
