"""
Budget Monitor

Keeps the current month's BudgetSummary fresh by listening to store change
events for expenses and budgets. Anything that renders a budget subscribes
here instead of recomputing on its own.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

import structlog

from kakeibo.budget.aggregator import month_key, summarize_month, summarize_week
from kakeibo.models.summaries import BudgetSummary, WeeklySummary
from kakeibo.services.storage import LocalRecordStore


logger = structlog.get_logger(__name__)

SummaryListener = Callable[[BudgetSummary], None]

WATCHED_COLLECTIONS = frozenset({"expenses", "budgets"})


class BudgetMonitor:
    """Recomputes the month's summary after every relevant store change."""

    def __init__(
        self,
        store: LocalRecordStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._clock = clock
        self._listeners: list[SummaryListener] = []
        self._summary: Optional[BudgetSummary] = None
        self._attached = False

    def start(self) -> None:
        if not self._attached:
            self._store.subscribe(self._on_store_change)
            self._attached = True
        self.refresh()

    def stop(self) -> None:
        if self._attached:
            self._store.unsubscribe(self._on_store_change)
            self._attached = False

    def subscribe(self, listener: SummaryListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SummaryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def summary(self) -> BudgetSummary:
        if self._summary is None:
            return self.refresh()
        return self._summary

    def refresh(self) -> BudgetSummary:
        """Recompute and broadcast the current month's summary."""
        today = self._clock()
        budget = self._store.get("budgets", month_key(today))
        self._summary = summarize_month(self._store.get_all("expenses"), budget, today)

        if self._summary.is_over_budget:
            logger.info(
                "budget_exceeded",
                month=self._summary.month,
                remaining=str(self._summary.remaining),
            )

        for listener in list(self._listeners):
            listener(self._summary)
        return self._summary

    def weekly_summary(
        self,
        daily_budget: Optional[Union[Decimal, str, int]] = None,
    ) -> WeeklySummary:
        """This week's spend, computed on demand."""
        return summarize_week(self._store.get_all("expenses"), self._clock(), daily_budget)

    def _on_store_change(self, collection: str) -> None:
        if collection in WATCHED_COLLECTIONS:
            self.refresh()
