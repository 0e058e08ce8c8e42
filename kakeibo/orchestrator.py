"""
Main Orchestrator for Kakeibo

This module ties together all the components and defines the
end-to-end flows for:
1. Recurring expenses (template -> due -> process -> expense -> next occurrence)
2. Bill reminders (bill -> paid -> successor bill + expense)
3. Savings goals (goal -> contributions -> progress against the deadline)

DESIGN DECISION: Templates, bills and savings goals are local-only records.
They never go through the sync journal themselves; the expenses they
generate do, through the SyncEngine, so a processed template or a paid bill
behaves exactly like an expense the user typed in.

The Recurrence Scheduler is the only place dates are stepped forward, so
templates and bills always agree on what "next month" means.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import BaseModel

from kakeibo.audit import AUDIT_COLLECTION, AuditLogger
from kakeibo.budget import BudgetMonitor
from kakeibo.config import Settings, get_settings
from kakeibo.models.audit import AuditEvent, AuditEventBuilder
from kakeibo.models.records import (
    Bill,
    Budget,
    Expense,
    ExpenseCategory,
    Frequency,
    RecurringTemplate,
    SavingsGoal,
    naive_local,
)
from kakeibo.models.summaries import BillOverview, SavingsProgress
from kakeibo.models.sync import SyncOperation
from kakeibo.scheduling import (
    days_until,
    initial_next_occurrence,
    is_due,
    monthly_projection,
    next_occurrence,
)
from kakeibo.services.connectivity import (
    ConnectivityGate,
    ConnectivitySignal,
    ManualConnectivitySignal,
)
from kakeibo.services.remote import InMemoryRemoteStore, RemoteStoreInterface
from kakeibo.services.storage import (
    FileKeyValueBackend,
    InMemoryKeyValueBackend,
    KeyValueBackend,
    LocalPersistenceError,
    LocalRecordStore,
)
from kakeibo.sync import BUDGETS, EXPENSES, QUEUE_COLLECTION, SyncEngine, SyncQueue
from kakeibo.validation import ExpenseValidationError, ExpenseValidator, sanitize_text


logger = structlog.get_logger(__name__)

TEMPLATES = "recurring_templates"
BILLS = "bills"
SAVINGS_GOALS = "savings_goals"

COLLECTION_MODELS: dict[str, type[BaseModel]] = {
    EXPENSES: Expense,
    BUDGETS: Budget,
    TEMPLATES: RecurringTemplate,
    BILLS: Bill,
    SAVINGS_GOALS: SavingsGoal,
    QUEUE_COLLECTION: SyncOperation,
    AUDIT_COLLECTION: AuditEvent,
}

TEMPLATE_FIELDS = frozenset({
    "description", "category", "amount", "frequency", "start_date", "notes",
})
BILL_FIELDS = frozenset({
    "name", "amount", "category", "due_date", "is_recurring", "frequency", "notes",
})
SAVINGS_GOAL_FIELDS = frozenset({"name", "target_amount", "deadline", "category"})


class RecurringTemplateError(Exception):
    """A template cannot be processed (paused, or not due yet)."""
    pass


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return naive_local(value)
    return datetime.combine(value, datetime.min.time())


class RecurringExpenseFlow:
    """
    Orchestrates recurring expense templates.

    Flow:
    1. Create -> first occurrence computed from max(start, now)
    2. Due -> occurrence date is today or earlier
    3. Process -> expense created through the sync engine
    4. Advance -> last_processed = now, next occurrence stepped forward

    Pausing only flips is_active; the schedule is untouched.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        engine: SyncEngine,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._engine = engine
        self._clock = clock
        self._clamp = settings.schedule.clamp_month_end
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or ExpenseValidator(settings.app, clock=clock)

    def _check_amount_and_description(self, description: Any, amount: Any) -> None:
        self._validator.ensure_valid(
            {"description": description, "amount": amount, "expense_datetime": self._clock()}
        )

    # ===== CRUD =====

    def create_template(
        self,
        description: str,
        amount: Union[Decimal, str, int, float],
        frequency: Union[Frequency, str],
        start_date: Optional[Union[date, datetime]] = None,
        category: Union[ExpenseCategory, str] = ExpenseCategory.OTHER,
        notes: Optional[str] = None,
        is_active: bool = True,
    ) -> RecurringTemplate:
        """
        Create a template.

        A start date in the past anchors the first occurrence to now.

        Raises:
            ExpenseValidationError: Description or amount is invalid
        """
        self._check_amount_and_description(description, amount)
        now = self._clock()
        start = _as_datetime(start_date or now)
        frequency = Frequency(frequency)

        template = RecurringTemplate(
            description=sanitize_text(description),
            category=category,
            amount=Decimal(str(amount)),
            frequency=frequency,
            start_date=start,
            next_occurrence=initial_next_occurrence(
                start, frequency, now=now, clamp_month_end=self._clamp
            ),
            is_active=is_active,
            notes=notes,
        )
        self._store.put(TEMPLATES, template)
        logger.info(
            "template_created",
            template_id=template.id,
            frequency=frequency.value,
            next_occurrence=template.next_occurrence.isoformat(),
        )
        return template

    def update_template(self, template_id: str, changes: dict[str, Any]) -> RecurringTemplate:
        """
        Edit a template.

        Changing the start date or frequency reschedules the next
        occurrence forward from the later of start date and last processing.
        """
        template = self._store.require(TEMPLATES, template_id)
        unknown = set(changes) - TEMPLATE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        data = {**template.model_dump(), **changes}
        if "description" in changes or "amount" in changes:
            self._check_amount_and_description(data["description"], data["amount"])
            data["description"] = sanitize_text(data["description"])
            data["amount"] = Decimal(str(data["amount"]))
        data["start_date"] = _as_datetime(data["start_date"])

        if "start_date" in changes or "frequency" in changes:
            anchor = data["start_date"]
            if template.last_processed and template.last_processed > anchor:
                anchor = template.last_processed
            data["next_occurrence"] = initial_next_occurrence(
                anchor,
                Frequency(data["frequency"]),
                now=self._clock(),
                clamp_month_end=self._clamp,
            )

        updated = RecurringTemplate.model_validate(data)
        self._store.put(TEMPLATES, updated)
        return updated

    def toggle_active(self, template_id: str) -> RecurringTemplate:
        """Pause or resume a template without touching its schedule."""
        template = self._store.require(TEMPLATES, template_id)
        updated = template.model_copy(update={"is_active": not template.is_active})
        self._store.put(TEMPLATES, updated)
        logger.info("template_toggled", template_id=template_id, is_active=updated.is_active)
        return updated

    def delete_template(self, template_id: str) -> bool:
        """Delete a template. Expenses it generated are kept."""
        return self._store.remove(TEMPLATES, template_id)

    def get_template(self, template_id: str) -> Optional[RecurringTemplate]:
        return self._store.get(TEMPLATES, template_id)

    def list_templates(self, active_only: bool = False) -> list[RecurringTemplate]:
        templates = self._store.get_all(TEMPLATES)
        if active_only:
            return [t for t in templates if t.is_active]
        return templates

    def due_templates(self, today: Optional[Union[date, datetime]] = None) -> list[RecurringTemplate]:
        """Active templates whose next occurrence is today or earlier."""
        today = today or self._clock()
        return [
            t for t in self._store.get_all(TEMPLATES)
            if t.is_active and is_due(t.next_occurrence, today)
        ]

    def monthly_projection(self) -> Decimal:
        return monthly_projection(self._store.get_all(TEMPLATES))

    # ===== PROCESSING =====

    async def process_template(
        self,
        template_id: str,
        force: bool = False,
    ) -> tuple[RecurringTemplate, Expense]:
        """
        Generate this occurrence's expense and advance the schedule.

        Args:
            template_id: Template to process
            force: Process even if the occurrence is not due yet

        Returns:
            (updated_template, generated_expense)

        Raises:
            RecurringTemplateError: Template is paused, or not due and not forced
            ExpenseValidationError: The generated expense would be invalid
        """
        template = self._store.require(TEMPLATES, template_id)
        if not template.is_active:
            raise RecurringTemplateError(f"Recurring expense is paused: {template.description}")

        now = self._clock()
        if not force and not is_due(template.next_occurrence, now):
            raise RecurringTemplateError(
                f"Recurring expense is not due until {template.next_occurrence.date()}"
            )

        local_error: Optional[LocalPersistenceError] = None
        expense: Optional[Expense] = None
        try:
            expense = await self._engine.create_expense(
                description=template.description,
                amount=template.amount,
                category=template.category,
                expense_datetime=now,
                notes=template.notes,
                recurring_template_id=template.id,
            )
        except LocalPersistenceError as e:
            # The expense exists in memory; advance anyway so it is not generated twice
            local_error = e

        anchor = max(template.start_date, now)
        updated = template.model_copy(
            update={
                "last_processed": now,
                "next_occurrence": next_occurrence(anchor, template.frequency, clamp_month_end=self._clamp),
            }
        )
        self._store.put(TEMPLATES, updated)

        await self._audit_logger.log(
            AuditEventBuilder.template_processed(
                template_id=template.id,
                expense_id=expense.id if expense else None,
                next_occurrence=updated.next_occurrence.isoformat(),
            )
        )

        if local_error is not None:
            raise local_error
        return updated, expense

    async def process_due_templates(self) -> list[tuple[RecurringTemplate, Expense]]:
        """Process every due template; an invalid one is logged and skipped."""
        results = []
        for template in self.due_templates():
            try:
                results.append(await self.process_template(template.id))
            except (RecurringTemplateError, ExpenseValidationError) as e:
                logger.warning("template_processing_skipped", template_id=template.id, error=str(e))
        return results


class BillReminderFlow:
    """
    Orchestrates bill reminders.

    Paying a recurring bill spawns exactly one unpaid successor, due one
    frequency step after the paid bill. Paying an already paid bill
    changes nothing.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        engine: SyncEngine,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._engine = engine
        self._clock = clock
        self._clamp = settings.schedule.clamp_month_end
        self._window_days = settings.schedule.upcoming_bill_window_days
        self._record_expense = settings.app.record_expense_on_bill_payment
        self._audit_logger = audit_logger or AuditLogger()

    # ===== CRUD =====

    def create_bill(
        self,
        name: str,
        amount: Union[Decimal, str, int, float],
        due_date: Union[date, datetime],
        category: Union[ExpenseCategory, str] = ExpenseCategory.UTILITIES,
        is_recurring: bool = False,
        frequency: Optional[Union[Frequency, str]] = None,
        notes: Optional[str] = None,
    ) -> Bill:
        """
        Create an unpaid bill.

        Raises:
            ValueError: Non-positive amount, or recurring without a frequency
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Bill amount must be greater than zero")
        if isinstance(due_date, datetime):
            due_date = due_date.date()

        bill = Bill(
            name=sanitize_text(name),
            amount=amount,
            category=category,
            due_date=due_date,
            is_recurring=is_recurring,
            frequency=frequency,
            notes=notes,
        )
        self._store.put(BILLS, bill)
        return bill

    def update_bill(self, bill_id: str, changes: dict[str, Any]) -> Bill:
        bill = self._store.require(BILLS, bill_id)
        unknown = set(changes) - BILL_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "amount" in changes and Decimal(str(changes["amount"])) <= 0:
            raise ValueError("Bill amount must be greater than zero")

        data = {**bill.model_dump(), **changes}
        if isinstance(data["due_date"], datetime):
            data["due_date"] = data["due_date"].date()
        updated = Bill.model_validate(data)
        self._store.put(BILLS, updated)
        return updated

    def delete_bill(self, bill_id: str) -> bool:
        return self._store.remove(BILLS, bill_id)

    def get_bill(self, bill_id: str) -> Optional[Bill]:
        return self._store.get(BILLS, bill_id)

    def list_bills(self) -> list[Bill]:
        return self._store.get_all(BILLS)

    # ===== PAYMENT =====

    async def mark_paid(self, bill_id: str) -> tuple[Bill, Optional[Bill], Optional[Expense]]:
        """
        Mark a bill paid.

        Returns:
            (paid_bill, successor_or_None, expense_or_None)
        """
        bill = self._store.require(BILLS, bill_id)
        if bill.is_paid:
            logger.info("bill_already_paid", bill_id=bill_id)
            return bill, None, None

        now = self._clock()
        paid = bill.model_copy(update={"is_paid": True, "paid_at": now})
        self._store.put(BILLS, paid)

        successor = None
        if bill.is_recurring and bill.frequency:
            successor = Bill(
                name=bill.name,
                amount=bill.amount,
                category=bill.category,
                due_date=next_occurrence(bill.due_date, bill.frequency, clamp_month_end=self._clamp),
                is_recurring=True,
                frequency=bill.frequency,
                notes=bill.notes,
            )
            self._store.put(BILLS, successor)

        expense = None
        if self._record_expense:
            try:
                expense = await self._engine.create_expense(
                    description=bill.name,
                    amount=bill.amount,
                    category=bill.category,
                    expense_datetime=now,
                    notes=bill.notes,
                )
            except ExpenseValidationError as e:
                logger.warning("bill_expense_not_recorded", bill_id=bill_id, error=str(e))

        await self._audit_logger.log(
            AuditEventBuilder.bill_paid(
                bill_id=bill_id,
                amount=str(bill.amount),
                successor_id=successor.id if successor else None,
            )
        )
        return paid, successor, expense

    # ===== OVERVIEW =====

    def overview(self, today: Optional[Union[date, datetime]] = None) -> BillOverview:
        """Bills grouped into overdue, upcoming, urgent and paid."""
        today = today or self._clock()
        if isinstance(today, datetime):
            today = today.date()

        bills = self._store.get_all(BILLS)
        unpaid = [b for b in bills if not b.is_paid]
        overdue = sorted(
            (b for b in unpaid if days_until(b.due_date, today) < 0),
            key=lambda b: b.due_date,
        )
        upcoming = sorted(
            (b for b in unpaid if days_until(b.due_date, today) >= 0),
            key=lambda b: b.due_date,
        )
        urgent = [b for b in upcoming if days_until(b.due_date, today) <= self._window_days]
        paid = sorted((b for b in bills if b.is_paid), key=lambda b: b.due_date, reverse=True)

        return BillOverview(
            as_of=today,
            overdue=overdue,
            upcoming=upcoming,
            urgent=urgent,
            paid=paid,
            total_overdue=sum((b.amount for b in overdue), Decimal("0.00")),
            total_upcoming=sum((b.amount for b in upcoming), Decimal("0.00")),
        )


class SavingsGoalFlow:
    """
    Orchestrates savings goals.

    Goals are local-only and never touch the sync journal. Money put
    towards a goal is not an expense, so contributions do not go through
    the SyncEngine either.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        clock: Callable[[], datetime] = datetime.now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._clock = clock
        self._audit_logger = audit_logger or AuditLogger()

    # ===== CRUD =====

    def create_goal(
        self,
        name: str,
        target_amount: Union[Decimal, str, int, float],
        deadline: Union[date, datetime],
        category: Optional[str] = None,
        current_amount: Union[Decimal, str, int, float] = 0,
    ) -> SavingsGoal:
        """
        Create a savings goal.

        Raises:
            ValueError: Non-positive target, negative starting amount or empty name
        """
        if isinstance(deadline, datetime):
            deadline = deadline.date()
        now = self._clock()
        goal = SavingsGoal(
            name=sanitize_text(name),
            target_amount=Decimal(str(target_amount)),
            current_amount=Decimal(str(current_amount)),
            deadline=deadline,
            category=category,
            created_at=now,
            updated_at=now,
        )
        self._store.put(SAVINGS_GOALS, goal)
        return goal

    def update_goal(self, goal_id: str, changes: dict[str, Any]) -> SavingsGoal:
        """Edit name, target, deadline or category. Saved amounts change only by adding."""
        goal = self._store.require(SAVINGS_GOALS, goal_id)
        unknown = set(changes) - SAVINGS_GOAL_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        data = {**goal.model_dump(), **changes, "updated_at": self._clock()}
        if isinstance(data["deadline"], datetime):
            data["deadline"] = data["deadline"].date()
        if "name" in changes:
            data["name"] = sanitize_text(changes["name"])
        updated = SavingsGoal.model_validate(data)
        self._store.put(SAVINGS_GOALS, updated)
        return updated

    def delete_goal(self, goal_id: str) -> bool:
        return self._store.remove(SAVINGS_GOALS, goal_id)

    def get_goal(self, goal_id: str) -> Optional[SavingsGoal]:
        return self._store.get(SAVINGS_GOALS, goal_id)

    def list_goals(self) -> list[SavingsGoal]:
        return self._store.get_all(SAVINGS_GOALS)

    # ===== CONTRIBUTIONS =====

    async def add_to_goal(
        self,
        goal_id: str,
        amount: Union[Decimal, str, int, float],
    ) -> SavingsGoal:
        """
        Put money towards a goal.

        Saving past the target is allowed; the goal simply stays complete.

        Raises:
            NotFoundError: No such goal
            ValueError: Amount is not greater than zero
        """
        goal = self._store.require(SAVINGS_GOALS, goal_id)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Contribution must be greater than zero")

        updated = SavingsGoal.model_validate(
            {
                **goal.model_dump(),
                "current_amount": goal.current_amount + amount,
                "updated_at": self._clock(),
            }
        )
        self._store.put(SAVINGS_GOALS, updated)

        await self._audit_logger.log(
            AuditEventBuilder.savings_contributed(
                goal_id=goal_id,
                amount=str(amount),
                new_total=str(updated.current_amount),
                completed=updated.is_complete,
            )
        )
        if updated.is_complete and not goal.is_complete:
            logger.info("savings_goal_reached", goal_id=goal_id)
        return updated

    # ===== PROGRESS =====

    def progress(
        self,
        goal_id: str,
        today: Optional[Union[date, datetime]] = None,
    ) -> SavingsProgress:
        goal = self._store.require(SAVINGS_GOALS, goal_id)
        return self._progress_of(goal, today)

    def overview(self, today: Optional[Union[date, datetime]] = None) -> list[SavingsProgress]:
        """Progress of every goal, nearest deadline first."""
        goals = sorted(self._store.get_all(SAVINGS_GOALS), key=lambda g: g.deadline)
        return [self._progress_of(goal, today) for goal in goals]

    def _progress_of(
        self,
        goal: SavingsGoal,
        today: Optional[Union[date, datetime]],
    ) -> SavingsProgress:
        today = today or self._clock()
        percentage = float(goal.current_amount / goal.target_amount * 100)
        return SavingsProgress(
            goal_id=goal.id,
            name=goal.name,
            target_amount=goal.target_amount,
            current_amount=goal.current_amount,
            remaining_amount=goal.remaining_amount,
            percentage=min(percentage, 100.0),
            days_left=days_until(goal.deadline, today),
            is_complete=goal.is_complete,
        )


@dataclass
class AppComponents:
    """Everything a client needs, wired together."""

    settings: Settings
    store: LocalRecordStore
    gate: ConnectivityGate
    remote: RemoteStoreInterface
    audit_logger: AuditLogger
    engine: SyncEngine
    recurring: RecurringExpenseFlow
    bills: BillReminderFlow
    savings: SavingsGoalFlow
    budget_monitor: BudgetMonitor


def _create_backend(settings: Settings) -> KeyValueBackend:
    storage = settings.storage
    if storage.backend == "memory":
        return InMemoryKeyValueBackend(quota_bytes=storage.quota_bytes)
    return FileKeyValueBackend(storage.directory, quota_bytes=storage.quota_bytes)


def create_app_components(
    settings: Optional[Settings] = None,
    remote: Optional[RemoteStoreInterface] = None,
    signal: Optional[ConnectivitySignal] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings (cached settings when omitted)
        remote: Remote store; an in-memory store when omitted
        signal: Connectivity signal; a manual signal reporting online when omitted
        clock: Source of "now" for every component

    Returns:
        AppComponents with the store loaded and the budget monitor running
    """
    settings = settings or get_settings()
    clock = clock or datetime.now
    app_settings = settings.app

    store = LocalRecordStore(
        _create_backend(settings),
        COLLECTION_MODELS,
        namespace=settings.storage.namespace,
    )
    store.load()

    audit_logger = AuditLogger(store, max_events=app_settings.audit_log_max_events)
    gate = ConnectivityGate(signal or ManualConnectivitySignal(online=True))
    remote = remote or InMemoryRemoteStore(clock=clock)
    validator = ExpenseValidator(app_settings, clock=clock)

    engine = SyncEngine(
        store,
        remote,
        gate,
        queue=SyncQueue(store, clock=clock),
        audit_logger=audit_logger,
        validator=validator,
        settings=settings,
        clock=clock,
    )

    budget_monitor = BudgetMonitor(store, clock=clock)
    budget_monitor.start()

    return AppComponents(
        settings=settings,
        store=store,
        gate=gate,
        remote=remote,
        audit_logger=audit_logger,
        engine=engine,
        recurring=RecurringExpenseFlow(
            store, engine, settings, clock, audit_logger=audit_logger, validator=validator
        ),
        bills=BillReminderFlow(store, engine, settings, clock, audit_logger=audit_logger),
        savings=SavingsGoalFlow(store, clock, audit_logger=audit_logger),
        budget_monitor=budget_monitor,
    )
