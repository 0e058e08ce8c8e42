"""
Data Models Package

This package contains all Pydantic models used by the Kakeibo sync core.
All data flowing through the system must conform to these schemas.
"""

from kakeibo.models.records import (
    Bill,
    Budget,
    EDITABLE_EXPENSE_FIELDS,
    Expense,
    ExpenseCategory,
    Frequency,
    LOCAL_ID_PREFIX,
    REMOTE_EXPENSE_FIELDS,
    RecurringTemplate,
    SavingsGoal,
    SyncStatus,
    is_local_id,
    naive_local,
    new_local_id,
)
from kakeibo.models.summaries import (
    BillOverview,
    BudgetSummary,
    SavingsProgress,
    ValidationIssue,
    ValidationResult,
    WeeklySummary,
)
from kakeibo.models.sync import (
    EntityType,
    OperationOutcome,
    OperationType,
    PullReport,
    SyncOperation,
    SyncReport,
)
from kakeibo.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "Bill",
    "Budget",
    "EDITABLE_EXPENSE_FIELDS",
    "Expense",
    "ExpenseCategory",
    "Frequency",
    "LOCAL_ID_PREFIX",
    "REMOTE_EXPENSE_FIELDS",
    "RecurringTemplate",
    "SavingsGoal",
    "SyncStatus",
    "is_local_id",
    "naive_local",
    "new_local_id",
    # Derived models
    "BillOverview",
    "BudgetSummary",
    "SavingsProgress",
    "ValidationIssue",
    "ValidationResult",
    "WeeklySummary",
    # Sync journal
    "EntityType",
    "OperationOutcome",
    "OperationType",
    "PullReport",
    "SyncOperation",
    "SyncReport",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
