"""
Tests for Kakeibo

Test strategy:
1. Unit tests for individual components (models, scheduler, aggregator)
2. Integration tests for the sync engine and flows (in-memory collaborators)
3. No real network in tests
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from kakeibo.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Bill,
    Budget,
    BudgetSummary,
    Expense,
    ExpenseCategory,
    Frequency,
    OperationOutcome,
    OperationType,
    EntityType,
    RecurringTemplate,
    SavingsGoal,
    SyncReport,
    SyncStatus,
    ValidationIssue,
    ValidationResult,
    is_local_id,
    naive_local,
    new_local_id,
)


class TestRecordModels:
    """Tests for record Pydantic models."""

    def test_expense_defaults_to_pending_local_record(self):
        """A new expense has a local id, version 1 and pending status."""
        expense = Expense(
            description="Lunch",
            amount=Decimal("250.00"),
            expense_datetime=datetime(2025, 1, 22, 13, 0),
        )
        assert expense.is_local_only
        assert expense.sync_status == SyncStatus.PENDING
        assert expense.version == 1
        assert expense.category == ExpenseCategory.OTHER

    def test_expense_strips_whitespace(self):
        """Test that whitespace is stripped from the description."""
        expense = Expense(
            description="  Chai  ",
            amount=Decimal("20"),
            expense_datetime=datetime(2025, 1, 22),
        )
        assert expense.description == "Chai"

    def test_expense_rejects_negative_amount(self):
        """Negative amounts fail schema validation."""
        with pytest.raises(ValidationError):
            Expense(
                description="Refund",
                amount=Decimal("-5.00"),
                expense_datetime=datetime(2025, 1, 22),
            )

    def test_expense_rejects_three_decimals(self):
        """Money has at most two decimal places."""
        with pytest.raises(ValidationError):
            Expense(
                description="Fuel",
                amount=Decimal("10.005"),
                expense_datetime=datetime(2025, 1, 22),
            )

    def test_aware_datetimes_stored_as_naive_local(self):
        local = datetime(2025, 1, 22, 13, 0)
        expense = Expense(
            description="Lunch",
            amount=Decimal("250"),
            expense_datetime=local.astimezone(timezone.utc),
        )
        assert expense.expense_datetime.tzinfo is None
        assert expense.expense_datetime == local
        assert naive_local(date(2025, 1, 22)) == date(2025, 1, 22)

    def test_local_ids(self):
        """Local ids are recognisable, server ids are not."""
        assert is_local_id(new_local_id())
        assert not is_local_id("srv-1")

    def test_budget_month_key_pattern(self):
        """Budget ids must be YYYY-MM."""
        budget = Budget(id="2025-01", limit=Decimal("10000"))
        assert budget.month == "2025-01"
        with pytest.raises(ValidationError):
            Budget(id="2025-13", limit=Decimal("10000"))

    def test_recurring_template_next_before_start_rejected(self):
        """next_occurrence can never precede start_date."""
        with pytest.raises(ValidationError):
            RecurringTemplate(
                description="Rent",
                amount=Decimal("15000"),
                frequency=Frequency.MONTHLY,
                start_date=datetime(2025, 2, 1),
                next_occurrence=datetime(2025, 1, 1),
            )

    def test_recurring_bill_requires_frequency(self):
        """A recurring bill without a frequency is invalid."""
        with pytest.raises(ValidationError):
            Bill(
                name="Electricity",
                amount=Decimal("500"),
                due_date=date(2025, 1, 31),
                is_recurring=True,
            )

    def test_record_round_trips_through_json(self):
        """Stored JSON validates back to an equal record."""
        bill = Bill(
            name="Internet",
            amount=Decimal("799.00"),
            due_date=date(2025, 2, 5),
            is_recurring=True,
            frequency=Frequency.MONTHLY,
        )
        assert Bill.model_validate(bill.model_dump(mode="json")) == bill


class TestSavingsGoalModel:
    """Tests for the savings goal record."""

    def test_zero_target_rejected(self):
        with pytest.raises(ValidationError, match="Target amount must be positive"):
            SavingsGoal(name="Trip", target_amount=Decimal("0"), deadline=date(2025, 6, 1))

    def test_remaining_never_negative(self):
        goal = SavingsGoal(
            name="Trip",
            target_amount=Decimal("1000"),
            current_amount=Decimal("400"),
            deadline=date(2025, 6, 1),
        )
        assert goal.remaining_amount == Decimal("600")
        assert not goal.is_complete

        over = goal.model_copy(update={"current_amount": Decimal("1200")})
        assert over.remaining_amount == Decimal("0")
        assert over.is_complete


class TestSyncModels:
    """Tests for journal and report models."""

    def _outcome(self, succeeded, skipped=False):
        return OperationOutcome(
            operation_id=str(uuid4()),
            op_type=OperationType.CREATE,
            entity=EntityType.EXPENSE,
            record_id="local-x",
            succeeded=succeeded,
            skipped=skipped,
        )

    def test_sync_report_counts(self):
        """Report counts split succeeded, failed and skipped."""
        report = SyncReport(
            outcomes=[
                self._outcome(True),
                self._outcome(False),
                self._outcome(False, skipped=True),
            ]
        )
        assert report.attempted == 2
        assert report.succeeded == 1
        assert report.failed == 1
        assert report.skipped == 1


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECORD_CREATED_LOCALLY,
            description="Expense created locally",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO
        assert event.id == str(event.event_id)

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.REPLAY_STARTED,
            correlation_id=correlation_id,
            description="Replaying",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "replay_started"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_builder_remote_commit_failed(self):
        """Failed commits are warnings carrying the error."""
        event = AuditEventBuilder.remote_commit_failed(
            entity_type="expense",
            entity_id="local-1",
            op_type="create",
            error_message="503",
        )
        assert event.event_type == AuditEventType.REMOTE_COMMIT_FAILED
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "503"

    def test_builder_remote_commit_succeeded_records_id_change(self):
        """A create that changed the id keeps the previous one in details."""
        event = AuditEventBuilder.remote_commit_succeeded(
            entity_type="expense",
            entity_id="srv-1",
            op_type="create",
            previous_id="local-1",
        )
        assert event.details["previous_id"] == "local-1"

    def test_builder_replay_completed_severity(self):
        """A replay with failures is a warning."""
        event = AuditEventBuilder.replay_completed(2, 1, 0, uuid4())
        assert event.severity == AuditSeverity.WARNING


class TestDerivedModels:
    """Tests for validation results and summaries."""

    def test_validation_result_has_errors(self):
        """Test has_errors and error_count."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                ),
                ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message="Low",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert result.warnings == ["Low"]

    def test_budget_summary_flags(self):
        """Over-budget and near-limit flags follow remaining and percentage."""
        summary = BudgetSummary(
            month="2025-01",
            limit=Decimal("1000"),
            spent=Decimal("1100"),
            remaining=Decimal("-100"),
            percentage_spent=110.0,
        )
        assert summary.is_over_budget
        assert summary.is_near_limit

        no_budget = BudgetSummary(month="2025-01")
        assert not no_budget.has_budget
        assert not no_budget.is_over_budget
        assert not no_budget.is_near_limit


class TestCategories:
    """Tests for category definitions."""

    def test_category_values(self):
        """All expense categories exist with their stored values."""
        assert {c.value for c in ExpenseCategory} == {
            "food", "transport", "coffee", "shopping",
            "entertainment", "utilities", "other",
        }
