"""
Derived Models

Read-only results computed from stored records: validation outcomes,
monthly and weekly spend summaries, bill overviews and savings progress.
None of these are persisted.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from kakeibo.models.records import Bill


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'future_date')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage expense validation.

    Stage 1: Schema validation (presence, format)
    Stage 2: Semantic validation (ranges, dates)
    """

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]


# =============================================================================
# BUDGET AND BILL SUMMARIES
# =============================================================================

class BudgetSummary(BaseModel):
    """
    Spend position for one month.

    remaining is signed: negative means over budget.
    daily_allowance is floored at zero for display.
    """

    month: str
    limit: Optional[Decimal] = None
    spent: Decimal = Decimal("0.00")
    remaining: Optional[Decimal] = None
    percentage_spent: float = 0.0
    days_left: int = 0
    daily_allowance: Decimal = Decimal("0.00")
    today_spent: Decimal = Decimal("0.00")

    @property
    def has_budget(self) -> bool:
        return self.limit is not None

    @property
    def is_over_budget(self) -> bool:
        return self.remaining is not None and self.remaining < 0

    @property
    def is_near_limit(self) -> bool:
        """80% or more of the limit is spent."""
        return self.has_budget and self.percentage_spent >= 80


class BillOverview(BaseModel):
    """Bills grouped by urgency as of one day."""

    as_of: date
    overdue: list[Bill] = Field(default_factory=list)
    upcoming: list[Bill] = Field(default_factory=list)
    urgent: list[Bill] = Field(
        default_factory=list,
        description="Unpaid bills due within the upcoming window"
    )
    paid: list[Bill] = Field(default_factory=list)
    total_overdue: Decimal = Decimal("0.00")
    total_upcoming: Decimal = Decimal("0.00")


class WeeklySummary(BaseModel):
    """
    Spend position for the week containing one day.

    Weeks start on Sunday. The average covers the four full weeks before
    this one. Budget day counts are None when no daily budget was given.
    """

    week_start: date
    as_of: date
    total: Decimal = Decimal("0.00")
    expense_count: int = 0
    weekly_average: Decimal = Decimal("0.00")
    change_from_average: float = Field(
        default=0.0,
        description="Percent above (positive) or below the weekly average"
    )
    biggest_expense_id: Optional[str] = None
    biggest_expense_description: Optional[str] = None
    biggest_expense_amount: Optional[Decimal] = None
    daily_budget: Optional[Decimal] = None
    days_on_budget: Optional[int] = None
    days_over_budget: Optional[int] = None

    @property
    def is_above_average(self) -> bool:
        return self.total > self.weekly_average


# =============================================================================
# SAVINGS
# =============================================================================

class SavingsProgress(BaseModel):
    """Where a savings goal stands as of one day."""

    goal_id: str
    name: str
    target_amount: Decimal
    current_amount: Decimal
    remaining_amount: Decimal
    percentage: float = Field(
        default=0.0,
        ge=0,
        le=100,
        description="Share of the target saved, capped at 100"
    )
    days_left: int = Field(
        ...,
        description="Calendar days until the deadline; zero or less means it has passed"
    )
    is_complete: bool = False

    @property
    def deadline_passed(self) -> bool:
        return self.days_left <= 0
