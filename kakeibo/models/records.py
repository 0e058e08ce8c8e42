"""
Core Record Models for Kakeibo

These models define the strict schemas for every record the client owns.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Serialize cleanly into the local record store
4. Carry the per-record sync state

DESIGN DECISION: The local process owns every record. The remote store is
a mirror, so sync state lives on the record itself rather than in a side table.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, Union
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


LOCAL_ID_PREFIX = "local-"


def new_local_id() -> str:
    """
    Generate a client-side identifier.

    Records keep this id until the remote store confirms them and
    assigns a canonical one.
    """
    return f"{LOCAL_ID_PREFIX}{uuid4()}"


def is_local_id(record_id: str) -> bool:
    """True if the id was generated locally and never confirmed remotely."""
    return record_id.startswith(LOCAL_ID_PREFIX)


def naive_local(value: Union[date, datetime]) -> Union[date, datetime]:
    """
    Express a timezone-aware datetime as naive local time.

    Every stored timestamp is naive local time, the same as the clock, so
    aware input (an ISO string with an offset) is converted on the way in.
    Naive values and plain dates pass through unchanged.
    """
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


Amount = Annotated[
    Decimal,
    Field(ge=0, decimal_places=2, description="Amount in INR"),
]

LocalDateTime = Annotated[datetime, AfterValidator(naive_local)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """Supported expense categories."""
    FOOD = "food"
    TRANSPORT = "transport"
    COFFEE = "coffee"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    OTHER = "other"


class SyncStatus(str, Enum):
    """
    Remote confirmation state of a record.

    CRITICAL: FAILED is reserved for records whose remote attempt was
    rejected. A record written while offline stays PENDING.
    """
    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"


class Frequency(str, Enum):
    """Repeat frequency shared by recurring templates and bills."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# EXPENSES AND BUDGETS (mirrored to the remote store)
# =============================================================================

class Expense(BaseModel):
    """
    A single spend entry.

    Created optimistically with a local id and status PENDING.
    The id is replaced by the server id once the remote store confirms it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_local_id,
        min_length=1,
        description="Local id until confirmed, then the server id"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the money was spent on"
    )
    category: ExpenseCategory = Field(
        default=ExpenseCategory.OTHER,
        description="Expense category"
    )
    amount: Amount
    expense_datetime: LocalDateTime = Field(
        ...,
        description="When the expense happened"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    receipt_url: Optional[str] = Field(
        default=None,
        description="Reference to a receipt image"
    )
    recurring_template_id: Optional[str] = Field(
        default=None,
        description="Template this expense was generated from, if any"
    )

    # Sync tracking
    sync_status: SyncStatus = Field(
        default=SyncStatus.PENDING,
        description="Remote confirmation state"
    )
    version: int = Field(
        default=1,
        ge=1,
        description="Local mutation counter, used to discard stale responses"
    )

    created_at: LocalDateTime = Field(default_factory=datetime.now)
    updated_at: LocalDateTime = Field(default_factory=datetime.now)

    @property
    def is_local_only(self) -> bool:
        return is_local_id(self.id)


# Fields the user may change on an existing expense
EDITABLE_EXPENSE_FIELDS = frozenset({
    "description",
    "category",
    "amount",
    "expense_datetime",
    "notes",
    "receipt_url",
})

# Fields sent to the remote store on update
REMOTE_EXPENSE_FIELDS = EDITABLE_EXPENSE_FIELDS | {"recurring_template_id"}


class Budget(BaseModel):
    """
    Monthly spending limit.

    One budget per calendar month, keyed by "YYYY-MM".
    Remaining balance is derived, never stored.
    """

    id: str = Field(
        ...,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$",
        description="Month key (YYYY-MM)"
    )
    limit: Amount
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING)
    version: int = Field(default=1, ge=1)
    updated_at: LocalDateTime = Field(default_factory=datetime.now)

    @property
    def month(self) -> str:
        return self.id


# =============================================================================
# LOCAL-ONLY RECORDS
# =============================================================================

class RecurringTemplate(BaseModel):
    """
    A repeating expense definition.

    INVARIANT: next_occurrence is never before start_date and is only
    ever moved forward. Pausing does not touch the schedule.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_local_id)
    description: str = Field(..., min_length=1, max_length=200)
    category: ExpenseCategory = ExpenseCategory.OTHER
    amount: Amount
    frequency: Frequency
    start_date: LocalDateTime
    next_occurrence: LocalDateTime
    is_active: bool = True
    last_processed: Optional[LocalDateTime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode='after')
    def validate_schedule(self) -> 'RecurringTemplate':
        if self.next_occurrence < self.start_date:
            raise ValueError("Next occurrence cannot be before start date")
        return self


class Bill(BaseModel):
    """
    A bill reminder.

    Paying a recurring bill spawns exactly one unpaid successor.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_local_id)
    name: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    category: ExpenseCategory = ExpenseCategory.UTILITIES
    due_date: date
    is_paid: bool = False
    paid_at: Optional[LocalDateTime] = None
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'Bill':
        if self.is_recurring and self.frequency is None:
            raise ValueError("Recurring bills need a frequency")
        return self


class SavingsGoal(BaseModel):
    """
    A savings target with a deadline.

    Contributions only ever add to current_amount. Progress and the
    remaining amount are derived, never stored.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_local_id)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Amount
    current_amount: Amount = Decimal("0")
    deadline: date
    category: Optional[str] = Field(default=None, max_length=50)
    created_at: LocalDateTime = Field(default_factory=datetime.now)
    updated_at: LocalDateTime = Field(default_factory=datetime.now)

    @model_validator(mode='after')
    def validate_target(self) -> 'SavingsGoal':
        if self.target_amount <= 0:
            raise ValueError("Target amount must be positive")
        return self

    @property
    def remaining_amount(self) -> Decimal:
        return max(Decimal("0"), self.target_amount - self.current_amount)

    @property
    def is_complete(self) -> bool:
        return self.current_amount >= self.target_amount
