"""
Sync Journal Models

Every remote operation that has not been confirmed yet is recorded as a
SyncOperation. The journal is persisted in the local record store so queued
work survives a restart.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Entities mirrored to the remote store."""
    EXPENSE = "expense"
    BUDGET = "budget"


class SyncOperation(BaseModel):
    """A queued remote operation for one record."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    op_type: OperationType
    entity: EntityType
    record_id: str = Field(..., min_length=1)
    sequence: int = Field(
        ...,
        ge=0,
        description="Position in the journal; replay follows this order"
    )
    queued_at: datetime = Field(default_factory=datetime.now)
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


class OperationOutcome(BaseModel):
    """Result of replaying one queued operation."""

    operation_id: str
    op_type: OperationType
    entity: EntityType
    record_id: str
    succeeded: bool
    skipped: bool = False
    local_failure: bool = Field(
        default=False,
        description="The local store could not persist the result; memory is current"
    )
    error: Optional[str] = None


class SyncReport(BaseModel):
    """Summary of a replay run."""

    started_at: datetime = Field(default_factory=datetime.now)
    skipped_reason: Optional[str] = Field(
        default=None,
        description="Set when the whole replay was skipped (offline, already running)"
    )
    outcomes: list[OperationOutcome] = Field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(1 for o in self.outcomes if not o.skipped)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded and not o.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def local_failures(self) -> int:
        return sum(1 for o in self.outcomes if o.local_failure)


class PullReport(BaseModel):
    """Summary of refreshing local records from the remote store."""

    upserted: int = 0
    removed: int = 0
    kept_local: int = Field(
        default=0,
        description="Remote records not applied because local changes are unconfirmed"
    )
    budget_updated: bool = False
    error: Optional[str] = None
