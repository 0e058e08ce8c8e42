"""
Audit Models for Kakeibo

Every sync state transition is recorded as an audit event.
This provides:
1. Traceability of what reached the remote store and when
2. Debugging information when a record ends up FAILED
3. A history the user can inspect after an offline window

DESIGN DECISION: Audit logs are append-only. We never modify events,
the store only trims the oldest ones past the configured cap.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the optimistic mutation pipeline has its own event type.
    """
    # Local mutations
    RECORD_CREATED_LOCALLY = "record_created_locally"
    RECORD_UPDATED_LOCALLY = "record_updated_locally"
    RECORD_DELETED_LOCALLY = "record_deleted_locally"
    OPERATION_QUEUED = "operation_queued"

    # Remote reconciliation
    REMOTE_COMMIT_SUCCEEDED = "remote_commit_succeeded"
    REMOTE_COMMIT_FAILED = "remote_commit_failed"
    DELETE_ROLLED_BACK = "delete_rolled_back"
    STALE_RESPONSE_IGNORED = "stale_response_ignored"

    # Replay
    REPLAY_STARTED = "replay_started"
    REPLAY_COMPLETED = "replay_completed"

    # Domain actions
    BUDGET_SET = "budget_set"
    TEMPLATE_PROCESSED = "template_processed"
    BILL_PAID = "bill_paid"
    SAVINGS_CONTRIBUTED = "savings_contributed"

    # System events
    LOCAL_PERSISTENCE_FAILED = "local_persistence_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every sync transition creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'budget', 'bill')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one replay)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    @property
    def id(self) -> str:
        return str(self.event_id)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created_locally("expense", expense_id, online=False)
        event = AuditEventBuilder.remote_commit_failed("expense", expense_id, "create", str(exc))
    """

    @staticmethod
    def record_created_locally(
        entity_type: str,
        entity_id: str,
        online: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED_LOCALLY,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} created locally",
            details={"online": online},
            is_user_action=True,
        )

    @staticmethod
    def record_updated_locally(
        entity_type: str,
        entity_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED_LOCALLY,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} updated locally",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted_locally(
        entity_type: str,
        entity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED_LOCALLY,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} deleted locally",
            is_user_action=True,
        )

    @staticmethod
    def operation_queued(
        entity_type: str,
        entity_id: str,
        op_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_QUEUED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Queued {op_type} for later sync",
            details={"op_type": op_type},
        )

    @staticmethod
    def remote_commit_succeeded(
        entity_type: str,
        entity_id: str,
        op_type: str,
        previous_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        details: dict[str, Any] = {"op_type": op_type}
        if previous_id and previous_id != entity_id:
            details["previous_id"] = previous_id
        return AuditEvent(
            event_type=AuditEventType.REMOTE_COMMIT_SUCCEEDED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote {op_type} confirmed",
            details=details,
        )

    @staticmethod
    def remote_commit_failed(
        entity_type: str,
        entity_id: str,
        op_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_COMMIT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote {op_type} failed",
            error_message=error_message,
            details={"op_type": op_type},
        )

    @staticmethod
    def delete_rolled_back(
        entity_type: str,
        entity_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote delete failed, {entity_type} restored",
            error_message=error_message,
        )

    @staticmethod
    def stale_response_ignored(
        entity_type: str,
        entity_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_RESPONSE_IGNORED,
            severity=AuditSeverity.DEBUG,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Remote response ignored",
            details={"reason": reason},
        )

    @staticmethod
    def replay_started(
        pending_operations: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLAY_STARTED,
            correlation_id=correlation_id,
            description=f"Replaying {pending_operations} queued operations",
            details={"pending_operations": pending_operations},
        )

    @staticmethod
    def replay_completed(
        succeeded: int,
        failed: int,
        skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLAY_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=f"Replay finished: {succeeded} synced, {failed} failed",
            details={
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
            },
        )

    @staticmethod
    def budget_set(
        month: str,
        amount: str,
        online: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SET,
            entity_type="budget",
            entity_id=month,
            description=f"Budget for {month} set to ₹{amount}",
            details={"amount": amount, "online": online},
            is_user_action=True,
        )

    @staticmethod
    def template_processed(
        template_id: str,
        expense_id: Optional[str],
        next_occurrence: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_PROCESSED,
            entity_type="recurring_template",
            entity_id=template_id,
            description="Recurring expense processed",
            details={
                "expense_id": expense_id,
                "next_occurrence": next_occurrence,
            },
            is_user_action=True,
        )

    @staticmethod
    def bill_paid(
        bill_id: str,
        amount: str,
        successor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_PAID,
            entity_type="bill",
            entity_id=bill_id,
            description=f"Bill marked paid: ₹{amount}",
            details={
                "amount": amount,
                "successor_id": successor_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def savings_contributed(
        goal_id: str,
        amount: str,
        new_total: str,
        completed: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_CONTRIBUTED,
            entity_type="savings_goal",
            entity_id=goal_id,
            description=f"Added ₹{amount} to savings goal",
            details={
                "amount": amount,
                "new_total": new_total,
                "completed": completed,
            },
            is_user_action=True,
        )

    @staticmethod
    def local_persistence_failed(
        entity_type: str,
        entity_id: Optional[str],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            description="Local persistence failed, change kept in memory only",
            error_message=error_message,
        )
