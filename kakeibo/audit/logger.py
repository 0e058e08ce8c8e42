"""
Audit Logger

DESIGN DECISION: Every sync transition in the system is logged.
This provides:
1. Traceability of what reached the remote store and when
2. Debugging capability for offline/online races
3. A local history the user can inspect

The audit logger:
- Is async so it can sit next to remote calls without blocking them
- Gracefully handles failures (a full disk never breaks a mutation)
- Supports correlation IDs to trace related events (one replay run)
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from kakeibo.models.audit import AuditEvent, AuditSeverity
from kakeibo.services.storage import LocalRecordStore, LocalPersistenceError


AUDIT_COLLECTION = "audit_log"

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_log collection of the record store (capped)
    """

    def __init__(
        self,
        store: Optional[LocalRecordStore] = None,
        max_events: int = 500,
    ):
        """
        Initialize audit logger.

        Args:
            store: Record store for persistence. If None, only logs locally.
            max_events: Oldest events beyond this count are dropped (0 disables)
        """
        self._store = store
        self._max_events = max_events
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store is None or self._max_events == 0:
            return True

        try:
            self._store.put(AUDIT_COLLECTION, event)
            self._store.trim(AUDIT_COLLECTION, self._max_events)
            return True
        except LocalPersistenceError as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def recent(self, limit: int = 50) -> list[AuditEvent]:
        """Most recent persisted events, newest first."""
        if self._store is None:
            return []
        events = self._store.get_all(AUDIT_COLLECTION)
        return list(reversed(events[-limit:])) if limit > 0 else []


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step action (e.g., a replay run).
    Pass it through all subsequent events.
    """
    return uuid4()
