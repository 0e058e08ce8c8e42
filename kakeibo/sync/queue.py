"""
Sync Queue (write-ahead journal)

DESIGN DECISION: Every remote operation is written to the journal BEFORE the
remote call is made and removed only once the remote store confirms it.
A crash, a timeout or going offline therefore never loses a user's change:
whatever is still in the journal is replayed later.

The journal lives in the `sync_queue` collection of the local record store,
so it is as durable as the records themselves.

Coalescing keeps the journal short and the replay correct:
- UPDATE after a queued CREATE/UPDATE: folded in (replay sends current state)
- DELETE after a queued CREATE: everything for the record is dropped
  (the remote store never heard of it)
- DELETE otherwise: queued UPDATEs are dropped, one DELETE is queued
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from kakeibo.models.sync import EntityType, OperationType, SyncOperation
from kakeibo.services.storage import LocalPersistenceError, LocalRecordStore


logger = structlog.get_logger(__name__)

QUEUE_COLLECTION = "sync_queue"


class SyncQueue:
    """Persisted, ordered journal of unconfirmed remote operations."""

    def __init__(
        self,
        store: LocalRecordStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._clock = clock

    # ===== READS =====

    def operations(self) -> list[SyncOperation]:
        """All queued operations in replay order."""
        return sorted(self._store.get_all(QUEUE_COLLECTION), key=lambda op: op.sequence)

    def operations_for(self, entity: EntityType, record_id: str) -> list[SyncOperation]:
        return [
            op for op in self.operations()
            if op.entity == entity and op.record_id == record_id
        ]

    def find(
        self,
        entity: EntityType,
        record_id: str,
        op_type: OperationType,
    ) -> Optional[SyncOperation]:
        """First queued operation of a type for a record."""
        for op in self.operations_for(entity, record_id):
            if op.op_type == op_type:
                return op
        return None

    def get(self, operation_id: str) -> Optional[SyncOperation]:
        return self._store.get(QUEUE_COLLECTION, operation_id)

    def pending_count(self) -> int:
        return self._store.count(QUEUE_COLLECTION)

    def has_pending(self, entity: EntityType, record_id: str) -> bool:
        return bool(self.operations_for(entity, record_id))

    # ===== WRITES =====

    def _apply_each(
        self,
        operations: Iterable[SyncOperation],
        action: Callable[[SyncOperation], object],
    ) -> int:
        """
        Apply a journal write to every operation.

        The store changes memory before persisting, so a persistence failure
        on one operation must not leave the rest untouched. The first failure
        is raised once every operation has been handled.
        """
        first_error: Optional[LocalPersistenceError] = None
        count = 0
        for op in operations:
            try:
                action(op)
            except LocalPersistenceError as e:
                first_error = first_error or e
            count += 1
        if first_error is not None:
            raise first_error
        return count

    def _next_sequence(self) -> int:
        ops = self._store.get_all(QUEUE_COLLECTION)
        return max((op.sequence for op in ops), default=-1) + 1

    def _append(
        self,
        op_type: OperationType,
        entity: EntityType,
        record_id: str,
    ) -> SyncOperation:
        op = SyncOperation(
            op_type=op_type,
            entity=entity,
            record_id=record_id,
            sequence=self._next_sequence(),
            queued_at=self._clock(),
        )
        self._store.put(QUEUE_COLLECTION, op)
        logger.debug(
            "operation_enqueued",
            op_type=op_type.value,
            entity=entity.value,
            record_id=record_id,
            sequence=op.sequence,
        )
        return op

    def enqueue(
        self,
        op_type: OperationType,
        entity: EntityType,
        record_id: str,
    ) -> Optional[SyncOperation]:
        """
        Journal an operation, coalescing with what is already queued.

        Returns:
            The operation that now carries this change, or None when the
            change cancelled out queued work (delete of a never-synced record)

        Raises:
            LocalPersistenceError: The journal change is kept in memory only
        """
        op_type = OperationType(op_type)
        entity = EntityType(entity)
        queued = self.operations_for(entity, record_id)

        if op_type in (OperationType.CREATE, OperationType.UPDATE):
            for op in queued:
                if op.op_type == OperationType.CREATE or op.op_type == op_type:
                    return op
            return self._append(op_type, entity, record_id)

        # DELETE
        if any(op.op_type == OperationType.CREATE for op in queued):
            self.remove_for(entity, record_id)
            return None

        existing_delete = next(
            (op for op in queued if op.op_type == OperationType.DELETE), None
        )
        try:
            self._apply_each(
                [op for op in queued if op.op_type != OperationType.DELETE],
                lambda op: self._store.remove(QUEUE_COLLECTION, op.id),
            )
        except LocalPersistenceError:
            # Still journal the delete in memory before surfacing the failure
            if existing_delete is None:
                self._append(op_type, entity, record_id)
            raise
        return existing_delete or self._append(op_type, entity, record_id)

    def remove(self, operation_id: str) -> bool:
        return self._store.remove(QUEUE_COLLECTION, operation_id)

    def remove_for(
        self,
        entity: EntityType,
        record_id: str,
        op_types: Optional[Iterable[OperationType]] = None,
    ) -> int:
        """Drop queued operations for a record (optionally only some types)."""
        wanted = set(op_types) if op_types is not None else None
        return self._apply_each(
            [
                op for op in self.operations_for(entity, record_id)
                if wanted is None or op.op_type in wanted
            ],
            lambda op: self._store.remove(QUEUE_COLLECTION, op.id),
        )

    def restore(self, operations: Iterable[SyncOperation]) -> None:
        """Put previously removed operations back unchanged."""
        self._apply_each(operations, lambda op: self._store.put(QUEUE_COLLECTION, op))

    def rekey(self, entity: EntityType, old_id: str, new_id: str) -> int:
        """Point queued operations at a record's new (server) id."""
        return self._apply_each(
            self.operations_for(entity, old_id),
            lambda op: self._store.put(
                QUEUE_COLLECTION, op.model_copy(update={"record_id": new_id})
            ),
        )

    def record_failure(self, operation_id: str, error: str) -> Optional[SyncOperation]:
        """Count a failed attempt; the operation stays queued."""
        op = self.get(operation_id)
        if op is None:
            return None
        updated = op.model_copy(update={"attempts": op.attempts + 1, "last_error": error})
        self._store.put(QUEUE_COLLECTION, updated)
        return updated
