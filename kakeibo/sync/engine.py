"""
Sync Engine - Local-First Mutations and Reconciliation

DESIGN DECISION: Every mutation follows the same shape:

1. Validate input
2. Take ONE connectivity snapshot
3. Write the optimistic record AND its journal entry to the local store
4. Only then, if the snapshot said online, await the remote store
5. Turn the remote outcome into a status transition

Nothing in steps 1-3 awaits, so the user's change is durable before any
network I/O starts. Remote errors never escape this module: they become
`failed` status, a rollback (delete), or an entry in a SyncReport.

RACES: Responses can arrive after the user has moved on. Two checks keep
them from clobbering newer local state:
- existence: a response for a record deleted meanwhile is ignored
- version: a response for an older version does not overwrite local fields;
  the newest state is re-sent instead

FAILURE MODES:
- Remote failure online -> record `failed`, journal entry kept for retry
- Offline -> record `pending`, never `failed`
- Local persistence failure -> every local step still runs in memory, the
  remote call is skipped and LocalPersistenceError reaches the caller.
  During replay it is recorded on the operation outcome instead and the
  run moves on to the next record
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kakeibo.audit import AuditLogger, create_correlation_id
from kakeibo.budget.aggregator import month_key
from kakeibo.config import Settings, get_settings
from kakeibo.models.audit import AuditEventBuilder
from kakeibo.models.records import (
    EDITABLE_EXPENSE_FIELDS,
    REMOTE_EXPENSE_FIELDS,
    Budget,
    Expense,
    ExpenseCategory,
    SyncStatus,
)
from kakeibo.models.sync import (
    EntityType,
    OperationOutcome,
    OperationType,
    PullReport,
    SyncOperation,
    SyncReport,
)
from kakeibo.services.connectivity import ConnectivityGate
from kakeibo.services.remote import (
    RemoteNotFoundError,
    RemoteStoreInterface,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from kakeibo.services.storage import LocalPersistenceError, LocalRecordStore, NotFoundError
from kakeibo.sync.queue import SyncQueue
from kakeibo.validation import ExpenseValidator, sanitize_text


logger = structlog.get_logger(__name__)

EXPENSES = "expenses"
BUDGETS = "budgets"

TRANSIENT_ERRORS = (RemoteUnavailableError, RemoteTimeoutError)


class SyncError(Exception):
    """Base exception for sync engine errors."""
    pass


class OfflineError(SyncError):
    """An explicit remote action was requested while offline."""
    pass


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class SyncEngine:
    """
    Local-first mutation API and reconciler for expenses and budgets.

    All public coroutines run on a single event loop; no locks are needed
    because local writes never await.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        remote: RemoteStoreInterface,
        gate: ConnectivityGate,
        queue: Optional[SyncQueue] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._remote = remote
        self._gate = gate
        self._clock = clock
        self._queue = queue or SyncQueue(store, clock=clock)
        self._audit = audit_logger or AuditLogger()
        settings = settings or get_settings()
        self._settings = settings.sync
        self._validator = validator or ExpenseValidator(settings.app, clock=clock)

        # Record ids with a remote call currently awaiting a response
        self._in_flight: set[str] = set()
        self._replaying = False
        # Background replays started by connectivity transitions
        self._replay_tasks: set[asyncio.Task] = set()
        self._background_errors: list[BaseException] = []
        self._started = False

    @property
    def queue(self) -> SyncQueue:
        return self._queue

    def is_in_flight(self, record_id: str) -> bool:
        return record_id in self._in_flight

    @property
    def background_replays(self) -> int:
        """Number of connectivity-triggered replays still running."""
        return sum(1 for task in self._replay_tasks if not task.done())

    @property
    def background_errors(self) -> list[BaseException]:
        """Exceptions raised by background replays, oldest first."""
        return list(self._background_errors)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> Optional[SyncReport]:
        """Listen for connectivity transitions; replay once if configured."""
        if not self._started:
            self._gate.subscribe(self._on_connectivity_change)
            self._started = True
        if self._settings.replay_on_start and self._gate.is_online():
            return await self.replay_pending()
        return None

    async def stop(self) -> None:
        if self._started:
            self._gate.unsubscribe(self._on_connectivity_change)
            self._started = False
        if self._replay_tasks:
            # Exceptions are collected by the done callback
            await asyncio.gather(*self._replay_tasks, return_exceptions=True)

    def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("replay_not_scheduled", reason="no running event loop")
            return
        task = loop.create_task(self.replay_pending())
        self._replay_tasks.add(task)
        task.add_done_callback(self._on_replay_done)

    def _on_replay_done(self, task: asyncio.Task) -> None:
        self._replay_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("background_replay_failed", error=_describe(error), exc_info=error)
            self._background_errors.append(error)
            return
        report = task.result()
        if report.local_failures:
            logger.error("background_replay_not_persisted", local_failures=report.local_failures)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _call_remote(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Call the remote store, retrying transient errors per settings."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.remote_max_attempts),
            wait=wait_exponential(
                min=self._settings.retry_wait_min,
                max=self._settings.retry_wait_max,
            ),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await fn(*args, **kwargs)
        return result

    def _attempt_local(self, errors: list[LocalPersistenceError], action: Callable[..., Any], *args: Any) -> Any:
        """Run a local write; a persistence failure is collected, not raised."""
        try:
            return action(*args)
        except LocalPersistenceError as e:
            errors.append(e)
            return None

    def _enqueue(
        self,
        errors: list[LocalPersistenceError],
        op_type: OperationType,
        entity: EntityType,
        record_id: str,
    ) -> Optional[SyncOperation]:
        try:
            return self._queue.enqueue(op_type, entity, record_id)
        except LocalPersistenceError as e:
            # The queue change is kept in memory; read back what it now holds
            errors.append(e)
            return self._queue.find(entity, record_id, op_type)

    async def _raise_if_local_failed(
        self,
        errors: list[LocalPersistenceError],
        entity_type: str,
        record_id: Optional[str],
    ) -> None:
        if not errors:
            return
        await self._audit.log(
            AuditEventBuilder.local_persistence_failed(
                entity_type=entity_type,
                entity_id=record_id,
                error_message=_describe(errors[0]),
            )
        )
        raise errors[0]

    async def _mark_failed(
        self,
        entity: EntityType,
        record_id: str,
        op_type: OperationType,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Remote attempt failed: record -> failed, journal entry kept.

        Raises:
            LocalPersistenceError: The failed state is held in memory only
        """
        collection = EXPENSES if entity == EntityType.EXPENSE else BUDGETS
        message = _describe(error)

        errors: list[LocalPersistenceError] = []
        record = self._store.get(collection, record_id)
        if record is not None and record.sync_status != SyncStatus.FAILED:
            self._attempt_local(
                errors,
                self._store.put,
                collection,
                record.model_copy(update={"sync_status": SyncStatus.FAILED}),
            )

        for op in self._queue.operations_for(entity, record_id):
            self._attempt_local(errors, self._queue.record_failure, op.id, message)

        await self._audit.log(
            AuditEventBuilder.remote_commit_failed(
                entity_type=entity.value,
                entity_id=record_id,
                op_type=op_type.value,
                error_message=message,
                correlation_id=correlation_id,
            )
        )
        await self._raise_if_local_failed(errors, entity.value, record_id)

    # =========================================================================
    # REMOTE COMMITS
    # =========================================================================

    async def _commit_create(
        self,
        record_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[str]:
        """
        Send a queued create.

        Returns:
            The record's id after the commit (the server id on success),
            or None if the remote attempt failed
        """
        record = self._store.get(EXPENSES, record_id)
        if record is None:
            # Already reconciled under its server id, or deleted
            self._queue.remove_for(EntityType.EXPENSE, record_id)
            return record_id

        dispatched_version = record.version
        self._in_flight.add(record_id)
        try:
            confirmed = await self._call_remote(self._remote.create, record)
        except Exception as e:
            logger.warning("remote_create_failed", record_id=record_id, error=_describe(e))
            await self._mark_failed(
                EntityType.EXPENSE, record_id, OperationType.CREATE, e, correlation_id
            )
            return None
        finally:
            self._in_flight.discard(record_id)

        server_id = confirmed.id
        current = self._store.get(EXPENSES, record_id)
        errors: list[LocalPersistenceError] = []

        if current is None:
            # Deleted locally while the create was in flight. Keep it deleted
            # here and make sure the remote copy goes too.
            await self._audit.log(
                AuditEventBuilder.stale_response_ignored(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=record_id,
                    reason="record deleted locally before create was confirmed",
                    correlation_id=correlation_id,
                )
            )
            self._attempt_local(errors, self._queue.remove_for, EntityType.EXPENSE, record_id)
            self._enqueue(errors, OperationType.DELETE, EntityType.EXPENSE, server_id)
            await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, server_id)
            if self._gate.is_online():
                await self._commit_delete(server_id, correlation_id)
            return server_id

        # The record takes its server id BEFORE the CREATE leaves the journal.
        # If only the first write lands, the next replay finds no record under
        # the local id and drops the CREATE instead of sending it twice.
        if current.version == dispatched_version:
            final = confirmed.model_copy(
                update={
                    "sync_status": SyncStatus.SYNCED,
                    "version": current.version,
                    "created_at": current.created_at,
                }
            )
            self._attempt_local(errors, self._store.replace, EXPENSES, record_id, final)
            self._attempt_local(
                errors, self._queue.remove_for,
                EntityType.EXPENSE, record_id, [OperationType.CREATE],
            )
            self._attempt_local(errors, self._queue.rekey, EntityType.EXPENSE, record_id, server_id)
            await self._audit.log(
                AuditEventBuilder.remote_commit_succeeded(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=server_id,
                    op_type=OperationType.CREATE.value,
                    previous_id=record_id,
                    correlation_id=correlation_id,
                )
            )
            await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, server_id)
            return server_id

        # Edited while the create was in flight: keep local fields, adopt the id
        await self._audit.log(
            AuditEventBuilder.stale_response_ignored(
                entity_type=EntityType.EXPENSE.value,
                entity_id=server_id,
                reason=f"create confirmed version {dispatched_version}, local is {current.version}",
                correlation_id=correlation_id,
            )
        )
        self._attempt_local(
            errors,
            self._store.replace,
            EXPENSES,
            record_id,
            current.model_copy(update={"id": server_id, "sync_status": SyncStatus.PENDING}),
        )
        self._attempt_local(
            errors, self._queue.remove_for,
            EntityType.EXPENSE, record_id, [OperationType.CREATE],
        )
        self._attempt_local(errors, self._queue.rekey, EntityType.EXPENSE, record_id, server_id)
        self._enqueue(errors, OperationType.UPDATE, EntityType.EXPENSE, server_id)
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, server_id)
        if self._gate.is_online():
            # A failed follow-up update marks the record failed; the create still stands
            await self._commit_update(server_id, correlation_id)
        return server_id

    async def _commit_update(
        self,
        record_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Send the current state of a record; re-send while it keeps changing."""
        while True:
            record = self._store.get(EXPENSES, record_id)
            if record is None:
                # A queued delete supersedes the update
                self._queue.remove_for(EntityType.EXPENSE, record_id, [OperationType.UPDATE])
                return True

            dispatched_version = record.version
            patch = record.model_dump(mode="json", include=set(REMOTE_EXPENSE_FIELDS))

            self._in_flight.add(record_id)
            try:
                confirmed = await self._call_remote(self._remote.update, record_id, patch)
            except RemoteNotFoundError as e:
                if self._store.get(EXPENSES, record_id) is None:
                    # Deleted locally while the update was in flight
                    return True
                # Gone remotely: nothing left to update. retry() re-creates it.
                errors: list[LocalPersistenceError] = []
                self._attempt_local(
                    errors, self._queue.remove_for,
                    EntityType.EXPENSE, record_id, [OperationType.UPDATE],
                )
                await self._mark_failed(
                    EntityType.EXPENSE, record_id, OperationType.UPDATE, e, correlation_id
                )
                await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, record_id)
                return False
            except Exception as e:
                logger.warning("remote_update_failed", record_id=record_id, error=_describe(e))
                await self._mark_failed(
                    EntityType.EXPENSE, record_id, OperationType.UPDATE, e, correlation_id
                )
                return False
            finally:
                self._in_flight.discard(record_id)

            current = self._store.get(EXPENSES, record_id)
            if current is None:
                await self._audit.log(
                    AuditEventBuilder.stale_response_ignored(
                        entity_type=EntityType.EXPENSE.value,
                        entity_id=record_id,
                        reason="record deleted locally before update was confirmed",
                        correlation_id=correlation_id,
                    )
                )
                return True

            if current.version != dispatched_version:
                await self._audit.log(
                    AuditEventBuilder.stale_response_ignored(
                        entity_type=EntityType.EXPENSE.value,
                        entity_id=record_id,
                        reason=f"update confirmed version {dispatched_version}, local is {current.version}",
                        correlation_id=correlation_id,
                    )
                )
                continue

            accepted = {field: getattr(confirmed, field) for field in REMOTE_EXPENSE_FIELDS}
            errors = []
            self._attempt_local(
                errors,
                self._store.put,
                EXPENSES,
                current.model_copy(update={**accepted, "sync_status": SyncStatus.SYNCED}),
            )
            self._attempt_local(
                errors, self._queue.remove_for,
                EntityType.EXPENSE, record_id, [OperationType.UPDATE],
            )
            await self._audit.log(
                AuditEventBuilder.remote_commit_succeeded(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=record_id,
                    op_type=OperationType.UPDATE.value,
                    correlation_id=correlation_id,
                )
            )
            await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, record_id)
            return True

    async def _commit_delete(
        self,
        record_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Send a queued delete. Not found remotely counts as done."""
        op = self._queue.find(EntityType.EXPENSE, record_id, OperationType.DELETE)
        if op is None:
            return True

        self._in_flight.add(record_id)
        try:
            await self._call_remote(self._remote.delete, record_id)
        except RemoteNotFoundError:
            logger.info("remote_delete_already_gone", record_id=record_id)
        except Exception as e:
            logger.warning("remote_delete_failed", record_id=record_id, error=_describe(e))
            errors: list[LocalPersistenceError] = []
            self._attempt_local(errors, self._queue.record_failure, op.id, _describe(e))
            await self._audit.log(
                AuditEventBuilder.remote_commit_failed(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=record_id,
                    op_type=OperationType.DELETE.value,
                    error_message=_describe(e),
                    correlation_id=correlation_id,
                )
            )
            await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, record_id)
            return False
        finally:
            self._in_flight.discard(record_id)

        errors = []
        self._attempt_local(errors, self._queue.remove, op.id)
        await self._audit.log(
            AuditEventBuilder.remote_commit_succeeded(
                entity_type=EntityType.EXPENSE.value,
                entity_id=record_id,
                op_type=OperationType.DELETE.value,
                correlation_id=correlation_id,
            )
        )
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, record_id)
        return True

    async def _commit_budget(
        self,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Send a month's budget; re-send while it keeps changing."""
        while True:
            budget = self._store.get(BUDGETS, month)
            if budget is None:
                self._queue.remove_for(EntityType.BUDGET, month)
                return True

            dispatched_version = budget.version
            self._in_flight.add(month)
            try:
                confirmed = await self._call_remote(self._remote.set_budget, budget.limit, month=month)
            except Exception as e:
                logger.warning("remote_budget_failed", month=month, error=_describe(e))
                await self._mark_failed(
                    EntityType.BUDGET, month, OperationType.UPDATE, e, correlation_id
                )
                return False
            finally:
                self._in_flight.discard(month)

            current = self._store.get(BUDGETS, month)
            if current is not None and current.version != dispatched_version:
                continue

            errors: list[LocalPersistenceError] = []
            if current is not None:
                self._attempt_local(
                    errors,
                    self._store.put,
                    BUDGETS,
                    current.model_copy(
                        update={"limit": confirmed.limit, "sync_status": SyncStatus.SYNCED}
                    ),
                )
            self._attempt_local(errors, self._queue.remove_for, EntityType.BUDGET, month)
            await self._audit.log(
                AuditEventBuilder.remote_commit_succeeded(
                    entity_type=EntityType.BUDGET.value,
                    entity_id=month,
                    op_type=OperationType.UPDATE.value,
                    correlation_id=correlation_id,
                )
            )
            await self._raise_if_local_failed(errors, EntityType.BUDGET.value, month)
            return True

    # =========================================================================
    # EXPENSE MUTATIONS
    # =========================================================================

    async def create_expense(
        self,
        description: str,
        amount: Union[Decimal, str, int, float],
        category: Union[ExpenseCategory, str] = ExpenseCategory.OTHER,
        expense_datetime: Optional[datetime] = None,
        notes: Optional[str] = None,
        receipt_url: Optional[str] = None,
        recurring_template_id: Optional[str] = None,
    ) -> Expense:
        """
        Create an expense optimistically.

        Returns:
            The stored record: synced with its server id on success,
            failed if the remote rejected it, pending if offline

        Raises:
            ExpenseValidationError: Input failed validation (nothing stored)
            LocalPersistenceError: Stored in memory only; no remote attempt made
        """
        now = self._clock()
        fields = {
            "description": description,
            "amount": amount,
            "expense_datetime": expense_datetime or now,
        }
        self._validator.ensure_valid(fields)

        expense = Expense(
            description=sanitize_text(description),
            category=category,
            amount=Decimal(str(amount)),
            expense_datetime=fields["expense_datetime"],
            notes=notes,
            receipt_url=receipt_url,
            recurring_template_id=recurring_template_id,
            sync_status=SyncStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        online = self._gate.is_online()
        errors: list[LocalPersistenceError] = []
        self._attempt_local(errors, self._store.put, EXPENSES, expense)
        self._enqueue(errors, OperationType.CREATE, EntityType.EXPENSE, expense.id)

        await self._audit.log(
            AuditEventBuilder.record_created_locally(
                entity_type=EntityType.EXPENSE.value,
                entity_id=expense.id,
                online=online,
            )
        )
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, expense.id)

        if not online:
            await self._audit.log(
                AuditEventBuilder.operation_queued(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=expense.id,
                    op_type=OperationType.CREATE.value,
                )
            )
            return expense

        final_id = await self._commit_create(expense.id)
        return self._store.get(EXPENSES, final_id or expense.id) or expense

    async def update_expense(self, expense_id: str, changes: dict[str, Any]) -> Expense:
        """
        Edit an expense optimistically.

        Raises:
            NotFoundError: No such expense locally
            ValueError: A field that cannot be edited was given
            ExpenseValidationError: The edited record would be invalid
        """
        record = self._store.require(EXPENSES, expense_id)

        unknown = set(changes) - EDITABLE_EXPENSE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        merged = {**record.model_dump(), **changes}
        self._validator.ensure_valid(merged)
        if "description" in changes:
            merged["description"] = sanitize_text(changes["description"])
        if "amount" in changes:
            merged["amount"] = Decimal(str(changes["amount"]))

        updated = Expense.model_validate(
            {
                **merged,
                "version": record.version + 1,
                "sync_status": SyncStatus.PENDING,
                "updated_at": self._clock(),
            }
        )

        online = self._gate.is_online()
        errors: list[LocalPersistenceError] = []
        self._attempt_local(errors, self._store.put, EXPENSES, updated)
        self._enqueue(errors, OperationType.UPDATE, EntityType.EXPENSE, expense_id)

        await self._audit.log(
            AuditEventBuilder.record_updated_locally(
                entity_type=EntityType.EXPENSE.value,
                entity_id=expense_id,
                changed_fields=sorted(changes),
            )
        )
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, expense_id)

        if not online or expense_id in self._in_flight:
            # The in-flight call re-sends the newest version when it returns
            return updated

        if updated.is_local_only:
            final_id = await self._commit_create(expense_id)
            return self._store.get(EXPENSES, final_id or expense_id) or updated

        await self._commit_update(expense_id)
        return self._store.get(EXPENSES, expense_id) or updated

    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense optimistically.

        The previous record and its queued operations are held only for the
        duration of the remote call and restored verbatim if it fails.

        Returns:
            True if the delete stands (confirmed, queued offline, or local-only),
            False if the remote delete failed and the record was restored
        """
        previous = self._store.require(EXPENSES, expense_id)
        position = self._store.position(EXPENSES, expense_id)
        previous_ops = self._queue.operations_for(EntityType.EXPENSE, expense_id)

        online = self._gate.is_online()
        errors: list[LocalPersistenceError] = []
        delete_op = self._enqueue(errors, OperationType.DELETE, EntityType.EXPENSE, expense_id)
        self._attempt_local(errors, self._store.remove, EXPENSES, expense_id)

        await self._audit.log(
            AuditEventBuilder.record_deleted_locally(
                entity_type=EntityType.EXPENSE.value,
                entity_id=expense_id,
            )
        )
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, expense_id)

        if delete_op is None:
            # Never reached the remote store; nothing to tell it
            return True

        if not online:
            await self._audit.log(
                AuditEventBuilder.operation_queued(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=expense_id,
                    op_type=OperationType.DELETE.value,
                )
            )
            return True

        self._in_flight.add(expense_id)
        try:
            await self._call_remote(self._remote.delete, expense_id)
        except RemoteNotFoundError:
            logger.info("remote_delete_already_gone", record_id=expense_id)
        except Exception as e:
            logger.warning("remote_delete_failed", record_id=expense_id, error=_describe(e))
            rollback_errors: list[LocalPersistenceError] = []
            self._attempt_local(rollback_errors, self._queue.remove, delete_op.id)
            self._attempt_local(rollback_errors, self._queue.restore, previous_ops)
            self._attempt_local(rollback_errors, self._store.put, EXPENSES, previous, position)
            await self._audit.log(
                AuditEventBuilder.delete_rolled_back(
                    entity_type=EntityType.EXPENSE.value,
                    entity_id=expense_id,
                    error_message=_describe(e),
                )
            )
            await self._raise_if_local_failed(rollback_errors, EntityType.EXPENSE.value, expense_id)
            return False
        finally:
            self._in_flight.discard(expense_id)

        self._attempt_local(errors, self._queue.remove, delete_op.id)
        await self._audit.log(
            AuditEventBuilder.remote_commit_succeeded(
                entity_type=EntityType.EXPENSE.value,
                entity_id=expense_id,
                op_type=OperationType.DELETE.value,
            )
        )
        await self._raise_if_local_failed(errors, EntityType.EXPENSE.value, expense_id)
        return True

    async def retry(self, expense_id: str) -> Optional[Expense]:
        """
        Retry queued remote work for one expense now.

        A failed record with nothing queued (it vanished remotely) is
        queued for creation again.

        Returns:
            The record after the attempt, or None if it was deleted

        Raises:
            OfflineError: If the gate reports offline
            NotFoundError: If there is neither a record nor queued work
        """
        if not self._gate.is_online():
            raise OfflineError("Cannot sync while offline")
        if expense_id in self._in_flight:
            return self._store.get(EXPENSES, expense_id)

        ops = self._queue.operations_for(EntityType.EXPENSE, expense_id)
        if not ops:
            record = self._store.get(EXPENSES, expense_id)
            if record is None:
                raise NotFoundError(f"expenses record not found: {expense_id}")
            if record.sync_status == SyncStatus.SYNCED:
                return record
            self._queue.enqueue(OperationType.CREATE, EntityType.EXPENSE, expense_id)

        current_id = expense_id
        for queued in self._queue.operations_for(EntityType.EXPENSE, expense_id):
            op = self._queue.get(queued.id)
            if op is None:
                continue
            outcome = await self._replay_op(op)
            if not outcome.succeeded:
                break
            current_id = outcome.record_id

        return self._store.get(EXPENSES, current_id)

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def set_budget(
        self,
        amount: Union[Decimal, str, int, float],
        month: Optional[str] = None,
    ) -> Budget:
        """
        Create or overwrite a month's budget optimistically.

        Args:
            amount: Budget limit
            month: Month key (YYYY-MM); current month when omitted
        """
        month = month or month_key(self._clock())
        existing = self._store.get(BUDGETS, month)
        budget = Budget(
            id=month,
            limit=Decimal(str(amount)),
            sync_status=SyncStatus.PENDING,
            version=existing.version + 1 if existing else 1,
            updated_at=self._clock(),
        )

        online = self._gate.is_online()
        errors: list[LocalPersistenceError] = []
        self._attempt_local(errors, self._store.put, BUDGETS, budget)
        self._enqueue(errors, OperationType.UPDATE, EntityType.BUDGET, month)

        await self._audit.log(
            AuditEventBuilder.budget_set(month=month, amount=str(budget.limit), online=online)
        )
        await self._raise_if_local_failed(errors, EntityType.BUDGET.value, month)

        if online and month not in self._in_flight:
            await self._commit_budget(month)
        return self._store.get(BUDGETS, month) or budget

    def get_budget(self, month: Optional[str] = None) -> Optional[Budget]:
        return self._store.get(BUDGETS, month or month_key(self._clock()))

    # =========================================================================
    # REPLAY
    # =========================================================================

    async def _replay_op(
        self,
        op: SyncOperation,
        correlation_id: Optional[UUID] = None,
    ) -> OperationOutcome:
        if op.entity == EntityType.BUDGET:
            ok = await self._commit_budget(op.record_id, correlation_id)
            final_id = op.record_id
        elif op.op_type == OperationType.CREATE:
            final_id = await self._commit_create(op.record_id, correlation_id)
            ok = final_id is not None
        elif op.op_type == OperationType.UPDATE:
            ok = await self._commit_update(op.record_id, correlation_id)
            final_id = op.record_id
        else:
            ok = await self._commit_delete(op.record_id, correlation_id)
            final_id = op.record_id

        refreshed = self._queue.get(op.id)
        return OperationOutcome(
            operation_id=op.id,
            op_type=op.op_type,
            entity=op.entity,
            record_id=final_id or op.record_id,
            succeeded=ok,
            error=refreshed.last_error if (refreshed and not ok) else None,
        )

    async def replay_pending(self) -> SyncReport:
        """
        Replay the journal in sequence order.

        Each record transitions independently. A failure blocks later
        operations of the same record in this run; records with a call in
        flight are skipped. Overlapping runs are skipped.

        A local persistence failure is reported as a `local_failure` outcome
        rather than raised, so the remaining records still replay.
        """
        report = SyncReport(started_at=self._clock())

        if not self._gate.is_online():
            report.skipped_reason = "offline"
            return report
        if self._replaying:
            report.skipped_reason = "replay already running"
            return report

        self._replaying = True
        correlation_id = create_correlation_id()
        try:
            operations = self._queue.operations()
            await self._audit.log(
                AuditEventBuilder.replay_started(len(operations), correlation_id)
            )

            blocked: set[tuple[EntityType, str]] = set()
            for queued in operations:
                op = self._queue.get(queued.id)
                if op is None:
                    # Coalesced or completed by an earlier step
                    continue

                key = (op.entity, op.record_id)
                if key in blocked or op.record_id in self._in_flight or not self._gate.is_online():
                    report.outcomes.append(
                        OperationOutcome(
                            operation_id=op.id,
                            op_type=op.op_type,
                            entity=op.entity,
                            record_id=op.record_id,
                            succeeded=False,
                            skipped=True,
                        )
                    )
                    continue

                try:
                    outcome = await self._replay_op(op, correlation_id)
                except LocalPersistenceError as e:
                    # Memory already holds the reconciled state
                    logger.error(
                        "replay_local_persistence_failed",
                        record_id=op.record_id,
                        op_type=op.op_type.value,
                        error=_describe(e),
                    )
                    outcome = OperationOutcome(
                        operation_id=op.id,
                        op_type=op.op_type,
                        entity=op.entity,
                        record_id=op.record_id,
                        succeeded=False,
                        local_failure=True,
                        error=_describe(e),
                    )
                report.outcomes.append(outcome)
                if not outcome.succeeded:
                    blocked.add(key)
        finally:
            self._replaying = False

        await self._audit.log(
            AuditEventBuilder.replay_completed(
                succeeded=report.succeeded,
                failed=report.failed,
                skipped=report.skipped,
                correlation_id=correlation_id,
            )
        )
        logger.info(
            "replay_completed",
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=report.skipped,
            local_failures=report.local_failures,
        )
        return report

    # =========================================================================
    # PULL
    # =========================================================================

    async def pull(self) -> PullReport:
        """
        Refresh local records from the remote store.

        Remote records replace local copies that are synced. Records with
        unconfirmed local changes or queued work are left alone. Synced local
        records the remote store no longer has are removed.

        Raises:
            OfflineError: If the gate reports offline
        """
        if not self._gate.is_online():
            raise OfflineError("Cannot pull while offline")

        report = PullReport()
        try:
            remote_expenses = await self._call_remote(self._remote.list)
            remote_budget = await self._call_remote(self._remote.get_current_budget)
        except Exception as e:
            logger.warning("remote_pull_failed", error=_describe(e))
            report.error = _describe(e)
            return report

        remote_ids = set()
        for remote_record in remote_expenses:
            remote_ids.add(remote_record.id)
            local = self._store.get(EXPENSES, remote_record.id)
            if self._queue.has_pending(EntityType.EXPENSE, remote_record.id) or (
                local is not None and local.sync_status != SyncStatus.SYNCED
            ):
                report.kept_local += 1
                continue
            self._store.put(
                EXPENSES,
                remote_record.model_copy(
                    update={
                        "sync_status": SyncStatus.SYNCED,
                        "version": local.version if local else 1,
                    }
                ),
            )
            report.upserted += 1

        for local in self._store.get_all(EXPENSES):
            if (
                local.id not in remote_ids
                and not local.is_local_only
                and local.sync_status == SyncStatus.SYNCED
                and not self._queue.has_pending(EntityType.EXPENSE, local.id)
            ):
                self._store.remove(EXPENSES, local.id)
                report.removed += 1

        if remote_budget is not None and not self._queue.has_pending(EntityType.BUDGET, remote_budget.id):
            local_budget = self._store.get(BUDGETS, remote_budget.id)
            if local_budget is None or local_budget.sync_status == SyncStatus.SYNCED:
                self._store.put(
                    BUDGETS,
                    remote_budget.model_copy(
                        update={
                            "sync_status": SyncStatus.SYNCED,
                            "version": local_budget.version if local_budget else 1,
                        }
                    ),
                )
                report.budget_updated = True

        logger.info(
            "pull_completed",
            upserted=report.upserted,
            removed=report.removed,
            kept_local=report.kept_local,
        )
        return report
