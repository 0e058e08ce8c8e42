"""
Local Record Store

DESIGN DECISION: The record store is the client's source of truth.
Each collection is held in memory as an ordered id -> record map and the
whole snapshot is written to the backend on every change. This gives us:
1. Synchronous reads and writes (no mutation waits on I/O it cannot finish)
2. Durability across restarts (the backend is persistent)
3. A usable in-memory fallback when the backend rejects a write

TRADEOFFS:
- Whole-collection writes do not scale to large data sets (personal use is fine)
- A corrupt collection is dropped rather than partially recovered
"""

import json
from typing import Callable, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from kakeibo.services.storage.interface import (
    KeyValueBackend,
    LocalPersistenceError,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

StoreListener = Callable[[str], None]


class _Collection(Generic[RecordT]):
    """In-memory snapshot of one collection."""

    def __init__(self, model: type[RecordT]):
        self.model = model
        self.records: dict[str, RecordT] = {}
        self.loaded = False


class LocalRecordStore:
    """
    Durable, key-scoped persistence of client records.

    Collections are registered with the pydantic model used to
    (de)serialize them. Records are keyed by their `id` attribute.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        models: dict[str, type[BaseModel]],
        namespace: str = "kakeibo",
    ):
        """
        Initialize the store.

        Args:
            backend: Key-value persistence collaborator
            models: collection name -> record model
            namespace: Prefix for every backend key
        """
        self._backend = backend
        self._namespace = namespace
        self._collections: dict[str, _Collection] = {
            name: _Collection(model) for name, model in models.items()
        }
        self._listeners: list[StoreListener] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def load(self) -> None:
        """Read every registered collection from the backend."""
        for name in self._collections:
            self._load(name)

    def storage_key(self, collection: str) -> str:
        return f"{self._namespace}_{collection}"

    def _collection(self, collection: str) -> _Collection:
        try:
            coll = self._collections[collection]
        except KeyError:
            raise KeyError(f"Unknown collection: {collection}") from None
        if not coll.loaded:
            self._load(collection)
        return coll

    def _load(self, collection: str) -> None:
        coll = self._collections[collection]
        key = self.storage_key(collection)
        coll.records = {}
        coll.loaded = True

        raw = self._backend.get(key)
        if raw is None:
            return

        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError(f"expected a list, got {type(items).__name__}")
            records = [coll.model.model_validate(item) for item in items]
        except (ValueError, TypeError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(
                "corrupt_collection_discarded",
                collection=collection,
                key=key,
                error=str(e),
            )
            self._discard(key)
            return

        coll.records = {record.id: record for record in records}

    def _discard(self, key: str) -> None:
        try:
            self._backend.remove(key)
        except LocalPersistenceError as e:
            logger.error("corrupt_collection_remove_failed", key=key, error=str(e))

    # -------------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> None:
        """Call `listener(collection)` after every change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners):
            listener(collection)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_all(self, collection: str) -> list:
        """All records of a collection, in insertion order."""
        return list(self._collection(collection).records.values())

    def get(self, collection: str, record_id: str):
        """A single record, or None."""
        return self._collection(collection).records.get(record_id)

    def require(self, collection: str, record_id: str):
        """A single record; raises NotFoundError if absent."""
        record = self.get(collection, record_id)
        if record is None:
            raise NotFoundError(f"{collection} record not found: {record_id}")
        return record

    def count(self, collection: str) -> int:
        return len(self._collection(collection).records)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put(self, collection: str, record: BaseModel, position: Optional[int] = None) -> None:
        """
        Insert or replace a record.

        An existing record keeps its position. A new record is appended,
        or inserted at `position` when given.

        Raises:
            LocalPersistenceError: The change is kept in memory but not durable
        """
        coll = self._collection(collection)
        if not isinstance(record, coll.model):
            raise TypeError(
                f"{collection} expects {coll.model.__name__}, got {type(record).__name__}"
            )

        if record.id in coll.records or position is None:
            coll.records[record.id] = record
        else:
            items = list(coll.records.items())
            items.insert(max(0, position), (record.id, record))
            coll.records = dict(items)

        self._commit(collection)

    def replace(self, collection: str, old_id: str, record: BaseModel) -> None:
        """
        Swap a record for one with a different id, keeping its position.

        Used when the remote store confirms a record and assigns its id.
        """
        coll = self._collection(collection)
        if old_id not in coll.records:
            raise NotFoundError(f"{collection} record not found: {old_id}")

        rebuilt = {}
        for rid, existing in coll.records.items():
            if rid == old_id:
                rebuilt[record.id] = record
            elif rid != record.id:
                rebuilt[rid] = existing
        coll.records = rebuilt

        self._commit(collection)

    def remove(self, collection: str, record_id: str) -> bool:
        """
        Delete a record.

        Returns:
            True if a record was removed
        """
        coll = self._collection(collection)
        if coll.records.pop(record_id, None) is None:
            return False
        self._commit(collection)
        return True

    def position(self, collection: str, record_id: str) -> Optional[int]:
        """Index of a record in insertion order, or None."""
        for index, rid in enumerate(self._collection(collection).records):
            if rid == record_id:
                return index
        return None

    def trim(self, collection: str, keep: int) -> int:
        """
        Drop the oldest records so at most `keep` remain.

        Returns:
            Number of records removed
        """
        coll = self._collection(collection)
        excess = len(coll.records) - max(0, keep)
        if excess <= 0:
            return 0
        coll.records = dict(list(coll.records.items())[excess:])
        self._commit(collection)
        return excess

    def clear(self, collection: str) -> None:
        coll = self._collection(collection)
        coll.records = {}
        self._commit(collection)

    def _commit(self, collection: str) -> None:
        """Persist the collection snapshot, then notify listeners."""
        coll = self._collections[collection]
        key = self.storage_key(collection)
        try:
            payload = json.dumps(
                [record.model_dump(mode="json") for record in coll.records.values()]
            )
            self._backend.set(key, payload)
        except LocalPersistenceError as e:
            logger.error("collection_persist_failed", collection=collection, error=str(e))
            raise
        except (TypeError, ValueError) as e:
            logger.error("collection_serialize_failed", collection=collection, error=str(e))
            raise LocalPersistenceError(f"Failed to serialize {collection}: {e}") from e
        finally:
            self._notify(collection)
