"""Tests for key-value backends and the local record store."""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from kakeibo.models import Expense, SyncStatus
from kakeibo.orchestrator import COLLECTION_MODELS
from kakeibo.services.storage import (
    FileKeyValueBackend,
    InMemoryKeyValueBackend,
    LocalPersistenceError,
    LocalRecordStore,
    NotFoundError,
    QuotaExceededError,
)


def make_expense(description="Lunch", amount="250.00", **kwargs):
    return Expense(
        description=description,
        amount=Decimal(amount),
        expense_datetime=datetime(2025, 1, 22, 13, 0),
        **kwargs,
    )


class TestInMemoryBackend:
    """Tests for the dictionary backend."""

    def test_set_get_remove(self):
        """Values round-trip and missing keys read as None."""
        backend = InMemoryKeyValueBackend()
        backend.set("k", "v")
        assert backend.get("k") == "v"
        backend.remove("k")
        assert backend.get("k") is None
        backend.remove("k")

    def test_quota_exceeded(self):
        """Writes beyond the quota raise and leave the old value."""
        backend = InMemoryKeyValueBackend(quota_bytes=10)
        backend.set("k", "12345")
        with pytest.raises(QuotaExceededError):
            backend.set("other", "1234567890")
        assert backend.keys() == ["k"]

    def test_overwrite_counts_replaced_value_once(self):
        """Replacing a value only needs room for the difference."""
        backend = InMemoryKeyValueBackend(quota_bytes=10)
        backend.set("k", "1234567890")
        backend.set("k", "0987654321")
        assert backend.used_bytes() == 10


class TestFileBackend:
    """Tests for the directory backend."""

    def test_survives_new_instance(self, tmp_path):
        """A second backend on the same directory sees earlier writes."""
        FileKeyValueBackend(tmp_path).set("kakeibo_expenses", "[]")
        assert FileKeyValueBackend(tmp_path).get("kakeibo_expenses") == "[]"

    def test_no_temp_files_left(self, tmp_path):
        """Atomic writes clean up after themselves."""
        backend = FileKeyValueBackend(tmp_path)
        backend.set("a", "1")
        backend.set("a", "2")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.json"]
        assert backend.keys() == ["a"]

    def test_invalid_key_rejected(self, tmp_path):
        """Keys cannot escape the directory."""
        backend = FileKeyValueBackend(tmp_path)
        with pytest.raises(ValueError):
            backend.set("../evil", "x")

    def test_quota(self, tmp_path):
        """The file backend enforces the same quota."""
        backend = FileKeyValueBackend(tmp_path, quota_bytes=4)
        with pytest.raises(QuotaExceededError):
            backend.set("a", "12345")
        assert backend.get("a") is None


class TestLocalRecordStore:
    """Tests for LocalRecordStore."""

    def test_put_and_get_all_in_insertion_order(self, store):
        """Records come back in the order they were added."""
        first, second = make_expense("Lunch"), make_expense("Taxi")
        store.put("expenses", first)
        store.put("expenses", second)
        assert [e.id for e in store.get_all("expenses")] == [first.id, second.id]

    def test_put_existing_keeps_position(self, store):
        """Replacing a record by id keeps its place."""
        a, b = make_expense("A1"), make_expense("B1")
        store.put("expenses", a)
        store.put("expenses", b)
        store.put("expenses", a.model_copy(update={"description": "A2"}))
        assert [e.description for e in store.get_all("expenses")] == ["A2", "B1"]

    def test_put_at_position(self, store):
        """A new record can be inserted at a given index."""
        a, b, c = make_expense("A1"), make_expense("B1"), make_expense("C1")
        store.put("expenses", a)
        store.put("expenses", c)
        store.put("expenses", b, position=1)
        assert [e.description for e in store.get_all("expenses")] == ["A1", "B1", "C1"]

    def test_replace_reassigns_id_in_place(self, store):
        """Identifier reassignment keeps the record's position."""
        a, b = make_expense("A1"), make_expense("B1")
        store.put("expenses", a)
        store.put("expenses", b)
        store.replace("expenses", a.id, a.model_copy(update={"id": "srv-1"}))
        assert [e.id for e in store.get_all("expenses")] == ["srv-1", b.id]
        assert store.get("expenses", a.id) is None

    def test_replace_missing_raises(self, store):
        """Replacing an unknown record is an error."""
        with pytest.raises(NotFoundError):
            store.replace("expenses", "nope", make_expense())

    def test_remove(self, store):
        """Remove reports whether something was deleted."""
        expense = make_expense()
        store.put("expenses", expense)
        assert store.remove("expenses", expense.id) is True
        assert store.remove("expenses", expense.id) is False
        assert store.get_all("expenses") == []

    def test_persists_across_instances(self, backend):
        """A new store over the same backend loads what was written."""
        expense = make_expense()
        LocalRecordStore(backend, COLLECTION_MODELS).put("expenses", expense)

        reloaded = LocalRecordStore(backend, COLLECTION_MODELS)
        reloaded.load()
        assert reloaded.get_all("expenses") == [expense]

    def test_uses_namespaced_key(self, backend):
        """Collections are stored under <namespace>_<collection>."""
        store = LocalRecordStore(backend, COLLECTION_MODELS, namespace="home")
        store.put("expenses", make_expense())
        assert "home_expenses" in backend.keys()
        assert isinstance(json.loads(backend.get("home_expenses")), list)

    def test_corrupt_json_is_empty_and_removed(self, backend):
        """Unparseable stored data reads as an empty collection."""
        backend.set("kakeibo_expenses", "{not json")
        store = LocalRecordStore(backend, COLLECTION_MODELS)
        assert store.get_all("expenses") == []
        assert backend.get("kakeibo_expenses") is None

    def test_invalid_records_are_empty(self, backend):
        """Well-formed JSON that fails validation is discarded too."""
        backend.set("kakeibo_expenses", json.dumps([{"description": "no amount"}]))
        store = LocalRecordStore(backend, COLLECTION_MODELS)
        assert store.get_all("expenses") == []

    def test_wrong_model_rejected(self, store):
        """A collection only accepts its registered model."""
        with pytest.raises(TypeError):
            store.put("budgets", make_expense())

    def test_unknown_collection(self, store):
        with pytest.raises(KeyError):
            store.get_all("receipts")

    def test_quota_failure_keeps_memory_and_raises(self):
        """A failed write raises but the in-memory snapshot keeps the change."""
        store = LocalRecordStore(InMemoryKeyValueBackend(quota_bytes=16), COLLECTION_MODELS)
        expense = make_expense()
        with pytest.raises(LocalPersistenceError):
            store.put("expenses", expense)
        assert store.get("expenses", expense.id) == expense

    def test_listeners_notified(self, store):
        """Subscribers hear about every change, with the collection name."""
        seen = []
        store.subscribe(seen.append)
        expense = make_expense()
        store.put("expenses", expense)
        store.remove("expenses", expense.id)
        store.unsubscribe(seen.append)
        store.put("expenses", expense)
        assert seen == ["expenses", "expenses"]

    def test_trim_keeps_newest(self, store):
        """Trim drops the oldest records."""
        records = [make_expense(f"Item {i}") for i in range(5)]
        for record in records:
            store.put("expenses", record)
        assert store.trim("expenses", 2) == 3
        assert [e.id for e in store.get_all("expenses")] == [r.id for r in records[3:]]

    def test_status_survives_reload(self, backend):
        """Sync status is part of the stored record."""
        store = LocalRecordStore(backend, COLLECTION_MODELS)
        store.put("expenses", make_expense(sync_status=SyncStatus.FAILED))
        reloaded = LocalRecordStore(backend, COLLECTION_MODELS)
        assert reloaded.get_all("expenses")[0].sync_status == SyncStatus.FAILED
