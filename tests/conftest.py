"""
Shared fixtures.

Everything runs against the in-memory backend, the in-memory remote store
and a manual connectivity signal. Time is frozen at 2025-01-22 10:00.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from kakeibo.audit import AuditLogger
from kakeibo.config import Settings, get_settings
from kakeibo.orchestrator import COLLECTION_MODELS
from kakeibo.services.connectivity import ConnectivityGate, ManualConnectivitySignal
from kakeibo.services.remote import InMemoryRemoteStore
from kakeibo.services.storage import InMemoryKeyValueBackend, LocalRecordStore
from kakeibo.sync import SyncEngine, SyncQueue


NOW = datetime(2025, 1, 22, 10, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class GatedRemoteStore(InMemoryRemoteStore):
    """Remote store whose create/update wait until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _hold(self):
        self.entered.set()
        await self.release.wait()

    async def create(self, expense):
        await self._hold()
        return await super().create(expense)

    async def update(self, expense_id, patch):
        await self._hold()
        return await super().update(expense_id, patch)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from the developer's environment."""
    for name in (
        "KAKEIBO_STORAGE_BACKEND",
        "KAKEIBO_STORAGE_DIRECTORY",
        "KAKEIBO_SCHEDULE_CLAMP_MONTH_END",
        "KAKEIBO_SYNC_REMOTE_MAX_ATTEMPTS",
        "KAKEIBO_SYNC_REPLAY_ON_START",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def backend():
    return InMemoryKeyValueBackend()


@pytest.fixture
def store(backend):
    return LocalRecordStore(backend, COLLECTION_MODELS, namespace="test")


@pytest.fixture
def signal():
    return ManualConnectivitySignal(online=True)


@pytest.fixture
def gate(signal):
    return ConnectivityGate(signal)


@pytest.fixture
def remote(clock):
    return InMemoryRemoteStore(clock=clock)


@pytest.fixture
def engine(store, remote, gate, settings, clock):
    return SyncEngine(
        store,
        remote,
        gate,
        queue=SyncQueue(store, clock=clock),
        audit_logger=AuditLogger(),
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def gated_remote(clock):
    return GatedRemoteStore(clock=clock)


@pytest.fixture
def gated_engine(store, gated_remote, gate, settings, clock):
    return SyncEngine(
        store,
        gated_remote,
        gate,
        queue=SyncQueue(store, clock=clock),
        audit_logger=AuditLogger(),
        settings=settings,
        clock=clock,
    )
