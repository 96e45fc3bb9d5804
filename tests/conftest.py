"""Shared fixtures: in-memory store, controllable clock and service wiring."""

import os

# Must be set before app.config.settings is imported anywhere
os.environ["STORE_BACKEND"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from app.db.store import MemoryStore, StoreEntry
from app.services.audit_logger import AuditLogger
from app.services.device_registry import DeviceRegistry
from app.services.request_ledger import RequestLedger
from app.services.session_manager import SessionManager
from app.utils.errors import StoreUnavailable

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FlakyStore(MemoryStore):
    """MemoryStore whose reads or writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False
        self.write_attempts = 0

    async def _read(self, keys: List[str]) -> Dict[str, StoreEntry]:
        if self.fail_reads:
            raise StoreUnavailable("read failed")
        return await super()._read(keys)

    async def _write(self, writes: Dict[str, Any], expected_versions: Optional[Dict[str, int]]) -> Dict[str, int]:
        self.write_attempts += 1
        if self.fail_writes:
            raise StoreUnavailable("write failed")
        return await super()._write(writes, expected_versions)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def audit(store):
    return AuditLogger(store, batch_size=50, flush_interval_seconds=0.05, retention_limit=10000)


@pytest.fixture
def sessions(store, audit, clock):
    manager = SessionManager(store, audit, cache_ttl_seconds=5.0, clock=clock)
    yield manager
    manager.close()


@pytest.fixture
def ledger(store, sessions, audit, clock):
    return RequestLedger(store, sessions, audit, clock=clock)


@pytest.fixture
def registry(store, audit, clock):
    return DeviceRegistry(store, audit, clock=clock, removal_threshold_seconds=3600)
