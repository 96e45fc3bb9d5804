"""Durable key-value store used as the coordinator's single source of truth.

Each key holds one JSON document (a whole collection such as ``requests`` or a
scalar counter) and a version number. Reads return both; ``commit`` writes
several keys at once and fails with ``StoreConflict`` if any of them moved
since the caller read it.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, TypeVar

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.logger import app_logger
from app.models.kv_entry import KVEntry
from app.utils.errors import StoreConflict, StoreUnavailable

T = TypeVar("T")

ChangeCallback = Callable[[Set[str]], None]


class StoreKeys:
    """Logical collections and counters persisted by the coordinator."""

    REQUESTS = "requests"
    SESSIONS = "sessions"
    DEVICES = "devices"
    AUDIT_LOG = "audit_log"
    REMOVED_DEVICES_COUNT = "removed_devices_count"


@dataclass(frozen=True)
class StoreEntry:
    """Value of a key together with the version it was read at (0 = absent)."""

    value: Any = None
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.version > 0


class Store(ABC):
    """Async key-value store with versioned multi-key commits and change notification."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._subscribers: List[ChangeCallback] = []

    async def get(self, key: str) -> StoreEntry:
        """Read a single key."""
        entries = await self.get_many([key])
        return entries[key]

    async def get_many(self, keys: Iterable[str]) -> Dict[str, StoreEntry]:
        """Read several keys in one consistent snapshot."""
        keys = list(keys)
        return await self._guarded(self._read(keys), f"read {keys}")

    async def set(self, key: str, value: Any) -> int:
        """Unconditionally write a key. Returns the new version."""
        versions = await self._guarded(self._write({key: value}, None), f"write '{key}'")
        self._notify({key})
        return versions[key]

    async def commit(
        self,
        writes: Dict[str, Any],
        expected_versions: Optional[Dict[str, int]] = None,
    ) -> Dict[str, int]:
        """Atomically write several keys.

        Args:
            writes: New value per key
            expected_versions: Version each key must still have (0 = must not exist)

        Returns:
            New version per written key

        Raises:
            StoreConflict: If any expected version no longer matches
            StoreUnavailable: If the backend failed or timed out
        """
        if not writes:
            return {}
        versions = await self._guarded(
            self._write(dict(writes), dict(expected_versions or {})),
            f"commit {sorted(writes)}",
        )
        self._notify(set(writes))
        return versions

    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        await self._guarded(self._delete(key), f"delete '{key}'")
        self._notify({key})

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback invoked with the changed keys after every write.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, keys: Set[str]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(set(keys))
            except Exception as e:
                app_logger.warning(f"Store change subscriber failed for {sorted(keys)}: {e}")

    async def _guarded(self, operation: Awaitable[T], description: str) -> T:
        """Bound a backend call by the store timeout and normalise its failures."""
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except StoreConflict:
            raise
        except asyncio.TimeoutError as e:
            app_logger.error(f"Store {description} timed out after {self.timeout_seconds}s")
            raise StoreUnavailable(f"Store {description} timed out") from e
        except (SQLAlchemyError, OSError) as e:
            app_logger.error(f"Store {description} failed: {e}")
            raise StoreUnavailable(f"Store {description} failed", detail=str(e)) from e

    async def ping(self) -> tuple[bool, str]:
        """Run a lightweight read against the backend."""
        try:
            await self.get_many([StoreKeys.REMOVED_DEVICES_COUNT])
            return True, f"{type(self).__name__} healthy"
        except StoreUnavailable as e:
            return False, f"{type(self).__name__} unavailable: {e.message}"

    async def close(self) -> None:
        """Release backend resources."""
        self._subscribers.clear()

    @abstractmethod
    async def _read(self, keys: List[str]) -> Dict[str, StoreEntry]:
        ...

    @abstractmethod
    async def _write(
        self,
        writes: Dict[str, Any],
        expected_versions: Optional[Dict[str, int]],
    ) -> Dict[str, int]:
        ...

    @abstractmethod
    async def _delete(self, key: str) -> None:
        ...


class MemoryStore(Store):
    """In-process store. Values are deep-copied in and out like a real backend."""

    def __init__(self, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds)
        self._data: Dict[str, StoreEntry] = {}
        self._lock = asyncio.Lock()

    async def _read(self, keys: List[str]) -> Dict[str, StoreEntry]:
        async with self._lock:
            entries = {}
            for key in keys:
                entry = self._data.get(key, StoreEntry())
                entries[key] = StoreEntry(copy.deepcopy(entry.value), entry.version)
            return entries

    async def _write(
        self,
        writes: Dict[str, Any],
        expected_versions: Optional[Dict[str, int]],
    ) -> Dict[str, int]:
        async with self._lock:
            for key, expected in (expected_versions or {}).items():
                actual = self._data.get(key, StoreEntry()).version
                if actual != expected:
                    raise StoreConflict(key, expected, actual)

            versions = {}
            for key, value in writes.items():
                version = self._data.get(key, StoreEntry()).version + 1
                self._data[key] = StoreEntry(copy.deepcopy(value), version)
                versions[key] = version
            return versions

    async def _delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)


class SQLStore(Store):
    """Store backed by the ``kv_entries`` table on an async SQLAlchemy engine."""

    def __init__(self, session_maker: async_sessionmaker, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds)
        self._session_maker = session_maker

    async def _read(self, keys: List[str]) -> Dict[str, StoreEntry]:
        async with self._session_maker() as session:
            result = await session.execute(select(KVEntry).where(KVEntry.key.in_(keys)))
            rows = {row.key: row for row in result.scalars().all()}
        return {
            key: StoreEntry(rows[key].value, rows[key].version) if key in rows else StoreEntry()
            for key in keys
        }

    async def _write(
        self,
        writes: Dict[str, Any],
        expected_versions: Optional[Dict[str, int]],
    ) -> Dict[str, int]:
        now = datetime.now(timezone.utc)
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    versions = {}
                    for key, value in writes.items():
                        if expected_versions is not None and key in expected_versions:
                            versions[key] = await self._compare_and_write(
                                session, key, value, expected_versions[key], now
                            )
                        else:
                            versions[key] = await self._upsert(session, key, value, now)

                    # Keys read but not written still have to be unchanged
                    for key, expected in (expected_versions or {}).items():
                        if key not in writes:
                            actual = await self._current_version(session, key)
                            if actual != expected:
                                raise StoreConflict(key, expected, actual)
                    return versions
            except IntegrityError as e:
                key = next(iter(writes))
                raise StoreConflict(key, 0, -1) from e

    async def _compare_and_write(
        self,
        session: AsyncSession,
        key: str,
        value: Any,
        expected: int,
        now: datetime,
    ) -> int:
        if expected == 0:
            await session.execute(
                insert(KVEntry).values(key=key, value=value, version=1, updated_at=now)
            )
            return 1

        result = await session.execute(
            update(KVEntry)
            .where(KVEntry.key == key, KVEntry.version == expected)
            .values(value=value, version=expected + 1, updated_at=now)
        )
        if result.rowcount != 1:
            raise StoreConflict(key, expected, await self._current_version(session, key))
        return expected + 1

    async def _upsert(self, session: AsyncSession, key: str, value: Any, now: datetime) -> int:
        current = await self._current_version(session, key)
        if current == 0:
            await session.execute(
                insert(KVEntry).values(key=key, value=value, version=1, updated_at=now)
            )
            return 1
        await session.execute(
            update(KVEntry)
            .where(KVEntry.key == key)
            .values(value=value, version=KVEntry.version + 1, updated_at=now)
        )
        return current + 1

    @staticmethod
    async def _current_version(session: AsyncSession, key: str) -> int:
        result = await session.execute(select(KVEntry.version).where(KVEntry.key == key))
        return result.scalar_one_or_none() or 0

    async def _delete(self, key: str) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                await session.execute(delete(KVEntry).where(KVEntry.key == key))
