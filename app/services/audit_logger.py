"""
Batched audit logging.

Events are queued in memory and committed to the ``audit_log`` key in
batches:
- immediately once the queue reaches the batch size,
- otherwise after an idle interval, using at most one pending timer,
- and unconditionally when the coordinator shuts down (best-effort).

The persisted log is a ring buffer: only the most recent entries up to the
retention limit are kept. Recording never raises; a failed flush puts the
batch back at the head of the queue and retries on the next timer.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from app.config.logger import app_logger, log_performance
from app.db.store import Store, StoreKeys
from app.db.unit_of_work import run_unit_of_work
from app.models.audit_log import AuditEvent, AuditEventType, parse_audit_event
from app.utils.errors import StoreUnavailable


class AuditLogger:
    """Queue-and-flush writer for audit events."""

    def __init__(
        self,
        store: Store,
        batch_size: int = 50,
        flush_interval_seconds: float = 2.0,
        retention_limit: int = 10000,
        max_retries: Optional[int] = None,
    ):
        self._store = store
        self.batch_size = batch_size
        self.flush_interval_seconds = flush_interval_seconds
        self.retention_limit = retention_limit
        self._max_retries = max_retries

        self._queue: List[AuditEvent] = []
        self._in_flight: List[List[AuditEvent]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._flush_lock = asyncio.Lock()
        self._closed = False

    @property
    def queued_count(self) -> int:
        """Events recorded but not yet handed to a flush."""
        return len(self._queue)

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def record(self, event: Union[AuditEvent, Dict[str, Any]]) -> Optional[AuditEvent]:
        """Queue an event for persistence. Never blocks and never raises.

        Returns:
            The queued event, or None if it was dropped
        """
        try:
            if isinstance(event, dict):
                event = parse_audit_event(event)

            self._queue.append(event)

            if len(self._queue) >= self.batch_size:
                self._cancel_timer()
                self._spawn_flush(self._take_batch())
            elif self._timer is None:
                self._start_timer()

            return event
        except PydanticValidationError as e:
            app_logger.warning(f"Dropping malformed audit event: {e.error_count()} validation error(s)")
        except Exception as e:
            app_logger.warning(f"Failed to queue audit event: {e}")
        return None

    async def flush(self) -> int:
        """Wait for flushes already in progress, then write everything still queued.

        Earlier batches land first, and any that failed are back in the queue
        by the time it is taken.

        Returns:
            Number of queued events written by this call
        """
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        self._cancel_timer()
        batch = self._take_batch()
        if not batch:
            return 0
        self._in_flight.append(batch)
        return await self._write_batch(batch)

    async def close(self) -> None:
        """Flush on teardown. Later events still queue but no timer is started."""
        self._closed = True
        await self.flush()
        if self._queue:
            app_logger.warning(f"Audit logger closed with {len(self._queue)} unflushed event(s)")

    async def query(
        self,
        event_type: Optional[Union[AuditEventType, str]] = None,
        subject_contains: Optional[str] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """Filter the audit log, newest first.

        Includes events that are queued or being flushed, so a caller reads its
        own writes before the next flush.
        """
        type_value = event_type.value if isinstance(event_type, AuditEventType) else event_type
        needle = subject_contains.lower() if subject_contains else None

        events: Dict[str, AuditEvent] = {}
        for event in await self._load_persisted():
            events[event.id] = event
        for batch in self._in_flight:
            for event in batch:
                events.setdefault(event.id, event)
        for event in self._queue:
            events.setdefault(event.id, event)

        matched = []
        for event in events.values():
            if type_value and event.type != type_value:
                continue
            if needle and not (event.subject_id and needle in event.subject_id.lower()):
                continue
            if from_ts and event.timestamp < from_ts:
                continue
            if to_ts and event.timestamp > to_ts:
                continue
            matched.append(event)

        matched.sort(key=lambda e: e.timestamp, reverse=True)
        return matched[:self.retention_limit]

    async def export(self) -> List[AuditEvent]:
        """Persisted log, oldest first."""
        return await self._load_persisted()

    async def _load_persisted(self) -> List[AuditEvent]:
        entry = await self._store.get(StoreKeys.AUDIT_LOG)
        events = []
        for raw in entry.value or []:
            try:
                events.append(parse_audit_event(raw))
            except PydanticValidationError:
                app_logger.warning(
                    f"Skipping unrecognised audit entry id={raw.get('id') if isinstance(raw, dict) else None} "
                    f"type={raw.get('type') if isinstance(raw, dict) else None}"
                )
        return events

    def _take_batch(self) -> List[AuditEvent]:
        batch, self._queue = self._queue, []
        return batch

    def _start_timer(self) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: the events wait for the next flush()
            return
        self._timer = loop.call_later(self.flush_interval_seconds, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        batch = self._take_batch()
        if batch:
            self._spawn_flush(batch)

    def _spawn_flush(self, batch: List[AuditEvent]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queue[:0] = batch
            return
        self._in_flight.append(batch)
        task = loop.create_task(self._write_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write_batch(self, batch: List[AuditEvent]) -> int:
        """Append ``batch`` to the persisted ring buffer."""
        started = time.perf_counter()
        entries = [event.model_dump(mode="json") for event in batch]
        limit = self.retention_limit

        def append(snapshot: Dict[str, Any]):
            merged = list(snapshot[StoreKeys.AUDIT_LOG] or []) + entries
            return {StoreKeys.AUDIT_LOG: merged[-limit:]}, len(entries)

        try:
            async with self._flush_lock:
                written = await run_unit_of_work(
                    self._store, [StoreKeys.AUDIT_LOG], append, max_retries=self._max_retries
                )
            log_performance("audit_flush", time.perf_counter() - started, events=written)
            return written
        except StoreUnavailable as e:
            app_logger.warning(f"Audit flush of {len(batch)} event(s) failed, requeueing: {e.message}")
            self._requeue(batch)
            return 0
        except Exception as e:
            app_logger.error(f"Unexpected error flushing {len(batch)} audit event(s), requeueing: {e}")
            self._requeue(batch)
            return 0
        finally:
            self._in_flight = [b for b in self._in_flight if b is not batch]

    def _requeue(self, batch: List[AuditEvent]) -> None:
        """Put a failed batch back ahead of newer events, within the retention limit."""
        self._queue[:0] = batch
        del self._queue[:-self.retention_limit]
        if self._timer is None:
            self._start_timer()
