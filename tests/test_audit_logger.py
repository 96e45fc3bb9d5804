"""
Unit tests for the batched audit logger
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.db.store import StoreKeys
from app.models.audit_log import AuditEventType, BlockedActionEvent, RequestEvent
from app.services.audit_logger import AuditLogger


def blocked(subject="analyst@example.com", **kwargs):
    return BlockedActionEvent(subject_id=subject, resource_url="https://sheet/1", action="copy", **kwargs)


async def persisted(store):
    return (await store.get(StoreKeys.AUDIT_LOG)).value or []


class TestBatching:
    """Flush triggers: batch threshold, idle interval and shutdown"""

    @pytest.mark.asyncio
    async def test_reaching_batch_size_flushes_immediately(self, store):
        audit = AuditLogger(store, batch_size=5, flush_interval_seconds=60)

        for _ in range(5):
            audit.record(blocked())

        assert audit.queued_count == 0
        assert not audit.timer_pending

        await audit.flush()
        assert len(await persisted(store)) == 5

    @pytest.mark.asyncio
    async def test_below_threshold_waits_for_idle_interval(self, store):
        audit = AuditLogger(store, batch_size=50, flush_interval_seconds=0.05)

        for _ in range(3):
            audit.record(blocked())

        assert audit.queued_count == 3
        assert audit.timer_pending
        assert await persisted(store) == []

        await asyncio.sleep(0.2)

        assert audit.queued_count == 0
        assert not audit.timer_pending
        assert len(await persisted(store)) == 3

    @pytest.mark.asyncio
    async def test_only_one_timer_is_pending(self, store):
        audit = AuditLogger(store, batch_size=50, flush_interval_seconds=60)

        audit.record(blocked())
        first_timer = audit._timer
        audit.record(blocked())
        audit.record(blocked())

        assert audit._timer is first_timer
        await audit.close()

    @pytest.mark.asyncio
    async def test_close_flushes_everything(self, store):
        audit = AuditLogger(store, batch_size=50, flush_interval_seconds=60)
        audit.record(blocked())
        audit.record(blocked())

        await audit.close()

        assert len(await persisted(store)) == 2
        assert not audit.timer_pending


class TestRetention:
    @pytest.mark.asyncio
    async def test_only_most_recent_entries_are_kept(self, store):
        audit = AuditLogger(store, batch_size=4, flush_interval_seconds=60, retention_limit=10)
        events = [audit.record(blocked(details=f"event {i}")) for i in range(25)]

        await audit.flush()

        kept = await persisted(store)
        assert [entry["id"] for entry in kept] == [event.id for event in events[-10:]]


class TestRecord:
    @pytest.mark.asyncio
    async def test_dict_input_gets_id_and_timestamp(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)

        event = audit.record({"type": "blocked", "subject_id": "a@example.com", "action": "paste"})

        assert event.id
        assert event.timestamp.tzinfo is not None
        assert audit.queued_count == 1
        await audit.close()

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected_without_raising(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)

        assert audit.record({"type": "teleport", "subject_id": "a@example.com"}) is None
        assert audit.record({"subject_id": "no type"}) is None
        assert audit.queued_count == 0


class TestQuery:
    """Filtering and read-your-writes"""

    @pytest.mark.asyncio
    async def test_round_trip_preserves_every_field(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)
        raw = {
            "id": "evt-1",
            "type": "blocked",
            "subject_id": "analyst@example.com",
            "resource_url": "https://sheet/1",
            "details": "Copy blocked",
            "action": "copy",
            "cell_range": "A1:B2",
            "data_preview": "42, 43",
        }
        audit.record({**raw, "timestamp": "2025-03-01T09:00:00+00:00"})

        before_flush = await audit.query()
        await audit.flush()
        after_flush = await audit.query()

        for result in (before_flush, after_flush):
            assert len(result) == 1
            event = result[0]
            assert event.timestamp == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
            assert event.model_dump(exclude={"timestamp"}) == raw

    @pytest.mark.asyncio
    async def test_newest_first_and_filters(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)
        base = datetime(2025, 3, 1, tzinfo=timezone.utc)
        audit.record(blocked(subject="Alice@example.com", timestamp=base))
        audit.record(RequestEvent(
            subject_id="bob@example.com",
            request_id="r1",
            duration_minutes=30,
            duration_kind="preset",
            timestamp=base + timedelta(minutes=5),
        ))
        audit.record(blocked(subject="alice@example.com", timestamp=base + timedelta(minutes=10)))
        await audit.flush()

        everything = await audit.query()
        assert [e.timestamp for e in everything] == sorted((e.timestamp for e in everything), reverse=True)

        blocked_only = await audit.query(event_type=AuditEventType.BLOCKED)
        assert {e.type for e in blocked_only} == {"blocked"}
        assert len(blocked_only) == 2

        alice = await audit.query(subject_contains="ALICE")
        assert len(alice) == 2

        window = await audit.query(from_ts=base + timedelta(minutes=1), to_ts=base + timedelta(minutes=6))
        assert [e.type for e in window] == ["request"]

    @pytest.mark.asyncio
    async def test_unrecognised_persisted_entries_are_skipped(self, store):
        good = blocked().model_dump(mode="json")
        await store.set(StoreKeys.AUDIT_LOG, [{"id": "old", "type": "legacy_kind"}, good])
        audit = AuditLogger(store, flush_interval_seconds=60)

        result = await audit.query()

        assert [e.id for e in result] == [good["id"]]

    @pytest.mark.asyncio
    async def test_export_is_oldest_first(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)
        first = audit.record(blocked(details="first"))
        second = audit.record(blocked(details="second"))
        await audit.flush()

        exported = await audit.export()

        assert [e.id for e in exported] == [first.id, second.id]


class TestFailures:
    """Store failures never escape and never lose queued events"""

    @pytest.mark.asyncio
    async def test_failed_flush_requeues_batch(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)
        store.fail_writes = True
        audit.record(blocked(details="a"))
        audit.record(blocked(details="b"))

        assert await audit.flush() == 0
        assert audit.queued_count == 2
        assert audit.timer_pending

        store.fail_writes = False
        assert await audit.flush() == 2
        assert [e["details"] for e in await persisted(store)] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_requeued_batch_stays_ahead_of_newer_events(self, store):
        audit = AuditLogger(store, batch_size=2, flush_interval_seconds=60)
        store.fail_writes = True
        audit.record(blocked(details="old-1"))
        audit.record(blocked(details="old-2"))  # threshold flush fails in the background
        await audit.flush()

        store.fail_writes = False
        audit.record(blocked(details="new"))
        await audit.flush()

        assert [e["details"] for e in await persisted(store)] == ["old-1", "old-2", "new"]

    @pytest.mark.asyncio
    async def test_query_includes_events_whose_flush_failed(self, store):
        audit = AuditLogger(store, flush_interval_seconds=60)
        store.fail_writes = True
        event = audit.record(blocked())
        await audit.flush()

        assert [e.id for e in await audit.query()] == [event.id]
        await audit.close()
