"""
Unit tests for the notification badge
"""
from types import SimpleNamespace

import pytest

from app.models.device import DeviceProfile
from app.services.notifications import NotificationSurface
from app.services.scheduler import SweepScheduler

PROFILE = DeviceProfile(browser="Firefox 133", os="Windows 11")


@pytest.fixture
def surface(ledger, registry):
    return NotificationSurface(ledger, registry)


class TestBadge:
    @pytest.mark.asyncio
    async def test_empty_badge(self, surface):
        badge, changed = await surface.badge()

        assert badge.count == 0
        assert badge.text == ""
        assert badge.source == "pending_requests"
        assert changed

    @pytest.mark.asyncio
    async def test_pending_requests_counted(self, surface, ledger):
        await ledger.submit("a@example.com", "https://sheet/1", 30)
        await ledger.submit("b@example.com", "https://sheet/2", 30)

        badge, _ = await surface.badge()

        assert (badge.count, badge.text, badge.source) == (2, "2", "pending_requests")
        assert badge.color == "#ea4335"

    @pytest.mark.asyncio
    async def test_removed_devices_take_precedence(self, surface, ledger, registry, clock):
        await ledger.submit("a@example.com", "https://sheet/1", 30)
        await registry.heartbeat("dev-1", "a@example.com", PROFILE)
        clock.advance(minutes=61)
        await registry.sweep_removed()

        badge, _ = await surface.badge()

        assert (badge.count, badge.source) == (1, "removed_devices")

    @pytest.mark.asyncio
    async def test_changed_compares_with_what_caller_saw(self, surface, ledger):
        badge, changed = await surface.badge(last_count=0)
        assert badge.count == 0
        assert not changed

        await ledger.submit("a@example.com", "https://sheet/1", 30)
        badge, changed = await surface.badge(last_count=0, last_source="pending_requests")
        assert badge.count == 1
        assert changed

        _, changed = await surface.badge(last_count=1, last_source="removed_devices")
        assert changed

    @pytest.mark.asyncio
    async def test_publish_tracks_last_published(self, surface, ledger):
        _, changed = await surface.publish()
        assert changed
        _, changed = await surface.publish()
        assert not changed

        await ledger.submit("a@example.com", "https://sheet/1", 30)
        badge, changed = await surface.publish()
        assert changed
        assert surface.last_published == badge

    @pytest.mark.asyncio
    async def test_background_refresh_does_not_hide_change_from_poller(self, surface, ledger):
        scheduler = SweepScheduler(SimpleNamespace(notifications=surface))
        seen, _ = await surface.badge()

        await ledger.submit("a@example.com", "https://sheet/1", 30)
        refreshed = await scheduler.refresh_badge()
        badge, changed = await surface.badge(last_count=seen.count, last_source=seen.source)

        assert refreshed.count == 1
        assert badge.count == 1
        assert changed

    @pytest.mark.asyncio
    async def test_store_failure_counts_as_zero(self, surface, ledger, store):
        await ledger.submit("a@example.com", "https://sheet/1", 30)
        store.fail_reads = True

        badge, _ = await surface.badge()

        assert badge.count == 0
