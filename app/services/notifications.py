"""Single outward-facing count shown on the admin badge."""

from typing import Optional, Tuple

from pydantic import BaseModel

from app.config.logger import app_logger
from app.services.device_registry import DeviceRegistry
from app.services.request_ledger import RequestLedger
from app.utils.errors import StoreUnavailable

BADGE_COLOR = "#ea4335"


class Badge(BaseModel):
    count: int
    source: str  # "removed_devices" or "pending_requests"
    text: str
    color: str = BADGE_COLOR


class NotificationSurface:
    """Removed devices take precedence over pending requests.

    ``publish`` is the background refresh and owns ``last_published``.
    Pollers compare against the badge they last displayed instead, so a
    refresh in between never hides a change from them.
    """

    def __init__(self, ledger: RequestLedger, registry: DeviceRegistry):
        self._ledger = ledger
        self._registry = registry
        self.last_published: Optional[Badge] = None

    async def current(self) -> Badge:
        removed = await self._safe_count(self._registry.removed_count, "removed device")
        if removed > 0:
            return Badge(count=removed, source="removed_devices", text=str(removed))

        pending = await self._safe_count(self._ledger.pending_count, "pending request")
        return Badge(count=pending, source="pending_requests", text=str(pending) if pending else "")

    async def badge(
        self,
        last_count: Optional[int] = None,
        last_source: Optional[str] = None,
    ) -> Tuple[Badge, bool]:
        """Current badge and whether it differs from what the caller last saw.

        Args:
            last_count: Count the caller last displayed; None means it has seen nothing
            last_source: Source the caller last displayed, compared when given
        """
        badge = await self.current()
        if last_count is None:
            return badge, True
        changed = badge.count != last_count or (last_source is not None and badge.source != last_source)
        return badge, changed

    async def publish(self) -> Tuple[Badge, bool]:
        """Refresh ``last_published`` and report whether it moved."""
        badge = await self.current()
        changed = self.last_published != badge
        if changed:
            app_logger.info(f"Badge updated: {badge.count} ({badge.source})")
        self.last_published = badge
        return badge, changed

    @staticmethod
    async def _safe_count(counter, label: str) -> int:
        try:
            return await counter()
        except StoreUnavailable as e:
            app_logger.warning(f"Could not read {label} count for badge: {e.message}")
            return 0
