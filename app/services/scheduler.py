"""
Background timers for the coordinator.

Uses APScheduler on the application's event loop to run:
- the session expiry sweep,
- the device removal check (also once at startup),
- the notification badge refresh (also once at startup).
"""

from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config.logger import app_logger
from app.config.settings import Settings, settings
from app.services.coordinator import AccessCoordinator
from app.services.notifications import Badge


class SweepScheduler:
    def __init__(self, coordinator: AccessCoordinator, config: Settings = settings):
        self.coordinator = coordinator
        self.config = config
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> AsyncIOScheduler:
        """Start the scheduler on the running event loop."""
        if self._scheduler is not None:
            app_logger.warning("Scheduler is already running")
            return self._scheduler

        now = datetime.now(timezone.utc)
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        scheduler.add_job(
            self.sweep_sessions,
            trigger=IntervalTrigger(seconds=self.config.SESSION_SWEEP_INTERVAL_SECONDS),
            id="session_sweep",
            name="Expire elapsed access sessions",
            **job_defaults,
        )
        scheduler.add_job(
            self.check_devices,
            trigger=IntervalTrigger(seconds=self.config.DEVICE_REMOVAL_CHECK_INTERVAL_SECONDS),
            id="device_removal_check",
            name="Flag devices that stopped reporting",
            next_run_time=now,
            **job_defaults,
        )
        scheduler.add_job(
            self.refresh_badge,
            trigger=IntervalTrigger(seconds=self.config.BADGE_REFRESH_INTERVAL_SECONDS),
            id="badge_refresh",
            name="Refresh notification badge",
            next_run_time=now,
            **job_defaults,
        )

        scheduler.start()
        self._scheduler = scheduler
        app_logger.info(
            f"Background scheduler started. Session sweep every {self.config.SESSION_SWEEP_INTERVAL_SECONDS}s, "
            f"device check every {self.config.DEVICE_REMOVAL_CHECK_INTERVAL_SECONDS}s"
        )
        return scheduler

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            app_logger.info("Background scheduler stopped.")

    async def sweep_sessions(self) -> int:
        try:
            return await self.coordinator.sessions.sweep_expired()
        except Exception as e:
            app_logger.error(f"Session sweep failed: {e}")
            return 0

    async def check_devices(self) -> int:
        try:
            return await self.coordinator.devices.sweep_removed()
        except Exception as e:
            app_logger.error(f"Device removal check failed: {e}")
            return 0

    async def refresh_badge(self) -> Optional[Badge]:
        try:
            badge, _ = await self.coordinator.notifications.publish()
            return badge
        except Exception as e:
            app_logger.error(f"Badge refresh failed: {e}")
            return None
