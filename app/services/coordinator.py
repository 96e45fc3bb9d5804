"""
Access-session coordinator.

Builds every component over one durable store and owns their lifecycle. The
HTTP layer and the background scheduler only ever talk to an
``AccessCoordinator`` instance kept on ``app.state``.
"""

from app.config.logger import app_logger
from app.config.settings import Settings, settings
from app.db.store import Store
from app.services.audit_logger import AuditLogger
from app.services.device_registry import DeviceRegistry
from app.services.notifications import NotificationSurface
from app.services.request_ledger import RequestLedger
from app.services.session_manager import SessionManager
from app.utils.datetime_utils import Clock, utc_now


class AccessCoordinator:
    def __init__(self, store: Store, config: Settings = settings, clock: Clock = utc_now):
        self.store = store
        self.config = config
        self.clock = clock
        retries = config.UNIT_OF_WORK_MAX_RETRIES

        self.audit = AuditLogger(
            store,
            batch_size=config.AUDIT_BATCH_SIZE,
            flush_interval_seconds=config.AUDIT_FLUSH_INTERVAL_SECONDS,
            retention_limit=config.AUDIT_RETENTION_LIMIT,
            max_retries=retries,
        )
        self.sessions = SessionManager(
            store,
            self.audit,
            cache_ttl_seconds=config.SESSION_CACHE_TTL_SECONDS,
            clock=clock,
            max_retries=retries,
        )
        self.ledger = RequestLedger(
            store,
            self.sessions,
            self.audit,
            clock=clock,
            custom_min_minutes=config.CUSTOM_DURATION_MIN_MINUTES,
            custom_max_minutes=config.CUSTOM_DURATION_MAX_MINUTES,
            max_retries=retries,
        )
        self.devices = DeviceRegistry(
            store,
            self.audit,
            clock=clock,
            removal_threshold_seconds=config.DEVICE_REMOVAL_THRESHOLD_SECONDS,
            reactivation_policy=config.DEVICE_REACTIVATION_POLICY,
            max_retries=retries,
        )
        self.notifications = NotificationSurface(self.ledger, self.devices)

        app_logger.info(
            f"Coordinator ready (store={type(store).__name__}, "
            f"reactivation={self.devices.reactivation_policy.value})"
        )

    async def close(self) -> None:
        """Flush pending audit events, then release the store."""
        try:
            await self.audit.close()
        finally:
            self.sessions.close()
            await self.store.close()
        app_logger.info("Coordinator closed")
