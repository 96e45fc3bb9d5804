"""
Device presence tracking.

Client installations send a heartbeat every few minutes. A device that stops
reporting for longer than the removal threshold is flagged as removed by the
periodic sweep; the default threshold tolerates about a dozen missed
heartbeats before flagging.

The ``removed_devices_count`` counter is kept in step with the roster in the
same unit of work as every status change, so the notification badge never
has to scan the roster.
"""

import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app.config.logger import app_logger, log_performance
from app.db.store import Store, StoreKeys
from app.db.unit_of_work import run_unit_of_work
from app.models.audit_log import DeviceRegisteredEvent, DeviceRemovedEvent
from app.models.device import Device, DeviceProfile, DeviceStatus
from app.services.audit_logger import AuditLogger
from app.utils.datetime_utils import Clock, format_utc, utc_now
from app.utils.errors import NotFoundError, StoreUnavailable


class ReactivationPolicy(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class HeartbeatOutcome(str, Enum):
    REGISTERED = "registered"
    REFRESHED = "refreshed"
    REACTIVATED = "reactivated"
    HELD = "held"  # removed device reporting in under the manual policy
    FAILED = "failed"


def derive_device_id(subject_id: str, fingerprint: str, first_seen: datetime) -> str:
    """Stable id for an installation: subject, client fingerprint and first-seen millis."""
    return f"{subject_id}_{fingerprint}_{int(first_seen.timestamp() * 1000)}"


def parse_devices(raw_devices: Optional[List[Dict[str, Any]]]) -> List[Device]:
    devices = []
    for raw in raw_devices or []:
        try:
            devices.append(Device.model_validate(raw))
        except PydanticValidationError:
            app_logger.warning(f"Skipping malformed device entry: {raw!r:.200}")
    return devices


def _count_removed(raw_devices: List[Dict[str, Any]]) -> int:
    return sum(1 for raw in raw_devices if raw.get("status") == DeviceStatus.REMOVED.value)


class DeviceRegistry:
    """Heartbeat upserts, the removal sweep and the device roster."""

    def __init__(
        self,
        store: Store,
        audit: AuditLogger,
        clock: Clock = utc_now,
        removal_threshold_seconds: float = 3600,
        reactivation_policy: Union[ReactivationPolicy, str] = ReactivationPolicy.AUTO,
        max_retries: Optional[int] = None,
    ):
        self._store = store
        self._audit = audit
        self._clock = clock
        self.removal_threshold = timedelta(seconds=removal_threshold_seconds)
        self.reactivation_policy = ReactivationPolicy(reactivation_policy)
        self._max_retries = max_retries

    async def heartbeat(
        self,
        device_id: str,
        subject_id: str,
        profile: Optional[DeviceProfile] = None,
        now: Optional[datetime] = None,
    ) -> HeartbeatOutcome:
        """Record a presence signal. Best-effort: store failures are logged, not raised."""
        now = now or self._clock()
        profile = profile or DeviceProfile()
        policy = self.reactivation_policy

        def mutate(snapshot: Dict[str, Any]):
            devices = list(snapshot[StoreKeys.DEVICES] or [])
            for index, raw in enumerate(devices):
                if raw.get("device_id") != device_id:
                    continue

                device = Device.model_validate(raw)
                device.last_seen = now
                device.apply_profile(profile)

                if device.status is DeviceStatus.ACTIVE:
                    outcome = HeartbeatOutcome.REFRESHED
                elif policy is ReactivationPolicy.AUTO:
                    device.status = DeviceStatus.ACTIVE
                    device.removed_at = None
                    outcome = HeartbeatOutcome.REACTIVATED
                else:
                    outcome = HeartbeatOutcome.HELD

                devices[index] = {**raw, **device.model_dump(mode="json")}
                return self._roster_writes(devices), (outcome, device)

            device = Device(
                device_id=device_id,
                subject_id=subject_id,
                first_seen=now,
                last_seen=now,
                **profile.model_dump(exclude_none=True),
            )
            devices.append(device.model_dump(mode="json"))
            return self._roster_writes(devices), (HeartbeatOutcome.REGISTERED, device)

        try:
            outcome, device = await run_unit_of_work(
                self._store,
                [StoreKeys.DEVICES, StoreKeys.REMOVED_DEVICES_COUNT],
                mutate,
                max_retries=self._max_retries,
            )
        except StoreUnavailable as e:
            app_logger.warning(f"Heartbeat from {device_id} not recorded: {e.message}")
            return HeartbeatOutcome.FAILED
        except PydanticValidationError as e:
            app_logger.error(f"Heartbeat from {device_id} not recorded: stored entry is malformed ({e.error_count()} errors)")
            return HeartbeatOutcome.FAILED

        if outcome is HeartbeatOutcome.REGISTERED:
            app_logger.info(f"Device registered: {device_id} ({device.descriptor})")
            self._record_registration(device, now, reactivated=False)
        elif outcome is HeartbeatOutcome.REACTIVATED:
            app_logger.info(f"Removed device {device_id} reported in and was reactivated")
            self._record_registration(device, now, reactivated=True)
        elif outcome is HeartbeatOutcome.HELD:
            app_logger.warning(f"Removed device {device_id} reported in; awaiting admin reinstatement")
        return outcome

    async def sweep_removed(
        self,
        now: Optional[datetime] = None,
        removal_threshold: Optional[timedelta] = None,
    ) -> int:
        """Flag active devices whose last heartbeat is older than the threshold.

        Returns:
            Number of devices flagged by this sweep
        """
        started = time.perf_counter()
        now = now or self._clock()
        threshold = removal_threshold or self.removal_threshold

        def mutate(snapshot: Dict[str, Any]):
            devices = list(snapshot[StoreKeys.DEVICES] or [])
            flagged = []
            for index, raw in enumerate(devices):
                try:
                    device = Device.model_validate(raw)
                except PydanticValidationError:
                    continue
                if device.status is not DeviceStatus.ACTIVE or now - device.last_seen <= threshold:
                    continue
                device.status = DeviceStatus.REMOVED
                device.removed_at = now
                devices[index] = {**raw, **device.model_dump(mode="json")}
                flagged.append(device)

            if not flagged:
                return {}, []
            return self._roster_writes(devices), flagged

        flagged = await run_unit_of_work(
            self._store,
            [StoreKeys.DEVICES, StoreKeys.REMOVED_DEVICES_COUNT],
            mutate,
            max_retries=self._max_retries,
        )

        for device in flagged:
            self._audit.record(DeviceRemovedEvent(
                timestamp=now,
                subject_id=device.subject_id,
                device_id=device.device_id,
                display_email=device.display_email,
                last_seen=device.last_seen,
                details=f"Device removed: {device.descriptor} (Last seen: {format_utc(device.last_seen)})",
            ))

        if flagged:
            app_logger.warning(f"Flagged {len(flagged)} device(s) as removed")
            log_performance("device_sweep", time.perf_counter() - started, removed=len(flagged))
        return len(flagged)

    async def reinstate(self, device_id: str, admin_id: str) -> Device:
        """Return a removed device to active on an administrator's say-so.

        Raises:
            NotFoundError: If the device is unknown
            StoreUnavailable: If the change could not be committed
        """

        def mutate(snapshot: Dict[str, Any]):
            devices = list(snapshot[StoreKeys.DEVICES] or [])
            index, device = self._find(devices, device_id)
            if device.status is DeviceStatus.ACTIVE:
                return {}, (False, device)

            device.status = DeviceStatus.ACTIVE
            device.removed_at = None
            devices[index] = {**devices[index], **device.model_dump(mode="json")}
            return self._roster_writes(devices), (True, device)

        changed, device = await run_unit_of_work(
            self._store,
            [StoreKeys.DEVICES, StoreKeys.REMOVED_DEVICES_COUNT],
            mutate,
            max_retries=self._max_retries,
        )
        if changed:
            app_logger.info(f"Device {device_id} reinstated by {admin_id}")
            self._record_registration(
                device, self._clock(), reactivated=True, details=f"Reinstated by {admin_id}"
            )
        return device

    async def get(self, device_id: str) -> Device:
        entry = await self._store.get(StoreKeys.DEVICES)
        _, device = self._find(list(entry.value or []), device_id)
        return device

    async def list(
        self,
        status: Optional[Union[DeviceStatus, str]] = None,
        subject_contains: Optional[str] = None,
    ) -> List[Device]:
        """Roster, most recently seen first."""
        entry = await self._store.get(StoreKeys.DEVICES)
        devices = parse_devices(entry.value)

        if status:
            wanted = DeviceStatus(status)
            devices = [d for d in devices if d.status is wanted]
        if subject_contains:
            needle = subject_contains.lower()
            devices = [d for d in devices if needle in d.subject_id.lower()]

        return sorted(devices, key=lambda d: d.last_seen, reverse=True)

    async def removed_count(self) -> int:
        entry = await self._store.get(StoreKeys.REMOVED_DEVICES_COUNT)
        return int(entry.value or 0)

    @staticmethod
    def _roster_writes(devices: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            StoreKeys.DEVICES: devices,
            StoreKeys.REMOVED_DEVICES_COUNT: _count_removed(devices),
        }

    @staticmethod
    def _find(raw_devices: List[Dict[str, Any]], device_id: str) -> Tuple[int, Device]:
        for index, raw in enumerate(raw_devices):
            if raw.get("device_id") == device_id:
                return index, Device.model_validate(raw)
        raise NotFoundError(f"Device not found: {device_id}")

    def _record_registration(
        self, device: Device, timestamp: datetime, reactivated: bool, details: Optional[str] = None
    ) -> None:
        if details is None:
            prefix = "Device reactivated" if reactivated else "Device registered"
            details = f"{prefix}: {device.descriptor}"
        self._audit.record(DeviceRegisteredEvent(
            timestamp=timestamp,
            subject_id=device.subject_id,
            device_id=device.device_id,
            display_email=device.display_email,
            reactivated=reactivated,
            details=details,
        ))
