"""Models module - persisted records and the SQLModel table backing the store."""

from app.models.kv_entry import KVEntry
from app.models.access_request import AccessRequest, AccessSession, DurationKind, RequestStatus
from app.models.device import Device, DeviceProfile, DeviceStatus
from app.models.audit_log import AuditEvent, AuditEventType, parse_audit_event

__all__ = [
    "KVEntry",
    "AccessRequest",
    "AccessSession",
    "DurationKind",
    "RequestStatus",
    "Device",
    "DeviceProfile",
    "DeviceStatus",
    "AuditEvent",
    "AuditEventType",
    "parse_audit_event",
]
