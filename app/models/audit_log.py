"""Audit log events (append-only, one variant per event kind).

Every event shares the common envelope (id, timestamp, subject, resource,
details) and carries a ``type`` discriminant selecting its payload fields.
Unknown kinds fail validation instead of being stored as free-form blobs.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class AuditEventType(str, Enum):
    BLOCKED = "blocked"
    REQUEST = "request"
    APPROVAL = "approval"
    DENIAL = "denial"
    SESSION_EXPIRED = "session_expired"
    DEVICE_REGISTERED = "device_registered"
    DEVICE_REMOVED = "device_removed"


class AuditEventBase(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    subject_id: Optional[str] = None
    resource_url: Optional[str] = None
    details: str = ""

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class BlockedActionEvent(AuditEventBase):
    """Copy/cut/paste/selection attempt stopped by the enforcement front-end."""

    type: Literal["blocked"] = "blocked"
    action: str
    cell_range: Optional[str] = None
    data_preview: Optional[str] = None


class RequestEvent(AuditEventBase):
    type: Literal["request"] = "request"
    request_id: str
    duration_minutes: int
    duration_kind: str


class ApprovalEvent(AuditEventBase):
    type: Literal["approval"] = "approval"
    request_id: str
    approver_id: str
    duration_minutes: int
    expires_at: datetime


class DenialEvent(AuditEventBase):
    type: Literal["denial"] = "denial"
    request_id: str
    approver_id: str


class SessionExpiredEvent(AuditEventBase):
    type: Literal["session_expired"] = "session_expired"
    request_id: str


class DeviceRegisteredEvent(AuditEventBase):
    type: Literal["device_registered"] = "device_registered"
    device_id: str
    display_email: Optional[str] = None
    reactivated: bool = False


class DeviceRemovedEvent(AuditEventBase):
    type: Literal["device_removed"] = "device_removed"
    device_id: str
    display_email: Optional[str] = None
    last_seen: datetime


AuditEvent = Annotated[
    Union[
        BlockedActionEvent,
        RequestEvent,
        ApprovalEvent,
        DenialEvent,
        SessionExpiredEvent,
        DeviceRegisteredEvent,
        DeviceRemovedEvent,
    ],
    Field(discriminator="type"),
]

audit_event_adapter: TypeAdapter = TypeAdapter(AuditEvent)


def parse_audit_event(data: Dict[str, Any]) -> AuditEvent:
    """Validate a raw event dict into its typed variant.

    Raises:
        pydantic.ValidationError: If ``type`` is missing or unknown, or the payload is invalid
    """
    return audit_event_adapter.validate_python(data)
