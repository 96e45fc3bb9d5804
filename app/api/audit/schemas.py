"""Audit log schemas."""

from pydantic import BaseModel, Field

from app.models.audit_log import AuditEventType


class RecordEventResponse(BaseModel):
    event_id: str = Field(..., description="Id assigned to the queued event")
    type: AuditEventType
    queued: int = Field(..., description="Events waiting for the next flush")
