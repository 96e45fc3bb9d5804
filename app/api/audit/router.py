"""Audit log endpoints: event intake from clients and the admin audit view."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError

from app.api.audit.schemas import RecordEventResponse
from app.api.deps import get_coordinator
from app.config.logger import app_logger
from app.models.audit_log import AuditEvent, AuditEventType, parse_audit_event
from app.services.coordinator import AccessCoordinator
from app.utils.auth import require_admin
from app.utils.errors import ValidationError
from app.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/audit", tags=["audit"])


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.post("/events", response_model=SuccessResponse[RecordEventResponse], status_code=status.HTTP_202_ACCEPTED)
async def record_event(
    event: Dict[str, Any] = Body(..., examples=[{
        "type": "blocked",
        "subject_id": "analyst@example.com",
        "resource_url": "https://docs.google.com/spreadsheets/d/abc123",
        "action": "copy",
        "cell_range": "A1:C20",
        "details": "Copy blocked",
    }]),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Queue an audit event; it is persisted with the next batch."""
    try:
        parsed = parse_audit_event(event)
    except PydanticValidationError as e:
        app_logger.warning(f"Rejected audit event of type {event.get('type')!r}")
        raise ValidationError("Invalid audit event", detail=str(e))

    coordinator.audit.record(parsed)
    return success_response(
        data=RecordEventResponse(
            event_id=parsed.id,
            type=parsed.type,
            queued=coordinator.audit.queued_count,
        ),
        message="Event accepted"
    )


@router.get("/events", response_model=SuccessResponse[List[AuditEvent]])
async def query_events(
    event_type: Optional[AuditEventType] = Query(default=None, alias="type"),
    subject: Optional[str] = Query(default=None, description="Substring of the subject id"),
    from_ts: Optional[datetime] = Query(default=None),
    to_ts: Optional[datetime] = Query(default=None),
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Filtered audit log, newest first, including events not yet flushed."""
    events = await coordinator.audit.query(
        event_type=event_type,
        subject_contains=subject,
        from_ts=_as_utc(from_ts),
        to_ts=_as_utc(to_ts),
    )
    return success_response(data=events, message=f"Retrieved {len(events)} event(s)")


@router.get("/export", response_model=SuccessResponse[List[AuditEvent]])
async def export_events(
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Full persisted log, oldest first, for download."""
    await coordinator.audit.flush()
    events = await coordinator.audit.export()
    app_logger.info(f"Audit log exported by {admin_id} ({len(events)} events)")
    return success_response(data=events, message=f"Exported {len(events)} event(s)")
