"""Session endpoints for the enforcement front-end."""

from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_coordinator
from app.api.sessions.schemas import SessionCheckResponse
from app.models.access_request import AccessSession
from app.services.coordinator import AccessCoordinator
from app.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


@router.get("/check", response_model=SuccessResponse[SessionCheckResponse])
async def check_session(
    subject_id: str = Query(..., min_length=1),
    resource_url: str = Query(..., min_length=1),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Fast existence check; an unreachable store answers 'not active'."""
    active, session = await coordinator.sessions.has_active_session(subject_id, resource_url)
    return success_response(
        data=SessionCheckResponse(active=active, session=session),
        message="Access granted" if active else "No active session"
    )


@router.get("", response_model=SuccessResponse[List[AccessSession]])
async def list_sessions(coordinator: AccessCoordinator = Depends(get_coordinator)):
    sessions = await coordinator.sessions.list_sessions()
    return success_response(data=sessions, message=f"Retrieved {len(sessions)} active session(s)")
