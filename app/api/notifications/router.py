"""Notification badge endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from app.api.deps import get_coordinator
from app.services.coordinator import AccessCoordinator
from app.services.notifications import Badge
from app.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


class BadgeResponse(Badge):
    changed: bool = Field(..., description="Whether the badge differs from the one the caller last saw")


@router.get("/badge", response_model=SuccessResponse[BadgeResponse])
async def get_badge(
    last_count: Optional[int] = Query(default=None, ge=0, description="Count the caller last displayed"),
    last_source: Optional[str] = Query(default=None, description="Source the caller last displayed"),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    badge, changed = await coordinator.notifications.badge(last_count=last_count, last_source=last_source)
    return success_response(
        data=BadgeResponse(**badge.model_dump(), changed=changed),
        message="Badge retrieved"
    )
