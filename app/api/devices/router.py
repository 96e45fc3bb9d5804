"""Device presence endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_coordinator
from app.api.devices.schemas import HeartbeatRequest, HeartbeatResponse
from app.config.logger import app_logger
from app.models.device import Device, DeviceStatus
from app.services.coordinator import AccessCoordinator
from app.services.device_registry import derive_device_id
from app.utils.auth import require_admin
from app.utils.errors import CoordinatorError
from app.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/devices", tags=["devices"])


@router.post("/heartbeat", response_model=SuccessResponse[HeartbeatResponse], status_code=status.HTTP_202_ACCEPTED)
async def heartbeat(
    request: HeartbeatRequest,
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Record a presence signal. Accepted even if it could not be stored."""
    device_id = request.device_id or derive_device_id(
        request.subject_id, request.fingerprint, coordinator.clock()
    )
    outcome = await coordinator.devices.heartbeat(device_id, request.subject_id, request.profile())
    return success_response(
        data=HeartbeatResponse(
            device_id=device_id,
            outcome=outcome,
            heartbeat_interval_seconds=coordinator.config.HEARTBEAT_INTERVAL_SECONDS,
        ),
        message="Heartbeat accepted"
    )


@router.get("", response_model=SuccessResponse[List[Device]])
async def list_devices(
    status_filter: Optional[DeviceStatus] = Query(default=None, alias="status"),
    subject: Optional[str] = Query(default=None, description="Substring of the subject id"),
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Device roster, most recently seen first."""
    devices = await coordinator.devices.list(status=status_filter, subject_contains=subject)
    return success_response(data=devices, message=f"Retrieved {len(devices)} device(s)")


@router.post("/{device_id}/reinstate", response_model=SuccessResponse[Device])
async def reinstate_device(
    device_id: str,
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Return a removed device to active."""
    try:
        device = await coordinator.devices.reinstate(device_id, admin_id)
        return success_response(data=device, message="Device reinstated")

    except (HTTPException, CoordinatorError):
        raise
    except Exception as e:
        app_logger.error(f"Reinstate device {device_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to reinstate device: {str(e)}"
        )
