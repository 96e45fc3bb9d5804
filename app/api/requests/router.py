"""Access request endpoints: submission, admin review and status polling."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_coordinator
from app.api.requests.schemas import SubmitAccessRequest, SubmitAccessResponse
from app.config.logger import app_logger
from app.models.access_request import AccessRequest, RequestStatus
from app.services.coordinator import AccessCoordinator
from app.utils.auth import require_admin
from app.utils.errors import CoordinatorError
from app.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/requests", tags=["requests"])


@router.post("", response_model=SuccessResponse[SubmitAccessResponse], status_code=status.HTTP_201_CREATED)
async def submit_request(
    request: SubmitAccessRequest,
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Submit a pending access request for admin review."""
    try:
        request_id = await coordinator.ledger.submit(
            subject_id=request.subject_id,
            resource_url=request.resource_url,
            duration_minutes=request.duration_minutes,
            duration_kind=request.duration_kind,
        )
        return success_response(
            data=SubmitAccessResponse(request_id=request_id),
            message="Access request submitted"
        )

    except (HTTPException, CoordinatorError):
        raise
    except Exception as e:
        app_logger.error(f"Submit request failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to submit request: {str(e)}"
        )


@router.get("", response_model=SuccessResponse[List[AccessRequest]])
async def list_requests(
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    subject: Optional[str] = Query(default=None, description="Substring of the subject id"),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """List requests, newest first."""
    requests = await coordinator.ledger.list_all(status=status_filter, subject_contains=subject)
    return success_response(data=requests, message=f"Retrieved {len(requests)} request(s)")


@router.get("/{request_id}", response_model=SuccessResponse[AccessRequest])
async def get_request(
    request_id: str,
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Current state of one request, polled by the request form."""
    request = await coordinator.ledger.get(request_id)
    return success_response(data=request, message="Request retrieved")


@router.post("/{request_id}/approve", response_model=SuccessResponse[AccessRequest])
async def approve_request(
    request_id: str,
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Approve a pending request and open its access session.

    Responds 409 with the current status if the request is already resolved.
    """
    try:
        approved = await coordinator.ledger.approve(request_id, admin_id)
        return success_response(data=approved, message="Request approved")

    except (HTTPException, CoordinatorError):
        raise
    except Exception as e:
        app_logger.error(f"Approve request {request_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to approve request: {str(e)}"
        )


@router.post("/{request_id}/deny", response_model=SuccessResponse[AccessRequest])
async def deny_request(
    request_id: str,
    admin_id: str = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Deny a pending request."""
    try:
        denied = await coordinator.ledger.deny(request_id, admin_id)
        return success_response(data=denied, message="Request denied")

    except (HTTPException, CoordinatorError):
        raise
    except Exception as e:
        app_logger.error(f"Deny request {request_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to deny request: {str(e)}"
        )
