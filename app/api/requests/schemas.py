"""Access request schemas."""

from pydantic import BaseModel, Field

from app.models.access_request import DurationKind, RequestStatus


class SubmitAccessRequest(BaseModel):
    """Request schema for asking temporary access to a resource."""

    subject_id: str = Field(..., description="Requesting user identity (email)")
    resource_url: str = Field(..., description="Resource the exception applies to")
    duration_minutes: int = Field(..., description="Requested access length in minutes")
    duration_kind: DurationKind = Field(
        default=DurationKind.PRESET,
        description="'preset' for a console choice, 'custom' for a free-form value (1-1440 minutes)",
    )

    model_config = {"json_schema_extra": {"example": {
        "subject_id": "analyst@example.com",
        "resource_url": "https://docs.google.com/spreadsheets/d/abc123",
        "duration_minutes": 30,
        "duration_kind": "preset"
    }}}


class SubmitAccessResponse(BaseModel):
    request_id: str = Field(..., description="Id to poll for the decision")
    status: RequestStatus = Field(default=RequestStatus.PENDING)
