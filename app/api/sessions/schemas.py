"""Session check schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from app.models.access_request import AccessSession


class SessionCheckResponse(BaseModel):
    """Answer for the enforcement front-end."""

    active: bool = Field(..., description="Whether access is currently granted")
    session: Optional[AccessSession] = Field(default=None, description="The granting session, if any")
