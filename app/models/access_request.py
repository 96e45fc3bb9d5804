"""Access request and session records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class DurationKind(str, Enum):
    PRESET = "preset"
    CUSTOM = "custom"


class AccessRequest(BaseModel):
    """A subject's ask for temporary access to one resource.

    Never deleted: the request is the historical record of the grant after its
    session has been pruned.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    subject_id: str
    resource_url: str
    duration_minutes: int
    duration_kind: DurationKind = DurationKind.PRESET
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Set only on approval
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    # Set only on denial
    denied_by: Optional[str] = None
    denied_at: Optional[datetime] = None


class AccessSession(BaseModel):
    """The time-bound grant created when a request is approved."""

    request_id: str
    subject_id: str
    resource_url: str
    created_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now

    def matches(self, subject_id: str, resource_url: str) -> bool:
        return self.subject_id == subject_id and self.resource_url == resource_url
