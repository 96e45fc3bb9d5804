"""Tracked client installation."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DeviceStatus(str, Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class DeviceProfile(BaseModel):
    """Mutable descriptors reported with each heartbeat."""

    display_email: Optional[str] = Field(default=None, description="Signed-in profile email, if available")
    browser: Optional[str] = Field(default=None, description="Browser name and major version")
    os: Optional[str] = Field(default=None, description="Operating system descriptor")
    network_address: Optional[str] = Field(default=None, description="Public network address")


class Device(BaseModel):
    device_id: str
    subject_id: str
    display_email: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    network_address: Optional[str] = None
    status: DeviceStatus = DeviceStatus.ACTIVE
    first_seen: datetime
    last_seen: datetime
    removed_at: Optional[datetime] = None

    def apply_profile(self, profile: DeviceProfile) -> None:
        """Refresh descriptors, keeping previously known values for fields not reported."""
        for name, value in profile.model_dump(exclude_none=True).items():
            setattr(self, name, value)

    @property
    def descriptor(self) -> str:
        return f"{self.browser or 'Unknown browser'} on {self.os or 'Unknown OS'}"
