"""Device heartbeat schemas."""

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.models.device import DeviceProfile
from app.services.device_registry import HeartbeatOutcome


class HeartbeatRequest(DeviceProfile):
    """Presence signal from a client installation.

    New installations may send only ``fingerprint``; the derived ``device_id``
    is returned and must be sent on later heartbeats.
    """

    subject_id: str = Field(..., min_length=1, description="User identity of the installation")
    device_id: Optional[str] = Field(default=None, description="Id returned by the first heartbeat")
    fingerprint: Optional[str] = Field(default=None, description="Client fingerprint, used when device_id is unknown")

    @model_validator(mode="after")
    def _needs_identity(self):
        if not self.device_id and not self.fingerprint:
            raise ValueError("Either device_id or fingerprint is required")
        return self

    def profile(self) -> DeviceProfile:
        return DeviceProfile(
            display_email=self.display_email,
            browser=self.browser,
            os=self.os,
            network_address=self.network_address,
        )

    model_config = {"json_schema_extra": {"example": {
        "subject_id": "analyst@example.com",
        "device_id": "analyst@example.com_9f2c4e_1730640000000",
        "display_email": "analyst@example.com",
        "browser": "Chrome 131",
        "os": "macOS 15",
        "network_address": "203.0.113.7"
    }}}


class HeartbeatResponse(BaseModel):
    device_id: str
    outcome: HeartbeatOutcome
    heartbeat_interval_seconds: int = Field(..., description="Cadence the client should report at")
