"""Authentication request and response schemas."""

from pydantic import BaseModel, Field


class AdminLoginRequest(BaseModel):
    """Request schema for administrator login."""

    admin_id: str = Field(..., min_length=1, max_length=255, description="Administrator identifier, recorded as approver")
    password: str = Field(..., description="Administrator password")

    model_config = {"json_schema_extra": {"example": {
        "admin_id": "security-lead@example.com",
        "password": "admin123"
    }}}


class TokenResponse(BaseModel):
    """Response schema for authentication tokens."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Token expiration time in seconds")
    admin_id: str = Field(..., description="Authenticated administrator id")

    model_config = {"json_schema_extra": {"example": {
        "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
        "token_type": "bearer",
        "expires_in": 3600,
        "admin_id": "security-lead@example.com"
    }}}
