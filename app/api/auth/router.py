"""Administrator authentication routes.

A single shared admin password (``ADMIN_PASSWORD``) unlocks the review
console; the admin id given at login becomes the token subject and is
recorded as the approver on every request the admin resolves.
"""

from functools import lru_cache

from fastapi import APIRouter, HTTPException, status

from app.config.logger import app_logger
from app.config.settings import settings
from app.utils.responses import (
    SuccessResponse,
    success_response,
)
from app.utils.passwords import hash_password, verify_password
from app.utils.local_tokens import ADMIN_ROLE, create_local_token
from app.api.auth.schemas import (
    AdminLoginRequest,
    TokenResponse,
)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


@lru_cache(maxsize=1)
def _admin_password_hash() -> str:
    return hash_password(settings.ADMIN_PASSWORD)


@router.post("/admin/login", response_model=SuccessResponse[TokenResponse])
async def admin_login(request: AdminLoginRequest):
    """Authenticate an administrator and return an access token."""
    try:
        admin_id = request.admin_id.strip()
        if not admin_id or not verify_password(request.password, _admin_password_hash()):
            app_logger.warning(f"Failed admin login attempt for '{request.admin_id}'")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid admin id or password"
            )

        access_token = create_local_token(admin_id, role=ADMIN_ROLE)
        app_logger.info(f"Administrator logged in: {admin_id}")

        token_response = TokenResponse(
            access_token=access_token,
            token_type="bearer",
            expires_in=settings.LOCAL_AUTH_TOKEN_EXP_SECONDS,
            admin_id=admin_id,
        )

        return success_response(
            data=token_response,
            message="Login successful"
        )

    except HTTPException:
        raise
    except Exception as e:
        app_logger.error(f"Admin login failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Login failed: {str(e)}"
        )
