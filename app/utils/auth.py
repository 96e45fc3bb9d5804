"""Administrator authentication dependencies."""

from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config.logger import app_logger
from app.utils.local_tokens import ADMIN_ROLE, decode_local_token

# HTTP Bearer token security scheme
security_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Administrator bearer token from /v1/auth/admin/login",
    auto_error=False,  # missing credentials are reported as 401, not 403
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_auth_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security_scheme),
) -> str:
    """Extract the Bearer token from the Authorization header.

    Raises:
        HTTPException: If the header or token is missing
    """
    if not credentials:
        raise _unauthorized("Missing or invalid authorization header")

    token = credentials.credentials.strip()
    if not token:
        raise _unauthorized("Missing authentication token")

    return token


async def verify_token(token: str = Depends(get_auth_token)) -> dict:
    """Decode the token and check its claims.

    Returns:
        dict: ``admin_id``, ``role`` and the raw token

    Raises:
        HTTPException: If the token is invalid, expired or missing claims
    """
    try:
        payload = decode_local_token(token)
    except ValueError as exc:
        raise _unauthorized(str(exc)) from exc

    admin_id = payload.get("sub")
    role = payload.get("role")
    if not admin_id or not role:
        raise _unauthorized("Invalid token payload")
    return {
        "admin_id": admin_id,
        "role": role,
        "token": token,
    }


async def require_admin(token_payload: dict = Depends(verify_token)) -> str:
    """Dependency for admin-only endpoints.

    Returns:
        str: The administrator id, recorded as approver on resolved requests
    """
    if token_payload["role"] != ADMIN_ROLE:
        app_logger.warning(f"Non-admin token used on admin endpoint by {token_payload['admin_id']}")
        raise _unauthorized("Administrator role required")
    return token_payload["admin_id"]


RequireAdmin = Depends(require_admin)
