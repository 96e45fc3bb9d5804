"""JWT token helpers for administrator authentication."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config.settings import settings

ADMIN_ROLE = "admin"


def create_local_token(subject: str, role: str = ADMIN_ROLE) -> str:
    """Create a JWT access token.

    Args:
        subject: Administrator id, used as the approver id on resolved requests
        role: Role claim checked by the admin dependency

    Returns:
        str: Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=settings.LOCAL_AUTH_TOKEN_EXP_SECONDS)
    payload = {
        "sub": subject,
        "role": role,
        "exp": exp,
        "iat": now,
    }
    return jwt.encode(payload, settings.LOCAL_AUTH_SECRET, algorithm="HS256")


def decode_local_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        ValueError: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.LOCAL_AUTH_SECRET,
            algorithms=["HS256"],
        )
    except JWTError as exc:
        raise ValueError(f"Invalid token: {exc}") from exc
