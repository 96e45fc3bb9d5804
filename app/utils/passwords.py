"""Password hashing helpers for the admin console login."""

import hashlib
import hmac
import secrets
from typing import Optional

_ITERATIONS = 120_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Return ``salt$hexdigest`` using PBKDF2-SHA256."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), _ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, hashed: str) -> bool:
    """Constant-time comparison against a stored ``salt$hexdigest``."""
    salt, sep, _ = hashed.partition("$")
    if not sep:
        return False
    return hmac.compare_digest(hash_password(password, salt), hashed)
