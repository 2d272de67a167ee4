"""
JWT Token Management.

HS256 access tokens issued by the identity service. The escalation
engine only needs the subject id ("sub") to evaluate the compliance gate.
"""

from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from escalation_engine.config import settings
from escalation_engine.db.models import utcnow


class TokenError(Exception):
    """Raised when token creation or validation fails."""

    pass


def create_access_token(
    subject_id: str,
    role: Optional[str] = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

    now = utcnow()
    payload = {
        "sub": str(subject_id),
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.

    Raises TokenError on any failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise TokenError(f"Invalid token: {e}") from e
    if not payload.get("sub"):
        raise TokenError("Token missing subject claim")
    return payload
