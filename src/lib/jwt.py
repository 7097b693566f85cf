"""JWT token generation and validation utilities.

Tokens are issued by the identity service and verified here with the shared
secret from settings. The payload carries the user id in the ``id`` claim
plus optional ``role`` and profile claims; identity extraction lives in
src.api.dependencies.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from src.lib.settings import settings


def create_access_token(
    user_id: str,
    role: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    **profile,
) -> str:
    """Create a JWT access token for a user.

    Used by tests and local tooling; production tokens come from the
    identity service with the same claim layout.

    Args:
        user_id: User identifier (stored in the 'id' claim)
        role: Optional role claim (admin, user, seller)
        expires_delta: Optional custom expiration time
        **profile: Extra claims such as firstName, lastName, avatar

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_access_token("123e4567-e89b-12d3-a456-426614174000", "admin")
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expiration_minutes)

    now = datetime.now(timezone.utc)

    payload = {
        "id": user_id,
        "iat": now,
        "exp": now + expires_delta,
        **profile,
    }
    if role is not None:
        payload["role"] = role

    return jwt.encode(
        payload,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Args:
        token: JWT token string to verify

    Returns:
        Decoded token payload with claims

    Raises:
        InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )

