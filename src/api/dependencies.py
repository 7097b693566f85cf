"""
API dependencies for FastAPI dependency injection.

Provides database sessions, bearer-token authentication and the review
service wired to its downstream clients.
"""
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID
import enum

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from sqlalchemy.orm import Session

from src.api.middleware.error_handler import UnauthorizedException
from src.lib.db import get_db as get_db_session
from src.lib.jwt import verify_token
from src.services.review_service import ReviewService
from src.services.service_clients import (
    get_order_client,
    get_product_client,
    get_user_client,
)


# Re-export get_db for convenience
get_db = get_db_session


# Bearer scheme; missing headers are reported by get_current_identity
security = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    """Roles carried in the token's role claim."""
    ADMIN = "admin"
    USER = "user"
    SELLER = "seller"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as described by a verified bearer token."""
    id: UUID
    token: str
    role: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_verified: Optional[bool] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def identity_from_token(token: str) -> Identity:
    """
    Verify a bearer token and build the caller's identity.

    Raises:
        UnauthorizedException: token invalid, expired, or without a usable id
    """
    try:
        payload = verify_token(token)
    except ExpiredSignatureError:
        raise UnauthorizedException("Token expired")
    except InvalidTokenError:
        raise UnauthorizedException("Invalid token")

    raw_id = payload.get("id") or payload.get("sub")
    if not raw_id:
        raise UnauthorizedException("Invalid token")
    try:
        user_id = UUID(str(raw_id))
    except ValueError:
        raise UnauthorizedException("Invalid token")

    return Identity(
        id=user_id,
        token=token,
        role=payload.get("role"),
        first_name=payload.get("firstName"),
        last_name=payload.get("lastName"),
        avatar=payload.get("avatar"),
        is_verified=payload.get("isVerified"),
    )


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """
    Dependency to get the authenticated caller from the Authorization header.

    Raises:
        UnauthorizedException: 401 if the header is missing or the token is invalid
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Authorization header is missing")
    return identity_from_token(credentials.credentials)


def require_roles(*allowed_roles: Role) -> Callable:
    """
    Build a dependency that authenticates the caller and, when roles are
    given, requires the token's role to be one of them.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(Role.ADMIN))])
    """
    allowed = {role.value for role in allowed_roles}

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if allowed and identity.role not in allowed:
            raise UnauthorizedException("You are not authorized to access this resource")
        return identity

    return dependency


async def get_optional_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Raw bearer token for public routes, forwarded to downstream services.
    Empty string when the caller sent none; the token is not verified here.
    """
    if credentials is None:
        return ""
    return credentials.credentials


def get_review_service(db: Session = Depends(get_db)) -> ReviewService:
    """Get ReviewService instance bound to the request's database session."""
    return ReviewService(
        db,
        product_client=get_product_client(),
        user_client=get_user_client(),
        order_client=get_order_client(),
    )
