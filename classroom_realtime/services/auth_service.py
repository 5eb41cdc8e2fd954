"""
Credential verification for sockets and REST calls.

Tokens are HS256 JWTs issued by the main application's login flow with the
claims {"id": <user id>, "role": <role>, "exp": ...}. This service only
verifies them; it never issues sessions of its own.

- Sockets carry the token in the first frame (the auth payload), not in a
  cookie or header.
- REST calls carry it as `Authorization: Bearer <token>`.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from pydantic import ValidationError

from classroom_realtime.core.config import settings
from classroom_realtime.core.errors import AuthError, AuthorizationError
from classroom_realtime.core.logging import get_logger
from classroom_realtime.models.models import Identity

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_token(user_id: str, role: str, expires_in: int = 3600) -> str:
    """Sign a token the same way the main application does. Used by tooling and tests."""
    claims = {
        "id": str(user_id),
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def authenticate(token: Optional[str]) -> Identity:
    """
    Verify a signed credential and return the identity it carries.

    Raises:
        AuthError: token missing, badly signed, expired or without id/role
    """
    if not token:
        raise AuthError("Authentication error: no token")

    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.info("Rejected credential: %s", e)
        raise AuthError("Authentication error: invalid token") from e

    try:
        return Identity(user_id=str(claims["id"]), role=claims["role"])
    except (KeyError, ValidationError) as e:
        logger.info("Rejected credential with bad claims")
        raise AuthError("Authentication error: invalid claims") from e


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """
    Get current authenticated user from the bearer token.
    Use as dependency for protected endpoints.
    """
    if credentials is None:
        raise AuthError("Not authorized, no token")
    return authenticate(credentials.credentials)


async def require_elevated(current_user: Identity = Depends(get_current_user)) -> Identity:
    """Dependency for admin/teacher-only endpoints."""
    if not current_user.is_elevated:
        raise AuthorizationError(f"User role '{current_user.role}' is not authorized to access this route")
    return current_user
