"""
Auth utilities for the Career Compass API.

Validates Supabase session JWTs and extracts user_id from request context.
Outside production the X-User-Id header is accepted (tests, local tools).
"""
from dataclasses import dataclass
from typing import Optional

import jwt
import logging
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from career_compass.core.config import settings
from career_compass.core.database import get_db
from career_compass.core.errors import UnauthorizedError

logger = logging.getLogger("career_compass")


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: Optional[str] = None


def verify_session_token(token: str, secret: Optional[str] = None) -> AuthenticatedUser:
    """
    Verify a Supabase access token and extract the user identity.

    Args:
        token: JWT from Authorization header (Bearer {token})
        secret: Override for SUPABASE_JWT_SECRET

    Returns:
        AuthenticatedUser with `sub` as user_id and the `email` claim

    Raises:
        UnauthorizedError: Invalid, expired or unverifiable token
    """
    key = secret or settings.SUPABASE_JWT_SECRET
    if not key:
        logger.warning("SUPABASE_JWT_SECRET not configured, rejecting bearer token")
        raise UnauthorizedError("Unauthorized")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Expired session token")
        raise UnauthorizedError("Unauthorized")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid session token: {e}")
        raise UnauthorizedError("Unauthorized")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return AuthenticatedUser(user_id=user_id, email=payload.get("email"))


def _header_fallback_allowed() -> bool:
    return (settings.ENV or "development").lower() != "production"


def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Non-production test user ID"),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    """
    Resolve the caller.

    Priority:
    1. Bearer session token from the Authorization header
    2. X-User-Id header (non-production only)
    3. 401 Unauthorized

    After successful auth the user's profile is created if missing.
    """
    from career_compass.features.profiles.service import get_or_create_profile

    user: Optional[AuthenticatedUser] = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user = verify_session_token(auth_header[7:])
    elif x_user_id and x_user_id.strip() and _header_fallback_allowed():
        user = AuthenticatedUser(user_id=x_user_id.strip(), email=request.headers.get("X-User-Email"))

    if user is None:
        raise UnauthorizedError("Unauthorized")

    get_or_create_profile(db, user.user_id, user.email)
    request.state.user_id = user.user_id
    return user


def get_current_user_id(user: AuthenticatedUser = Depends(get_current_user)) -> str:
    return user.user_id
