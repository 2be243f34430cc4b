"""
Bearer token handling.

Patients, doctors and admins sign in on the booking platform, which issues
HS256 JWTs whose ``sub`` is the user's email. This service only verifies those
tokens; ``create_access_token`` exists for service-to-service calls and tests.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt import PyJWTError

from .core.config import settings

logger = logging.getLogger(__name__)

oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    return cast(
        Dict[str, Any],
        jwt.decode(
            token,
            settings.secret_key.get_secret_value(),
            algorithms=[settings.algorithm],
        ),
    )


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``claims`` with an ``exp`` defaulting to ACCESS_TOKEN_EXPIRE_MINUTES."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {**claims, "exp": datetime.now(timezone.utc) + lifetime}
    return cast(
        str,
        jwt.encode(payload, settings.secret_key.get_secret_value(), algorithm=settings.algorithm),
    )


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme_optional)) -> str:
    """
    Resolve the bearer token to the caller's email.

    Raises:
        HTTPException: 401 when the token is missing, expired, badly signed
            or has no ``sub`` claim
    """
    if not token:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_access_token(token)
    except PyJWTError as e:
        logger.warning(f"Rejected bearer token: {str(e)}")
        raise _unauthorized("Could not validate credentials")

    email = payload.get("sub")
    if not isinstance(email, str) or not email:
        logger.warning("Bearer token has no subject")
        raise _unauthorized("Could not validate credentials")
    return email
