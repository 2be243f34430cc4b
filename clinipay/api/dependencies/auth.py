# clinipay/api/dependencies/auth.py
"""
Request guards: bearer-token users, active users, admins and the cron secret.

The token subject is resolved to a ``User`` in a worker thread; the session is
synchronous.
"""

import asyncio
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...auth import get_current_user as auth_get_current_user
from ...core.config import settings
from ...models.user import User
from ...repositories.user_repository import UserRepository
from .database import get_db

logger = logging.getLogger(__name__)


async def get_current_user(
    email: str = Depends(auth_get_current_user),
    db: Session = Depends(get_db),
) -> User:
    user = await asyncio.to_thread(UserRepository(db).get_by_email, email)
    if user is None:
        logger.warning(f"Token subject {email} has no user record")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Deactivated accounts keep valid tokens until expiry; refuse them here."""
    if current_user.is_active:
        return current_user
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Account is deactivated")


async def require_admin(user: User = Depends(get_current_active_user)) -> User:
    if user.is_admin:
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN, detail="Only platform admins can do this"
    )


async def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Guard for scheduler-triggered endpoints.

    When ``CRON_SECRET`` is configured the caller must send it as a bearer
    token; without it the endpoint is open (local development).
    """
    expected = settings.cron_secret.get_secret_value()
    if not expected:
        logger.warning("CRON_SECRET not configured; cron endpoint is unauthenticated")
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        logger.warning("Rejected cron request with missing or invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
