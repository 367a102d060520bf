"""Authentication dependency for route guards.

Validates the identity provider's HS256 session JWT from the Authorization
header and ensures a matching user row exists. The `sub` claim is the
provider's opaque user id, stored as `User.external_id`.
"""

import logging
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.core.config import Settings, get_settings
from prdigest.db.models import User
from prdigest.db.session import get_db

logger = logging.getLogger(__name__)


def _decode_session_token(token: str, settings: Settings) -> dict:
    if not settings.session_jwt_secret:
        raise JWTError("SESSION_JWT_SECRET is not configured")
    return jwt.decode(token, settings.session_jwt_secret, algorithms=["HS256"])


async def get_current_user(
    request: Request,
    authorization: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> uuid.UUID:
    """Validate the bearer session token and return the local user id.

    On first sight of a subject a user row is inserted so downstream
    foreign keys always resolve.
    """
    if not authorization.startswith("Bearer "):
        logger.warning("auth: missing or malformed Authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    token = authorization.removeprefix("Bearer ").strip()
    try:
        payload = _decode_session_token(token, settings)
    except JWTError as exc:
        logger.warning("auth: JWT verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No sub claim",
        )

    result = await db.execute(select(User).where(User.external_id == sub))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            external_id=sub,
            email=payload.get("email", ""),
            username=payload.get("name", ""),
            image_url=payload.get("picture", ""),
        )
        db.add(user)
        await db.flush()
        logger.info("auth: created user row for new subject")

    # Read by the rate limiter key function.
    request.state.user_id = user.id
    return user.id


async def get_optional_user(
    request: Request,
    authorization: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[uuid.UUID]:
    """Like get_current_user, but anonymous requests resolve to None.

    Used by browser redirects (the GitHub install callback) that may
    arrive without an Authorization header. A header that is present but
    invalid is still rejected.
    """
    if not authorization:
        return None
    return await get_current_user(request, authorization, db, settings)
