"""JWT verification dependency for Supabase Auth."""

from __future__ import annotations

import logging

import jwt
from fastapi import Header, HTTPException, status

from backend.config import get_settings

logger = logging.getLogger(__name__)


async def get_current_user_id(
    authorization: str = Header(...),
) -> str:
    """Extract and verify the JWT from the Authorization header.

    Decodes the Supabase JWT and returns its subject, the Supabase user id
    that owns highlights, buckets and sync items.

    Args:
        authorization: Bearer token from the Authorization header.

    Returns:
        The Supabase user id (the token's ``sub`` claim).

    Raises:
        HTTPException: 401 on invalid, expired, or missing token.
    """
    settings = get_settings()

    if not settings.supabase_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="SUPABASE_JWT_SECRET not configured",
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    token = authorization.removeprefix("Bearer ")

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience="authenticated",
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    sub: str | None = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub claim",
        )

    logger.debug("Authenticated user %s", sub)
    return sub
