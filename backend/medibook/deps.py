import logging
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .models import User, UserRole
from .utils.auth import decode_access_token, parse_bearer

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}

STAFF_ROLES = frozenset({UserRole.STAFF, UserRole.ADMIN})


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def _user_from_token(token: str, session: AsyncSession) -> tuple[int, str]:
    settings = get_settings()
    try:
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid or expired token") from exc

    try:
        role = await session.scalar(select(User.role).where(User.id == user_id))
    except ProgrammingError as exc:
        await session.rollback()
        logger.error("user lookup failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user store unavailable") from exc
    # Close the autobegun read so handlers can open their own `session.begin()`.
    await session.commit()
    if role is None:
        raise _unauthorized("unknown user")
    return user_id, role


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    token = parse_bearer(authorization)
    if token is None:
        raise _unauthorized("bearer token required")
    user_id, _ = await _user_from_token(token, session)
    return user_id


async def get_staff_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    """Like `get_current_user_id`, but only staff and admin accounts pass."""
    token = parse_bearer(authorization)
    if token is None:
        raise _unauthorized("bearer token required")
    user_id, role = await _user_from_token(token, session)
    if role not in STAFF_ROLES:
        logger.info("user %s with role %s refused staff access", user_id, role)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff role required")
    return user_id


async def get_optional_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int | None:
    """Anonymous callers get None; a token that is present must still be valid."""
    if authorization is None:
        return None
    token = parse_bearer(authorization)
    if token is None:
        raise _unauthorized("malformed authorization header")
    user_id, _ = await _user_from_token(token, session)
    return user_id


def extract_version(if_match: str | None, payload_version: int | None) -> int | None:
    """Expected record version: `If-Match` (`"3"` or `W/"3"`) wins over the body; None when neither is sent."""
    if if_match is not None:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
        try:
            version = int(raw)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header") from exc
    else:
        version = payload_version
    if version is not None and version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
    return version
