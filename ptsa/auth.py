"""
Request identity.

Sign-in is handled by the external auth provider; requests reach this
service carrying a signed bearer token whose ``sub`` claim is the provider's
user id. This module verifies the token and loads the matching ``User`` row.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ptsa.config import settings
from ptsa.constants.roles import is_manager
from ptsa.database import get_db
from ptsa.exceptions import AuthenticationError, AuthorizationError
from ptsa.models.user import User

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})

    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (user id) in token data.")

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """Return the token's subject, or None when the token is unusable."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        logger.info("Token expired")
        return None
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {str(e)}")
        return None

    subject = payload.get("sub")
    if not subject:
        logger.warning("Token is missing 'sub' claim")
        return None
    return str(subject)


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get("access_token")


async def get_current_user_id(request: Request) -> Optional[str]:
    """Dependency: the authenticated user id, or None for anonymous requests."""
    token = _extract_token(request)
    if not token:
        return None
    return decode_access_token(token)


def require_user_id(user_id: Optional[str], message: str = "Unauthorized") -> str:
    if not user_id:
        raise AuthenticationError(message)
    return user_id


async def get_user(db: AsyncSession, user_id: Optional[str]) -> Optional[User]:
    if not user_id:
        return None
    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    return result.scalars().first()


async def get_user_role(db: AsyncSession, user_id: Optional[str]) -> Optional[str]:
    user = await get_user(db, user_id)
    return user.role if user else None


async def get_current_user(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency: the authenticated ``User``; 401 when absent or unknown."""
    user = await get_user(db, require_user_id(user_id))
    if user is None:
        raise AuthenticationError()
    return user


async def require_manager(
    db: AsyncSession,
    user_id: Optional[str],
    message: str = "Forbidden",
) -> User:
    """Return the caller if they are an admin or board member, else 401/403."""
    require_user_id(user_id)
    user = await get_user(db, user_id)
    if user is None or not is_manager(user.role):
        raise AuthorizationError(message)
    return user


async def require_role(
    db: AsyncSession,
    user_id: Optional[str],
    roles: set[str] | frozenset[str],
    message: str = "Forbidden",
) -> User:
    require_user_id(user_id)
    user = await get_user(db, user_id)
    if user is None or user.role not in roles:
        raise AuthorizationError(message)
    return user
