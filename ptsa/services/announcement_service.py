"""
Announcement service.

Announcements are visible once ``published_at`` has passed and until
``expires_at``. Each one targets an audience; who may read which audience
is decided by role.
"""

import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_user
from ptsa.config import settings
from ptsa.constants.roles import RoleName, is_manager
from ptsa.exceptions import AuthenticationError, AuthorizationError, ResourceNotFoundError
from ptsa.models.announcement import Announcement, AnnouncementAudience
from ptsa.schemas.announcement import AnnouncementCreate, AnnouncementUpdate
from ptsa.services import email_service
from ptsa.utils.dates import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# audience -> roles allowed to read it; None means everyone, signed in or not
AUDIENCE_READERS: dict[str, frozenset[str] | None] = {
    AnnouncementAudience.ALL.value: None,
    AnnouncementAudience.MEMBERS.value: frozenset(role.value for role in RoleName),
    AnnouncementAudience.BOARD.value: frozenset({RoleName.BOARD.value, RoleName.ADMIN.value}),
    AnnouncementAudience.COMMITTEE_CHAIRS.value: frozenset(
        {RoleName.COMMITTEE_CHAIR.value, RoleName.BOARD.value, RoleName.ADMIN.value}
    ),
    AnnouncementAudience.TEACHERS.value: frozenset(
        {RoleName.TEACHER.value, RoleName.BOARD.value, RoleName.ADMIN.value}
    ),
}


def visible_audiences(role: str | None) -> list[str]:
    """Audiences a viewer with ``role`` may read (``None`` for anonymous)."""
    return [
        audience
        for audience, readers in AUDIENCE_READERS.items()
        if readers is None or (role is not None and role in readers)
    ]


def serialize(announcement: Announcement) -> dict[str, Any]:
    return {
        "id": announcement.id,
        "title": announcement.title,
        "content": announcement.content,
        "type": announcement.type,
        "audience": announcement.audience,
        "createdBy": announcement.created_by,
        "publishedAt": announcement.published_at.isoformat() if announcement.published_at else None,
        "expiresAt": announcement.expires_at.isoformat() if announcement.expires_at else None,
        "isPinned": announcement.is_pinned,
        "createdAt": announcement.created_at.isoformat() if announcement.created_at else None,
        "updatedAt": announcement.updated_at.isoformat() if announcement.updated_at else None,
    }


async def list_announcements(
    db: AsyncSession,
    viewer_role: str | None,
    type: str | None = None,
    audience: str | None = None,
    include_expired: bool = False,
    pinned_only: bool = False,
    now=None,
) -> list[Announcement]:
    now = now or utcnow()
    query = select(Announcement).where(
        Announcement.published_at.is_not(None),
        Announcement.published_at <= now,
        Announcement.audience.in_(visible_audiences(viewer_role)),
    )
    if not include_expired:
        query = query.where(or_(Announcement.expires_at.is_(None), Announcement.expires_at > now))
    if type:
        query = query.where(Announcement.type == type)
    if audience:
        query = query.where(Announcement.audience == audience)
    if pinned_only:
        query = query.where(Announcement.is_pinned.is_(True))

    query = query.order_by(Announcement.is_pinned.desc(), Announcement.published_at.desc(), Announcement.id.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_announcement(db: AsyncSession, announcement_id: int) -> Announcement:
    announcement = await db.get(Announcement, announcement_id)
    if announcement is None:
        raise ResourceNotFoundError("Announcement not found")
    return announcement


async def create_announcement(db: AsyncSession, user_id: str, data: AnnouncementCreate) -> Announcement:
    """
    Create an announcement as ``user_id``.

    Raises:
        AuthenticationError: unknown user
        AuthorizationError: caller is not admin or board
    """
    user = await get_user(db, user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if not is_manager(user.role):
        raise AuthorizationError("Unauthorized to create announcements")

    announcement = Announcement(
        title=data.title,
        content=data.content,
        type=data.type,
        audience=data.audience,
        created_by=user_id,
        published_at=to_naive_utc(data.published_at) if data.published_at else utcnow(),
        expires_at=to_naive_utc(data.expires_at) if data.expires_at else None,
        is_pinned=data.is_pinned,
    )
    db.add(announcement)
    await db.commit()
    await db.refresh(announcement)
    logger.info(f"Announcement {announcement.id} created by {user_id}")
    return announcement


async def _require_owner_or_admin(db: AsyncSession, user_id: str, announcement: Announcement, verb: str) -> None:
    user = await get_user(db, user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if announcement.created_by != user_id and user.role != RoleName.ADMIN.value:
        raise AuthorizationError(f"Unauthorized to {verb} this announcement")


async def update_announcement(
    db: AsyncSession, user_id: str, announcement_id: int, data: AnnouncementUpdate
) -> Announcement:
    announcement = await get_announcement(db, announcement_id)
    await _require_owner_or_admin(db, user_id, announcement, "update")

    for field, value in data.model_dump(exclude_unset=True).items():
        if field in ("published_at", "expires_at") and value is not None:
            value = to_naive_utc(value)
        setattr(announcement, field, value)
    announcement.updated_at = utcnow()
    await db.commit()
    await db.refresh(announcement)
    return announcement


async def delete_announcement(db: AsyncSession, user_id: str, announcement_id: int) -> None:
    announcement = await get_announcement(db, announcement_id)
    await _require_owner_or_admin(db, user_id, announcement, "delete")
    await db.delete(announcement)
    await db.commit()


def should_email(data: AnnouncementCreate, now=None) -> bool:
    """Email only goes out for announcements that are already published."""
    if not data.send_email:
        return False
    return data.published_at is None or to_naive_utc(data.published_at) <= (now or utcnow())


async def announcement_recipients(db: AsyncSession, announcement: Announcement) -> list[dict[str, Any]]:
    users = await email_service.get_audience_users(db, announcement.audience)
    return await email_service.filter_consented_recipients(db, users, "announcements")


def announcement_email_data(announcement: Announcement) -> dict[str, Any]:
    data: dict[str, Any] = {
        "title": announcement.title,
        "content": announcement.content,
        "type": announcement.type,
    }
    if announcement.type == "event":
        data["link"] = f"{settings.app_url}/announcements/{announcement.id}"
    return data
