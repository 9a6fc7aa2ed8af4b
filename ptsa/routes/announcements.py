"""
Announcement Routes
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, get_user_role, require_manager, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.database import get_db
from ptsa.exceptions import ResourceNotFoundError
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.schemas.announcement import AnnouncementCreate, AnnouncementUpdate
from ptsa.services import announcement_service, email_service
from ptsa.utils.audit_log import log_request_audit_event
from ptsa.utils.request import parse_model, read_json_body

router = APIRouter(prefix="/announcements", tags=["Announcements"])


@router.get("")
async def list_announcements(
    request: Request,
    type: str | None = None,
    audience: str | None = None,
    includeExpired: bool = False,
    pinnedOnly: bool = False,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Published announcements visible to the caller, pinned first and then
    newest first.
    """
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)
    role = await get_user_role(db, user_id)
    announcements = await announcement_service.list_announcements(
        db, role, type=type, audience=audience, include_expired=includeExpired, pinned_only=pinnedOnly
    )
    return {"announcements": [announcement_service.serialize(a) for a in announcements]}


@router.get("/{announcement_id}")
async def get_announcement(
    announcement_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)
    role = await get_user_role(db, user_id)
    announcement = await announcement_service.get_announcement(db, announcement_id)
    if announcement.audience not in announcement_service.visible_audiences(role):
        raise ResourceNotFoundError("Announcement not found")
    return {"announcement": announcement_service.serialize(announcement)}


@router.post("")
async def create_announcement(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_manager(db, user_id, "Unauthorized to create announcements")
    await rate_limiter.enforce(request, RATE_LIMITS["announcements"], user_id)

    data = parse_model(AnnouncementCreate, await read_json_body(request))
    announcement = await announcement_service.create_announcement(db, user_id, data)

    if announcement_service.should_email(data):
        recipients = await announcement_service.announcement_recipients(db, announcement)
        if recipients:
            background_tasks.add_task(
                email_service.send_in_background,
                recipients,
                announcement.title,
                "announcement",
                announcement_service.announcement_email_data(announcement),
            )

    await log_request_audit_event(
        request,
        AuditAction.ANNOUNCEMENT_CREATED,
        user_id,
        target_id=str(announcement.id),
        resource_type="announcement",
        metadata={"audience": announcement.audience, "type": announcement.type, "send_email": data.send_email},
    )
    return {"announcement": announcement_service.serialize(announcement)}


@router.put("/{announcement_id}")
async def update_announcement(
    announcement_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["announcements"], user_id)

    data = parse_model(AnnouncementUpdate, await read_json_body(request))
    announcement = await announcement_service.update_announcement(db, user_id, announcement_id, data)
    await log_request_audit_event(
        request,
        AuditAction.ANNOUNCEMENT_UPDATED,
        user_id,
        target_id=str(announcement.id),
        resource_type="announcement",
        metadata={"fields": sorted(data.model_dump(exclude_unset=True))},
    )
    return {"announcement": announcement_service.serialize(announcement)}


@router.delete("/{announcement_id}")
async def delete_announcement(
    announcement_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["announcements"], user_id)

    await announcement_service.delete_announcement(db, user_id, announcement_id)
    await log_request_audit_event(
        request,
        AuditAction.ANNOUNCEMENT_DELETED,
        user_id,
        target_id=str(announcement_id),
        resource_type="announcement",
    )
    return {"success": True}
