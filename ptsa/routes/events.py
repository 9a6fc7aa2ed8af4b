"""
Event Routes

Event listing and management, RSVPs and volunteer slot signups.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, get_user_role, require_manager, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.database import get_db
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.schemas.event import EventCreate, EventUpdate, RSVPRequest, VolunteerSignupRequest, VolunteerSlotCreate
from ptsa.services import event_service
from ptsa.utils.audit_log import log_request_audit_event
from ptsa.utils.request import parse_model, read_json_body
from ptsa.utils.validation import normalize_pagination, validate_guest_count

router = APIRouter(prefix="/events", tags=["Events"])


class VolunteerSlotsCreate(BaseModel):
    """Slots added to an existing event"""

    slots: list[VolunteerSlotCreate] = Field(..., min_length=1)


# ============================================================================
# Events
# ============================================================================


@router.get("")
async def list_events(
    request: Request,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    event_type: str | None = None,
    status: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    List events visible to the caller, ordered by start time.

    **Parameters**:
    - start_date / end_date: Window on the event start time
    - event_type: meeting, fundraiser, volunteer, social or educational
    - status: Only honored for board members and admins
    - limit (max 100, default 20) and offset
    """
    await rate_limiter.enforce(request, RATE_LIMITS["event_read"], user_id)
    limit, offset = normalize_pagination(limit, offset)
    role = await get_user_role(db, user_id)

    events, total = await event_service.list_events(
        db,
        user_id,
        role,
        limit,
        offset,
        start_date=start_date,
        end_date=end_date,
        event_type=event_type,
        status=status,
    )
    return {"events": events, "total": total}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_manager(db, user_id, "Only board members and admins can create events")
    await rate_limiter.enforce(request, RATE_LIMITS["event_mutation"], user_id)

    data = parse_model(EventCreate, await read_json_body(request), "Invalid event data")
    event = await event_service.create_event(db, user_id, data)

    await log_request_audit_event(
        request,
        AuditAction.EVENT_CREATED,
        user_id,
        target_id=str(event.id),
        resource_type="event",
        metadata={"title": event.title, "volunteer_slots": len(data.volunteer_slots)},
    )
    return {"event": await event_service.event_detail(db, event, user_id)}


@router.get("/{event_id}")
async def get_event(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await rate_limiter.enforce(request, RATE_LIMITS["event_read"], user_id)
    role = await get_user_role(db, user_id)
    event = await event_service.get_viewable_event(db, event_id, user_id, role)
    return {"event": await event_service.event_detail(db, event, user_id)}


@router.put("/{event_id}")
async def update_event(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    event = await event_service.get_manageable_event(
        db, event_id, user_id, role, "You do not have permission to edit this event"
    )
    await rate_limiter.enforce(request, RATE_LIMITS["event_mutation"], user_id)

    data = parse_model(EventUpdate, await read_json_body(request), "Invalid event data")
    event = await event_service.update_event(db, event, data)

    await log_request_audit_event(
        request,
        AuditAction.EVENT_UPDATED,
        user_id,
        target_id=str(event.id),
        resource_type="event",
        metadata={"fields": sorted(data.model_dump(exclude_unset=True))},
    )
    return {"event": await event_service.event_detail(db, event, user_id)}


@router.delete("/{event_id}")
async def delete_event(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    event = await event_service.get_manageable_event(
        db, event_id, user_id, role, "You do not have permission to delete this event"
    )
    await rate_limiter.enforce(request, RATE_LIMITS["event_mutation"], user_id)

    title = event.title
    await event_service.delete_event(db, event)
    await log_request_audit_event(
        request,
        AuditAction.EVENT_DELETED,
        user_id,
        target_id=str(event_id),
        resource_type="event",
        metadata={"title": title},
    )
    return {"success": True}


@router.get("/{event_id}/attendees")
async def list_attendees(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    await event_service.get_manageable_event(
        db, event_id, user_id, role, "You do not have permission to view attendees for this event"
    )
    await rate_limiter.enforce(request, RATE_LIMITS["event_read"], user_id)

    attendees = await event_service.list_attendees(db, event_id)
    return {"attendees": attendees, "total": len(attendees)}


# ============================================================================
# RSVP
# ============================================================================


@router.post("/{event_id}/rsvp")
async def rsvp(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id, "You must be logged in to RSVP")
    await rate_limiter.enforce(request, RATE_LIMITS["rsvp"], user_id)

    body = await read_json_body(request, "Invalid RSVP data")
    if isinstance(body, dict) and "guest_count" in body:
        validate_guest_count(body["guest_count"])
    data = parse_model(RSVPRequest, body, "Invalid RSVP data")

    rsvp_row = await event_service.upsert_rsvp(db, event_id, user_id, data)
    await log_request_audit_event(
        request,
        AuditAction.EVENT_RSVP,
        user_id,
        target_id=str(event_id),
        resource_type="event",
        metadata={"status": rsvp_row.status, "guest_count": rsvp_row.guest_count},
    )
    return {"rsvp": rsvp_row.to_dict()}


@router.delete("/{event_id}/rsvp")
async def cancel_rsvp(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["rsvp"], user_id)

    removed = await event_service.cancel_rsvp(db, event_id, user_id)
    if removed:
        await log_request_audit_event(
            request,
            AuditAction.EVENT_RSVP,
            user_id,
            target_id=str(event_id),
            resource_type="event",
            metadata={"status": "cancelled"},
        )
    return {"success": True}


# ============================================================================
# Volunteer slots
# ============================================================================


@router.get("/{event_id}/volunteer-slots")
async def list_volunteer_slots(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await rate_limiter.enforce(request, RATE_LIMITS["event_read"], user_id)
    role = await get_user_role(db, user_id)
    await event_service.get_viewable_event(db, event_id, user_id, role)
    return {"slots": await event_service.list_volunteer_slots(db, event_id, user_id)}


@router.post("/{event_id}/volunteer-slots", status_code=status.HTTP_201_CREATED)
async def add_volunteer_slots(
    event_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    await event_service.get_manageable_event(
        db, event_id, user_id, role, "You do not have permission to edit this event"
    )
    await rate_limiter.enforce(request, RATE_LIMITS["event_mutation"], user_id)

    data = parse_model(VolunteerSlotsCreate, await read_json_body(request), "Invalid volunteer slot data")
    await event_service.add_volunteer_slots(db, event_id, data.slots)
    return {"slots": await event_service.list_volunteer_slots(db, event_id, user_id)}


@router.post("/{event_id}/volunteer-slots/{slot_id}/signup")
async def volunteer_signup(
    event_id: int,
    slot_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id, "You must be logged in to volunteer")
    await rate_limiter.enforce(request, RATE_LIMITS["volunteer"], user_id)

    role = await get_user_role(db, user_id)
    await event_service.get_viewable_event(db, event_id, user_id, role)
    body = await read_json_body(request) if await request.body() else {}
    data = parse_model(VolunteerSignupRequest, body, "Invalid signup data")

    signup = await event_service.signup_for_slot(db, event_id, slot_id, user_id, data)
    await log_request_audit_event(
        request,
        AuditAction.EVENT_VOLUNTEER,
        user_id,
        target_id=str(slot_id),
        resource_type="volunteer_slot",
        metadata={"event_id": event_id, "quantity": signup.quantity},
    )
    return {"signup": signup.to_dict()}


@router.delete("/{event_id}/volunteer-slots/{slot_id}/signup")
async def cancel_volunteer_signup(
    event_id: int,
    slot_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["volunteer"], user_id)

    removed = await event_service.cancel_signup(db, event_id, slot_id, user_id)
    if removed:
        await log_request_audit_event(
            request,
            AuditAction.EVENT_VOLUNTEER,
            user_id,
            target_id=str(slot_id),
            resource_type="volunteer_slot",
            metadata={"event_id": event_id, "cancelled": True},
        )
    return {"success": True}
