"""
Event Service

Events, RSVPs and volunteer slots. Visibility is decided by the viewer's
role: public events are open to everyone, member events to any signed-in
user, board events to board members and admins. Only managers (and the
creator) see events that are not published yet.
"""

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_user
from ptsa.constants.roles import is_manager
from ptsa.exceptions import AuthorizationError, ResourceNotFoundError, ValidationError
from ptsa.models.event import (
    Event,
    EventRSVP,
    EventStatus,
    EventVisibility,
    RSVPStatus,
    VolunteerSignup,
    VolunteerSlot,
)
from ptsa.models.user import Member, User
from ptsa.schemas.event import EventCreate, EventUpdate, RSVPRequest, VolunteerSignupRequest, VolunteerSlotCreate
from ptsa.utils.dates import to_naive_utc, utcnow
from ptsa.utils.validation import validate_capacity, validate_event_location, validate_event_times

logger = logging.getLogger(__name__)


# ============================================================================
# Permissions
# ============================================================================


def can_view_event(event: Event, user_id: str | None, role: str | None) -> bool:
    if event.created_by == user_id or is_manager(role):
        return True
    if event.status != EventStatus.PUBLISHED.value:
        return False
    if event.visibility == EventVisibility.PUBLIC.value:
        return True
    if event.visibility == EventVisibility.MEMBERS.value:
        return role is not None
    return False


def can_manage_event(event: Event, user_id: str | None, role: str | None) -> bool:
    return user_id is not None and (event.created_by == user_id or is_manager(role))


def visible_visibilities(role: str | None) -> list[str]:
    if role is None:
        return [EventVisibility.PUBLIC.value]
    if is_manager(role):
        return [v.value for v in EventVisibility]
    return [EventVisibility.PUBLIC.value, EventVisibility.MEMBERS.value]


async def get_event(db: AsyncSession, event_id: int) -> Event:
    event = await db.get(Event, event_id)
    if event is None:
        raise ResourceNotFoundError("Event not found")
    return event


async def get_viewable_event(db: AsyncSession, event_id: int, user_id: str | None, role: str | None) -> Event:
    event = await get_event(db, event_id)
    if not can_view_event(event, user_id, role):
        raise AuthorizationError("You do not have permission to view this event")
    return event


async def get_manageable_event(
    db: AsyncSession, event_id: int, user_id: str, role: str | None, message: str
) -> Event:
    event = await get_event(db, event_id)
    if not can_manage_event(event, user_id, role):
        raise AuthorizationError(message)
    return event


# ============================================================================
# Events
# ============================================================================


async def _attendance(db: AsyncSession, event_ids: list[int]) -> dict[int, dict[str, int]]:
    if not event_ids:
        return {}
    result = await db.execute(
        select(EventRSVP.event_id, EventRSVP.status, EventRSVP.guest_count).where(EventRSVP.event_id.in_(event_ids))
    )
    counts = {event_id: {"rsvp_count": 0, "attending_count": 0} for event_id in event_ids}
    for event_id, status, guest_count in result.all():
        counts[event_id]["rsvp_count"] += 1
        if status == RSVPStatus.ATTENDING.value:
            counts[event_id]["attending_count"] += 1 + (guest_count or 0)
    return counts


def serialize_event(event: Event, counts: dict[str, int] | None = None, user_rsvp: EventRSVP | None = None) -> dict:
    data = event.to_dict()
    if counts is not None:
        data.update(counts)
        data["available_spots"] = (
            max(0, event.capacity - counts["attending_count"]) if event.capacity else None
        )
    data["user_rsvp"] = user_rsvp.to_dict() if user_rsvp else None
    return data


async def list_events(
    db: AsyncSession,
    user_id: str | None,
    role: str | None,
    limit: int,
    offset: int,
    start_date=None,
    end_date=None,
    event_type: str | None = None,
    status: str | None = None,
) -> tuple[list[dict[str, Any]], int]:
    """Return the visible page of events, ordered by start time, and the total count."""
    conditions = [Event.visibility.in_(visible_visibilities(role))]
    if not is_manager(role):
        conditions.append(Event.status == EventStatus.PUBLISHED.value)
    elif status:
        conditions.append(Event.status == status)
    if event_type:
        conditions.append(Event.event_type == event_type)
    if start_date:
        conditions.append(Event.start_time >= to_naive_utc(start_date))
    if end_date:
        conditions.append(Event.start_time <= to_naive_utc(end_date))

    total = (await db.execute(select(func.count(Event.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Event).where(*conditions).order_by(Event.start_time.asc(), Event.id.asc()).limit(limit).offset(offset)
    )
    events = list(result.scalars().all())

    event_ids = [event.id for event in events]
    counts = await _attendance(db, event_ids)
    user_rsvps: dict[int, EventRSVP] = {}
    if user_id and event_ids:
        rsvp_result = await db.execute(
            select(EventRSVP).where(EventRSVP.user_id == user_id, EventRSVP.event_id.in_(event_ids))
        )
        user_rsvps = {rsvp.event_id: rsvp for rsvp in rsvp_result.scalars().all()}

    return [serialize_event(event, counts[event.id], user_rsvps.get(event.id)) for event in events], total


async def event_detail(db: AsyncSession, event: Event, user_id: str | None) -> dict[str, Any]:
    counts = await _attendance(db, [event.id])
    user_rsvp = None
    if user_id:
        user_rsvp = await _get_rsvp(db, event.id, user_id)
    data = serialize_event(event, counts[event.id], user_rsvp)
    data["volunteer_slots"] = await list_volunteer_slots(db, event.id, user_id)
    return data


def _slot(event_id: int, slot: VolunteerSlotCreate) -> VolunteerSlot:
    return VolunteerSlot(event_id=event_id, title=slot.title, description=slot.description, quantity=slot.quantity)


async def create_event(db: AsyncSession, user_id: str, data: EventCreate) -> Event:
    """Create the event and its volunteer slots in one transaction."""
    validate_event_location(data.location_type, data.virtual_link, data.location_address)

    event = Event(
        **data.model_dump(exclude={"volunteer_slots", "start_time", "end_time"}),
        start_time=to_naive_utc(data.start_time),
        end_time=to_naive_utc(data.end_time),
        created_by=user_id,
    )
    db.add(event)
    await db.flush()
    for slot in data.volunteer_slots:
        db.add(_slot(event.id, slot))
    await db.commit()
    await db.refresh(event)
    logger.info(f"Event {event.id} created by {user_id} with {len(data.volunteer_slots)} volunteer slots")
    return event


async def update_event(db: AsyncSession, event: Event, data: EventUpdate) -> Event:
    changes = data.model_dump(exclude_unset=True)
    for field in ("start_time", "end_time"):
        if changes.get(field) is not None:
            changes[field] = to_naive_utc(changes[field])

    start_time = changes.get("start_time") or event.start_time
    end_time = changes.get("end_time") or event.end_time
    validate_event_times(start_time, end_time)
    validate_event_location(
        changes.get("location_type") or event.location_type,
        changes.get("virtual_link", event.virtual_link),
        changes.get("location_address", event.location_address),
    )

    for field, value in changes.items():
        setattr(event, field, value)
    event.updated_at = utcnow()
    await db.commit()
    await db.refresh(event)
    return event


async def delete_event(db: AsyncSession, event: Event) -> None:
    event_id = event.id
    # Dependent rows first so this works without database-level cascades
    slot_ids = select(VolunteerSlot.id).where(VolunteerSlot.event_id == event_id)
    for statement in (
        VolunteerSignup.__table__.delete().where(VolunteerSignup.slot_id.in_(slot_ids)),
        VolunteerSlot.__table__.delete().where(VolunteerSlot.event_id == event_id),
        EventRSVP.__table__.delete().where(EventRSVP.event_id == event_id),
    ):
        await db.execute(statement)
    await db.delete(event)
    await db.commit()


# ============================================================================
# RSVPs
# ============================================================================


async def _get_rsvp(db: AsyncSession, event_id: int, user_id: str) -> EventRSVP | None:
    result = await db.execute(select(EventRSVP).where(EventRSVP.event_id == event_id, EventRSVP.user_id == user_id))
    return result.scalars().first()


async def get_member(db: AsyncSession, user_id: str) -> Member | None:
    result = await db.execute(select(Member).where(Member.user_id == user_id, Member.deleted_at.is_(None)))
    return result.scalars().first()


async def attending_headcount(db: AsyncSession, event_id: int, exclude_user_id: str | None = None) -> int:
    """Attendees plus their guests; ``exclude_user_id`` leaves one caller's RSVP out."""
    query = select(func.coalesce(func.sum(1 + EventRSVP.guest_count), 0)).where(
        EventRSVP.event_id == event_id,
        EventRSVP.status == RSVPStatus.ATTENDING.value,
    )
    if exclude_user_id:
        query = query.where(EventRSVP.user_id != exclude_user_id)
    return int((await db.execute(query)).scalar() or 0)


async def upsert_rsvp(db: AsyncSession, event_id: int, user_id: str, data: RSVPRequest, now=None) -> EventRSVP:
    """
    Create or replace the caller's RSVP.

    Raises:
        AuthorizationError: caller has no member record or cannot see the event
        ResourceNotFoundError: no such event
        ValidationError: RSVP not required, event started, or event full
    """
    now = now or utcnow()
    if await get_member(db, user_id) is None:
        raise AuthorizationError("You must be a registered member to RSVP")

    user = await get_user(db, user_id)
    event = await get_event(db, event_id)
    if not can_view_event(event, user_id, user.role if user else None):
        raise AuthorizationError("You do not have permission to RSVP to this event")
    if not event.rsvp_required:
        raise ValidationError("This event does not require RSVP")
    if event.start_time < now:
        raise ValidationError("Cannot RSVP to an event that has already started")

    if data.status == RSVPStatus.ATTENDING.value and event.capacity:
        current = await attending_headcount(db, event_id, exclude_user_id=user_id)
        if not validate_capacity(event.capacity, current, 1 + data.guest_count):
            raise ValidationError("Event is full")

    rsvp = await _get_rsvp(db, event_id, user_id)
    if rsvp is None:
        rsvp = EventRSVP(event_id=event_id, user_id=user_id)
        db.add(rsvp)
    rsvp.status = data.status
    rsvp.guest_count = data.guest_count
    rsvp.notes = data.notes
    rsvp.updated_at = now
    await db.commit()
    await db.refresh(rsvp)
    return rsvp


async def cancel_rsvp(db: AsyncSession, event_id: int, user_id: str) -> bool:
    rsvp = await _get_rsvp(db, event_id, user_id)
    if rsvp is None:
        return False
    await db.delete(rsvp)
    await db.commit()
    return True


async def list_attendees(db: AsyncSession, event_id: int) -> list[dict[str, Any]]:
    result = await db.execute(
        select(EventRSVP, User)
        .outerjoin(User, User.id == EventRSVP.user_id)
        .where(EventRSVP.event_id == event_id)
        .order_by(EventRSVP.created_at.asc())
    )
    attendees = []
    for rsvp, user in result.all():
        entry = rsvp.to_dict()
        entry["name"] = f"{user.first_name or ''} {user.last_name or ''}".strip() if user else None
        entry["email"] = user.email if user else None
        attendees.append(entry)
    return attendees


# ============================================================================
# Volunteer slots
# ============================================================================


async def _filled(db: AsyncSession, slot_ids: list[int], exclude_user_id: str | None = None) -> dict[int, int]:
    if not slot_ids:
        return {}
    query = (
        select(VolunteerSignup.slot_id, func.sum(VolunteerSignup.quantity))
        .where(VolunteerSignup.slot_id.in_(slot_ids))
        .group_by(VolunteerSignup.slot_id)
    )
    if exclude_user_id:
        query = query.where(VolunteerSignup.user_id != exclude_user_id)
    return {slot_id: int(total or 0) for slot_id, total in (await db.execute(query)).all()}


async def list_volunteer_slots(db: AsyncSession, event_id: int, user_id: str | None = None) -> list[dict[str, Any]]:
    result = await db.execute(
        select(VolunteerSlot).where(VolunteerSlot.event_id == event_id).order_by(VolunteerSlot.id.asc())
    )
    slots = list(result.scalars().all())
    filled = await _filled(db, [slot.id for slot in slots])

    mine: set[int] = set()
    if user_id and slots:
        signup_result = await db.execute(
            select(VolunteerSignup.slot_id).where(
                VolunteerSignup.user_id == user_id,
                VolunteerSignup.slot_id.in_([slot.id for slot in slots]),
            )
        )
        mine = set(signup_result.scalars().all())

    return [
        {
            "id": slot.id,
            "event_id": slot.event_id,
            "title": slot.title,
            "description": slot.description,
            "quantity": slot.quantity,
            "filled": filled.get(slot.id, 0),
            "available": max(0, slot.quantity - filled.get(slot.id, 0)),
            "signed_up": slot.id in mine,
        }
        for slot in slots
    ]


async def add_volunteer_slots(db: AsyncSession, event_id: int, slots: list[VolunteerSlotCreate]) -> list[VolunteerSlot]:
    created = [_slot(event_id, slot) for slot in slots]
    db.add_all(created)
    await db.commit()
    for slot in created:
        await db.refresh(slot)
    return created


async def _get_slot(db: AsyncSession, event_id: int, slot_id: int) -> VolunteerSlot:
    slot = await db.get(VolunteerSlot, slot_id)
    if slot is None or slot.event_id != event_id:
        raise ResourceNotFoundError("Volunteer slot not found")
    return slot


async def signup_for_slot(
    db: AsyncSession, event_id: int, slot_id: int, user_id: str, data: VolunteerSignupRequest
) -> VolunteerSignup:
    slot = await _get_slot(db, event_id, slot_id)

    taken = (await _filled(db, [slot.id], exclude_user_id=user_id)).get(slot.id, 0)
    available = max(0, slot.quantity - taken)
    if data.quantity > available:
        raise ValidationError(f"Only {available} spots available for this volunteer slot")

    result = await db.execute(
        select(VolunteerSignup).where(VolunteerSignup.slot_id == slot.id, VolunteerSignup.user_id == user_id)
    )
    signup = result.scalars().first()
    if signup is None:
        signup = VolunteerSignup(slot_id=slot.id, user_id=user_id)
        db.add(signup)
    signup.quantity = data.quantity
    signup.notes = data.notes
    await db.commit()
    await db.refresh(signup)
    return signup


async def cancel_signup(db: AsyncSession, event_id: int, slot_id: int, user_id: str) -> bool:
    slot = await _get_slot(db, event_id, slot_id)
    result = await db.execute(
        select(VolunteerSignup).where(VolunteerSignup.slot_id == slot.id, VolunteerSignup.user_id == user_id)
    )
    signup = result.scalars().first()
    if signup is None:
        return False
    await db.delete(signup)
    await db.commit()
    return True
