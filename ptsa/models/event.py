"""
Event, RSVP and volunteer models.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class EventType(str, enum.Enum):
    MEETING = "meeting"
    FUNDRAISER = "fundraiser"
    VOLUNTEER = "volunteer"
    SOCIAL = "social"
    EDUCATIONAL = "educational"


class LocationType(str, enum.Enum):
    IN_PERSON = "in_person"
    VIRTUAL = "virtual"
    HYBRID = "hybrid"


class EventVisibility(str, enum.Enum):
    PUBLIC = "public"
    MEMBERS = "members"
    BOARD = "board"


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class RSVPStatus(str, enum.Enum):
    ATTENDING = "attending"
    NOT_ATTENDING = "not_attending"
    MAYBE = "maybe"


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(String(20), nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    location_type = Column(String(20), nullable=False, default=LocationType.IN_PERSON.value)
    location_name = Column(String(200), nullable=True)
    location_address = Column(String(500), nullable=True)
    virtual_link = Column(String(500), nullable=True)
    capacity = Column(Integer, nullable=True)
    rsvp_required = Column(Boolean, nullable=False, default=False)
    visibility = Column(String(20), nullable=False, default=EventVisibility.MEMBERS.value)
    status = Column(String(20), nullable=False, default=EventStatus.DRAFT.value)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "event_type": self.event_type,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "location_type": self.location_type,
            "location_name": self.location_name,
            "location_address": self.location_address,
            "virtual_link": self.virtual_link,
            "capacity": self.capacity,
            "rsvp_required": self.rsvp_required,
            "visibility": self.visibility,
            "status": self.status,
            "created_by": self.created_by,
        }


class EventRSVP(Base):
    __tablename__ = "event_rsvps"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RSVPStatus.ATTENDING.value)
    guest_count = Column(Integer, nullable=False, default=0)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_rsvp_user"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "status": self.status,
            "guest_count": self.guest_count,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class VolunteerSlot(Base):
    __tablename__ = "event_volunteer_slots"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class VolunteerSignup(Base):
    __tablename__ = "volunteer_signups"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("event_volunteer_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("slot_id", "user_id", name="uq_volunteer_signup_user"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "user_id": self.user_id,
            "quantity": self.quantity,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
