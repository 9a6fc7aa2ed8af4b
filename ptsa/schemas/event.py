"""
Event Schemas

Pydantic models for events, RSVPs and volunteer slots.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ptsa.models.event import EventStatus, EventType, EventVisibility, LocationType, RSVPStatus
from ptsa.utils.validation import MAX_GUEST_COUNT, MAX_RSVP_NOTES_LENGTH


class VolunteerSlotCreate(BaseModel):
    """Volunteer slot definition"""

    title: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    quantity: int = Field(..., gt=0, description="Number of volunteers needed")


class EventCreate(BaseModel):
    """Create event request"""

    model_config = ConfigDict(use_enum_values=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    event_type: EventType
    start_time: datetime
    end_time: datetime
    location_type: LocationType = LocationType.IN_PERSON
    location_name: str | None = Field(None, max_length=200)
    location_address: str | None = Field(None, max_length=500)
    virtual_link: str | None = Field(None, max_length=500)
    capacity: int | None = Field(None, gt=0)
    rsvp_required: bool = False
    visibility: EventVisibility = EventVisibility.MEMBERS
    status: EventStatus = EventStatus.DRAFT
    volunteer_slots: list[VolunteerSlotCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_times(self) -> "EventCreate":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class EventUpdate(BaseModel):
    """Partial event update"""

    model_config = ConfigDict(use_enum_values=True)

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    event_type: EventType | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location_type: LocationType | None = None
    location_name: str | None = Field(None, max_length=200)
    location_address: str | None = Field(None, max_length=500)
    virtual_link: str | None = Field(None, max_length=500)
    capacity: int | None = Field(None, gt=0)
    rsvp_required: bool | None = None
    visibility: EventVisibility | None = None
    status: EventStatus | None = None


class RSVPRequest(BaseModel):
    """RSVP submission"""

    model_config = ConfigDict(use_enum_values=True)

    status: RSVPStatus
    guest_count: int = Field(0, ge=0, le=MAX_GUEST_COUNT)
    notes: str | None = Field(None, max_length=MAX_RSVP_NOTES_LENGTH)


class VolunteerSignupRequest(BaseModel):
    """Volunteer slot signup"""

    quantity: int = Field(1, gt=0)
    notes: str | None = Field(None, max_length=500)
