from .announcement import AnnouncementCreate, AnnouncementUpdate
from .communication import PreferencesUpdate, SendEmailRequest, UnsubscribeRequest
from .event import EventCreate, EventUpdate, RSVPRequest, VolunteerSignupRequest, VolunteerSlotCreate
from .member import MemberRegister, MemberUpdate, RoleUpdate

__all__ = [
    "AnnouncementCreate",
    "AnnouncementUpdate",
    "EventCreate",
    "EventUpdate",
    "MemberRegister",
    "MemberUpdate",
    "PreferencesUpdate",
    "RSVPRequest",
    "RoleUpdate",
    "SendEmailRequest",
    "UnsubscribeRequest",
    "VolunteerSignupRequest",
    "VolunteerSlotCreate",
]
