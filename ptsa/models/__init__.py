from .announcement import Announcement
from .archived_record import ArchivedRecord
from .audit_log import AuditLog
from .child_account import ChildAccount
from .communication import CommunicationPreferences, EmailLog, EmailQueueItem
from .consent_record import ConsentRecord
from .data_request import DataDeletionRequest, DataExportRequest
from .event import Event, EventRSVP, VolunteerSignup, VolunteerSlot
from .payment import Payment
from .privacy_settings import PrivacySettings
from .user import Member, User

__all__ = [
    "Announcement",
    "ArchivedRecord",
    "AuditLog",
    "ChildAccount",
    "CommunicationPreferences",
    "ConsentRecord",
    "DataDeletionRequest",
    "DataExportRequest",
    "EmailLog",
    "EmailQueueItem",
    "Event",
    "EventRSVP",
    "Member",
    "Payment",
    "PrivacySettings",
    "User",
    "VolunteerSignup",
    "VolunteerSlot",
]
