"""Consent, COPPA and data-retention constants."""

from enum import Enum

COPPA_AGE_THRESHOLD = 13
COPPA_CONSENT_VERSION = "1.0"
DEFAULT_CONSENT_VERSION = "1.0"


class ConsentType(str, Enum):
    TERMS_OF_SERVICE = "terms_of_service"
    PRIVACY_POLICY = "privacy_policy"
    COPPA_PARENTAL = "coppa_parental"
    PHOTO_SHARING = "photo_sharing"
    DATA_SHARING = "data_sharing"
    EMAIL_COMMUNICATIONS = "email_communications"
    DIRECTORY_INCLUSION = "directory_inclusion"
    AI_FEATURES = "ai_features"


class VerificationMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    KNOWLEDGE_BASED = "knowledge_based"
    GOVERNMENT_ID = "government_id"
    SIGNED_CONSENT_FORM = "signed_consent_form"


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    PENDING_REVIEW = "pending_review"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Fields of privacy_settings a user may change through the settings API
PRIVACY_SETTINGS_FIELDS = (
    "show_email",
    "show_phone",
    "show_address",
    "show_children",
    "directory_visible",
    "allow_photo_sharing",
    "allow_data_sharing",
)

# Restrictions applied to every child account; never relaxed while under 13
CHILD_RESTRICTIONS = {
    "ai_features": False,
    "data_sharing": False,
    "photo_sharing": False,
    "directory_visible": False,
}

# Retention windows, in days
RETENTION_PERIODS = {
    "inactive_member": 365,
    "event_registration": 730,
    "volunteer": 1095,
    "payments": 2555,
    "audit_logs": 1095,
    "consent": 1095,
    "export_files": 7,
    "child_data_after_13": 30,
}

EXPORT_LINK_TTL_DAYS = 7
EXPORT_ACTIVITY_LIMIT = 100
