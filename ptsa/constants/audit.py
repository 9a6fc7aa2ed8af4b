"""Audit event names written to the audit log."""

from enum import Enum


class AuditAction(str, Enum):
    # User actions
    USER_LOGIN = "user.login"
    USER_LOGOUT = "user.logout"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_ROLE_CHANGED = "user.role_changed"

    # Privacy actions
    PRIVACY_SETTINGS_CREATED = "privacy.settings.created"
    PRIVACY_SETTINGS_UPDATE = "privacy.settings.update"
    CONSENT_GRANTED = "consent.granted"
    CONSENT_REVOKED = "consent.revoked"
    DATA_EXPORT_REQUESTED = "data.export.requested"
    DATA_EXPORT_COMPLETED = "data.export.completed"
    DATA_EXPORT_FAILED = "data.export.failed"
    DATA_EXPORT_DOWNLOADED = "data.export.downloaded"
    DATA_DELETION_REQUESTED = "data.deletion.requested"
    DATA_DELETION_COMPLETED = "data.deletion.completed"
    DATA_DELETION_FAILED = "data.deletion.failed"

    # COPPA
    COPPA_VERIFICATION_SUCCESS = "coppa.verification.success"
    COPPA_VERIFICATION_PENDING = "coppa.verification.pending"
    COPPA_VERIFICATION_FAILED = "coppa.verification.failed"
    COPPA_VERIFICATION_REJECTED = "coppa.verification.rejected"
    COPPA_AGE_OUT = "coppa.age_out"

    # Membership
    MEMBER_CREATED = "member.created"
    MEMBER_UPDATED = "member.updated"
    MEMBER_DELETED = "member.deleted"

    # Payments
    PAYMENT_INTENT_CREATED = "payment.intent.created"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_CANCELED = "payment.canceled"
    PAYMENT_PROCESSING = "payment.processing"
    WEBHOOK_RECEIVED = "webhook.received"
    WEBHOOK_FAILED = "webhook.failed"

    # Events
    EVENT_CREATED = "event.created"
    EVENT_UPDATED = "event.updated"
    EVENT_DELETED = "event.deleted"
    EVENT_RSVP = "event.rsvp"
    EVENT_VOLUNTEER = "event.volunteer"

    # Communications
    EMAIL_SENT = "email.sent"
    ANNOUNCEMENT_CREATED = "announcement.created"
    ANNOUNCEMENT_UPDATED = "announcement.updated"
    ANNOUNCEMENT_DELETED = "announcement.deleted"

    # Administration
    ADMIN_ACCESS = "admin.access"
    ADMIN_EXPORT = "admin.export"
    RETENTION_APPLIED = "retention.applied"
