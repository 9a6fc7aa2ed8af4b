"""
Communication models: per-user email preferences, the privacy-preserving
email log, and the queue of scheduled sends.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from ptsa.database import Base
from ptsa.utils.dates import utcnow

EMAIL_CATEGORIES = ("announcements", "events", "payments", "volunteer", "meetings")


class CommunicationPreferences(Base):
    __tablename__ = "communication_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    email_enabled = Column(Boolean, nullable=False, default=False)
    # immediate | daily | weekly | monthly
    email_frequency = Column(String(20), nullable=False, default="weekly")
    announcements_enabled = Column(Boolean, nullable=False, default=False)
    events_enabled = Column(Boolean, nullable=False, default=False)
    payments_enabled = Column(Boolean, nullable=False, default=True)
    volunteer_enabled = Column(Boolean, nullable=False, default=False)
    meetings_enabled = Column(Boolean, nullable=False, default=False)
    parent_consent_required = Column(Boolean, nullable=False, default=False)
    parent_consent_verified = Column(Boolean, nullable=False, default=False)
    unsubscribed_at = Column(DateTime, nullable=True)
    unsubscribe_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class EmailLog(Base):
    """Delivery log; stores a hash and domain of the recipient, never the address."""

    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)
    recipient_hash = Column(String(64), nullable=False)
    recipient_domain = Column(String(255), nullable=True)
    subject = Column(String(255), nullable=False)
    template = Column(String(100), nullable=True)
    category = Column(String(50), nullable=True)
    # queued | sent | delivered | failed | bounced | complained
    status = Column(String(20), nullable=False)
    meta = Column("metadata", JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class EmailQueueItem(Base):
    __tablename__ = "email_queue"

    id = Column(Integer, primary_key=True, index=True)
    recipients = Column(JSON, nullable=False)
    subject = Column(String(255), nullable=False)
    template = Column(String(100), nullable=False)
    data = Column(JSON, nullable=True)
    scheduled_for = Column(DateTime, nullable=True, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)
    # pending | processing | sent | failed
    status = Column(String(20), nullable=False, default="pending", index=True)
    error = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
