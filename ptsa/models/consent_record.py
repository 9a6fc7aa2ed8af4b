"""
ConsentRecord model for consent tracking (COPPA / FERPA / GDPR Article 7).

Rows are append-only: a consent decision is never updated in place, it is
superseded by a newer row. The current state for a (user, consent_type)
pair is the most recent row.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class ConsentRecord(Base):
    __tablename__ = "consent_records"

    id = Column(Integer, primary_key=True, index=True)
    # Nulled when the owner's data is anonymized
    user_id = Column(String(255), nullable=True, index=True)
    consent_type = Column(String(50), nullable=False)
    granted = Column(Boolean, nullable=False)
    parent_user_id = Column(String(255), nullable=True)
    consent_version = Column(String(20), nullable=False, default="1.0")
    # IPv6 addresses can be up to 39 chars; 45 allows for mapped IPv4 addresses
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_consent_user_type_created", "user_id", "consent_type", "created_at"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "consent_type": self.consent_type,
            "granted": self.granted,
            "parent_user_id": self.parent_user_id,
            "consent_version": self.consent_version,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
