"""ChildAccount model: a COPPA-covered child linked to a verifying parent."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class ChildAccount(Base):
    __tablename__ = "child_accounts"

    id = Column(Integer, primary_key=True, index=True)
    child_user_id = Column(String(255), unique=True, nullable=False, index=True)
    parent_user_id = Column(String(255), nullable=False, index=True)
    birth_date = Column(Date, nullable=False)
    parental_consent_given = Column(Boolean, nullable=False, default=False)
    consent_date = Column(DateTime, nullable=True)
    restrictions = Column(JSON, nullable=False, default=dict)
    verification_method = Column(String(50), nullable=True)
    # verified | pending_review | failed
    verification_status = Column(String(20), nullable=False, default="pending_review")
    verification_token = Column(String(128), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "child_user_id": self.child_user_id,
            "parent_user_id": self.parent_user_id,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "parental_consent_given": self.parental_consent_given,
            "consent_date": self.consent_date.isoformat() if self.consent_date else None,
            "restrictions": self.restrictions or {},
            "verification_method": self.verification_method,
            "verification_status": self.verification_status,
        }
