"""
User and Member models.

``users`` mirrors identities held by the auth provider (synced by its
webhook); ``members`` holds PTSA membership data for registered users.
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from ptsa.constants.roles import DEFAULT_ROLE
from ptsa.database import Base
from ptsa.utils.dates import utcnow


class User(Base):
    __tablename__ = "users"

    # Identifier issued by the auth provider
    id = Column(String(255), primary_key=True)
    email = Column(String(320), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(32), nullable=False, default=DEFAULT_ROLE.value, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(320), nullable=True, index=True)
    phone = Column(String(32), nullable=True)
    membership_type = Column(String(50), nullable=False, default="individual")
    # pending | active | expired
    membership_status = Column(String(20), nullable=False, default="pending")
    membership_expires_at = Column(DateTime, nullable=True)
    payment_amount = Column(Integer, nullable=False, default=0)
    student_info = Column(JSON, nullable=True)
    volunteer_interests = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "membership_type": self.membership_type,
            "membership_status": self.membership_status,
            "membership_expires_at": self.membership_expires_at.isoformat() if self.membership_expires_at else None,
            "student_info": self.student_info,
            "volunteer_interests": self.volunteer_interests,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
