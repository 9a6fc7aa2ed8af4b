from sqlalchemy import Boolean, Column, DateTime, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class PrivacySettings(Base):
    """Per-user directory and sharing settings; one row per user."""

    __tablename__ = "privacy_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    show_email = Column(Boolean, nullable=False, default=False)
    show_phone = Column(Boolean, nullable=False, default=False)
    show_address = Column(Boolean, nullable=False, default=False)
    show_children = Column(Boolean, nullable=False, default=False)
    directory_visible = Column(Boolean, nullable=False, default=False)
    allow_photo_sharing = Column(Boolean, nullable=False, default=False)
    allow_data_sharing = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "show_email": self.show_email,
            "show_phone": self.show_phone,
            "show_address": self.show_address,
            "show_children": self.show_children,
            "directory_visible": self.directory_visible,
            "allow_photo_sharing": self.allow_photo_sharing,
            "allow_data_sharing": self.allow_data_sharing,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
