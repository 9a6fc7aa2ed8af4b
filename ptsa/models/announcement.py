import enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class AnnouncementType(str, enum.Enum):
    GENERAL = "general"
    URGENT = "urgent"
    EVENT = "event"


class AnnouncementAudience(str, enum.Enum):
    ALL = "all"
    MEMBERS = "members"
    BOARD = "board"
    COMMITTEE_CHAIRS = "committee_chairs"
    TEACHERS = "teachers"


class Announcement(Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default=AnnouncementType.GENERAL.value)
    audience = Column(String(20), nullable=False, default=AnnouncementAudience.ALL.value)
    created_by = Column(String(255), nullable=False)
    published_at = Column(DateTime, nullable=True, index=True)
    expires_at = Column(DateTime, nullable=True)
    is_pinned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "type": self.type,
            "audience": self.audience,
            "created_by": self.created_by,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_pinned": self.is_pinned,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
