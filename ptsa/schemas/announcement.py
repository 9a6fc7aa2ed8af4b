"""
Announcement Schemas
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ptsa.models.announcement import AnnouncementAudience, AnnouncementType


class AnnouncementCreate(BaseModel):
    """Create announcement request"""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    type: AnnouncementType
    audience: AnnouncementAudience
    published_at: datetime | None = Field(None, alias="publishedAt", description="Defaults to now")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    is_pinned: bool = Field(False, alias="isPinned")
    send_email: bool = Field(False, alias="sendEmail", description="Email the audience once published")


class AnnouncementUpdate(BaseModel):
    """Partial announcement update; only fields present in the body change"""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    title: str | None = Field(None, min_length=1, max_length=255)
    content: str | None = Field(None, min_length=1)
    type: AnnouncementType | None = None
    audience: AnnouncementAudience | None = None
    published_at: datetime | None = Field(None, alias="publishedAt")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    is_pinned: bool | None = Field(None, alias="isPinned")
