"""
Communication Schemas

Request bodies for bulk email, email preferences and unsubscribe links.
Field names follow the camelCase used by the web client.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EmailAudience = Literal["all", "board", "committee_chairs", "teachers", "custom"]
EmailFrequency = Literal["immediate", "daily", "weekly"]


class SendEmailRequest(BaseModel):
    """Bulk email send request"""

    model_config = ConfigDict(populate_by_name=True)

    template: str = Field(..., min_length=1, description="Name of the email template to render")
    audience: EmailAudience = Field(..., description="Recipient group")
    custom_recipients: list[str] | None = Field(
        None, alias="customRecipients", description="User ids when audience is 'custom'"
    )
    subject: str = Field(..., min_length=1, max_length=200)
    scheduled_for: datetime | None = Field(None, alias="scheduledFor", description="Queue instead of sending now")
    template_data: dict[str, Any] | None = Field(None, alias="templateData")


class PreferencesUpdate(BaseModel):
    """Full replacement of a user's email preferences"""

    model_config = ConfigDict(populate_by_name=True)

    email_enabled: bool = Field(..., alias="emailEnabled")
    email_frequency: EmailFrequency = Field(..., alias="emailFrequency")
    announcements_enabled: bool = Field(..., alias="announcements")
    events_enabled: bool = Field(..., alias="events")
    payments_enabled: bool = Field(..., alias="payments")
    volunteer_enabled: bool = Field(..., alias="volunteer")
    meetings_enabled: bool = Field(..., alias="meetings")


class UnsubscribeRequest(BaseModel):
    """Unsubscribe link submission"""

    token: str = Field(..., min_length=1)
    category: str | None = Field(None, description="Single category to unsubscribe from")
