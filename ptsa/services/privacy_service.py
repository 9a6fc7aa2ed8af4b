"""
Privacy settings service.

Settings rows are created lazily with restrictive defaults and only the
allow-listed boolean fields can be changed through the API.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.privacy import PRIVACY_SETTINGS_FIELDS
from ptsa.constants.roles import is_manager
from ptsa.exceptions import ValidationError
from ptsa.models.privacy_settings import PrivacySettings
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

RESTRICTIVE_DEFAULTS = {field: False for field in PRIVACY_SETTINGS_FIELDS}

# Applied when a child account ages out of COPPA coverage
STANDARD_DEFAULTS = {
    **RESTRICTIVE_DEFAULTS,
    "directory_visible": True,
    "allow_photo_sharing": True,
    "allow_data_sharing": True,
}


async def get_settings(db: AsyncSession, user_id: str) -> PrivacySettings | None:
    result = await db.execute(select(PrivacySettings).where(PrivacySettings.user_id == user_id))
    return result.scalars().first()


async def get_or_create_settings(db: AsyncSession, user_id: str) -> tuple[PrivacySettings, bool]:
    """
    Return the user's settings, creating a restrictive default row if missing.

    Returns:
        (settings, created)
    """
    settings_row = await get_settings(db, user_id)
    if settings_row is not None:
        return settings_row, False

    settings_row = PrivacySettings(user_id=user_id, **RESTRICTIVE_DEFAULTS)
    db.add(settings_row)
    await db.commit()
    await db.refresh(settings_row)
    logger.info("Created default privacy settings for user=%s", user_id)
    return settings_row, True


def filter_allowed_updates(updates: Any) -> dict[str, bool]:
    """Keep only allow-listed fields carrying real booleans."""
    if not isinstance(updates, dict):
        return {}
    return {
        field: value
        for field, value in updates.items()
        if field in PRIVACY_SETTINGS_FIELDS and isinstance(value, bool)
    }


async def update_settings(
    db: AsyncSession,
    user_id: str,
    updates: Any,
) -> tuple[dict[str, bool], PrivacySettings]:
    """
    Apply allow-listed updates.

    Returns:
        (previous values of the changed fields, updated settings row)

    Raises:
        ValidationError: if no allow-listed field is present
    """
    allowed = filter_allowed_updates(updates)
    if not allowed:
        raise ValidationError("No valid fields to update")

    settings_row = await get_settings(db, user_id)
    if settings_row is None:
        settings_row = PrivacySettings(user_id=user_id, **RESTRICTIVE_DEFAULTS)
        db.add(settings_row)

    previous = {field: getattr(settings_row, field) for field in allowed}
    for field, value in allowed.items():
        setattr(settings_row, field, value)
    settings_row.updated_at = utcnow()

    await db.commit()
    await db.refresh(settings_row)
    return previous, settings_row


async def set_fields(db: AsyncSession, user_id: str, values: dict[str, bool]) -> PrivacySettings:
    """
    Upsert ``values`` into the user's settings without committing.

    Used for cascades that must land in the caller's transaction.
    """
    settings_row = await get_settings(db, user_id)
    if settings_row is None:
        settings_row = PrivacySettings(user_id=user_id, **{**RESTRICTIVE_DEFAULTS, **values})
        db.add(settings_row)
    else:
        for field, value in values.items():
            setattr(settings_row, field, value)
        settings_row.updated_at = utcnow()
    return settings_row


def get_field_visibility(settings_row: PrivacySettings | None, viewer_role: str | None) -> dict[str, bool]:
    """Which directory fields a viewer with ``viewer_role`` may see."""
    if is_manager(viewer_role):
        return {"email": True, "phone": True, "address": True, "children": True}
    if settings_row is None:
        return {"email": False, "phone": False, "address": False, "children": False}
    return {
        "email": bool(settings_row.show_email),
        "phone": bool(settings_row.show_phone),
        "address": bool(settings_row.show_address),
        "children": bool(settings_row.show_children),
    }
