"""
Consent Service

Records consent decisions (COPPA / FERPA / GDPR Article 7) as append-only
rows and answers "what is the current consent" questions.
All functions are async and accept an injected AsyncSession.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.privacy import DEFAULT_CONSENT_VERSION, ConsentType
from ptsa.exceptions import ValidationError
from ptsa.models.child_account import ChildAccount
from ptsa.models.communication import CommunicationPreferences
from ptsa.models.consent_record import ConsentRecord
from ptsa.services import privacy_service
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

CONSENT_TYPES = frozenset(consent_type.value for consent_type in ConsentType)


def parse_consent_payload(body: Any) -> dict[str, Any]:
    """
    Validate a consent POST body (camelCase keys).

    Raises:
        ValidationError: with the user-facing message for the first problem found
    """
    if not isinstance(body, dict):
        raise ValidationError("Invalid request data")

    consent_type = body.get("consentType")
    if consent_type not in CONSENT_TYPES:
        raise ValidationError("Invalid consent type")

    granted = body.get("granted")
    if not isinstance(granted, bool):
        raise ValidationError("Granted must be a boolean")

    parent_user_id = body.get("parentUserId")
    if consent_type == ConsentType.COPPA_PARENTAL.value and not parent_user_id:
        raise ValidationError("Parent user ID required for COPPA consent")

    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("Invalid metadata format")

    return {
        "consent_type": consent_type,
        "granted": granted,
        "parent_user_id": parent_user_id,
        "consent_version": str(body.get("consentVersion") or DEFAULT_CONSENT_VERSION),
        "metadata": metadata,
    }


async def record_consent(
    db: AsyncSession,
    user_id: str,
    consent_type: str,
    granted: bool,
    parent_user_id: str | None = None,
    consent_version: str = DEFAULT_CONSENT_VERSION,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> ConsentRecord:
    """
    Insert a new consent record.

    Revoking ``directory_inclusion`` hides the user from the directory, and
    revoking ``email_communications`` switches email off; both changes land
    in the same transaction as the consent row.
    """
    if consent_type == ConsentType.COPPA_PARENTAL.value and not parent_user_id:
        raise ValidationError("Parent user ID required for COPPA consent")

    record = ConsentRecord(
        user_id=user_id,
        consent_type=consent_type,
        granted=granted,
        parent_user_id=parent_user_id,
        consent_version=consent_version,
        ip_address=ip_address,
        user_agent=user_agent,
        meta=metadata or {},
        created_at=utcnow(),
    )
    db.add(record)

    if not granted and consent_type == ConsentType.DIRECTORY_INCLUSION.value:
        await privacy_service.set_fields(db, user_id, {"directory_visible": False})

    if not granted and consent_type == ConsentType.EMAIL_COMMUNICATIONS.value:
        await _disable_email(db, user_id)

    if commit:
        await db.commit()
        await db.refresh(record)

    logger.info(
        "Consent recorded: user=%s type=%s granted=%s version=%s",
        user_id,
        consent_type,
        granted,
        consent_version,
    )
    return record


async def _disable_email(db: AsyncSession, user_id: str) -> None:
    result = await db.execute(select(CommunicationPreferences).where(CommunicationPreferences.user_id == user_id))
    prefs = result.scalars().first()
    if prefs is None:
        prefs = CommunicationPreferences(user_id=user_id)
        db.add(prefs)
    prefs.email_enabled = False
    prefs.unsubscribed_at = utcnow()
    prefs.unsubscribe_reason = "Email consent revoked"


async def get_consent_history(
    db: AsyncSession,
    user_id: str,
    consent_type: str | None = None,
) -> list[ConsentRecord]:
    """Return consent records for the user, newest first."""
    query = select(ConsentRecord).where(ConsentRecord.user_id == user_id)
    if consent_type:
        query = query.where(ConsentRecord.consent_type == consent_type)
    result = await db.execute(query.order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc()))
    return list(result.scalars().all())


def get_current_consents(records: list[ConsentRecord]) -> dict[str, ConsentRecord]:
    """Latest record per consent type; ``records`` must be ordered newest first."""
    current: dict[str, ConsentRecord] = {}
    for record in records:
        current.setdefault(record.consent_type, record)
    return current


def get_required_consents(is_child: bool, features: list[str] | None = None) -> list[str]:
    required = [ConsentType.TERMS_OF_SERVICE.value, ConsentType.PRIVACY_POLICY.value]
    if is_child:
        required.append(ConsentType.COPPA_PARENTAL.value)

    features = features or []
    if "ai" in features:
        required.append(ConsentType.AI_FEATURES.value)
    if "photos" in features:
        required.append(ConsentType.PHOTO_SHARING.value)
    return required


async def check_required_consents(
    db: AsyncSession,
    user_id: str,
    required: list[str],
) -> dict[str, Any]:
    current = get_current_consents(await get_consent_history(db, user_id))
    consents = {consent_type: bool(current.get(consent_type) and current[consent_type].granted) for consent_type in required}
    missing = [consent_type for consent_type, granted in consents.items() if not granted]
    return {
        "has_all_consents": not missing,
        "missing_consents": missing,
        "consents": consents,
    }


async def get_required_consent_status(db: AsyncSession, user_id: str) -> dict[str, Any]:
    """Required consents for the user; parental consent is added for registered children."""
    result = await db.execute(select(ChildAccount.id).where(ChildAccount.child_user_id == user_id))
    is_child = result.scalar_one_or_none() is not None
    return await check_required_consents(db, user_id, get_required_consents(is_child))
