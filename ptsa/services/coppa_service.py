"""
COPPA parental verification and age-out.

Age is always computed server-side from the birth date. Verification
strategies are looked up by method name; the manual-review methods only
issue a review token.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

import stripe
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ptsa.config import settings
from ptsa.constants.audit import AuditAction
from ptsa.constants.privacy import (
    CHILD_RESTRICTIONS,
    COPPA_AGE_THRESHOLD,
    COPPA_CONSENT_VERSION,
    RETENTION_PERIODS,
    ConsentType,
    VerificationMethod,
    VerificationStatus,
)
from ptsa.exceptions import ResourceNotFoundError, ValidationError
from ptsa.models.child_account import ChildAccount
from ptsa.models.communication import CommunicationPreferences
from ptsa.models.consent_record import ConsentRecord
from ptsa.models.user import User
from ptsa.services import privacy_service
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.dates import add_years, today, utcnow

logger = logging.getLogger(__name__)

VERIFICATION_CHARGE_CENTS = 50
KNOWLEDGE_REQUIRED_CORRECT = 3

# (answer field, expected answer field)
KNOWLEDGE_QUESTIONS = (
    ("previousAddress", "expectedPreviousAddress"),
    ("mothersMaidenName", "expectedMothersMaidenName"),
    ("socialSecurityLastFour", "expectedSSNLastFour"),
    ("dateOfBirth", "expectedDateOfBirth"),
    ("driversLicenseState", "expectedDLState"),
)

NEXT_STEPS = {
    VerificationStatus.VERIFIED: "Parental consent verified. Child account is now active.",
    VerificationStatus.PENDING_REVIEW: "Verification pending manual review. You will be notified within 24-48 hours.",
    VerificationStatus.FAILED: "Verification failed. Please try again or choose another verification method.",
}


@dataclass
class VerificationOutcome:
    status: VerificationStatus
    details: dict[str, Any] = field(default_factory=dict)
    token: str | None = None

    @property
    def verified(self) -> bool:
        return self.status is VerificationStatus.VERIFIED


# ============================================================================
# Age
# ============================================================================


def calculate_age(birth_date: date, on: date | None = None) -> int:
    """Whole years between ``birth_date`` and ``on`` (today by default)."""
    on = on or today()
    age = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def is_under_coppa_age(birth_date: date, on: date | None = None) -> bool:
    return calculate_age(birth_date, on) < COPPA_AGE_THRESHOLD


def parse_birth_date(value: Any) -> date:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp."""
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError("Invalid birth date")


def parse_verification_request(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Invalid request data")

    child_user_id = body.get("childUserId")
    if not isinstance(child_user_id, str) or not child_user_id or len(child_user_id) > 255:
        raise ValidationError("Invalid child user ID")

    birth_date = parse_birth_date(body.get("childBirthDate"))

    try:
        method = VerificationMethod(body.get("verificationMethod"))
    except ValueError:
        raise ValidationError("Invalid verification method")

    data = body.get("verificationData") or {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid verification data")

    return {
        "child_user_id": child_user_id,
        "birth_date": birth_date,
        "method": method,
        "data": data,
    }


# ============================================================================
# Verification strategies
# ============================================================================


def _charge_and_refund(source: str, parent_user_id: str) -> bool:
    charge = stripe.Charge.create(
        amount=VERIFICATION_CHARGE_CENTS,
        currency=settings.stripe_currency,
        source=source,
        description="COPPA Parental Verification",
        metadata={"parent_user_id": parent_user_id, "purpose": "coppa_verification"},
        api_key=settings.stripe_secret_key,
    )
    if charge["status"] != "succeeded":
        return False

    stripe.Refund.create(
        charge=charge["id"],
        reason="requested_by_customer",
        metadata={"reason": "coppa_verification_complete"},
        api_key=settings.stripe_secret_key,
    )
    return True


async def verify_credit_card(data: dict, parent_user_id: str) -> VerificationOutcome:
    """A small charge refunded immediately; both calls must succeed."""
    source = data.get("stripeToken")
    verified = False
    if source:
        try:
            verified = await run_in_threadpool(_charge_and_refund, source, parent_user_id)
        except stripe.StripeError as e:
            logger.warning(f"Credit card verification failed: {type(e).__name__}")

    return VerificationOutcome(
        status=VerificationStatus.VERIFIED if verified else VerificationStatus.FAILED,
        details={
            "method": VerificationMethod.CREDIT_CARD.value,
            "last4": data.get("last4"),
            "verified_at": utcnow().isoformat() if verified else None,
        },
    )


def _normalize_answer(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def count_knowledge_matches(data: dict) -> int:
    """Count answered questions matching their expected value; blanks never match."""
    correct = 0
    for answer_key, expected_key in KNOWLEDGE_QUESTIONS:
        answer = _normalize_answer(data.get(answer_key))
        if answer and answer == _normalize_answer(data.get(expected_key)):
            correct += 1
    return correct


async def verify_knowledge_based(data: dict, parent_user_id: str) -> VerificationOutcome:
    correct = count_knowledge_matches(data)
    verified = correct >= KNOWLEDGE_REQUIRED_CORRECT
    return VerificationOutcome(
        status=VerificationStatus.VERIFIED if verified else VerificationStatus.FAILED,
        details={
            "method": VerificationMethod.KNOWLEDGE_BASED.value,
            "questions_answered": sum(1 for key, _ in KNOWLEDGE_QUESTIONS if _normalize_answer(data.get(key))),
            "correct_answers": correct,
            "verified_at": utcnow().isoformat() if verified else None,
        },
    )


async def request_manual_review(method: VerificationMethod, data: dict) -> VerificationOutcome:
    token = secrets.token_hex(32)
    details = {
        "method": method.value,
        "status": VerificationStatus.PENDING_REVIEW.value,
        "submitted_at": utcnow().isoformat(),
    }
    if method is VerificationMethod.SIGNED_CONSENT_FORM:
        details["form_url"] = data.get("formUrl")
    return VerificationOutcome(status=VerificationStatus.PENDING_REVIEW, details=details, token=token)


async def run_verification(method: VerificationMethod, data: dict, parent_user_id: str) -> VerificationOutcome:
    if method is VerificationMethod.CREDIT_CARD:
        return await verify_credit_card(data, parent_user_id)
    if method is VerificationMethod.KNOWLEDGE_BASED:
        return await verify_knowledge_based(data, parent_user_id)
    return await request_manual_review(method, data)


# ============================================================================
# Parent verification flow
# ============================================================================


async def get_child_account(db: AsyncSession, child_user_id: str) -> ChildAccount | None:
    result = await db.execute(select(ChildAccount).where(ChildAccount.child_user_id == child_user_id))
    return result.scalars().first()


async def verify_parent(
    db: AsyncSession,
    parent_user_id: str,
    child_user_id: str,
    birth_date: date,
    method: VerificationMethod,
    data: dict,
) -> dict[str, Any]:
    """
    Verify a parent for a child account and record the outcome.

    Raises:
        ResourceNotFoundError: the child user does not exist
        ValidationError: the child is 13 or older
    """
    child = await db.get(User, child_user_id)
    if child is None or child.deleted_at is not None:
        raise ResourceNotFoundError("Child account not found")

    age = calculate_age(birth_date)
    if age >= COPPA_AGE_THRESHOLD:
        await log_audit_event(
            AuditAction.COPPA_VERIFICATION_REJECTED,
            user_id=parent_user_id,
            target_id=child_user_id,
            resource_type="child_account",
            metadata={"reason": "Child is 13 or older", "calculated_age": age},
        )
        raise ValidationError("Parental consent not required for users 13 and older")

    outcome = await run_verification(method, data, parent_user_id)
    now = utcnow()

    account = await get_child_account(db, child_user_id)
    if account is None:
        account = ChildAccount(child_user_id=child_user_id)
        db.add(account)
    account.parent_user_id = parent_user_id
    account.birth_date = birth_date
    account.parental_consent_given = outcome.verified
    account.consent_date = now if outcome.verified else None
    account.restrictions = dict(CHILD_RESTRICTIONS)
    account.verification_method = method.value
    account.verification_status = outcome.status.value
    account.verification_token = outcome.token
    account.verified_at = now if outcome.verified else None

    if outcome.verified:
        db.add(
            ConsentRecord(
                user_id=child_user_id,
                consent_type=ConsentType.COPPA_PARENTAL.value,
                granted=True,
                parent_user_id=parent_user_id,
                consent_version=COPPA_CONSENT_VERSION,
                meta=outcome.details,
                created_at=now,
            )
        )
        await privacy_service.set_fields(db, child_user_id, dict(privacy_service.RESTRICTIVE_DEFAULTS))
        await _mark_parent_consent_verified(db, child_user_id)

    await db.commit()
    await db.refresh(account)

    audit_action = {
        VerificationStatus.VERIFIED: AuditAction.COPPA_VERIFICATION_SUCCESS,
        VerificationStatus.PENDING_REVIEW: AuditAction.COPPA_VERIFICATION_PENDING,
        VerificationStatus.FAILED: AuditAction.COPPA_VERIFICATION_FAILED,
    }[outcome.status]
    await log_audit_event(
        audit_action,
        user_id=parent_user_id,
        target_id=str(account.id),
        resource_type="child_account",
        metadata={
            "child_user_id": child_user_id,
            "verification_method": method.value,
            "verification_result": outcome.verified,
            **{key: value for key, value in outcome.details.items() if key != "token"},
        },
    )

    return {
        "success": True,
        "verified": outcome.verified,
        "status": outcome.status.value,
        "childAccount": account.to_dict(),
        "verificationToken": outcome.token,
        "nextSteps": NEXT_STEPS[outcome.status],
    }


async def _mark_parent_consent_verified(db: AsyncSession, child_user_id: str) -> None:
    result = await db.execute(
        select(CommunicationPreferences).where(CommunicationPreferences.user_id == child_user_id)
    )
    prefs = result.scalars().first()
    if prefs is None:
        prefs = CommunicationPreferences(user_id=child_user_id)
        db.add(prefs)
    prefs.parent_consent_required = True
    prefs.parent_consent_verified = True


async def get_verification_status(
    db: AsyncSession,
    child_user_id: str,
    viewer_id: str,
    viewer_is_admin: bool = False,
) -> dict[str, Any]:
    account = await get_child_account(db, child_user_id)
    if account is None or (account.parent_user_id != viewer_id and not viewer_is_admin):
        return {"verified": False, "message": "No parental consent record found"}

    return {
        "verified": account.parental_consent_given,
        "status": account.verification_status,
        "consentDate": account.consent_date.isoformat() if account.consent_date else None,
        "restrictions": account.restrictions or {},
        "message": "Parental consent verified"
        if account.parental_consent_given
        else "Parental consent pending verification",
    }


# ============================================================================
# Age-out
# ============================================================================


async def process_coppa_age_out(db: AsyncSession, on: date | None = None) -> dict[str, int]:
    """
    Convert child accounts whose holder turned 13 more than the grace period ago.

    The child_account row is removed, privacy settings are relaxed to the
    standard defaults, and the transition is audited.
    """
    on = on or today()
    grace = timedelta(days=RETENTION_PERIODS["child_data_after_13"])
    result = await db.execute(select(ChildAccount.id, ChildAccount.child_user_id, ChildAccount.birth_date))

    processed = 0
    errors = 0
    for account_id, child_user_id, birth_date in result.all():
        thirteenth = add_years(datetime.combine(birth_date, datetime.min.time()), COPPA_AGE_THRESHOLD).date()
        if thirteenth + grace > on:
            continue

        try:
            await privacy_service.set_fields(db, child_user_id, dict(privacy_service.STANDARD_DEFAULTS))
            await db.execute(delete(ChildAccount).where(ChildAccount.id == account_id))
            await db.commit()
        except Exception as e:
            await db.rollback()
            errors += 1
            logger.error(f"COPPA age-out failed for child account {account_id}: {e}")
            continue

        processed += 1
        await log_audit_event(
            AuditAction.COPPA_AGE_OUT,
            user_id=child_user_id,
            resource_type="child_account",
            metadata={"turned_13_on": thirteenth.isoformat()},
        )

    logger.info(f"COPPA age-out complete: processed={processed} errors={errors}")
    return {"processed": processed, "errors": errors}
