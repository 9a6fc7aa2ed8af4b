"""
Data export and deletion jobs.

Requests are persisted rows moving through ``pending -> processing ->
completed | failed``. A job is claimed with a conditional UPDATE, so the
request's background task and the scheduler's supervisor can never both run
it. ``resume_stale_jobs`` re-queues work abandoned by a crashed worker and
gives up after ``settings.job_max_attempts`` claims.
"""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa import database
from ptsa.config import settings
from ptsa.constants.audit import AuditAction
from ptsa.constants.privacy import EXPORT_ACTIVITY_LIMIT, EXPORT_LINK_TTL_DAYS, JobStatus
from ptsa.exceptions import GoneError, ResourceNotFoundError
from ptsa.models.audit_log import AuditLog
from ptsa.models.child_account import ChildAccount
from ptsa.models.communication import CommunicationPreferences, EmailLog
from ptsa.models.consent_record import ConsentRecord
from ptsa.models.data_request import DataDeletionRequest, DataExportRequest
from ptsa.models.event import Event, EventRSVP, VolunteerSignup, VolunteerSlot
from ptsa.models.payment import Payment
from ptsa.models.privacy_settings import PrivacySettings
from ptsa.models.user import Member, User
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

OPEN_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class ExportNotReady(Exception):
    """The export exists but has not completed yet."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(status)


def hash_user_id(user_id: str) -> str:
    return hashlib.sha256(user_id.encode()).hexdigest()


def generate_anonymized_id() -> str:
    return f"DELETED_{secrets.token_hex(8)}"


# ============================================================================
# Job bookkeeping
# ============================================================================


async def claim_job(db: AsyncSession, model, job_id: int) -> bool:
    """Atomically move a pending job to processing; False if someone else got it."""
    result = await db.execute(
        update(model)
        .where(model.id == job_id, model.status == JobStatus.PENDING.value)
        .values(status=JobStatus.PROCESSING.value, attempts=model.attempts + 1, started_at=utcnow(), error=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _mark_failed(db: AsyncSession, model, job_id: int, error: str) -> None:
    await db.rollback()
    await db.execute(
        update(model)
        .where(model.id == job_id)
        .values(status=JobStatus.FAILED.value, error=error[:1000], completed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _find_open_request(db: AsyncSession, model, user_id: str):
    result = await db.execute(
        select(model)
        .where(model.user_id == user_id, model.status.in_(OPEN_STATUSES))
        .order_by(model.created_at.desc())
    )
    return result.scalars().first()


# ============================================================================
# Export
# ============================================================================


async def request_export(
    db: AsyncSession,
    user_id: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[DataExportRequest, bool]:
    """Return the user's open export request, or create a new pending one."""
    existing = await _find_open_request(db, DataExportRequest, user_id)
    if existing is not None:
        return existing, False

    export_request = DataExportRequest(user_id=user_id, status=JobStatus.PENDING.value, attempts=0)
    db.add(export_request)
    await db.commit()
    await db.refresh(export_request)

    await log_audit_event(
        AuditAction.DATA_EXPORT_REQUESTED,
        user_id=user_id,
        target_id=str(export_request.id),
        resource_type="data_export",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return export_request, True


async def list_exports(db: AsyncSession, user_id: str) -> list[DataExportRequest]:
    result = await db.execute(
        select(DataExportRequest)
        .where(DataExportRequest.user_id == user_id)
        .order_by(DataExportRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def get_export_download(db: AsyncSession, user_id: str, request_id: int) -> DataExportRequest:
    """
    Return a completed, unexpired export owned by ``user_id``.

    Raises:
        ResourceNotFoundError: no such export for this user
        ExportNotReady: still pending or processing (or failed)
        GoneError: the download link has expired
    """
    result = await db.execute(
        select(DataExportRequest).where(DataExportRequest.id == request_id, DataExportRequest.user_id == user_id)
    )
    export_request = result.scalars().first()
    if export_request is None:
        raise ResourceNotFoundError("Export request not found")
    if export_request.status != JobStatus.COMPLETED.value:
        raise ExportNotReady(export_request.status)
    if export_request.expires_at is None or export_request.expires_at <= utcnow():
        raise GoneError("Export link has expired")
    return export_request


async def gather_user_data(db: AsyncSession, user_id: str) -> dict[str, Any]:
    data: dict[str, Any] = {}

    member = (await db.execute(select(Member).where(Member.user_id == user_id))).scalars().first()
    if member is not None:
        profile = member.to_dict()
        profile.pop("id", None)
        profile.pop("user_id", None)
        data["profile"] = profile

    privacy = (await db.execute(select(PrivacySettings).where(PrivacySettings.user_id == user_id))).scalars().first()
    if privacy is not None:
        data["privacy_settings"] = privacy.to_dict()

    consents = await db.execute(
        select(ConsentRecord).where(ConsentRecord.user_id == user_id).order_by(ConsentRecord.created_at.desc())
    )
    data["consent_history"] = [record.to_dict() for record in consents.scalars().all()]

    rsvps = await db.execute(
        select(EventRSVP, Event.title, Event.start_time, Event.event_type)
        .join(Event, Event.id == EventRSVP.event_id)
        .where(EventRSVP.user_id == user_id)
    )
    data["event_registrations"] = [
        {
            **rsvp.to_dict(),
            "event": {"title": title, "start_time": start.isoformat() if start else None, "event_type": event_type},
        }
        for rsvp, title, start, event_type in rsvps.all()
    ]

    signups = await db.execute(
        select(VolunteerSignup, VolunteerSlot.title, VolunteerSlot.event_id)
        .join(VolunteerSlot, VolunteerSlot.id == VolunteerSignup.slot_id)
        .where(VolunteerSignup.user_id == user_id)
    )
    data["volunteer_history"] = [
        {**signup.to_dict(), "slot": {"title": title, "event_id": event_id}}
        for signup, title, event_id in signups.all()
    ]

    payments = await db.execute(select(Payment).where(Payment.user_id == user_id))
    data["payment_history"] = [
        {
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
            "payment_type": payment.payment_type,
            "created_at": payment.created_at.isoformat() if payment.created_at else None,
        }
        for payment in payments.scalars().all()
    ]

    activity = await db.execute(
        select(AuditLog.event_type, AuditLog.resource_type, AuditLog.created_at)
        .where(AuditLog.user_id == user_id)
        .order_by(AuditLog.created_at.desc())
        .limit(EXPORT_ACTIVITY_LIMIT)
    )
    data["activity_log"] = [
        {"action": action, "resource_type": resource_type, "created_at": created_at.isoformat()}
        for action, resource_type, created_at in activity.all()
    ]

    return data


async def process_export(db: AsyncSession, job_id: int) -> bool:
    """Claim and run one export job. Returns True when it completed."""
    if not await claim_job(db, DataExportRequest, job_id):
        return False

    export_request = await db.get(DataExportRequest, job_id, populate_existing=True)
    user_id = export_request.user_id
    try:
        user_data = await gather_user_data(db, user_id)
        now = utcnow()
        export_request.export_data = {
            "export_date": now.isoformat(),
            "user_id": user_id,
            "data": user_data,
        }
        export_request.export_url = f"/api/privacy/export/{job_id}"
        export_request.expires_at = now + timedelta(days=EXPORT_LINK_TTL_DAYS)
        export_request.status = JobStatus.COMPLETED.value
        export_request.completed_at = now
        await db.commit()
    except Exception as e:
        logger.exception(f"Data export {job_id} failed")
        await _mark_failed(db, DataExportRequest, job_id, str(e))
        await log_audit_event(
            AuditAction.DATA_EXPORT_FAILED, user_id=user_id, target_id=str(job_id), resource_type="data_export"
        )
        return False

    await log_audit_event(
        AuditAction.DATA_EXPORT_COMPLETED,
        user_id=user_id,
        target_id=str(job_id),
        resource_type="data_export",
        metadata={"data_categories": sorted(user_data)},
    )
    return True


async def run_export_job(job_id: int) -> None:
    """Background-task entry point; owns its session."""
    async with database.AsyncSessionLocal() as db:
        await process_export(db, job_id)


# ============================================================================
# Deletion
# ============================================================================


async def request_deletion(
    db: AsyncSession,
    user_id: str,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[DataDeletionRequest, bool]:
    existing = await _find_open_request(db, DataDeletionRequest, user_id)
    if existing is not None:
        return existing, False

    deletion_request = DataDeletionRequest(
        user_id=user_id, status=JobStatus.PENDING.value, reason=reason, attempts=0
    )
    db.add(deletion_request)
    await db.commit()
    await db.refresh(deletion_request)

    await log_audit_event(
        AuditAction.DATA_DELETION_REQUESTED,
        user_id=user_id,
        target_id=str(deletion_request.id),
        resource_type="data_deletion",
        metadata={"reason": reason} if reason else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return deletion_request, True


async def _bulk_update(db: AsyncSession, statement) -> int:
    result = await db.execute(statement.execution_options(synchronize_session=False))
    return result.rowcount or 0


async def anonymize_user_data(db: AsyncSession, user_id: str, anonymized_id: str) -> dict[str, int]:
    """Erase or anonymize everything tied to ``user_id``; runs in the caller's transaction."""
    now = utcnow()
    placeholder_email = f"{anonymized_id.lower()}@deleted.invalid"
    results: dict[str, int] = {}

    results["members"] = await _bulk_update(
        db,
        update(Member)
        .where(Member.user_id == user_id)
        .values(
            user_id=None,
            first_name="Deleted",
            last_name="User",
            email=placeholder_email,
            phone=None,
            student_info=None,
            volunteer_interests=None,
            membership_status="expired",
            deleted_at=now,
        ),
    )
    results["users"] = await _bulk_update(
        db,
        update(User)
        .where(User.id == user_id)
        .values(email=placeholder_email, first_name="", last_name="", deleted_at=now),
    )
    results["privacy_settings"] = await _bulk_update(
        db, delete(PrivacySettings).where(PrivacySettings.user_id == user_id)
    )
    results["communication_preferences"] = await _bulk_update(
        db, delete(CommunicationPreferences).where(CommunicationPreferences.user_id == user_id)
    )
    results["consent_records"] = await _bulk_update(
        db,
        update(ConsentRecord)
        .where(ConsentRecord.user_id == user_id)
        .values(
            user_id=None,
            ip_address=None,
            user_agent=None,
            meta={"anonymized": True, "anonymized_id": anonymized_id},
        ),
    )
    results["event_rsvps"] = await _bulk_update(db, delete(EventRSVP).where(EventRSVP.user_id == user_id))
    results["volunteer_signups"] = await _bulk_update(
        db, delete(VolunteerSignup).where(VolunteerSignup.user_id == user_id)
    )
    results["child_accounts"] = await _bulk_update(
        db,
        update(ChildAccount).where(ChildAccount.parent_user_id == user_id).values(parent_user_id=anonymized_id),
    )
    results["payments"] = await _bulk_update(
        db, update(Payment).where(Payment.user_id == user_id).values(user_id=anonymized_id)
    )
    results["email_logs"] = await _bulk_update(
        db, update(EmailLog).where(EmailLog.user_id == user_id).values(user_id=anonymized_id)
    )
    return results


async def process_deletion(db: AsyncSession, job_id: int) -> bool:
    """Claim and run one deletion job. Returns True when it completed."""
    if not await claim_job(db, DataDeletionRequest, job_id):
        return False

    deletion_request = await db.get(DataDeletionRequest, job_id, populate_existing=True)
    user_id = deletion_request.user_id
    user_hash = hash_user_id(user_id)
    anonymized_id = deletion_request.anonymized_id or generate_anonymized_id()

    try:
        results = await anonymize_user_data(db, user_id, anonymized_id)
        deletion_request.user_id = anonymized_id
        deletion_request.anonymized_id = anonymized_id
        deletion_request.deletion_results = results
        deletion_request.status = JobStatus.COMPLETED.value
        deletion_request.completed_at = utcnow()
        await db.commit()
    except Exception as e:
        logger.exception(f"Data deletion {job_id} failed")
        await _mark_failed(db, DataDeletionRequest, job_id, str(e))
        await log_audit_event(
            AuditAction.DATA_DELETION_FAILED,
            target_id=str(job_id),
            resource_type="data_deletion",
            metadata={"original_user_hash": user_hash},
        )
        return False

    await log_audit_event(
        AuditAction.DATA_DELETION_COMPLETED,
        target_id=str(job_id),
        resource_type="data_deletion",
        metadata={
            "original_user_hash": user_hash,
            "anonymized_id": anonymized_id,
            "deletion_results": results,
        },
    )
    return True


async def run_deletion_job(job_id: int) -> None:
    async with database.AsyncSessionLocal() as db:
        await process_deletion(db, job_id)


async def verify_deletion(db: AsyncSession, original_user_id: str) -> dict[str, Any]:
    """List the tables that still hold rows keyed by ``original_user_id``."""
    checks = {
        "members": select(Member.id).where(Member.user_id == original_user_id),
        "privacy_settings": select(PrivacySettings.id).where(PrivacySettings.user_id == original_user_id),
        "communication_preferences": select(CommunicationPreferences.id).where(
            CommunicationPreferences.user_id == original_user_id
        ),
        "consent_records": select(ConsentRecord.id).where(ConsentRecord.user_id == original_user_id),
        "event_rsvps": select(EventRSVP.id).where(EventRSVP.user_id == original_user_id),
        "volunteer_signups": select(VolunteerSignup.id).where(VolunteerSignup.user_id == original_user_id),
        "payments": select(Payment.id).where(Payment.user_id == original_user_id),
    }
    remaining = []
    for table, query in checks.items():
        if (await db.execute(query.limit(1))).first() is not None:
            remaining.append(table)
    return {"is_deleted": not remaining, "remaining_data": remaining}


# ============================================================================
# Supervisor
# ============================================================================

JOB_RUNNERS = (
    (DataExportRequest, process_export),
    (DataDeletionRequest, process_deletion),
)


async def resume_stale_jobs(db: AsyncSession) -> dict[str, int]:
    """
    Re-queue processing jobs whose worker went away and run all pending jobs.

    A job whose attempts reached ``settings.job_max_attempts`` is marked failed
    instead of being retried.
    """
    stale_before = utcnow() - timedelta(minutes=settings.job_stale_after_minutes)
    summary = {"requeued": 0, "abandoned": 0, "completed": 0, "failed": 0}

    for model, runner in JOB_RUNNERS:
        abandoned = await _bulk_update(
            db,
            update(model)
            .where(
                model.status == JobStatus.PROCESSING.value,
                model.started_at < stale_before,
                model.attempts >= settings.job_max_attempts,
            )
            .values(
                status=JobStatus.FAILED.value,
                error=f"Gave up after {settings.job_max_attempts} attempts",
                completed_at=utcnow(),
            ),
        )
        requeued = await _bulk_update(
            db,
            update(model)
            .where(model.status == JobStatus.PROCESSING.value, model.started_at < stale_before)
            .values(status=JobStatus.PENDING.value),
        )
        await db.commit()
        summary["abandoned"] += abandoned
        summary["requeued"] += requeued
        if abandoned:
            logger.warning(f"Gave up on {abandoned} stale {model.__tablename__} jobs")

        pending = await db.execute(
            select(model.id).where(model.status == JobStatus.PENDING.value).order_by(model.created_at)
        )
        for job_id in pending.scalars().all():
            if await runner(db, job_id):
                summary["completed"] += 1
            else:
                summary["failed"] += 1

    if any(summary.values()):
        logger.info(f"Job supervisor run: {summary}")
    return summary


async def run_supervisor() -> dict[str, int]:
    async with database.AsyncSessionLocal() as db:
        return await resume_stale_jobs(db)
