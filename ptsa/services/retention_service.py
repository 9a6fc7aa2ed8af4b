"""
Data retention automation.

Each policy names a table, the date column its age is measured from, how
many days rows are kept and what happens afterwards: ``delete``,
``anonymize`` or ``archive`` (copied into ``archived_records`` and removed).
Row-by-row actions work in batches so one bad row does not stop the rest.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.audit import AuditAction
from ptsa.constants.privacy import RETENTION_PERIODS, JobStatus
from ptsa.models.archived_record import ArchivedRecord
from ptsa.models.audit_log import AuditLog
from ptsa.models.data_request import DataExportRequest
from ptsa.models.event import EventRSVP, VolunteerSignup
from ptsa.models.user import Member
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


class RetentionAction(str, Enum):
    DELETE = "delete"
    ANONYMIZE = "anonymize"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class RetentionPolicy:
    name: str
    model: Any
    date_field: str
    retention_days: int
    action: RetentionAction
    description: str
    conditions: dict[str, Any] = field(default_factory=dict)


RETENTION_POLICIES: tuple[RetentionPolicy, ...] = (
    RetentionPolicy(
        name="inactive_members",
        model=Member,
        date_field="membership_expires_at",
        retention_days=RETENTION_PERIODS["inactive_member"],
        action=RetentionAction.ANONYMIZE,
        conditions={"membership_status": "expired"},
        description="Anonymize expired member records after 1 year",
    ),
    RetentionPolicy(
        name="event_registrations",
        model=EventRSVP,
        date_field="created_at",
        retention_days=RETENTION_PERIODS["event_registration"],
        action=RetentionAction.DELETE,
        description="Delete old event registrations after 2 years",
    ),
    RetentionPolicy(
        name="volunteer_records",
        model=VolunteerSignup,
        date_field="created_at",
        retention_days=RETENTION_PERIODS["volunteer"],
        action=RetentionAction.ARCHIVE,
        description="Archive volunteer records after 3 years",
    ),
    RetentionPolicy(
        name="audit_logs",
        model=AuditLog,
        date_field="created_at",
        retention_days=RETENTION_PERIODS["audit_logs"],
        action=RetentionAction.ARCHIVE,
        description="Archive audit logs after 3 years",
    ),
    RetentionPolicy(
        name="expired_exports",
        model=DataExportRequest,
        date_field="expires_at",
        retention_days=0,
        action=RetentionAction.DELETE,
        conditions={"status": JobStatus.COMPLETED.value},
        description="Delete expired export files",
    ),
)


def _where_clauses(policy: RetentionPolicy, now) -> list:
    cutoff = now - timedelta(days=policy.retention_days)
    clauses = [getattr(policy.model, policy.date_field) < cutoff]
    clauses.extend(getattr(policy.model, column) == value for column, value in policy.conditions.items())
    return clauses


def anonymize_member(member: Member) -> None:
    member.first_name = "Anonymous"
    member.last_name = f"Member {member.id}"
    member.email = f"anonymous-{member.id}@deleted.invalid"
    member.phone = None
    member.student_info = None
    member.volunteer_interests = None
    member.user_id = None
    member.updated_at = utcnow()


def _snapshot(record) -> dict[str, Any]:
    if hasattr(record, "to_dict"):
        return record.to_dict()
    return {column.key: getattr(record, column.key) for column in record.__mapper__.column_attrs}


async def _delete_rows(db: AsyncSession, policy: RetentionPolicy, now) -> tuple[int, list[str]]:
    result = await db.execute(
        delete(policy.model).where(*_where_clauses(policy, now)).execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0, []


async def _per_row(db: AsyncSession, policy: RetentionPolicy, now) -> tuple[int, list[str]]:
    query = select(policy.model.id).where(*_where_clauses(policy, now))
    if policy.model is Member:
        query = query.where(Member.user_id.is_not(None))
    record_ids = (await db.execute(query.limit(BATCH_SIZE))).scalars().all()

    processed = 0
    errors: list[str] = []
    for record_id in record_ids:
        try:
            record = await db.get(policy.model, record_id)
            if policy.action is RetentionAction.ANONYMIZE:
                anonymize_member(record)
            else:
                db.add(
                    ArchivedRecord(
                        source_table=policy.model.__tablename__,
                        record_id=str(record_id),
                        data=_snapshot(record),
                        archive_reason="retention_policy",
                        archived_at=now,
                    )
                )
                await db.delete(record)
            await db.commit()
            processed += 1
        except Exception as e:
            await db.rollback()
            errors.append(f"Failed to {policy.action.value} record {record_id}: {type(e).__name__}")
    return processed, errors


async def apply_policy(db: AsyncSession, policy: RetentionPolicy, now=None) -> dict[str, Any]:
    now = now or utcnow()
    try:
        if policy.action is RetentionAction.DELETE:
            processed, errors = await _delete_rows(db, policy, now)
        else:
            processed, errors = await _per_row(db, policy, now)
    except Exception as e:
        await db.rollback()
        logger.error(f"Retention policy {policy.name} failed: {e}")
        processed, errors = 0, [str(e)]

    if errors:
        logger.warning(f"Retention policy {policy.name}: {len(errors)} errors")
    return {"policy": policy.name, "processed": processed, "errors": errors}


async def run_retention_policies(db: AsyncSession, now=None) -> list[dict[str, Any]]:
    """Apply every policy and audit the totals."""
    results = [await apply_policy(db, policy, now) for policy in RETENTION_POLICIES]

    await log_audit_event(
        AuditAction.RETENTION_APPLIED,
        resource_type="retention",
        metadata={
            "policies_run": len(results),
            "total_processed": sum(result["processed"] for result in results),
            "total_errors": sum(len(result["errors"]) for result in results),
        },
    )
    logger.info("Retention policies applied: " + ", ".join(f"{r['policy']}={r['processed']}" for r in results))
    return results


async def cleanup_temporary_data(db: AsyncSession, now=None) -> dict[str, int]:
    """Delete completed exports whose download link has expired."""
    now = now or utcnow()
    result = await db.execute(
        delete(DataExportRequest)
        .where(
            DataExportRequest.status == JobStatus.COMPLETED.value,
            DataExportRequest.expires_at < now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    deleted = result.rowcount or 0
    logger.info(f"Temporary data cleanup removed {deleted} expired exports")
    return {"expired_exports": deleted}
