"""
Audit log queries for administrators.

Reads the ``audit_logs`` table written by ``ptsa.utils.audit_log`` and
exports it as CSV.
"""

import csv
import json
from datetime import datetime, timedelta
from io import StringIO

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.models.audit_log import AuditLog
from ptsa.utils.dates import utcnow

DEFAULT_WINDOW_DAYS = 30
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000
MAX_EXPORT_ROWS = 10000

CSV_HEADER = ["Timestamp", "Event Type", "User ID", "Target ID", "Resource Type", "IP Address", "User Agent", "Metadata"]


def sanitize_csv_field(value) -> str:
    """
    Sanitize a CSV field value to prevent CSV injection.

    >>> sanitize_csv_field("=SUM(A1:A10)")
    "'=SUM(A1:A10)"
    """
    value_str = str(value) if value is not None else ""
    if value_str and value_str[0] in ("=", "+", "-", "@", "\t", "\r", "\n"):
        value_str = "'" + value_str
    return value_str


def date_range(days: int = DEFAULT_WINDOW_DAYS, now: datetime | None = None) -> tuple[datetime, datetime]:
    end = now or utcnow()
    return end - timedelta(days=days), end


def _filtered(
    start: datetime,
    end: datetime,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
):
    query = select(AuditLog).where(AuditLog.created_at >= start, AuditLog.created_at <= end)
    if user_id:
        query = query.where(AuditLog.user_id == user_id)
    if action:
        query = query.where(AuditLog.event_type == action)
    if resource_type:
        query = query.where(AuditLog.resource_type == resource_type)
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())


async def query_audit_logs(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    limit: int = DEFAULT_QUERY_LIMIT,
    offset: int = 0,
) -> list[AuditLog]:
    limit = max(1, min(limit, MAX_QUERY_LIMIT))
    offset = max(0, offset)
    result = await db.execute(
        _filtered(start, end, user_id, action, resource_type).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def count_audit_logs(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
) -> int:
    subquery = _filtered(start, end, user_id, action, resource_type).order_by(None).subquery()
    result = await db.execute(select(func.count()).select_from(subquery))
    return result.scalar() or 0


async def export_audit_logs_csv(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
) -> str:
    result = await db.execute(_filtered(start, end, user_id, action, resource_type).limit(MAX_EXPORT_ROWS))

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for log in result.scalars().all():
        writer.writerow(
            [
                sanitize_csv_field(log.created_at.isoformat()),
                sanitize_csv_field(log.event_type),
                sanitize_csv_field(log.user_id),
                sanitize_csv_field(log.target_id),
                sanitize_csv_field(log.resource_type),
                sanitize_csv_field(log.ip_address),
                sanitize_csv_field(log.user_agent),
                sanitize_csv_field(json.dumps(log.meta or {}, sort_keys=True)),
            ]
        )
    return output.getvalue()


def export_filename(start: datetime, end: datetime) -> str:
    return f"audit-logs-{start.date().isoformat()}-to-{end.date().isoformat()}.csv"
