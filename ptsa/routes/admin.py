"""
Admin Routes

Audit log browsing and CSV export for admins and board members. Every
access is itself audited, including refused attempts.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, get_user_role, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.constants.roles import is_manager
from ptsa.database import get_db
from ptsa.exceptions import AuthorizationError
from ptsa.middleware.rate_limit import PRIVACY_RATE_LIMITS, rate_limiter
from ptsa.services import audit_service
from ptsa.utils.audit_log import log_request_audit_event

router = APIRouter(prefix="/admin", tags=["Admin"])


async def _require_audit_access(request: Request, db: AsyncSession, user_id: str | None) -> str:
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    if not is_manager(role):
        await log_request_audit_event(
            request,
            AuditAction.ADMIN_ACCESS,
            user_id,
            resource_type="audit_logs",
            metadata={"unauthorized": True, "path": request.url.path, "role": role},
        )
        raise AuthorizationError("Forbidden - Admin access required")
    return user_id


@router.get("/audit-logs")
async def list_audit_logs(
    request: Request,
    userId: str | None = None,
    action: str | None = None,
    resourceType: str | None = None,
    limit: int = audit_service.DEFAULT_QUERY_LIMIT,
    offset: int = 0,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Audit log rows from the last 30 days, newest first.

    **Parameters**:
    - userId, action, resourceType: Exact-match filters
    - limit (max 1000) and offset
    """
    user_id = await _require_audit_access(request, db, user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["audit_log_access"], user_id)

    start, end = audit_service.date_range()
    filters = {"user_id": userId, "action": action, "resource_type": resourceType}
    logs = await audit_service.query_audit_logs(db, start, end, limit=limit, offset=offset, **filters)
    total = await audit_service.count_audit_logs(db, start, end, **filters)

    await log_request_audit_event(
        request,
        AuditAction.ADMIN_ACCESS,
        user_id,
        resource_type="audit_logs",
        metadata={"filters": filters, "returned": len(logs)},
    )
    return {
        "logs": [log.to_dict() for log in logs],
        "total": total,
        "filters": {
            "userId": userId,
            "action": action,
            "resourceType": resourceType,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
        },
    }


@router.get("/audit-logs/export")
async def export_audit_logs(
    request: Request,
    days: int = audit_service.DEFAULT_WINDOW_DAYS,
    userId: str | None = None,
    action: str | None = None,
    resourceType: str | None = None,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = await _require_audit_access(request, db, user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["audit_log_export"], user_id)

    days = max(1, min(days, 365))
    start, end = audit_service.date_range(days)
    content = await audit_service.export_audit_logs_csv(
        db, start, end, user_id=userId, action=action, resource_type=resourceType
    )

    await log_request_audit_event(
        request,
        AuditAction.ADMIN_EXPORT,
        user_id,
        resource_type="audit_logs",
        metadata={"days": days, "user_id": userId, "action": action, "resource_type": resourceType},
    )
    filename = audit_service.export_filename(start, end)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
