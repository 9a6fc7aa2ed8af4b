"""
Privacy Routes

Consent records, privacy settings, data export and deletion requests and
COPPA parental verification.
"""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, get_user_role, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.constants.roles import RoleName
from ptsa.database import get_db
from ptsa.exceptions import ValidationError
from ptsa.middleware.rate_limit import PRIVACY_RATE_LIMITS, rate_limiter
from ptsa.services import consent_service, coppa_service, data_request_service, privacy_service
from ptsa.utils.audit_log import extract_client_info, log_request_audit_event
from ptsa.utils.request import read_json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/privacy", tags=["Privacy"])


# ============================================================================
# Consent
# ============================================================================


@router.get("/consent")
async def get_consent(
    type: str | None = None,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Consent history (newest first), the current decision per type and required consent status."""
    user_id = require_user_id(user_id)
    records = await consent_service.get_consent_history(db, user_id, type)
    current = consent_service.get_current_consents(records)
    return {
        "records": [record.to_dict() for record in records],
        "current": {consent_type: record.to_dict() for consent_type, record in current.items()},
        "required": await consent_service.get_required_consent_status(db, user_id),
    }


@router.post("/consent")
async def record_consent(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["consent_update"], user_id)

    payload = consent_service.parse_consent_payload(await read_json_body(request))
    ip_address, user_agent = extract_client_info(request)
    record = await consent_service.record_consent(
        db,
        user_id,
        payload["consent_type"],
        payload["granted"],
        parent_user_id=payload["parent_user_id"],
        consent_version=payload["consent_version"],
        ip_address=ip_address,
        user_agent=user_agent,
        metadata=payload["metadata"],
    )

    await log_request_audit_event(
        request,
        AuditAction.CONSENT_GRANTED if payload["granted"] else AuditAction.CONSENT_REVOKED,
        user_id,
        target_id=str(record.id),
        resource_type="consent",
        metadata={"consent_type": payload["consent_type"], "consent_version": payload["consent_version"]},
    )
    return {"success": True, "consent": record.to_dict()}


# ============================================================================
# Settings
# ============================================================================


@router.get("/settings")
async def get_privacy_settings(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["privacy_settings_read"], user_id)

    settings_row, created = await privacy_service.get_or_create_settings(db, user_id)
    if created:
        await log_request_audit_event(
            request,
            AuditAction.PRIVACY_SETTINGS_CREATED,
            user_id,
            resource_type="privacy_settings",
            metadata={"defaults": dict(privacy_service.RESTRICTIVE_DEFAULTS)},
        )
    return {"settings": settings_row.to_dict()}


@router.put("/settings")
async def update_privacy_settings(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["privacy_settings_update"], user_id)

    previous, settings_row = await privacy_service.update_settings(db, user_id, await read_json_body(request))
    await log_request_audit_event(
        request,
        AuditAction.PRIVACY_SETTINGS_UPDATE,
        user_id,
        resource_type="privacy_settings",
        metadata={
            "previous": previous,
            "updated": {field: getattr(settings_row, field) for field in previous},
        },
    )
    return {"success": True, "settings": settings_row.to_dict()}


# ============================================================================
# Data export
# ============================================================================


@router.post("/export", status_code=status.HTTP_202_ACCEPTED)
async def request_data_export(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Queue an export of everything held about the caller."""
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["data_export"], user_id)

    ip_address, user_agent = extract_client_info(request)
    export_request, created = await data_request_service.request_export(db, user_id, ip_address, user_agent)
    if created:
        background_tasks.add_task(data_request_service.run_export_job, export_request.id)

    return {
        "requestId": export_request.id,
        "status": export_request.status,
        "message": "Your data export has been queued"
        if created
        else "An export request is already in progress",
    }


@router.get("/export")
async def list_data_exports(
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    exports = await data_request_service.list_exports(db, user_id)
    return {"requests": [export.to_dict() for export in exports]}


@router.get("/export/{request_id}")
async def download_data_export(
    request_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    try:
        export_request = await data_request_service.get_export_download(db, user_id, request_id)
    except data_request_service.ExportNotReady as e:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"error": "Export not ready yet", "status": e.status},
        )

    await log_request_audit_event(
        request,
        AuditAction.DATA_EXPORT_DOWNLOADED,
        user_id,
        target_id=str(export_request.id),
        resource_type="data_export",
    )
    return Response(
        content=json.dumps(export_request.export_data, indent=2, default=str),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="ptsa-data-export-{export_request.id}.json"'},
    )


# ============================================================================
# Data deletion
# ============================================================================


@router.post("/delete", status_code=status.HTTP_202_ACCEPTED)
async def request_data_deletion(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["data_deletion"], user_id)

    body = await read_json_body(request)
    if not isinstance(body, dict) or body.get("confirm") is not True:
        raise ValidationError("Deletion must be confirmed")
    reason = body.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("Invalid request data")

    ip_address, user_agent = extract_client_info(request)
    deletion_request, created = await data_request_service.request_deletion(
        db, user_id, reason, ip_address, user_agent
    )
    if created:
        background_tasks.add_task(data_request_service.run_deletion_job, deletion_request.id)

    return {
        "requestId": deletion_request.id,
        "status": deletion_request.status,
        "message": "Your deletion request has been received"
        if created
        else "A deletion request is already in progress",
    }


# ============================================================================
# COPPA
# ============================================================================


@router.post("/coppa/verify-parent")
async def verify_parent(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Verify the caller as parent of a child under 13."""
    user_id = require_user_id(user_id)
    payload = coppa_service.parse_verification_request(await read_json_body(request))
    await rate_limiter.enforce(request, PRIVACY_RATE_LIMITS["coppa_verification"], user_id)

    return await coppa_service.verify_parent(
        db,
        user_id,
        payload["child_user_id"],
        payload["birth_date"],
        payload["method"],
        payload["data"],
    )


@router.get("/coppa/verify-parent")
async def get_parent_verification(
    childUserId: str,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    role = await get_user_role(db, user_id)
    return await coppa_service.get_verification_status(
        db, childUserId, user_id, viewer_is_admin=role == RoleName.ADMIN.value
    )
