"""
Communication Routes

Bulk email to member audiences and per-user email preferences.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, require_manager, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.database import get_db
from ptsa.exceptions import ValidationError
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.schemas.communication import PreferencesUpdate, SendEmailRequest
from ptsa.services import email_service
from ptsa.utils.audit_log import log_request_audit_event
from ptsa.utils.dates import to_naive_utc, utcnow
from ptsa.utils.request import parse_model, read_json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/communications", tags=["Communications"])


@router.post("/email")
async def send_email(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Send or schedule a templated email to an audience.

    Only recipients whose preferences allow announcement email are included.
    """
    user_id = require_user_id(user_id)
    await require_manager(db, user_id, "Unauthorized to send emails")
    await rate_limiter.enforce(request, RATE_LIMITS["emails"], user_id)

    data = parse_model(SendEmailRequest, await read_json_body(request))
    if not email_service.email_service.has_template(data.template):
        raise ValidationError("Invalid request data")

    users = await email_service.get_audience_users(db, data.audience, data.custom_recipients)
    recipients = await email_service.filter_consented_recipients(db, users, "announcements")
    if not recipients:
        raise ValidationError("No recipients with email consent found")

    scheduled_for = to_naive_utc(data.scheduled_for)
    scheduled = scheduled_for is not None and scheduled_for > utcnow()
    if scheduled:
        item = await email_service.queue_email(
            db, recipients, data.subject, data.template, data.template_data, scheduled_for, created_by=user_id
        )
        target_id = f"queue_{item.id}"
    else:
        background_tasks.add_task(
            email_service.send_in_background, recipients, data.subject, data.template, data.template_data
        )
        target_id = f"{data.template}_{int(utcnow().timestamp() * 1000)}"

    await log_request_audit_event(
        request,
        AuditAction.EMAIL_SENT,
        user_id,
        target_id=target_id,
        resource_type="email",
        metadata={
            "template": data.template,
            "audience": data.audience,
            "recipient_count": len(recipients),
            "scheduled": scheduled,
        },
    )
    return {"success": True, "queuedCount": len(recipients), "scheduled": scheduled}


@router.get("/preferences")
async def get_preferences(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)
    prefs = await email_service.get_preferences_row(db, user_id)
    return {"preferences": email_service.preferences_to_dict(prefs)}


@router.put("/preferences")
async def update_preferences(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["preferences"], user_id)

    data = parse_model(PreferencesUpdate, await read_json_body(request))
    prefs = await email_service.update_preferences(db, user_id, data.model_dump())
    return {"success": True, "preferences": email_service.preferences_to_dict(prefs)}
