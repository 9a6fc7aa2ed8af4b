"""
Webhook Routes

Inbound webhooks from Stripe (payment status) and the auth provider (user
lifecycle). Both verify a signature over the raw body before trusting it.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.config import settings
from ptsa.constants.audit import AuditAction
from ptsa.database import get_db
from ptsa.exceptions import ServiceError, ValidationError
from ptsa.services import stripe_webhook_service, user_sync_service
from ptsa.utils.audit_log import log_audit_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Receive Stripe events.

    Processing failures after verification are logged and still answered
    with 200 so Stripe does not keep redelivering.
    """
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise ValidationError("Missing signature")
    if not settings.stripe_webhook_secret:
        logger.error("Stripe webhook secret is not configured")
        raise ServiceError("Webhook secret not configured")

    payload = await request.body()
    try:
        event = stripe_webhook_service.construct_event(payload, signature, settings.stripe_webhook_secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(f"Stripe webhook verification failed: {type(e).__name__}")
        raise ValidationError("Invalid signature")

    try:
        await stripe_webhook_service.handle_event(db, event)
    except Exception as e:
        await db.rollback()
        logger.error(f"Stripe webhook {event.get('type')} processing failed: {type(e).__name__}: {e}")
        await log_audit_event(
            AuditAction.WEBHOOK_FAILED,
            target_id=event.get("id"),
            resource_type="webhook",
            metadata={"event_type": event.get("type"), "error": type(e).__name__},
        )

    return {"received": True}


@router.post("/clerk")
async def clerk_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Sync users from the auth provider."""
    message_id = request.headers.get("svix-id")
    timestamp = request.headers.get("svix-timestamp")
    signature = request.headers.get("svix-signature")
    if not message_id or not timestamp or not signature:
        raise ValidationError("Missing svix headers")
    if not settings.clerk_webhook_secret:
        logger.error("Auth provider webhook secret is not configured")
        raise ServiceError("Webhook secret not configured")

    payload = await request.body()
    try:
        event = user_sync_service.verify_webhook(
            settings.clerk_webhook_secret, payload, message_id, timestamp, signature
        )
    except (user_sync_service.WebhookVerificationError, UnicodeDecodeError) as e:
        logger.warning(f"Auth provider webhook verification failed: {e}")
        raise ValidationError("Invalid signature")

    await user_sync_service.handle_user_event(db, event)
    return {"received": True}
