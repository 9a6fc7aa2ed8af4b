"""
Stripe webhook processing.

Signature verification happens against the raw request body. Status updates
are keyed by payment intent id and never move a payment out of a terminal
state, so redelivered events are harmless.
"""

import json
import logging
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.audit import AuditAction
from ptsa.models.payment import TERMINAL_PAYMENT_STATUSES, Payment
from ptsa.models.user import Member
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.dates import add_years, utcnow

logger = logging.getLogger(__name__)

# event type -> (payment status, audit action)
PAYMENT_INTENT_EVENTS = {
    "payment_intent.succeeded": ("succeeded", AuditAction.PAYMENT_SUCCEEDED),
    "payment_intent.payment_failed": ("failed", AuditAction.PAYMENT_FAILED),
    "payment_intent.canceled": ("canceled", AuditAction.PAYMENT_CANCELED),
    "payment_intent.processing": ("processing", AuditAction.PAYMENT_PROCESSING),
}


def construct_event(payload: bytes, signature: str, secret: str) -> dict[str, Any]:
    """
    Verify the ``stripe-signature`` header and decode the event.

    Raises:
        stripe.SignatureVerificationError: bad or stale signature
        ValueError: body is not valid JSON
    """
    body = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
    return json.loads(body)


async def update_payment_status(db: AsyncSession, intent_id: str, new_status: str) -> Payment | None:
    """
    Move the payment for ``intent_id`` to ``new_status``.

    Returns the row when it changed, ``None`` when it is unknown, already
    terminal or already in ``new_status``.
    """
    result = await db.execute(select(Payment).where(Payment.stripe_payment_intent_id == intent_id))
    payment = result.scalars().first()
    if payment is None:
        logger.warning(f"Webhook for unknown payment intent {intent_id}")
        return None
    if payment.status == new_status or payment.status in TERMINAL_PAYMENT_STATUSES:
        logger.info(f"Payment {intent_id} already {payment.status}; ignoring {new_status}")
        return None

    payment.status = new_status
    payment.updated_at = utcnow()
    await db.commit()
    return payment


async def activate_membership(db: AsyncSession, user_id: str) -> Member | None:
    """Mark the user's member record active for one year from now."""
    result = await db.execute(select(Member).where(Member.user_id == user_id, Member.deleted_at.is_(None)))
    member = result.scalars().first()
    if member is None:
        logger.warning(f"Membership payment succeeded but no member record for user {user_id}")
        return None

    now = utcnow()
    member.membership_status = "active"
    member.membership_expires_at = add_years(now, 1)
    member.updated_at = now
    await db.commit()
    return member


async def handle_payment_intent_event(db: AsyncSession, event_type: str, intent: dict[str, Any]) -> None:
    new_status, audit_action = PAYMENT_INTENT_EVENTS[event_type]
    intent_id = intent.get("id")
    metadata = intent.get("metadata") or {}
    user_id = metadata.get("userId")

    payment = await update_payment_status(db, intent_id, new_status)
    if payment is None:
        return

    details: dict[str, Any] = {"amount": intent.get("amount"), "currency": intent.get("currency")}
    if new_status == "failed":
        details["error"] = (intent.get("last_payment_error") or {}).get("message")

    await log_audit_event(
        audit_action,
        user_id=user_id or payment.user_id,
        target_id=intent_id,
        resource_type="payment",
        metadata=details,
    )

    if new_status == "succeeded" and payment.payment_type == "membership" and payment.user_id:
        await activate_membership(db, payment.user_id)


async def handle_event(db: AsyncSession, event: dict[str, Any]) -> None:
    """Dispatch a verified event. Unknown event types are acknowledged and ignored."""
    event_type = event.get("type", "")
    await log_audit_event(
        AuditAction.WEBHOOK_RECEIVED,
        target_id=event.get("id"),
        resource_type="webhook",
        metadata={"event_type": event_type},
    )

    if event_type in PAYMENT_INTENT_EVENTS:
        intent = (event.get("data") or {}).get("object") or {}
        await handle_payment_intent_event(db, event_type, intent)
    else:
        logger.info(f"Unhandled Stripe event type: {event_type}")
