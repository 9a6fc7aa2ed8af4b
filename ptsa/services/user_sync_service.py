"""
Auth-provider user sync.

The provider delivers user lifecycle events signed with the Svix scheme:
HMAC-SHA256 over ``"{svix-id}.{svix-timestamp}.{body}"`` keyed with the
base64 secret that follows the ``whsec_`` prefix.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.audit import AuditAction
from ptsa.constants.roles import DEFAULT_ROLE
from ptsa.models.user import User
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 5 * 60
SECRET_PREFIX = "whsec_"


class WebhookVerificationError(Exception):
    pass


def _signing_key(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret)
    except (binascii.Error, ValueError):
        raise WebhookVerificationError("Malformed webhook secret")


def sign_payload(secret: str, message_id: str, timestamp: str, body: str) -> str:
    """Return a ``v1,<base64 signature>`` entry for the given message."""
    signed = f"{message_id}.{timestamp}.{body}".encode()
    digest = hmac.new(_signing_key(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify_webhook(
    secret: str,
    payload: bytes,
    message_id: str,
    timestamp: str,
    signature_header: str,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify a signed delivery and return the decoded event.

    Raises:
        WebhookVerificationError: stale timestamp or no matching signature
    """
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookVerificationError("Invalid timestamp")

    now = time.time() if now is None else now
    if abs(now - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        raise WebhookVerificationError("Timestamp outside tolerance")

    body = payload.decode("utf-8")
    expected = sign_payload(secret, message_id, timestamp, body).split(",", 1)[1]

    # Header holds space-separated "version,signature" entries
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            try:
                return json.loads(body)
            except json.JSONDecodeError:
                raise WebhookVerificationError("Invalid payload")

    raise WebhookVerificationError("No matching signature")


def _primary_email(data: dict[str, Any]) -> str:
    addresses = data.get("email_addresses") or []
    if addresses and isinstance(addresses[0], dict):
        return addresses[0].get("email_address") or ""
    return ""


async def handle_user_event(db: AsyncSession, event: dict[str, Any]) -> None:
    event_type = event.get("type")
    data = event.get("data") or {}
    user_id = data.get("id")
    if not user_id:
        logger.warning(f"User event {event_type} without an id")
        return

    user = await db.get(User, user_id)

    if event_type == "user.created":
        if user is None:
            user = User(id=user_id, role=DEFAULT_ROLE.value)
            db.add(user)
        user.email = _primary_email(data)
        user.first_name = data.get("first_name") or ""
        user.last_name = data.get("last_name") or ""
        await db.commit()
        await log_audit_event(AuditAction.USER_CREATED, user_id=user_id, resource_type="user")

    elif event_type == "user.updated":
        if user is None:
            logger.warning(f"user.updated for unknown user {user_id}")
            return
        user.email = _primary_email(data)
        user.first_name = data.get("first_name") or ""
        user.last_name = data.get("last_name") or ""
        await db.commit()
        await log_audit_event(AuditAction.USER_UPDATED, user_id=user_id, resource_type="user")

    elif event_type == "user.deleted":
        if user is None or user.deleted_at is not None:
            return
        user.deleted_at = utcnow()
        await db.commit()
        await log_audit_event(AuditAction.USER_DELETED, user_id=user_id, resource_type="user")

    else:
        logger.info(f"Unhandled auth-provider event type: {event_type}")
