"""
Email Service

Renders Jinja2 templates from ``templates/emails`` and sends them over SMTP.
Also owns the privacy rules around email: consent checks per category,
hashed delivery logs, HMAC-signed unsubscribe tokens and the queue of
scheduled sends.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ptsa import database
from ptsa.config import settings
from ptsa.exceptions import ValidationError
from ptsa.models.communication import EMAIL_CATEGORIES, CommunicationPreferences, EmailLog, EmailQueueItem
from ptsa.models.user import User
from ptsa.utils.dates import utcnow

logger = logging.getLogger(__name__)

UNSUBSCRIBE_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
MAX_QUEUE_ATTEMPTS = 3
QUEUE_BATCH_SIZE = 10

EMAIL_TEMPLATES = (
    "announcement",
    "event_reminder",
    "meeting_minutes",
    "payment_confirmation",
    "volunteer_reminder",
    "welcome",
)

DEFAULT_PREFERENCES = {
    "email_enabled": False,
    "email_frequency": "weekly",
    "announcements_enabled": False,
    "events_enabled": False,
    "payments_enabled": True,
    "volunteer_enabled": False,
    "meetings_enabled": False,
}


class EmailService:
    """Service for sending emails with template support"""

    def __init__(self, template_dir: Path | None = None):
        template_dir = template_dir or Path(__file__).parent.parent.parent / "templates" / "emails"

        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from = settings.smtp_from

    def _send_email(
        self,
        to_email: str | list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        Send an email using SMTP.

        Args:
            to_email: Recipient email address(es)
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text email body (optional)

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = self.smtp_from
            msg["To"] = to_email if isinstance(to_email, str) else ", ".join(to_email)

            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {type(e).__name__}: {e}")
            return False

    def has_template(self, template: str) -> bool:
        return template in EMAIL_TEMPLATES

    def render(self, template: str, context: dict[str, Any]) -> tuple[str, str | None]:
        """
        Render ``<template>.html`` and, when present, ``<template>.txt``.

        Raises:
            ValidationError: unknown template
        """
        if not self.has_template(template):
            raise ValidationError("Unknown email template", field="template")

        context = {"app_name": settings.app_name, "organization_name": settings.organization_name, **context}
        html_body = self.env.get_template(f"{template}.html").render(**context)
        try:
            text_body = self.env.get_template(f"{template}.txt").render(**context)
        except TemplateNotFound:
            text_body = None
        return html_body, text_body

    def send_template(self, to_email: str, subject: str, template: str, context: dict[str, Any]) -> bool:
        html_body, text_body = self.render(template, context)
        return self._send_email(to_email, subject, html_body, text_body)


# Singleton instance
email_service = EmailService()


# ============================================================================
# Privacy helpers
# ============================================================================


def hash_email(email: str) -> str:
    return hashlib.sha256(email.lower().encode()).hexdigest()


def extract_email_domain(email: str) -> str:
    parts = email.split("@")
    return parts[1].lower() if len(parts) == 2 else ""


async def get_preferences_row(db: AsyncSession, user_id: str) -> CommunicationPreferences | None:
    result = await db.execute(select(CommunicationPreferences).where(CommunicationPreferences.user_id == user_id))
    return result.scalars().first()


async def check_email_consent(db: AsyncSession, user_id: str, category: str) -> tuple[bool, str | None]:
    """
    Decide whether ``user_id`` may receive an email of ``category``.

    Returns:
        (can_send, reason) where reason explains a refusal
    """
    user = await db.get(User, user_id)
    if user is None or user.deleted_at is not None:
        return False, "User not found"

    prefs = await get_preferences_row(db, user_id)
    if prefs is None:
        if category == "payments":
            return True, None
        return False, "No communication preferences set"

    if prefs.parent_consent_required and not prefs.parent_consent_verified:
        return False, "Parental consent required but not verified"

    if prefs.unsubscribed_at is not None:
        return False, "User has unsubscribed from all communications"

    if not prefs.email_enabled and category != "payments":
        return False, "Email communications disabled"

    if getattr(prefs, f"{category}_enabled", None) is False:
        return False, f"{category} emails disabled by user preference"

    return True, None


def build_email_log(
    email: str,
    subject: str,
    status: str,
    user_id: str | None = None,
    template: str | None = None,
    category: str | None = None,
    metadata: dict | None = None,
    error: str | None = None,
) -> EmailLog:
    """Build a log row that stores only the hash and domain of the address."""
    now = utcnow()
    return EmailLog(
        user_id=user_id,
        recipient_hash=hash_email(email),
        recipient_domain=extract_email_domain(email),
        subject=subject,
        template=template,
        category=category,
        status=status,
        meta=metadata or {},
        error_message=error,
        sent_at=now if status == "sent" else None,
        created_at=now,
    )


async def log_email_secure(db: AsyncSession, email: str, subject: str, status: str, **kwargs: Any) -> None:
    try:
        db.add(build_email_log(email, subject, status, **kwargs))
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to write email log: {type(e).__name__}")


# ============================================================================
# Unsubscribe
# ============================================================================


def _sign_unsubscribe_payload(encoded: str) -> str:
    return hmac.new(settings.secret_key.encode(), encoded.encode(), hashlib.sha256).hexdigest()


def generate_unsubscribe_token(user_id: str, email: str, now: float | None = None) -> str:
    payload = {
        "userId": user_id,
        "emailHash": hash_email(email),
        "timestamp": int((time.time() if now is None else now) * 1000),
    }
    encoded = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")
    return f"{encoded}.{_sign_unsubscribe_payload(encoded)}"


def verify_unsubscribe_token(token: str, now: float | None = None) -> dict[str, str] | None:
    """Decode a token; None when unsigned, tampered, malformed or older than seven days."""
    encoded, _, signature = token.rpartition(".")
    if not encoded or not hmac.compare_digest(_sign_unsubscribe_payload(encoded), signature):
        return None

    try:
        padded = encoded + "=" * (-len(encoded) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
        user_id = payload["userId"]
        email_hash = payload["emailHash"]
        issued_ms = int(payload["timestamp"])
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeDecodeError):
        return None

    now_ms = int((time.time() if now is None else now) * 1000)
    if not isinstance(user_id, str) or issued_ms < now_ms - UNSUBSCRIBE_TOKEN_TTL_SECONDS * 1000:
        return None
    return {"userId": user_id, "emailHash": email_hash}


async def handle_unsubscribe(db: AsyncSession, token: str, category: str | None = None) -> str:
    """
    Apply an unsubscribe link and return the confirmation message.

    A link issued for an address the user no longer has is rejected.

    Raises:
        ValidationError: invalid or expired token
    """
    payload = verify_unsubscribe_token(token)
    if payload is None:
        raise ValidationError("Invalid or expired unsubscribe link")

    user_id = payload["userId"]
    user = await db.get(User, user_id)
    if user is not None and user.email and not hmac.compare_digest(hash_email(user.email), payload["emailHash"]):
        raise ValidationError("Invalid or expired unsubscribe link")

    prefs = await get_preferences_row(db, user_id)
    if prefs is None:
        prefs = CommunicationPreferences(user_id=user_id, **DEFAULT_PREFERENCES)
        db.add(prefs)

    now = utcnow()
    if category:
        setattr(prefs, f"{category}_enabled", False)
    else:
        prefs.email_enabled = False
        prefs.unsubscribed_at = now
        prefs.unsubscribe_reason = "User requested via unsubscribe link"
    prefs.updated_at = now
    await db.commit()

    if category:
        return f"Successfully unsubscribed from {category} emails"
    return "Successfully unsubscribed from all email communications"


# ============================================================================
# Preferences
# ============================================================================


def preferences_to_dict(prefs: CommunicationPreferences | None) -> dict[str, Any]:
    values = DEFAULT_PREFERENCES if prefs is None else {key: getattr(prefs, key) for key in DEFAULT_PREFERENCES}
    return {
        "emailEnabled": values["email_enabled"],
        "emailFrequency": values["email_frequency"],
        "announcements": values["announcements_enabled"],
        "events": values["events_enabled"],
        "payments": values["payments_enabled"],
        "volunteer": values["volunteer_enabled"],
        "meetings": values["meetings_enabled"],
        "unsubscribedAt": prefs.unsubscribed_at.isoformat() if prefs is not None and prefs.unsubscribed_at else None,
    }


async def update_preferences(db: AsyncSession, user_id: str, values: dict[str, Any]) -> CommunicationPreferences:
    """Replace every preference with ``values`` and clear any global unsubscribe."""
    prefs = await get_preferences_row(db, user_id)
    if prefs is None:
        prefs = CommunicationPreferences(user_id=user_id)
        db.add(prefs)

    for key, value in values.items():
        setattr(prefs, key, value)
    prefs.unsubscribed_at = None
    prefs.unsubscribe_reason = None
    prefs.updated_at = utcnow()
    await db.commit()
    await db.refresh(prefs)
    return prefs


# ============================================================================
# Bulk sends and the queue
# ============================================================================


def recipient_context(recipient: dict[str, Any], template_data: dict[str, Any] | None) -> dict[str, Any]:
    first_name = recipient.get("first_name") or ""
    last_name = recipient.get("last_name") or ""
    return {
        **(template_data or {}),
        "firstName": first_name,
        "lastName": last_name,
        "memberName": f"{first_name} {last_name}".strip(),
        "unsubscribeUrl": f"{settings.app_url}/unsubscribe?token="
        + generate_unsubscribe_token(recipient["user_id"], recipient["email"]),
    }


AUDIENCE_ROLES = {
    "board": ("board",),
    "committee_chairs": ("committee_chair",),
    "teachers": ("teacher",),
    "members": ("member", "teacher", "committee_chair", "board", "admin"),
}


async def get_audience_users(db: AsyncSession, audience: str, custom_ids: list[str] | None = None) -> list[User]:
    """Resolve an audience name (or ``custom`` with explicit ids) to active users."""
    query = select(User).where(User.deleted_at.is_(None))
    if audience == "custom":
        if not custom_ids:
            return []
        query = query.where(User.id.in_(custom_ids))
    elif audience in AUDIENCE_ROLES:
        query = query.where(User.role.in_(AUDIENCE_ROLES[audience]))
    result = await db.execute(query.order_by(User.id))
    return list(result.scalars().all())


async def filter_consented_recipients(db: AsyncSession, users: list[User], category: str) -> list[dict[str, Any]]:
    recipients = []
    for user in users:
        can_send, _ = await check_email_consent(db, user.id, category)
        if can_send and user.email:
            recipients.append(
                {"user_id": user.id, "email": user.email, "first_name": user.first_name, "last_name": user.last_name}
            )
    return recipients


async def deliver(
    db: AsyncSession,
    recipients: list[dict[str, Any]],
    subject: str,
    template: str,
    template_data: dict[str, Any] | None = None,
    category: str = "announcements",
) -> tuple[int, list[dict[str, Any]]]:
    """Send to each recipient and log the outcome. Returns (sent count, failed recipients)."""
    sent = 0
    failed: list[dict[str, Any]] = []
    for recipient in recipients:
        html_body, text_body = email_service.render(template, recipient_context(recipient, template_data))
        ok = await run_in_threadpool(email_service._send_email, recipient["email"], subject, html_body, text_body)
        db.add(
            build_email_log(
                recipient["email"],
                subject,
                "sent" if ok else "failed",
                user_id=recipient.get("user_id"),
                template=template,
                category=category,
                error=None if ok else "SMTP delivery failed",
            )
        )
        if ok:
            sent += 1
        else:
            failed.append(recipient)
    await db.commit()
    return sent, failed


async def send_in_background(
    recipients: list[dict[str, Any]],
    subject: str,
    template: str,
    template_data: dict[str, Any] | None = None,
    category: str = "announcements",
) -> None:
    """Background-task entry point; owns its session."""
    async with database.AsyncSessionLocal() as db:
        sent, failed = await deliver(db, recipients, subject, template, template_data, category)
    logger.info(f"Bulk email '{template}' delivered to {sent}/{len(recipients)} recipients")
    if failed:
        logger.warning(f"Bulk email '{template}' failed for {len(failed)} recipients")


async def queue_email(
    db: AsyncSession,
    recipients: list[dict[str, Any]],
    subject: str,
    template: str,
    template_data: dict[str, Any] | None = None,
    scheduled_for=None,
    created_by: str | None = None,
) -> EmailQueueItem:
    item = EmailQueueItem(
        recipients=recipients,
        subject=subject,
        template=template,
        data=template_data or {},
        scheduled_for=scheduled_for,
        attempts=0,
        status="pending",
        created_by=created_by,
    )
    db.add(item)
    for recipient in recipients:
        db.add(
            build_email_log(
                recipient["email"], subject, "queued",
                user_id=recipient.get("user_id"), template=template, category="announcements",
            )
        )
    await db.commit()
    await db.refresh(item)
    return item


async def process_email_queue(db: AsyncSession, now=None) -> dict[str, int]:
    """Send due queue items; an item is failed after ``MAX_QUEUE_ATTEMPTS`` tries."""
    now = now or utcnow()
    result = await db.execute(
        select(EmailQueueItem.id)
        .where(
            EmailQueueItem.status == "pending",
            EmailQueueItem.attempts < MAX_QUEUE_ATTEMPTS,
            or_(EmailQueueItem.scheduled_for.is_(None), EmailQueueItem.scheduled_for <= now),
        )
        .order_by(EmailQueueItem.created_at)
        .limit(QUEUE_BATCH_SIZE)
    )
    summary = {"processed": 0, "sent": 0, "failed": 0, "retrying": 0}

    for item_id in result.scalars().all():
        item = await db.get(EmailQueueItem, item_id)
        item.status = "processing"
        item.attempts += 1
        item.last_attempt_at = utcnow()
        await db.commit()
        summary["processed"] += 1

        recipients = list(item.recipients or [])
        try:
            _, failed = await deliver(db, recipients, item.subject, item.template, item.data)
            error = f"{len(failed)} deliveries failed"
        except Exception as e:
            await db.rollback()
            logger.error(f"Email queue item {item_id} failed: {type(e).__name__}: {e}")
            failed, error = recipients, str(e)[:1000]

        item = await db.get(EmailQueueItem, item_id)
        if not failed:
            item.status = "sent"
            item.error = None
            summary["sent"] += 1
            await db.commit()
            continue

        # Only recipients that were not reached are retried
        item.recipients = failed
        item.error = error
        if item.attempts < MAX_QUEUE_ATTEMPTS:
            item.status = "pending"
            summary["retrying"] += 1
        else:
            item.status = "failed"
            summary["failed"] += 1
        await db.commit()

    if summary["processed"]:
        logger.info(f"Email queue run: {summary}")
    return summary


def is_valid_category(category: str | None) -> bool:
    return category in EMAIL_CATEGORIES
