"""
Tests for the email service: rendering, consent checks, unsubscribe tokens and the queue
"""

import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select

from ptsa.exceptions import ValidationError
from ptsa.models.communication import CommunicationPreferences, EmailLog, EmailQueueItem
from ptsa.services import email_service
from ptsa.utils.dates import utcnow


def recipient(user_id: str = "user_member") -> dict:
    return {"user_id": user_id, "email": f"{user_id}@Example.com", "first_name": "Sam", "last_name": "Lee"}


@pytest.fixture
def smtp():
    with patch("ptsa.services.email_service.smtplib.SMTP") as smtp_class:
        yield smtp_class.return_value.__enter__.return_value


class TestRendering:
    def test_render_html_and_text(self):
        html_body, text_body = email_service.email_service.render(
            "announcement", {"title": "Book Fair", "content": "<b>Monday</b>"}
        )
        assert "Book Fair" in html_body
        assert "&lt;b&gt;Monday&lt;/b&gt;" in html_body
        assert text_body is not None and "Book Fair" in text_body

    def test_missing_text_template(self):
        _, text_body = email_service.email_service.render("welcome", {})
        assert text_body is None

    def test_unknown_template(self):
        with pytest.raises(ValidationError):
            email_service.email_service.render("password_reset", {})

    def test_send_uses_smtp(self, smtp):
        assert email_service.email_service.send_template("a@example.com", "Hi", "welcome", {}) is True
        smtp.starttls.assert_called_once()
        smtp.send_message.assert_called_once()

    def test_smtp_failure_returns_false(self):
        with patch("ptsa.services.email_service.smtplib.SMTP", side_effect=OSError("refused")):
            assert email_service.email_service._send_email("a@example.com", "Hi", "<p>x</p>") is False


class TestPrivacyHelpers:
    def test_hash_is_case_insensitive(self):
        assert email_service.hash_email("Pat@Example.com") == email_service.hash_email("pat@example.com")

    def test_log_keeps_only_hash_and_domain(self):
        log = email_service.build_email_log("Pat@Example.com", "Hello", "sent")
        assert log.recipient_domain == "example.com"
        assert "Pat" not in log.recipient_hash
        assert log.sent_at is not None

    def test_unsubscribe_token_round_trip_and_expiry(self):
        token = email_service.generate_unsubscribe_token("user_1", "a@example.com")
        assert email_service.verify_unsubscribe_token(token)["userId"] == "user_1"

        eight_days_ago = time.time() - 8 * 24 * 60 * 60
        old = email_service.generate_unsubscribe_token("user_1", "a@example.com", now=eight_days_ago)
        assert email_service.verify_unsubscribe_token(old) is None
        assert email_service.verify_unsubscribe_token("not-a-token!!") is None

    def test_unsubscribe_token_must_carry_valid_signature(self):
        token = email_service.generate_unsubscribe_token("user_1", "a@example.com")
        encoded, signature = token.split(".")
        assert email_service.verify_unsubscribe_token(encoded) is None

        forged = email_service.generate_unsubscribe_token("user_victim", "a@example.com").split(".")[0]
        assert email_service.verify_unsubscribe_token(f"{forged}.{signature}") is None


class TestConsent:
    async def test_unknown_user(self, test_db):
        assert await email_service.check_email_consent(test_db, "ghost", "events") == (False, "User not found")

    async def test_no_preferences_only_payments(self, test_db, member_user):
        assert (await email_service.check_email_consent(test_db, member_user.id, "payments"))[0] is True
        assert (await email_service.check_email_consent(test_db, member_user.id, "events"))[0] is False

    async def test_category_switches(self, test_db, member_user):
        test_db.add(
            CommunicationPreferences(user_id=member_user.id, email_enabled=True, events_enabled=False,
                                     announcements_enabled=True)
        )
        await test_db.commit()

        assert await email_service.check_email_consent(test_db, member_user.id, "announcements") == (True, None)
        can_send, reason = await email_service.check_email_consent(test_db, member_user.id, "events")
        assert can_send is False
        assert reason == "events emails disabled by user preference"

    async def test_unverified_parent_consent_blocks(self, test_db, member_user):
        test_db.add(
            CommunicationPreferences(user_id=member_user.id, email_enabled=True, announcements_enabled=True,
                                     parent_consent_required=True, parent_consent_verified=False)
        )
        await test_db.commit()
        _, reason = await email_service.check_email_consent(test_db, member_user.id, "announcements")
        assert reason == "Parental consent required but not verified"


class TestUnsubscribe:
    async def test_global_unsubscribe(self, test_db):
        token = email_service.generate_unsubscribe_token("user_1", "a@example.com")
        message = await email_service.handle_unsubscribe(test_db, token)
        assert message == "Successfully unsubscribed from all email communications"

        prefs = await email_service.get_preferences_row(test_db, "user_1")
        assert prefs.email_enabled is False
        assert prefs.unsubscribed_at is not None

    async def test_category_unsubscribe(self, test_db):
        token = email_service.generate_unsubscribe_token("user_1", "a@example.com")
        message = await email_service.handle_unsubscribe(test_db, token, "events")
        assert message == "Successfully unsubscribed from events emails"
        prefs = await email_service.get_preferences_row(test_db, "user_1")
        assert prefs.events_enabled is False
        assert prefs.unsubscribed_at is None

    async def test_invalid_token(self, test_db):
        with pytest.raises(ValidationError, match="Invalid or expired unsubscribe link"):
            await email_service.handle_unsubscribe(test_db, "garbage")

    async def test_token_for_previous_address_rejected(self, test_db, member_user):
        token = email_service.generate_unsubscribe_token(member_user.id, "old-address@example.com")
        with pytest.raises(ValidationError, match="Invalid or expired unsubscribe link"):
            await email_service.handle_unsubscribe(test_db, token)
        assert await email_service.get_preferences_row(test_db, member_user.id) is None

        token = email_service.generate_unsubscribe_token(member_user.id, member_user.email.upper())
        await email_service.handle_unsubscribe(test_db, token, "events")
        assert (await email_service.get_preferences_row(test_db, member_user.id)).events_enabled is False


class TestQueue:
    async def test_due_items_are_sent(self, test_db, smtp):
        await email_service.queue_email(
            test_db, [recipient()], "Reminder", "event_reminder", {"eventTitle": "Fair"},
            scheduled_for=utcnow() - timedelta(minutes=1),
        )
        summary = await email_service.process_email_queue(test_db)
        assert summary == {"processed": 1, "sent": 1, "failed": 0, "retrying": 0}

        statuses = (await test_db.execute(select(EmailLog.status))).scalars().all()
        assert sorted(statuses) == ["queued", "sent"]

    async def test_future_items_wait(self, test_db, smtp):
        await email_service.queue_email(
            test_db, [recipient()], "Later", "welcome", scheduled_for=utcnow() + timedelta(hours=1)
        )
        summary = await email_service.process_email_queue(test_db)
        assert summary["processed"] == 0

    async def test_only_failed_recipients_retried_until_limit(self, test_db):
        item = await email_service.queue_email(test_db, [recipient("ok"), recipient("bad")], "Hi", "welcome")

        def send(to_email, *args):
            return not to_email.startswith("bad")

        with patch.object(email_service.email_service, "_send_email", side_effect=send) as sender:
            for _ in range(email_service.MAX_QUEUE_ATTEMPTS):
                await email_service.process_email_queue(test_db)

        assert [call.args[0] for call in sender.call_args_list] == [
            "ok@Example.com", "bad@Example.com", "bad@Example.com", "bad@Example.com",
        ]

        test_db.expunge_all()
        failed = await test_db.get(EmailQueueItem, item.id)
        assert failed.status == "failed"
        assert failed.attempts == email_service.MAX_QUEUE_ATTEMPTS
        assert failed.recipients == [recipient("bad")]

    async def test_deliver_logs_each_recipient(self, test_db):
        with patch.object(email_service.email_service, "_send_email", MagicMock(return_value=True)):
            sent, failed = await email_service.deliver(test_db, [recipient("a"), recipient("b")], "Hi", "welcome")
        assert (sent, failed) == (2, [])
        logs = (await test_db.execute(select(EmailLog))).scalars().all()
        assert {log.user_id for log in logs} == {"a", "b"}
