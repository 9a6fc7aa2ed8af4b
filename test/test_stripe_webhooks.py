"""
Tests for the Stripe webhook endpoint and payment status updates
"""

import hashlib
import hmac
import json
import time
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from ptsa.models.audit_log import AuditLog
from ptsa.models.payment import Payment
from ptsa.models.user import Member
from ptsa.services import stripe_webhook_service
from ptsa.utils.dates import utcnow

WEBHOOK_SECRET = "whsec_test_secret"
USER = "user_payer"


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(event_type: str, intent_id: str = "pi_123", **intent_fields) -> str:
    intent = {
        "id": intent_id,
        "amount": 2500,
        "currency": "usd",
        "metadata": {"userId": USER},
        **intent_fields,
    }
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": intent}})


async def post_event(client, payload: str, signature: str | None = None):
    return await client.post(
        "/api/webhooks/stripe",
        content=payload.encode(),
        headers={"Stripe-Signature": signature or stripe_signature(payload), "Content-Type": "application/json"},
    )


@pytest.fixture
async def pending_membership(test_db):
    test_db.add_all(
        [
            Payment(
                user_id=USER,
                stripe_payment_intent_id="pi_123",
                amount=2500,
                currency="usd",
                status="pending",
                payment_type="membership",
            ),
            Member(user_id=USER, first_name="Pay", last_name="Er", membership_status="pending"),
        ]
    )
    await test_db.commit()


class TestSignature:
    async def test_missing_signature(self, client):
        response = await client.post("/api/webhooks/stripe", content=b"{}")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing signature"

    async def test_invalid_signature(self, client):
        payload = intent_event("payment_intent.succeeded")
        response = await post_event(client, payload, stripe_signature(payload, secret="whsec_wrong"))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"

    async def test_stale_signature(self, client):
        payload = intent_event("payment_intent.succeeded")
        response = await post_event(client, payload, stripe_signature(payload, timestamp=int(time.time()) - 3600))
        assert response.status_code == 400

    def test_construct_event(self):
        payload = intent_event("payment_intent.processing")
        event = stripe_webhook_service.construct_event(payload.encode(), stripe_signature(payload), WEBHOOK_SECRET)
        assert event["type"] == "payment_intent.processing"


class TestPaymentEvents:
    async def test_success_activates_membership(self, client, test_db, pending_membership):
        response = await post_event(client, intent_event("payment_intent.succeeded"))
        assert response.status_code == 200
        assert response.json() == {"received": True}

        test_db.expunge_all()
        payment = (await test_db.execute(select(Payment))).scalars().one()
        assert payment.status == "succeeded"

        member = (await test_db.execute(select(Member))).scalars().one()
        assert member.membership_status == "active"
        assert member.membership_expires_at > utcnow() + timedelta(days=360)

        events = (await test_db.execute(select(AuditLog.event_type))).scalars().all()
        assert "webhook.received" in events
        assert "payment.succeeded" in events

    async def test_failure_records_error(self, client, test_db, pending_membership):
        payload = intent_event("payment_intent.payment_failed", last_payment_error={"message": "Card declined"})
        await post_event(client, payload)

        log = (
            await test_db.execute(select(AuditLog).where(AuditLog.event_type == "payment.failed"))
        ).scalars().one()
        assert log.meta["error"] == "Card declined"

    async def test_terminal_status_is_never_left(self, client, test_db, pending_membership):
        await post_event(client, intent_event("payment_intent.succeeded"))
        await post_event(client, intent_event("payment_intent.canceled"))

        test_db.expunge_all()
        payment = (await test_db.execute(select(Payment))).scalars().one()
        assert payment.status == "succeeded"

    async def test_redelivery_is_harmless(self, client, test_db, pending_membership):
        await post_event(client, intent_event("payment_intent.succeeded"))
        await post_event(client, intent_event("payment_intent.succeeded"))

        succeeded = (
            await test_db.execute(select(AuditLog).where(AuditLog.event_type == "payment.succeeded"))
        ).scalars().all()
        assert len(succeeded) == 1

    async def test_unknown_intent_and_event_type(self, client):
        assert (await post_event(client, intent_event("payment_intent.succeeded", "pi_unknown"))).status_code == 200
        assert (await post_event(client, intent_event("customer.created"))).status_code == 200

    async def test_processing_failure_still_acknowledged(self, client, test_db, pending_membership):
        with patch.object(
            stripe_webhook_service, "update_payment_status", side_effect=RuntimeError("db unavailable")
        ):
            response = await post_event(client, intent_event("payment_intent.succeeded"))

        assert response.status_code == 200
        events = (await test_db.execute(select(AuditLog.event_type))).scalars().all()
        assert "webhook.failed" in events
