"""
Tests for the auth-provider user sync webhook
"""

import json
import time

import pytest

from ptsa.models.user import User
from ptsa.services import user_sync_service

SECRET = "whsec_dGVzdC1jbGVyay13ZWJob29rLXNlY3JldA=="


def user_event(event_type: str, user_id: str = "user_new", **data) -> str:
    return json.dumps(
        {
            "type": event_type,
            "data": {
                "id": user_id,
                "email_addresses": [{"email_address": "new@example.com"}],
                "first_name": "New",
                "last_name": "Parent",
                **data,
            },
        }
    )


def svix_headers(payload: str, message_id: str = "msg_1", timestamp: int | None = None) -> dict[str, str]:
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    return {
        "svix-id": message_id,
        "svix-timestamp": timestamp,
        "svix-signature": user_sync_service.sign_payload(SECRET, message_id, timestamp, payload),
        "Content-Type": "application/json",
    }


class TestVerifyWebhook:
    def test_valid_signature(self):
        payload = user_event("user.created")
        headers = svix_headers(payload)
        event = user_sync_service.verify_webhook(
            SECRET, payload.encode(), "msg_1", headers["svix-timestamp"], headers["svix-signature"]
        )
        assert event["data"]["id"] == "user_new"

    def test_accepts_any_matching_entry(self):
        payload = user_event("user.created")
        headers = svix_headers(payload)
        rotated = f"v1,b2xkLXNpZ25hdHVyZQ== {headers['svix-signature']}"
        user_sync_service.verify_webhook(SECRET, payload.encode(), "msg_1", headers["svix-timestamp"], rotated)

    def test_tampered_body(self):
        payload = user_event("user.created")
        headers = svix_headers(payload)
        with pytest.raises(user_sync_service.WebhookVerificationError):
            user_sync_service.verify_webhook(
                SECRET,
                user_event("user.created", user_id="user_evil").encode(),
                "msg_1",
                headers["svix-timestamp"],
                headers["svix-signature"],
            )

    def test_stale_timestamp(self):
        payload = user_event("user.created")
        old = int(time.time()) - 3600
        headers = svix_headers(payload, timestamp=old)
        with pytest.raises(user_sync_service.WebhookVerificationError, match="tolerance"):
            user_sync_service.verify_webhook(
                SECRET, payload.encode(), "msg_1", headers["svix-timestamp"], headers["svix-signature"]
            )


class TestClerkWebhookRoute:
    async def test_missing_headers(self, client):
        response = await client.post("/api/webhooks/clerk", content=b"{}")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing svix headers"

    async def test_bad_signature(self, client):
        payload = user_event("user.created")
        headers = {**svix_headers(payload), "svix-signature": "v1,bm9wZQ=="}
        response = await client.post("/api/webhooks/clerk", content=payload.encode(), headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"

    async def test_user_lifecycle(self, client, test_db):
        payload = user_event("user.created")
        response = await client.post("/api/webhooks/clerk", content=payload.encode(), headers=svix_headers(payload))
        assert response.status_code == 200

        user = await test_db.get(User, "user_new")
        assert user.email == "new@example.com"
        assert user.role == "member"

        payload = user_event("user.updated", email_addresses=[{"email_address": "changed@example.com"}])
        await client.post("/api/webhooks/clerk", content=payload.encode(), headers=svix_headers(payload, "msg_2"))
        test_db.expunge_all()
        assert (await test_db.get(User, "user_new")).email == "changed@example.com"

        payload = json.dumps({"type": "user.deleted", "data": {"id": "user_new"}})
        await client.post("/api/webhooks/clerk", content=payload.encode(), headers=svix_headers(payload, "msg_3"))
        test_db.expunge_all()
        assert (await test_db.get(User, "user_new")).deleted_at is not None
