"""
Tests for consent recording and privacy settings (service and routes)
"""

from datetime import date

from sqlalchemy import select

from conftest import auth_headers
from ptsa.models.audit_log import AuditLog
from ptsa.models.child_account import ChildAccount
from ptsa.models.communication import CommunicationPreferences
from ptsa.models.consent_record import ConsentRecord
from ptsa.models.privacy_settings import PrivacySettings
from ptsa.services import consent_service, privacy_service

USER = "user_parent"


async def audit_events(test_db) -> list[str]:
    result = await test_db.execute(select(AuditLog.event_type).order_by(AuditLog.id))
    return list(result.scalars().all())


class TestConsentService:
    def test_parse_payload(self):
        payload = consent_service.parse_consent_payload(
            {"consentType": "photo_sharing", "granted": True, "metadata": {"source": "settings"}}
        )
        assert payload == {
            "consent_type": "photo_sharing",
            "granted": True,
            "parent_user_id": None,
            "consent_version": "1.0",
            "metadata": {"source": "settings"},
        }

    def test_parse_payload_errors(self):
        cases = [
            ({"consentType": "nonsense", "granted": True}, "Invalid consent type"),
            ({"consentType": "photo_sharing", "granted": "yes"}, "Granted must be a boolean"),
            ({"consentType": "coppa_parental", "granted": True}, "Parent user ID required for COPPA consent"),
            ({"consentType": "photo_sharing", "granted": True, "metadata": "x"}, "Invalid metadata format"),
        ]
        for body, message in cases:
            try:
                consent_service.parse_consent_payload(body)
            except consent_service.ValidationError as e:
                assert e.message == message
            else:
                raise AssertionError(f"{body} was accepted")

    async def test_history_is_append_only(self, test_db):
        await consent_service.record_consent(test_db, USER, "photo_sharing", True)
        await consent_service.record_consent(test_db, USER, "photo_sharing", False)

        history = await consent_service.get_consent_history(test_db, USER, "photo_sharing")
        assert [record.granted for record in history] == [False, True]
        assert consent_service.get_current_consents(history)["photo_sharing"].granted is False

    async def test_revoking_directory_consent_hides_user(self, test_db):
        test_db.add(PrivacySettings(user_id=USER, directory_visible=True))
        await test_db.commit()

        await consent_service.record_consent(test_db, USER, "directory_inclusion", False)

        test_db.expunge_all()
        settings_row = await privacy_service.get_settings(test_db, USER)
        assert settings_row.directory_visible is False

    async def test_revoking_email_consent_disables_email(self, test_db):
        await consent_service.record_consent(test_db, USER, "email_communications", False)

        result = await test_db.execute(
            select(CommunicationPreferences).where(CommunicationPreferences.user_id == USER)
        )
        prefs = result.scalars().one()
        assert prefs.email_enabled is False
        assert prefs.unsubscribed_at is not None

    async def test_required_consents(self, test_db):
        assert consent_service.get_required_consents(True, ["ai", "photos"]) == [
            "terms_of_service",
            "privacy_policy",
            "coppa_parental",
            "ai_features",
            "photo_sharing",
        ]

        await consent_service.record_consent(test_db, USER, "terms_of_service", True)
        status = await consent_service.check_required_consents(
            test_db, USER, ["terms_of_service", "privacy_policy"]
        )
        assert status["has_all_consents"] is False
        assert status["missing_consents"] == ["privacy_policy"]


class TestConsentRoutes:
    async def test_requires_authentication(self, client):
        response = await client.post("/api/privacy/consent", json={"consentType": "photo_sharing", "granted": True})
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    async def test_coppa_consent_requires_parent(self, client):
        response = await client.post(
            "/api/privacy/consent",
            json={"consentType": "coppa_parental", "granted": True},
            headers=auth_headers(USER),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Parent user ID required for COPPA consent"

    async def test_record_and_read_consent(self, client, test_db):
        headers = {**auth_headers(USER), "User-Agent": "pytest-browser"}
        response = await client.post(
            "/api/privacy/consent",
            json={"consentType": "photo_sharing", "granted": True, "consentVersion": "2.0"},
            headers=headers,
        )
        assert response.status_code == 200
        consent = response.json()["consent"]
        assert consent["consent_type"] == "photo_sharing"
        assert consent["consent_version"] == "2.0"

        record = (await test_db.execute(select(ConsentRecord))).scalars().one()
        assert record.user_agent == "pytest-browser"
        assert record.ip_address

        response = await client.get("/api/privacy/consent", headers=auth_headers(USER))
        body = response.json()
        assert len(body["records"]) == 1
        assert body["current"]["photo_sharing"]["granted"] is True
        assert "consent.granted" in await audit_events(test_db)

    async def test_required_consent_status(self, client, test_db):
        await consent_service.record_consent(test_db, USER, "terms_of_service", True)
        await consent_service.record_consent(test_db, USER, "privacy_policy", True)

        response = await client.get("/api/privacy/consent", headers=auth_headers(USER))
        assert response.json()["required"] == {
            "has_all_consents": True,
            "missing_consents": [],
            "consents": {"terms_of_service": True, "privacy_policy": True},
        }

        test_db.add(ChildAccount(child_user_id=USER, parent_user_id="user_guardian", birth_date=date(2016, 5, 1)))
        await test_db.commit()

        response = await client.get("/api/privacy/consent", headers=auth_headers(USER))
        required = response.json()["required"]
        assert required["has_all_consents"] is False
        assert required["missing_consents"] == ["coppa_parental"]

    async def test_consent_rate_limit(self, client):
        headers = auth_headers(USER)
        for _ in range(10):
            response = await client.post(
                "/api/privacy/consent", json={"consentType": "data_sharing", "granted": False}, headers=headers
            )
            assert response.status_code == 200

        response = await client.post(
            "/api/privacy/consent", json={"consentType": "data_sharing", "granted": False}, headers=headers
        )
        assert response.status_code == 429
        assert response.json()["error"] == "Too many consent updates. Please try again later."
        assert "Retry-After" in response.headers

    async def test_malformed_json(self, client):
        response = await client.post(
            "/api/privacy/consent",
            content=b"{not json",
            headers={**auth_headers(USER), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request data"


class TestPrivacySettingsRoutes:
    async def test_first_read_creates_restrictive_defaults(self, client, test_db):
        response = await client.get("/api/privacy/settings", headers=auth_headers(USER))
        assert response.status_code == 200
        settings_row = response.json()["settings"]
        assert settings_row["directory_visible"] is False
        assert settings_row["show_email"] is False

        await client.get("/api/privacy/settings", headers=auth_headers(USER))
        assert (await audit_events(test_db)).count("privacy.settings.created") == 1

    async def test_update_only_allow_listed_booleans(self, client):
        response = await client.put(
            "/api/privacy/settings",
            json={"show_email": True, "directory_visible": "yes", "user_id": "someone_else"},
            headers=auth_headers(USER),
        )
        assert response.status_code == 200
        settings_row = response.json()["settings"]
        assert settings_row["show_email"] is True
        assert settings_row["directory_visible"] is False
        assert settings_row["user_id"] == USER

    async def test_update_without_valid_fields(self, client):
        response = await client.put(
            "/api/privacy/settings", json={"is_admin": True}, headers=auth_headers(USER)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "No valid fields to update"

    async def test_update_is_audited_with_previous_values(self, client, test_db):
        await client.put("/api/privacy/settings", json={"show_phone": True}, headers=auth_headers(USER))

        log = (
            await test_db.execute(select(AuditLog).where(AuditLog.event_type == "privacy.settings.update"))
        ).scalars().one()
        assert log.meta == {"previous": {"show_phone": False}, "updated": {"show_phone": True}}


class TestFieldVisibility:
    def test_managers_see_everything(self):
        assert privacy_service.get_field_visibility(None, "board") == {
            "email": True,
            "phone": True,
            "address": True,
            "children": True,
        }

    def test_members_follow_settings(self):
        settings_row = PrivacySettings(user_id=USER, show_email=True, show_phone=False)
        visibility = privacy_service.get_field_visibility(settings_row, "member")
        assert visibility["email"] is True
        assert visibility["phone"] is False
