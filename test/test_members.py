"""
Tests for membership registration, member administration and role changes
"""

from sqlalchemy import select

from conftest import auth_headers
from ptsa.models.audit_log import AuditLog
from ptsa.models.user import Member, User
from ptsa.services import member_service
from ptsa.utils.dates import utcnow


def registration(user_id: str, **fields) -> dict:
    return {
        "userId": user_id,
        "email": f"{user_id}@example.com",
        "firstName": "Jordan",
        "lastName": "Rivera",
        "studentName": "Kim",
        "studentGrade": "3",
        "volunteerInterest": True,
        **fields,
    }


class TestRegister:
    async def test_free_membership_is_active_teacher(self, client, test_db, member_user):
        response = await client.post(
            "/api/members/register", json=registration(member_user.id), headers=auth_headers(member_user.id)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["requiresPayment"] is False

        member = await test_db.get(Member, body["memberId"])
        assert member.membership_status == "active"
        assert member.membership_expires_at > utcnow()
        assert member.student_info == {"name": "Kim", "grade": "3"}
        assert member.volunteer_interests == ["general"]

        test_db.expunge_all()
        assert (await test_db.get(User, member_user.id)).role == "teacher"

    async def test_paid_membership_waits_for_payment(self, client, test_db, member_user):
        response = await client.post(
            "/api/members/register",
            json=registration(member_user.id, membershipAmount=2500),
            headers=auth_headers(member_user.id),
        )
        assert response.json()["requiresPayment"] is True

        member = (await test_db.execute(select(Member))).scalars().one()
        assert member.membership_status == "pending"
        assert member.membership_expires_at is None

        test_db.expunge_all()
        assert (await test_db.get(User, member_user.id)).role == "member"

    async def test_cannot_register_someone_else(self, client, member_user):
        response = await client.post(
            "/api/members/register", json=registration("user_other"), headers=auth_headers(member_user.id)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Invalid user"

    async def test_malformed_email_rejected(self, client, test_db, member_user):
        response = await client.post(
            "/api/members/register",
            json=registration(member_user.id, email="not an email"),
            headers=auth_headers(member_user.id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request data"
        assert (await test_db.execute(select(Member))).scalars().first() is None

    async def test_duplicate_registration(self, client, member_user):
        headers = auth_headers(member_user.id)
        await client.post("/api/members/register", json=registration(member_user.id), headers=headers)
        response = await client.post("/api/members/register", json=registration(member_user.id), headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Member already registered"


class TestAdministration:
    async def seed(self, test_db):
        test_db.add_all(
            [
                User(id="user_t", email="t@example.com", role="teacher"),
                User(id="user_b", email="b@example.com", role="board"),
                Member(user_id="user_t", first_name="Taylor", last_name="Adams", email="t@example.com"),
                Member(user_id="user_b", first_name="Blake", last_name="Zimmer", email="b@example.com"),
            ]
        )
        await test_db.commit()

    async def test_search(self, client, test_db, board_user, member_user):
        await self.seed(test_db)

        response = await client.get("/api/members/search?q=ta", headers=auth_headers(member_user.id))
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized to search members"

        response = await client.get("/api/members/search?q=ta", headers=auth_headers(board_user.id))
        assert response.json()["members"] == [
            {"id": 1, "name": "Taylor Adams", "email": "t@example.com", "role": "teacher"}
        ]

        response = await client.get("/api/members/search?q=a", headers=auth_headers(board_user.id))
        assert response.status_code == 400

    async def test_counts(self, client, test_db, admin_user):
        await self.seed(test_db)
        response = await client.get("/api/members/counts", headers=auth_headers(admin_user.id))
        assert response.json() == {"all": 2, "board": 1, "committee_chairs": 0, "teachers": 1}

    async def test_update_member(self, client, test_db, board_user):
        await self.seed(test_db)
        response = await client.patch(
            "/api/members/1", json={"membership_status": "active", "phone": "555-0101"},
            headers=auth_headers(board_user.id),
        )
        member = response.json()["member"]
        assert member["membership_status"] == "active"
        assert member["membership_expires_at"] is not None

        response = await client.patch(
            "/api/members/1", json={"membership_status": "gold"}, headers=auth_headers(board_user.id)
        )
        assert response.status_code == 400

        assert (await client.patch("/api/members/99", json={}, headers=auth_headers(board_user.id))).status_code == 404

    async def test_delete_is_admin_only_and_soft(self, client, test_db, board_user, admin_user):
        await self.seed(test_db)
        assert (await client.delete("/api/members/1", headers=auth_headers(board_user.id))).status_code == 403

        response = await client.delete("/api/members/1", headers=auth_headers(admin_user.id))
        assert response.json() == {"success": True}

        test_db.expunge_all()
        assert (await test_db.get(Member, 1)).deleted_at is not None
        assert (await client.delete("/api/members/1", headers=auth_headers(admin_user.id))).status_code == 404


class TestRoleChanges:
    async def test_admin_changes_role(self, client, test_db, admin_user, member_user):
        response = await client.patch(
            f"/api/users/{member_user.id}/role", json={"role": "committee_chair"}, headers=auth_headers(admin_user.id)
        )
        assert response.json() == {"success": True, "role": "committee_chair"}

        log = (
            await test_db.execute(select(AuditLog).where(AuditLog.event_type == "user.role_changed"))
        ).scalars().one()
        assert log.meta == {"previous_role": "member", "new_role": "committee_chair"}

    async def test_non_admin_forbidden(self, client, board_user, member_user):
        response = await client.patch(
            f"/api/users/{member_user.id}/role", json={"role": "admin"}, headers=auth_headers(board_user.id)
        )
        assert response.status_code == 403

    async def test_invalid_role(self, client, admin_user, member_user):
        response = await client.patch(
            f"/api/users/{member_user.id}/role", json={"role": "superuser"}, headers=auth_headers(admin_user.id)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid role"

    async def test_last_admin_is_protected(self, test_db, admin_user, make_user):
        try:
            await member_service.change_role(test_db, admin_user.id, admin_user.id, "board")
        except member_service.ValidationError as e:
            assert e.message == "Cannot remove the last administrator"
        else:
            raise AssertionError("last admin was demoted")

        await make_user("user_admin_2", role="admin")
        assert await member_service.change_role(test_db, admin_user.id, "user_admin_2", "board") == ("admin", "board")
