"""
Tests for events, RSVPs and volunteer slots
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import auth_headers
from ptsa.models.audit_log import AuditLog
from ptsa.models.event import Event, EventRSVP, VolunteerSlot
from ptsa.models.user import Member
from ptsa.services import event_service
from ptsa.utils.dates import utcnow


def event_body(**fields) -> dict:
    start = utcnow() + timedelta(days=7)
    return {
        "title": "Family Math Night",
        "event_type": "educational",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=2)).isoformat(),
        "location_type": "in_person",
        "location_address": "100 School Rd",
        "rsvp_required": True,
        "status": "published",
        **fields,
    }


async def seed_event(test_db, **fields) -> Event:
    start = utcnow() + timedelta(days=7)
    values = {
        "title": "Spring Fair",
        "event_type": "fundraiser",
        "start_time": start,
        "end_time": start + timedelta(hours=3),
        "location_address": "100 School Rd",
        "rsvp_required": True,
        "visibility": "members",
        "status": "published",
        "created_by": "user_board",
        **fields,
    }
    event = Event(**values)
    test_db.add(event)
    await test_db.commit()
    await test_db.refresh(event)
    return event


async def register(test_db, user_id: str):
    test_db.add(Member(user_id=user_id, first_name="Reg", last_name="Istered", membership_status="active"))
    await test_db.commit()


class TestVisibility:
    def make(self, **fields) -> Event:
        return Event(created_by="user_board", **{"visibility": "members", "status": "published", **fields})

    @pytest.mark.parametrize(
        "visibility,role,allowed",
        [
            ("public", None, True),
            ("members", None, False),
            ("members", "member", True),
            ("board", "member", False),
            ("board", "board", True),
        ],
    )
    def test_published(self, visibility, role, allowed):
        assert event_service.can_view_event(self.make(visibility=visibility), "someone", role) is allowed

    def test_drafts_for_managers_and_creator(self):
        draft = self.make(status="draft", visibility="public")
        assert event_service.can_view_event(draft, None, None) is False
        assert event_service.can_view_event(draft, "user_board", "member") is True
        assert event_service.can_view_event(draft, "other", "admin") is True

    def test_manage(self):
        event = self.make()
        assert event_service.can_manage_event(event, "user_board", "member") is True
        assert event_service.can_manage_event(event, "other", "member") is False
        assert event_service.can_manage_event(event, None, "admin") is False


class TestEventRoutes:
    async def test_members_cannot_create(self, client, member_user):
        response = await client.post("/api/events", json=event_body(), headers=auth_headers(member_user.id))
        assert response.status_code == 403
        assert response.json()["error"] == "Only board members and admins can create events"

    async def test_create_with_slots(self, client, test_db, board_user):
        response = await client.post(
            "/api/events",
            json=event_body(volunteer_slots=[{"title": "Setup", "quantity": 3}]),
            headers=auth_headers(board_user.id),
        )
        assert response.status_code == 201
        event = response.json()["event"]
        assert event["created_by"] == board_user.id
        assert event["attending_count"] == 0
        assert event["volunteer_slots"][0]["available"] == 3

        log = (await test_db.execute(select(AuditLog).where(AuditLog.event_type == "event.created"))).scalars().one()
        assert log.meta["volunteer_slots"] == 1

    @pytest.mark.parametrize(
        "fields,message",
        [
            ({"location_type": "virtual", "location_address": None}, "Virtual link is required for virtual and hybrid events"),
            ({"location_address": None}, "Address is required for in-person and hybrid events"),
        ],
    )
    async def test_location_rules(self, client, board_user, fields, message):
        response = await client.post("/api/events", json=event_body(**fields), headers=auth_headers(board_user.id))
        assert response.status_code == 400
        assert response.json()["error"] == message

    async def test_end_before_start(self, client, board_user):
        body = event_body()
        body["end_time"], body["start_time"] = body["start_time"], body["end_time"]
        response = await client.post("/api/events", json=body, headers=auth_headers(board_user.id))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid event data"

    async def test_list_respects_visibility(self, client, test_db, member_user, board_user):
        await seed_event(test_db, title="Public", visibility="public")
        await seed_event(test_db, title="Members")
        await seed_event(test_db, title="Board", visibility="board")
        await seed_event(test_db, title="Draft", status="draft", visibility="public")

        anonymous = (await client.get("/api/events")).json()
        assert [e["title"] for e in anonymous["events"]] == ["Public"]

        member = (await client.get("/api/events", headers=auth_headers(member_user.id))).json()
        assert {e["title"] for e in member["events"]} == {"Public", "Members"}

        board = (await client.get("/api/events", headers=auth_headers(board_user.id))).json()
        assert board["total"] == 4

        drafts = (await client.get("/api/events?status=draft", headers=auth_headers(board_user.id))).json()
        assert [e["title"] for e in drafts["events"]] == ["Draft"]

    async def test_list_limit_validation(self, client):
        response = await client.get("/api/events?limit=500")
        assert response.status_code == 400
        assert response.json()["error"] == "Limit must be between 1 and 100"

    async def test_get_forbidden_and_missing(self, client, test_db, member_user):
        event = await seed_event(test_db, visibility="board")
        response = await client.get(f"/api/events/{event.id}", headers=auth_headers(member_user.id))
        assert response.status_code == 403
        assert (await client.get("/api/events/9999")).status_code == 404

    async def test_update_and_delete(self, client, test_db, board_user, member_user):
        event = await seed_event(test_db)

        response = await client.put(
            f"/api/events/{event.id}", json={"title": "Renamed"}, headers=auth_headers(member_user.id)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "You do not have permission to edit this event"

        response = await client.put(
            f"/api/events/{event.id}", json={"title": "Renamed"}, headers=auth_headers(board_user.id)
        )
        assert response.json()["event"]["title"] == "Renamed"

        response = await client.put(
            f"/api/events/{event.id}",
            json={"end_time": (event.start_time - timedelta(hours=1)).isoformat()},
            headers=auth_headers(board_user.id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "End time must be after start time"

        await register(test_db, member_user.id)
        await client.post(f"/api/events/{event.id}/rsvp", json={"status": "attending"},
                          headers=auth_headers(member_user.id))

        response = await client.delete(f"/api/events/{event.id}", headers=auth_headers(board_user.id))
        assert response.json() == {"success": True}
        assert (await test_db.execute(select(EventRSVP))).scalars().first() is None


class TestRSVP:
    async def test_requires_login(self, client, test_db):
        event = await seed_event(test_db)
        response = await client.post(f"/api/events/{event.id}/rsvp", json={"status": "attending"})
        assert response.status_code == 401
        assert response.json()["error"] == "You must be logged in to RSVP"

    async def test_requires_member_record(self, client, test_db, member_user):
        event = await seed_event(test_db)
        response = await client.post(
            f"/api/events/{event.id}/rsvp", json={"status": "attending"}, headers=auth_headers(member_user.id)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "You must be a registered member to RSVP"

    async def test_guest_count_range(self, client, test_db, member_user):
        event = await seed_event(test_db)
        response = await client.post(
            f"/api/events/{event.id}/rsvp",
            json={"status": "attending", "guest_count": 11},
            headers=auth_headers(member_user.id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Guest count must be between 0 and 10"

    async def test_rsvp_upsert_and_capacity(self, client, test_db, member_user, make_user):
        event = await seed_event(test_db, capacity=4)
        await register(test_db, member_user.id)
        await make_user("user_late")
        await register(test_db, "user_late")

        response = await client.post(
            f"/api/events/{event.id}/rsvp",
            json={"status": "attending", "guest_count": 2},
            headers=auth_headers(member_user.id),
        )
        assert response.status_code == 200
        assert response.json()["rsvp"]["guest_count"] == 2

        # Changing one's own RSVP does not count the old one against capacity
        response = await client.post(
            f"/api/events/{event.id}/rsvp",
            json={"status": "attending", "guest_count": 3},
            headers=auth_headers(member_user.id),
        )
        assert response.status_code == 200

        response = await client.post(
            f"/api/events/{event.id}/rsvp", json={"status": "attending"}, headers=auth_headers("user_late")
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Event is full"

        # Not attending never counts against capacity
        response = await client.post(
            f"/api/events/{event.id}/rsvp", json={"status": "maybe"}, headers=auth_headers("user_late")
        )
        assert response.status_code == 200

        rows = (await test_db.execute(select(EventRSVP))).scalars().all()
        assert len(rows) == 2

    async def test_rsvp_rules(self, client, test_db, member_user):
        await register(test_db, member_user.id)
        no_rsvp = await seed_event(test_db, rsvp_required=False)
        started = await seed_event(test_db, start_time=utcnow() - timedelta(hours=1))
        headers = auth_headers(member_user.id)

        response = await client.post(f"/api/events/{no_rsvp.id}/rsvp", json={"status": "attending"}, headers=headers)
        assert response.json()["error"] == "This event does not require RSVP"

        response = await client.post(f"/api/events/{started.id}/rsvp", json={"status": "attending"}, headers=headers)
        assert response.json()["error"] == "Cannot RSVP to an event that has already started"

    async def test_cancel_and_attendees(self, client, test_db, member_user, board_user):
        event = await seed_event(test_db)
        await register(test_db, member_user.id)
        headers = auth_headers(member_user.id)
        await client.post(f"/api/events/{event.id}/rsvp", json={"status": "attending", "notes": "Vegetarian"},
                          headers=headers)

        response = await client.get(f"/api/events/{event.id}/attendees", headers=headers)
        assert response.status_code == 403

        response = await client.get(f"/api/events/{event.id}/attendees", headers=auth_headers(board_user.id))
        body = response.json()
        assert body["total"] == 1
        assert body["attendees"][0]["email"] == member_user.email

        assert (await client.delete(f"/api/events/{event.id}/rsvp", headers=headers)).json() == {"success": True}
        detail = (await client.get(f"/api/events/{event.id}", headers=headers)).json()["event"]
        assert detail["user_rsvp"] is None
        assert detail["rsvp_count"] == 0


class TestVolunteerSlots:
    async def test_add_slots_requires_manager(self, client, test_db, member_user, board_user):
        event = await seed_event(test_db)
        body = {"slots": [{"title": "Bake sale", "quantity": 2}]}

        response = await client.post(
            f"/api/events/{event.id}/volunteer-slots", json=body, headers=auth_headers(member_user.id)
        )
        assert response.status_code == 403

        response = await client.post(
            f"/api/events/{event.id}/volunteer-slots", json=body, headers=auth_headers(board_user.id)
        )
        assert response.status_code == 201
        assert response.json()["slots"][0]["title"] == "Bake sale"

        response = await client.post(
            f"/api/events/{event.id}/volunteer-slots", json={"slots": []}, headers=auth_headers(board_user.id)
        )
        assert response.status_code == 400

    async def test_signup_limits(self, client, test_db, member_user, make_user):
        event = await seed_event(test_db)
        slot = VolunteerSlot(event_id=event.id, title="Setup", quantity=2)
        test_db.add(slot)
        await test_db.commit()
        await make_user("user_helper")
        url = f"/api/events/{event.id}/volunteer-slots/{slot.id}/signup"

        response = await client.post(url, headers=auth_headers(member_user.id))
        assert response.status_code == 200
        assert response.json()["signup"]["quantity"] == 1

        response = await client.post(url, json={"quantity": 2}, headers=auth_headers("user_helper"))
        assert response.status_code == 400
        assert response.json()["error"] == "Only 1 spots available for this volunteer slot"

        slots = (await client.get(f"/api/events/{event.id}/volunteer-slots",
                                  headers=auth_headers(member_user.id))).json()["slots"]
        assert slots[0]["filled"] == 1
        assert slots[0]["signed_up"] is True

        response = await client.delete(url, headers=auth_headers(member_user.id))
        assert response.json() == {"success": True}

    async def test_signup_requires_login(self, client, test_db):
        event = await seed_event(test_db, visibility="public")
        response = await client.post(f"/api/events/{event.id}/volunteer-slots/1/signup")
        assert response.status_code == 401
        assert response.json()["error"] == "You must be logged in to volunteer"

    async def test_slot_from_other_event(self, client, test_db, member_user):
        event = await seed_event(test_db)
        other = await seed_event(test_db)
        slot = VolunteerSlot(event_id=other.id, title="Cleanup", quantity=1)
        test_db.add(slot)
        await test_db.commit()

        response = await client.post(
            f"/api/events/{event.id}/volunteer-slots/{slot.id}/signup", headers=auth_headers(member_user.id)
        )
        assert response.status_code == 404
