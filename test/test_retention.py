"""
Tests for data retention policies and temporary data cleanup
"""

from datetime import timedelta

from sqlalchemy import func, select

from ptsa.models.archived_record import ArchivedRecord
from ptsa.models.audit_log import AuditLog
from ptsa.models.data_request import DataExportRequest
from ptsa.models.event import Event, EventRSVP, VolunteerSignup, VolunteerSlot
from ptsa.models.user import Member
from ptsa.services import retention_service
from ptsa.utils.dates import utcnow


def policy(name: str) -> retention_service.RetentionPolicy:
    return next(p for p in retention_service.RETENTION_POLICIES if p.name == name)


async def count(test_db, model) -> int:
    return (await test_db.execute(select(func.count()).select_from(model))).scalar()


async def seed_event(test_db) -> Event:
    now = utcnow()
    event = Event(
        title="Spring Fair",
        event_type="fundraiser",
        start_time=now,
        end_time=now + timedelta(hours=2),
        created_by="user_board",
    )
    test_db.add(event)
    await test_db.commit()
    return event


def test_policy_table():
    names = [p.name for p in retention_service.RETENTION_POLICIES]
    assert names == ["inactive_members", "event_registrations", "volunteer_records", "audit_logs", "expired_exports"]
    assert policy("inactive_members").action is retention_service.RetentionAction.ANONYMIZE
    assert policy("volunteer_records").action is retention_service.RetentionAction.ARCHIVE


async def test_inactive_members_anonymized(test_db):
    old = utcnow() - timedelta(days=400)
    test_db.add_all(
        [
            Member(user_id="user_gone", first_name="Old", email="old@example.com", phone="555",
                   membership_status="expired", membership_expires_at=old),
            Member(user_id="user_recent", first_name="Recent", membership_status="expired",
                   membership_expires_at=utcnow() - timedelta(days=10)),
            Member(user_id="user_active", first_name="Active", membership_status="active",
                   membership_expires_at=old),
        ]
    )
    await test_db.commit()

    result = await retention_service.apply_policy(test_db, policy("inactive_members"))
    assert result == {"policy": "inactive_members", "processed": 1, "errors": []}

    test_db.expunge_all()
    members = {m.first_name: m for m in (await test_db.execute(select(Member))).scalars().all()}
    assert set(members) == {"Anonymous", "Recent", "Active"}
    assert members["Anonymous"].user_id is None
    assert members["Anonymous"].phone is None
    assert members["Anonymous"].email.endswith("@deleted.invalid")

    # Already anonymized rows are not picked up again
    again = await retention_service.apply_policy(test_db, policy("inactive_members"))
    assert again["processed"] == 0


async def test_old_registrations_deleted(test_db):
    event = await seed_event(test_db)
    test_db.add_all(
        [
            EventRSVP(event_id=event.id, user_id="u1", created_at=utcnow() - timedelta(days=800)),
            EventRSVP(event_id=event.id, user_id="u2", created_at=utcnow()),
        ]
    )
    await test_db.commit()

    result = await retention_service.apply_policy(test_db, policy("event_registrations"))
    assert result["processed"] == 1
    assert await count(test_db, EventRSVP) == 1


async def test_volunteer_records_archived(test_db):
    event = await seed_event(test_db)
    slot = VolunteerSlot(event_id=event.id, title="Setup", quantity=2)
    test_db.add(slot)
    await test_db.commit()
    test_db.add(VolunteerSignup(slot_id=slot.id, user_id="u1", created_at=utcnow() - timedelta(days=1200)))
    await test_db.commit()

    result = await retention_service.apply_policy(test_db, policy("volunteer_records"))
    assert result["processed"] == 1
    assert await count(test_db, VolunteerSignup) == 0

    archived = (await test_db.execute(select(ArchivedRecord))).scalars().one()
    assert archived.source_table == "volunteer_signups"
    assert archived.data["user_id"] == "u1"
    assert archived.archive_reason == "retention_policy"


async def test_run_all_policies_is_audited(test_db):
    test_db.add(AuditLog(event_type="user.login", created_at=utcnow() - timedelta(days=1200)))
    await test_db.commit()

    results = await retention_service.run_retention_policies(test_db)
    assert len(results) == 5
    assert next(r for r in results if r["policy"] == "audit_logs")["processed"] == 1

    log = (
        await test_db.execute(select(AuditLog).where(AuditLog.event_type == "retention.applied"))
    ).scalars().one()
    assert log.meta["policies_run"] == 5
    assert log.meta["total_processed"] == 1


async def test_cleanup_removes_expired_exports(test_db):
    now = utcnow()
    test_db.add_all(
        [
            DataExportRequest(user_id="u1", status="completed", expires_at=now - timedelta(days=1)),
            DataExportRequest(user_id="u2", status="completed", expires_at=now + timedelta(days=1)),
            DataExportRequest(user_id="u3", status="pending"),
        ]
    )
    await test_db.commit()

    assert await retention_service.cleanup_temporary_data(test_db) == {"expired_exports": 1}
    assert await count(test_db, DataExportRequest) == 2
