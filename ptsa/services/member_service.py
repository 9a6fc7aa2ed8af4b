"""
Member Service

Membership registration and administration, plus role changes on the
synced user records.
"""

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.constants.roles import RoleName, is_valid_role
from ptsa.exceptions import ResourceNotFoundError, ValidationError
from ptsa.models.user import Member, User
from ptsa.schemas.member import MemberRegister, MemberUpdate
from ptsa.utils.dates import add_years, utcnow

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2
MAX_SEARCH_LIMIT = 100
DEFAULT_SEARCH_LIMIT = 50


async def get_member_by_user(db: AsyncSession, user_id: str) -> Member | None:
    result = await db.execute(select(Member).where(Member.user_id == user_id))
    return result.scalars().first()


async def register_member(db: AsyncSession, user_id: str, data: MemberRegister) -> Member:
    """
    Create the caller's membership record.

    Free memberships are active immediately for one year; paid ones wait
    for the payment webhook to activate them.

    Raises:
        ValidationError: the user already has a member record
    """
    if await get_member_by_user(db, user_id) is not None:
        raise ValidationError("Member already registered")

    now = utcnow()
    requires_payment = data.membership_amount > 0
    student_info = None
    if data.student_name or data.student_grade:
        student_info = {"name": data.student_name, "grade": data.student_grade}

    member = Member(
        user_id=user_id,
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        membership_type=data.membership_type,
        membership_status="pending" if requires_payment else "active",
        membership_expires_at=None if requires_payment else add_years(now, 1),
        payment_amount=data.membership_amount,
        student_info=student_info,
        volunteer_interests=["general"] if data.volunteer_interest else [],
    )
    db.add(member)

    if not requires_payment:
        # Free memberships are the teacher tier
        user = await db.get(User, user_id)
        if user is not None and user.role == RoleName.MEMBER.value:
            user.role = RoleName.TEACHER.value

    await db.commit()
    await db.refresh(member)
    logger.info(f"Member {member.id} registered for user {user_id}")
    return member


async def search_members(db: AsyncSession, query: str, limit: int | None = None) -> list[dict[str, Any]]:
    query = (query or "").strip()
    if len(query) < MIN_SEARCH_LENGTH:
        raise ValidationError("Search query must be at least 2 characters")
    limit = min(limit or DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT)

    pattern = f"%{query}%"
    result = await db.execute(
        select(Member, User.role)
        .outerjoin(User, User.id == Member.user_id)
        .where(
            Member.deleted_at.is_(None),
            or_(
                Member.first_name.ilike(pattern),
                Member.last_name.ilike(pattern),
                Member.email.ilike(pattern),
            ),
        )
        .order_by(Member.last_name.asc(), Member.id.asc())
        .limit(limit)
    )
    return [
        {
            "id": member.id,
            "name": f"{member.first_name or ''} {member.last_name or ''}".strip(),
            "email": member.email,
            "role": role,
        }
        for member, role in result.all()
    ]


async def member_counts(db: AsyncSession) -> dict[str, int]:
    """Active member counts per email audience."""
    result = await db.execute(
        select(User.role, func.count(Member.id))
        .select_from(Member)
        .outerjoin(User, User.id == Member.user_id)
        .where(Member.deleted_at.is_(None))
        .group_by(User.role)
    )
    by_role = {role: count for role, count in result.all()}
    return {
        "all": sum(by_role.values()),
        "board": by_role.get(RoleName.BOARD.value, 0),
        "committee_chairs": by_role.get(RoleName.COMMITTEE_CHAIR.value, 0),
        "teachers": by_role.get(RoleName.TEACHER.value, 0),
    }


async def get_member(db: AsyncSession, member_id: int) -> Member:
    member = await db.get(Member, member_id)
    if member is None or member.deleted_at is not None:
        raise ResourceNotFoundError("Member not found")
    return member


async def update_member(db: AsyncSession, member_id: int, data: MemberUpdate) -> Member:
    member = await get_member(db, member_id)
    now = utcnow()
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(member, field, value)
    if data.membership_status == "active":
        member.membership_expires_at = add_years(now, 1)
    member.updated_at = now
    await db.commit()
    await db.refresh(member)
    return member


async def delete_member(db: AsyncSession, member_id: int) -> Member:
    member = await get_member(db, member_id)
    member.deleted_at = utcnow()
    await db.commit()
    return member


async def change_role(db: AsyncSession, actor_id: str, target_id: str, role: str) -> tuple[str, str]:
    """
    Set ``target_id``'s role. Returns (previous role, new role).

    Raises:
        ValidationError: unknown role, or the change would leave no admin
        ResourceNotFoundError: no such user
    """
    if not is_valid_role(role):
        raise ValidationError("Invalid role")

    target = await db.get(User, target_id)
    if target is None or target.deleted_at is not None:
        raise ResourceNotFoundError("User not found")

    if target.role == RoleName.ADMIN.value and role != RoleName.ADMIN.value:
        admin_count = (
            await db.execute(
                select(func.count(User.id)).where(User.role == RoleName.ADMIN.value, User.deleted_at.is_(None))
            )
        ).scalar() or 0
        if admin_count <= 1:
            raise ValidationError("Cannot remove the last administrator")

    previous = target.role
    target.role = role
    target.updated_at = utcnow()
    await db.commit()
    logger.info(f"User {target_id} role changed from {previous} to {role} by {actor_id}")
    return previous, role
