"""
Member and User Routes

Membership registration and administration, and admin role changes on
synced users.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, require_manager, require_role, require_user_id
from ptsa.constants.audit import AuditAction
from ptsa.constants.roles import RoleName
from ptsa.database import get_db
from ptsa.exceptions import AuthorizationError
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.schemas.member import MemberRegister, MemberUpdate, RoleUpdate
from ptsa.services import member_service
from ptsa.utils.audit_log import log_request_audit_event
from ptsa.utils.request import parse_model, read_json_body

router = APIRouter(prefix="/members", tags=["Members"])
users_router = APIRouter(prefix="/users", tags=["Users"])

ADMIN_ONLY = frozenset({RoleName.ADMIN.value})


@router.post("/register")
async def register(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Register the signed-in user as a PTSA member.

    A positive membershipAmount leaves the membership pending until the
    payment succeeds.
    """
    user_id = require_user_id(user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)

    data = parse_model(MemberRegister, await read_json_body(request))
    if data.user_id != user_id:
        raise AuthorizationError("Invalid user")

    member = await member_service.register_member(db, user_id, data)
    await log_request_audit_event(
        request,
        AuditAction.MEMBER_CREATED,
        user_id,
        target_id=str(member.id),
        resource_type="member",
        metadata={"membership_type": member.membership_type, "status": member.membership_status},
    )
    return {"success": True, "memberId": member.id, "requiresPayment": data.membership_amount > 0}


@router.get("/search")
async def search(
    request: Request,
    q: str = "",
    limit: int | None = None,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_manager(db, user_id, "Unauthorized to search members")
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)
    return {"members": await member_service.search_members(db, q, limit)}


@router.get("/counts")
async def counts(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Recipient counts per audience, used by the email composer."""
    user_id = require_user_id(user_id)
    await require_manager(db, user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)
    return await member_service.member_counts(db)


@router.patch("/{member_id}")
async def update_member(
    member_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_manager(db, user_id)
    await rate_limiter.enforce(request, RATE_LIMITS["read_operations"], user_id)

    data = parse_model(MemberUpdate, await read_json_body(request))
    member = await member_service.update_member(db, member_id, data)
    await log_request_audit_event(
        request,
        AuditAction.MEMBER_UPDATED,
        user_id,
        target_id=str(member.id),
        resource_type="member",
        metadata={"fields": sorted(data.model_dump(exclude_unset=True))},
    )
    return {"member": member.to_dict()}


@router.delete("/{member_id}")
async def delete_member(
    member_id: int,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_role(db, user_id, ADMIN_ONLY)

    member = await member_service.delete_member(db, member_id)
    await log_request_audit_event(
        request,
        AuditAction.MEMBER_DELETED,
        user_id,
        target_id=str(member.id),
        resource_type="member",
    )
    return {"success": True}


@users_router.patch("/{target_id}/role")
async def change_role(
    target_id: str,
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user_id = require_user_id(user_id)
    await require_role(db, user_id, ADMIN_ONLY)

    data = parse_model(RoleUpdate, await read_json_body(request))
    previous, role = await member_service.change_role(db, user_id, target_id, data.role)
    await log_request_audit_event(
        request,
        AuditAction.USER_ROLE_CHANGED,
        user_id,
        target_id=target_id,
        resource_type="user",
        metadata={"previous_role": previous, "new_role": role},
    )
    return {"success": True, "role": role}
