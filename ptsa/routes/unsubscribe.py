"""
Unsubscribe Route

Handles the signed links in email footers. No sign-in is needed; the token
identifies the user.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.database import get_db
from ptsa.exceptions import ValidationError
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.schemas.communication import UnsubscribeRequest
from ptsa.services import email_service
from ptsa.utils.request import parse_model, read_json_body

router = APIRouter(prefix="/unsubscribe", tags=["Communications"])


@router.post("")
async def unsubscribe(request: Request, db: AsyncSession = Depends(get_db)):
    await rate_limiter.enforce(request, RATE_LIMITS["unsubscribe"])

    data = parse_model(UnsubscribeRequest, await read_json_body(request))
    if data.category is not None and not email_service.is_valid_category(data.category):
        raise ValidationError("Invalid category")

    message = await email_service.handle_unsubscribe(db, data.token, data.category)
    return {"success": True, "message": message}
