"""
Payment Routes

Creates Stripe payment intents for membership dues and donations. Status
changes arrive later through the Stripe webhook.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ptsa.auth import get_current_user_id, get_user, require_user_id
from ptsa.config import settings
from ptsa.database import get_db
from ptsa.exceptions import AuthorizationError
from ptsa.middleware.rate_limit import RATE_LIMITS, rate_limiter
from ptsa.services import payment_service
from ptsa.utils.audit_log import extract_client_info
from ptsa.utils.request import read_json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _is_https(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip() == "https"
    return request.url.scheme == "https"


@router.post("/create-payment-intent")
async def create_payment_intent(
    request: Request,
    user_id: str | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a payment intent for the caller.

    **Body**: ``{amount, paymentType, email?, metadata?}``; amount in cents.
    An ``Idempotency-Key`` header makes client retries reuse the same intent.

    **Returns**: ``{clientSecret, paymentIntentId}``
    """
    user_id = require_user_id(user_id, "Authentication required")
    await rate_limiter.enforce(request, RATE_LIMITS["payments"], user_id)

    if settings.is_production and not _is_https(request):
        raise AuthorizationError("HTTPS required")

    body = await read_json_body(request)
    if not isinstance(body, dict):
        body = {}

    email = body.get("email")
    if not email:
        user = await get_user(db, user_id)
        email = user.email if user else None

    ip_address, user_agent = extract_client_info(request)
    try:
        return await payment_service.create_payment_intent(
            db,
            user_id,
            body.get("amount"),
            body.get("paymentType"),
            email,
            metadata=body.get("metadata"),
            request_key=request.headers.get("idempotency-key"),
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except Exception as e:
        status_code, content = payment_service.create_secure_error_response(e)
        return JSONResponse(status_code=status_code, content=content)


@router.get("/create-payment-intent", include_in_schema=False)
async def create_payment_intent_get():
    return JSONResponse(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, content={"error": "Method not allowed"})
