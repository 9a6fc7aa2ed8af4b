"""
Payment intent orchestration.

Stripe is the source of truth for money movement; this module validates the
request, creates the intent with a deterministic idempotency key, mirrors it
into the ``payments`` table and maps processor errors to safe responses.
"""

import asyncio
import hashlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ptsa.config import settings
from ptsa.constants.audit import AuditAction
from ptsa.exceptions import PaymentValidationError
from ptsa.models.payment import Payment
from ptsa.utils.audit_log import log_audit_event
from ptsa.utils.validation import validate_payment_params

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0


def build_idempotency_key(
    user_id: str,
    amount: int,
    payment_type: str,
    request_key: str | None = None,
) -> str:
    """
    Derive the Stripe idempotency key.

    Retries of the same logical request must map to the same intent, so the
    key never includes a timestamp. The caller's ``Idempotency-Key`` header
    identifies the request when present; without one every call is a new
    request and gets a random identity.
    """
    request_identity = request_key or uuid.uuid4().hex
    raw = f"{user_id}:{amount}:{payment_type}:{request_identity}"
    return hashlib.sha256(raw.encode()).hexdigest()


def _is_retryable(error: Exception) -> bool:
    return not isinstance(error, (PaymentValidationError, stripe.CardError))


async def retry_payment_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_RETRY_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff (1s, 2s, ...); validation and card errors fail fast."""
    for attempt in range(max_retries):
        try:
            return await operation()
        except Exception as e:
            if not _is_retryable(e) or attempt == max_retries - 1:
                raise
            delay = initial_delay * (2 ** attempt)
            logger.warning(
                f"Payment operation failed ({type(e).__name__}), retrying in {delay:g}s "
                f"(attempt {attempt + 2}/{max_retries})"
            )
            await sleep(delay)
    raise RuntimeError("retry_payment_operation called with max_retries < 1")


def create_secure_error_response(error: Exception) -> tuple[int, dict[str, Any]]:
    """
    Map a payment failure to ``(status_code, body)``.

    Only card errors and our own validation messages are shown verbatim;
    everything else gets a generic message.
    """
    logger.error(f"Payment error: {type(error).__name__}: {error}")

    if isinstance(error, stripe.CardError):
        return 400, {
            "error": error.user_message or "Your card was declined.",
            "code": error.code,
            "type": "card_error",
        }
    if isinstance(error, stripe.InvalidRequestError):
        return 400, {"error": "Invalid payment request. Please try again.", "type": "invalid_request"}
    if isinstance(error, stripe.RateLimitError):
        return 429, {"error": "Too many requests. Please try again later.", "type": "rate_limit"}
    if isinstance(error, stripe.AuthenticationError):
        return 500, {
            "error": "Payment service configuration error. Please contact support.",
            "type": "configuration_error",
        }
    if isinstance(error, PaymentValidationError):
        return 400, {"error": error.message, "type": "validation_error"}

    return 500, {"error": "Payment processing failed. Please try again.", "type": "server_error"}


def _create_stripe_intent(params: dict[str, Any], idempotency_key: str):
    metadata = {
        "userId": params["user_id"],
        "userEmail": params["email"],
        "paymentType": params["payment_type"],
        **{str(key): str(value) for key, value in params["metadata"].items()},
    }
    return stripe.PaymentIntent.create(
        amount=params["amount"],
        currency=settings.stripe_currency,
        automatic_payment_methods={"enabled": True},
        metadata=metadata,
        receipt_email=params["email"],
        idempotency_key=idempotency_key,
        api_key=settings.stripe_secret_key,
    )


async def create_payment_intent(
    db: AsyncSession,
    user_id: str,
    amount: Any,
    payment_type: Any,
    email: Any,
    metadata: Any = None,
    request_key: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict[str, str]:
    """
    Validate, create the Stripe intent and record a pending payment.

    Raises:
        PaymentValidationError: invalid parameters
        stripe.StripeError: the processor rejected the request after retries
    """
    params = validate_payment_params(
        {
            "amount": amount,
            "payment_type": payment_type,
            "user_id": user_id,
            "email": email,
            "metadata": metadata,
        }
    )
    idempotency_key = build_idempotency_key(
        params["user_id"], params["amount"], params["payment_type"], request_key
    )

    intent = await retry_payment_operation(
        lambda: run_in_threadpool(_create_stripe_intent, params, idempotency_key)
    )

    try:
        db.add(
            Payment(
                user_id=user_id,
                stripe_payment_intent_id=intent["id"],
                amount=intent["amount"],
                currency=settings.stripe_currency,
                status="pending",
                payment_type=params["payment_type"],
                meta=params["metadata"],
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        # The intent exists at Stripe; the webhook reconciles status later
        await db.rollback()
        logger.error(f"Failed to store payment record for intent {intent['id']}: {type(e).__name__}")

    await log_audit_event(
        AuditAction.PAYMENT_INTENT_CREATED,
        user_id=user_id,
        target_id=intent["id"],
        resource_type="payment",
        metadata={"amount": params["amount"], "payment_type": params["payment_type"]},
        ip_address=ip_address,
        user_agent=user_agent,
    )

    return {"clientSecret": intent["client_secret"], "paymentIntentId": intent["id"]}
