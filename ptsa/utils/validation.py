"""
Payment and event input validation.

Pure functions; each raises a user-safe ``ValidationError`` subclass and
never touches the database or the network.
"""

from datetime import datetime
from typing import Any

from email_validator import EmailNotValidError
from email_validator import validate_email as check_email_address

from ptsa.exceptions import PaymentValidationError, ValidationError

MIN_PAYMENT_AMOUNT = 100  # $1.00 in cents
MAX_PAYMENT_AMOUNTS = {
    "membership": 10000,  # $100
    "donation": 100000,  # $1000
}
PAYMENT_TYPES = tuple(MAX_PAYMENT_AMOUNTS)

MAX_ID_LENGTH = 255

MAX_GUEST_COUNT = 10
MAX_RSVP_NOTES_LENGTH = 500
MAX_LIST_LIMIT = 100
DEFAULT_LIST_LIMIT = 20


# ============================================================================
# Payments
# ============================================================================


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_payment_type(payment_type: Any) -> str:
    if payment_type not in PAYMENT_TYPES:
        raise PaymentValidationError("Invalid payment type")
    return payment_type


def validate_payment_amount(amount: Any, payment_type: str) -> int:
    """
    Validate an amount in cents against the bounds for ``payment_type``.

    >>> validate_payment_amount(2500, "membership")
    2500
    """
    if not _is_integer(amount) or amount <= 0:
        raise PaymentValidationError("Invalid payment amount")

    amount = int(amount)
    if amount < MIN_PAYMENT_AMOUNT:
        raise PaymentValidationError("Payment amount must be at least $1")

    max_amount = MAX_PAYMENT_AMOUNTS[validate_payment_type(payment_type)]
    if amount > max_amount:
        raise PaymentValidationError(f"Payment amount cannot exceed ${max_amount // 100}")

    return amount


def validate_email(email: Any) -> str:
    if not isinstance(email, str):
        raise PaymentValidationError("Invalid email address")
    try:
        check_email_address(email, check_deliverability=False)
    except EmailNotValidError:
        raise PaymentValidationError("Invalid email address") from None
    return email


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip() or len(user_id) > MAX_ID_LENGTH:
        raise PaymentValidationError("Invalid user ID")
    return user_id


def validate_payment_params(params: Any) -> dict[str, Any]:
    """Validate a full payment request and return the normalized parameters."""
    if not isinstance(params, dict):
        raise PaymentValidationError("Invalid payment parameters")

    payment_type = validate_payment_type(params.get("payment_type"))
    normalized = {
        "amount": validate_payment_amount(params.get("amount"), payment_type),
        "payment_type": payment_type,
        "user_id": validate_user_id(params.get("user_id")),
        "email": validate_email(params.get("email")),
        "metadata": params.get("metadata") or {},
    }

    if not isinstance(normalized["metadata"], dict):
        raise PaymentValidationError("Invalid metadata format")

    return normalized


# ============================================================================
# Events
# ============================================================================


def validate_event_times(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationError("End time must be after start time", field="end_time")


def validate_event_location(location_type: str, virtual_link: str | None, location_address: str | None) -> None:
    if location_type in ("virtual", "hybrid") and not virtual_link:
        raise ValidationError("Virtual link is required for virtual and hybrid events", field="virtual_link")
    if location_type in ("in_person", "hybrid") and not location_address:
        raise ValidationError("Address is required for in-person and hybrid events", field="location_address")


def validate_capacity(capacity: int | None, current_attendees: int, requested: int) -> bool:
    """True when ``requested`` more seats fit; a missing capacity means unlimited."""
    if capacity is None:
        return True
    return current_attendees + requested <= capacity


def validate_guest_count(guest_count: Any) -> int:
    if not _is_integer(guest_count) or not 0 <= guest_count <= MAX_GUEST_COUNT:
        raise ValidationError(f"Guest count must be between 0 and {MAX_GUEST_COUNT}", field="guest_count")
    return int(guest_count)


def normalize_pagination(limit: int | None, offset: int | None) -> tuple[int, int]:
    limit = DEFAULT_LIST_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    if limit < 1 or limit > MAX_LIST_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_LIST_LIMIT}", field="limit")
    if offset < 0:
        raise ValidationError("Offset must not be negative", field="offset")
    return limit, offset
