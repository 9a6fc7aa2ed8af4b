"""
Tests for custom exceptions and the global exception handlers
"""

import json
from unittest.mock import MagicMock

import pytest
from fastapi import status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ptsa.exception_handlers import (
    create_error_response,
    database_exception_handler,
    get_http_error_code,
    http_exception_handler,
    ptsa_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from ptsa.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    ErrorCode,
    PaymentValidationError,
    RateLimitExceededError,
    ResourceNotFoundError,
    ServiceError,
    ValidationError,
)


def make_request(path: str = "/api/test", method: str = "POST"):
    request = MagicMock()
    request.url.path = path
    request.method = method
    return request


def body(response) -> dict:
    return json.loads(response.body)


class TestExceptionClasses:
    def test_authentication_defaults_to_401(self):
        error = AuthenticationError()
        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.message == "Unauthorized"
        assert error.error_code is ErrorCode.AUTH_REQUIRED

    def test_authorization_is_403(self):
        error = AuthorizationError("Unauthorized to send emails")
        assert error.status_code == status.HTTP_403_FORBIDDEN
        assert error.message == "Unauthorized to send emails"

    def test_validation_error_carries_field(self):
        error = ValidationError("Bad value", field="amount")
        assert error.status_code == 400
        assert error.details == {"field": "amount"}

    def test_payment_validation_is_a_validation_error(self):
        error = PaymentValidationError("Invalid payment amount")
        assert isinstance(error, ValidationError)
        assert error.error_code is ErrorCode.PAYMENT_VALIDATION_FAILED

    def test_rate_limit_sets_retry_after(self):
        error = RateLimitExceededError("Slow down", retry_after=12, headers={"X-RateLimit-Limit": "5"})
        assert error.status_code == 429
        assert error.headers == {"Retry-After": "12", "X-RateLimit-Limit": "5"}
        assert error.details == {"retryAfter": 12}

    def test_service_error_status(self):
        assert ServiceError("Webhook secret not configured").status_code == 500
        assert ServiceError("Busy", status_code=503).status_code == 503


class TestErrorResponses:
    def test_flat_body(self):
        response = create_error_response(404, "Event not found", ErrorCode.RESOURCE_NOT_FOUND, {"id": 3})
        assert response.status_code == 404
        assert body(response) == {"error": "Event not found", "code": "RESOURCE_NOT_FOUND", "id": 3}

    def test_details_never_override_error(self):
        response = create_error_response(400, "Safe message", details={"error": "internal"})
        assert body(response)["error"] == "Safe message"

    @pytest.mark.parametrize(
        "status_code,code",
        [(401, "AUTH_REQUIRED"), (403, "AUTH_PERMISSION_DENIED"), (405, "INTERNAL_ERROR"), (429, "RATE_LIMIT_EXCEEDED")],
    )
    def test_http_error_codes(self, status_code, code):
        assert get_http_error_code(status_code) == code


class TestHandlers:
    async def test_ptsa_handler(self):
        response = await ptsa_exception_handler(make_request(), RateLimitExceededError("Too many requests", 30))
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert body(response) == {"error": "Too many requests", "code": "RATE_LIMIT_EXCEEDED", "retryAfter": 30}

    async def test_http_handler(self):
        response = await http_exception_handler(make_request(), StarletteHTTPException(404, "Not Found"))
        assert response.status_code == 404
        assert body(response)["error"] == "Not Found"

    async def test_validation_handler_hides_field_detail(self):
        class Model(BaseModel):
            subject: str

        with pytest.raises(Exception) as exc_info:
            Model.model_validate({})

        response = await validation_exception_handler(make_request(), exc_info.value)
        assert response.status_code == 400
        assert body(response) == {"error": "Invalid request data", "code": "VALIDATION_FAILED"}

    async def test_database_handler_uses_safe_message(self):
        orig = Exception("duplicate key value violates unique constraint users_pkey")
        orig.sqlstate = "23505"
        response = await database_exception_handler(make_request(), IntegrityError("INSERT", {}, orig))

        assert response.status_code == 409
        payload = body(response)
        assert payload["error"] == "This record already exists."
        assert payload["category"] == "constraint"
        assert "users_pkey" not in json.dumps(payload)

    async def test_database_handler_unknown_error(self):
        response = await database_exception_handler(make_request(), OperationalError("SELECT", {}, Exception("boom")))
        assert response.status_code == 500
        assert body(response)["error"] == DatabaseError().message

    async def test_unhandled_handler(self):
        response = await unhandled_exception_handler(make_request(), RuntimeError("secret detail"))
        assert response.status_code == 500
        assert body(response) == {"error": "Internal server error", "code": "INTERNAL_ERROR"}


class TestResourceNotFound:
    def test_default_message(self):
        assert ResourceNotFoundError().message == "Not found"
