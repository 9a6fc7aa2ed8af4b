"""
Global Exception Handlers for the PTSA service

This module provides centralized exception handling for consistent
error responses across the application.

Error Response Format (flat, so clients can read ``body.error`` directly):
{
    "error": "Event not found",
    "code": "RESOURCE_NOT_FOUND",
    ...details
}
"""

import logging
from typing import Any, Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ptsa.exceptions import ErrorCode, PTSAError
from ptsa.utils.database_errors import to_database_error

logger = logging.getLogger(__name__)


def create_error_response(
    status_code: int,
    message: str,
    error_code: str | ErrorCode | None = None,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """
    Create a standardized error response.

    Args:
        status_code: HTTP status code
        message: Human-readable, user-safe error message
        error_code: Machine-readable error code
        details: Additional top-level fields merged into the body
        headers: Extra response headers (e.g. Retry-After)

    Returns:
        JSONResponse with the flat error format
    """
    content: dict[str, Any] = {"error": message}

    if error_code:
        content["code"] = error_code.value if isinstance(error_code, ErrorCode) else error_code

    if details:
        for key, value in details.items():
            content.setdefault(key, value)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


def get_http_error_code(status_code: int) -> str:
    """Map HTTP status codes to error codes for HTTPException."""
    error_code_map = {
        400: ErrorCode.VALIDATION_FAILED.value,
        401: ErrorCode.AUTH_REQUIRED.value,
        403: ErrorCode.AUTH_PERMISSION_DENIED.value,
        404: ErrorCode.RESOURCE_NOT_FOUND.value,
        409: ErrorCode.VALIDATION_DUPLICATE_RESOURCE.value,
        410: ErrorCode.RESOURCE_GONE.value,
        422: ErrorCode.VALIDATION_FAILED.value,
        429: ErrorCode.RATE_LIMIT_EXCEEDED.value,
        502: ErrorCode.SERVICE_UNAVAILABLE.value,
        503: ErrorCode.SERVICE_UNAVAILABLE.value,
    }
    return error_code_map.get(status_code, ErrorCode.INTERNAL_ERROR.value)


async def ptsa_exception_handler(request: Request, exc: PTSAError) -> JSONResponse:
    """Handle application exceptions raised by services and routes."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={"status_code": exc.status_code, "path": request.url.path},
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions (404 routes, 405 methods, explicit raises)."""
    logger.warning(
        f"HTTPException: {exc.detail}",
        extra={"status_code": exc.status_code, "path": request.url.path},
    )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=get_http_error_code(exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Field-level schema detail is deliberately not echoed back to the client.
    """
    fields = [".".join(str(loc) for loc in error["loc"] if loc != "body") for error in exc.errors()]
    logger.warning(f"Validation error on {request.url.path}", extra={"fields": fields})

    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        message="Invalid request data",
        error_code=ErrorCode.VALIDATION_FAILED,
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Translate storage errors into user-safe responses."""
    error = to_database_error(exc, operation=f"{request.method} {request.url.path}")
    return create_error_response(
        status_code=error.status_code,
        message=error.message,
        error_code=error.error_code,
        details=error.details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without exposing internal details."""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error",
        error_code=ErrorCode.INTERNAL_ERROR,
    )


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(PTSAError, ptsa_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("Exception handlers registered successfully")
