"""
Custom Exception Classes for the PTSA service

This module defines custom exceptions for consistent error handling and
error responses across the application. Every exception carries a
user-safe message; internal details never reach the client.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned alongside error messages."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_GONE = "RESOURCE_GONE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DUPLICATE_RESOURCE = "VALIDATION_DUPLICATE_RESOURCE"
    PAYMENT_VALIDATION_FAILED = "PAYMENT_VALIDATION_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    DATABASE_ERROR = "DATABASE_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PTSAError(Exception):
    """Base exception class for all application errors"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(PTSAError):
    """Raised when no valid identity accompanies the request"""

    error_code = ErrorCode.AUTH_REQUIRED

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class AuthorizationError(PTSAError):
    """Raised when the identity is known but lacks the required role"""

    error_code = ErrorCode.AUTH_PERMISSION_DENIED

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, details=details)


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(PTSAError):
    """Raised when a requested resource does not exist"""

    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, message: str = "Not found", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class GoneError(PTSAError):
    """Raised when a resource existed but is no longer available"""

    error_code = ErrorCode.RESOURCE_GONE

    def __init__(self, message: str):
        super().__init__(message=message, status_code=status.HTTP_410_GONE)


class DuplicateResourceError(PTSAError):
    """Raised when attempting to create a duplicate resource"""

    error_code = ErrorCode.VALIDATION_DUPLICATE_RESOURCE

    def __init__(self, message: str):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT)


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(PTSAError):
    """Raised when input validation fails"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class PaymentValidationError(ValidationError):
    """Raised when payment parameters violate business rules"""

    error_code = ErrorCode.PAYMENT_VALIDATION_FAILED

    def __init__(self, message: str):
        super().__init__(message=message)


# ============================================================================
# Database & Service Exceptions
# ============================================================================


class DatabaseError(PTSAError):
    """Raised when a database operation fails; message is already user-safe"""

    error_code = ErrorCode.DATABASE_ERROR

    def __init__(
        self,
        message: str = "An unexpected database error occurred. Please try again.",
        category: str | None = None,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ):
        details = {"category": category} if category else {}
        super().__init__(message=message, status_code=status_code, details=details)


class ServiceError(PTSAError):
    """Raised when a downstream service call fails"""

    error_code = ErrorCode.SERVICE_UNAVAILABLE

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(message=message, status_code=status_code)


# ============================================================================
# Rate Limiting
# ============================================================================


class RateLimitExceededError(PTSAError):
    """Raised when rate limit is exceeded"""

    error_code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: int = 60,
        headers: dict[str, str] | None = None,
    ):
        self.retry_after = retry_after
        merged_headers = {"Retry-After": str(retry_after)}
        merged_headers.update(headers or {})
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retryAfter": retry_after},
            headers=merged_headers,
        )
