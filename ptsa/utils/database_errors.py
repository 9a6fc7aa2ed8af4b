"""
Database error taxonomy.

Translates low-level storage error codes (PostgreSQL SQLSTATE values and the
PostgREST codes used by the hosted database API) into categories and
user-safe messages through a single lookup table.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import status
from sqlalchemy.exc import DBAPIError, NoResultFound, SQLAlchemyError

from ptsa.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class DatabaseErrorCategory(str, Enum):
    CONNECTION = "connection"
    VALIDATION = "validation"
    CONSTRAINT = "constraint"
    PERMISSION = "permission"
    RESOURCE = "resource"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorTranslation:
    category: DatabaseErrorCategory
    message: str
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


DEFAULT_ERROR_MESSAGE = "An unexpected database error occurred. Please try again."

_CONNECTION = ErrorTranslation(
    DatabaseErrorCategory.CONNECTION,
    "Unable to connect to the database. Please try again later.",
    status.HTTP_503_SERVICE_UNAVAILABLE,
)
_TOO_LONG = ErrorTranslation(
    DatabaseErrorCategory.VALIDATION,
    "The provided data is too long.",
    status.HTTP_400_BAD_REQUEST,
)
_REQUIRED = ErrorTranslation(
    DatabaseErrorCategory.VALIDATION,
    "Required information is missing.",
    status.HTTP_400_BAD_REQUEST,
)
_PERMISSION = ErrorTranslation(
    DatabaseErrorCategory.PERMISSION,
    "You do not have permission to perform this action.",
    status.HTTP_403_FORBIDDEN,
)
_RESOURCES = ErrorTranslation(
    DatabaseErrorCategory.RESOURCE,
    "The database is temporarily unavailable. Please try again later.",
    status.HTTP_503_SERVICE_UNAVAILABLE,
)

ERROR_TRANSLATIONS: dict[str, ErrorTranslation] = {
    # Connection
    "08000": _CONNECTION,
    "08006": _CONNECTION,
    # Data validation
    "22001": _TOO_LONG,
    "22026": _TOO_LONG,
    "22004": _REQUIRED,
    "23502": _REQUIRED,
    "22007": ErrorTranslation(
        DatabaseErrorCategory.VALIDATION, "Invalid date or time format.", status.HTTP_400_BAD_REQUEST
    ),
    # Constraints
    "23503": ErrorTranslation(
        DatabaseErrorCategory.CONSTRAINT, "This operation references data that does not exist.",
        status.HTTP_400_BAD_REQUEST,
    ),
    "23505": ErrorTranslation(
        DatabaseErrorCategory.CONSTRAINT, "This record already exists.", status.HTTP_409_CONFLICT
    ),
    "23514": ErrorTranslation(
        DatabaseErrorCategory.CONSTRAINT, "The provided data does not meet requirements.",
        status.HTTP_400_BAD_REQUEST,
    ),
    # Permissions
    "42501": _PERMISSION,
    "PGRST301": _PERMISSION,
    # Resources
    "53000": _RESOURCES,
    "53100": _RESOURCES,
    "53200": _RESOURCES,
    "53300": ErrorTranslation(
        DatabaseErrorCategory.RESOURCE, "Too many connections. Please try again later.",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    ),
    "57014": ErrorTranslation(
        DatabaseErrorCategory.RESOURCE, "The operation was canceled. Please try again.",
    ),
    # Query results
    "PGRST116": ErrorTranslation(
        DatabaseErrorCategory.NOT_FOUND, "The requested record was not found.", status.HTTP_404_NOT_FOUND
    ),
    "PGRST202": ErrorTranslation(
        DatabaseErrorCategory.VALIDATION, "Multiple records found when one was expected.",
    ),
}

_UNKNOWN = ErrorTranslation(DatabaseErrorCategory.UNKNOWN, DEFAULT_ERROR_MESSAGE)


def get_error_code(error: BaseException | str | None) -> str | None:
    """Pull the SQLSTATE (or PostgREST code) out of an exception or return a code unchanged."""
    if error is None or isinstance(error, str):
        return error
    if isinstance(error, NoResultFound):
        return "PGRST116"
    orig = error.orig if isinstance(error, DBAPIError) else error
    for attr in ("sqlstate", "pgcode", "code"):
        code = getattr(orig, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def translate(error: BaseException | str | None) -> ErrorTranslation:
    code = get_error_code(error)
    if code is None:
        return _UNKNOWN
    return ERROR_TRANSLATIONS.get(code, _UNKNOWN)


def get_safe_error_message(error: BaseException | str | None) -> str:
    return translate(error).message


def get_safe_error_info(error: BaseException | str | None) -> dict:
    translation = translate(error)
    return {
        "code": get_error_code(error),
        "category": translation.category.value,
        "message": translation.message,
    }


def is_not_found_error(error: BaseException | str | None) -> bool:
    return translate(error).category is DatabaseErrorCategory.NOT_FOUND


def is_permission_error(error: BaseException | str | None) -> bool:
    return translate(error).category is DatabaseErrorCategory.PERMISSION


def is_constraint_error(error: BaseException | str | None) -> bool:
    code = get_error_code(error)
    return bool(code and code.startswith("23"))


def to_database_error(error: SQLAlchemyError, operation: str | None = None) -> DatabaseError:
    """Log the raw error and return a ``DatabaseError`` carrying only the safe message."""
    translation = translate(error)
    logger.error(
        f"Database error during {operation or 'operation'}: {type(error).__name__} "
        f"(code={get_error_code(error)}, category={translation.category.value})"
    )
    return DatabaseError(
        message=translation.message,
        category=translation.category.value,
        status_code=translation.status_code,
    )
