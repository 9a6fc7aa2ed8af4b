"""
Tests for the database error taxonomy
"""

import pytest
from sqlalchemy.exc import IntegrityError, NoResultFound

from ptsa.utils.database_errors import (
    DEFAULT_ERROR_MESSAGE,
    DatabaseErrorCategory,
    get_error_code,
    get_safe_error_info,
    get_safe_error_message,
    is_constraint_error,
    is_not_found_error,
    is_permission_error,
    to_database_error,
    translate,
)


class PgError(Exception):
    def __init__(self, code: str):
        super().__init__(f"raw driver error {code}")
        self.sqlstate = code


def integrity_error(code: str) -> IntegrityError:
    return IntegrityError("INSERT INTO members ...", {}, PgError(code))


@pytest.mark.parametrize(
    "code,category",
    [
        ("08000", DatabaseErrorCategory.CONNECTION),
        ("08006", DatabaseErrorCategory.CONNECTION),
        ("22001", DatabaseErrorCategory.VALIDATION),
        ("23502", DatabaseErrorCategory.VALIDATION),
        ("23503", DatabaseErrorCategory.CONSTRAINT),
        ("23505", DatabaseErrorCategory.CONSTRAINT),
        ("42501", DatabaseErrorCategory.PERMISSION),
        ("PGRST301", DatabaseErrorCategory.PERMISSION),
        ("53100", DatabaseErrorCategory.RESOURCE),
        ("PGRST116", DatabaseErrorCategory.NOT_FOUND),
    ],
)
def test_codes_map_to_categories(code, category):
    assert translate(code).category is category


def test_unknown_code_gets_generic_message():
    assert get_safe_error_message("XX999") == DEFAULT_ERROR_MESSAGE
    assert get_safe_error_message(None) == DEFAULT_ERROR_MESSAGE


def test_code_is_read_from_driver_error():
    assert get_error_code(integrity_error("23505")) == "23505"


def test_no_result_found_is_not_found():
    assert is_not_found_error(NoResultFound()) is True


def test_predicates():
    assert is_permission_error("42501") is True
    assert is_constraint_error(integrity_error("23514")) is True
    assert is_constraint_error("42501") is False


def test_safe_info_never_contains_raw_text():
    info = get_safe_error_info(integrity_error("23505"))
    assert info == {"code": "23505", "category": "constraint", "message": "This record already exists."}


def test_to_database_error():
    error = to_database_error(integrity_error("22001"), operation="insert member")
    assert error.status_code == 400
    assert error.message == "The provided data is too long."
    assert error.details == {"category": "validation"}
