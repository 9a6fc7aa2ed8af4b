"""
Role Constants for the PTSA service

This module defines constants for user roles to avoid hardcoded values
throughout the codebase.
"""

from enum import Enum


class RoleName(str, Enum):
    """Enumeration of role names in the system."""

    MEMBER = "member"
    TEACHER = "teacher"
    COMMITTEE_CHAIR = "committee_chair"
    BOARD = "board"
    ADMIN = "admin"


# Default role for users synced from the auth provider
DEFAULT_ROLE = RoleName.MEMBER

# Roles allowed to manage events, announcements and bulk email
MANAGER_ROLES = frozenset({RoleName.ADMIN.value, RoleName.BOARD.value})

# Role hierarchy (higher number = more permissions)
ROLE_HIERARCHY = {
    RoleName.MEMBER: 1,
    RoleName.TEACHER: 2,
    RoleName.COMMITTEE_CHAIR: 3,
    RoleName.BOARD: 4,
    RoleName.ADMIN: 5,
}


def is_valid_role(role: str) -> bool:
    try:
        RoleName(role)
    except ValueError:
        return False
    return True


def is_manager(role: str | None) -> bool:
    """True for roles that may manage events, announcements and email."""
    return role in MANAGER_ROLES
