"""Constants package for the PTSA service."""

from .audit import AuditAction
from .privacy import ConsentType, JobStatus, VerificationMethod, VerificationStatus
from .roles import DEFAULT_ROLE, MANAGER_ROLES, ROLE_HIERARCHY, RoleName, is_manager, is_valid_role

__all__ = [
    "AuditAction",
    "ConsentType",
    "JobStatus",
    "VerificationMethod",
    "VerificationStatus",
    # Role constants
    "RoleName",
    "DEFAULT_ROLE",
    "MANAGER_ROLES",
    "ROLE_HIERARCHY",
    "is_manager",
    "is_valid_role",
]
