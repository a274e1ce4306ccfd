"""Enums for model fields."""

from enum import Enum


class UserRole(str, Enum):
    """Account roles, most privileged first."""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"

    def can_manage_users(self) -> bool:
        """Check if this role may list and inspect other accounts."""
        return self in (UserRole.ADMIN, UserRole.MANAGER)


class ContactStatus(str, Enum):
    """Lifecycle status of a contact."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"
