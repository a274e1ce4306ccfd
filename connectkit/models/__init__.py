"""SQLAlchemy models."""

from connectkit.models.contact import Contact
from connectkit.models.enums import ContactStatus, UserRole
from connectkit.models.user import User

__all__ = [
    "User",
    "UserRole",
    "Contact",
    "ContactStatus",
]
