"""User schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from connectkit.models.enums import UserRole
from connectkit.schemas.common import PHONE_PATTERN, USERNAME_PATTERN, APIModel


class UserResponse(APIModel):
    """Sanitized user: never carries the hash or any token."""

    id: UUID
    email: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: UserRole
    is_active: bool
    is_verified: bool
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfileUpdate(APIModel):
    """Fields a user may change on their own account."""

    username: str | None = Field(None, min_length=2, max_length=50, pattern=USERNAME_PATTERN)
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, pattern=PHONE_PATTERN)


class UserUpdate(ProfileUpdate):
    """Fields an administrator may change on any account."""

    email: EmailStr | None = Field(None, max_length=255)
    role: UserRole | None = None
    is_active: bool | None = None
    is_verified: bool | None = None


class RoleUpdate(APIModel):
    role: UserRole


class UserStats(APIModel):
    total: int
    active: int
    verified: int
    locked: int
    by_role: dict[str, int]
    recent_signups: int
