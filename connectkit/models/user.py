"""User model."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Uuid
from sqlalchemy.orm import relationship

from connectkit.database import Base
from connectkit.models.enums import UserRole
from connectkit.models.mixins import SoftDeleteMixin, TimestampMixin, ensure_utc


class User(Base, TimestampMixin, SoftDeleteMixin):
    """Account record, including the credential and lockout state."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)  # stored lower-cased
    username = Column(String(50), unique=True, nullable=False, index=True)  # stored lower-cased
    password_hash = Column(String(255), nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.USER,
        index=True,
    )
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_token = Column(String(255), nullable=True, index=True)
    reset_password_token = Column(String(255), nullable=True, index=True)
    reset_password_expires = Column(DateTime(timezone=True), nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    contacts = relationship("Contact", back_populates="owner", lazy="dynamic")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def is_locked(self, now: datetime | None = None) -> bool:
        """Check if the lockout window is still open."""
        locked_until = ensure_utc(self.locked_until)
        return locked_until is not None and locked_until > (now or datetime.now(UTC))
