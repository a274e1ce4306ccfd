"""Contact model."""

import uuid

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import relationship

from connectkit.database import Base
from connectkit.models.enums import ContactStatus
from connectkit.models.mixins import SoftDeleteMixin, TimestampMixin


class Contact(Base, TimestampMixin, SoftDeleteMixin):
    """A contact owned by exactly one user."""

    __tablename__ = "contacts"
    __table_args__ = (
        # Email is unique within one owner's live contacts, not globally
        Index(
            "uq_contacts_user_email",
            "user_id",
            "email",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)  # stored lower-cased
    phone = Column(String(20), nullable=True)
    company = Column(String(200), nullable=True, index=True)
    job_title = Column(String(200), nullable=True)
    address_line1 = Column(String(500), nullable=True)
    address_line2 = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    status = Column(
        Enum(ContactStatus, name="contact_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ContactStatus.ACTIVE,
        index=True,
    )
    is_favorite = Column(Boolean, nullable=False, default=False, index=True)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # Relationships
    owner = relationship("User", back_populates="contacts")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
