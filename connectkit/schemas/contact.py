"""Contact schemas."""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, EmailStr, Field, field_validator

from connectkit.models.enums import ContactStatus
from connectkit.schemas.common import PHONE_PATTERN, APIModel

MAX_TAGS = 20
MAX_TAG_LENGTH = 50
MAX_METADATA_BYTES = 10 * 1024
MAX_BULK_ITEMS = 100

METADATA_ALIASES = AliasChoices("extra_metadata", "metadata")


def normalize_tags(tags: list[str] | None) -> list[str] | None:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    if tags is None:
        return None
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        if tag not in seen:
            seen.append(tag)
    if len(seen) > MAX_TAGS:
        raise ValueError(f"A contact can have at most {MAX_TAGS} tags")
    return seen


def check_metadata_size(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    if metadata is not None and len(json.dumps(metadata, default=str)) > MAX_METADATA_BYTES:
        raise ValueError("Metadata must be at most 10KB when serialized")
    return metadata


class _ContactFields(APIModel):
    email: EmailStr | None = Field(None, max_length=255)
    phone: str | None = Field(None, pattern=PHONE_PATTERN)
    company: str | None = Field(None, max_length=200)
    job_title: str | None = Field(None, max_length=200)
    address_line1: str | None = Field(None, max_length=500)
    address_line2: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=20)
    country: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)
    status: ContactStatus | None = None
    is_favorite: bool | None = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return value.lower() if value else value

    @field_validator("tags", check_fields=False)
    @classmethod
    def check_tags(cls, value: list[str] | None) -> list[str] | None:
        return normalize_tags(value)

    @field_validator("extra_metadata", check_fields=False)
    @classmethod
    def check_metadata(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return check_metadata_size(value)


class ContactCreate(_ContactFields):
    """Contact creation request."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    tags: list[str] = Field(default_factory=list)
    status: ContactStatus = ContactStatus.ACTIVE
    is_favorite: bool = False
    extra_metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=METADATA_ALIASES, serialization_alias="metadata"
    )


class ContactUpdate(_ContactFields):
    """Partial contact update; only fields that were sent are applied."""

    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    tags: list[str] | None = None
    extra_metadata: dict[str, Any] | None = Field(
        None, validation_alias=METADATA_ALIASES, serialization_alias="metadata"
    )


class ContactResponse(APIModel):
    id: UUID
    user_id: UUID
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    job_title: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: ContactStatus
    is_favorite: bool
    extra_metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=METADATA_ALIASES, serialization_alias="metadata"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TagsRequest(APIModel):
    tags: list[str] = Field(..., min_length=1)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)


class BulkUpdateRequest(APIModel):
    contact_ids: list[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)
    updates: ContactUpdate


class BulkUpdateResponse(APIModel):
    updated: int


class MergeRequest(APIModel):
    primary_contact_id: UUID
    duplicate_contact_ids: list[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class ImportRequest(APIModel):
    contacts: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)


class ImportFailure(APIModel):
    index: int
    error: str


class ImportResponse(APIModel):
    successful: list[ContactResponse]
    failed: list[ImportFailure]


class DuplicateGroup(APIModel):
    field: str
    value: str
    contacts: list[ContactResponse]


class ContactStats(APIModel):
    total: int
    by_status: dict[str, int]
    favorites: int
    with_email: int
    with_phone: int
    recently_added: int
    top_companies: list[dict[str, Any]]
    top_tags: list[dict[str, Any]]
