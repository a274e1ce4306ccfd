"""Contact management service."""

import csv
import io
import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from connectkit.cache import CONTACT_KEY, SessionCache
from connectkit.config import Settings
from connectkit.errors import ConflictError, NotFoundError, ValidationError
from connectkit.models.contact import Contact
from connectkit.models.enums import ContactStatus
from connectkit.repositories.base import Page
from connectkit.repositories.contact import ContactRepository
from connectkit.schemas.contact import ContactCreate, ContactResponse, ContactUpdate, normalize_tags

logger = logging.getLogger(__name__)

EXPORT_FIELDS = [
    "id",
    "first_name",
    "last_name",
    "email",
    "phone",
    "company",
    "job_title",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "country",
    "notes",
    "tags",
    "status",
    "is_favorite",
    "created_at",
    "updated_at",
]
MERGE_FILL_FIELDS = ("email", "phone", "company", "job_title")
REQUIRED_FIELDS = {"first_name", "last_name", "status", "is_favorite", "tags", "extra_metadata"}


class ContactService:
    """Owner-scoped contact operations.

    A contact that exists but belongs to someone else is reported as not
    found, so callers cannot probe for other users' records.
    """

    def __init__(self, db: Session, cache: SessionCache, settings: Settings):
        self.db = db
        self.cache = cache
        self.settings = settings
        self.contacts = ContactRepository(db)

    def _load(self, contact_id: uuid.UUID, user_id: uuid.UUID, include_deleted: bool = False) -> Contact:
        contact = self.contacts.get_owned(contact_id, user_id, include_deleted=include_deleted)
        if contact is None:
            raise NotFoundError("Contact not found")
        return contact

    def _invalidate(self, *contact_ids: uuid.UUID) -> None:
        self.cache.invalidate(*(CONTACT_KEY.format(contact_id=contact_id) for contact_id in contact_ids))

    def _ensure_email_free(
        self, user_id: uuid.UUID, email: str | None, exclude_id: uuid.UUID | None = None
    ) -> None:
        if email and self.contacts.get_by_email(user_id, email, exclude_id=exclude_id) is not None:
            raise ConflictError("A contact with this email already exists", {"field": "email"})

    @staticmethod
    def _changes(data: ContactUpdate) -> dict[str, Any]:
        """Fields that were sent, minus explicit nulls on required columns."""
        changes = data.model_dump(exclude_unset=True)
        return {key: value for key, value in changes.items() if value is not None or key not in REQUIRED_FIELDS}

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Commit the enclosed writes, mapping a lost race on the per-owner email index to a conflict."""
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Contact write rejected by constraint: {e.orig}")
            raise ConflictError("A contact with this email already exists", {"field": "email"}) from e

    def _saved(self, contact: Contact) -> Contact:
        self.db.refresh(contact)
        self._invalidate(contact.id)
        return contact

    def create(self, user_id: uuid.UUID, data: ContactCreate) -> Contact:
        self._ensure_email_free(user_id, data.email)
        with self._transaction():
            contact = self.contacts.create(user_id, data.model_dump())
        self.db.refresh(contact)
        logger.info(f"Contact {contact.id} created for {user_id}")
        return contact

    def get(self, contact_id: uuid.UUID, user_id: uuid.UUID) -> ContactResponse:
        """Read one contact through the cache."""
        cache_key = CONTACT_KEY.format(contact_id=contact_id)
        cached = self.cache.read_through(cache_key)
        if cached is not None and cached.get("user_id") == str(user_id):
            return ContactResponse.model_validate(cached)

        response = ContactResponse.model_validate(self._load(contact_id, user_id))
        self.cache.write_through(cache_key, response.model_dump(mode="json"), self.settings.cache_ttl_seconds)
        return response

    def list_contacts(
        self,
        user_id: uuid.UUID,
        filters: dict[str, Any] | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort: str | None = None,
        order: str = "desc",
    ) -> Page[Contact]:
        return self.contacts.search(user_id, filters, search, page, limit, sort, order)

    def search(self, user_id: uuid.UUID, query: str, page: int = 1, limit: int = 20) -> Page[Contact]:
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        return self.contacts.search(user_id, search=query, page=page, limit=limit, sort="last_name", order="asc")

    def favorites(self, user_id: uuid.UUID, page: int = 1, limit: int = 20) -> Page[Contact]:
        return self.contacts.search(user_id, {"is_favorite": True}, page=page, limit=limit)

    def update(self, contact_id: uuid.UUID, user_id: uuid.UUID, data: ContactUpdate) -> Contact:
        contact = self._load(contact_id, user_id)
        changes = self._changes(data)
        if changes.get("email"):
            self._ensure_email_free(user_id, changes["email"], exclude_id=contact.id)

        with self._transaction():
            self.contacts.update(contact, changes)
        return self._saved(contact)

    def delete(self, contact_id: uuid.UUID, user_id: uuid.UUID) -> None:
        contact = self._load(contact_id, user_id)
        with self._transaction():
            self.contacts.soft_delete(contact)
        self._invalidate(contact.id)
        logger.info(f"Contact {contact.id} deleted by {user_id}")

    def _set_status(self, contact_id: uuid.UUID, user_id: uuid.UUID, status: ContactStatus) -> Contact:
        contact = self._load(contact_id, user_id)
        with self._transaction():
            contact.status = status
        return self._saved(contact)

    def archive(self, contact_id: uuid.UUID, user_id: uuid.UUID) -> Contact:
        return self._set_status(contact_id, user_id, ContactStatus.ARCHIVED)

    def restore(self, contact_id: uuid.UUID, user_id: uuid.UUID) -> Contact:
        """Bring back an archived or deleted contact as active."""
        contact = self._load(contact_id, user_id, include_deleted=True)
        if contact.is_deleted:
            self._ensure_email_free(user_id, contact.email, exclude_id=contact.id)
        with self._transaction():
            if contact.is_deleted:
                self.contacts.restore(contact)
            contact.status = ContactStatus.ACTIVE
        return self._saved(contact)

    def toggle_favorite(self, contact_id: uuid.UUID, user_id: uuid.UUID) -> Contact:
        contact = self._load(contact_id, user_id)
        with self._transaction():
            contact.is_favorite = not contact.is_favorite
        return self._saved(contact)

    def add_tags(self, contact_id: uuid.UUID, user_id: uuid.UUID, tags: list[str]) -> Contact:
        contact = self._load(contact_id, user_id)
        try:
            merged = normalize_tags(list(contact.tags or []) + tags)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        with self._transaction():
            contact.tags = merged
        return self._saved(contact)

    def remove_tags(self, contact_id: uuid.UUID, user_id: uuid.UUID, tags: list[str]) -> Contact:
        contact = self._load(contact_id, user_id)
        with self._transaction():
            contact.tags = [tag for tag in contact.tags or [] if tag not in tags]
        return self._saved(contact)

    def stats(self, user_id: uuid.UUID) -> dict[str, Any]:
        return self.contacts.stats(user_id)

    def companies(self, user_id: uuid.UUID) -> list[str]:
        return self.contacts.companies(user_id)

    def tags(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        return [{"tag": tag, "count": count} for tag, count in self.contacts.tag_counts(user_id)]

    def bulk_update(self, user_id: uuid.UUID, contact_ids: list[uuid.UUID], data: ContactUpdate) -> int:
        """Apply the same change to several contacts; unknown ids are ignored."""
        changes = self._changes(data)
        if not changes:
            raise ValidationError("No updates provided")
        if "email" in changes:
            raise ValidationError("Email cannot be bulk updated")

        contacts = self.contacts.get_many_owned(contact_ids, user_id)
        with self._transaction():
            for contact in contacts:
                self.contacts.update(contact, changes)
        self._invalidate(*(contact.id for contact in contacts))
        logger.info(f"Bulk updated {len(contacts)} contacts for {user_id}")
        return len(contacts)

    def export(self, user_id: uuid.UUID, fmt: str = "json", fields: list[str] | None = None) -> str:
        """Serialize every live contact of the user as JSON or CSV."""
        fields = fields or EXPORT_FIELDS
        unknown = [field for field in fields if field not in EXPORT_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown export fields: {', '.join(unknown)}", {"allowed": EXPORT_FIELDS})

        rows = []
        for contact in self.contacts.list_all(user_id):
            record = ContactResponse.model_validate(contact).model_dump(mode="json")
            rows.append({field: record[field] for field in fields})

        if fmt == "json":
            return json.dumps(rows, indent=2)
        if fmt == "csv":
            output = io.StringIO()
            writer = csv.DictWriter(output, fieldnames=fields, extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                if "tags" in row:
                    row["tags"] = ";".join(row["tags"])
                writer.writerow(row)
            return output.getvalue()
        raise ValidationError(f"Unsupported export format: {fmt}")

    def find_duplicates(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        return self.contacts.duplicate_groups(user_id)

    def merge(self, user_id: uuid.UUID, primary_id: uuid.UUID, duplicate_ids: list[uuid.UUID]) -> Contact:
        """Fold duplicates into the primary contact and delete them."""
        if primary_id in duplicate_ids:
            raise ValidationError("Primary contact cannot also be a duplicate")
        primary = self._load(primary_id, user_id)
        duplicates = self.contacts.get_many_owned(duplicate_ids, user_id)
        if len(duplicates) != len(set(duplicate_ids)):
            raise NotFoundError("One or more duplicate contacts not found")

        tags = list(primary.tags or [])
        for duplicate in duplicates:
            tags.extend(duplicate.tags or [])
        try:
            tags = normalize_tags(tags)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        with self._transaction():
            for duplicate in duplicates:
                for field in MERGE_FILL_FIELDS:
                    value = getattr(duplicate, field)
                    if getattr(primary, field) or not value:
                        continue
                    if field == "email":
                        # Release the address first; it is unique per owner
                        duplicate.email = None
                        self.db.flush()
                    setattr(primary, field, value)
                self.contacts.soft_delete(duplicate)
            primary.tags = tags

        self._invalidate(*(duplicate.id for duplicate in duplicates))
        self._saved(primary)
        logger.info(f"Merged {len(duplicates)} contacts into {primary.id} for {user_id}")
        return primary

    def import_contacts(
        self, user_id: uuid.UUID, rows: list[dict[str, Any]]
    ) -> tuple[list[Contact], list[dict[str, Any]]]:
        """Create contacts one by one, collecting per-row failures."""
        successful: list[Contact] = []
        failed: list[dict[str, Any]] = []
        for index, row in enumerate(rows):
            try:
                data = ContactCreate.model_validate(row)
                successful.append(self.create(user_id, data))
            except SchemaValidationError as e:
                failed.append({"index": index, "error": "; ".join(err["msg"] for err in e.errors())})
            except ConflictError as e:
                failed.append({"index": index, "error": e.message})
        logger.info(f"Imported {len(successful)} contacts for {user_id}, {len(failed)} failed")
        return successful, failed
