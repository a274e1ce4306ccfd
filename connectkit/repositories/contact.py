"""Contact repository."""

import json
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Query

from connectkit.models.contact import Contact
from connectkit.models.enums import ContactStatus
from connectkit.repositories.base import BaseRepository, Page, apply_dict_updates


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally (escape character ``\\``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactRepository(BaseRepository[Contact]):
    """Contacts, always scoped to the owning user."""

    model = Contact
    sortable_columns = frozenset(
        {
            "created_at",
            "updated_at",
            "first_name",
            "last_name",
            "email",
            "company",
            "job_title",
            "city",
            "country",
            "status",
            "is_favorite",
        }
    )
    protected_fields = BaseRepository.protected_fields | {"user_id"}

    def for_user(self, user_id: Any, include_deleted: bool = False) -> Query:
        return self.query(include_deleted).filter(Contact.user_id == user_id)

    def create(self, user_id: Any, create_data: dict[str, Any]) -> Contact:
        contact = Contact(user_id=user_id)
        apply_dict_updates(contact, create_data, set(self.protected_fields))
        return self.add(contact)

    def get_owned(self, contact_id: Any, user_id: Any, include_deleted: bool = False) -> Contact | None:
        return self.for_user(user_id, include_deleted).filter(Contact.id == contact_id).first()

    def get_many_owned(self, contact_ids: list[Any], user_id: Any) -> list[Contact]:
        if not contact_ids:
            return []
        return self.for_user(user_id).filter(Contact.id.in_(contact_ids)).all()

    def get_by_email(self, user_id: Any, email: str, exclude_id: Any = None) -> Contact | None:
        query = self.for_user(user_id).filter(Contact.email == email.lower())
        if exclude_id is not None:
            query = query.filter(Contact.id != exclude_id)
        return query.first()

    def filtered(self, user_id: Any, filters: dict[str, Any] | None = None, search: str | None = None) -> Query:
        """Build the owner-scoped query for list, search and export."""
        query = self.for_user(user_id)
        filters = filters or {}

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Contact.first_name.ilike(pattern),
                    Contact.last_name.ilike(pattern),
                    Contact.email.ilike(pattern),
                    Contact.company.ilike(pattern),
                    Contact.job_title.ilike(pattern),
                    Contact.notes.ilike(pattern),
                )
            )

        if filters.get("status") is not None:
            query = query.filter(Contact.status == filters["status"])
        if filters.get("is_favorite") is not None:
            query = query.filter(Contact.is_favorite.is_(filters["is_favorite"]))
        if filters.get("company"):
            query = query.filter(Contact.company.ilike(f"%{filters['company']}%"))
        for column in ("city", "state", "country"):
            if filters.get(column):
                query = query.filter(getattr(Contact, column).ilike(filters[column]))
        if filters.get("has_email") is not None:
            query = query.filter(
                Contact.email.is_not(None) if filters["has_email"] else Contact.email.is_(None)
            )
        if filters.get("has_phone") is not None:
            query = query.filter(
                Contact.phone.is_not(None) if filters["has_phone"] else Contact.phone.is_(None)
            )
        if filters.get("tags"):
            # Tags are a JSON array; match any of the requested tags on its serialized text
            tags_text = cast(Contact.tags, String)
            query = query.filter(
                or_(*(tags_text.like(f"%{escape_like(json.dumps(tag))}%", escape="\\") for tag in filters["tags"]))
            )
        return query

    def search(
        self,
        user_id: Any,
        filters: dict[str, Any] | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort: str | None = None,
        order: str = "desc",
    ) -> Page[Contact]:
        return self.paginate(self.filtered(user_id, filters, search), page, limit, sort, order)

    def list_all(self, user_id: Any, filters: dict[str, Any] | None = None, search: str | None = None) -> list[Contact]:
        return self.order_by(self.filtered(user_id, filters, search), "last_name", "asc").all()

    def stats(self, user_id: Any) -> dict[str, Any]:
        now = datetime.now(UTC)
        query = self.for_user(user_id)
        by_status = dict(
            query.with_entities(Contact.status, func.count(Contact.id)).group_by(Contact.status).all()
        )
        top_companies = (
            query.filter(Contact.company.is_not(None))
            .with_entities(Contact.company, func.count(Contact.id).label("count"))
            .group_by(Contact.company)
            .order_by(func.count(Contact.id).desc(), Contact.company.asc())
            .limit(10)
            .all()
        )
        return {
            "total": query.count(),
            "by_status": {status.value: by_status.get(status, 0) for status in ContactStatus},
            "favorites": query.filter(Contact.is_favorite.is_(True)).count(),
            "with_email": query.filter(Contact.email.is_not(None)).count(),
            "with_phone": query.filter(Contact.phone.is_not(None)).count(),
            "recently_added": query.filter(Contact.created_at >= now - timedelta(days=30)).count(),
            "top_companies": [{"company": company, "count": count} for company, count in top_companies],
            "top_tags": [{"tag": tag, "count": count} for tag, count in self.tag_counts(user_id)[:10]],
        }

    def companies(self, user_id: Any) -> list[str]:
        rows = (
            self.for_user(user_id)
            .filter(Contact.company.is_not(None), Contact.company != "")
            .with_entities(Contact.company)
            .distinct()
            .order_by(Contact.company.asc())
            .all()
        )
        return [company for (company,) in rows]

    def tag_counts(self, user_id: Any) -> list[tuple[str, int]]:
        counter: Counter[str] = Counter()
        for (tags,) in self.for_user(user_id).with_entities(Contact.tags).all():
            counter.update(tags or [])
        return sorted(counter.items(), key=lambda item: (-item[1], item[0]))

    def duplicate_groups(self, user_id: Any) -> list[dict[str, Any]]:
        """Group live contacts that share an email address or a phone number."""
        groups = []
        for field in ("email", "phone"):
            column = getattr(Contact, field)
            values = (
                self.for_user(user_id)
                .filter(column.is_not(None), column != "")
                .with_entities(column)
                .group_by(column)
                .having(func.count(Contact.id) > 1)
                .order_by(column.asc())
                .all()
            )
            for (value,) in values:
                contacts = (
                    self.for_user(user_id)
                    .filter(column == value)
                    .order_by(Contact.created_at.asc(), Contact.id.asc())
                    .all()
                )
                groups.append({"field": field, "value": value, "contacts": contacts})
        return groups
