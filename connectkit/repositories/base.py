"""Generic repository over soft-deletable models."""

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy import asc, desc, func
from sqlalchemy.orm import Query, Session

from connectkit.errors import ValidationError

ModelT = TypeVar("ModelT")

MAX_PAGE_SIZE = 100


@dataclass
class Page(Generic[ModelT]):
    """One page of results plus the totals needed to render pagination."""

    items: list[ModelT] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def apply_dict_updates(entity: object, update_data: dict[str, Any], excluded_attrs: set[str]) -> None:
    """Copy known attributes from ``update_data`` onto ``entity``, skipping excluded ones."""
    for key, value in update_data.items():
        if key in excluded_attrs:
            continue
        if hasattr(entity, key):
            setattr(entity, key, value)


class BaseRepository(Generic[ModelT]):
    """Shared lookups, pagination and soft delete for one model."""

    model: type
    sortable_columns: frozenset[str] = frozenset({"created_at", "updated_at"})
    default_sort = "created_at"
    protected_fields: frozenset[str] = frozenset({"id", "created_at", "updated_at", "deleted_at"})

    def __init__(self, db: Session):
        self.db = db

    def query(self, include_deleted: bool = False) -> Query:
        query = self.db.query(self.model)
        if not include_deleted:
            query = query.filter(self.model.deleted_at.is_(None))
        return query

    def get_by_id(self, entity_id: Any, include_deleted: bool = False) -> ModelT | None:
        return self.query(include_deleted).filter(self.model.id == entity_id).first()

    def count(self, include_deleted: bool = False) -> int:
        return self.query(include_deleted).count()

    def add(self, entity: ModelT) -> ModelT:
        self.db.add(entity)
        self.db.flush()
        return entity

    def update(self, entity: ModelT, update_data: dict[str, Any]) -> ModelT:
        apply_dict_updates(entity, update_data, set(self.protected_fields))
        self.db.flush()
        return entity

    def soft_delete(self, entity: ModelT) -> None:
        entity.soft_delete()
        self.db.flush()

    def restore(self, entity: ModelT) -> None:
        entity.restore()
        self.db.flush()

    def order_by(self, query: Query, sort: str | None, order: str = "desc") -> Query:
        sort = sort or self.default_sort
        if sort not in self.sortable_columns:
            raise ValidationError(
                f"Cannot sort by '{sort}'",
                {"allowed": sorted(self.sortable_columns)},
            )
        column = getattr(self.model, sort)
        direction = asc if order.lower() == "asc" else desc
        # Tie-break on id so pages are stable
        return query.order_by(direction(column), direction(self.model.id))

    def paginate(
        self,
        query: Query,
        page: int = 1,
        limit: int = 20,
        sort: str | None = None,
        order: str = "desc",
    ) -> Page[ModelT]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        total = query.order_by(None).with_entities(func.count(self.model.id)).scalar() or 0
        items = self.order_by(query, sort, order).offset((page - 1) * limit).limit(limit).all()
        return Page(items=items, total=total, page=page, limit=limit)
