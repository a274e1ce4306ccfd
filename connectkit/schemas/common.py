"""Shared schema building blocks."""

import re
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ItemT = TypeVar("ItemT")

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,128}$")
USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"
PHONE_PATTERN = r"^\+?[0-9\s\-().]{7,20}$"


def validate_password_strength(password: str) -> str:
    if not PASSWORD_PATTERN.match(password):
        raise ValueError(
            "Password must be 8-128 characters and contain at least one lowercase letter, "
            "one uppercase letter, one number and one special character (@$!%*?&)"
        )
    return password


class APIModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageResponse(APIModel):
    message: str


class PaginatedResponse(APIModel, Generic[ItemT]):
    """A page of items with pagination metadata."""

    items: list[ItemT]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_page(cls, page: Any, items: list[Any]) -> "PaginatedResponse":
        return cls(
            items=items,
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
            has_next=page.has_next,
            has_prev=page.has_prev,
        )
