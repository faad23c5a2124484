"""Shared schemas for collection requests and paginated results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class SortDir(str, Enum):
    asc = "asc"
    desc = "desc"


class CollectionRelation(BaseModel):
    """A default relation membership check OR-ed into every collection query.

    Registered by the caller to pre-scope a collection, for example::

        # owner.id = 7 OR admins.id = 7
        CollectionRelation(relation="owner", field="id", value=7)
        CollectionRelation(relation="admins", field="id", value=7)
    """
    relation: str
    field: str
    value: Any


class CollectionRequest(BaseModel):
    """Structured collection parameters supplied by the caller.

    ``filters`` keys are either own columns (``status``), relation-qualified
    (``customer.name``) or range filters (``range.total`` with a
    ``"lower$upper"`` value). ``None`` for ``per_page``/``order_by``/
    ``order_direction`` means "use the configured default".
    """
    filters: dict[str, Any] = Field(default_factory=dict)
    search: str | None = None
    page: int = 1
    per_page: int | None = None
    order_by: str | None = None
    order_direction: str | None = None


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    items: list[T]
    total_count: int
    page: int
    page_size: int
    has_next: bool
    has_prev: bool
