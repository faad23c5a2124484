from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect


@dataclass(frozen=True)
class EntityDescriptor:
    """Per-entity metadata the collection engine needs.

    ``relation_aliases`` names the join alias used when sorting by a related
    column; relations not listed are aliased by their table name.
    """
    model: Any
    searchable_fields: tuple[str, ...] = ()
    relation_aliases: dict[str, str] = field(default_factory=dict)
    default_order_by: str | None = None
    default_order_direction: str | None = None

    @property
    def table_name(self) -> str:
        return inspect(self.model).local_table.name
