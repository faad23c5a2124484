"""Relationship metadata for relation-qualified filters, searches and sorts.

A :class:`RelationshipResolver` wraps one mapped model and answers three
questions about each of its relationships:

- does it exist (``names()``)?
- how is an existence predicate built (``exists(name, *clauses)``)?
- which columns join it to the base table (``join_keys_for(name)``)?

Join keys are read from the mapper, never inferred from the relation name. The
join alias is explicit, or defaults to the related table's name (prefixed with
the relation name for self-referential relations).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column, Table, and_, inspect

from repoquery.core.exceptions import UnknownRelationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelationBinding:
    name: str
    alias: str
    foreign_table: Table
    attribute: Any
    uselist: bool
    local_column: Column | None = None
    foreign_column: Column | None = None
    secondary: Table | None = None

    @property
    def joinable(self) -> bool:
        return self.secondary is None and self.local_column is not None

    def column(self, field: str) -> Column | None:
        """Return the related table's column named *field*, or ``None``."""
        return self.foreign_table.c.get(field)

    def exists(self, *clauses):
        """Build ``EXISTS (related rows matching every clause)``."""
        criterion = and_(*clauses) if clauses else None
        if self.uselist:
            return self.attribute.any(criterion)
        return self.attribute.has(criterion)


class RelationshipResolver:
    def __init__(self, model: Any, aliases: Mapping[str, str] | None = None) -> None:
        self.model = model
        self.mapper = inspect(model)
        self.aliases = dict(aliases or {})

    @property
    def model_name(self) -> str:
        return self.mapper.class_.__name__

    def names(self) -> set[str]:
        return set(self.mapper.relationships.keys())

    def default_alias(self, name: str, foreign_table: Table) -> str:
        """The related table's name, prefixed with *name* when it is the base table."""
        if foreign_table is self.mapper.local_table:
            return f"{name}_{foreign_table.name}"
        return foreign_table.name

    def binding(self, name: str) -> RelationBinding:
        if name not in self.mapper.relationships:
            raise UnknownRelationError(name, self.model_name)
        relationship = self.mapper.relationships[name]
        foreign_table = relationship.mapper.local_table
        alias = self.aliases.get(name) or self.default_alias(name, foreign_table)

        local_column = foreign_column = None
        if relationship.secondary is None and relationship.local_remote_pairs:
            # Composite keys join on their first pair only
            local_column, foreign_column = relationship.local_remote_pairs[0]

        return RelationBinding(
            name=name,
            alias=alias,
            foreign_table=foreign_table,
            attribute=getattr(self.model, name),
            uselist=bool(relationship.uselist),
            local_column=local_column,
            foreign_column=foreign_column,
            secondary=relationship.secondary,
        )

    def join_keys_for(self, name: str) -> RelationBinding:
        """Return the binding for *name*, ensuring it can be joined directly."""
        binding = self.binding(name)
        if not binding.joinable:
            raise UnknownRelationError(
                name,
                self.model_name,
                "goes through an association table and cannot be joined for sorting",
            )
        logger.debug(
            "Resolved join %s.%s -> %s.%s as %s",
            binding.local_column.table.name,
            binding.local_column.name,
            binding.foreign_table.name,
            binding.foreign_column.name,
            binding.alias,
        )
        return binding

    def exists(self, name: str, *clauses):
        return self.binding(name).exists(*clauses)
