"""Repository service: collection queries and simple lookups for one entity.

This module handles:
  - paginated collections built from loosely-typed filter/search/sort params
  - default relation memberships OR-ed into every collection query
  - equality lookups (``find_by`` / ``find_one_by`` and their 404 variants)
  - single-attribute updates (``save_resource``)
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import HTTPException, status
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from repoquery.core.config import settings
from repoquery.db import query as query_engine
from repoquery.db.introspection import columns_of
from repoquery.schemas.query import CollectionRelation, CollectionRequest, Page
from repoquery.services.entities import EntityDescriptor

logger = logging.getLogger(__name__)


class CollectionRepository:
    def __init__(self, session: AsyncSession, descriptor: EntityDescriptor) -> None:
        self.session = session
        self.descriptor = descriptor
        self.collection_relations: list[CollectionRelation] = []

    @property
    def model(self) -> Any:
        return self.descriptor.model

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def set_collection_relations(self, relations: Iterable[CollectionRelation | Mapping[str, Any]]) -> "CollectionRepository":
        self.collection_relations = [_as_relation(relation) for relation in relations]
        return self

    def add_collection_relation(self, relation: CollectionRelation | Mapping[str, Any]) -> "CollectionRepository":
        self.collection_relations.append(_as_relation(relation))
        return self

    async def get_collection(
        self,
        filters: Mapping[str, Any] | None = None,
        per_page: Any = None,
        order_by: str | None = None,
        order_direction: str | None = None,
        *,
        search: str | None = None,
        page: int = 1,
    ) -> Page:
        request = CollectionRequest(
            filters=dict(filters or {}),
            search=search,
            page=page,
            per_page=query_engine.resolve_per_page(per_page, settings.DEFAULT_PER_PAGE),
            order_by=order_by,
            order_direction=order_direction,
        )
        return await self.get_collection_for(request)

    async def get_collection_for(self, request: CollectionRequest) -> Page:
        """Build, execute and paginate the collection query for *request*."""
        own_columns = await columns_of(self.session, self.descriptor.table_name)
        logger.debug(
            "Collection query on %s: %d filter(s), search=%r",
            self.descriptor.table_name,
            len(request.filters),
            request.search,
        )
        spec = query_engine.build_query(
            self.model,
            request,
            own_columns,
            searchable_fields=self.descriptor.searchable_fields,
            relation_aliases=self.descriptor.relation_aliases,
            scopes=self.collection_relations,
            default_order_by=self.descriptor.default_order_by,
            default_order_direction=self.descriptor.default_order_direction,
        )
        return await query_engine.paginate(
            self.session,
            spec,
            page=request.page,
            per_page=request.per_page,
            default_per_page=settings.DEFAULT_PER_PAGE,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by(self, params: Mapping[str, Any]) -> list:
        statement = select(self.model)
        for attribute, value in params.items():
            statement = statement.where(getattr(self.model, attribute) == value)
        result = await self.session.exec(statement)
        return list(result.all())

    async def find_by_or_404(self, params: Mapping[str, Any]) -> list:
        items = await self.find_by(params)
        if not items:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Models not found")
        return items

    async def find_one_by(self, params: Mapping[str, Any]) -> Any | None:
        items = await self.find_by(params)
        return items[0] if items else None

    async def find_one_by_or_404(self, params: Mapping[str, Any]) -> Any:
        instance = await self.find_one_by(params)
        if instance is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
        return instance

    async def find_all(self) -> list:
        result = await self.session.exec(select(self.model))
        return list(result.all())

    async def save_resource(self, instance: Any, resource_name: str, attribute: str) -> Any:
        setattr(instance, attribute, resource_name)
        self.session.add(instance)
        await self.session.commit()
        await self.session.refresh(instance)
        return instance


def _as_relation(relation: CollectionRelation | Mapping[str, Any]) -> CollectionRelation:
    if isinstance(relation, CollectionRelation):
        return relation
    return CollectionRelation(**relation)
