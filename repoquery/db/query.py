"""Query construction for filtered, searched, sorted and paginated collections.

Composable stages that fill in a :class:`~repoquery.db.query_spec.QuerySpec`:
- classify_keys: splits filter keys into own-column and relation-qualified keys
- normalize_filters / split_filters / relation_order: coerce "true"/"false", separate range
  filters and record which relation each request mentions first
- apply_filters: equality/BETWEEN clauses plus one EXISTS group per relation
- apply_scopes: default relation memberships OR-ed with the filters
- apply_search: OR-combined ILIKE over own and related fields
- apply_sort: ORDER BY an own column, or JOIN + ORDER BY a related column
- paginate: executes count + data queries and returns a Page
- build_query: runs every stage for a CollectionRequest
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import String, TypeDecorator, asc, cast, desc
from sqlalchemy.ext.asyncio import AsyncSession

from repoquery.core.config import settings
from repoquery.core.exceptions import (
    AmbiguousRelationError,
    InvalidFilterValueError,
    InvalidSortFieldError,
    MalformedRangeError,
    UnknownRelationError,
)
from repoquery.db.query_spec import QuerySpec
from repoquery.schemas.query import CollectionRelation, CollectionRequest, Page, SortDir

logger = logging.getLogger(__name__)

_TRUE_LITERALS = {"1", "true", "yes", "on"}
_FALSE_LITERALS = {"0", "false", "no", "off"}


def _split_field_key(key: str) -> tuple[str, str]:
    """Return ``(relation, attribute)``; segments past the second are ignored."""
    parts = key.split(".")
    return parts[0], parts[1]


def _escape_like(value: str) -> str:
    """Escape LIKE metacharacters so user input only matches literally."""
    return (
        value
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


# ---------------------------------------------------------------------------
# Schema classifier
# ---------------------------------------------------------------------------

def classify_keys(keys: Iterable[str], own_columns: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split *keys* into ``(own_keys, related_keys)``, preserving order.

    Dotted keys are always relation-qualified. Undotted keys that are not one
    of *own_columns* are dropped and logged.
    """
    columns = set(own_columns)
    own: list[str] = []
    related: list[str] = []
    dropped: list[str] = []

    for key in keys:
        if "." in key:
            related.append(key)
        elif key in columns:
            own.append(key)
        else:
            dropped.append(key)

    if dropped:
        logger.warning("Dropped %d unknown filter key(s): %s", len(dropped), ", ".join(dropped))

    return own, related


# ---------------------------------------------------------------------------
# Filter normalizer
# ---------------------------------------------------------------------------

def normalize_filters(filters: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce the literal strings ``"true"``/``"false"`` to booleans."""
    normalized = {}
    for key, value in filters.items():
        if value == "true":
            value = True
        elif value == "false":
            value = False
        normalized[key] = value
    return normalized


def split_filters(
    filters: Mapping[str, Any],
    prefix: str | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(equality_filters, range_filters)``.

    Keys carrying the range prefix move to the range group with the prefix
    stripped, so ``range.customer.total`` becomes ``customer.total``.
    """
    prefix = prefix or settings.RANGE_PREFIX
    equality: dict[str, Any] = {}
    ranges: dict[str, Any] = {}
    for key, value in filters.items():
        if key.startswith(prefix):
            ranges[key[len(prefix):]] = value
        else:
            equality[key] = value
    return equality, ranges


def relation_order(filters: Mapping[str, Any], prefix: str | None = None) -> list[str]:
    """Return relation names in the order their keys first appear in *filters*.

    Range keys count at their own position, so ``{"range.lines.quantity": ...,
    "customer.name": ...}`` yields ``["lines", "customer"]``.
    """
    prefix = prefix or settings.RANGE_PREFIX
    order: list[str] = []
    for key in filters:
        if key.startswith(prefix):
            key = key[len(prefix):]
        if "." in key:
            relation = _split_field_key(key)[0]
            if relation not in order:
                order.append(relation)
    return order


def parse_range(key: str, value: Any, delimiter: str | None = None) -> tuple[str, str]:
    """Split a ``"lower$upper"`` range value into its bounds.

    Bounds are returned as given; a reversed pair is not swapped.
    """
    delimiter = delimiter or settings.RANGE_DELIMITER
    if not isinstance(value, str) or value.count(delimiter) != 1:
        raise MalformedRangeError(key, value, delimiter)
    lower, upper = value.split(delimiter)
    if not lower.strip() or not upper.strip():
        raise MalformedRangeError(key, value, delimiter)
    return lower.strip(), upper.strip()


# ---------------------------------------------------------------------------
# Value binding
# ---------------------------------------------------------------------------

def _is_string_column(column) -> bool:
    # SQLModel's AutoString is a TypeDecorator over String
    column_type = column.type
    if isinstance(column_type, TypeDecorator):
        column_type = column_type.impl_instance
    return isinstance(column_type, String)


def _column_python_type(column) -> type | None:
    if _is_string_column(column):
        return str
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _coerce_filter_value(column, key: str, value: Any) -> Any:
    """Convert a raw filter value to the Python type *column* binds."""
    if value is None:
        return value

    python_type = _column_python_type(column)
    if python_type is str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return value if isinstance(value, str) else str(value)

    if python_type is None:
        return value

    if not isinstance(value, str):
        return value

    text = value.strip()
    try:
        if python_type is bool:
            lowered = text.lower()
            if lowered in _TRUE_LITERALS:
                return True
            if lowered in _FALSE_LITERALS:
                return False
            raise ValueError(text)
        if python_type is int:
            return int(text)
        if python_type is float:
            return float(text.replace(",", "."))
        if python_type is Decimal:
            return Decimal(text.replace(",", "."))
        if python_type is datetime:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        if python_type is date:
            if "T" in text or " " in text:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            return date.fromisoformat(text)
        if python_type is uuid.UUID:
            return uuid.UUID(text)
    except (ValueError, InvalidOperation) as exc:
        raise InvalidFilterValueError(key, value, python_type.__name__) from exc
    return value


def _own_column(spec: QuerySpec, key: str):
    column = spec.table.c.get(key)
    if column is None:
        logger.warning("Dropped filter %s: %s has no mapped column %s", key, spec.table.name, key)
    return column


def _equality_clause(column, key: str, value: Any):
    return column == _coerce_filter_value(column, key, value)


def _range_clause(column, key: str, value: Any):
    lower, upper = parse_range(key, value)
    return column.between(
        _coerce_filter_value(column, key, lower),
        _coerce_filter_value(column, key, upper),
    )


# ---------------------------------------------------------------------------
# Filter applier
# ---------------------------------------------------------------------------

def apply_filters(
    spec: QuerySpec,
    equality_own: Mapping[str, Any],
    range_own: Mapping[str, Any],
    equality_related: Mapping[str, Any],
    range_related: Mapping[str, Any],
    *,
    relation_order: Sequence[str] = (),
    strict_relations: bool | None = None,
) -> QuerySpec:
    """Add filter predicates to *spec*.

    Own-column filters become AND-ed ``=`` / ``BETWEEN`` clauses; keys with no
    mapped column are logged and dropped. Related filters are grouped by
    relation and wrapped in a single EXISTS. Only the first relation is
    applied: the first in *relation_order* (the request's key order), or
    equality keys before range keys when no order is given. Every relation is
    checked before the others are logged and dropped, or raise
    :class:`AmbiguousRelationError` when *strict_relations* is set.
    """
    if strict_relations is None:
        strict_relations = settings.STRICT_RELATIONS

    for key, value in equality_own.items():
        column = _own_column(spec, key)
        if column is not None:
            spec.equality.append(_equality_clause(column, key, value))

    for key, value in range_own.items():
        column = _own_column(spec, key)
        if column is not None:
            spec.ranges.append(_range_clause(column, key, value))

    by_relation: dict[str, list[tuple[str, Any, bool]]] = {
        relation: [] for relation in relation_order
    }
    for key, value in equality_related.items():
        by_relation.setdefault(_split_field_key(key)[0], []).append((key, value, False))
    for key, value in range_related.items():
        by_relation.setdefault(_split_field_key(key)[0], []).append((key, value, True))
    by_relation = {relation: entries for relation, entries in by_relation.items() if entries}

    if not by_relation:
        return spec

    known = spec.relations.names()
    for name in by_relation:
        if name not in known:
            raise UnknownRelationError(name, spec.relations.model_name)

    relation, *dropped = by_relation
    if dropped:
        if strict_relations:
            raise AmbiguousRelationError(relation, dropped)
        logger.warning(
            "Filters reference %d relations; applying %s, dropping %s",
            len(dropped) + 1,
            relation,
            ", ".join(dropped),
        )

    binding = spec.relations.binding(relation)
    clauses = []
    for key, value, is_range in by_relation[relation]:
        attribute = _split_field_key(key)[1]
        column = binding.column(attribute)
        if column is None:
            logger.warning("Dropped filter %s: %s has no column %s", key, binding.foreign_table.name, attribute)
            continue
        clauses.append(_range_clause(column, key, value) if is_range else _equality_clause(column, key, value))

    if clauses:
        spec.group_for(binding).clauses.extend(clauses)
    return spec


def apply_scopes(spec: QuerySpec, relations: Iterable[CollectionRelation]) -> QuerySpec:
    """Register default relation memberships, OR-ed with the filter predicate."""
    for scope in relations:
        binding = spec.relations.binding(scope.relation)
        column = binding.column(scope.field)
        if column is None:
            raise UnknownRelationError(
                scope.relation,
                spec.relations.model_name,
                f'has no column "{scope.field}"',
            )
        key = f"{scope.relation}.{scope.field}"
        spec.scopes.append(binding.exists(_equality_clause(column, key, scope.value)))
    return spec


# ---------------------------------------------------------------------------
# Search applier
# ---------------------------------------------------------------------------

def _search_clause(column, pattern: str):
    if not _is_string_column(column):
        column = cast(column, String)
    return column.ilike(pattern, escape="\\")


def apply_search(spec: QuerySpec, searchable_fields: Sequence[str], query: str | None) -> QuerySpec:
    """OR-combine a partial match of *query* across *searchable_fields*.

    The OR group is AND-ed with everything else in *spec*. No-op when the
    query is blank or no fields are searchable.
    """
    text = (query or "").strip()
    if not text or not searchable_fields:
        return spec

    pattern = f"%{_escape_like(text)}%"
    clauses = []
    for field_key in searchable_fields:
        if "." in field_key:
            relation, attribute = _split_field_key(field_key)
            binding = spec.relations.binding(relation)
            column = binding.column(attribute)
            if column is None:
                logger.warning("Skipped search field %s: unknown column", field_key)
                continue
            clauses.append(binding.exists(_search_clause(column, pattern)))
        else:
            column = spec.table.c.get(field_key)
            if column is None:
                logger.warning("Skipped search field %s: unknown column", field_key)
                continue
            clauses.append(_search_clause(column, pattern))

    spec.search.extend(clauses)
    return spec


# ---------------------------------------------------------------------------
# Sort resolver
# ---------------------------------------------------------------------------

def apply_sort(spec: QuerySpec, sort_field: str, direction: str | SortDir) -> QuerySpec:
    """Order *spec* by *sort_field*, replacing any previous ordering.

    A relation-qualified field (``customer.name``) switches the query to an
    explicit INNER JOIN on the relation's join keys, aliased with the
    relation's explicit alias, while still selecting only base-entity columns.
    The join reuses the binding of an existing EXISTS group for that relation.
    The primary key is appended as an ascending tie-break.
    """
    raw_direction = direction.value if isinstance(direction, SortDir) else direction
    normalized = str(raw_direction or "").strip().lower()
    if normalized not in (SortDir.asc.value, SortDir.desc.value):
        raise InvalidSortFieldError(f'unsupported sort direction "{direction}"')
    order = asc if normalized == SortDir.asc.value else desc

    if "." not in sort_field:
        column = spec.table.c.get(sort_field)
        if column is None:
            raise InvalidSortFieldError(f'unknown sort field "{sort_field}" on {spec.relations.model_name}')
        clauses = [order(column)]
        sorted_columns = [column]
    else:
        relation, attribute = _split_field_key(sort_field)
        group = spec.find_group(relation)
        if group is not None and group.binding.joinable:
            binding = group.binding
        else:
            binding = spec.relations.join_keys_for(relation)
        if binding.column(attribute) is None:
            raise InvalidSortFieldError(f'unknown sort field "{sort_field}" on {spec.relations.model_name}')
        target = spec.set_join(binding)
        clauses = [order(target.c[attribute])]
        sorted_columns = []

    for pk in spec.primary_key:
        if not any(pk is column for column in sorted_columns):
            clauses.append(asc(pk))

    spec.order_by = clauses
    return spec


# ---------------------------------------------------------------------------
# Pager
# ---------------------------------------------------------------------------

def resolve_per_page(per_page: Any, default_per_page: int) -> int:
    """Return *per_page* as a positive int, falling back to *default_per_page*."""
    if per_page is None or isinstance(per_page, bool):
        return default_per_page
    try:
        value = int(per_page)
    except (TypeError, ValueError):
        return default_per_page
    return value if value > 0 else default_per_page


def apply_pagination(statement, page: int = 1, page_size: int = 15):
    """Apply OFFSET/LIMIT for a 1-based *page*."""
    return statement.offset((page - 1) * page_size).limit(page_size)


def build_page(items: list, total_count: int, page: int, page_size: int) -> Page:
    return Page(
        items=items,
        total_count=total_count,
        page=page,
        page_size=page_size,
        has_next=page * page_size < total_count,
        has_prev=page > 1,
    )


async def paginate(
    session: AsyncSession,
    spec: QuerySpec,
    *,
    page: int = 1,
    per_page: Any = None,
    default_per_page: int | None = None,
) -> Page:
    """Execute *spec* once and return the requested page plus total count.

    Pages past the end come back empty with the requested page number.
    """
    page_size = resolve_per_page(
        per_page if per_page is not None else spec.per_page,
        default_per_page or settings.DEFAULT_PER_PAGE,
    )
    page = resolve_per_page(page, 1)
    spec.per_page = page_size

    total_count = (await session.exec(spec.count_select())).one()
    statement = apply_pagination(spec.to_select(), page, page_size)
    items = list((await session.exec(statement)).all())

    logger.debug(
        "Paginated %s: page=%s page_size=%s total=%s",
        spec.relations.model_name,
        page,
        page_size,
        total_count,
    )
    return build_page(items, total_count, page, page_size)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def build_query(
    model: Any,
    request: CollectionRequest,
    own_columns: Iterable[str],
    *,
    searchable_fields: Sequence[str] = (),
    relation_aliases: Mapping[str, str] | None = None,
    scopes: Iterable[CollectionRelation] = (),
    default_order_by: str | None = None,
    default_order_direction: str | None = None,
    strict_relations: bool | None = None,
) -> QuerySpec:
    """Run every construction stage for *request* against *model*."""
    spec = QuerySpec.for_model(model, relation_aliases)
    apply_scopes(spec, scopes)

    equality, ranges = split_filters(normalize_filters(request.filters))
    own_columns = set(own_columns)
    equality_own, equality_related = classify_keys(equality, own_columns)
    range_own, range_related = classify_keys(ranges, own_columns)

    apply_filters(
        spec,
        {key: equality[key] for key in equality_own},
        {key: ranges[key] for key in range_own},
        {key: equality[key] for key in equality_related},
        {key: ranges[key] for key in range_related},
        relation_order=relation_order(request.filters),
        strict_relations=strict_relations,
    )
    apply_search(spec, searchable_fields, request.search)
    apply_sort(
        spec,
        request.order_by or default_order_by or settings.DEFAULT_ORDER_BY,
        request.order_direction or default_order_direction or settings.DEFAULT_ORDER_DIRECTION,
    )
    spec.per_page = request.per_page
    return spec
