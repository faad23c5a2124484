"""Errors raised while turning collection parameters into a query.

Every error derives from :class:`QueryError`, itself a :class:`ValueError`, so
callers that already translate ``ValueError`` into a 400 response keep working.
"""


class QueryError(ValueError):
    """Base class for query-construction failures."""


class MalformedRangeError(QueryError):
    def __init__(self, key: str, value: object, delimiter: str = "$") -> None:
        self.key = key
        self.value = value
        super().__init__(
            f'range filter "{key}" expects "<lower>{delimiter}<upper>", got {value!r}'
        )


class UnknownRelationError(QueryError):
    def __init__(self, relation: str, model_name: str, reason: str | None = None) -> None:
        self.relation = relation
        self.model_name = model_name
        message = f'unknown relation "{relation}" on {model_name}'
        if reason:
            message = f'relation "{relation}" on {model_name} {reason}'
        super().__init__(message)


class InvalidSortFieldError(QueryError):
    pass


class AmbiguousRelationError(QueryError):
    def __init__(self, applied: str, dropped: list[str]) -> None:
        self.applied = applied
        self.dropped = dropped
        super().__init__(
            f'filters reference relations {", ".join([applied, *dropped])}; '
            "only one relation can be filtered per query"
        )


class InvalidFilterValueError(QueryError):
    def __init__(self, key: str, value: object, kind: str) -> None:
        self.key = key
        self.value = value
        self.kind = kind
        super().__init__(f'invalid {kind} value for filter "{key}": {value!r}')
