import re
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlmodel.ext.asyncio.session import AsyncSession

from repoquery.core.config import settings
from repoquery.db.query import resolve_per_page
from repoquery.db.session import get_session
from repoquery.schemas.query import CollectionRequest

SessionDep = Annotated[AsyncSession, Depends(get_session)]

# filters[status]=paid, filters[customer.name]=Acme, filters[range.total]=100$500
_FILTER_PARAM = re.compile(r"^filters\[(?P<key>[^\]]+)\]$")


async def get_collection_request(request: Request) -> CollectionRequest:
    """Read collection parameters from the query string.

    ``per_page`` falls back to the configured default here; an absent sort is
    left as ``None`` so the entity descriptor or config default can apply.
    """
    params = request.query_params

    filters = {}
    for name, value in params.multi_items():
        match = _FILTER_PARAM.match(name)
        if match:
            filters[match.group("key")] = value

    raw_page = params.get("page", "1")
    try:
        page = int(raw_page)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="page must be an integer") from exc
    if page < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="page must be at least 1")

    return CollectionRequest(
        filters=filters,
        search=params.get("search") or None,
        page=page,
        per_page=resolve_per_page(params.get("per_page"), settings.DEFAULT_PER_PAGE),
        order_by=params.get("order_by") or None,
        order_direction=params.get("order_direction") or None,
    )


CollectionRequestDep = Annotated[CollectionRequest, Depends(get_collection_request)]
