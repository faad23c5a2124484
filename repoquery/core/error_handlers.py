"""FastAPI exception handlers for collection endpoints."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from repoquery.core.exceptions import QueryError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


async def query_error_handler(request: Request, exc: QueryError) -> JSONResponse:
    logger.info("Rejected collection query %s: %s", request.url.path, exc)
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        type(exc).__name__,
        str(exc),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle FastAPI and Starlette HTTP exceptions, including routing 404/405."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(exc.status_code, f"HTTP_{exc.status_code}", detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QueryError, query_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
