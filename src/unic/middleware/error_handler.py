"""Exception handlers that turn engine errors into JSON responses.

Every error body has a ``detail``; engine errors also name their type in
``error`` so callers can branch without parsing messages.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from unic.errors import (
    ContestNotFound,
    DistributionNotFound,
    EngineError,
    InvariantViolation,
    PoolEntryNotFound,
    PreconditionError,
    TransientError,
)

logger = structlog.get_logger()

# First match wins; not-found errors are preconditions too.
_STATUS_BY_TYPE: list[tuple[tuple[type[EngineError], ...], int]] = [
    ((ContestNotFound, DistributionNotFound, PoolEntryNotFound), 404),
    ((PreconditionError,), 409),
    ((InvariantViolation,), 422),
    ((TransientError,), 502),
]


def status_for(exc: EngineError) -> int:
    for types, status in _STATUS_BY_TYPE:
        if isinstance(exc, types):
            return status
    return 400


def _json_error(status_code: int, detail: Any, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def setup_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _json_error(exc.status_code, exc.detail)

    @app.exception_handler(EngineError)
    async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
        status_code = status_for(exc)
        logger.warning("engine_error", path=request.url.path, status_code=status_code, error_type=type(exc).__name__)
        return _json_error(status_code, str(exc), error=type(exc).__name__)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", path=request.url.path, method=request.method, exc_info=exc)
        return _json_error(500, "Internal server error")
