"""Standard error handler — one JSON envelope for every failed request.

Envelope: ``{error, status_code, detail, timestamp, request_id}`` plus
``kind`` for domain errors and ``missing`` for absent spreadsheet columns.
"""

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import MissingColumnsError, SheetboardError
from ..utils.logging import get_logger

logger = get_logger("middleware.error_handler")


def _envelope(request: Request, status_code: int, detail, headers=None, **extra) -> JSONResponse:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": getattr(request.state, "request_id", None),
        **extra,
    }
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Register the domain, HTTP, validation and catch-all handlers on ``app``."""

    @app.exception_handler(SheetboardError)
    async def domain_exception_handler(request: Request, exc: SheetboardError):
        kind = type(exc).__name__
        if exc.status_code >= 500:
            logger.warning("domain_error", kind=kind, error=str(exc), path=request.url.path)
        extra = {"kind": kind}
        if isinstance(exc, MissingColumnsError):
            extra["missing"] = exc.missing
        return _envelope(request, exc.status_code, exc.message, **extra)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _envelope(request, 422, "Validation error", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", error=str(exc), path=request.url.path, exc_info=True)
        return _envelope(request, 500, "Internal server error")
