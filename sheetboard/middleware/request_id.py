"""Request correlation — one id per request, echoed back and bound to every log line."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..utils.logging import get_logger

logger = get_logger("middleware.request_id")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with a correlation id.

    A client-supplied ``X-Request-ID`` is reused. The id is stored on
    ``request.state`` for the error handlers and bound into structlog's
    context, so store, adapter and sync log lines emitted while serving the
    request carry it too.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            request_id=request_id,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return response
