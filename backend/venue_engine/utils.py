from __future__ import annotations

import logging
from contextvars import ContextVar
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Request ID for the request currently being served
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an ID for cross-service debugging.

    Reuses an incoming ``X-Request-ID`` header when present, otherwise mints a
    UUID. The ID is exposed on ``request.state``, in ``request_id_ctx`` for log
    processors, and echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestIDLogFilter(logging.Filter):
    """Expose the request ID as ``%(request_id)s`` on stdlib log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get("") or "-"  # type: ignore[attr-defined]
        return True


def add_request_id_tracing(app) -> None:
    app.add_middleware(RequestIDMiddleware)
    logging.getLogger().addFilter(RequestIDLogFilter())


def get_request_id() -> str:
    return request_id_ctx.get("")


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
    "add_request_id_tracing",
    "get_request_id",
    "request_id_ctx",
]
