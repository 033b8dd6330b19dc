"""
ProBD Backend - Request ID Middleware
=====================================

What:  Tags every HTTP request with a short correlation id.
How:   Reuses the client's `X-Request-ID` when present (the web client sends
       one per API call), otherwise generates 8 hex chars. The id is stored
       in a ContextVar for loggers and exception handlers, and echoed back in
       the `X-Request-ID` response header.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_MAX_CLIENT_ID_LENGTH = 64


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:_MAX_CLIENT_ID_LENGTH] or new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
