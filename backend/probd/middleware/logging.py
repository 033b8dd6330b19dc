"""
ProBD Backend - Request Logging Middleware
==========================================

What:  One access-log line per HTTP request on the `probd.access` logger.

Line format:
    POST /api/v1/meetings/adhoc 201 312.4ms [a1b2c3d4] from 203.0.113.7

Level follows the status: 5xx → ERROR, 4xx → WARNING, else INFO. The same
fields are attached as `extra` for JSON formatters. Request bodies and
Authorization headers are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from probd.middleware.request_id import request_id_var

logger = logging.getLogger("probd.access")

# Probes hit these every few seconds
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
