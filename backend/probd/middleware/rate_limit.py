"""
ProBD Backend - Rate Limiting Middleware
========================================

What:  Per-client sliding-window request limiter for the HTTP API.
How:   Keeps the timestamps of each client's requests inside the window.
       Once a client holds `rate_limit_requests` of them, further requests get
       a 429 with `Retry-After` until the oldest one leaves the window.

Limits apply per process. Running several workers multiplies the effective
limit by the worker count.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from probd.config import settings
from probd.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

_CLEANUP_EVERY = 1000


def client_key(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Peer address of the request.

    The first X-Forwarded-For hop is used only when the peer itself is a
    trusted proxy; otherwise the header is client-controlled and ignored.
    """
    peer = request.client.host if request.client else "unknown"
    if peer in trusted_proxies:
        hop = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if hop:
            return hop
    return peer


class RateLimitMiddleware(BaseHTTPMiddleware):

    EXCLUDED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

    def __init__(
        self,
        app,
        max_requests: int = None,
        window_seconds: int = None,
        trusted_proxies: Optional[Iterable[str]] = None,
        **kwargs,
    ):
        super().__init__(app, **kwargs)
        self.trusted_proxies = frozenset(
            trusted_proxies if trusted_proxies is not None else settings.trusted_proxies_list
        )
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._seen = 0

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        key = client_key(request, self.trusted_proxies)
        now = time.time()
        window_start = now - self.window_seconds

        timestamps = self._requests[key]
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            exc = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(timestamps),
                self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)
        self._seen += 1
        if self._seen % _CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [key for key, ts in self._requests.items() if not ts or ts[-1] <= window_start]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Dropped %d inactive rate-limit entries", len(inactive))
