"""
ProBD Backend - Stream Video Service
====================================

What:  Server-side client for the hosted video platform (Stream Video).
How:   User tokens are HS256 JWTs signed locally with the Stream API secret
       (python-jose). Call management goes through Stream's REST API over a
       pooled httpx.AsyncClient authenticated with a server token.
Who:   Used by MeetingService for token issuance, call creation and recording.

Resilience:
    - tenacity retries transport errors and 5xx responses with exponential
      backoff + jitter
    - 4xx responses are not retried (the request itself is wrong)
    - a CircuitBreaker rejects calls instantly while Stream keeps failing
    - every failure leaves this module as VideoServiceError
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import jwt as jose_jwt
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from probd.config import settings
from probd.exceptions import VideoServiceError
from probd.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

# Stream rejects tokens whose iat is slightly ahead of its own clock
_CLOCK_SKEW_SECONDS = 5


class _TransientStreamError(Exception):
    """Internal marker: the request may succeed if sent again."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamVideoService:
    """
    Thin async wrapper over the Stream Video REST API.

    Endpoints used:
        POST /call/{type}/{id}                  get-or-create a call
        GET  /call/{type}/{id}                  call state + members
        POST /call/{type}/{id}/start_recording
        POST /call/{type}/{id}/stop_recording
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.stream_api_key
        self.api_secret = api_secret if api_secret is not None else settings.stream_api_secret
        self.base_url = (base_url or settings.stream_base_url).rstrip("/")
        self._client = http_client
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
            name="Video service",
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_secret != "your_stream_secret_here")

    # ── Tokens ────────────────────────────────────────────────────────────

    def _require_secret(self) -> str:
        if not self.is_configured:
            raise VideoServiceError(
                message="Video calling is not configured on this server.",
                context={"setting": "STREAM_API_SECRET"},
            )
        return self.api_secret

    def generate_user_token(self, user_id: str, validity_seconds: Optional[int] = None) -> str:
        """
        Create a Stream user token.

        Args:
            user_id: Stream user the token authenticates.
            validity_seconds: Lifetime; None issues a token without `exp`.
        """
        secret = self._require_secret()
        issued_at = int(time.time()) - _CLOCK_SKEW_SECONDS
        claims: Dict[str, Any] = {"user_id": user_id, "iat": issued_at}
        if validity_seconds:
            claims["exp"] = issued_at + _CLOCK_SKEW_SECONDS + int(validity_seconds)
        return jose_jwt.encode(claims, secret, algorithm="HS256")

    def _server_token(self) -> str:
        return jose_jwt.encode({"server": True}, self._require_secret(), algorithm="HS256")

    # ── HTTP plumbing ─────────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.stream_timeout,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(_TransientStreamError),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": self._server_token(),
            "stream-auth-type": "jwt",
            "Content-Type": "application/json",
        }
        start_time = time.perf_counter()
        try:
            response = await self._http().request(
                method,
                f"{self.base_url}{path}",
                params={"api_key": self.api_key},
                headers=headers,
                json=payload,
            )
        except httpx.TransportError as e:
            logger.warning("Stream %s %s transport error: %s", method, path, str(e))
            raise _TransientStreamError(str(e))

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("Stream %s %s → %d in %.0fms", method, path, response.status_code, duration_ms)

        if response.status_code >= 500 or response.status_code == 429:
            raise _TransientStreamError(
                f"Stream returned {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise VideoServiceError(
                message="The video platform rejected the request.",
                status_code=response.status_code,
                context={"path": path, "detail": detail},
            )
        return response.json() if response.content else {}

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        """
        Circuit-breaker wrapper around `_send`.

        Raises:
            CircuitBreakerOpenError: Stream has failed too often recently
            VideoServiceError: anything else that went wrong upstream
        """
        self.circuit_breaker.can_execute()
        try:
            result = await self._send(method, path, payload)
        except VideoServiceError as e:
            # Client errors mean Stream is up; they don't count against the breaker
            if e.status_code and e.status_code < 500:
                self.circuit_breaker.record_success()
            else:
                self.circuit_breaker.record_failure()
            raise
        except _TransientStreamError as e:
            self.circuit_breaker.record_failure()
            logger.error("Stream %s %s failed after retries: %s", method, path, str(e))
            raise VideoServiceError(
                message="The video platform is not responding. Please try again shortly.",
                status_code=e.status_code,
                context={"path": path, "attempts": settings.retry_max_attempts},
            )
        self.circuit_breaker.record_success()
        return result

    # ── Calls ─────────────────────────────────────────────────────────────

    async def get_or_create_call(
        self,
        call_type: str,
        call_id: str,
        created_by_id: str,
        members: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """Create the call on the server so that guests can join it by id."""
        data: Dict[str, Any] = {"created_by_id": created_by_id}
        if members:
            data["members"] = members
        result = await self._request("POST", f"/call/{call_type}/{call_id}", {"data": data})
        logger.info(
            "Call %s:%s ready (created=%s, by=%s)",
            call_type,
            call_id,
            result.get("created"),
            created_by_id,
        )
        return result

    async def get_call(self, call_type: str, call_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/call/{call_type}/{call_id}")

    async def start_recording(self, call_type: str, call_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/call/{call_type}/{call_id}/start_recording", {})

    async def stop_recording(self, call_type: str, call_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/call/{call_type}/{call_id}/stop_recording", {})

    async def health_check(self) -> str:
        """Report configuration and breaker state without spending an API call."""
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "configured" if self.is_configured else "unconfigured"


stream_service = StreamVideoService()

