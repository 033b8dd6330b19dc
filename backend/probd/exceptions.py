"""
ProBD Backend - Custom Exception Hierarchy
==========================================

What:  Application-specific exceptions, one per error scenario.
How:   Each exception carries a user-safe message and a context dict that is
       logged but never returned verbatim. Global handlers registered in
       main.py map each class to an HTTP status and a JSON body.
Who:   Raised by services and identity resolution; caught by global handlers
       and, for the live WebSocket, by the consultation orchestrator.

Exception Hierarchy:
    ProBDError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── PermissionDeniedError    → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── SessionStateError        → 409 Conflict
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── DatabaseError            → 500 Internal Server Error
    ├── VideoServiceError        → 502 Bad Gateway
    ├── LLMServiceError          → 503 Service Unavailable
    └── CircuitBreakerOpenError  → 503 Service Unavailable
"""

from typing import Any, Dict, Optional


class ProBDError(Exception):
    """
    Base exception for all ProBD application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, not returned as-is)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ProBDError):
    """
    Raised when client input fails a business rule.

    Pydantic schema failures still surface as FastAPI's own 422; this class
    covers rules checked in the service layer (empty guest name, missing
    userId on the guest-token route, blank concierge message).
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(ProBDError):
    """
    Raised when a presented credential cannot be trusted.

    A missing credential is not an error by itself: several routes fall back
    to a default identity. This is raised for malformed, forged or expired
    bearer tokens, and for routes that require an identity.
    """

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(ProBDError):
    """Raised when the caller is known but not allowed to perform the action."""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(ProBDError):
    """Raised when a requested resource does not exist."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class SessionStateError(ProBDError):
    """
    Raised on an illegal consultation lifecycle transition.

    Example: asking a session that already ended to connect again.
    """

    def __init__(
        self,
        current: str,
        requested: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Consultation session cannot move from '{current}' to '{requested}'"
        ctx = context or {}
        ctx.update({"current": current, "requested": requested})
        super().__init__(message=message, context=ctx)
        self.current = current
        self.requested = requested


class DatabaseError(ProBDError):
    """
    Raised when database operations fail unexpectedly.

    The client always receives a generic message; the SQL-level detail is
    logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class VideoServiceError(ProBDError):
    """
    Raised when the hosted video platform (Stream) rejects or fails a call.

    HTTP 502: our server is fine, the upstream it depends on is not.
    `status_code` keeps the upstream HTTP status when there was one.
    """

    def __init__(
        self,
        message: str = "Secure video session could not be established",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code:
            ctx["upstream_status"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class LLMServiceError(ProBDError):
    """
    Raised when Gemini fails after all retries.

    HTTP 503 with an optional `retry_after` hint taken from the circuit
    breaker recovery window.
    """

    def __init__(
        self,
        message: str = "The AI assistant is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(ProBDError):
    """
    Raised when a circuit breaker is OPEN.

    State machine:
        CLOSED → (threshold consecutive failures) → OPEN
        OPEN → (recovery timeout elapsed) → HALF_OPEN
        HALF_OPEN → success → CLOSED | failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        service: str = "AI service",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"{service} is temporarily unavailable due to repeated failures. "
            f"It will be retried automatically in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class RateLimitExceededError(ProBDError):
    """Raised when a client exceeds the per-IP request rate limit."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
