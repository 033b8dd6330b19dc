"""
ProBD Backend - Shared Response Schemas
=======================================

What:  Envelope, error and health models reused by every router.

Envelope:
    Success responses are wrapped the way the web client expects:
        {"success": true, "data": {...}, "message": "..."}
    Errors use the same `success` flag so the client can branch on one field:
        {"success": false, "error": "not_found", "message": "...", ...}
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = Field(default=True)
    data: T
    message: Optional[str] = Field(default=None)


class ErrorResponse(BaseModel):
    """Standardized error body for all API errors."""
    success: bool = Field(default=False)
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    Health check response.

    `status` is unhealthy when the database is down, degraded when only an
    upstream (Gemini or Stream) is unavailable, and healthy otherwise.
    """
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gemini: str = Field(description="Gemini API status: available, unavailable, circuit_open")
    video: str = Field(description="Stream Video status: configured, unconfigured, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
