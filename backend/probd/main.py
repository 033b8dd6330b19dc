"""
ProBD Backend - FastAPI Application Factory
===========================================

What:  Creates and configures the FastAPI application.
How:   create_app() registers middleware, exception handlers and routers;
       uvicorn serves the module-level `app` (uvicorn probd.main:app).

Application Architecture:
    ┌────────────────────────────────────────────────────────────┐
    │                        FastAPI App                         │
    │                                                            │
    │  Middleware:  Rate Limit → Request ID → Logging → GZip/CORS│
    │                                                            │
    │  Routes:                                                   │
    │    /api/v1/auth/*           identity (guest, me, role)     │
    │    /api/v1/meetings/*       Stream call tokens, recording  │
    │    /api/v1/consultations/*  live WS, sessions, transcripts │
    │    /api/v1/concierge/*      Gemini concierge chat          │
    │    /health                                                 │
    │                                                            │
    │  Exception handlers: ProBDError subclasses → JSON errors   │
    └────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:   logging, configuration check (logged, not fatal)
    Shutdown:  close the Stream HTTP client, dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from probd import __version__
from probd.config import settings
from probd.database import dispose_engine
from probd.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    DatabaseError,
    LLMServiceError,
    NotFoundError,
    PermissionDeniedError,
    ProBDError,
    RateLimitExceededError,
    SessionStateError,
    ValidationError,
    VideoServiceError,
)
from probd.middleware.logging import RequestLoggingMiddleware
from probd.middleware.rate_limit import RateLimitMiddleware
from probd.middleware.request_id import RequestIDMiddleware, request_id_var
from probd.routes import auth, concierge, consultations, health, meetings
from probd.services.stream_service import stream_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once, writing to stdout for Docker."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("ProBD Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health reports the missing pieces
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("ProBD Backend shutting down...")
    await stream_service.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content = {
        "success": False,
        "error": error,
        "message": message,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy onto HTTP responses.

        ValidationError         → 400
        AuthenticationError     → 401
        PermissionDeniedError   → 403
        NotFoundError           → 404
        SessionStateError       → 409
        RateLimitExceededError  → 429
        VideoServiceError       → 502
        LLMServiceError         → 503
        CircuitBreakerOpenError → 503 (+ Retry-After)
        DatabaseError           → 500 (generic message)
        ProBDError / Exception  → 500

    Context dicts go to the log; only the safe subset reaches the client.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        logger.warning("[%s] Authentication failed: %s", request_id_var.get(""), exc.message)
        return error_response(
            401, "authentication_error", exc.message, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        logger.warning(
            "[%s] Permission denied: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return error_response(403, "permission_denied", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(404, "not_found", exc.message)

    @app.exception_handler(SessionStateError)
    async def handle_session_state(request: Request, exc: SessionStateError):
        return error_response(
            409,
            "session_state_conflict",
            exc.message,
            {"current": exc.current, "requested": exc.requested},
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            {"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(VideoServiceError)
    async def handle_video_error(request: Request, exc: VideoServiceError):
        logger.error(
            "[%s] Video service error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        details = {"upstream_status": exc.status_code} if exc.status_code else None
        return error_response(502, "video_service_error", exc.message, details)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(LLMServiceError)
    async def handle_llm_error(request: Request, exc: LLMServiceError):
        logger.error("[%s] LLM service error: %s", request_id_var.get(""), exc.message)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return error_response(
            503,
            "llm_service_error",
            exc.message,
            {"retry_after": exc.retry_after} if exc.retry_after else None,
            headers=headers,
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(ProBDError)
    async def handle_probd_error(request: Request, exc: ProBDError):
        logger.error(
            "[%s] Application error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="ProfessionalsBD API",
        description=(
            "Consultation backend for ProfessionalsBD: video-call tokens, a live "
            "AI audio assistant with transcripts, and the ProBD Concierge chat."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(meetings.router)
    app.include_router(consultations.router)
    app.include_router(concierge.router)
    app.include_router(health.router)

    return app


app = create_app()
