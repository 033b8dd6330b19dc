"""
ProBD Backend - Health Check Route
==================================

What:  Liveness/readiness probe for Docker and load balancers.

Status levels:
    healthy    database reachable, Gemini and Stream usable
    degraded   database fine, an upstream is down, unconfigured or circuit-open
    unhealthy  database unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text

from probd import __version__
from probd.database import engine
from probd.schemas.common import HealthResponse
from probd.services.gemini_service import gemini_service
from probd.services.stream_service import stream_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check() -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if gemini_service.circuit_breaker.state == "open":
        gemini_status = "circuit_open"
    elif not await gemini_service.health_check():
        gemini_status = "unavailable"

    video_status = await stream_service.health_check()

    if overall != "unhealthy" and (gemini_status != "available" or video_status != "configured"):
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        video=video_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
