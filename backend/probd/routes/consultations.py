"""
ProBD Backend - Consultation Route Handlers
===========================================

What:  The live AI session WebSocket plus read access to finished sessions.

    WS  /api/v1/consultations/{call_id}/live
    GET /api/v1/consultations/{session_id}
    GET /api/v1/consultations/{session_id}/transcript

WebSocket identity:
    Browsers cannot set headers on a WebSocket, so the caller is resolved from
    query parameters first (`token`, or `user_id` + `name`), then from the
    usual headers. Unidentified connections are closed with 1008 (policy
    violation) before the handshake completes.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, status
from sqlalchemy.ext.asyncio import AsyncSession

from probd.database import get_db_session
from probd.exceptions import AuthenticationError
from probd.schemas.common import Envelope, ErrorResponse
from probd.schemas.consultation import ConsultationSessionView, TranscriptView
from probd.schemas.identity import Identity
from probd.services.consultation_service import LiveConsultation, consultation_store
from probd.services.identity_service import identity_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/consultations", tags=["Consultations"])


def _websocket_identity(
    websocket: WebSocket,
    token: Optional[str],
    user_id: Optional[str],
    name: Optional[str],
) -> Optional[Identity]:
    if token:
        return identity_service.resolve_identity(authorization=f"Bearer {token}")
    if user_id:
        return identity_service.resolve_identity(x_user_id=user_id, name=name)
    return identity_service.resolve_identity(
        authorization=websocket.headers.get("authorization"),
        x_user_id=websocket.headers.get("x-user-id"),
        name=websocket.headers.get("x-user-name"),
    )


@router.websocket("/{call_id}/live")
async def live_consultation(
    websocket: WebSocket,
    call_id: str,
    token: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None),
    name: Optional[str] = Query(default=None),
    call_type: Optional[str] = Query(default=None),
):
    try:
        identity = _websocket_identity(websocket, token, user_id, name)
    except AuthenticationError as e:
        logger.warning("Live session for %s rejected: %s", call_id, e.message)
        identity = None

    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info("Live session requested: call=%s user=%s", call_id, identity.user_id)

    consultation = LiveConsultation(websocket, identity, call_id, call_type=call_type)
    await consultation.run()


@router.get(
    "/{session_id}",
    response_model=Envelope[ConsultationSessionView],
    responses={404: {"model": ErrorResponse}},
    summary="Consultation session summary",
)
async def get_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> Envelope[ConsultationSessionView]:
    return Envelope(data=await consultation_store.get_session(db, session_id))


@router.get(
    "/{session_id}/transcript",
    response_model=Envelope[TranscriptView],
    responses={404: {"model": ErrorResponse}},
    summary="Ordered transcript of a consultation",
)
async def get_transcript(
    session_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> Envelope[TranscriptView]:
    return Envelope(data=await consultation_store.get_transcript(db, session_id))
