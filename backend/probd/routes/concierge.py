"""
ProBD Backend - Concierge Route Handlers
========================================

What:  The floating "ProBD Concierge" chat widget.
How:   The client keeps the conversation and sends it back with every new
       message; the server is stateless.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from probd.schemas.common import Envelope, ErrorResponse
from probd.schemas.concierge import ChatMessage, ConciergeReply, ConciergeRequest
from probd.services.gemini_service import CONCIERGE_GREETING, gemini_service

router = APIRouter(prefix="/api/v1/concierge", tags=["Concierge"])


@router.get("/greeting", response_model=Envelope[ChatMessage], summary="Opening message")
async def greeting() -> Envelope[ChatMessage]:
    return Envelope(data=ChatMessage(role="model", text=CONCIERGE_GREETING))


@router.post(
    "/chat",
    response_model=Envelope[ConciergeReply],
    responses={
        400: {"description": "Empty message", "model": ErrorResponse},
        503: {"description": "Gemini unavailable or circuit open", "model": ErrorResponse},
    },
    summary="Send a message to the concierge",
)
async def chat(body: ConciergeRequest) -> Envelope[ConciergeReply]:
    text = await gemini_service.generate_reply(body.message, body.history)
    reply = ChatMessage(role="model", text=text, timestamp=datetime.now(timezone.utc))
    return Envelope(data=ConciergeReply(reply=reply, model=gemini_service.model_name))
