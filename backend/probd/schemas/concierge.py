"""
ProBD Backend - Concierge Schemas
=================================

What:  Chat turns exchanged with the ProBD Concierge widget.
"""

from datetime import datetime, timezone
from typing import List, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConciergeRequest(BaseModel):
    message: str = Field(max_length=4000, description="The user's new message")
    history: List[ChatMessage] = Field(
        default_factory=list,
        max_length=100,
        description="Previous turns, oldest first (may include the greeting)",
    )


class ConciergeReply(BaseModel):
    reply: ChatMessage
    model: str = Field(description="Gemini model that produced the reply")
