"""
ProBD Backend - Consultation Schemas
====================================

What:  Session and transcript views returned by the consultation routes,
       plus the JSON frames exchanged on the live WebSocket.

Live WebSocket frames (client → server):
    {"type": "audio", "data": "<base64 PCM16 mono @ 16 kHz>"}
    {"type": "text",  "text": "..."}
    {"type": "end"}
    Binary frames are treated as raw PCM16 audio.

Live WebSocket frames (server → client):
    {"type": "session", "status": "connected", "session_id": "..."}
    {"type": "audio", "data": "...", "sample_rate": 24000,
     "start_at": 1.52, "duration": 0.4}
    {"type": "transcript", "speaker": "user", "text": "...", "final": false}
    {"type": "turn_complete", "entries": [...]}
    {"type": "interrupted", "dropped": 3}
    {"type": "error", "message": "..."}
    {"type": "closed", "status": "ended"}
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class SessionStatus(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    CONNECTED = "connected"
    ENDED = "ended"
    ERROR = "error"


class Speaker(str, Enum):
    USER = "user"
    MODEL = "model"


class TranscriptEntryView(BaseModel):
    sequence: int
    speaker: Speaker
    text: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConsultationSessionView(BaseModel):
    id: uuid.UUID
    call_id: str
    call_type: str
    user_id: str
    user_name: Optional[str] = None
    is_guest: bool
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class TranscriptView(BaseModel):
    session_id: uuid.UUID
    entries: List[TranscriptEntryView] = Field(default_factory=list)


class ClientAudioFrame(BaseModel):
    type: Literal["audio"]
    data: str = Field(description="Base64 PCM16 mono audio")


class ClientTextFrame(BaseModel):
    type: Literal["text"]
    text: str = Field(min_length=1)

    model_config = {"str_strip_whitespace": True}


class ClientEndFrame(BaseModel):
    type: Literal["end"]


ClientFrame = Annotated[
    Union[ClientAudioFrame, ClientTextFrame, ClientEndFrame],
    Field(discriminator="type"),
]

# Parses one JSON text frame from the browser into a ClientFrame
client_frame_adapter = TypeAdapter(ClientFrame)
