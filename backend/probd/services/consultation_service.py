"""
ProBD Backend - Live Consultation Service
=========================================

What:  Runs the AI live-audio session that sits next to a video consultation.
How:   LiveConsultation bridges the browser WebSocket and a Gemini Live
       channel. Two pumps run concurrently:

           browser ──audio/text──▶ pump_client ──▶ Gemini Live
           browser ◀──frames────── pump_model_events ◀── Gemini Live

       whichever finishes first (client hangs up, model closes, error) cancels
       the other, then close() persists what is left and ends the session.
Who:   Created per connection by the consultation WebSocket route.

Session lifecycle:
    idle → joining → connected → ended
               ↘          ↘
                error      error

Components:
    TranscriptAccumulator  partial fragments → one entry per speaker per turn
    PlaybackScheduler      gapless start times for model audio chunks
    ConsultationStore      persistence of sessions and transcript entries
    LiveConsultation       the orchestrator
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as FrameValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocket, WebSocketState

from probd.config import settings
from probd.database import session_scope
from probd.exceptions import (
    DatabaseError,
    NotFoundError,
    ProBDError,
    SessionStateError,
    ValidationError,
)
from probd.models.consultation import ConsultationSession, TranscriptEntry
from probd.schemas.consultation import (
    ClientAudioFrame,
    ClientEndFrame,
    ConsultationSessionView,
    SessionStatus,
    Speaker,
    TranscriptEntryView,
    TranscriptView,
    client_frame_adapter,
)
from probd.schemas.identity import Identity
from probd.services.audio_codec import decode_base64, encode_base64, sample_count
from probd.services.live_gateway import LiveAudioGateway, LiveChannel, LiveEvent, live_gateway

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Lifecycle
# ══════════════════════════════════════════════════════════════════════════

ALLOWED_TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.IDLE: frozenset({SessionStatus.JOINING}),
    SessionStatus.JOINING: frozenset({SessionStatus.CONNECTED, SessionStatus.ERROR}),
    SessionStatus.CONNECTED: frozenset({SessionStatus.ENDED, SessionStatus.ERROR}),
    SessionStatus.ENDED: frozenset(),
    SessionStatus.ERROR: frozenset(),
}

TERMINAL_STATUSES = frozenset({SessionStatus.ENDED, SessionStatus.ERROR})


def check_transition(current: SessionStatus, requested: SessionStatus) -> SessionStatus:
    """Return `requested` if the lifecycle allows it, else raise SessionStateError."""
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise SessionStateError(current=current.value, requested=requested.value)
    return requested


# ══════════════════════════════════════════════════════════════════════════
# Transcript accumulation
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TranscriptLine:
    sequence: int
    speaker: Speaker
    text: str


class TranscriptAccumulator:
    """
    Collects transcription fragments for the turn in progress.

    Gemini streams transcriptions in small pieces for both speakers. A turn
    is only written down once the model reports `turn_complete`; at that
    point flush() emits the participant line first, then the model line.
    """

    def __init__(self, start_sequence: int = 1):
        self._next_sequence = start_sequence
        self._input: List[str] = []
        self._output: List[str] = []
        self.entries: List[TranscriptLine] = []

    @property
    def sequence(self) -> int:
        """Sequence number the next flushed entry will get."""
        return self._next_sequence

    @property
    def has_pending(self) -> bool:
        return bool("".join(self._input).strip() or "".join(self._output).strip())

    def add_input(self, text: str) -> None:
        if text:
            self._input.append(text)

    def add_output(self, text: str) -> None:
        if text:
            self._output.append(text)

    def discard_output(self) -> None:
        """Drop the model text of an interrupted turn; what the user said stays."""
        self._output.clear()

    def flush(self) -> List[TranscriptLine]:
        flushed = []
        for speaker, parts in ((Speaker.USER, self._input), (Speaker.MODEL, self._output)):
            text = "".join(parts).strip()
            parts.clear()
            if not text:
                continue
            line = TranscriptLine(sequence=self._next_sequence, speaker=speaker, text=text)
            self._next_sequence += 1
            flushed.append(line)
        self.entries.extend(flushed)
        return flushed


# ══════════════════════════════════════════════════════════════════════════
# Playback timing
# ══════════════════════════════════════════════════════════════════════════

class PlaybackScheduler:
    """
    Computes back-to-back start times for model audio chunks.

    Times are seconds on the session clock. A chunk never starts before the
    previous one ends, and never in the past.
    """

    def __init__(self, sample_rate: Optional[int] = None):
        self.sample_rate = sample_rate or settings.live_output_sample_rate
        self.cursor = 0.0
        self._pending_ends: List[float] = []

    def schedule(self, num_samples: int, now: float) -> Tuple[float, float]:
        duration = num_samples / self.sample_rate
        start_at = max(self.cursor, now)
        self.cursor = start_at + duration

        self._pending_ends = [end for end in self._pending_ends if end > now]
        self._pending_ends.append(self.cursor)
        return start_at, duration

    def interrupt(self, now: float) -> int:
        """Forget every queued chunk. Returns how many had not finished playing by `now`."""
        dropped = sum(1 for end in self._pending_ends if end > now)
        self._pending_ends = []
        self.cursor = 0.0
        return dropped


# ══════════════════════════════════════════════════════════════════════════
# Persistence
# ══════════════════════════════════════════════════════════════════════════

class ConsultationStore:
    """
    Database access for consultation sessions and transcripts.

    Every method takes the session it runs in. HTTP routes pass the request
    session; the live orchestrator opens a short `session_scope()` per write.
    """

    async def create_session(
        self,
        db: AsyncSession,
        call_id: str,
        call_type: str,
        identity: Identity,
    ) -> ConsultationSession:
        try:
            session = ConsultationSession(
                call_id=call_id,
                call_type=call_type,
                user_id=identity.user_id,
                user_name=identity.name,
                is_guest=identity.is_guest,
                status=SessionStatus.IDLE.value,
            )
            db.add(session)
            await db.flush()
            logger.info("Consultation session %s created for call %s", session.id, call_id)
            return session
        except Exception as e:
            logger.error("Could not create consultation session: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not start the consultation session. Please try again.",
                context={"call_id": call_id, "error_type": type(e).__name__},
            )

    async def _load(self, db: AsyncSession, session_id: UUID) -> ConsultationSession:
        try:
            session = await db.get(ConsultationSession, session_id)
        except Exception as e:
            logger.error("Database error loading session %s: %s", session_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the consultation. Please try again.",
                context={"session_id": str(session_id)},
            )
        if session is None:
            raise NotFoundError(resource="consultation session", resource_id=str(session_id))
        return session

    async def mark_status(
        self,
        db: AsyncSession,
        session_id: UUID,
        status: SessionStatus,
        error_message: Optional[str] = None,
    ) -> ConsultationSession:
        session = await self._load(db, session_id)
        check_transition(SessionStatus(session.status), status)

        session.status = status.value
        if error_message:
            session.error_message = error_message
        if status in TERMINAL_STATUSES:
            session.ended_at = datetime.now(timezone.utc)
        try:
            await db.flush()
        except Exception as e:
            logger.error("Could not update session %s: %s", session_id, str(e))
            raise DatabaseError(context={"session_id": str(session_id), "status": status.value})
        return session

    async def append_entries(
        self,
        db: AsyncSession,
        session_id: UUID,
        lines: List[TranscriptLine],
    ) -> int:
        if not lines:
            return 0
        try:
            db.add_all(
                [
                    TranscriptEntry(
                        session_id=session_id,
                        sequence=line.sequence,
                        speaker=line.speaker.value,
                        text=line.text,
                    )
                    for line in lines
                ]
            )
            await db.flush()
        except Exception as e:
            logger.error("Could not store transcript for %s: %s", session_id, str(e))
            raise DatabaseError(
                message="Could not save the transcript.",
                context={"session_id": str(session_id), "entries": len(lines)},
            )
        return len(lines)

    async def get_session(self, db: AsyncSession, session_id: UUID) -> ConsultationSessionView:
        session = await self._load(db, session_id)
        return ConsultationSessionView.model_validate(session)

    async def get_transcript(self, db: AsyncSession, session_id: UUID) -> TranscriptView:
        await self._load(db, session_id)
        try:
            result = await db.execute(
                select(TranscriptEntry)
                .where(TranscriptEntry.session_id == session_id)
                .order_by(TranscriptEntry.sequence)
            )
            rows = list(result.scalars().all())
        except Exception as e:
            logger.error("Database error reading transcript %s: %s", session_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the transcript. Please try again.",
                context={"session_id": str(session_id)},
            )
        return TranscriptView(
            session_id=session_id,
            entries=[TranscriptEntryView.model_validate(row) for row in rows],
        )


consultation_store = ConsultationStore()


# ══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ══════════════════════════════════════════════════════════════════════════

def _line_payload(line: TranscriptLine) -> dict:
    return {"sequence": line.sequence, "speaker": line.speaker.value, "text": line.text}


class LiveConsultation:
    """
    One live AI session bound to one browser WebSocket.

    The WebSocket must already be accepted. Call run() and await it; it
    returns once the session has been closed and persisted.
    """

    def __init__(
        self,
        websocket: WebSocket,
        identity: Identity,
        call_id: str,
        call_type: Optional[str] = None,
        gateway: Optional[LiveAudioGateway] = None,
        store: Optional[ConsultationStore] = None,
        scope: Callable = session_scope,
    ):
        self.websocket = websocket
        self.identity = identity
        self.call_id = call_id
        self.call_type = call_type or settings.stream_default_call_type
        self.gateway = gateway or live_gateway
        self.store = store or consultation_store
        self._scope = scope

        self.status = SessionStatus.IDLE
        self.session_id: Optional[UUID] = None
        self.transcript = TranscriptAccumulator()
        self.playback = PlaybackScheduler()
        self.channel: Optional[LiveChannel] = None
        self._unsaved: List[TranscriptLine] = []

        self._exit_stack = AsyncExitStack()
        self._send_lock = asyncio.Lock()
        self._clock_origin = time.monotonic()
        self._closed = False

    # ── Helpers ───────────────────────────────────────────────────────────

    def _now(self) -> float:
        return time.monotonic() - self._clock_origin

    async def _send(self, payload: dict) -> None:
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def _transition(self, status: SessionStatus, error_message: Optional[str] = None) -> None:
        check_transition(self.status, status)
        if self.session_id is not None:
            async with self._scope() as db:
                await self.store.mark_status(db, self.session_id, status, error_message)
        logger.info(
            "Consultation %s: %s → %s", self.session_id, self.status.value, status.value
        )
        self.status = status

    async def _persist_unsaved(self) -> None:
        """Store flushed lines. They stay queued until the write has returned."""
        if not self._unsaved or self.session_id is None:
            return
        batch = list(self._unsaved)
        async with self._scope() as db:
            await self.store.append_entries(db, self.session_id, batch)
        del self._unsaved[: len(batch)]

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        check_transition(self.status, SessionStatus.JOINING)
        async with self._scope() as db:
            row = await self.store.create_session(db, self.call_id, self.call_type, self.identity)
            self.session_id = row.id
        await self._transition(SessionStatus.JOINING)

        self.channel = await self._exit_stack.enter_async_context(self.gateway.connect())

        await self._transition(SessionStatus.CONNECTED)
        await self._send(
            {
                "type": "session",
                "status": SessionStatus.CONNECTED.value,
                "session_id": str(self.session_id),
                "input_sample_rate": settings.live_input_sample_rate,
                "output_sample_rate": self.playback.sample_rate,
            }
        )

    async def close(self, error: Optional[str] = None) -> None:
        """Idempotent teardown. Persists leftover text and ends the session."""
        if self._closed:
            return
        self._closed = True

        try:
            self._unsaved.extend(self.transcript.flush())
            await self._persist_unsaved()
        except ProBDError as e:
            logger.error("Transcript lost on close of %s: %s", self.session_id, e.message)
            error = error or e.message

        try:
            if self.status == SessionStatus.CONNECTED and not error:
                await self._transition(SessionStatus.ENDED)
            elif self.status in (SessionStatus.JOINING, SessionStatus.CONNECTED):
                await self._transition(SessionStatus.ERROR, error or "Session closed before connecting")
        except ProBDError as e:
            logger.error("Could not record final status of %s: %s", self.session_id, e.message)

        try:
            await self._exit_stack.aclose()
        except Exception as e:
            logger.warning(
                "Live channel for %s did not close cleanly: %s", self.session_id, str(e), exc_info=True
            )

        if error:
            await self._send({"type": "error", "message": error})
        await self._send({"type": "closed", "status": self.status.value})
        logger.info(
            "Consultation %s closed (status=%s, entries=%d)",
            self.session_id,
            self.status.value,
            len(self.transcript.entries),
        )

    # ── Client → model ────────────────────────────────────────────────────

    async def handle_client_message(self, message: dict) -> bool:
        """
        Forward one raw ASGI WebSocket message to the model.

        Returns False once the client is done (disconnect or an `end` frame).
        Malformed frames are answered with an error frame and skipped.
        """
        if message.get("type") == "websocket.disconnect":
            return False

        if message.get("bytes") is not None:
            await self.channel.send_audio(message["bytes"])
            return True

        raw = message.get("text")
        if raw is None:
            return True
        try:
            frame = client_frame_adapter.validate_json(raw)
            if isinstance(frame, ClientEndFrame):
                return False
            if isinstance(frame, ClientAudioFrame):
                await self.channel.send_audio(decode_base64(frame.data))
            else:
                await self.channel.send_text(frame.text)
        except FrameValidationError as e:
            first = e.errors()[0]
            where = ".".join(str(part) for part in first["loc"])
            message = f"Invalid frame ({where}): {first['msg']}" if where else f"Invalid frame: {first['msg']}"
            await self._send({"type": "error", "message": message})
        except ValidationError as e:
            await self._send({"type": "error", "message": e.message})
        return True

    async def pump_client(self) -> None:
        while True:
            message = await self.websocket.receive()
            if not await self.handle_client_message(message):
                return

    # ── Model → client ────────────────────────────────────────────────────

    async def handle_model_event(self, event: LiveEvent) -> None:
        if event.kind == LiveEvent.AUDIO:
            start_at, duration = self.playback.schedule(sample_count(event.data), self._now())
            await self._send(
                {
                    "type": "audio",
                    "data": encode_base64(event.data),
                    "sample_rate": self.playback.sample_rate,
                    "start_at": round(start_at, 4),
                    "duration": round(duration, 4),
                }
            )
        elif event.kind == LiveEvent.INPUT_TRANSCRIPT:
            self.transcript.add_input(event.text)
            await self._send(
                {"type": "transcript", "speaker": Speaker.USER.value, "text": event.text, "final": False}
            )
        elif event.kind == LiveEvent.OUTPUT_TRANSCRIPT:
            self.transcript.add_output(event.text)
            await self._send(
                {"type": "transcript", "speaker": Speaker.MODEL.value, "text": event.text, "final": False}
            )
        elif event.kind == LiveEvent.INTERRUPTED:
            self.transcript.discard_output()
            dropped = self.playback.interrupt(self._now())
            await self._send({"type": "interrupted", "dropped": dropped})
        elif event.kind == LiveEvent.TURN_COMPLETE:
            lines = self.transcript.flush()
            self._unsaved.extend(lines)
            await self._persist_unsaved()
            await self._send(
                {
                    "type": "turn_complete",
                    "entries": [dict(_line_payload(line), final=True) for line in lines],
                }
            )

    async def pump_model_events(self) -> None:
        async for event in self.channel.events():
            await self.handle_model_event(event)

    # ── Entry point ───────────────────────────────────────────────────────

    async def run(self) -> None:
        error: Optional[str] = None
        try:
            await self.start()

            tasks = [
                asyncio.create_task(self.pump_client(), name="consultation-client"),
                asyncio.create_task(self.pump_model_events(), name="consultation-model"),
            ]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                exc = task.exception()
                if exc is None:
                    continue
                if isinstance(exc, ProBDError):
                    error = exc.message
                else:
                    logger.error(
                        "Consultation %s pump %s failed: %s",
                        self.session_id,
                        task.get_name(),
                        str(exc),
                        exc_info=exc,
                    )
                    error = "The live session was interrupted unexpectedly."
        except ProBDError as e:
            logger.warning("Consultation for call %s failed to start: %s", self.call_id, e.message)
            error = e.message
        finally:
            await self.close(error)
