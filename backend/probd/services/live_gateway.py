"""
ProBD Backend - Gemini Live Audio Gateway
=========================================

What:  Bidirectional audio session with the Gemini native-audio model.
How:   Wraps `google-genai`'s `client.aio.live.connect()`. The raw server
       messages are flattened into LiveEvent records so the orchestrator never
       touches SDK types.
Who:   Opened once per live consultation by LiveConsultation.

Event kinds produced by LiveChannel.events():
    audio              PCM16 @ 24 kHz spoken by the model
    input_transcript   partial transcription of the participant
    output_transcript  partial transcription of the model
    interrupted        participant spoke over the model; drop queued audio
    turn_complete      model finished its turn
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from google import genai
from google.genai import types

from probd.config import settings
from probd.exceptions import LLMServiceError
from probd.services.audio_codec import pcm_mime_type

logger = logging.getLogger(__name__)

LIVE_SYSTEM_INSTRUCTION = (
    "You are the ProBD consultation assistant. You listen in on a video "
    "consultation between a client and a verified professional in Bangladesh. "
    "Answer questions briefly and clearly, and mention BDT (৳) when discussing fees."
)


@dataclass(frozen=True)
class LiveEvent:
    kind: str
    data: bytes = b""
    text: str = ""

    AUDIO = "audio"
    INPUT_TRANSCRIPT = "input_transcript"
    OUTPUT_TRANSCRIPT = "output_transcript"
    INTERRUPTED = "interrupted"
    TURN_COMPLETE = "turn_complete"


def events_from_message(message) -> list:
    """Flatten one `LiveServerMessage` into zero or more LiveEvents, in arrival order."""
    content = getattr(message, "server_content", None)
    if content is None:
        return []

    events = []
    if content.input_transcription and content.input_transcription.text:
        events.append(LiveEvent(LiveEvent.INPUT_TRANSCRIPT, text=content.input_transcription.text))
    if content.output_transcription and content.output_transcription.text:
        events.append(LiveEvent(LiveEvent.OUTPUT_TRANSCRIPT, text=content.output_transcription.text))
    if content.model_turn and content.model_turn.parts:
        for part in content.model_turn.parts:
            if part.inline_data and part.inline_data.data:
                events.append(LiveEvent(LiveEvent.AUDIO, data=part.inline_data.data))
    if content.interrupted:
        events.append(LiveEvent(LiveEvent.INTERRUPTED))
    if content.turn_complete:
        events.append(LiveEvent(LiveEvent.TURN_COMPLETE))
    return events


class LiveChannel:
    """An open Gemini Live session."""

    def __init__(self, session, input_sample_rate: int):
        self._session = session
        self._mime_type = pcm_mime_type(input_sample_rate)
        self.closed = False

    async def send_audio(self, pcm: bytes) -> None:
        if self.closed or not pcm:
            return
        await self._session.send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=self._mime_type)
        )

    async def send_text(self, text: str) -> None:
        if self.closed:
            return
        await self._session.send_client_content(
            turns=types.Content(role="user", parts=[types.Part(text=text)]),
            turn_complete=True,
        )

    async def events(self) -> AsyncIterator[LiveEvent]:
        # session.receive() stops after each completed turn; keep listening
        # until the channel is closed or the server hangs up.
        while not self.closed:
            received_any = False
            async for message in self._session.receive():
                received_any = True
                for event in events_from_message(message):
                    yield event
            if not received_any:
                return


class LiveAudioGateway:

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_live_model
        self.voice = voice or settings.gemini_live_voice
        self._client: Optional[genai.Client] = None

    def _genai(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise LLMServiceError(
                    message="The live assistant is not configured on this server.",
                    context={"setting": "GEMINI_API_KEY"},
                )
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_config(self) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            system_instruction=LIVE_SYSTEM_INSTRUCTION,
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.voice)
                )
            ),
        )

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[LiveChannel]:
        """
        Open a live session for the duration of the `async with` block.

        Raises:
            LLMServiceError: the key is missing or Gemini refused the connection
        """
        client = self._genai()
        try:
            connection = client.aio.live.connect(model=self.model, config=self.build_config())
            session = await connection.__aenter__()
        except Exception as e:
            logger.error("Gemini Live connection failed: %s", str(e))
            raise LLMServiceError(
                message="Could not connect to the live assistant. Please try again.",
                context={"model": self.model, "error_type": type(e).__name__},
            )

        logger.info("Gemini Live session opened (model=%s, voice=%s)", self.model, self.voice)
        channel = LiveChannel(session, settings.live_input_sample_rate)
        try:
            yield channel
        finally:
            channel.closed = True
            await connection.__aexit__(None, None, None)
            logger.info("Gemini Live session closed")


live_gateway = LiveAudioGateway()
