"""
ProBD Backend - Gemini Concierge Service
========================================

What:  The ProBD Concierge: a chat assistant that helps visitors find legal,
       financial or medical experts.
How:   Sends the conversation history plus the new message to a Gemini text
       model with a fixed system instruction, wrapped in tenacity retries and
       a circuit breaker.
Who:   Singleton used by the concierge route.

Error Handling Chain:
    API call fails → tenacity retries (exponential backoff + jitter)
    → all retries fail → circuit breaker records a failure → LLMServiceError
    → threshold reached → later calls rejected instantly (CircuitBreakerOpenError)
    → recovery timeout → one trial call (HALF_OPEN) → success → CLOSED
"""

import logging
import time
import uuid
from typing import Dict, List, Sequence

import google.generativeai as genai
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from probd.config import settings
from probd.exceptions import CircuitBreakerOpenError, LLMServiceError, ValidationError
from probd.schemas.concierge import ChatMessage
from probd.services.circuit_breaker import CircuitBreaker
from probd.services.llm_base import ChatLLMService

logger = logging.getLogger(__name__)

CONCIERGE_GREETING = (
    "Hello! I am ProBD Concierge. How can I assist you with your professional needs today?"
)

# Shown when the model answers with no text at all
EMPTY_REPLY_FALLBACK = "Sorry, I missed that."


class GeminiConciergeService(ChatLLMService):
    """Google Gemini implementation of the concierge chat."""

    SYSTEM_INSTRUCTION = (
        "You are ProBD Concierge, a helpful assistant for ProfessionalsBD, an expert "
        "network in Bangladesh. Help users find Legal, Financial, or Medical experts. "
        "Use a professional and friendly tone. Mention BDT (৳) when discussing rates."
    )

    def __init__(self):
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model_name = settings.gemini_concierge_model
        self.model = genai.GenerativeModel(
            self.model_name,
            system_instruction=self.SYSTEM_INSTRUCTION,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
            name="AI concierge",
        )

        logger.info(
            "GeminiConciergeService initialized with model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            self.model_name,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    @staticmethod
    def build_contents(message: str, history: Sequence[ChatMessage]) -> List[Dict]:
        """History turns followed by the new user turn, in Gemini's content format."""
        contents = [
            {"role": turn.role, "parts": [turn.text]}
            for turn in history
            if turn.text and turn.text.strip()
        ]
        contents.append({"role": "user", "parts": [message]})
        return contents

    @staticmethod
    def reply_text(response) -> str:
        """
        Text of the first candidate, or "" when the model returned no parts.

        `response.text` raises ValueError for a candidate without parts, so
        the parts are read directly.
        """
        candidates = response.candidates or []
        if not candidates:
            return ""
        parts = candidates[0].content.parts
        return "".join(part.text for part in parts if part.text).strip()

    async def generate_reply(self, message: str, history: Sequence[ChatMessage]) -> str:
        if not message or not message.strip():
            raise ValidationError(message="Please type a message for the concierge.", field="message")

        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        logger.info("[%s] Concierge request with %d history turns", request_id, len(history))
        contents = self.build_contents(message.strip(), history)

        try:
            reply = await self._call_gemini_with_retry(contents, request_id)
            self.circuit_breaker.record_success()
            return reply or EMPTY_REPLY_FALLBACK

        except CircuitBreakerOpenError:
            raise
        except RetryError as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] All Gemini retries exhausted: %s",
                request_id,
                str(e.last_attempt.exception()) if e.last_attempt else "Unknown error",
            )
            raise LLMServiceError(
                message="The concierge could not answer right now. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini concierge error: %s", request_id, str(e), exc_info=True)
            raise LLMServiceError(
                message="My apologies, I encountered an error. Please try again.",
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(self, contents: List[Dict], request_id: str) -> str:
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                contents,
                request_options={"timeout": 60},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        text = self.reply_text(response)
        logger.info(
            "[%s] Concierge reply in %.0fms, %d chars",
            request_id,
            (time.time() - start_time) * 1000,
            len(text),
        )
        return text

    async def health_check(self) -> bool:
        try:
            models = genai.list_models()
            model_names = [m.name for m in models]
            target = f"models/{self.model_name}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


gemini_service = GeminiConciergeService()
