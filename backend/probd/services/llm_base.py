"""
ProBD Backend - Abstract Chat LLM Interface
===========================================

What:  Contract for the text model behind the concierge widget.
How:   Concrete providers subclass ChatLLMService. The concierge route only
       depends on this interface, so tests swap in a stub.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from probd.schemas.concierge import ChatMessage


class ChatLLMService(ABC):
    """
    Abstract interface for a multi-turn chat model.

    Contract:
        - generate_reply() gets the previous turns (oldest first) and the new
          user message, and returns the model's text
        - provider errors are wrapped in LLMServiceError
        - an open circuit surfaces as CircuitBreakerOpenError
    """

    @abstractmethod
    async def generate_reply(self, message: str, history: Sequence[ChatMessage]) -> str:
        """
        Produce the next model turn.

        Returns:
            The reply text, or a short fallback line when the model said nothing.

        Raises:
            ValidationError: message is blank
            LLMServiceError: provider failed after all retries
            CircuitBreakerOpenError: too many recent failures
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability probe that does not consume generation quota."""
        ...
