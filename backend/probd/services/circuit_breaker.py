"""
ProBD Backend - Circuit Breaker
===============================

What:  In-process circuit breaker shared by the upstream clients
       (Gemini concierge, Stream Video REST).
How:   Counts consecutive failures. Once the threshold is reached every call
       is rejected with CircuitBreakerOpenError until the recovery timeout
       has elapsed; then one trial call is let through.

State Machine:
    CLOSED (normal operation)
        → On failure: increment failure_count
        → When failure_count >= threshold: transition to OPEN
    OPEN (rejecting all requests)
        → All calls raise CircuitBreakerOpenError immediately
        → After recovery_timeout seconds: transition to HALF_OPEN
    HALF_OPEN (testing recovery)
        → On success: transition to CLOSED (reset failure_count)
        → On failure: transition back to OPEN (reset timer)

Not shared between worker processes; each uvicorn worker keeps its own.
"""

import logging
import time
from typing import Optional

from probd.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        name: str = "AI service",
    ):
        """
        Args:
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before testing recovery
            name: Human-readable upstream name used in errors and logs
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker [%s] transitioning to HALF_OPEN after %.1fs",
                    self.name,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining, service=self.name)

        # HALF_OPEN: allow the trial request through
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker [%s] transitioning to CLOSED (service recovered)", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker [%s] returning to OPEN (trial request failed)", self.name)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker [%s] OPENING after %d consecutive failures",
                self.name,
                self.failure_count,
            )
            self.state = self.OPEN
