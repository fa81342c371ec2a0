"""Process-wide circuit breaker guarding the transcription provider."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    HALF_OPEN = "HALF_OPEN"
    OPEN = "OPEN"


class CircuitOpenError(RuntimeError):
    def __init__(self, retry_after_s: float) -> None:
        super().__init__(
            f"Circuit breaker open - service temporarily unavailable (retry in {retry_after_s:.0f}s)"
        )
        self.retry_after_s = retry_after_s


class CircuitBreaker:
    """CLOSED -> OPEN after ``threshold`` consecutive failures, OPEN -> HALF_OPEN after ``cooldown_s``.

    All methods are synchronous so a check or a record never straddles an
    ``await`` in the calling coroutine.
    """

    def __init__(
        self,
        threshold: int = 5,
        cooldown_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = max(1, int(threshold))
        self.cooldown_s = float(cooldown_s)
        self._clock = clock
        self.failures = 0
        self.last_failure: Optional[float] = None
        self.state = BreakerState.CLOSED

    def reconfigure(self, threshold: int, cooldown_s: float) -> None:
        """New limits apply from the next failure; state and counters are kept."""
        self.threshold = max(1, int(threshold))
        self.cooldown_s = float(cooldown_s)

    def _cooldown_remaining(self) -> float:
        if self.last_failure is None:
            return 0.0
        return max(0.0, self.cooldown_s - (self._clock() - self.last_failure))

    def before_call(self) -> BreakerState:
        """Raise :class:`CircuitOpenError` while open; move to HALF_OPEN once the cooldown elapsed."""
        if self.state == BreakerState.OPEN:
            remaining = self._cooldown_remaining()
            if remaining > 0:
                raise CircuitOpenError(remaining)
            self.state = BreakerState.HALF_OPEN
            logger.info("Circuit breaker half-open, probing provider")
        return self.state

    def is_open(self) -> bool:
        return self.state == BreakerState.OPEN and self._cooldown_remaining() > 0

    def record_success(self) -> None:
        if self.state != BreakerState.CLOSED:
            logger.info("Circuit breaker closed after successful call")
        self.failures = 0
        self.state = BreakerState.CLOSED

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure = self._clock()
        if self.state == BreakerState.HALF_OPEN or self.failures >= self.threshold:
            if self.state != BreakerState.OPEN:
                logger.warning("Circuit breaker opened after %d consecutive failures", self.failures)
            self.state = BreakerState.OPEN

    def snapshot(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "cooldown_remaining_s": round(self._cooldown_remaining(), 1) if self.state == BreakerState.OPEN else 0.0,
        }
