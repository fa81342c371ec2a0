"""Retry classification, backoff policy and the per-chunk attempt state machine."""

from __future__ import annotations

import asyncio
import logging
import random
import socket
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from subtitler.schemas.config import RetryConfig
from subtitler.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from subtitler.services.openai_clients import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MARKERS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "econnrefused",
    "connection error",
    "connection reset",
    "timed out",
    "timeout",
    "socket hang up",
)


class QualityRejectedError(RuntimeError):
    """Provider answered, but the transcript was judged unusable."""


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, QualityRejectedError):
        return True
    if isinstance(exc, ProviderError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, socket.gaierror)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def is_connection_error(exc: BaseException) -> bool:
    """Retryable transport trouble that is not a quota or auth refusal."""
    if isinstance(exc, QualityRejectedError):
        return False
    if isinstance(exc, ProviderError) and exc.is_quota_error():
        return False
    return is_retryable_error(exc) and "quota" not in str(exc).lower()


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        jitter_ms: int = 1000,
        max_delay_ms: int = 60_000,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_ms = base_delay_ms
        self.jitter_ms = jitter_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg: RetryConfig, max_attempts: Optional[int] = None) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts if max_attempts is not None else cfg.max_attempts,
            base_delay_ms=cfg.base_delay_ms,
            jitter_ms=cfg.jitter_ms,
            max_delay_ms=cfg.max_delay_ms,
        )

    def delay_s(self, attempt: int) -> float:
        delay_ms = (2**attempt) * self.base_delay_ms + self._rng.uniform(0, self.jitter_ms)
        return min(delay_ms, self.max_delay_ms) / 1000


class ChunkState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED_PLACEHOLDER = "failed_placeholder"


@dataclass
class ChunkTask:
    index: int
    start: float = 0.0
    duration: float = 0.0
    path: Optional[Path] = None
    state: ChunkState = ChunkState.PENDING
    attempts: int = 0
    history: list[ChunkState] = field(default_factory=list)
    last_error: Optional[BaseException] = None

    @property
    def end(self) -> float:
        return self.start + self.duration

    def transition(self, state: ChunkState) -> None:
        self.state = state
        self.history.append(state)


class ChunkController:
    """Drive one :class:`ChunkTask` through its attempts.

    ``call`` performs a single provider request. ``accept`` may veto a
    successful answer (quality gate); a veto is retried like a transient
    error but is not charged to the breaker, since the provider did respond.
    When the task ends in FAILED_PLACEHOLDER the last error is re-raised and
    the caller decides what stands in for the chunk.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self.breaker = breaker
        self._sleep = sleep

    async def run(
        self,
        task: ChunkTask,
        call: Callable[[], Awaitable[T]],
        accept: Optional[Callable[[T], bool]] = None,
    ) -> T:
        while True:
            task.attempts += 1
            if self.breaker is not None:
                try:
                    self.breaker.before_call()
                except CircuitOpenError as exc:
                    task.last_error = exc
                    task.transition(ChunkState.FAILED_PLACEHOLDER)
                    raise

            task.transition(ChunkState.IN_FLIGHT)
            try:
                result = await call()
            except Exception as exc:
                if self.breaker is not None:
                    self.breaker.record_failure()
                task.last_error = exc
                logger.warning(
                    "Chunk %d attempt %d/%d failed: %s",
                    task.index,
                    task.attempts,
                    self.policy.max_attempts,
                    exc,
                )
                if is_retryable_error(exc) and task.attempts < self.policy.max_attempts:
                    await self._backoff(task)
                    continue
                task.transition(ChunkState.FAILED_PLACEHOLDER)
                raise

            if self.breaker is not None:
                self.breaker.record_success()

            if accept is not None and not accept(result) and task.attempts < self.policy.max_attempts:
                task.last_error = QualityRejectedError(f"chunk {task.index} transcript rejected by quality gate")
                logger.warning("Chunk %d attempt %d rejected by quality gate", task.index, task.attempts)
                await self._backoff(task)
                continue

            task.transition(ChunkState.SUCCEEDED)
            return result

    async def _backoff(self, task: ChunkTask) -> None:
        task.transition(ChunkState.RETRYING)
        delay = self.policy.delay_s(task.attempts)
        logger.info("Retrying chunk %d in %.1fs", task.index, delay)
        await self._sleep(delay)
