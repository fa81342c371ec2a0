import asyncio
import random

import httpx
import pytest

from subtitler.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from subtitler.services.openai_clients import ProviderError
from subtitler.services.retry import (
    ChunkController,
    ChunkState,
    ChunkTask,
    RetryPolicy,
    is_connection_error,
    is_retryable_error,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedCall:
    """Raise or return the scripted outcomes in order."""

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def test_backoff_delay_doubles_and_caps() -> None:
    policy = RetryPolicy(jitter_ms=0)
    assert policy.delay_s(1) == 2.0
    assert policy.delay_s(3) == 8.0
    assert policy.delay_s(10) == 60.0


def test_backoff_jitter_is_bounded() -> None:
    policy = RetryPolicy(rng=random.Random(7))
    for attempt in range(1, 5):
        delay = policy.delay_s(attempt)
        assert 2**attempt <= delay <= 2**attempt + 1


def test_retry_classification() -> None:
    assert is_retryable_error(ProviderError("rate", status_code=429))
    assert is_retryable_error(ProviderError("down", status_code=503))
    assert not is_retryable_error(ProviderError("bad request", status_code=400))
    assert not is_retryable_error(ProviderError("unauthorized", status_code=401))
    assert is_retryable_error(httpx.ReadTimeout("read timed out"))
    assert is_retryable_error(httpx.ConnectError("connection refused"))
    assert is_retryable_error(ConnectionResetError())
    assert is_retryable_error(RuntimeError("socket hang up"))
    assert not is_retryable_error(CircuitOpenError(10))
    assert not is_retryable_error(ValueError("boom"))


def test_quota_errors_are_not_connection_errors() -> None:
    quota = ProviderError("You exceeded your current quota", status_code=429, code="insufficient_quota")
    assert is_retryable_error(quota)
    assert not is_connection_error(quota)
    assert is_connection_error(httpx.ConnectError("reset"))


def test_retryable_failure_then_success() -> None:
    sleep = RecordingSleep()
    breaker = CircuitBreaker()
    controller = ChunkController(RetryPolicy(jitter_ms=0), breaker, sleep)
    task = ChunkTask(index=6)
    call = ScriptedCall(httpx.ConnectError("reset"), {"text": "ok"})

    result = asyncio.run(controller.run(task, call))

    assert result == {"text": "ok"}
    assert task.history == [ChunkState.IN_FLIGHT, ChunkState.RETRYING, ChunkState.IN_FLIGHT, ChunkState.SUCCEEDED]
    assert sleep.delays == [2.0]
    assert breaker.failures == 0


def test_non_retryable_failure_stops_immediately() -> None:
    sleep = RecordingSleep()
    breaker = CircuitBreaker()
    controller = ChunkController(RetryPolicy(), breaker, sleep)
    task = ChunkTask(index=1)
    call = ScriptedCall(ProviderError("bad request", status_code=400))

    with pytest.raises(ProviderError):
        asyncio.run(controller.run(task, call))

    assert call.calls == 1
    assert sleep.delays == []
    assert task.state == ChunkState.FAILED_PLACEHOLDER
    assert breaker.failures == 1


def test_attempts_are_capped() -> None:
    sleep = RecordingSleep()
    controller = ChunkController(RetryPolicy(max_attempts=5, jitter_ms=0), CircuitBreaker(threshold=10), sleep)
    task = ChunkTask(index=2)
    call = ScriptedCall(*[httpx.ReadTimeout("slow") for _ in range(5)])

    with pytest.raises(httpx.ReadTimeout):
        asyncio.run(controller.run(task, call))

    assert call.calls == 5
    assert task.attempts == 5
    assert sleep.delays == [2.0, 4.0, 8.0, 16.0]
    assert task.state == ChunkState.FAILED_PLACEHOLDER


def test_open_breaker_skips_provider() -> None:
    breaker = CircuitBreaker(threshold=1)
    breaker.record_failure()
    controller = ChunkController(RetryPolicy(), breaker, RecordingSleep())
    task = ChunkTask(index=3)
    call = ScriptedCall({"text": "never"})

    with pytest.raises(CircuitOpenError):
        asyncio.run(controller.run(task, call))

    assert call.calls == 0
    assert task.history == [ChunkState.FAILED_PLACEHOLDER]


def test_quality_veto_retries_without_charging_breaker() -> None:
    sleep = RecordingSleep()
    breaker = CircuitBreaker()
    controller = ChunkController(RetryPolicy(jitter_ms=0), breaker, sleep)
    task = ChunkTask(index=4)
    call = ScriptedCall("garbage", "good")

    result = asyncio.run(controller.run(task, call, accept=lambda value: value == "good"))

    assert result == "good"
    assert call.calls == 2
    assert breaker.failures == 0
    assert len(sleep.delays) == 1


def test_quality_veto_on_last_attempt_keeps_answer() -> None:
    controller = ChunkController(RetryPolicy(max_attempts=2, jitter_ms=0), None, RecordingSleep())
    task = ChunkTask(index=5)
    call = ScriptedCall("garbage", "still garbage")

    result = asyncio.run(controller.run(task, call, accept=lambda value: False))

    assert result == "still garbage"
    assert task.state == ChunkState.SUCCEEDED
