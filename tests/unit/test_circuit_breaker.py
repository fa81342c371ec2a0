import pytest

from subtitler.services.circuit_breaker import BreakerState, CircuitBreaker, CircuitOpenError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_opens_after_five_consecutive_failures() -> None:
    breaker = CircuitBreaker(threshold=5, cooldown_s=300, clock=FakeClock())
    for _ in range(4):
        breaker.before_call()
        breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED

    breaker.before_call()
    breaker.record_failure()
    assert breaker.state == BreakerState.OPEN
    assert breaker.is_open()


def test_open_breaker_fails_fast_until_cooldown() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker(threshold=5, cooldown_s=300, clock=clock)
    for _ in range(5):
        breaker.record_failure()

    calls = []
    with pytest.raises(CircuitOpenError) as info:
        breaker.before_call()
        calls.append("provider")
    assert calls == []
    assert info.value.retry_after_s == pytest.approx(300)
    assert "service temporarily unavailable" in str(info.value)

    clock.now += 299
    with pytest.raises(CircuitOpenError):
        breaker.before_call()


def test_half_open_probe_success_closes() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker(threshold=5, cooldown_s=300, clock=clock)
    for _ in range(5):
        breaker.record_failure()

    clock.now += 300
    assert breaker.before_call() == BreakerState.HALF_OPEN
    breaker.record_success()
    assert breaker.state == BreakerState.CLOSED
    assert breaker.failures == 0


def test_half_open_failure_reopens_and_restarts_cooldown() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker(threshold=5, cooldown_s=300, clock=clock)
    for _ in range(5):
        breaker.record_failure()

    clock.now += 301
    breaker.before_call()
    breaker.record_failure()
    assert breaker.state == BreakerState.OPEN

    clock.now += 200
    with pytest.raises(CircuitOpenError):
        breaker.before_call()


def test_success_resets_counter() -> None:
    breaker = CircuitBreaker(threshold=5, clock=FakeClock())
    for _ in range(4):
        breaker.record_failure()
    breaker.record_success()
    for _ in range(4):
        breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED
    assert breaker.snapshot()["failures"] == 4
