from __future__ import annotations

from notebatch.pipeline.breaker import CIRCUIT_OPEN_LABEL, CircuitBreaker


def test_failures_count_until_success() -> None:
    breaker = CircuitBreaker()

    assert breaker.record_failure() == 1
    assert breaker.record_failure() == 2
    breaker.record_success()

    assert breaker.consecutive_failures == 0
    assert breaker.is_open is False
    assert breaker.label is None


def test_trip_latches_until_reset() -> None:
    breaker = CircuitBreaker()
    breaker.record_failure()
    breaker.trip()
    breaker.record_success()

    assert breaker.is_open is True
    assert breaker.label == CIRCUIT_OPEN_LABEL

    assert breaker.reset() is True
    assert breaker.is_open is False
    assert breaker.consecutive_failures == 0
    assert breaker.reset() is False


def test_reset_clears_pending_failures() -> None:
    breaker = CircuitBreaker(consecutive_failures=2)
    assert breaker.reset() is True
    assert breaker.consecutive_failures == 0
