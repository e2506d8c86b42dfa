"""Unit tests for the per-provider circuit breaker."""

import pytest

from workflows.theme_extraction.errors import CircuitOpenError
from workflows.theme_extraction.gateway import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker("anthropic", failure_threshold=3, success_threshold=2, open_timeout=60, clock=clock)


def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        breaker.before_call()
        breaker.record_failure()


class TestClosedState:
    """Tests for the CLOSED state."""

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        breaker.before_call()

    def test_opens_after_threshold(self, breaker):
        _trip(breaker)
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_failures(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        assert breaker.failure_count == 0
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_neutral_outcomes_do_not_count(self, breaker):
        for _ in range(10):
            breaker.record_neutral()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_failure_count_is_bounded(self, breaker):
        for _ in range(100):
            breaker.record_failure()
        assert breaker.failure_count == breaker.failure_threshold + 10


class TestOpenState:
    """Tests for the OPEN state."""

    def test_refuses_calls_with_remaining_time(self, breaker, clock):
        _trip(breaker)
        clock.now += 20

        with pytest.raises(CircuitOpenError) as excinfo:
            breaker.before_call()

        assert excinfo.value.provider == "anthropic"
        assert excinfo.value.retry_after_seconds == pytest.approx(40)

    def test_half_opens_after_timeout(self, breaker, clock):
        _trip(breaker)
        clock.now += 60
        assert breaker.state == CircuitState.HALF_OPEN


class TestHalfOpenState:
    """Tests for the HALF_OPEN probe behaviour."""

    def test_single_probe_at_a_time(self, breaker, clock):
        _trip(breaker)
        clock.now += 60

        breaker.before_call()
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_closes_after_enough_successes(self, breaker, clock):
        _trip(breaker)
        clock.now += 60

        breaker.before_call()
        breaker.record_success()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.before_call()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_probe_failure_reopens(self, breaker, clock):
        _trip(breaker)
        clock.now += 60

        breaker.before_call()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_neutral_probe_frees_the_slot(self, breaker, clock):
        _trip(breaker)
        clock.now += 60

        breaker.before_call()
        breaker.record_neutral()
        breaker.before_call()
