"""Per-provider circuit breaker.

CLOSED passes calls through. After ``failure_threshold`` consecutive
non-rate-limit failures the circuit OPENs and refuses calls for
``open_timeout`` seconds, then moves to HALF_OPEN where a single probe call
is allowed at a time. ``success_threshold`` probe successes close it again;
any probe failure reopens it.
"""

import logging
import time
from enum import Enum
from typing import Callable

from workflows.theme_extraction.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        open_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.open_timeout = open_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.open_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        state = self.state
        if state == CircuitState.OPEN:
            remaining = self.open_timeout - (self._clock() - self._opened_at)
            raise CircuitOpenError(self.provider, max(0.0, remaining))
        if state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError(self.provider, 0.0)
            self._probe_in_flight = True

    def record_success(self) -> None:
        self._probe_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        else:
            self._failures = 0

    def record_failure(self) -> None:
        self._probe_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return
        # Bounded at threshold + 10
        self._failures = min(self._failures + 1, self.failure_threshold + 10)
        if self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def record_neutral(self) -> None:
        """Call ended without saying anything about provider health (rate limit, cancel)."""
        self._probe_in_flight = False

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info(f"Circuit for {self.provider}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._successes = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._failures = 0
