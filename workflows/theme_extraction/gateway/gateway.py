"""Inference gateway: the single path for every external model call.

One gateway can serve many extraction requests; its semaphore caps in-flight
calls across familiarization, coding and labeling of all of them. Each request
runs on a handle from ``for_request()`` carrying its own cancel event. A slot
is held only while a call is in flight, never while sleeping between retries.
"""

import asyncio
import copy
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from workflows.theme_extraction.config import (
    ThemeExtractionConfig,
    get_theme_extraction_config,
)
from workflows.theme_extraction.errors import (
    ExtractionCancelledError,
    RateLimitError,
    TransientProviderError,
)
from workflows.theme_extraction.gateway.circuit_breaker import CircuitBreaker
from workflows.theme_extraction.gateway.rate_limit import (
    classify_error,
    error_text,
    parse_rate_limit_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferenceGateway:
    """Bounded-concurrency, timeout and rate-limit-aware retry for model calls.

    Args:
        config: Limits and backoff settings (defaults to the global config)
        sleep: Awaitable sleep used between retries
        clock: Monotonic clock used by circuit breakers
        cancel_event: Once set, no further calls or retries are started
    """

    def __init__(
        self,
        config: Optional[ThemeExtractionConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.config = config or get_theme_extraction_config()
        self._sleep = sleep
        self._clock = clock
        self.cancel_event = cancel_event
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._breakers: dict[str, CircuitBreaker] = {}
        self.calls = 0
        self.retries = 0

    def breaker(self, provider: str) -> CircuitBreaker:
        if provider not in self._breakers:
            self._breakers[provider] = CircuitBreaker(provider, clock=self._clock)
        return self._breakers[provider]

    def for_request(self, cancel_event: asyncio.Event) -> "InferenceGateway":
        """Per-request handle sharing this gateway's limiter and circuit breakers.

        Cancellation and the call counters belong to the handle, so requests
        running on one shared gateway can be cancelled independently.
        """
        handle = copy.copy(self)
        handle.cancel_event = cancel_event
        handle.calls = 0
        handle.retries = 0
        return handle

    def _raise_if_cancelled(self, context: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ExtractionCancelledError(f"Extraction cancelled before {context}")

    def backoff_delay(self, attempt: int, retry_after: float) -> float:
        """Wait before the next attempt: min(retry_after, base * 2^attempt), capped."""
        exponential = self.config.backoff_base * (2**attempt)
        return min(retry_after, exponential, self.config.max_backoff)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: str,
        provider: str,
        max_retries: Optional[int] = None,
    ) -> T:
        """Run ``operation`` with retry on rate limits and transient failures.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            context: What the call is for, used in logs
            provider: Provider being called, carried into any RateLimitError
            max_retries: Total attempts (defaults to config.max_retries)

        Returns:
            Whatever ``operation`` returns

        Raises:
            RateLimitError: still rate limited after the final attempt
            TransientProviderError: timeouts or 5xx on every attempt
            CircuitOpenError: provider's circuit breaker is open
            ExtractionCancelledError: cancel_event was set before a call started
            Exception: any other error from ``operation``, unretried
        """
        if not provider:
            raise ValueError("provider must be named explicitly for every gateway call")

        attempts = self.config.max_retries if max_retries is None else max_retries
        if attempts < 1:
            raise ValueError(f"max_retries must be at least 1, got {attempts}")
        breaker = self.breaker(provider)

        for attempt in range(1, attempts + 1):
            self._raise_if_cancelled(context)
            breaker.before_call()
            try:
                async with self._semaphore:
                    self._raise_if_cancelled(context)
                    self.calls += 1
                    result = await asyncio.wait_for(operation(), timeout=self.config.call_timeout)
            except (asyncio.CancelledError, ExtractionCancelledError):
                breaker.record_neutral()
                raise
            except Exception as e:
                kind = classify_error(e)

                if kind == "fatal":
                    breaker.record_failure()
                    raise

                if kind == "rate_limit":
                    breaker.record_neutral()
                    info = parse_rate_limit_error(e, self.config.default_retry_after)
                    source = "provider" if info.from_provider else "default"
                    if attempt >= attempts:
                        error = RateLimitError(
                            provider,
                            retry_after_seconds=info.retry_after_seconds,
                            usage=info.usage,
                            details=info.details,
                        )
                        logger.error(
                            f"[{provider}] Rate limit retries exhausted for {context} "
                            f"after {attempts} attempts ({source} retry-after "
                            f"{info.retry_after_seconds:.0f}s): {error.user_message}"
                        )
                        raise error from e
                    delay = self.backoff_delay(attempt, info.retry_after_seconds)
                    usage = f", quota {info.usage.percentage}% used" if info.usage else ""
                    logger.warning(
                        f"[{provider}] Rate limited during {context} "
                        f"(attempt {attempt}/{attempts}{usage}, {source} retry-after "
                        f"{info.retry_after_seconds:.0f}s). Retrying in {delay:.1f}s"
                    )
                else:
                    breaker.record_failure()
                    if attempt >= attempts:
                        logger.error(
                            f"[{provider}] {context} failed after {attempts} attempts: "
                            f"{error_text(e)[:200]}"
                        )
                        raise TransientProviderError(
                            f"{provider} call for {context} failed after {attempts} attempts",
                            provider=provider,
                        ) from e
                    delay = self.backoff_delay(attempt, self.config.default_retry_after)
                    logger.warning(
                        f"[{provider}] Transient failure during {context} "
                        f"(attempt {attempt}/{attempts}): {type(e).__name__}. "
                        f"Retrying in {delay:.1f}s"
                    )

                self.retries += 1
                await self._sleep(delay)
            else:
                breaker.record_success()
                return result

        # range() always runs at least once and every path returns or raises
        raise AssertionError("unreachable")
