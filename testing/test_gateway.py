"""Unit tests for the inference gateway's retry, timeout and concurrency handling."""

import asyncio
import logging

import pytest

from testing.utils import ProviderHTTPError, RecordingSleep, rate_limit_error
from workflows.theme_extraction.errors import (
    CircuitOpenError,
    ExtractionCancelledError,
    RateLimitError,
    TransientProviderError,
)
from workflows.theme_extraction.gateway import CircuitState, InferenceGateway


class Scripted:
    """Operation that raises the scripted errors in order, then returns ``result``."""

    def __init__(self, *errors: Exception, result: str = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        await asyncio.sleep(0)
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryOnRateLimit:
    """Rate-limit retries follow min(retry_after, base * 2^attempt)."""

    async def test_two_rate_limits_then_success(self, gateway, sleep):
        operation = Scripted(rate_limit_error(45), rate_limit_error(45), result="done")

        result = await gateway.execute(operation, context="test call", provider="anthropic")

        assert result == "done"
        assert operation.calls == 3
        assert sleep.delays == [10, 20]
        assert gateway.retries == 2

    async def test_short_retry_after_caps_backoff(self, gateway, sleep):
        operation = Scripted(rate_limit_error(3))

        await gateway.execute(operation, context="test call", provider="anthropic")

        assert sleep.delays == [3]

    async def test_exhaustion_raises_rate_limit_error(self, gateway, sleep):
        operation = Scripted(*(rate_limit_error(45) for _ in range(3)))

        with pytest.raises(RateLimitError) as excinfo:
            await gateway.execute(operation, context="coding batch 1", provider="anthropic")

        error = excinfo.value
        assert error.provider == "anthropic"
        assert error.retry_after_seconds == 45
        assert error.usage is not None and error.usage.limit == 100000
        assert operation.calls == 3
        assert len(sleep.delays) == 2

    async def test_provider_is_whatever_caller_names(self, gateway):
        operation = Scripted(*(rate_limit_error(45) for _ in range(3)))

        with pytest.raises(RateLimitError) as excinfo:
            await gateway.execute(operation, context="embedding", provider="openai")

        assert excinfo.value.provider == "openai"

    async def test_provider_is_required(self, gateway):
        with pytest.raises(ValueError):
            await gateway.execute(Scripted(), context="call", provider="")

    async def test_max_backoff_caps_delay(self, config, sleep):
        config.max_backoff = 7
        gateway = InferenceGateway(config, sleep=sleep)
        operation = Scripted(rate_limit_error(45), rate_limit_error(45))

        await gateway.execute(operation, context="call", provider="anthropic")

        assert sleep.delays == [7, 7]

    async def test_explicit_single_attempt(self, gateway, sleep):
        operation = Scripted(rate_limit_error(45))

        with pytest.raises(RateLimitError):
            await gateway.execute(operation, context="call", provider="anthropic", max_retries=1)

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.parametrize("max_retries", [0, -2])
    async def test_attempts_below_one_rejected(self, gateway, max_retries):
        operation = Scripted()

        with pytest.raises(ValueError, match="at least 1"):
            await gateway.execute(
                operation, context="call", provider="anthropic", max_retries=max_retries
            )

        assert operation.calls == 0

    async def test_log_names_where_retry_after_came_from(self, gateway, caplog):
        operation = Scripted(rate_limit_error(45), ProviderHTTPError(429, "Too many requests"))

        with caplog.at_level(logging.WARNING, logger="workflows.theme_extraction.gateway"):
            await gateway.execute(operation, context="call", provider="anthropic")

        assert "provider retry-after 45s" in caplog.text
        assert "default retry-after 300s" in caplog.text


class TestNonRetryableErrors:
    """Client errors are raised immediately."""

    async def test_bad_request_not_retried(self, gateway, sleep):
        operation = Scripted(ProviderHTTPError(400, "invalid request"))

        with pytest.raises(ProviderHTTPError):
            await gateway.execute(operation, context="call", provider="anthropic")

        assert operation.calls == 1
        assert sleep.delays == []

    async def test_transient_errors_retried_then_wrapped(self, gateway, sleep):
        operation = Scripted(*(ProviderHTTPError(503, "overloaded") for _ in range(3)))

        with pytest.raises(TransientProviderError) as excinfo:
            await gateway.execute(operation, context="call", provider="anthropic")

        assert excinfo.value.provider == "anthropic"
        assert isinstance(excinfo.value.__cause__, ProviderHTTPError)
        assert operation.calls == 3
        assert sleep.delays == [10, 20]

    async def test_transient_then_success(self, gateway):
        operation = Scripted(ProviderHTTPError(502, "bad gateway"), result="recovered")

        assert await gateway.execute(operation, context="call", provider="anthropic") == "recovered"


class TestTimeout:
    """Each attempt has its own timeout, separate from the retry loop."""

    async def test_slow_call_times_out_and_retries(self, config, sleep):
        config.call_timeout = 0.01
        gateway = InferenceGateway(config, sleep=sleep)
        attempts = 0

        async def slow_then_fast() -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                await asyncio.sleep(1)
            return "fast"

        result = await gateway.execute(slow_then_fast, context="call", provider="anthropic")

        assert result == "fast"
        assert attempts == 2


class TestConcurrencyLimit:
    """One semaphore bounds in-flight calls."""

    async def test_never_exceeds_max_concurrent(self, config):
        config.max_concurrent = 2
        gateway = InferenceGateway(config, sleep=RecordingSleep())
        in_flight = 0
        peak = 0

        async def call() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1

        await asyncio.gather(
            *(gateway.execute(call, context=f"call {i}", provider="p") for i in range(10))
        )

        assert peak == 2
        assert gateway.calls == 10


class TestCancellation:
    """No new calls start once the cancel event is set."""

    async def test_cancelled_before_call(self, config, sleep):
        event = asyncio.Event()
        event.set()
        gateway = InferenceGateway(config, sleep=sleep, cancel_event=event)
        operation = Scripted()

        with pytest.raises(ExtractionCancelledError):
            await gateway.execute(operation, context="call", provider="anthropic")

        assert operation.calls == 0

    async def test_cancelled_between_retries(self, config):
        event = asyncio.Event()

        async def cancelling_sleep(delay: float) -> None:
            event.set()

        gateway = InferenceGateway(config, sleep=cancelling_sleep, cancel_event=event)
        operation = Scripted(rate_limit_error(45))

        with pytest.raises(ExtractionCancelledError):
            await gateway.execute(operation, context="call", provider="anthropic")

        assert operation.calls == 1


class TestCircuitIntegration:
    """Repeated transient failures open the provider's circuit."""

    async def test_circuit_opens_and_refuses(self, config, sleep):
        config.max_retries = 1
        gateway = InferenceGateway(config, sleep=sleep)

        for _ in range(5):
            with pytest.raises(TransientProviderError):
                await gateway.execute(
                    Scripted(ProviderHTTPError(500, "down")), context="call", provider="flaky"
                )

        assert gateway.breaker("flaky").state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await gateway.execute(Scripted(), context="call", provider="flaky")

        # Other providers are unaffected
        assert await gateway.execute(Scripted(), context="call", provider="healthy") == "ok"

    async def test_rate_limits_do_not_open_circuit(self, config, sleep):
        config.max_retries = 1
        gateway = InferenceGateway(config, sleep=sleep)

        for _ in range(8):
            with pytest.raises(RateLimitError):
                await gateway.execute(
                    Scripted(rate_limit_error(45)), context="call", provider="busy"
                )

        assert gateway.breaker("busy").state == CircuitState.CLOSED


class TestRequestHandles:
    """Requests sharing one gateway get independent cancellation."""

    async def test_handles_share_limiter_and_breakers(self, gateway):
        first = gateway.for_request(asyncio.Event())
        second = gateway.for_request(asyncio.Event())

        assert first._semaphore is second._semaphore is gateway._semaphore
        assert first.breaker("anthropic") is second.breaker("anthropic")

    async def test_cancelling_one_handle_leaves_the_other_running(self, gateway):
        cancelled, running = asyncio.Event(), asyncio.Event()
        first = gateway.for_request(cancelled)
        second = gateway.for_request(running)
        cancelled.set()

        with pytest.raises(ExtractionCancelledError):
            await first.execute(Scripted(), context="call", provider="anthropic")
        assert await second.execute(Scripted(), context="call", provider="anthropic") == "ok"

        assert gateway.cancel_event is None
        assert (first.calls, second.calls) == (0, 1)

    async def test_concurrency_limit_spans_handles(self, config, sleep):
        config.max_concurrent = 2
        gateway = InferenceGateway(config, sleep=sleep)
        in_flight = peak = 0

        async def call() -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "ok"

        handles = [gateway.for_request(asyncio.Event()) for _ in range(3)]
        await asyncio.gather(
            *(h.execute(call, context=f"call {i}", provider="p") for h in handles for i in range(3))
        )

        assert peak == 2
