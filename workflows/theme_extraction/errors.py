"""Exception classes for theme extraction."""

import math
from typing import Optional

from pydantic import BaseModel


class QuotaUsage(BaseModel):
    """Token quota usage parsed from a provider rate-limit message."""

    limit: int
    used: int
    requested: int

    @property
    def percentage(self) -> float:
        if self.limit <= 0:
            return 0.0
        return round(self.used / self.limit * 100, 1)


class ThemeExtractionError(Exception):
    """Base theme extraction exception."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class RateLimitError(ThemeExtractionError):
    """Provider rate limit still exceeded after all retries.

    Carries the provider's retry-after estimate and, when the provider
    reported it, the quota usage triple.
    """

    def __init__(
        self,
        provider: str,
        retry_after_seconds: float,
        usage: Optional[QuotaUsage] = None,
        details: str = "",
    ):
        self.provider = provider
        self.retry_after_seconds = retry_after_seconds
        self.usage = usage
        self.details = details
        super().__init__(self.user_message, provider=provider)

    @property
    def retry_after_minutes(self) -> int:
        return max(1, math.ceil(self.retry_after_seconds / 60))

    @property
    def usage_percentage(self) -> Optional[float]:
        return self.usage.percentage if self.usage else None

    @property
    def user_message(self) -> str:
        minutes = self.retry_after_minutes
        unit = "minute" if minutes == 1 else "minutes"
        message = f"{self.provider} rate limit reached. Please try again in {minutes} {unit}."
        if self.usage:
            message += (
                f" Quota usage: {self.usage.used:,}/{self.usage.limit:,} tokens "
                f"({self.usage.percentage}%), requested {self.usage.requested:,}."
            )
        return message


class TransientProviderError(ThemeExtractionError):
    """Timeout or 5xx from a provider that persisted through retries."""

    pass


class CircuitOpenError(ThemeExtractionError):
    """Provider circuit breaker is open; the call was refused without trying."""

    def __init__(self, provider: str, retry_after_seconds: float):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"{provider} is temporarily unavailable after repeated failures. "
            f"Retry in {math.ceil(retry_after_seconds)}s.",
            provider=provider,
        )


class MalformedResponseError(ThemeExtractionError):
    """Model returned output that could not be parsed into the expected shape."""

    pass


class InputValidationError(ThemeExtractionError):
    """Caller supplied input the pipeline refuses before any external call."""

    pass


class ExtractionCancelledError(ThemeExtractionError):
    """Extraction was cancelled by its caller."""

    pass
