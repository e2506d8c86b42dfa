"""Classify provider failures and parse rate-limit details out of them.

Providers report rate limits in different ways: an HTTP 429 status on the
exception or its response, a Retry-After header, or only free text such as
"Please try again in 6m54.72s" or "Limit 100000, Used 99996, Requested 484".
Nothing in here raises on unexpected input.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Literal, Optional

import anthropic
import httpx

from workflows.theme_extraction.errors import QuotaUsage

logger = logging.getLogger(__name__)

MAX_ERROR_TEXT_CHARS = 1000
DEFAULT_RETRY_AFTER_SECONDS = 300.0

ErrorKind = Literal["rate_limit", "transient", "fatal"]

_RETRY_PREFIX = r"(?:try again|retry)\s+(?:in|after)\s+"
_MINUTES_AND_SECONDS = re.compile(_RETRY_PREFIX + r"(\d{1,4})m\s*([\d.]{1,10})s", re.IGNORECASE)
_MILLISECONDS = re.compile(_RETRY_PREFIX + r"([\d.]{1,10})\s*ms\b", re.IGNORECASE)
_SECONDS = re.compile(_RETRY_PREFIX + r"([\d.]{1,10})\s*(?:seconds?|secs?|s\b)", re.IGNORECASE)
_MINUTES = re.compile(_RETRY_PREFIX + r"([\d.]{1,10})\s*(?:minutes?|mins?|m\b)", re.IGNORECASE)
_USAGE = re.compile(
    r"Limit:?\s*([\d,]+)\s*,\s*Used:?\s*([\d,]+)\s*,\s*Requested:?\s*([\d,]+)",
    re.IGNORECASE,
)
_RATE_LIMIT_TEXT = re.compile(
    r"\b429\b|rate[\s_-]?limit|too many requests|quota exceeded", re.IGNORECASE
)


@dataclass(frozen=True)
class RateLimitInfo:
    """What could be learned from one rate-limit failure."""

    retry_after_seconds: float
    usage: Optional[QuotaUsage] = None
    from_provider: bool = False
    details: str = ""


def error_text(error: Any) -> str:
    """Best-effort text of an error, truncated before any pattern matching."""
    if isinstance(error, str):
        text = error
    else:
        text = str(error) or type(error).__name__
        response = getattr(error, "response", None)
        body = getattr(response, "text", None) if response is not None else None
        if isinstance(body, str) and body and body not in text:
            text = f"{text} {body}"
    return text[:MAX_ERROR_TEXT_CHARS]


def status_code_of(error: Any) -> Optional[int]:
    """HTTP status carried by an exception, if any."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None) if response is not None else None
    return value if isinstance(value, int) else None


def classify_error(error: BaseException) -> ErrorKind:
    """Decide whether a failed call is worth retrying, and how."""
    status = status_code_of(error)
    if status == 429:
        return "rate_limit"
    transient_types = (
        asyncio.TimeoutError,
        TimeoutError,
        httpx.TransportError,
        anthropic.APIConnectionError,
    )
    if isinstance(error, transient_types) or isinstance(error.__cause__, transient_types):
        return "transient"
    if status is not None and status >= 500:
        return "transient"
    if status is None and _RATE_LIMIT_TEXT.search(error_text(error)):
        return "rate_limit"
    return "fatal"


def _header_retry_after(error: Any) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if not headers:
        return None
    millis = headers.get("retry-after-ms")
    if millis:
        try:
            return float(millis) / 1000
        except ValueError:
            pass
    seconds = headers.get("retry-after")
    if seconds:
        try:
            return float(seconds)
        except ValueError:
            # HTTP-date form; fall through to text parsing
            return None
    return None


def _text_retry_after(text: str) -> Optional[float]:
    match = _MINUTES_AND_SECONDS.search(text)
    if match:
        return int(match.group(1)) * 60 + float(match.group(2))
    match = _MILLISECONDS.search(text)
    if match:
        return float(match.group(1)) / 1000
    match = _SECONDS.search(text)
    if match:
        return float(match.group(1))
    match = _MINUTES.search(text)
    if match:
        return float(match.group(1)) * 60
    return None


def _usage(text: str) -> Optional[QuotaUsage]:
    match = _USAGE.search(text)
    if not match:
        return None
    limit, used, requested = (int(group.replace(",", "")) for group in match.groups())
    return QuotaUsage(limit=limit, used=used, requested=requested)


def parse_rate_limit_error(
    error: Any,
    default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
) -> RateLimitInfo:
    """Extract retry-after and quota usage from a rate-limit failure.

    Falls back to ``default_retry_after`` when the provider gave no usable
    estimate. Malformed input is logged, never raised.
    """
    text = ""
    try:
        text = error_text(error)
        retry_after = _header_retry_after(error)
        if retry_after is None:
            retry_after = _text_retry_after(text)
        usage = _usage(text)
    except (ValueError, TypeError, AttributeError, OverflowError) as e:
        logger.warning(f"Could not parse rate limit error ({e}); using {default_retry_after}s")
        return RateLimitInfo(retry_after_seconds=default_retry_after, details=text)

    if retry_after is None or not math.isfinite(retry_after) or retry_after <= 0:
        logger.warning(
            f"No retry-after estimate in rate limit error; using {default_retry_after}s. "
            f"Error: {text[:200]}"
        )
        return RateLimitInfo(retry_after_seconds=default_retry_after, usage=usage, details=text)

    return RateLimitInfo(
        retry_after_seconds=retry_after,
        usage=usage,
        from_provider=True,
        details=text,
    )
