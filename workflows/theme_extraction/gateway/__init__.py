"""Inference gateway with rate-limit-aware retry and per-provider circuit breakers."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .gateway import InferenceGateway
from .rate_limit import RateLimitInfo, classify_error, parse_rate_limit_error

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "InferenceGateway",
    "RateLimitInfo",
    "classify_error",
    "parse_rate_limit_error",
]
