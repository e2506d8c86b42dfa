"""
Shared testing utilities for theme extraction tests.

- fakes: offline embedding and chat models, rate-limit errors, a recording sleep
"""

from .fakes import (
    FakeChat,
    FakeEmbedder,
    ProviderHTTPError,
    RecordingSleep,
    fake_vector,
    make_source_records,
    rate_limit_error,
)

__all__ = [
    "FakeChat",
    "FakeEmbedder",
    "ProviderHTTPError",
    "RecordingSleep",
    "fake_vector",
    "make_source_records",
    "rate_limit_error",
]
