"""Shared utilities for workflows."""

from .text_utils import count_words, split_sentences, tokenize_words
from .llm_utils import (
    ModelTier,
    extract_json_from_response,
    extract_response_content,
    get_llm,
)

__all__ = [
    # Text utilities
    "count_words",
    "split_sentences",
    "tokenize_words",
    # LLM utilities
    "ModelTier",
    "extract_json_from_response",
    "extract_response_content",
    "get_llm",
]
