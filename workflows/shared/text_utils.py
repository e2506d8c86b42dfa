"""Text processing utilities for workflows."""

import re

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9\"'(\[])")
_WORD_RE = re.compile(r"[a-z][a-z0-9'-]*[a-z0-9]|[a-z]")


def count_words(text: str) -> int:
    """Count words in text (split on whitespace)."""
    return len(text.split())


def split_sentences(text: str) -> list[str]:
    """Split prose into sentences on terminal punctuation."""
    text = " ".join(text.split())
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def tokenize_words(text: str) -> list[str]:
    """Lowercased word tokens, keeping internal hyphens and apostrophes."""
    return _WORD_RE.findall(text.lower())
