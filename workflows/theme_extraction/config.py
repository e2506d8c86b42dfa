"""Configuration for theme extraction."""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ThemeExtractionConfig:
    """Configuration for the theme extraction pipeline.

    Environment Variables:
        THEMES_MAX_CONCURRENT: In-flight model calls across all stages (default: 5)
        THEMES_CALL_TIMEOUT: Seconds before a single model call is abandoned (default: 120)
        THEMES_MAX_RETRIES: Attempts per model call before giving up (default: 3)
        THEMES_BACKOFF_BASE: Base seconds for exponential backoff (default: 5)
        THEMES_MAX_BACKOFF: Upper bound on any single wait (default: 3600)
        THEMES_DEFAULT_RETRY_AFTER: Wait used when a rate-limit message can't be parsed (default: 300)
        THEMES_CODING_BATCH_SIZE: Sources per code-extraction request (default: 5)
        THEMES_EMBEDDING_BATCH_SIZE: Codes per embedding request (default: 50)
        THEMES_AI_LABELING: Label themes with the chat model (default: true)
        THEMES_LABELING_RATE_LIMIT_FALLBACK: Label statistically instead of failing
            when labeling is rate limited (default: true)
        THEMES_RANDOM_SEED: Seed for clustering initialisation (default: 42)
        THEMES_FULL_TEXT_WORDS: Word count at which a source counts as full text (default: 1000)
        THEMES_MAX_SOURCES: Largest accepted request (default: 500)
        THEMES_MAX_SOURCE_CHARS: Largest accepted source body (default: 2000000)
    """

    max_concurrent: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_MAX_CONCURRENT", "5"))
    )
    call_timeout: float = field(
        default_factory=lambda: float(os.environ.get("THEMES_CALL_TIMEOUT", "120"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_MAX_RETRIES", "3"))
    )
    backoff_base: float = field(
        default_factory=lambda: float(os.environ.get("THEMES_BACKOFF_BASE", "5"))
    )
    max_backoff: float = field(
        default_factory=lambda: float(os.environ.get("THEMES_MAX_BACKOFF", "3600"))
    )
    default_retry_after: float = field(
        default_factory=lambda: float(os.environ.get("THEMES_DEFAULT_RETRY_AFTER", "300"))
    )
    coding_batch_size: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_CODING_BATCH_SIZE", "5"))
    )
    embedding_batch_size: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_EMBEDDING_BATCH_SIZE", "50"))
    )
    ai_labeling: bool = field(
        default_factory=lambda: _env_bool("THEMES_AI_LABELING", "true")
    )
    labeling_rate_limit_fallback: bool = field(
        default_factory=lambda: _env_bool("THEMES_LABELING_RATE_LIMIT_FALLBACK", "true")
    )
    random_seed: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_RANDOM_SEED", "42"))
    )
    full_text_word_threshold: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_FULL_TEXT_WORDS", "1000"))
    )
    max_sources: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_MAX_SOURCES", "500"))
    )
    max_source_chars: int = field(
        default_factory=lambda: int(os.environ.get("THEMES_MAX_SOURCE_CHARS", "2000000"))
    )

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.coding_batch_size < 1 or self.embedding_batch_size < 1:
            raise ValueError("batch sizes must be at least 1")


_config: ThemeExtractionConfig | None = None


def get_theme_extraction_config() -> ThemeExtractionConfig:
    """Get global ThemeExtractionConfig instance."""
    global _config
    if _config is None:
        _config = ThemeExtractionConfig()
    return _config
