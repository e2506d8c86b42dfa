"""Model tier definitions and LLM initialization."""

import os
from enum import Enum
from typing import Any

from dotenv import load_dotenv

load_dotenv()

from core.config import configure_langsmith

configure_langsmith()

from langchain_anthropic import ChatAnthropic

CHAT_PROVIDER = "anthropic"


class ModelTier(Enum):
    """Model tiers for different task complexities.

    HAIKU: Quick tasks such as naming a theme
    SONNET: Standard tasks such as extracting codes from source text
    OPUS: Complex tasks requiring deep analysis
    """
    HAIKU = "claude-haiku-4-5-20251001"
    SONNET = "claude-sonnet-4-5-20250929"
    OPUS = "claude-opus-4-5-20251101"


def get_llm(
    tier: ModelTier = ModelTier.SONNET,
    max_tokens: int = 4096,
    temperature: float | None = None,
) -> ChatAnthropic:
    """
    Get a configured Anthropic Claude LLM instance.

    The client's own retries are disabled: callers route requests through
    the theme extraction InferenceGateway, which owns retry and backoff.

    Args:
        tier: Model tier selection (HAIKU, SONNET, OPUS)
        max_tokens: Maximum output tokens
        temperature: Sampling temperature (provider default if None)

    Returns:
        ChatAnthropic instance configured for the specified tier

    Example:
        llm = get_llm(ModelTier.HAIKU, max_tokens=1024, temperature=0.0)
    """
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise ValueError("ANTHROPIC_API_KEY not set")

    kwargs: dict[str, Any] = {
        "model": tier.value,
        "api_key": api_key,
        "max_tokens": max_tokens,
        "max_retries": 0,
    }
    if temperature is not None:
        kwargs["temperature"] = temperature

    return ChatAnthropic(**kwargs)
