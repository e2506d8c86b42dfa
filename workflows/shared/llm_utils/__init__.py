"""LLM utilities shared by workflows.

- Tiered Anthropic Claude model selection (Haiku/Sonnet/Opus)
- Parsing of JSON and text out of chat responses
"""

from .models import CHAT_PROVIDER, ModelTier, get_llm
from .response_parsing import extract_json_from_response, extract_response_content

__all__ = [
    "CHAT_PROVIDER",
    "ModelTier",
    "get_llm",
    "extract_json_from_response",
    "extract_response_content",
]
