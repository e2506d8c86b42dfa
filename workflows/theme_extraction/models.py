"""External model clients used by the extraction stages."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from core.embedding import EmbeddingService
from workflows.shared.llm_utils import CHAT_PROVIDER, ModelTier, get_llm

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    provider_name: str
    max_input_chars: int

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class ChatModel(Protocol):
    async def ainvoke(self, input: Any, **kwargs: Any) -> Any: ...


@dataclass
class ThemeModels:
    """Embedding and chat clients plus the provider names the gateway reports.

    ``labeling_chat`` defaults to ``coding_chat``.
    """

    embedder: Embedder
    coding_chat: ChatModel
    labeling_chat: Optional[ChatModel] = None
    chat_provider: str = CHAT_PROVIDER

    def __post_init__(self):
        if self.labeling_chat is None:
            self.labeling_chat = self.coding_chat

    @property
    def embedding_provider(self) -> str:
        return self.embedder.provider_name

    @classmethod
    def from_env(
        cls,
        coding_tier: ModelTier = ModelTier.SONNET,
        labeling_tier: ModelTier = ModelTier.HAIKU,
    ) -> "ThemeModels":
        """Build clients from environment configuration."""
        embedder = EmbeddingService()
        logger.info(
            f"Theme models: embeddings={embedder.provider_name}/{embedder.model}, "
            f"coding={coding_tier.name}, labeling={labeling_tier.name}"
        )
        return cls(
            embedder=embedder,
            coding_chat=get_llm(coding_tier, max_tokens=8192, temperature=0.0),
            labeling_chat=get_llm(labeling_tier, max_tokens=1024, temperature=0.0),
        )

    async def close(self) -> None:
        close = getattr(self.embedder, "close", None)
        if close is not None:
            await close()
