"""
Embedding providers for theme extraction.

Supports OpenAI and Ollama. Providers only translate HTTP failures into
EmbeddingError (keeping the status code and response body); retries and
rate-limit handling belong to the caller.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# OpenAI text-embedding-3-small has 8192 token limit
# Use conservative estimate: ~4 chars per token
OPENAI_MAX_TOKENS = 8192
CHARS_PER_TOKEN_ESTIMATE = 4
SAFE_CHAR_LIMIT = (OPENAI_MAX_TOKENS - 200) * CHARS_PER_TOKEN_ESTIMATE  # ~32k chars


def _split_oversized(paragraph: str, max_chars: int) -> list[str]:
    """Split a paragraph longer than max_chars at sentence boundaries."""
    sentences = re.split(r"(?<=[.!?])\s+", paragraph)
    pieces: list[str] = []
    current = ""
    for sentence in sentences:
        while len(sentence) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(sentence[:max_chars])
            sentence = sentence[max_chars:]
        if current and len(current) + len(sentence) + 1 > max_chars:
            pieces.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        pieces.append(current)
    return pieces


def chunk_text_by_sections(text: str, max_chars: int = SAFE_CHAR_LIMIT) -> list[str]:
    """
    Split text into chunks that fit within the embedding input limit.

    Splits on markdown headers (## ) first, then paragraphs, then sentences.
    No text is dropped.
    """
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current = ""

    for section in re.split(r"\n(?=## )", text):
        if not section.strip():
            continue
        if len(current) + len(section) + 2 <= max_chars:
            current = f"{current}\n\n{section}" if current else section
            continue
        if current:
            chunks.append(current)
            current = ""
        if len(section) <= max_chars:
            current = section
            continue

        for para in section.split("\n\n"):
            if len(para) > max_chars:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(_split_oversized(para, max_chars))
            elif len(current) + len(para) + 2 <= max_chars:
                current = f"{current}\n\n{para}" if current else para
            else:
                chunks.append(current)
                current = para

    if current:
        chunks.append(current)

    return [c.strip() for c in chunks if c.strip()]


class EmbeddingError(Exception):
    """Error generating embeddings.

    ``status_code`` and ``response_text`` are set when the provider answered
    with an HTTP error, so callers can tell a 429 from a 500.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        response_text: str | None = None,
    ):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.response_text = response_text
        self.details: dict[str, Any] = {}
        if provider:
            self.details["provider"] = provider
        if status_code is not None:
            self.details["status_code"] = status_code
        super().__init__(f"Embedding generation failed: {message}")


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        pass

    async def close(self):
        """Release provider resources."""
        pass


class OpenAIEmbeddings(EmbeddingProvider):
    """OpenAI embeddings provider."""

    name = "openai"

    def __init__(self, model: str = "text-embedding-3-small", api_key: str | None = None):
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise EmbeddingError(
                "OPENAI_API_KEY not set. Set the environment variable or pass api_key.",
                provider=self.name,
            )
        self._client = httpx.AsyncClient(
            base_url="https://api.openai.com/v1",
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=60.0,
        )

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in one request."""
        if not texts:
            return []
        logger.debug(f"Requesting {len(texts)} embeddings (model={self.model})")
        try:
            response = await self._client.post(
                "/embeddings",
                json={"input": texts, "model": self.model},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.debug(f"OpenAI API error: {e.response.status_code} - {e.response.text[:500]}")
            raise EmbeddingError(
                f"OpenAI API error: {e.response.status_code} - {e.response.text[:1000]}",
                provider=self.name,
                status_code=e.response.status_code,
                response_text=e.response.text,
            ) from e

        data = response.json()
        ordered = sorted(data["data"], key=lambda x: x["index"])
        return [item["embedding"] for item in ordered]

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()


class OllamaEmbeddings(EmbeddingProvider):
    """Ollama local embeddings provider."""

    name = "ollama"

    def __init__(
        self,
        model: str = "nomic-embed-text",
        host: str = "http://localhost:11434",
    ):
        self.model = model
        self.host = host
        self._client = httpx.AsyncClient(base_url=host, timeout=120.0)

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        try:
            response = await self._client.post(
                "/api/embeddings",
                json={"model": self.model, "prompt": text},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Ollama API error: {e.response.status_code}",
                provider=self.name,
                status_code=e.response.status_code,
                response_text=e.response.text,
            ) from e
        except httpx.ConnectError as e:
            logger.error(f"Cannot connect to Ollama at {self.host}")
            raise EmbeddingError(
                f"Cannot connect to Ollama at {self.host}. Is Ollama running?",
                provider=self.name,
            ) from e
        return response.json()["embedding"]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts (sequential for Ollama)."""
        return [await self.embed(text) for text in texts]

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()


class EmbeddingService:
    """
    Configurable embedding service.

    Configuration via environment variables:
    - THALA_EMBEDDING_PROVIDER: 'openai' or 'ollama' (default: 'openai')
    - THALA_EMBEDDING_MODEL: model name (default depends on provider)
    - OPENAI_API_KEY: required for OpenAI provider
    - THALA_OLLAMA_HOST: Ollama host (default: http://localhost:11434)
    """

    max_input_chars = SAFE_CHAR_LIMIT

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
    ):
        provider = provider or os.environ.get("THALA_EMBEDDING_PROVIDER", "openai")
        self.provider_name = provider

        if provider == "openai":
            model = model or os.environ.get("THALA_EMBEDDING_MODEL", "text-embedding-3-small")
            self.model = model
            self._provider: EmbeddingProvider = OpenAIEmbeddings(model=model)
            logger.info(f"Initialized OpenAI embeddings with model={model}")
        elif provider == "ollama":
            model = model or os.environ.get("THALA_EMBEDDING_MODEL", "nomic-embed-text")
            host = os.environ.get("THALA_OLLAMA_HOST", "http://localhost:11434")
            self.model = model
            self._provider = OllamaEmbeddings(model=model, host=host)
            logger.info(f"Initialized Ollama embeddings with model={model}, host={host}")
        else:
            raise EmbeddingError(
                f"Unknown embedding provider: {provider}. Use 'openai' or 'ollama'."
            )

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        return await self._provider.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        return await self._provider.embed_batch(texts)

    async def close(self):
        """Close provider resources."""
        await self._provider.close()
