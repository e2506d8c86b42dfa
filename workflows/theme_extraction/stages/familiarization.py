"""Stage 1: familiarization.

Embeds every source (chunking and averaging long text), counts what was read,
and reports each source as it completes. A failing source is recorded and
skipped; the rest of the batch carries on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from core.embedding import chunk_text_by_sections
from workflows.theme_extraction.config import ThemeExtractionConfig
from workflows.theme_extraction.errors import (
    ExtractionCancelledError,
    MalformedResponseError,
    RateLimitError,
)
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.progress import (
    LiveStatsCounter,
    ProgressReporter,
    sanitize_title,
)
from workflows.theme_extraction.types import (
    ExtractionStage,
    FailedItem,
    LiveStats,
    SourceContent,
    SourceEmbedding,
)

logger = logging.getLogger(__name__)

STAGE = ExtractionStage.FAMILIARIZATION


@dataclass
class FamiliarizationResult:
    embeddings: dict[str, SourceEmbedding]
    stats: LiveStats
    failed: list[FailedItem] = field(default_factory=list)
    last_rate_limit: Optional[RateLimitError] = None


def is_full_text(source: SourceContent, word_threshold: int) -> bool:
    """Whether a source is full text rather than an abstract or snippet.

    Explicit metadata wins; otherwise the word count decides.
    """
    content_type = source.metadata.get("content_type")
    if content_type == "full_text":
        return True
    if content_type in ("abstract", "abstract_overflow", "none"):
        return False
    has_full_text = source.metadata.get("has_full_text")
    if isinstance(has_full_text, bool):
        return has_full_text
    return source.word_count >= word_threshold


async def embed_source(
    source: SourceContent,
    gateway: InferenceGateway,
    models: ThemeModels,
) -> SourceEmbedding:
    """Embed one source, averaging over chunks when the body is long."""
    embedder = models.embedder
    chunks = chunk_text_by_sections(source.body, embedder.max_input_chars)
    if len(chunks) > 1:
        logger.debug(f"Source {source.id}: {len(source.body)} chars in {len(chunks)} chunks")

    vectors = []
    for index, chunk in enumerate(chunks):
        result = await gateway.execute(
            lambda chunk=chunk: embedder.embed_batch([chunk]),
            context=f"embedding source {source.id} chunk {index + 1}/{len(chunks)}",
            provider=models.embedding_provider,
        )
        if len(result) != 1 or not result[0]:
            raise MalformedResponseError(
                f"Expected one embedding for source {source.id}, got {len(result)}",
                provider=models.embedding_provider,
            )
        vectors.append(result[0])

    vector = np.asarray(vectors, dtype=float).mean(axis=0)
    return SourceEmbedding(
        source_id=source.id,
        vector=vector,
        chunk_count=len(chunks),
        magnitude=float(np.linalg.norm(vector)),
    )


async def run_familiarization(
    sources: list[SourceContent],
    gateway: InferenceGateway,
    models: ThemeModels,
    reporter: ProgressReporter,
    config: ThemeExtractionConfig,
) -> FamiliarizationResult:
    """Embed all sources concurrently, reporting once per completed source.

    Raises:
        ExtractionCancelledError: cancellation was requested during the stage
    """
    total = len(sources)
    counter = LiveStatsCounter(total)
    embeddings: dict[str, SourceEmbedding] = {}
    failed: list[FailedItem] = []
    last_rate_limit: Optional[RateLimitError] = None

    reporter.emit(
        STAGE,
        0.0,
        f"Reading {total} sources",
        counter.snapshot(current_operation="Starting familiarization"),
    )

    async def familiarize(source: SourceContent) -> None:
        nonlocal last_rate_limit
        title = sanitize_title(source.title)
        try:
            embedding = await embed_source(source, gateway, models)
        except ExtractionCancelledError:
            return
        except Exception as e:
            if isinstance(e, RateLimitError):
                last_rate_limit = e
            logger.warning(f"Familiarization failed for {source.id}: {type(e).__name__}: {e}")
            failed.append(
                FailedItem(item_id=source.id, stage=STAGE, error=str(e), error_type=type(e).__name__)
            )
            stats = counter.record_failure(source.title)
            reporter.emit(
                STAGE,
                counter.processed / total,
                f"Source {counter.processed}/{total}: {title} (skipped)",
                stats,
                status="item_failed",
                item_id=source.id,
            )
            return

        embeddings[source.id] = embedding
        full_text = is_full_text(source, config.full_text_word_threshold)
        stats = counter.record_source(source.title, full_text, source.word_count)
        kind = "full text" if full_text else "abstract"
        reporter.emit(
            STAGE,
            counter.processed / total,
            f"Read {kind} {counter.processed}/{total}: {title} ({source.word_count:,} words)",
            stats,
            item_id=source.id,
        )

    await asyncio.gather(*(familiarize(source) for source in sources))

    if gateway.cancel_event is not None and gateway.cancel_event.is_set():
        raise ExtractionCancelledError(
            f"Extraction cancelled during familiarization after {counter.processed}/{total} sources"
        )

    final = counter.snapshot(current_operation="Familiarization complete")
    logger.info(
        f"Familiarization complete: {len(embeddings)}/{total} sources embedded "
        f"({final.full_text_read} full text, {final.abstracts_read} abstracts, "
        f"{final.total_words_read:,} words, {len(failed)} failed)"
    )
    reporter.emit(
        STAGE,
        1.0,
        f"Familiarized with {len(embeddings)} sources ({final.total_words_read:,} words)",
        final,
    )
    return FamiliarizationResult(
        embeddings=embeddings,
        stats=final,
        failed=failed,
        last_rate_limit=last_rate_limit,
    )
