"""Stage 2: code extraction.

Sources are sent to the chat model in batches; every returned code is
validated on its own so one bad entry never costs the rest of the batch.
Codes are then embedded for clustering.

A rate limit that survives the gateway's retries is fatal here: there is no
useful fallback for missing codes.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from workflows.shared.async_utils import gather_cancel_on_error
from workflows.shared.llm_utils import extract_json_from_response, extract_response_content
from workflows.shared.text_utils import split_sentences, tokenize_words
from workflows.theme_extraction.config import ThemeExtractionConfig
from workflows.theme_extraction.errors import (
    ExtractionCancelledError,
    MalformedResponseError,
    RateLimitError,
)
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.progress import ProgressReporter
from workflows.theme_extraction.prompts import (
    CODING_SYSTEM_PROMPT,
    CODING_USER_TEMPLATE,
    build_source_block,
)
from workflows.theme_extraction.purpose import ResearchPurposeConfig
from workflows.theme_extraction.types import (
    Code,
    ExtractionStage,
    FailedItem,
    SourceContent,
)

logger = logging.getLogger(__name__)

STAGE = ExtractionStage.CODING
MIN_CODES_PER_SOURCE = 5
MAX_CODES_PER_SOURCE = 10
MAX_EXCERPT_CHARS = 300
MAX_LABEL_CHARS = 120


@dataclass
class CodingResult:
    codes: list[Code]
    failed: list[FailedItem] = field(default_factory=list)


def _normalize_space(text: str) -> str:
    return " ".join(text.split())


def find_excerpt(source: SourceContent, code_text: str, quoted: Optional[str] = None) -> str:
    """Pick supporting text for a code from its source.

    Uses the model's quote when it really occurs in the source, otherwise the
    sentence sharing the most words with the code, otherwise the opening of
    the body.
    """
    body = _normalize_space(source.body)
    if quoted:
        quoted = _normalize_space(quoted).strip("\"' ")
        if quoted:
            position = body.lower().find(quoted.lower())
            if position >= 0:
                return body[position : position + len(quoted)][:MAX_EXCERPT_CHARS]

    code_words = set(tokenize_words(code_text))
    best_sentence = ""
    best_overlap = 0
    for sentence in split_sentences(body):
        overlap = len(code_words & set(tokenize_words(sentence)))
        if overlap > best_overlap:
            best_sentence, best_overlap = sentence, overlap

    if best_sentence:
        return best_sentence[:MAX_EXCERPT_CHARS]
    return body[:MAX_EXCERPT_CHARS]


def validate_codes(
    raw_codes: Any,
    lookup: dict[str, SourceContent],
    start_index: Optional[dict[str, int]] = None,
) -> list[Code]:
    """Turn parsed model output into Codes, skipping entries that don't check out.

    ``lookup`` maps the batch's source ids to sources. ``start_index`` carries
    per-source code counters so ids stay unique and deterministic.
    """
    if not isinstance(raw_codes, list):
        raise MalformedResponseError(f"Expected a list of codes, got {type(raw_codes).__name__}")

    counters = start_index if start_index is not None else {}
    codes: list[Code] = []

    for position, item in enumerate(raw_codes):
        if not isinstance(item, dict):
            logger.debug(f"Skipping code #{position}: not an object ({type(item).__name__})")
            continue

        label = item.get("label")
        if not isinstance(label, str) or not label.strip():
            logger.debug(f"Skipping code #{position}: missing or empty label")
            continue

        source_id = item.get("source_id", item.get("sourceId"))
        if not isinstance(source_id, str):
            source_id = str(source_id) if source_id is not None else ""
        source = lookup.get(source_id)
        if source is None:
            logger.debug(f"Skipping code '{label[:40]}': unknown source id '{source_id}'")
            continue

        count = counters.get(source_id, 0)
        if count >= MAX_CODES_PER_SOURCE:
            logger.debug(f"Skipping code '{label[:40]}': {source_id} already has {count} codes")
            continue
        counters[source_id] = count + 1

        label = _normalize_space(label)[:MAX_LABEL_CHARS]
        description = item.get("description")
        description = _normalize_space(description) if isinstance(description, str) else ""
        quoted = item.get("excerpt")
        excerpt = find_excerpt(
            source,
            f"{label} {description}",
            quoted if isinstance(quoted, str) else None,
        )

        codes.append(
            Code(
                id=f"{source_id}-c{count + 1}",
                label=label,
                description=description,
                source_id=source_id,
                excerpts=[excerpt] if excerpt else [],
            )
        )

    return codes


def _parse_codes_response(content: str) -> Any:
    try:
        parsed = extract_json_from_response(content)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Code extraction response is not JSON: {e}") from e
    if isinstance(parsed, dict):
        return parsed.get("codes")
    return parsed


def _batches(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def extract_batch_codes(
    batch: list[SourceContent],
    batch_label: str,
    gateway: InferenceGateway,
    models: ThemeModels,
    purpose: ResearchPurposeConfig,
) -> list[Code]:
    """One chat request for a batch of sources."""
    lookup = {source.id: source for source in batch}
    system = CODING_SYSTEM_PROMPT.format(
        min_codes=MIN_CODES_PER_SOURCE,
        max_codes=MAX_CODES_PER_SOURCE,
        purpose_description=purpose.description or purpose.purpose,
        extraction_focus=purpose.extraction_focus,
    )
    user = CODING_USER_TEMPLATE.format(
        count=len(batch),
        sources="\n\n".join(
            build_source_block(s.id, s.type.value, s.title, s.body) for s in batch
        ),
    )
    messages = [SystemMessage(content=system), HumanMessage(content=user)]

    response = await gateway.execute(
        lambda: models.coding_chat.ainvoke(messages),
        context=f"code extraction {batch_label}",
        provider=models.chat_provider,
    )
    raw_codes = _parse_codes_response(extract_response_content(response))
    codes = validate_codes(raw_codes, lookup)

    coded = {code.source_id for code in codes}
    for source in batch:
        if source.id not in coded:
            logger.warning(f"No valid codes returned for source {source.id} in {batch_label}")
    return codes


async def embed_codes(
    codes: list[Code],
    gateway: InferenceGateway,
    models: ThemeModels,
    config: ThemeExtractionConfig,
) -> tuple[list[Code], list[FailedItem]]:
    """Attach embeddings to codes. Codes that can't be embedded are dropped."""
    embedded: list[Code] = []
    failed: list[FailedItem] = []

    async def embed_chunk(index: int, chunk: list[Code]) -> list[Code]:
        texts = [f"{code.label}: {code.description}" if code.description else code.label for code in chunk]
        try:
            vectors = await gateway.execute(
                lambda: models.embedder.embed_batch(texts),
                context=f"embedding codes batch {index + 1}",
                provider=models.embedding_provider,
            )
            if len(vectors) != len(chunk):
                raise MalformedResponseError(
                    f"Expected {len(chunk)} code embeddings, got {len(vectors)}",
                    provider=models.embedding_provider,
                )
        except (RateLimitError, ExtractionCancelledError):
            raise
        except Exception as e:
            logger.warning(f"Dropping {len(chunk)} codes: embedding batch {index + 1} failed: {e}")
            failed.append(
                FailedItem(
                    item_id=f"code-embeddings-{index + 1}",
                    stage=STAGE,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            )
            return []
        return [
            code.model_copy(update={"embedding": [float(x) for x in vector]})
            for code, vector in zip(chunk, vectors)
        ]

    results = await gather_cancel_on_error(
        embed_chunk(i, chunk) for i, chunk in enumerate(_batches(codes, config.embedding_batch_size))
    )
    for chunk_codes in results:
        embedded.extend(chunk_codes)
    return embedded, failed


async def run_code_extraction(
    sources: list[SourceContent],
    gateway: InferenceGateway,
    models: ThemeModels,
    reporter: ProgressReporter,
    config: ThemeExtractionConfig,
    purpose: ResearchPurposeConfig,
) -> CodingResult:
    """Extract and embed codes for all sources.

    Raises:
        RateLimitError: a batch stayed rate limited through every retry
        ExtractionCancelledError: cancellation was requested during the stage
    """
    batches = _batches(sources, config.coding_batch_size)
    total = len(batches)
    failed: list[FailedItem] = []
    completed = 0
    code_count = 0

    reporter.emit(
        STAGE,
        0.0,
        f"Extracting codes from {len(sources)} sources in {total} batches",
        reporter.last_stats.model_copy(update={"current_operation": "Extracting codes"}),
    )

    async def process(index: int, batch: list[SourceContent]) -> list[Code]:
        nonlocal completed, code_count
        batch_label = f"batch {index + 1}/{total}"
        try:
            codes = await extract_batch_codes(batch, batch_label, gateway, models, purpose)
        except (RateLimitError, ExtractionCancelledError):
            raise
        except Exception as e:
            logger.warning(f"Code extraction {batch_label} failed: {type(e).__name__}: {e}")
            failed.append(
                FailedItem(
                    item_id=f"coding-{batch_label}",
                    stage=STAGE,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            )
            completed += 1
            reporter.emit(
                STAGE,
                completed / (total + 1),
                f"Code extraction {batch_label} failed (skipped)",
                status="item_failed",
                item_id=f"coding-{batch_label}",
            )
            return []

        completed += 1
        code_count += len(codes)
        reporter.emit(
            STAGE,
            completed / (total + 1),
            f"Extracted {len(codes)} codes from {batch_label}",
            reporter.last_stats.model_copy(update={"codes_generated": code_count}),
            item_id=f"coding-{batch_label}",
        )
        return codes

    batch_results = await gather_cancel_on_error(
        process(i, batch) for i, batch in enumerate(batches)
    )
    codes = [code for batch_codes in batch_results for code in batch_codes]
    logger.info(f"Extracted {len(codes)} codes from {len(sources)} sources ({len(failed)} batches failed)")

    if codes:
        reporter.emit(
            STAGE,
            total / (total + 1),
            f"Embedding {len(codes)} codes",
            reporter.last_stats.model_copy(update={"current_operation": "Embedding codes"}),
        )
        codes, embed_failures = await embed_codes(codes, gateway, models, config)
        failed.extend(embed_failures)

    reporter.emit(
        STAGE,
        1.0,
        f"Extracted {len(codes)} codes",
        reporter.last_stats.model_copy(
            update={"codes_generated": len(codes), "current_operation": "Code extraction complete"}
        ),
    )
    return CodingResult(codes=codes, failed=failed)
