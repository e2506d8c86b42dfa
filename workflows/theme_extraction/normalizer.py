"""Map heterogeneous source records onto SourceContent.

Papers, video and podcast transcripts, and social posts arrive from retrieval
services in different shapes. Each is reduced to one body of text plus
metadata describing what kind of text it is.
"""

import logging
from typing import Any, Iterable, Optional

from workflows.shared.text_utils import count_words
from workflows.theme_extraction.errors import InputValidationError
from workflows.theme_extraction.types import SourceContent, SourceType

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 50
ABSTRACT_OVERFLOW_WORDS = 250

_TYPE_ALIASES = {
    "paper": SourceType.PAPER,
    "article": SourceType.PAPER,
    "video": SourceType.VIDEO,
    "youtube": SourceType.VIDEO,
    "podcast": SourceType.PODCAST,
    "social": SourceType.SOCIAL,
    "tiktok": SourceType.SOCIAL,
    "instagram": SourceType.SOCIAL,
    "twitter": SourceType.SOCIAL,
}

_BODY_FIELDS = {
    SourceType.VIDEO: ("transcript", "content"),
    SourceType.PODCAST: ("transcript", "content", "description"),
    SourceType.SOCIAL: ("text", "content", "caption"),
}


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return None


def _paper_body(record: dict[str, Any]) -> tuple[str, str]:
    full_text = _first(record, "full_text", "fullText")
    has_full_text = record.get("has_full_text", record.get("hasFullText", bool(full_text)))
    if has_full_text and full_text:
        return full_text, "full_text"

    abstract = _first(record, "abstract", "content")
    if abstract:
        if count_words(abstract) > ABSTRACT_OVERFLOW_WORDS:
            return abstract, "abstract_overflow"
        return abstract, "abstract"
    return "", "none"


def normalize_source(record: dict[str, Any]) -> Optional[SourceContent]:
    """Normalize one raw source record.

    Returns None when the record has too little text to analyse.

    Raises:
        InputValidationError: the record has no id or an unknown type.
    """
    source_id = _first(record, "id", "source_id", "sourceId", "doi")
    if not source_id:
        raise InputValidationError("Source record is missing an id")

    raw_type = str(record.get("type", "paper")).lower()
    source_type = _TYPE_ALIASES.get(raw_type)
    if source_type is None:
        raise InputValidationError(f"Source {source_id} has unknown type '{raw_type}'")

    metadata = dict(record.get("metadata") or {})

    if source_type == SourceType.PAPER:
        body, content_type = _paper_body(record)
    else:
        body = _first(record, *_BODY_FIELDS[source_type]) or ""
        content_type = "transcript" if source_type != SourceType.SOCIAL else "post"

    body = body.strip()
    if len(body) < MIN_CONTENT_CHARS:
        logger.debug(f"Skipping source {source_id}: only {len(body)} chars of content")
        return None

    metadata.setdefault("content_type", content_type)
    metadata["word_count"] = count_words(body)
    keywords = record.get("keywords")
    if keywords:
        metadata.setdefault("keywords", list(keywords))
    url = _first(record, "url", "doi")
    if url:
        metadata.setdefault("url", url)

    return SourceContent(
        id=str(source_id),
        type=source_type,
        title=str(record.get("title") or ""),
        body=body,
        metadata=metadata,
    )


def normalize_sources(
    records: Iterable["dict[str, Any] | SourceContent"],
) -> tuple[list[SourceContent], list[str]]:
    """Normalize a batch of source records.

    Already-normalized SourceContent passes through unchanged.

    Returns:
        Tuple of (normalized sources, ids skipped for lack of content)
    """
    sources: list[SourceContent] = []
    skipped: list[str] = []

    for record in records:
        if isinstance(record, SourceContent):
            sources.append(record)
            continue
        source = normalize_source(record)
        if source is None:
            skipped.append(str(_first(record, "id", "source_id", "sourceId", "doi")))
        else:
            sources.append(source)

    if skipped:
        logger.info(f"Normalized {len(sources)} sources, skipped {len(skipped)} with no usable content")
    return sources, skipped
