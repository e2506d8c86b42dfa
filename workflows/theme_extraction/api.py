"""Main entry point for theme extraction."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from langsmith import traceable

from workflows.theme_extraction.config import (
    ThemeExtractionConfig,
    get_theme_extraction_config,
)
from workflows.theme_extraction.errors import (
    ExtractionCancelledError,
    InputValidationError,
    RateLimitError,
    ThemeExtractionError,
)
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.graph import ExtractionRuntime, theme_extraction_graph
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.normalizer import normalize_sources
from workflows.theme_extraction.progress import ProgressBroadcaster, ProgressReporter
from workflows.theme_extraction.purpose import ResearchPurpose, ResearchPurposeConfig, get_purpose_config
from workflows.theme_extraction.state import build_initial_state
from workflows.theme_extraction.types import (
    ExtractionStage,
    ExtractionStats,
    FailedItem,
    SourceContent,
    ThemeExtractionResult,
)

logger = logging.getLogger(__name__)

# Cancellation events for requests currently running in this process
_active: dict[str, asyncio.Event] = {}


def cancel_extraction(request_id: str) -> bool:
    """Request cooperative cancellation of a running extraction.

    Returns:
        True if the request was running and has been signalled
    """
    event = _active.get(request_id)
    if event is None:
        return False
    event.set()
    logger.info(f"Cancellation requested for extraction {request_id}")
    return True


def _prepare_sources(
    records: list[Any], config: ThemeExtractionConfig
) -> tuple[list[SourceContent], list[FailedItem]]:
    if len(records) > config.max_sources:
        raise InputValidationError(
            f"{len(records)} sources exceeds the limit of {config.max_sources}"
        )

    for record in records:
        if isinstance(record, SourceContent) and not record.body.strip():
            raise InputValidationError(f"Source {record.id} has an empty body")

    sources, skipped = normalize_sources(records)
    if not sources:
        raise InputValidationError(
            f"None of the {len(records)} sources has enough content to analyse"
        )

    seen: set[str] = set()
    for source in sources:
        if source.id in seen:
            raise InputValidationError(f"Duplicate source id '{source.id}'")
        seen.add(source.id)
        if len(source.body) > config.max_source_chars:
            raise InputValidationError(
                f"Source {source.id} is {len(source.body):,} chars; "
                f"limit is {config.max_source_chars:,}"
            )

    failed = [
        FailedItem(
            item_id=source_id,
            stage=ExtractionStage.FAMILIARIZATION,
            error="Not enough content to analyse",
            error_type="InsufficientContent",
        )
        for source_id in skipped
    ]
    return sources, failed


@traceable(run_type="chain", name="ThemeExtraction")
async def extract_themes(
    sources: Iterable["dict[str, Any] | SourceContent"],
    purpose: "ResearchPurpose | str | ResearchPurposeConfig",
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    models: Optional[ThemeModels] = None,
    settings: Optional[ThemeExtractionConfig] = None,
    broadcaster: Optional[ProgressBroadcaster] = None,
    gateway: Optional[InferenceGateway] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ThemeExtractionResult:
    """Extract themes from a collection of research sources.

    Args:
        sources: Raw source records or already-normalized SourceContent
        purpose: Research purpose name, enum member or explicit config
        request_id: Identifier for progress events and cancellation (generated if omitted)
        user_id: Owner of the request, copied onto progress events
        models: Embedding and chat clients (built from the environment if omitted)
        settings: Pipeline limits (defaults to the global config)
        broadcaster: Receives ExtractionProgress events for this request
        gateway: Inference gateway shared across requests (one is created if omitted);
            this request runs on its own handle, so cancelling it leaves others running
        cancel_event: Set to stop scheduling new model calls for this request

    Returns:
        ThemeExtractionResult with themes sorted by weight, then confidence

    Raises:
        InputValidationError: the request was rejected before any model call
        RateLimitError: a provider stayed rate limited through all retries
        ExtractionCancelledError: the request was cancelled
        ThemeExtractionError: any other terminal failure

    Example:
        result = await extract_themes(
            sources=[{"id": "p1", "type": "paper", "title": "...", "abstract": "..."}],
            purpose="qualitative_analysis",
        )
        for theme in result.themes:
            print(f"{theme.label} ({theme.weight:.0%} of sources)")
    """
    settings = settings or get_theme_extraction_config()
    request_id = request_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc)
    records = list(sources)

    try:
        purpose_config = get_purpose_config(purpose)
    except ValueError as e:
        raise InputValidationError(str(e)) from None

    if not records:
        logger.info(f"Extraction {request_id}: no sources supplied, nothing to do")
        return ThemeExtractionResult(
            request_id=request_id,
            purpose=purpose_config.purpose,
            status="empty",
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    normalized, skipped = _prepare_sources(records, settings)

    if request_id in _active:
        raise InputValidationError(f"Extraction {request_id} is already running")
    cancel_event = cancel_event or asyncio.Event()
    gateway = (gateway or InferenceGateway(settings)).for_request(cancel_event)

    owns_models = models is None
    if owns_models:
        models = ThemeModels.from_env()

    broadcaster = broadcaster or ProgressBroadcaster()
    reporter = ProgressReporter(broadcaster, request_id, user_id)
    runtime = ExtractionRuntime(gateway=gateway, models=models, reporter=reporter, config=settings)
    initial_state = build_initial_state(
        request_id, user_id, purpose_config, normalized, skipped, started_at
    )

    logger.info(
        f"Starting theme extraction {request_id}: {len(normalized)} sources, "
        f"purpose={purpose_config.purpose}, "
        f"target {purpose_config.min_themes}-{purpose_config.max_themes} themes"
    )

    _active[request_id] = cancel_event
    broadcaster.open(request_id)
    try:
        result = await theme_extraction_graph.ainvoke(
            initial_state,
            config={
                "configurable": {"runtime": runtime},
                "run_name": f"theme_extraction:{purpose_config.purpose}",
                "metadata": {"request_id": request_id},
            },
        )
    except ExtractionCancelledError:
        logger.info(f"Extraction {request_id} cancelled")
        reporter.finish("cancelled", "Extraction cancelled")
        raise
    except RateLimitError as e:
        logger.error(f"Extraction {request_id} failed: {e.user_message}")
        reporter.finish("failed", e.user_message)
        raise
    except ThemeExtractionError as e:
        logger.error(f"Extraction {request_id} failed: {e}")
        reporter.finish("failed", f"Extraction failed: {e}")
        raise
    except Exception as e:
        logger.exception(f"Extraction {request_id} failed unexpectedly")
        reporter.finish("failed", f"Extraction failed: {type(e).__name__}")
        raise ThemeExtractionError(f"Theme extraction failed: {e}") from e
    finally:
        _active.pop(request_id, None)
        broadcaster.close(request_id)
        if owns_models:
            await models.close()

    themes = result.get("themes", [])
    failed_items = result.get("failed_items", [])
    if not themes:
        status = "empty"
    elif failed_items:
        status = "partial"
    else:
        status = "success"

    logger.info(
        f"Extraction {request_id} finished ({status}): {len(themes)} themes, "
        f"{len(failed_items)} failed items, {gateway.calls} model calls, "
        f"{gateway.retries} retries"
    )

    return ThemeExtractionResult(
        request_id=request_id,
        purpose=purpose_config.purpose,
        status=status,
        themes=themes,
        stats=result.get("stats") or ExtractionStats(),
        failed_items=failed_items,
        deviation=result.get("deviation"),
        merge_threshold=result.get("merge_threshold"),
        started_at=started_at,
        completed_at=result.get("completed_at"),
    )
