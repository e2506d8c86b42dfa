"""Graph construction for the theme extraction workflow.

Flow:
    START -> familiarize -> extract_codes -> generate_themes
          -> review_themes -> label_themes -> aggregate -> END

Runtime collaborators (gateway, models, progress reporter, config) are not
part of the state; they travel in ``config["configurable"]["runtime"]``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from workflows.theme_extraction.config import ThemeExtractionConfig
from workflows.theme_extraction.errors import ExtractionCancelledError, ThemeExtractionError
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.progress import ProgressReporter
from workflows.theme_extraction.stages import (
    aggregate_themes,
    generate_theme_clusters,
    review_themes,
    run_code_extraction,
    run_familiarization,
    run_labeling,
)
from workflows.theme_extraction.state import ThemeExtractionState
from workflows.theme_extraction.types import ExtractionStage, ExtractionStats

logger = logging.getLogger(__name__)


@dataclass
class ExtractionRuntime:
    gateway: InferenceGateway
    models: ThemeModels
    reporter: ProgressReporter
    config: ThemeExtractionConfig

    def raise_if_cancelled(self, stage: ExtractionStage) -> None:
        event = self.gateway.cancel_event
        if event is not None and event.is_set():
            raise ExtractionCancelledError(f"Extraction cancelled before {stage.value}")


def _runtime(config: RunnableConfig) -> ExtractionRuntime:
    try:
        return config["configurable"]["runtime"]
    except (KeyError, TypeError):
        raise ThemeExtractionError(
            "Theme extraction graph invoked without a runtime in config['configurable']"
        ) from None


async def familiarize_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 1: embed sources and count what was read."""
    rt = _runtime(config)
    rt.raise_if_cancelled(ExtractionStage.FAMILIARIZATION)
    sources = state["sources"]

    result = await run_familiarization(sources, rt.gateway, rt.models, rt.reporter, rt.config)

    if sources and not result.embeddings:
        if result.last_rate_limit is not None:
            raise result.last_rate_limit
        raise ThemeExtractionError(
            f"None of the {len(sources)} sources could be embedded; see failed items"
        )

    return {
        "source_embeddings": result.embeddings,
        "familiarization_stats": result.stats,
        "failed_items": result.failed,
    }


async def extract_codes_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 2: extract and embed codes from familiarized sources."""
    rt = _runtime(config)
    rt.raise_if_cancelled(ExtractionStage.CODING)
    embedded = state["source_embeddings"]
    sources = [source for source in state["sources"] if source.id in embedded]

    result = await run_code_extraction(
        sources, rt.gateway, rt.models, rt.reporter, rt.config, state["purpose"]
    )
    return {"codes": result.codes, "failed_items": result.failed}


async def generate_themes_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 3: cluster codes into candidate themes."""
    rt = _runtime(config)
    rt.raise_if_cancelled(ExtractionStage.GENERATION)
    codes = state["codes"]
    stage = ExtractionStage.GENERATION

    rt.reporter.emit(
        stage,
        0.0,
        f"Clustering {len(codes)} codes into candidate themes",
        rt.reporter.last_stats.model_copy(update={"current_operation": "Clustering codes"}),
    )
    clusters = generate_theme_clusters(codes, state["purpose"], rt.config.random_seed)
    rt.reporter.emit(
        stage,
        1.0,
        f"Identified {len(clusters)} candidate themes",
        rt.reporter.last_stats.model_copy(update={"themes_identified": len(clusters)}),
    )
    return {"candidate_clusters": clusters}


async def review_themes_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 4: merge near-duplicate candidates."""
    rt = _runtime(config)
    rt.raise_if_cancelled(ExtractionStage.REVIEW)
    stage = ExtractionStage.REVIEW
    candidates = [cluster.copy() for cluster in state["candidate_clusters"]]

    rt.reporter.emit(stage, 0.0, f"Reviewing {len(candidates)} candidate themes")
    result = review_themes(candidates, state["purpose"])
    rt.reporter.emit(
        stage,
        1.0,
        f"Review merged {result.merges} duplicates, {len(result.clusters)} themes remain",
        rt.reporter.last_stats.model_copy(update={"themes_identified": len(result.clusters)}),
    )
    return {
        "reviewed_clusters": result.clusters,
        "merge_threshold": result.thresholds.merge_threshold,
        "deviation": result.deviation,
    }


async def label_themes_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 5: name each reviewed theme."""
    rt = _runtime(config)
    rt.raise_if_cancelled(ExtractionStage.LABELING)
    result = await run_labeling(
        state["reviewed_clusters"],
        rt.gateway,
        rt.models,
        rt.reporter,
        rt.config,
        state["purpose"],
    )
    return {"labels": result.labels, "failed_items": result.failed}


async def aggregate_node(state: ThemeExtractionState, config: RunnableConfig) -> dict[str, Any]:
    """Stage 6: compute confidence, weight and provenance."""
    rt = _runtime(config)
    stage = ExtractionStage.AGGREGATION
    embedded = state["source_embeddings"]
    # Weights are shares of the sources that were actually analysed
    analysed = [source for source in state["sources"] if source.id in embedded]

    themes = aggregate_themes(
        state["reviewed_clusters"],
        state["labels"],
        analysed,
        embedded,
    )
    familiarization = state.get("familiarization_stats")
    stats = ExtractionStats(
        sources_analyzed=familiarization.sources_analyzed if familiarization else 0,
        full_text_read=familiarization.full_text_read if familiarization else 0,
        abstracts_read=familiarization.abstracts_read if familiarization else 0,
        total_words_read=familiarization.total_words_read if familiarization else 0,
        codes_extracted=len(state["codes"]),
        candidate_clusters=len(state["candidate_clusters"]),
        themes_after_review=len(state["reviewed_clusters"]),
        themes=len(themes),
    )
    rt.reporter.emit(
        stage,
        1.0,
        f"Extraction complete: {len(themes)} themes from {stats.sources_analyzed} sources",
        rt.reporter.last_stats.model_copy(
            update={"themes_identified": len(themes), "current_operation": "Complete"}
        ),
        status="completed",
    )
    return {
        "themes": themes,
        "stats": stats,
        "completed_at": datetime.now(timezone.utc),
    }


def create_theme_extraction_graph() -> StateGraph:
    """Create the theme extraction workflow graph."""
    builder = StateGraph(ThemeExtractionState)

    builder.add_node("familiarize", familiarize_node)
    builder.add_node("extract_codes", extract_codes_node)
    builder.add_node("generate_themes", generate_themes_node)
    builder.add_node("review_themes", review_themes_node)
    builder.add_node("label_themes", label_themes_node)
    builder.add_node("aggregate", aggregate_node)

    builder.add_edge(START, "familiarize")
    builder.add_edge("familiarize", "extract_codes")
    builder.add_edge("extract_codes", "generate_themes")
    builder.add_edge("generate_themes", "review_themes")
    builder.add_edge("review_themes", "label_themes")
    builder.add_edge("label_themes", "aggregate")
    builder.add_edge("aggregate", END)

    return builder.compile()


theme_extraction_graph = create_theme_extraction_graph()
