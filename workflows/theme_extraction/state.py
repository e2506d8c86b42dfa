"""
State schema for the theme extraction workflow.

Each stage node reads what earlier stages produced and returns only the keys
it adds. ``failed_items`` accumulates across stages.
"""

from datetime import datetime, timezone
from operator import add
from typing import Annotated, Optional
from typing_extensions import TypedDict

from workflows.theme_extraction.purpose import ResearchPurposeConfig
from workflows.theme_extraction.types import (
    Code,
    ExtractionStats,
    FailedItem,
    LiveStats,
    SourceContent,
    SourceEmbedding,
    ThemeCluster,
    ThemeLabel,
    UnifiedTheme,
)


class ThemeExtractionState(TypedDict):
    """Main workflow state."""

    # Input
    request_id: str
    user_id: Optional[str]
    purpose: ResearchPurposeConfig
    sources: list[SourceContent]

    # Familiarization
    source_embeddings: dict[str, SourceEmbedding]
    familiarization_stats: Optional[LiveStats]

    # Coding
    codes: list[Code]

    # Generation / review
    candidate_clusters: list[ThemeCluster]
    reviewed_clusters: list[ThemeCluster]
    merge_threshold: Optional[float]
    deviation: Optional[str]

    # Labeling / aggregation
    labels: dict[str, ThemeLabel]
    themes: list[UnifiedTheme]
    stats: Optional[ExtractionStats]

    # Tracking
    failed_items: Annotated[list[FailedItem], add]
    started_at: datetime
    completed_at: Optional[datetime]


def build_initial_state(
    request_id: str,
    user_id: Optional[str],
    purpose: ResearchPurposeConfig,
    sources: list[SourceContent],
    failed_items: Optional[list[FailedItem]] = None,
    started_at: Optional[datetime] = None,
) -> ThemeExtractionState:
    return ThemeExtractionState(
        request_id=request_id,
        user_id=user_id,
        purpose=purpose,
        sources=sources,
        source_embeddings={},
        familiarization_stats=None,
        codes=[],
        candidate_clusters=[],
        reviewed_clusters=[],
        merge_threshold=None,
        deviation=None,
        labels={},
        themes=[],
        stats=None,
        failed_items=list(failed_items or []),
        started_at=started_at or datetime.now(timezone.utc),
        completed_at=None,
    )
