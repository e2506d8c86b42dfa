"""Type definitions for theme extraction."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from workflows.shared.text_utils import count_words


class SourceType(str, Enum):
    """Kinds of research source the pipeline accepts."""

    PAPER = "paper"
    VIDEO = "video"
    PODCAST = "podcast"
    SOCIAL = "social"


class ExtractionStage(str, Enum):
    """The six pipeline stages, in execution order."""

    FAMILIARIZATION = "familiarization"
    CODING = "coding"
    GENERATION = "generation"
    REVIEW = "review"
    LABELING = "labeling"
    AGGREGATION = "aggregation"

    @property
    def number(self) -> int:
        return list(ExtractionStage).index(self) + 1


TOTAL_STAGES = len(ExtractionStage)


# =============================================================================
# Sources
# =============================================================================


class SourceContent(BaseModel):
    """A normalized research source. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: SourceType
    title: str = ""
    body: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def word_count(self) -> int:
        explicit = self.metadata.get("word_count")
        if isinstance(explicit, int) and explicit > 0:
            return explicit
        return count_words(self.body)


@dataclass(frozen=True)
class SourceEmbedding:
    """Averaged embedding for one source plus diagnostics."""

    source_id: str
    vector: np.ndarray
    chunk_count: int
    magnitude: float


# =============================================================================
# Codes and clusters
# =============================================================================


class Code(BaseModel):
    """An atomic concept extracted from a single source."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    description: str = ""
    source_id: str
    excerpts: list[str] = Field(default_factory=list)
    embedding: Optional[list[float]] = None


@dataclass
class ThemeCluster:
    """Candidate theme: a group of codes and their centroid.

    Created by generation, mutated by review merges.
    """

    cluster_id: str
    codes: list[Code]
    centroid: np.ndarray

    @property
    def source_ids(self) -> list[str]:
        return list(dict.fromkeys(code.source_id for code in self.codes))

    def code_matrix(self) -> np.ndarray:
        return np.array([code.embedding for code in self.codes], dtype=float)

    def recompute_centroid(self) -> None:
        if self.codes:
            self.centroid = self.code_matrix().mean(axis=0)

    def copy(self) -> "ThemeCluster":
        return ThemeCluster(self.cluster_id, list(self.codes), self.centroid.copy())


class ThemeLabel(BaseModel):
    """Human-readable naming for one cluster."""

    label: str
    description: str
    definition: str
    keywords: list[str] = Field(default_factory=list)
    method: Literal["ai", "statistical", "placeholder"] = "statistical"


# =============================================================================
# Final output
# =============================================================================


class ThemeSource(BaseModel):
    """Provenance entry linking a theme to one contributing source."""

    source_id: str
    source_type: SourceType
    source_title: str
    influence: float = Field(ge=0.0, le=1.0)
    excerpts: list[str] = Field(default_factory=list)


class ThemeProvenance(BaseModel):
    """Per-source-type breakdown of a theme's support."""

    counts: dict[str, int] = Field(default_factory=dict)
    influence: dict[str, float] = Field(default_factory=dict)
    code_count: int = 0
    source_count: int = 0


class UnifiedTheme(BaseModel):
    """A labeled, weighted theme with provenance back to its sources."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    description: str
    definition: str
    keywords: list[str] = Field(default_factory=list)
    codes: list[Code]
    source_ids: list[str]
    sources: list[ThemeSource] = Field(default_factory=list)
    provenance: ThemeProvenance = Field(default_factory=ThemeProvenance)
    confidence: float = Field(ge=0.0, le=1.0)
    weight: float = Field(ge=0.0, le=1.0)
    labeling_method: Literal["ai", "statistical", "placeholder"] = "statistical"

    @field_validator("source_ids")
    @classmethod
    def _unique_non_empty(cls, value: list[str]) -> list[str]:
        unique = list(dict.fromkeys(value))
        if not unique:
            raise ValueError("a theme must trace back to at least one source")
        return unique


class FailedItem(BaseModel):
    """A source, batch or cluster that failed without aborting the request."""

    item_id: str
    stage: ExtractionStage
    error: str
    error_type: str


class ExtractionStats(BaseModel):
    """Counts collected over a whole extraction run."""

    sources_analyzed: int = 0
    full_text_read: int = 0
    abstracts_read: int = 0
    total_words_read: int = 0
    codes_extracted: int = 0
    candidate_clusters: int = 0
    themes_after_review: int = 0
    themes: int = 0


class ThemeExtractionResult(BaseModel):
    """Return value of a theme extraction request."""

    request_id: str
    purpose: str
    status: Literal["success", "partial", "empty"]
    themes: list[UnifiedTheme] = Field(default_factory=list)
    stats: ExtractionStats = Field(default_factory=ExtractionStats)
    failed_items: list[FailedItem] = Field(default_factory=list)
    deviation: Optional[str] = None
    merge_threshold: Optional[float] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


# =============================================================================
# Progress events
# =============================================================================


class LiveStats(BaseModel):
    """Counters shown live while extraction runs."""

    model_config = ConfigDict(frozen=True)

    sources_analyzed: int = 0
    full_text_read: int = 0
    abstracts_read: int = 0
    total_words_read: int = 0
    current_article: int = 0
    total_articles: int = 0
    failed_items: int = 0
    current_operation: Optional[str] = None
    article_title: Optional[str] = None
    article_type: Optional[Literal["full-text", "abstract"]] = None
    article_words: Optional[int] = None
    codes_generated: Optional[int] = None
    themes_identified: Optional[int] = None


ProgressStatus = Literal["running", "item_failed", "completed", "failed", "cancelled"]


class ExtractionProgress(BaseModel):
    """One progress event for an extraction request."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    user_id: Optional[str] = None
    stage: ExtractionStage
    stage_number: int
    total_stages: int = TOTAL_STAGES
    percentage: float
    message: str
    live_stats: LiveStats = Field(default_factory=LiveStats)
    status: ProgressStatus = "running"
    item_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("percentage")
    @classmethod
    def _clamp_percentage(cls, value: float) -> float:
        return round(min(100.0, max(0.0, value)), 1)

