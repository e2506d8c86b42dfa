"""Thematic extraction workflow.

A multi-stage pipeline that turns a collection of research sources into
labeled, weighted themes:
1. Familiarization - embed every source and count what was read
2. Coding - extract short codes from sources with a chat model
3. Generation - cluster code embeddings into candidate themes
4. Review - merge near-duplicate candidates
5. Labeling - name each theme (chat model or statistical fallback)
6. Aggregation - confidence, weight and per-source provenance
"""

from workflows.theme_extraction.api import cancel_extraction, extract_themes
from workflows.theme_extraction.config import (
    ThemeExtractionConfig,
    get_theme_extraction_config,
)
from workflows.theme_extraction.errors import (
    CircuitOpenError,
    ExtractionCancelledError,
    InputValidationError,
    MalformedResponseError,
    QuotaUsage,
    RateLimitError,
    ThemeExtractionError,
    TransientProviderError,
)
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.normalizer import normalize_source, normalize_sources
from workflows.theme_extraction.progress import ProgressBroadcaster, ProgressReporter
from workflows.theme_extraction.purpose import (
    PURPOSE_PRESETS,
    ResearchPurpose,
    ResearchPurposeConfig,
    get_purpose_config,
)
from workflows.theme_extraction.types import (
    # Sources
    SourceContent,
    SourceType,
    # Codes and themes
    Code,
    ThemeCluster,
    ThemeLabel,
    ThemeSource,
    UnifiedTheme,
    # Results and progress
    ExtractionProgress,
    ExtractionStage,
    ExtractionStats,
    FailedItem,
    LiveStats,
    ThemeExtractionResult,
)

__all__ = [
    # API
    "extract_themes",
    "cancel_extraction",
    # Config
    "ThemeExtractionConfig",
    "get_theme_extraction_config",
    "PURPOSE_PRESETS",
    "ResearchPurpose",
    "ResearchPurposeConfig",
    "get_purpose_config",
    # Errors
    "ThemeExtractionError",
    "RateLimitError",
    "QuotaUsage",
    "TransientProviderError",
    "CircuitOpenError",
    "MalformedResponseError",
    "InputValidationError",
    "ExtractionCancelledError",
    # Runtime
    "InferenceGateway",
    "ThemeModels",
    "ProgressBroadcaster",
    "ProgressReporter",
    "normalize_source",
    "normalize_sources",
    # Types
    "SourceContent",
    "SourceType",
    "Code",
    "ThemeCluster",
    "ThemeLabel",
    "ThemeSource",
    "UnifiedTheme",
    "ExtractionProgress",
    "ExtractionStage",
    "ExtractionStats",
    "FailedItem",
    "LiveStats",
    "ThemeExtractionResult",
]
