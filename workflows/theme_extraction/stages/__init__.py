"""The six extraction stages, in pipeline order."""

from .familiarization import FamiliarizationResult, run_familiarization
from .coding import CodingResult, run_code_extraction
from .generation import generate_theme_clusters
from .review import ReviewResult, compute_adaptive_thresholds, merge_similar_clusters, review_themes
from .labeling import LabelingResult, run_labeling, statistical_label
from .aggregation import aggregate_themes

__all__ = [
    "FamiliarizationResult",
    "run_familiarization",
    "CodingResult",
    "run_code_extraction",
    "generate_theme_clusters",
    "ReviewResult",
    "compute_adaptive_thresholds",
    "merge_similar_clusters",
    "review_themes",
    "LabelingResult",
    "run_labeling",
    "statistical_label",
    "aggregate_themes",
]
