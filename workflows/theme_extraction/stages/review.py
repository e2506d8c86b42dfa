"""Stage 4: theme review.

Merges near-duplicate candidate themes until no pair of centroids is more
similar than the purpose's merge threshold and the theme count is within the
purpose's maximum. Merge order is fixed: the most similar pair first, ties
broken by ascending cluster id pair. The merged cluster keeps the lower id.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from workflows.theme_extraction.clustering import cosine_similarity_matrix
from workflows.theme_extraction.purpose import ResearchPurposeConfig
from workflows.theme_extraction.types import ThemeCluster

logger = logging.getLogger(__name__)

GRANULARITY_OFFSETS = {"fine": 0.05, "medium": 0.0, "coarse": -0.05}
OVERSUPPLY_OFFSET = -0.05
MIN_MERGE_THRESHOLD = 0.5
MAX_MERGE_THRESHOLD = 0.98
SIMILARITY_DECIMALS = 10


@dataclass(frozen=True)
class ReviewThresholds:
    merge_threshold: float
    min_themes: int
    max_themes: int


@dataclass
class ReviewResult:
    clusters: list[ThemeCluster]
    thresholds: ReviewThresholds
    merges: int
    deviation: Optional[str] = None


def compute_adaptive_thresholds(
    purpose: ResearchPurposeConfig,
    cluster_count: int,
) -> ReviewThresholds:
    """Merge threshold for a purpose.

    Fine-grained purposes merge only very close themes; coarse ones merge
    more freely. A large oversupply of candidates lowers the bar a little
    further.
    """
    threshold = purpose.similarity_threshold + GRANULARITY_OFFSETS[purpose.granularity]
    if cluster_count > 2 * purpose.max_themes:
        threshold += OVERSUPPLY_OFFSET
    threshold = min(MAX_MERGE_THRESHOLD, max(MIN_MERGE_THRESHOLD, threshold))
    return ReviewThresholds(
        merge_threshold=round(threshold, 4),
        min_themes=purpose.min_themes,
        max_themes=purpose.max_themes,
    )


def _merge_pair(keep: ThemeCluster, absorb: ThemeCluster) -> None:
    keep.codes = keep.codes + absorb.codes
    absorb.codes = []
    keep.recompute_centroid()


def _most_similar_pair(clusters: list[ThemeCluster]) -> tuple[int, int, float]:
    centroids = np.array([cluster.centroid for cluster in clusters])
    sims = np.round(cosine_similarity_matrix(centroids), SIMILARITY_DECIMALS)
    sims[np.tril_indices(len(clusters))] = -np.inf
    best = sims.max()
    i, j = np.argwhere(sims == best)[0]
    return int(i), int(j), float(best)


def merge_similar_clusters(
    clusters: list[ThemeCluster],
    threshold: float,
    max_clusters: Optional[int] = None,
) -> tuple[list[ThemeCluster], int]:
    """Merge clusters to a fixed point.

    A pair is merged while its similarity exceeds ``threshold``, or while
    there are more than ``max_clusters`` clusters. Empty clusters are removed.

    Returns:
        Tuple of (surviving clusters sorted by id, number of merges)
    """
    working = sorted((c for c in clusters if c.codes), key=lambda c: c.cluster_id)
    merges = 0

    while len(working) > 1:
        i, j, similarity = _most_similar_pair(working)
        over_limit = max_clusters is not None and len(working) > max_clusters
        if similarity <= threshold and not over_limit:
            break
        keep, absorb = working[i], working[j]
        logger.debug(
            f"Merging {absorb.cluster_id} into {keep.cluster_id} "
            f"(similarity {similarity:.3f}{', over limit' if over_limit else ''})"
        )
        _merge_pair(keep, absorb)
        del working[j]
        merges += 1

    return working, merges


def review_themes(
    clusters: list[ThemeCluster],
    purpose: ResearchPurposeConfig,
) -> ReviewResult:
    """Deduplicate candidate themes for a purpose and note any shortfall."""
    thresholds = compute_adaptive_thresholds(purpose, len(clusters))
    reviewed, merges = merge_similar_clusters(
        clusters,
        thresholds.merge_threshold,
        max_clusters=thresholds.max_themes,
    )

    deviation = None
    if len(reviewed) < thresholds.min_themes:
        code_count = sum(len(c.codes) for c in reviewed)
        source_count = len({sid for c in reviewed for sid in c.source_ids})
        if len(clusters) < thresholds.min_themes:
            cause = (
                f"source material was insufficient, only {len(clusters)} candidate themes "
                f"({code_count} codes from {source_count} sources)"
            )
        else:
            cause = (
                f"{merges} merges at similarity {thresholds.merge_threshold} folded "
                f"{len(clusters)} candidate themes into near-duplicates "
                f"({code_count} codes from {source_count} sources)"
            )
        deviation = (
            f"Produced {len(reviewed)} themes, below the {purpose.purpose} target of "
            f"{thresholds.min_themes}-{thresholds.max_themes}: {cause}."
        )
        logger.warning(deviation)

    logger.info(
        f"Review merged {merges} pairs: {len(clusters)} -> {len(reviewed)} themes "
        f"(threshold {thresholds.merge_threshold})"
    )
    return ReviewResult(
        clusters=reviewed,
        thresholds=thresholds,
        merges=merges,
        deviation=deviation,
    )
