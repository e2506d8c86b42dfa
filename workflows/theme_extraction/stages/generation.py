"""Stage 3: theme generation by clustering code embeddings."""

import logging

import numpy as np

from workflows.theme_extraction.clustering import select_k
from workflows.theme_extraction.purpose import ResearchPurposeConfig
from workflows.theme_extraction.types import Code, ThemeCluster

logger = logging.getLogger(__name__)


def cluster_id_for(index: int) -> str:
    return f"cluster-{index:03d}"


def generate_theme_clusters(
    codes: list[Code],
    purpose: ResearchPurposeConfig,
    seed: int,
) -> list[ThemeCluster]:
    """Group codes into candidate themes.

    k is chosen inside the purpose's target theme range (bounded by the
    number of codes). Clusters that end up empty are dropped; the rest are
    numbered in order of their first member.
    """
    embedded = [code for code in codes if code.embedding]
    if len(embedded) < len(codes):
        logger.warning(f"Ignoring {len(codes) - len(embedded)} codes without embeddings")
    if not embedded:
        return []

    vectors = np.array([code.embedding for code in embedded], dtype=float)
    low, high = purpose.target_theme_count
    k, labels = select_k(vectors, low, high, seed)

    groups: dict[int, list[Code]] = {}
    for code, label in zip(embedded, labels):
        groups.setdefault(int(label), []).append(code)

    clusters = []
    for index, members in enumerate(groups.values()):
        cluster = ThemeCluster(
            cluster_id=cluster_id_for(index),
            codes=members,
            centroid=np.zeros(vectors.shape[1]),
        )
        cluster.recompute_centroid()
        clusters.append(cluster)

    logger.info(
        f"Generated {len(clusters)} candidate themes from {len(embedded)} codes "
        f"(k={k}, target {low}-{high})"
    )
    return clusters
