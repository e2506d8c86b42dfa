"""Stage 6: build the final themes with confidence, weight and provenance."""

import hashlib
import logging
from collections import defaultdict

import numpy as np

from workflows.theme_extraction.clustering import cosine_similarity, normalize_rows
from workflows.theme_extraction.types import (
    SourceContent,
    SourceEmbedding,
    ThemeCluster,
    ThemeLabel,
    ThemeProvenance,
    ThemeSource,
    UnifiedTheme,
)

logger = logging.getLogger(__name__)

COHESION_WEIGHT = 0.6
SIZE_WEIGHT = 0.4
FULL_SIZE_CODES = 5
MAX_EXCERPTS_PER_SOURCE = 3


def theme_id_for(cluster: ThemeCluster) -> str:
    """Stable id derived from the member code ids."""
    digest = hashlib.sha256("|".join(sorted(c.id for c in cluster.codes)).encode()).hexdigest()
    return f"theme-{digest[:12]}"


def cluster_cohesion(cluster: ThemeCluster) -> float:
    """Mean cosine similarity of member codes to the centroid, floored at 0."""
    if not cluster.codes:
        return 0.0
    sims = normalize_rows(cluster.code_matrix()) @ normalize_rows(cluster.centroid)
    return float(min(1.0, max(0.0, sims.mean())))


def theme_confidence(cluster: ThemeCluster) -> float:
    size_score = min(1.0, len(cluster.codes) / FULL_SIZE_CODES)
    confidence = COHESION_WEIGHT * cluster_cohesion(cluster) + SIZE_WEIGHT * size_score
    return round(min(1.0, max(0.0, confidence)), 4)


def theme_weight(cluster: ThemeCluster, total_sources: int) -> float:
    if total_sources <= 0:
        return 0.0
    return round(min(1.0, len(cluster.source_ids) / total_sources), 4)


def build_theme_sources(
    cluster: ThemeCluster,
    sources: dict[str, SourceContent],
    embeddings: dict[str, SourceEmbedding],
) -> list[ThemeSource]:
    """Per-source provenance, most influential first.

    Influence is the cosine similarity between the theme centroid and the
    source's embedding; sources without an embedding use their share of the
    theme's codes instead.
    """
    code_counts: dict[str, int] = defaultdict(int)
    excerpts: dict[str, list[str]] = defaultdict(list)
    for code in cluster.codes:
        code_counts[code.source_id] += 1
        for excerpt in code.excerpts:
            if excerpt not in excerpts[code.source_id] and len(excerpts[code.source_id]) < MAX_EXCERPTS_PER_SOURCE:
                excerpts[code.source_id].append(excerpt)

    entries = []
    for source_id in cluster.source_ids:
        source = sources.get(source_id)
        if source is None:
            logger.warning(f"Theme code references unknown source {source_id}")
            continue
        embedding = embeddings.get(source_id)
        if embedding is not None:
            influence = cosine_similarity(cluster.centroid, embedding.vector)
        else:
            influence = code_counts[source_id] / len(cluster.codes)
        entries.append(
            ThemeSource(
                source_id=source_id,
                source_type=source.type,
                source_title=source.title,
                influence=round(min(1.0, max(0.0, influence)), 4),
                excerpts=excerpts[source_id],
            )
        )

    return sorted(entries, key=lambda s: (-s.influence, s.source_id))


def build_provenance(theme_sources: list[ThemeSource], code_count: int) -> ThemeProvenance:
    counts: dict[str, int] = defaultdict(int)
    influence: dict[str, float] = defaultdict(float)
    for entry in theme_sources:
        counts[entry.source_type.value] += 1
        influence[entry.source_type.value] += entry.influence

    total_influence = sum(influence.values())
    if total_influence > 0:
        shares = {kind: round(value / total_influence, 4) for kind, value in influence.items()}
    else:
        shares = {kind: 0.0 for kind in influence}

    return ThemeProvenance(
        counts=dict(counts),
        influence=shares,
        code_count=code_count,
        source_count=len(theme_sources),
    )


def aggregate_themes(
    clusters: list[ThemeCluster],
    labels: dict[str, ThemeLabel],
    sources: list[SourceContent],
    embeddings: dict[str, SourceEmbedding],
) -> list[UnifiedTheme]:
    """Turn labeled clusters into UnifiedThemes, strongest first."""
    source_lookup = {source.id: source for source in sources}
    total_sources = len(source_lookup)
    themes = []

    for cluster in clusters:
        if not cluster.codes:
            continue
        label = labels.get(cluster.cluster_id)
        if label is None:
            logger.warning(f"No label for {cluster.cluster_id}; skipping")
            continue

        theme_sources = build_theme_sources(cluster, source_lookup, embeddings)
        themes.append(
            UnifiedTheme(
                id=theme_id_for(cluster),
                label=label.label,
                description=label.description,
                definition=label.definition,
                keywords=label.keywords,
                codes=list(cluster.codes),
                source_ids=cluster.source_ids,
                sources=theme_sources,
                provenance=build_provenance(theme_sources, len(cluster.codes)),
                confidence=theme_confidence(cluster),
                weight=theme_weight(cluster, total_sources),
                labeling_method=label.method,
            )
        )

    themes.sort(key=lambda t: (-t.weight, -t.confidence, t.label, t.id))
    if themes:
        mean_confidence = float(np.mean([t.confidence for t in themes]))
        logger.info(f"Aggregated {len(themes)} themes (mean confidence {mean_confidence:.2f})")
    return themes
