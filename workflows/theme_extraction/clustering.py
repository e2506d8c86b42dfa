"""Cosine k-means++ clustering for code embeddings.

Assignment is sequential: codes are visited in input order, each joins the
centroid it is most similar to, and that centroid is recomputed as the mean
of its members straight away. Equal similarities go to the cluster with more
members, then to the lower cluster index. A code that is the only member of
its cluster stays where it is, so a seeded cluster never empties.
Initialisation uses a seeded generator, so identical input gives identical
clusters.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

SIMILARITY_DECIMALS = 10
MAX_K_CANDIDATES = 10


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalise each row; zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=float)
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def cosine_similarity_matrix(matrix: np.ndarray) -> np.ndarray:
    unit = normalize_rows(matrix)
    return np.clip(unit @ unit.T, -1.0, 1.0)


def kmeans_plus_plus_init(unit: np.ndarray, k: int, rng: np.random.Generator) -> list[int]:
    """Pick k seed rows, each with probability proportional to squared cosine distance."""
    n = unit.shape[0]
    seeds = [int(rng.integers(n))]
    closest = 1.0 - unit @ unit[seeds[0]]

    while len(seeds) < k:
        weights = np.clip(closest, 0.0, None) ** 2
        weights[seeds] = 0.0
        total = weights.sum()
        if total <= 0:
            # Remaining rows duplicate a seed; fall back to uniform over the rest
            remaining = np.setdiff1d(np.arange(n), seeds)
            choice = int(rng.choice(remaining))
        else:
            choice = int(rng.choice(n, p=weights / total))
        seeds.append(choice)
        closest = np.minimum(closest, 1.0 - unit @ unit[choice])

    return seeds


def sequential_kmeans(
    vectors: np.ndarray,
    k: int,
    seed: int,
    max_iterations: int = 100,
) -> np.ndarray:
    """Cluster rows of ``vectors`` into at most k groups.

    Returns:
        Cluster index per row. Some indices may be unused if a cluster empties.
    """
    unit = normalize_rows(vectors)
    n, dim = unit.shape
    k = max(1, min(k, n))
    rng = np.random.default_rng(seed)

    seeds = kmeans_plus_plus_init(unit, k, rng)
    centroids = unit[seeds].copy()
    centroid_units = normalize_rows(centroids)
    sums = np.zeros((k, dim))
    counts = np.zeros(k, dtype=int)
    labels = np.full(n, -1, dtype=int)

    def refresh(j: int) -> None:
        if counts[j] > 0:
            centroids[j] = sums[j] / counts[j]
            centroid_units[j] = normalize_rows(centroids[j])

    for iteration in range(max_iterations):
        moved = 0
        for i in range(n):
            current = labels[i]
            if current >= 0:
                if counts[current] == 1:
                    continue
                sums[current] -= unit[i]
                counts[current] -= 1
                refresh(current)

            sims = np.round(centroid_units @ unit[i], SIMILARITY_DECIMALS)
            tied = np.flatnonzero(sims == sims.max())
            best = int(tied[np.argmax(counts[tied])])

            sums[best] += unit[i]
            counts[best] += 1
            labels[i] = best
            refresh(best)
            if best != current:
                moved += 1

        if moved == 0:
            logger.debug(f"k-means converged after {iteration + 1} passes (k={k})")
            break

    return labels


def silhouette_score(vectors: np.ndarray, labels: np.ndarray) -> float:
    """Mean silhouette using cosine distance. -1 when fewer than two clusters."""
    unique = np.unique(labels)
    if len(unique) < 2:
        return -1.0

    distances = 1.0 - cosine_similarity_matrix(vectors)
    index = {label: i for i, label in enumerate(unique)}
    member = np.zeros((len(labels), len(unique)))
    member[np.arange(len(labels)), [index[label] for label in labels]] = 1.0
    sizes = member.sum(axis=0)
    sums = distances @ member

    own = np.array([index[label] for label in labels])
    own_sizes = sizes[own]
    a = np.where(own_sizes > 1, sums[np.arange(len(labels)), own] / np.maximum(own_sizes - 1, 1), 0.0)

    mean_other = sums / sizes
    mean_other[np.arange(len(labels)), own] = np.inf
    b = mean_other.min(axis=1)

    denom = np.maximum(a, b)
    scores = np.where((own_sizes > 1) & (denom > 0), (b - a) / np.where(denom > 0, denom, 1), 0.0)
    return float(scores.mean())


def candidate_ks(n_items: int, low: int, high: int) -> list[int]:
    """k values to try: spread evenly over [low, min(high, n_items)]."""
    if n_items <= low:
        return [n_items]
    high = min(high, n_items)
    if high - low + 1 <= MAX_K_CANDIDATES:
        return list(range(low, high + 1))
    return sorted({int(round(k)) for k in np.linspace(low, high, MAX_K_CANDIDATES)})


def select_k(
    vectors: np.ndarray,
    low: int,
    high: int,
    seed: int,
) -> tuple[int, np.ndarray]:
    """Pick k in the target range by silhouette; ties go to the smaller k.

    Returns:
        Tuple of (chosen k, labels for that k)
    """
    n = vectors.shape[0]
    best_k, best_labels, best_score = 0, np.zeros(n, dtype=int), -np.inf

    for k in candidate_ks(n, low, high):
        labels = sequential_kmeans(vectors, k, seed)
        score = silhouette_score(vectors, labels) if 1 < k < n else 0.0
        logger.debug(f"k={k}: silhouette={score:.4f}")
        if score > best_score + 1e-12:
            best_k, best_labels, best_score = k, labels, score

    return best_k, best_labels
