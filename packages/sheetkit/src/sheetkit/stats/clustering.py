"""Clustering: k-means++ with silhouette-based k selection, DBSCAN with an
estimated eps, and agglomerative hierarchical clustering.

Pairwise-distance work (silhouette, DBSCAN, hierarchical) runs on a
deterministic subsample of at most ``MAX_PAIRWISE_POINTS`` rows; points
outside the subsample are assigned afterwards by nearest neighbour.
"""

from __future__ import annotations

import logging

import numpy as np

from sheetkit.models import ClusteringReport, ClusterResult
from sheetkit.stats.descriptive import finite

logger = logging.getLogger("sheetkit")

MAX_PAIRWISE_POINTS = 1000
MAX_HIERARCHICAL_POINTS = 300
KMEANS_MAX_ITER = 100
KMEANS_RESTARTS = 3
EPS_PERCENTILE = 95
_BLOCK = 2048


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def standardize(data: np.ndarray) -> np.ndarray:
    """Zero mean, unit variance per column; constant columns are centred only."""
    std = data.std(axis=0)
    std[std == 0] = 1.0
    return (data - data.mean(axis=0)) / std


def pairwise_distances(a: np.ndarray, b: np.ndarray | None = None) -> np.ndarray:
    b = a if b is None else b
    sq = (a**2).sum(axis=1)[:, None] + (b**2).sum(axis=1)[None, :] - 2.0 * a @ b.T
    return np.sqrt(np.maximum(sq, 0.0))


def subsample(data: np.ndarray, limit: int) -> np.ndarray:
    """Row indices of an evenly strided subsample of at most *limit* rows."""
    n = data.shape[0]
    if n <= limit:
        return np.arange(n)
    return np.linspace(0, n - 1, limit).astype(int)


def nearest(points: np.ndarray, references: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Index of and distance to the closest reference row, block by block."""
    index = np.empty(points.shape[0], dtype=int)
    dist = np.empty(points.shape[0])
    for start in range(0, points.shape[0], _BLOCK):
        block = pairwise_distances(points[start : start + _BLOCK], references)
        index[start : start + _BLOCK] = block.argmin(axis=1)
        dist[start : start + _BLOCK] = block.min(axis=1)
    return index, dist


def centroids_for(data: np.ndarray, labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Cluster ids (noise excluded) and their centroids."""
    ids = np.unique(labels[labels >= 0])
    return ids, np.array([data[labels == i].mean(axis=0) for i in ids])


# ---------------------------------------------------------------------------
# Quality indices
# ---------------------------------------------------------------------------


def silhouette_score(data: np.ndarray, labels: np.ndarray) -> float | None:
    """Mean silhouette over non-noise points; ``None`` below two clusters."""
    keep = labels >= 0
    data, labels = data[keep], labels[keep]
    ids = np.unique(labels)
    if ids.size < 2 or ids.size >= data.shape[0]:
        return None

    dist = pairwise_distances(data)
    sums = np.stack([dist[:, labels == i].sum(axis=1) for i in ids], axis=1)
    counts = np.array([(labels == i).sum() for i in ids], dtype=float)
    own = np.searchsorted(ids, labels)
    rows = np.arange(data.shape[0])

    own_size = counts[own] - 1
    a = sums[rows, own] / np.maximum(own_size, 1)
    means = sums / counts
    means[rows, own] = np.inf
    b = means.min(axis=1)

    denom = np.maximum(a, b)
    s = np.divide(b - a, denom, out=np.zeros_like(a), where=denom > 0)
    s[own_size == 0] = 0.0
    return finite(s.mean())


def davies_bouldin(data: np.ndarray, labels: np.ndarray) -> float | None:
    ids, centers = centroids_for(data, labels)
    if ids.size < 2:
        return None
    scatter = np.array(
        [np.linalg.norm(data[labels == i] - centers[k], axis=1).mean() for k, i in enumerate(ids)]
    )
    separation = pairwise_distances(centers)
    np.fill_diagonal(separation, np.inf)
    ratios = (scatter[:, None] + scatter[None, :]) / separation
    return finite(ratios.max(axis=1).mean())


def calinski_harabasz(data: np.ndarray, labels: np.ndarray) -> float | None:
    keep = labels >= 0
    data, labels = data[keep], labels[keep]
    ids, centers = centroids_for(data, labels)
    n, k = data.shape[0], ids.size
    if k < 2 or n <= k:
        return None
    overall = data.mean(axis=0)
    between = sum((labels == i).sum() * np.sum((centers[j] - overall) ** 2) for j, i in enumerate(ids))
    within = sum(np.sum((data[labels == i] - centers[j]) ** 2) for j, i in enumerate(ids))
    if within == 0:
        return None
    return finite((between / (k - 1)) / (within / (n - k)))


# ---------------------------------------------------------------------------
# k-means
# ---------------------------------------------------------------------------


def kmeans_plus_plus(data: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """Seed centroids with D^2 weighting."""
    centers = [data[rng.integers(data.shape[0])]]
    for _ in range(1, k):
        d2 = pairwise_distances(data, np.array(centers)).min(axis=1) ** 2
        total = d2.sum()
        if total == 0:
            centers.append(data[rng.integers(data.shape[0])])
        else:
            centers.append(data[rng.choice(data.shape[0], p=d2 / total)])
    return np.array(centers)


def kmeans(
    data: np.ndarray,
    k: int,
    rng: np.random.Generator,
    max_iter: int = KMEANS_MAX_ITER,
    tol: float = 1e-6,
) -> tuple[np.ndarray, np.ndarray, float]:
    """Lloyd iteration from a k-means++ start.

    Returns labels, centroids and inertia.  An emptied cluster keeps its
    previous centroid.
    """
    centers = kmeans_plus_plus(data, k, rng)
    labels = np.zeros(data.shape[0], dtype=int)
    for _ in range(max_iter):
        labels, _ = nearest(data, centers)
        updated = centers.copy()
        for j in range(k):
            members = data[labels == j]
            if len(members):
                updated[j] = members.mean(axis=0)
        shift = np.abs(updated - centers).max()
        centers = updated
        if shift < tol:
            break
    labels, dist = nearest(data, centers)
    return labels, centers, float(np.sum(dist**2))


def best_kmeans(data: np.ndarray, k: int, seed: int) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    best: tuple[np.ndarray, np.ndarray, float] | None = None
    for _ in range(KMEANS_RESTARTS):
        run = kmeans(data, k, rng)
        if best is None or run[2] < best[2]:
            best = run
    assert best is not None
    return best[0], best[1]


def find_optimal_k(
    data: np.ndarray,
    k_range: tuple[int, int] = (2, 8),
    seed: int = 42,
) -> tuple[int | None, dict[int, float]]:
    """Pick k by maximum silhouette.  Ties keep the smaller k."""
    k_min, k_max = k_range
    k_max = min(k_max, data.shape[0] - 1)
    sample = subsample(data, MAX_PAIRWISE_POINTS)
    scores: dict[int, float] = {}
    best_k: int | None = None
    best_score = -np.inf
    for k in range(max(k_min, 2), k_max + 1):
        labels, _ = best_kmeans(data, k, seed)
        score = silhouette_score(data[sample], labels[sample])
        if score is None:
            continue
        scores[k] = score
        if score > best_score:
            best_k, best_score = k, score
    return best_k, scores


def kmeans_result(data: np.ndarray, k: int, seed: int) -> ClusterResult:
    labels, centers = best_kmeans(data, k, seed)
    sample = subsample(data, MAX_PAIRWISE_POINTS)
    return ClusterResult(
        method="kmeans",
        n_clusters=k,
        labels=labels.tolist(),
        sizes=[int((labels == j).sum()) for j in range(k)],
        centroids=centers.tolist(),
        silhouette=silhouette_score(data[sample], labels[sample]),
        davies_bouldin=davies_bouldin(data, labels),
        calinski_harabasz=calinski_harabasz(data, labels),
        parameters={"init": "k-means++", "restarts": KMEANS_RESTARTS, "seed": seed},
    )


# ---------------------------------------------------------------------------
# DBSCAN
# ---------------------------------------------------------------------------


def estimate_eps(data: np.ndarray, min_pts: int) -> float:
    """95th percentile of each point's distance to its min_pts-th neighbour."""
    dist = pairwise_distances(data)
    k = min(min_pts, data.shape[0] - 1)
    k_dist = np.sort(dist, axis=1)[:, k]
    eps = float(np.percentile(k_dist, EPS_PERCENTILE))
    return eps if eps > 0 else 1e-9


def dbscan_labels(data: np.ndarray, eps: float, min_pts: int) -> tuple[np.ndarray, np.ndarray]:
    """Density clustering; returns labels (``-1`` = noise) and the core mask."""
    dist = pairwise_distances(data)
    neighbours = dist <= eps
    core = neighbours.sum(axis=1) >= min_pts
    labels = np.full(data.shape[0], -1, dtype=int)
    cluster = 0
    for seed_point in np.flatnonzero(core):
        if labels[seed_point] != -1:
            continue
        labels[seed_point] = cluster
        frontier = [seed_point]
        while frontier:
            point = frontier.pop()
            if not core[point]:
                continue
            reached = neighbours[point] & (labels == -1)
            labels[reached] = cluster
            frontier.extend(np.flatnonzero(reached).tolist())
        cluster += 1
    return labels, core


def dbscan_result(data: np.ndarray, min_pts: int) -> ClusterResult:
    sample = subsample(data, MAX_PAIRWISE_POINTS)
    sampled = data[sample]
    eps = estimate_eps(sampled, min_pts)
    sample_labels, core = dbscan_labels(sampled, eps, min_pts)

    labels = np.full(data.shape[0], -1, dtype=int)
    labels[sample] = sample_labels
    core_idx = np.flatnonzero(core)
    if core_idx.size:
        rest = np.setdiff1d(np.arange(data.shape[0]), sample)
        if rest.size:
            idx, dist = nearest(data[rest], sampled[core_idx])
            labels[rest] = np.where(dist <= eps, sample_labels[core_idx][idx], -1)

    ids = np.unique(labels[labels >= 0])
    _, centers = centroids_for(data, labels)
    return ClusterResult(
        method="dbscan",
        n_clusters=int(ids.size),
        labels=labels.tolist(),
        sizes=[int((labels == i).sum()) for i in ids],
        centroids=centers.tolist() if ids.size else [],
        silhouette=silhouette_score(sampled, sample_labels),
        davies_bouldin=davies_bouldin(data, labels),
        calinski_harabasz=calinski_harabasz(data, labels),
        noise_points=int((labels == -1).sum()),
        parameters={"eps": finite(eps), "min_pts": min_pts},
    )


# ---------------------------------------------------------------------------
# Hierarchical
# ---------------------------------------------------------------------------


def agglomerative_labels(data: np.ndarray, n_clusters: int, linkage: str = "average") -> np.ndarray:
    """Bottom-up merging with Lance-Williams distance updates."""
    m = data.shape[0]
    dist = pairwise_distances(data)
    np.fill_diagonal(dist, np.inf)
    sizes = np.ones(m)
    members = np.arange(m)

    for _ in range(max(0, m - n_clusters)):
        i, j = divmod(int(np.argmin(dist)), m)
        if i > j:
            i, j = j, i
        if linkage == "single":
            merged = np.minimum(dist[i], dist[j])
        elif linkage == "complete":
            merged = np.maximum(dist[i], dist[j])
        else:
            merged = (sizes[i] * dist[i] + sizes[j] * dist[j]) / (sizes[i] + sizes[j])
        merged[i] = merged[j] = np.inf
        dist[i, :] = merged
        dist[:, i] = merged
        dist[j, :] = np.inf
        dist[:, j] = np.inf
        sizes[i] += sizes[j]
        members[members == j] = i

    _, labels = np.unique(members, return_inverse=True)
    return labels


def hierarchical_result(data: np.ndarray, n_clusters: int, linkage: str) -> ClusterResult:
    sample = subsample(data, MAX_HIERARCHICAL_POINTS)
    sample_labels = agglomerative_labels(data[sample], n_clusters, linkage)
    ids, centers = centroids_for(data[sample], sample_labels)
    idx, _ = nearest(data, centers)
    labels = ids[idx]
    labels[sample] = sample_labels
    return ClusterResult(
        method="hierarchical",
        n_clusters=int(ids.size),
        labels=labels.tolist(),
        sizes=[int((labels == i).sum()) for i in ids],
        centroids=centers.tolist(),
        silhouette=silhouette_score(data[sample], sample_labels),
        davies_bouldin=davies_bouldin(data, labels),
        calinski_harabasz=calinski_harabasz(data, labels),
        parameters={"linkage": linkage, "sample_size": int(sample.size)},
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def cluster_analysis(
    data: np.ndarray,
    features: list[str],
    k_range: tuple[int, int] = (2, 8),
    min_pts: int = 4,
    linkage: str = "average",
    seed: int = 42,
) -> ClusteringReport | None:
    """Run k-means, DBSCAN and hierarchical clustering on standardized rows.

    Parameters
    ----------
    data:
        ``(n_rows, n_features)`` matrix without missing values.
    features:
        Column names for *data*.

    Returns
    -------
    ClusteringReport | None
        ``None`` when there are too few rows to form two clusters.
    """
    if data.ndim != 2 or data.shape[0] < max(4, min_pts + 1) or data.shape[1] == 0:
        return None
    scaled = standardize(data)
    optimal_k, scores = find_optimal_k(scaled, k_range, seed)
    report = ClusteringReport(features=features, optimal_k=optimal_k, scores_by_k=scores)
    if optimal_k is not None:
        report.kmeans = kmeans_result(scaled, optimal_k, seed)
        report.hierarchical = hierarchical_result(scaled, optimal_k, linkage)
    report.dbscan = dbscan_result(scaled, min_pts)
    logger.debug(
        "sheetkit | stage=stats | detail=clustering rows=%d optimal_k=%s",
        data.shape[0],
        optimal_k,
    )
    return report
