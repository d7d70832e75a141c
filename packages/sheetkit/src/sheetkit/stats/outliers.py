"""Outlier ensemble over a single numeric column.

Four detectors vote on every value:

- ``iqr``: outside ``[Q1 - 1.5*IQR, Q3 + 1.5*IQR]``
- ``zscore``: ``|z| > 3`` (population standard deviation)
- ``isolation_forest``: random axis splits; short average path length
  means easy to isolate
- ``lof``: local outlier factor with ``k = 5`` nearest neighbours

A value is reported as an anomaly when at least two detectors flag it.
"""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np

from sheetkit.models import AnomalyRecord, OutlierReport, Severity
from sheetkit.stats.descriptive import finite

MIN_VALUES = 10
ENSEMBLE_VOTES = 2
Z_THRESHOLD = 3.0
LOF_NEIGHBOURS = 5
LOF_THRESHOLD = 1.5
FOREST_TREES = 100
FOREST_SAMPLE = 256
FOREST_THRESHOLD = 0.6

_EULER_GAMMA = 0.5772156649


# ---------------------------------------------------------------------------
# Individual detectors
# ---------------------------------------------------------------------------


def iqr_outliers(arr: np.ndarray) -> tuple[np.ndarray, float, float]:
    """Mask of values outside the Tukey fences, plus the fences."""
    q1, q3 = np.percentile(arr, [25, 75])
    spread = q3 - q1
    lower, upper = float(q1 - 1.5 * spread), float(q3 + 1.5 * spread)
    return (arr < lower) | (arr > upper), lower, upper


def z_scores(arr: np.ndarray) -> np.ndarray:
    std = arr.std()
    if std == 0:
        return np.zeros_like(arr)
    return (arr - arr.mean()) / std


def zscore_outliers(arr: np.ndarray, threshold: float = Z_THRESHOLD) -> np.ndarray:
    return np.abs(z_scores(arr)) > threshold


def average_path_length(n: int) -> float:
    """Expected path length ``c(n)`` of an unsuccessful BST search."""
    if n > 2:
        return 2.0 * (math.log(n - 1) + _EULER_GAMMA) - 2.0 * (n - 1) / n
    if n == 2:
        return 1.0
    return 0.0


def _path_lengths(
    points: np.ndarray,
    sample: np.ndarray,
    depth: int,
    max_depth: int,
    rng: np.random.Generator,
) -> np.ndarray:
    if points.size == 0:
        return np.empty(0)
    if depth >= max_depth or sample.size <= 1:
        return np.full(points.size, depth + average_path_length(sample.size))
    low, high = sample.min(), sample.max()
    if low == high:
        return np.full(points.size, depth + average_path_length(sample.size))

    split = rng.uniform(low, high)
    left = points < split
    out = np.empty(points.size)
    out[left] = _path_lengths(points[left], sample[sample < split], depth + 1, max_depth, rng)
    out[~left] = _path_lengths(points[~left], sample[sample >= split], depth + 1, max_depth, rng)
    return out


def isolation_scores(
    arr: np.ndarray,
    n_trees: int = FOREST_TREES,
    sample_size: int = FOREST_SAMPLE,
    seed: int = 42,
) -> np.ndarray:
    """Anomaly score in ``(0, 1]`` per value; higher is more anomalous."""
    rng = np.random.default_rng(seed)
    size = min(sample_size, arr.size)
    max_depth = math.ceil(math.log2(max(size, 2)))
    total = np.zeros(arr.size)
    for _ in range(n_trees):
        sample = rng.choice(arr, size=size, replace=False)
        total += _path_lengths(arr, sample, 0, max_depth, rng)
    norm = average_path_length(size) or 1.0
    return np.power(2.0, -(total / n_trees) / norm)


def isolation_forest_outliers(
    arr: np.ndarray,
    threshold: float = FOREST_THRESHOLD,
    seed: int = 42,
) -> np.ndarray:
    return isolation_scores(arr, seed=seed) > threshold


def lof_scores(arr: np.ndarray, k: int = LOF_NEIGHBOURS) -> np.ndarray:
    """Local outlier factor of each value.

    In one dimension the k nearest neighbours of a value lie within k
    positions of it in sorted order, so only that window is searched.
    """
    n = arr.size
    k = min(k, n - 1)
    order = np.argsort(arr, kind="stable")
    ranked = arr[order]

    offsets = np.concatenate([np.arange(-k, 0), np.arange(1, k + 1)])
    positions = np.arange(n)[:, None] + offsets[None, :]
    valid = (positions >= 0) & (positions < n)
    clipped = np.clip(positions, 0, n - 1)
    dist = np.where(valid, np.abs(ranked[clipped] - ranked[:, None]), np.inf)

    nearest = np.argsort(dist, axis=1, kind="stable")[:, :k]
    neighbour_pos = np.take_along_axis(clipped, nearest, axis=1)
    neighbour_dist = np.take_along_axis(dist, nearest, axis=1)
    k_distance = neighbour_dist[:, -1]

    reach = np.maximum(k_distance[neighbour_pos], neighbour_dist)
    lrd = 1.0 / (reach.mean(axis=1) + 1e-10)
    lof_sorted = lrd[neighbour_pos].mean(axis=1) / lrd

    scores = np.empty(n)
    scores[order] = lof_sorted
    return scores


def lof_outliers(arr: np.ndarray, threshold: float = LOF_THRESHOLD) -> np.ndarray:
    return lof_scores(arr) > threshold


# ---------------------------------------------------------------------------
# Ensemble
# ---------------------------------------------------------------------------


def severity_for(z: float) -> Severity:
    magnitude = abs(z)
    if magnitude > 5:
        return Severity.CRITICAL
    if magnitude > 4:
        return Severity.HIGH
    if magnitude > 3:
        return Severity.MEDIUM
    return Severity.LOW


def detect_outliers(values: Iterable[float], seed: int = 42) -> OutlierReport | None:
    """Run all four detectors and combine them by vote.

    Parameters
    ----------
    values:
        Numeric column values in row order.  Non-finite values are dropped
        before detection, so ``AnomalyRecord.index`` refers to the position
        among the finite values.
    seed:
        Seed for the isolation forest's random splits.

    Returns
    -------
    OutlierReport | None
        ``None`` when fewer than ten values are available.
    """
    arr = np.asarray(list(values), dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size < MIN_VALUES:
        return None

    iqr_mask, lower, upper = iqr_outliers(arr)
    z = z_scores(arr)
    masks = {
        "iqr": iqr_mask,
        "zscore": np.abs(z) > Z_THRESHOLD,
        "isolation_forest": isolation_forest_outliers(arr, seed=seed),
        "lof": lof_outliers(arr),
    }
    votes = np.sum(np.stack(list(masks.values())), axis=0)
    flagged = np.flatnonzero(votes >= ENSEMBLE_VOTES)

    anomalies = [
        AnomalyRecord(
            index=int(i),
            value=float(arr[i]),
            methods=[name for name, mask in masks.items() if mask[i]],
            severity=severity_for(z[i]),
            z_score=finite(z[i]),
        )
        for i in flagged
    ]
    counts = {name: int(mask.sum()) for name, mask in masks.items()}
    counts["ensemble"] = len(anomalies)
    return OutlierReport(
        method_counts=counts,
        lower_fence=finite(lower),
        upper_fence=finite(upper),
        anomalies=anomalies,
    )
