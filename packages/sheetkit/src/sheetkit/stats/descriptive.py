"""Descriptive statistics for numeric and categorical columns."""

from __future__ import annotations

import math
from collections import Counter
from typing import Iterable

import numpy as np
from scipy import stats

from sheetkit.models import (
    AdvancedStats,
    CategoricalStats,
    ConfidenceInterval,
    NormalityTest,
    ValueCount,
)

MIN_VALUES = 3
RARE_SHARE = 0.01
_PERCENTILES = (5, 10, 25, 50, 75, 90, 95)
_MAX_MODES = 10


def finite(value: float, default: float = 0.0) -> float:
    """*value* as a float, or *default* when it is NaN or infinite."""
    number = float(value)
    return number if math.isfinite(number) else default


def as_array(values: Iterable[float]) -> np.ndarray:
    arr = np.asarray(list(values), dtype=float)
    return arr[np.isfinite(arr)]


def skewness(arr: np.ndarray, mean: float, std: float) -> float:
    """Adjusted Fisher-Pearson sample skewness."""
    n = arr.size
    if n < 3 or std == 0:
        return 0.0
    z = (arr - mean) / std
    return float(n / ((n - 1) * (n - 2)) * np.sum(z**3))


def excess_kurtosis(arr: np.ndarray, mean: float, std: float) -> float:
    """Sample excess kurtosis; 0.0 below four values."""
    n = arr.size
    if n < 4 or std == 0:
        return 0.0
    z = (arr - mean) / std
    head = n * (n + 1) / ((n - 1) * (n - 2) * (n - 3)) * np.sum(z**4)
    tail = 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    return float(head - tail)


def jarque_bera(n: int, skew: float, kurt: float) -> NormalityTest:
    """Jarque-Bera statistic with its chi-square(2) p-value."""
    statistic = n / 6.0 * (skew**2 + kurt**2 / 4.0)
    p_value = float(stats.chi2.sf(statistic, 2))
    return NormalityTest(
        statistic=finite(statistic),
        p_value=finite(p_value, 1.0),
        is_normal=p_value > 0.05,
    )


def modes(arr: np.ndarray) -> list[float]:
    """Most frequent values.  Empty when every value occurs once."""
    values, counts = np.unique(arr, return_counts=True)
    top = counts.max()
    if top <= 1:
        return []
    return [float(v) for v in values[counts == top][:_MAX_MODES]]


def advanced_stats(values: Iterable[float]) -> AdvancedStats | None:
    """Full descriptive profile of a numeric column.

    Parameters
    ----------
    values:
        Numeric values; non-finite entries are dropped.

    Returns
    -------
    AdvancedStats | None
        ``None`` when fewer than three finite values remain.
    """
    arr = as_array(values)
    n = int(arr.size)
    if n < MIN_VALUES:
        return None

    mean = float(arr.mean())
    std = float(arr.std(ddof=1))
    skew = skewness(arr, mean, std)
    kurt = excess_kurtosis(arr, mean, std)

    se = std / math.sqrt(n)
    t_crit = float(stats.t.ppf(0.975, n - 1))
    percentiles = np.percentile(arr, _PERCENTILES)

    return AdvancedStats(
        count=n,
        mean=finite(mean),
        median=finite(np.median(arr)),
        mode=modes(arr),
        variance=finite(std**2),
        std=finite(std),
        skewness=finite(skew),
        kurtosis=finite(kurt),
        range=finite(arr.max() - arr.min()),
        coefficient_of_variation=finite(std / abs(mean)) if mean != 0 else None,
        percentiles={f"p{p}": finite(v) for p, v in zip(_PERCENTILES, percentiles)},
        confidence_interval=ConfidenceInterval(
            lower=finite(mean - t_crit * se),
            upper=finite(mean + t_crit * se),
        ),
        normality=jarque_bera(n, skew, kurt),
    )


def categorical_stats(values: Iterable[str], top_n: int = 10) -> CategoricalStats | None:
    """Frequencies, Shannon entropy (bits) and rare values (<1% share)."""
    counts = Counter(v for v in values if v != "")
    total = sum(counts.values())
    if not total:
        return None
    probs = np.asarray(list(counts.values()), dtype=float) / total
    entropy = float(-np.sum(probs * np.log2(probs)))
    return CategoricalStats(
        unique_count=len(counts),
        top_values=[ValueCount(value=v, count=c) for v, c in counts.most_common(top_n)],
        entropy=finite(entropy),
        rare_values=sorted(v for v, c in counts.items() if c / total < RARE_SHARE),
    )
