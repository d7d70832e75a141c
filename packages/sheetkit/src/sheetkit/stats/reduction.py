"""Principal component analysis by power iteration with deflation."""

from __future__ import annotations

import numpy as np

from sheetkit.models import PCAResult
from sheetkit.stats.clustering import standardize
from sheetkit.stats.descriptive import finite

MAX_COMPONENTS = 10
POWER_MAX_ITER = 1000
POWER_TOL = 1e-10


def power_iteration(
    matrix: np.ndarray,
    rng: np.random.Generator,
    max_iter: int = POWER_MAX_ITER,
    tol: float = POWER_TOL,
) -> tuple[float, np.ndarray]:
    """Dominant eigenpair of a symmetric positive semi-definite matrix."""
    vector = rng.normal(size=matrix.shape[0])
    vector /= np.linalg.norm(vector)
    for _ in range(max_iter):
        product = matrix @ vector
        norm = np.linalg.norm(product)
        if norm == 0:
            return 0.0, vector
        updated = product / norm
        if np.abs(updated - vector).max() < tol:
            vector = updated
            break
        vector = updated
    return float(vector @ matrix @ vector), vector


def components_reaching(cumulative: list[float], share: float) -> int:
    for i, value in enumerate(cumulative):
        if value >= share - 1e-12:
            return i + 1
    return len(cumulative)


def pca(data: np.ndarray, features: list[str], seed: int = 42) -> PCAResult | None:
    """Eigen-decompose the covariance of the standardized columns.

    Parameters
    ----------
    data:
        ``(n_rows, n_features)`` matrix without missing values.
    features:
        Column names for *data*.

    Returns
    -------
    PCAResult | None
        ``None`` with fewer than two features or three rows.
    """
    if data.ndim != 2 or data.shape[1] < 2 or data.shape[0] < 3:
        return None

    cov = np.cov(standardize(data), rowvar=False)
    total = float(np.trace(cov))
    if total <= 0:
        return None

    rng = np.random.default_rng(seed)
    residual = cov.copy()
    eigenvalues: list[float] = []
    components: list[list[float]] = []
    for _ in range(min(MAX_COMPONENTS, data.shape[1])):
        value, vector = power_iteration(residual, rng)
        if value <= POWER_TOL:
            break
        eigenvalues.append(value)
        components.append(vector.tolist())
        residual = residual - value * np.outer(vector, vector)

    ratios = [finite(v / total) for v in eigenvalues]
    cumulative = np.cumsum(ratios).tolist()
    return PCAResult(
        features=features,
        eigenvalues=[finite(v) for v in eigenvalues],
        components=components,
        explained_variance_ratio=ratios,
        cumulative_variance=[finite(c) for c in cumulative],
        components_for_90=components_reaching(cumulative, 0.90),
        components_for_95=components_reaching(cumulative, 0.95),
    )
