"""Correlation suite: Pearson, Spearman, Kendall tau-b, Cramér's V and
point-biserial, plus the correlation network built from strong edges."""

from __future__ import annotations

import itertools
import logging
import math

import numpy as np
import pandas as pd
from scipy import stats

from sheetkit.models import CorrelationEdge, CorrelationNetwork, CorrelationReport
from sheetkit.stats.descriptive import finite

logger = logging.getLogger("sheetkit")

MIN_PAIRS = 3
MAX_CATEGORIES = 50
MAX_CATEGORICAL_COLUMNS = 10


def strength_label(coefficient: float) -> str:
    magnitude = abs(coefficient)
    if magnitude >= 0.9:
        return "very strong"
    if magnitude >= 0.7:
        return "strong"
    if magnitude >= 0.5:
        return "moderate"
    if magnitude >= 0.3:
        return "weak"
    return "very weak"


def _matrix(frame: pd.DataFrame, method: str) -> dict[str, dict[str, float]]:
    corr = frame.corr(method=method, min_periods=MIN_PAIRS)
    return {
        str(row): {str(col): finite(corr.at[row, col]) for col in corr.columns}
        for row in corr.index
    }


def pearson_matrix(frame: pd.DataFrame) -> dict[str, dict[str, float]]:
    return _matrix(frame, "pearson")


def spearman_matrix(frame: pd.DataFrame) -> dict[str, dict[str, float]]:
    """Pearson over average ranks (ties share the mean rank)."""
    return _matrix(frame, "spearman")


def kendall_tau(x: np.ndarray, y: np.ndarray) -> tuple[float, float]:
    """Kendall tau-b with its two-sided p-value."""
    result = stats.kendalltau(x, y, variant="b")
    return finite(result.statistic), finite(result.pvalue, 1.0)


def kendall_matrix(frame: pd.DataFrame) -> dict[str, dict[str, float]]:
    columns = [str(c) for c in frame.columns]
    matrix = {c: {d: (1.0 if c == d else 0.0) for d in columns} for c in columns}
    for a, b in itertools.combinations(frame.columns, 2):
        pair = frame[[a, b]].dropna()
        if len(pair) < MIN_PAIRS:
            continue
        tau, _ = kendall_tau(pair[a].to_numpy(), pair[b].to_numpy())
        matrix[str(a)][str(b)] = matrix[str(b)][str(a)] = tau
    return matrix


def cramers_v(a: pd.Series, b: pd.Series) -> tuple[float, float] | None:
    """Cramér's V from the chi-square statistic of the contingency table.

    Returns ``(v, p_value)`` or ``None`` when the table is degenerate.
    """
    mask = a.notna() & b.notna()
    table = pd.crosstab(a[mask], b[mask])
    if table.shape[0] < 2 or table.shape[1] < 2:
        return None
    chi2, p_value, _, _ = stats.chi2_contingency(table.to_numpy(), correction=False)
    n = int(table.to_numpy().sum())
    v = math.sqrt(chi2 / (n * (min(table.shape) - 1)))
    return finite(v), finite(p_value, 1.0)


def point_biserial(binary: pd.Series, numeric: pd.Series) -> tuple[float, float] | None:
    """Correlation between a two-level categorical and a numeric column."""
    mask = binary.notna() & numeric.notna()
    levels = sorted(binary[mask].unique())
    if len(levels) != 2 or mask.sum() < MIN_PAIRS:
        return None
    codes = (binary[mask] == levels[1]).astype(float).to_numpy()
    values = numeric[mask].to_numpy(dtype=float)
    if values.std() == 0:
        return None
    result = stats.pointbiserialr(codes, values)
    return finite(result.statistic), finite(result.pvalue, 1.0)


def _numeric_edges(
    frame: pd.DataFrame,
    pearson: dict[str, dict[str, float]],
    threshold: float,
) -> list[CorrelationEdge]:
    edges: list[CorrelationEdge] = []
    for a, b in itertools.combinations(frame.columns, 2):
        coef = pearson[str(a)][str(b)]
        if abs(coef) <= threshold:
            continue
        pair = frame[[a, b]].dropna()
        p_value = None
        if len(pair) >= MIN_PAIRS and pair[a].std() > 0 and pair[b].std() > 0:
            p_value = finite(stats.pearsonr(pair[a], pair[b]).pvalue, 1.0)
        edges.append(
            CorrelationEdge(
                source=str(a),
                target=str(b),
                method="pearson",
                coefficient=coef,
                strength=strength_label(coef),
                p_value=p_value,
            )
        )
    return edges


def build_network(edges: list[CorrelationEdge], threshold: float) -> CorrelationNetwork:
    kept = [e for e in edges if abs(e.coefficient) > threshold]
    nodes: list[str] = []
    for edge in kept:
        for node in (edge.source, edge.target):
            if node not in nodes:
                nodes.append(node)
    return CorrelationNetwork(nodes=nodes, edges=kept)


def correlation_report(
    numeric: pd.DataFrame,
    categorical: pd.DataFrame,
    threshold: float = 0.7,
) -> CorrelationReport:
    """Every correlation measure that applies to the given columns.

    Parameters
    ----------
    numeric:
        Float columns, ``NaN`` where the cell was empty or non-numeric.
    categorical:
        String columns, ``None`` where the cell was empty.
    threshold:
        A strong correlation / network edge needs ``|coefficient|`` above this.
    """
    report = CorrelationReport()

    if numeric.shape[1] >= 2:
        report.pearson = pearson_matrix(numeric)
        report.spearman = spearman_matrix(numeric)
        report.kendall = kendall_matrix(numeric)
        report.strong_correlations = _numeric_edges(numeric, report.pearson, threshold)

    usable = [
        c
        for c in categorical.columns
        if 2 <= categorical[c].nunique(dropna=True) <= MAX_CATEGORIES
    ][:MAX_CATEGORICAL_COLUMNS]

    for a, b in itertools.combinations(usable, 2):
        result = cramers_v(categorical[a], categorical[b])
        if result is None:
            continue
        v, p_value = result
        report.categorical.append(
            CorrelationEdge(
                source=str(a),
                target=str(b),
                method="cramers_v",
                coefficient=v,
                strength=strength_label(v),
                p_value=p_value,
            )
        )

    for cat in usable:
        if categorical[cat].nunique(dropna=True) != 2:
            continue
        for num in numeric.columns:
            result = point_biserial(categorical[cat], numeric[num])
            if result is None:
                continue
            r, p_value = result
            report.point_biserial.append(
                CorrelationEdge(
                    source=str(cat),
                    target=str(num),
                    method="point_biserial",
                    coefficient=r,
                    strength=strength_label(r),
                    p_value=p_value,
                )
            )

    report.network = build_network(
        report.strong_correlations + report.categorical + report.point_biserial,
        threshold,
    )
    logger.debug(
        "sheetkit | stage=stats | detail=correlations numeric=%d categorical=%d edges=%d",
        numeric.shape[1],
        len(usable),
        len(report.network.edges),
    )
    return report
