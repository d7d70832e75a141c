"""Six-dimension data quality score and feature importance ranking."""

from __future__ import annotations

import datetime as dt

import numpy as np

from sheetkit.models import (
    CellValue,
    ColumnProfile,
    ColumnType,
    DataQualityReport,
    FeatureImportance,
    OutlierReport,
)
from sheetkit.sheet_analyzer import column_values, parse_date, to_number
from sheetkit.stats.descriptive import finite

QUALITY_WEIGHTS: dict[str, float] = {
    "completeness": 0.25,
    "consistency": 0.20,
    "accuracy": 0.20,
    "uniqueness": 0.15,
    "validity": 0.15,
    "timeliness": 0.05,
}
ISSUE_THRESHOLD = 0.8
HIGH_SEVERITY_THRESHOLD = 0.5


def _filled(value: CellValue) -> bool:
    return value is not None and not (isinstance(value, str) and not value.strip())


def _kind(value: CellValue) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def completeness(columns: list[list[CellValue]]) -> float:
    total = sum(len(c) for c in columns)
    if not total:
        return 1.0
    return sum(1 for c in columns for v in c if _filled(v)) / total


def consistency(columns: list[list[CellValue]]) -> float:
    """1 minus the surplus storage kinds per column, averaged."""
    if not columns:
        return 1.0
    surplus = 0
    for values in columns:
        kinds = {_kind(v) for v in values if _filled(v)}
        surplus += max(0, len(kinds) - 1)
    return max(0.0, 1.0 - surplus / len(columns))


def accuracy(details: list[ColumnProfile], outliers: dict[str, OutlierReport], rows: int) -> float:
    """1 minus the anomaly ratio, averaged over numeric columns."""
    scores = [
        1.0 - len(outliers[c.name].anomalies) / max(rows, 1)
        for c in details
        if c.type is ColumnType.NUMBER and c.name in outliers
    ]
    return float(np.mean(scores)) if scores else 1.0


def uniqueness(columns: list[list[CellValue]]) -> float:
    total = unique = 0
    for values in columns:
        filled = [str(v) for v in values if _filled(v)]
        total += len(filled)
        unique += len(set(filled))
    return unique / total if total else 1.0


def validity(details: list[ColumnProfile], columns: list[list[CellValue]]) -> float:
    valid = total = 0
    for column, values in zip(details, columns):
        for value in values:
            if not _filled(value):
                continue
            total += 1
            if column.type is ColumnType.NUMBER:
                valid += to_number(value) is not None
            elif column.type is ColumnType.DATE:
                valid += parse_date(value) is not None
            else:
                valid += 1
    return valid / total if total else 1.0


def timeliness(
    details: list[ColumnProfile],
    columns: list[list[CellValue]],
    today: dt.date | None = None,
) -> float:
    """``1 - days_since_latest_date / 365``, clamped to ``[0, 1]``."""
    latest: dt.date | None = None
    for column, values in zip(details, columns):
        if column.type is not ColumnType.DATE:
            continue
        for value in values:
            parsed = parse_date(value)
            if parsed is not None and (latest is None or parsed > latest):
                latest = parsed
    if latest is None:
        return 1.0
    days = ((today or dt.date.today()) - latest).days
    return max(0.0, min(1.0, 1.0 - days / 365.0))


def data_quality(
    details: list[ColumnProfile],
    rows: list[list[CellValue]],
    outliers: dict[str, OutlierReport] | None = None,
    today: dt.date | None = None,
) -> DataQualityReport:
    """Score the analyzed rows of one sheet on six weighted dimensions.

    A dimension scoring below 0.8 adds an issue; below 0.5 the issue is
    marked high severity.
    """
    columns = [column_values(rows, c.index) for c in details]
    scores = {
        "completeness": completeness(columns),
        "consistency": consistency(columns),
        "accuracy": accuracy(details, outliers or {}, len(rows)),
        "uniqueness": uniqueness(columns),
        "validity": validity(details, columns),
        "timeliness": timeliness(details, columns, today),
    }
    overall = sum(scores[name] * weight for name, weight in QUALITY_WEIGHTS.items())
    issues = [
        f"{name} score {score:.2f} "
        f"({'high' if score < HIGH_SEVERITY_THRESHOLD else 'medium'} severity)"
        for name, score in scores.items()
        if score < ISSUE_THRESHOLD
    ]
    return DataQualityReport(
        **{name: finite(score) for name, score in scores.items()},
        overall=finite(overall),
        issues=issues,
    )


def feature_importance(numeric: dict[str, np.ndarray]) -> list[FeatureImportance]:
    """Rank numeric columns two ways.

    ``variance_share``: each column's squared coefficient of variation as a
    share of the total.  ``target_correlation``: absolute Pearson
    correlation with the last numeric column.
    """
    names = list(numeric)
    if len(names) < 2:
        return []

    cv2: dict[str, float] = {}
    for name in names:
        values = numeric[name][np.isfinite(numeric[name])]
        if values.size < 2 or values.mean() == 0:
            cv2[name] = 0.0
        else:
            cv2[name] = float((values.std() / abs(values.mean())) ** 2)
    total = sum(cv2.values())
    ranked = [
        FeatureImportance(
            feature=name,
            importance=finite(cv2[name] / total) if total else 0.0,
            method="variance_share",
        )
        for name in names
    ]

    target_name = names[-1]
    target = numeric[target_name]
    for name in names[:-1]:
        values = numeric[name]
        mask = np.isfinite(values) & np.isfinite(target)
        if mask.sum() < 3 or values[mask].std() == 0 or target[mask].std() == 0:
            r = 0.0
        else:
            r = float(np.corrcoef(values[mask], target[mask])[0, 1])
        ranked.append(
            FeatureImportance(feature=name, importance=finite(abs(r)), method="target_correlation")
        )

    ranked.sort(key=lambda f: (f.method, -f.importance, f.feature))
    return ranked
