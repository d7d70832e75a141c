"""Statistics engine: runs the advanced analyses over one analyzed sheet.

Which analyses run is controlled by the config flags:

- always: descriptive and categorical statistics, outlier ensemble,
  data quality, per-column regression forecasts
- ``enable_advanced_analysis``: correlations, PCA, pattern mining
- ``enable_clustering``: k-means / DBSCAN / hierarchical clustering
- ``enable_time_series``: date-ordered decomposition and forecasts
- ``enable_ml``: feature importance
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from sheetkit.config import AnalysisConfig
from sheetkit.errors import ErrorCode
from sheetkit.models import (
    AdvancedSummary,
    ColumnProfile,
    ColumnType,
    Recommendation,
    SheetAdvancedAnalysis,
)
from sheetkit.sheet_analyzer import AnalyzedSheet, column_values, parse_date, to_number
from sheetkit.stats.clustering import cluster_analysis
from sheetkit.stats.correlation import correlation_report
from sheetkit.stats.descriptive import advanced_stats, categorical_stats
from sheetkit.stats.outliers import detect_outliers
from sheetkit.stats.patterns import mine_patterns
from sheetkit.stats.quality import data_quality, feature_importance
from sheetkit.stats.reduction import pca
from sheetkit.stats.timeseries import analyze_series, linear_regression_forecast

logger = logging.getLogger("sheetkit")

MAX_CATEGORIES = 50
MAX_SERIES = 5
LOW_QUALITY = 0.7


class StatisticsEngine:
    """Advanced per-sheet statistics.

    Parameters
    ----------
    config:
        Engine configuration; the ``enable_*`` flags select analyses and
        ``correlation_threshold``, ``min_support``, ``cluster_k_range``,
        ``dbscan_min_pts``, ``linkage`` and ``random_seed`` tune them.
    """

    def __init__(self, config: AnalysisConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze_sheet(self, sheet: AnalyzedSheet) -> SheetAdvancedAnalysis:
        """Analyze one sheet.  Never raises; failures set ``success=False``.

        Column profiles on ``sheet.profile`` are updated in place with
        their advanced statistics, anomalies and forecast.
        """
        try:
            return self._analyze(sheet)
        except Exception as exc:
            logger.warning(
                "sheetkit | stage=stats | sheet=%s | code=%s | detail=%s",
                sheet.profile.name,
                ErrorCode.W_STATS_FAILED.value,
                exc,
                exc_info=True,
            )
            return SheetAdvancedAnalysis(success=False, error=str(exc))

    def summarize(self, analyses: dict[str, SheetAdvancedAnalysis]) -> AdvancedSummary:
        summary = AdvancedSummary(total_sheets=len(analyses))
        for name, analysis in analyses.items():
            if not analysis.success:
                summary.failed_analyses += 1
                continue
            summary.successful_analyses += 1
            summary.insights.extend(f"{name}: {insight}" for insight in analysis.insights)
            summary.recommendations.extend(
                rec.model_copy(update={"sheet": name}) for rec in analysis.recommendations
            )
        return summary

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _analyze(self, sheet: AnalyzedSheet) -> SheetAdvancedAnalysis:
        config = self._config
        rows = sheet.rows
        details = sheet.profile.column_details
        result = SheetAdvancedAnalysis()
        if sheet.profile.error or not rows:
            return result

        numeric_cols = [c for c in details if c.type is ColumnType.NUMBER]
        text_cols = [c for c in details if c.type in (ColumnType.TEXT, ColumnType.BOOLEAN)]
        date_cols = [c for c in details if c.type is ColumnType.DATE]

        numeric = {c.name: self._numeric_array(rows, c) for c in numeric_cols}
        categorical = {c.name: self._string_values(rows, c) for c in text_cols}
        low_cardinality = {
            c.name: categorical[c.name] for c in text_cols if 2 <= c.unique_count <= MAX_CATEGORIES
        }
        result.numeric_columns = list(numeric)
        result.categorical_columns = list(low_cardinality)

        # 1. Descriptive statistics, outliers and per-column forecasts
        for column in numeric_cols:
            values = numeric[column.name]
            finite_values = values[np.isfinite(values)]
            stats = advanced_stats(finite_values)
            if stats is not None:
                result.descriptive[column.name] = stats
                column.advanced_stats = stats
            report = detect_outliers(finite_values, seed=config.random_seed)
            if report is not None:
                result.outliers[column.name] = report
                column.anomalies = report.anomalies
                if report.anomalies:
                    result.insights.append(
                        f"{column.name}: {len(report.anomalies)} anomalies detected"
                    )
            forecast = linear_regression_forecast(finite_values)
            if forecast is not None:
                result.forecasts[column.name] = forecast
                column.forecast = forecast

        for column in text_cols:
            stats = categorical_stats(
                [v for v in categorical[column.name] if v is not None], config.top_n
            )
            if stats is not None:
                result.categorical[column.name] = stats

        # 2. Data quality
        result.data_quality = data_quality(details, rows, result.outliers)

        # 3. Correlations, PCA, patterns
        if config.enable_advanced_analysis:
            result.correlations = correlation_report(
                pd.DataFrame(numeric),
                pd.DataFrame(low_cardinality),
                config.correlation_threshold,
            )
            for edge in result.correlations.strong_correlations:
                result.insights.append(
                    f"{edge.strength} correlation between {edge.source} and {edge.target} "
                    f"({edge.coefficient:.2f})"
                )
            matrix, features = self._complete_rows(numeric)
            result.pca = pca(matrix, features, seed=config.random_seed)
            order = self._date_order(rows, date_cols[0]) if date_cols else None
            result.patterns = mine_patterns(
                low_cardinality, numeric, order=order, min_support=config.min_support
            )

        # 4. Clustering
        if config.enable_clustering:
            matrix, features = self._complete_rows(numeric)
            if features:
                result.clustering = cluster_analysis(
                    matrix,
                    features,
                    k_range=config.cluster_k_range,
                    min_pts=config.dbscan_min_pts,
                    linkage=config.linkage,
                    seed=config.random_seed,
                )
            if result.clustering is not None and result.clustering.optimal_k:
                result.insights.append(
                    f"{result.clustering.optimal_k} natural clusters found"
                )

        # 5. Time series
        if config.enable_time_series and date_cols:
            dates = [parse_date(v) for v in column_values(rows, date_cols[0].index)]
            for column in numeric_cols[:MAX_SERIES]:
                values = numeric[column.name]
                points = [
                    (d, float(v)) for d, v in zip(dates, values) if d is not None and np.isfinite(v)
                ]
                report = analyze_series(date_cols[0].name, column.name, points)
                if report is None:
                    continue
                result.time_series.append(report)
                if report.seasonality.detected:
                    result.insights.append(
                        f"{column.name}: seasonality with period {report.seasonality.period}"
                    )

        # 6. Feature importance
        if config.enable_ml:
            result.feature_importance = feature_importance(numeric)

        result.recommendations = self._recommendations(result)
        return result

    @staticmethod
    def _numeric_array(rows: list, column: ColumnProfile) -> np.ndarray:
        values = [to_number(v) for v in column_values(rows, column.index)]
        return np.array([np.nan if v is None else v for v in values], dtype=float)

    @staticmethod
    def _string_values(rows: list, column: ColumnProfile) -> list[str | None]:
        out: list[str | None] = []
        for value in column_values(rows, column.index):
            text = None if value is None else str(value).strip()
            out.append(text or None)
        return out

    @staticmethod
    def _complete_rows(numeric: dict[str, np.ndarray]) -> tuple[np.ndarray, list[str]]:
        if not numeric:
            return np.empty((0, 0)), []
        features = list(numeric)
        matrix = np.column_stack([numeric[f] for f in features])
        return matrix[np.isfinite(matrix).all(axis=1)], features

    @staticmethod
    def _date_order(rows: list, column: ColumnProfile) -> list[int]:
        dated = [
            (i, d)
            for i, d in enumerate(parse_date(v) for v in column_values(rows, column.index))
            if d is not None
        ]
        return [i for i, _ in sorted(dated, key=lambda pair: pair[1])]

    @staticmethod
    def _recommendations(result: SheetAdvancedAnalysis) -> list[Recommendation]:
        recs: list[Recommendation] = []
        if result.data_quality is not None and result.data_quality.overall < LOW_QUALITY:
            recs.append(
                Recommendation(
                    type="data_quality",
                    priority="high",
                    message="Data quality needs improvement: "
                    + ", ".join(result.data_quality.issues),
                )
            )
        flagged = [name for name, rep in result.outliers.items() if rep.anomalies]
        if flagged:
            recs.append(
                Recommendation(
                    type="anomaly",
                    priority="medium",
                    message=f"Review anomalous values in {', '.join(flagged)}",
                )
            )
        if result.correlations is not None:
            for edge in result.correlations.strong_correlations:
                recs.append(
                    Recommendation(
                        type="correlation",
                        priority="medium",
                        message=f"Strong correlation between {edge.source} and {edge.target}; "
                        "check for multicollinearity or consider dimension reduction",
                    )
                )
        top = [f for f in result.feature_importance if f.method == "target_correlation"][:3]
        if top:
            recs.append(
                Recommendation(
                    type="ml_insight",
                    priority="high",
                    message="Key drivers: " + ", ".join(f.feature for f in top),
                )
            )
        if result.clustering is not None and result.clustering.optimal_k:
            recs.append(
                Recommendation(
                    type="clustering",
                    priority="medium",
                    message=f"{result.clustering.optimal_k} natural groups found; "
                    "consider per-segment analysis",
                )
            )
        return recs
