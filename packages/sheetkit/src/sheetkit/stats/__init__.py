"""Statistics engine: descriptive statistics, outliers, correlations,
clustering, PCA, time series, pattern mining and data quality."""

from sheetkit.stats.clustering import cluster_analysis, find_optimal_k, silhouette_score
from sheetkit.stats.correlation import correlation_report
from sheetkit.stats.descriptive import advanced_stats, categorical_stats
from sheetkit.stats.engine import StatisticsEngine
from sheetkit.stats.outliers import detect_outliers
from sheetkit.stats.patterns import mine_patterns
from sheetkit.stats.quality import data_quality, feature_importance
from sheetkit.stats.reduction import pca
from sheetkit.stats.timeseries import analyze_series, linear_regression_forecast

__all__ = [
    "StatisticsEngine",
    "advanced_stats",
    "analyze_series",
    "categorical_stats",
    "cluster_analysis",
    "correlation_report",
    "data_quality",
    "detect_outliers",
    "feature_importance",
    "find_optimal_k",
    "linear_regression_forecast",
    "mine_patterns",
    "pca",
    "silhouette_score",
]
