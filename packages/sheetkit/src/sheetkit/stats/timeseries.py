"""Time-series analysis for a numeric column ordered by a date column.

Decomposition uses a trailing 12-period moving average for the trend and
period means of the detrended series for seasonality.  Forecasts are
deterministic: a first-difference drift projection, and an ordinary
least-squares line over the row index.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from sheetkit.models import (
    Forecast,
    SeasonalityInfo,
    StationarityInfo,
    TimeSeriesDecomposition,
    TimeSeriesReport,
)
from sheetkit.stats.descriptive import finite

MIN_POINTS = 12
PERIOD = 12
PEAK_THRESHOLD = 0.3
MAX_ACF_LAG = 24
MAX_HORIZON = 12
STATIONARY_SLOPE = 0.1
STATIONARY_VARIANCE_RATIO = 0.5
CHANGEPOINT_SIGMAS = 3.0


def moving_average(values: Sequence[float], window: int = PERIOD) -> list[float | None]:
    """Trailing mean; the first ``window - 1`` positions are ``None``."""
    arr = np.asarray(values, dtype=float)
    if arr.size < window:
        return [None] * arr.size
    sums = np.cumsum(np.insert(arr, 0, 0.0))
    means = (sums[window:] - sums[:-window]) / window
    return [None] * (window - 1) + [finite(m) for m in means]


def decompose(values: Sequence[float], period: int = PERIOD) -> TimeSeriesDecomposition:
    """Additive trend / seasonal / residual split."""
    arr = np.asarray(values, dtype=float)
    trend = moving_average(arr, period)
    detrended = np.array([v - t if t is not None else np.nan for v, t in zip(arr, trend)])

    season_means = np.zeros(period)
    for phase in range(period):
        phase_values = detrended[phase::period]
        phase_values = phase_values[np.isfinite(phase_values)]
        if phase_values.size:
            season_means[phase] = phase_values.mean()
    seasonal = [finite(season_means[i % period]) for i in range(arr.size)]

    residual: list[float | None] = [
        finite(v - t - s) if t is not None else None
        for v, t, s in zip(arr, trend, seasonal)
    ]
    return TimeSeriesDecomposition(
        period=period,
        trend=trend,
        seasonal=seasonal,
        residual=residual,
    )


def autocorrelation(values: Sequence[float], max_lag: int) -> list[float]:
    """ACF for lags ``1..max_lag``; element ``i`` is lag ``i + 1``."""
    arr = np.asarray(values, dtype=float)
    centred = arr - arr.mean()
    denom = float(np.sum(centred**2))
    if denom == 0:
        return [0.0] * max_lag
    return [
        finite(np.sum(centred[:-lag] * centred[lag:]) / denom) for lag in range(1, max_lag + 1)
    ]


def find_peaks(acf: Sequence[float], threshold: float = PEAK_THRESHOLD) -> list[int]:
    """Lags of local ACF maxima above *threshold*."""
    return [
        i + 1
        for i in range(1, len(acf) - 1)
        if acf[i] > acf[i - 1] and acf[i] > acf[i + 1] and acf[i] > threshold
    ]


def detect_seasonality(values: Sequence[float]) -> SeasonalityInfo:
    max_lag = min(MAX_ACF_LAG, len(values) // 4)
    if max_lag < 3:
        return SeasonalityInfo(detected=False)
    acf = autocorrelation(values, max_lag)
    peaks = find_peaks(acf)
    if not peaks:
        return SeasonalityInfo(detected=False)
    period = max(peaks, key=lambda lag: acf[lag - 1])
    return SeasonalityInfo(detected=True, period=period, peaks=peaks, strength=acf[period - 1])


def linear_fit(values: Sequence[float]) -> tuple[float, float, float]:
    """Slope, intercept and R^2 of an OLS line over the index."""
    y = np.asarray(values, dtype=float)
    x = np.arange(y.size, dtype=float)
    x_mean, y_mean = x.mean(), y.mean()
    sxx = float(np.sum((x - x_mean) ** 2))
    slope = float(np.sum((x - x_mean) * (y - y_mean)) / sxx) if sxx else 0.0
    intercept = float(y_mean - slope * x_mean)
    ss_tot = float(np.sum((y - y_mean) ** 2))
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r_squared = 1.0 - ss_res / ss_tot if ss_tot else 1.0
    return slope, intercept, r_squared


def check_stationarity(values: Sequence[float]) -> StationarityInfo:
    """Flat trend and similar half-variances.

    The slope is measured in standard deviations per step so the check does
    not depend on the unit of the column.
    """
    arr = np.asarray(values, dtype=float)
    variance = float(arr.var(ddof=1)) if arr.size > 1 else 0.0
    if variance == 0:
        return StationarityInfo(is_stationary=True, mean_shift=0.0, variance_ratio=0.0)
    slope, _, _ = linear_fit(arr)
    half = arr.size // 2
    first, second = arr[:half], arr[half:]
    var1 = float(first.var(ddof=1)) if first.size > 1 else 0.0
    var2 = float(second.var(ddof=1)) if second.size > 1 else 0.0
    mean_shift = abs(slope) / math.sqrt(variance)
    ratio = abs(var1 - var2) / variance
    return StationarityInfo(
        is_stationary=mean_shift < STATIONARY_SLOPE and ratio < STATIONARY_VARIANCE_RATIO,
        mean_shift=finite(mean_shift),
        variance_ratio=finite(ratio),
    )


def detect_changepoints(values: Sequence[float]) -> list[int]:
    """CUSUM against a 3-sigma threshold; the sum restarts after each hit."""
    arr = np.asarray(values, dtype=float)
    std = float(arr.std(ddof=1)) if arr.size > 1 else 0.0
    if std == 0:
        return []
    mean = float(arr.mean())
    threshold = CHANGEPOINT_SIGMAS * std
    points: list[int] = []
    cusum = 0.0
    for i in range(1, arr.size):
        cusum += arr[i] - mean
        if abs(cusum) > threshold:
            points.append(i)
            cusum = 0.0
    return points


def forecast_horizon(n: int) -> int:
    return min(MAX_HORIZON, n // 10)


def drift_forecast(values: Sequence[float]) -> Forecast | None:
    """Project the mean first difference forward from the last value.

    Confidence is ``clamp(1 - cv / 2)`` with ``cv`` the coefficient of
    variation of the first differences.
    """
    arr = np.asarray(values, dtype=float)
    horizon = forecast_horizon(arr.size)
    if horizon < 1:
        return None
    diffs = np.diff(arr)
    drift = float(diffs.mean())
    spread = float(diffs.std(ddof=1)) if diffs.size > 1 else 0.0
    cv = spread / abs(drift or 1.0)
    last = float(arr[-1])
    return Forecast(
        method="drift",
        horizon=horizon,
        values=[finite(last + drift * (i + 1)) for i in range(horizon)],
        confidence=finite(max(0.0, min(1.0, 1.0 - cv / 2.0))),
    )


def linear_regression_forecast(values: Sequence[float], horizon: int | None = None) -> Forecast | None:
    """Extend the OLS line over the index by *horizon* steps."""
    arr = np.asarray(values, dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size < 3:
        return None
    steps = horizon if horizon is not None else max(1, forecast_horizon(arr.size))
    slope, intercept, r_squared = linear_fit(arr)
    scale = abs(float(arr.mean())) or 1.0
    if abs(slope) / scale < 1e-3:
        trend = "stable"
    else:
        trend = "increasing" if slope > 0 else "decreasing"
    return Forecast(
        method="linear_regression",
        horizon=steps,
        values=[finite(slope * (arr.size + i) + intercept) for i in range(steps)],
        confidence=finite(max(0.0, min(1.0, r_squared))),
        slope=finite(slope),
        intercept=finite(intercept),
        r_squared=finite(r_squared),
        trend=trend,
    )


def analyze_series(
    date_column: str,
    value_column: str,
    points: Sequence[tuple[object, float]],
) -> TimeSeriesReport | None:
    """Full report for ``(date, value)`` pairs; sorted by date here.

    Returns ``None`` below twelve points.
    """
    if len(points) < MIN_POINTS:
        return None
    ordered = [value for _, value in sorted(points, key=lambda p: p[0])]
    return TimeSeriesReport(
        date_column=date_column,
        value_column=value_column,
        length=len(ordered),
        decomposition=decompose(ordered),
        seasonality=detect_seasonality(ordered),
        stationarity=check_stationarity(ordered),
        changepoints=detect_changepoints(ordered),
        forecast=drift_forecast(ordered),
    )
