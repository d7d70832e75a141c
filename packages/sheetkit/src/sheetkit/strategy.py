"""Strategy selector: choose an ingestion adapter from file size and options."""

from __future__ import annotations

from sheetkit.config import AnalysisConfig
from sheetkit.errors import SizeLimitExceededError
from sheetkit.models import AnalysisStrategy, StrategyDecision

_MB = 1024 * 1024

# Streaming keeps a bounded working set regardless of file size.
_STREAMING_MEMORY_CAP = 50 * _MB


def format_size(num_bytes: float) -> str:
    """Human-readable byte size (``"1.5 MB"``)."""
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    idx = 0
    while size >= 1024 and idx < len(units) - 1:
        size /= 1024
        idx += 1
    if idx == 0:
        return f"{int(size)} B"
    return f"{size:.2f} {units[idx]}"


def estimate_memory(strategy: AnalysisStrategy, file_size: int) -> int:
    """Rough peak-memory estimate for *strategy* (telemetry only)."""
    if strategy is AnalysisStrategy.STREAMING:
        return int(min(_STREAMING_MEMORY_CAP, file_size * 0.1))
    if strategy is AnalysisStrategy.PARALLEL:
        return file_size * 2
    return file_size * 3


def select_strategy(file_size: int, config: AnalysisConfig) -> StrategyDecision:
    """Choose an ingestion strategy.

    A pure function of ``(file_size, config)``.  Explicit overrides
    (``force_streaming`` then ``force_parallel``) take precedence over the
    size thresholds.

    Raises:
        SizeLimitExceededError: If *file_size* exceeds ``config.max_file_size``.
    """
    if file_size > config.max_file_size:
        raise SizeLimitExceededError(
            f"File size {format_size(file_size)} exceeds limit of "
            f"{format_size(config.max_file_size)}",
            stage="strategy",
        )

    if config.force_streaming:
        strategy, reason = AnalysisStrategy.STREAMING, "forced by force_streaming"
    elif config.force_parallel:
        strategy, reason = AnalysisStrategy.PARALLEL, "forced by force_parallel"
    elif file_size > config.streaming_threshold and config.enable_streaming:
        strategy = AnalysisStrategy.STREAMING
        reason = f"size > {format_size(config.streaming_threshold)}"
    elif file_size > config.parallel_threshold and config.enable_workers:
        strategy = AnalysisStrategy.PARALLEL
        reason = f"size > {format_size(config.parallel_threshold)}"
    else:
        strategy, reason = AnalysisStrategy.TRADITIONAL, "default in-memory load"

    methods = {
        AnalysisStrategy.STREAMING: "stream",
        AnalysisStrategy.PARALLEL: "worker_pool",
        AnalysisStrategy.TRADITIONAL: "full_load",
    }
    return StrategyDecision(
        strategy=strategy,
        method=methods[strategy],
        reason=reason,
        file_size=file_size,
        estimated_memory_bytes=estimate_memory(strategy, file_size),
    )
