"""sheetkit -- spreadsheet analysis engine.

Public API exports for the engine, configuration, result models, errors
and the building blocks (parser chain, sheet analyzer, statistics engine,
cache, worker pool) for callers that compose their own pipeline.
"""

from sheetkit.adapters import ParallelAdapter, StreamingAdapter, TraditionalAdapter
from sheetkit.cache import ResultCache
from sheetkit.config import AnalysisConfig
from sheetkit.engine import AnalysisEngine
from sheetkit.errors import (
    AnalysisAbortedError,
    AnalysisIssue,
    CacheWriteFailureError,
    ErrorCode,
    ParseFailureError,
    SheetkitError,
    SizeLimitExceededError,
    UnsupportedFormatError,
    WorkerCrashError,
    WorkerTimeoutError,
)
from sheetkit.models import (
    AdvancedAnalysis,
    AnalysisResult,
    AnalysisStrategy,
    AnomalyRecord,
    BatchResult,
    ClusterResult,
    ColumnProfile,
    ColumnType,
    ContentAnalysis,
    CorrelationEdge,
    ExtractionMethod,
    SamplingMethod,
    SheetProfile,
    StrategyDecision,
    StructureSummary,
    TimeSeriesDecomposition,
    ValidationReport,
)
from sheetkit.parser_chain import ParserChain
from sheetkit.security import PreflightScanner
from sheetkit.sheet_analyzer import SheetAnalyzer
from sheetkit.stats import StatisticsEngine
from sheetkit.strategy import select_strategy
from sheetkit.validator import IntegrityValidator
from sheetkit.workers import CancellationToken, WorkerPool

__all__ = [
    # Engine
    "AnalysisEngine",
    # Config
    "AnalysisConfig",
    # Enums
    "AnalysisStrategy",
    "ColumnType",
    "ExtractionMethod",
    "SamplingMethod",
    # Result models
    "AnalysisResult",
    "BatchResult",
    "StrategyDecision",
    "StructureSummary",
    "SheetProfile",
    "ColumnProfile",
    "ContentAnalysis",
    "AdvancedAnalysis",
    "AnomalyRecord",
    "ClusterResult",
    "CorrelationEdge",
    "TimeSeriesDecomposition",
    "ValidationReport",
    # Components
    "select_strategy",
    "TraditionalAdapter",
    "StreamingAdapter",
    "ParallelAdapter",
    "ParserChain",
    "SheetAnalyzer",
    "StatisticsEngine",
    "ResultCache",
    "IntegrityValidator",
    "PreflightScanner",
    "WorkerPool",
    "CancellationToken",
    # Errors
    "ErrorCode",
    "AnalysisIssue",
    "SheetkitError",
    "UnsupportedFormatError",
    "SizeLimitExceededError",
    "ParseFailureError",
    "WorkerTimeoutError",
    "WorkerCrashError",
    "CacheWriteFailureError",
    "AnalysisAbortedError",
]
