"""AnalysisEngine -- orchestrator and public API for sheetkit.

Drives one workbook through the analysis pipeline:

1. Pre-flight scan (extension, existence, emptiness).
2. Merge per-call options over the engine config; financial file names
   switch on precision mode.
3. Fingerprint the file and consult the result cache.
4. Select a strategy and run the matching ingestion adapter.
5. Aggregate chunk output into the structure, content and insight report.
6. Summarize the statistics engine output (advanced mode only).
7. Validate integrity (precision mode only).
8. Attach performance telemetry and cache the result.

:meth:`AnalysisEngine.analyze` never raises: every failure becomes an
``AnalysisResult`` with ``success=False``, ``error`` and ``error_type``.
The engine owns its cache and worker pool; nothing is process-global.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import psutil
from pydantic import ValidationError

from sheetkit.adapters import (
    ParallelAdapter,
    ProgressCallback,
    StreamingAdapter,
    TraditionalAdapter,
)
from sheetkit.aggregator import content_analysis, merge_chunks, structure_summary, text_content
from sheetkit.cache import ResultCache, process_rss
from sheetkit.config import AnalysisConfig
from sheetkit.errors import (
    ERROR_TYPES,
    AnalysisIssue,
    CacheWriteFailureError,
    ErrorCode,
    ParseFailureError,
    SheetkitError,
)
from sheetkit.models import (
    AdvancedAnalysis,
    AnalysisResult,
    AnalysisStrategy,
    BasicInfo,
    BatchResult,
    PerformanceInfo,
)
from sheetkit.security import PreflightScanner, fatal_issues, file_extension
from sheetkit.stats.engine import StatisticsEngine
from sheetkit.strategy import format_size, select_strategy
from sheetkit.validator import IntegrityValidator, is_financial_document
from sheetkit.workers import CancellationToken, WorkerPool

logger = logging.getLogger("sheetkit")

_MB = 1024 * 1024

# Options forced on for files whose name marks them as financial documents.
FINANCIAL_OVERRIDES: dict[str, bool] = {
    "precision_mode": True,
    "force_headers": True,
    "enable_advanced_analysis": True,
}


def format_duration(duration_ms: float) -> str:
    if duration_ms < 1000:
        return f"{duration_ms:.0f}ms"
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.2f}s"
    minutes, seconds = divmod(duration_ms / 1000, 60)
    return f"{int(minutes)}m {seconds:.0f}s"


def memory_snapshot() -> dict[str, Any]:
    """Process and system memory figures from psutil."""
    rss = process_rss()
    vm = psutil.virtual_memory()
    return {
        "rss": rss,
        "rss_formatted": format_size(rss),
        "system_total": vm.total,
        "system_available": vm.available,
        "system_percent": vm.percent,
    }


class AnalysisEngine:
    """Spreadsheet analysis engine.

    Parameters
    ----------
    config:
        Engine configuration.  Uses defaults when *None*.  Per-call options
        passed to :meth:`analyze` are merged over it.
    progress_callback:
        Optional ``callback(message, percentage)``.  Percentages run from
        0 to 100; ``-1`` signals an abort.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._config = config or AnalysisConfig()
        self._progress = progress_callback
        self._scanner = PreflightScanner()
        self._validator = IntegrityValidator()
        self._cache = ResultCache(
            max_entries=self._config.cache_size,
            max_result_bytes=self._config.cache_max_result_bytes,
            memory_ceiling_bytes=self._config.cache_memory_ceiling_mb * _MB,
            pressure_ratio=self._config.cache_memory_pressure_ratio,
        )
        self._pool = WorkerPool(self._config.worker_count)
        self._runs: dict[str, CancellationToken] = {}
        # Batch runs call analyze() from several threads.
        self._lock = threading.Lock()

    @property
    def config(self) -> AnalysisConfig:
        return self._config

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, file_path: str, options: dict[str, Any] | None = None) -> AnalysisResult:
        """Analyze one workbook.

        Parameters
        ----------
        file_path:
            Path to an ``.xls``, ``.xlsx``, ``.xlsm`` or ``.xlsb`` file.
        options:
            Per-call overrides of :class:`AnalysisConfig` fields.  Unknown
            keys produce a failed result.

        Returns
        -------
        AnalysisResult
            Never raises; check ``success``.
        """
        start = time.monotonic()
        run_id = str(uuid.uuid4())
        token = CancellationToken()
        with self._lock:
            self._runs[run_id] = token

        try:
            return self._analyze(file_path, options, token, start)
        except SheetkitError as exc:
            if token.cancelled and exc.code is not ErrorCode.E_ABORTED:
                return self._aborted(file_path, start)
            log = logger.warning if exc.code is ErrorCode.E_ABORTED else logger.error
            log(
                "sheetkit | stage=%s | file=%s | code=%s | detail=%s",
                exc.issue.stage or "analyze",
                os.path.basename(file_path),
                exc.code.value,
                exc.message,
            )
            return self._failure(
                file_path,
                exc.message,
                exc.error_type,
                [exc.issue],
                start,
                aborted=exc.code is ErrorCode.E_ABORTED,
            )
        except ValidationError as exc:
            logger.error(
                "sheetkit | stage=config | file=%s | detail=invalid options: %s",
                os.path.basename(file_path),
                exc.error_count(),
            )
            return self._failure(file_path, f"Invalid options: {exc}", "InvalidOptions", [], start)
        except Exception as exc:
            if token.cancelled:
                return self._aborted(file_path, start)
            logger.error(
                "sheetkit | stage=analyze | file=%s | code=%s | detail=%s",
                os.path.basename(file_path),
                ErrorCode.E_INTERNAL.value,
                exc,
                exc_info=True,
            )
            issue = AnalysisIssue(code=ErrorCode.E_INTERNAL, message=str(exc), stage="analyze")
            return self._failure(
                file_path, str(exc), ERROR_TYPES[ErrorCode.E_INTERNAL], [issue], start
            )
        finally:
            with self._lock:
                self._runs.pop(run_id, None)

    def analyze_batch(
        self,
        file_paths: list[str],
        options: dict[str, Any] | None = None,
    ) -> BatchResult:
        """Analyze several workbooks with bounded concurrency.

        ``results`` preserves the order of *file_paths*.
        """
        if not file_paths:
            return BatchResult(total=0, successful=0, failed=0, results=[])
        workers = min(self._config.batch_concurrency, len(file_paths))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sheetkit-batch") as ex:
            results = list(ex.map(lambda p: self.analyze(p, options), file_paths))
        successful = sum(1 for r in results if r.success)
        return BatchResult(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    def abort(self) -> dict[str, Any]:
        """Cancel every in-flight analysis and terminate active workers.

        In-flight ``analyze`` calls return ``success=False, aborted=True``.
        """
        with self._lock:
            tokens = list(self._runs.values())
        for token in tokens:
            token.cancel("aborted")
        workers = self._pool.terminate(self._config.abort_grace_seconds)
        logger.warning(
            "sheetkit | stage=abort | detail=%d run(s) cancelled, %d worker(s) terminated, "
            "%d unresponsive",
            len(tokens),
            workers["terminated"],
            workers["unresponsive"],
        )
        self._report("Analysis aborted", -1)
        return {
            "success": True,
            "message": "Analysis aborted",
            "aborted_runs": len(tokens),
            **workers,
        }

    def get_system_status(self) -> dict[str, Any]:
        config = self._config
        return {
            "worker_pool": self._pool.status(),
            "cache": self._cache.stats(),
            "memory": memory_snapshot(),
            "settings": {
                "max_file_size": config.max_file_size,
                "max_file_size_formatted": format_size(config.max_file_size),
                "max_rows_per_sheet": config.max_rows_per_sheet,
                "max_sheets": config.max_sheets,
                "enable_streaming": config.enable_streaming,
                "enable_workers": config.enable_workers,
                "enable_cache": config.enable_cache,
                "worker_count": config.worker_count,
                "timeout": config.timeout,
            },
        }

    def shutdown(self) -> None:
        """Release the worker pool and drop cached results."""
        self._pool.shutdown()
        self._cache.clear()

    def __enter__(self) -> AnalysisEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _analyze(
        self,
        file_path: str,
        options: dict[str, Any] | None,
        token: CancellationToken,
        start: float,
    ) -> AnalysisResult:
        filename = os.path.basename(file_path)
        self._report("Starting analysis", 0.0)

        # ----------------------------------------------------------
        # Step 1: Pre-flight
        # ----------------------------------------------------------
        issues = self._scanner.scan(file_path)
        fatal = fatal_issues(issues)
        if fatal:
            first = fatal[0]
            logger.error(
                "sheetkit | stage=preflight | file=%s | code=%s | detail=%s",
                filename,
                first.code.value,
                first.message,
            )
            return self._failure(
                file_path, first.message, ERROR_TYPES[first.code], issues, start
            )

        # ----------------------------------------------------------
        # Step 2: Effective config
        # ----------------------------------------------------------
        config = self._config.with_options(options)
        financial = is_financial_document(file_path)
        if financial:
            config = config.model_copy(update=FINANCIAL_OVERRIDES)
            logger.info(
                "sheetkit | stage=config | file=%s | detail=financial document, precision mode on",
                filename,
            )

        # ----------------------------------------------------------
        # Step 3: Fingerprint and cache lookup
        # ----------------------------------------------------------
        stat = os.stat(file_path)
        cache_key = ResultCache.make_key(
            file_path, stat.st_size, stat.st_mtime, config.model_dump(mode="json")
        )
        if config.enable_cache:
            with self._lock:
                cached = self._cache.get(cache_key)
            if cached is not None:
                cached.performance = self._performance(start, None, cache_hit=True)
                self._report("Loaded from cache", 100.0)
                logger.info(
                    "sheetkit | stage=cache | file=%s | key=%s | detail=cache hit",
                    filename,
                    cache_key[:16],
                )
                return cached

        # ----------------------------------------------------------
        # Step 4: Strategy and ingestion
        # ----------------------------------------------------------
        rss_before = process_rss()
        decision = select_strategy(stat.st_size, config)
        self._report(f"Strategy: {decision.strategy.value}", 10.0)
        logger.info(
            "sheetkit | stage=strategy | file=%s | detail=%s (%s)",
            filename,
            decision.strategy.value,
            decision.reason,
        )
        run = self._adapter(decision.strategy, config).run(file_path, token)
        token.raise_if_cancelled()

        # ----------------------------------------------------------
        # Step 5: Aggregate
        # ----------------------------------------------------------
        self._report("Aggregating results", 80.0)
        merged = merge_chunks(run.chunks)
        if merged.failed:
            raise ParseFailureError(
                "No chunk produced a usable workbook", stage="aggregate"
            )
        structure = structure_summary(merged, run.chunks if run.chunked else None)
        content = text_content(merged, config)
        analysis = content_analysis(merged, content)

        # ----------------------------------------------------------
        # Step 6: Advanced summary
        # ----------------------------------------------------------
        advanced = None
        if config.advanced_enabled:
            advanced = AdvancedAnalysis(
                sheets=merged.advanced,
                summary=StatisticsEngine(config).summarize(merged.advanced),
            )

        # ----------------------------------------------------------
        # Step 7: Integrity validation
        # ----------------------------------------------------------
        validation = None
        result_issues = issues + merged.issues
        if config.precision_mode or financial:
            self._report("Validating data integrity", 90.0)
            validation = self._validator.validate(merged.sheets)
            validation.financial_document = financial
            result_issues.extend(
                AnalysisIssue(
                    code=ErrorCode.W_VALIDATION_ISSUE,
                    message=message,
                    stage="validate",
                    recoverable=True,
                )
                for message in validation.issues
            )

        # ----------------------------------------------------------
        # Step 8: Assemble, cache, log
        # ----------------------------------------------------------
        result = AnalysisResult(
            success=True,
            path=file_path,
            basic_info=self._basic_info(file_path, stat),
            analysis_strategy=decision,
            content=content,
            structure=structure,
            metadata=merged.metadata,
            analysis=analysis,
            advanced_analysis=advanced,
            data_validation=validation,
            performance=self._performance(start, rss_before, cache_hit=False),
            issues=result_issues,
        )

        if config.enable_cache:
            self._store(cache_key, result)

        self._report("Analysis complete", 100.0)
        logger.info(
            "sheetkit | stage=complete | file=%s | key=%s | strategy=%s | sheets=%d | "
            "rows=%d | time=%s",
            filename,
            cache_key[:16],
            decision.strategy.value,
            structure.sheets,
            structure.total_rows,
            result.performance.duration_formatted,
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _adapter(
        self, strategy: AnalysisStrategy, config: AnalysisConfig
    ) -> TraditionalAdapter | StreamingAdapter | ParallelAdapter:
        if strategy is AnalysisStrategy.STREAMING:
            return StreamingAdapter(config, progress=self._progress)
        if strategy is AnalysisStrategy.PARALLEL:
            return ParallelAdapter(config, self._pool, progress=self._progress)
        return TraditionalAdapter(config, progress=self._progress)

    def _store(self, key: str, result: AnalysisResult) -> None:
        try:
            with self._lock:
                self._cache.put(key, result)
        except CacheWriteFailureError as exc:
            logger.warning(
                "sheetkit | stage=cache | file=%s | code=%s | detail=%s",
                os.path.basename(result.path),
                exc.code.value,
                exc.message,
            )
            issue = exc.issue.model_copy(update={"recoverable": True})
            result.issues.append(issue)

    def _report(self, message: str, percentage: float) -> None:
        if self._progress is not None:
            self._progress(message, percentage)

    def _performance(
        self, start: float, rss_before: int | None, *, cache_hit: bool
    ) -> PerformanceInfo:
        duration_ms = (time.monotonic() - start) * 1000.0
        memory = memory_snapshot()
        if rss_before is not None:
            memory["rss_delta"] = memory["rss"] - rss_before
        return PerformanceInfo(
            duration_ms=round(duration_ms, 2),
            duration_formatted=format_duration(duration_ms),
            memory=memory,
            cache_hit=cache_hit,
            cache_size=len(self._cache),
            active_workers=self._pool.active_count,
        )

    @staticmethod
    def _basic_info(file_path: str, stat: os.stat_result) -> BasicInfo:
        created = getattr(stat, "st_birthtime", stat.st_ctime)
        return BasicInfo(
            file_name=os.path.basename(file_path),
            file_path=os.path.abspath(file_path),
            extension=file_extension(file_path),
            file_size=stat.st_size,
            file_size_formatted=format_size(stat.st_size),
            modified=dt.datetime.fromtimestamp(stat.st_mtime).isoformat(timespec="seconds"),
            created=dt.datetime.fromtimestamp(created).isoformat(timespec="seconds"),
        )

    def _failure(
        self,
        file_path: str,
        error: str,
        error_type: str,
        issues: list[AnalysisIssue],
        start: float,
        *,
        aborted: bool = False,
    ) -> AnalysisResult:
        return AnalysisResult(
            success=False,
            path=file_path,
            error=error,
            error_type=error_type,
            aborted=aborted,
            issues=issues,
            performance=self._performance(start, None, cache_hit=False),
        )

    def _aborted(self, file_path: str, start: float) -> AnalysisResult:
        issue = AnalysisIssue(code=ErrorCode.E_ABORTED, message="Analysis aborted", stage="abort")
        logger.warning(
            "sheetkit | stage=abort | file=%s | code=%s | detail=run cancelled",
            os.path.basename(file_path),
            ErrorCode.E_ABORTED.value,
        )
        return self._failure(
            file_path, issue.message, ERROR_TYPES[ErrorCode.E_ABORTED], [issue], start, aborted=True
        )
