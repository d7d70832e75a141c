"""End-to-end tests for AnalysisEngine: the full pipeline, cache, abort and batch."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import openpyxl
import pytest

from sheetkit import AnalysisEngine
from sheetkit.config import AnalysisConfig
from sheetkit.engine import format_duration
from sheetkit.errors import CacheWriteFailureError, ErrorCode
from sheetkit.models import AnalysisStrategy, ExtractionMethod


class _Progress:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float]] = []

    def __call__(self, message: str, percentage: float) -> None:
        self.calls.append((message, percentage))


def _copy(src: Path, dest_dir: Path, name: str) -> str:
    dest = dest_dir / name
    shutil.copyfile(src, dest)
    return str(dest)


# ---------------------------------------------------------------------------
# Single-file analysis
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_success(self, simple_xlsx: Path, test_config: AnalysisConfig) -> None:
        progress = _Progress()
        with AnalysisEngine(test_config, progress_callback=progress) as engine:
            result = engine.analyze(str(simple_xlsx))
        assert result.success is True
        assert result.error is None
        assert result.analysis_strategy.strategy is AnalysisStrategy.TRADITIONAL
        assert result.basic_info.extension == ".xlsx"
        assert result.basic_info.file_name == "simple.xlsx"
        assert result.structure.sheets == 1
        assert result.structure.total_rows == 21
        assert result.content.startswith("Workbook: Inventory")
        assert result.analysis.language == "en"
        assert result.analysis.extraction_method is ExtractionMethod.OPENPYXL
        assert result.advanced_analysis is None
        assert result.data_validation is None
        assert result.cache_hit is False
        percentages = [p for _, p in progress.calls]
        assert percentages[0] == 0.0
        assert percentages[-1] == 100.0
        assert all(0.0 <= p <= 100.0 for p in percentages)

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "data.csv"
        path.write_text("a,b\n")
        result = AnalysisEngine().analyze(str(path))
        assert result.success is False
        assert result.error_type == "UnsupportedFormat"
        assert ".csv" in result.error

    def test_missing_file(self, tmp_path: Path) -> None:
        result = AnalysisEngine().analyze(str(tmp_path / "gone.xlsx"))
        assert result.success is False
        assert result.error_type == "FileNotFound"

    def test_size_limit(self, simple_xlsx: Path) -> None:
        result = AnalysisEngine(AnalysisConfig(max_file_size=100)).analyze(str(simple_xlsx))
        assert result.error_type == "SizeLimitExceeded"
        assert result.issues[0].code == ErrorCode.E_SIZE_LIMIT_EXCEEDED

    def test_invalid_options(self, simple_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(str(simple_xlsx), {"no_such_option": 1})
        assert result.success is False
        assert result.error_type == "InvalidOptions"

    def test_corrupt_file_still_reports(self, corrupt_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(str(corrupt_xlsx))
        assert result.success is True
        assert result.analysis.extraction_method is ExtractionMethod.PLACEHOLDER
        assert ErrorCode.W_PARSER_FALLBACK in [i.code for i in result.issues]

    def test_korean_language(self, korean_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(str(korean_xlsx))
        assert result.analysis.language == "ko"

    def test_advanced_analysis(self, sales_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(
            str(sales_xlsx),
            {"enable_advanced_analysis": True, "enable_time_series": True},
        )
        advanced = result.advanced_analysis
        assert advanced is not None
        assert advanced.summary.total_sheets == 1
        assert advanced.summary.successful_analyses == 1
        assert advanced.sheets["Sales"].time_series

    def test_forced_parallel(self, multi_sheet_xlsx: Path, test_config: AnalysisConfig) -> None:
        with AnalysisEngine(test_config) as engine:
            result = engine.analyze(str(multi_sheet_xlsx), {"force_parallel": True})
        assert result.analysis_strategy.strategy is AnalysisStrategy.PARALLEL
        assert result.structure.total_chunks == 2
        assert result.structure.processed_chunks == 2
        assert result.structure.partial_failure is False
        assert [s.name for s in result.structure.sheet_details] == [
            "Sheet1",
            "Sheet2",
            "Sheet3",
            "Sheet4",
        ]

    def test_forced_parallel_respects_sheet_cap(
        self, tmp_path: Path, test_config: AnalysisConfig
    ) -> None:
        wb = openpyxl.Workbook()
        for number in range(1, 9):
            ws = wb.active if number == 1 else wb.create_sheet()
            ws.title = f"Tab{number}"
            ws.append(["Key", "Amount"])
            ws.append(["a", number])
        path = tmp_path / "tabs.xlsx"
        wb.save(path)

        options = {"max_sheets": 2, "force_parallel": True, "worker_count": 4}
        with AnalysisEngine(test_config) as engine:
            result = engine.analyze(str(path), options)
        assert result.analysis_strategy.strategy is AnalysisStrategy.PARALLEL
        assert [s.name for s in result.structure.sheet_details] == ["Tab1", "Tab2"]
        assert ErrorCode.W_SHEETS_TRUNCATED in [i.code for i in result.issues]

    def test_forced_streaming(self, simple_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(str(simple_xlsx), {"force_streaming": True})
        assert result.analysis_strategy.strategy is AnalysisStrategy.STREAMING
        assert result.analysis.extraction_method is ExtractionMethod.OPENPYXL_STREAMING
        assert result.structure.total_rows == 21


# ---------------------------------------------------------------------------
# Precision mode
# ---------------------------------------------------------------------------


class TestValidation:
    def test_financial_name_enables_validation(self, gappy_xlsx: Path, tmp_path: Path) -> None:
        path = _copy(gappy_xlsx, tmp_path, "invoice_gaps.xlsx")
        result = AnalysisEngine().analyze(path)
        assert result.success is True
        assert result.data_validation is not None
        assert result.data_validation.financial_document is True
        assert result.advanced_analysis is not None
        messages = [i.message for i in result.issues if i.code == ErrorCode.W_VALIDATION_ISSUE]
        assert any("too many empty rows" in m for m in messages)

    def test_precision_option(self, simple_xlsx: Path) -> None:
        result = AnalysisEngine().analyze(str(simple_xlsx), {"precision_mode": True})
        assert result.data_validation is not None
        assert result.data_validation.financial_document is False
        assert result.data_validation.completeness_rate == 100.0


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestCaching:
    def test_second_call_hits(self, simple_xlsx: Path) -> None:
        engine = AnalysisEngine()
        first = engine.analyze(str(simple_xlsx))
        second = engine.analyze(str(simple_xlsx))
        assert second.cache_hit is True
        assert second.performance.cache_hit is True
        assert second.content == first.content
        assert engine.cache.stats()["hits"] == 1

    def test_options_change_key(self, simple_xlsx: Path) -> None:
        engine = AnalysisEngine()
        engine.analyze(str(simple_xlsx))
        result = engine.analyze(str(simple_xlsx), {"precision_mode": True})
        assert result.cache_hit is False
        assert len(engine.cache) == 2

    def test_modified_file_misses(self, simple_xlsx: Path, tmp_path: Path) -> None:
        path = _copy(simple_xlsx, tmp_path, "copy.xlsx")
        engine = AnalysisEngine()
        engine.analyze(path)
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert engine.analyze(path).cache_hit is False

    def test_disabled(self, simple_xlsx: Path) -> None:
        engine = AnalysisEngine(AnalysisConfig(enable_cache=False))
        engine.analyze(str(simple_xlsx))
        assert engine.analyze(str(simple_xlsx)).cache_hit is False
        assert len(engine.cache) == 0

    def test_write_failure_is_not_fatal(
        self, simple_xlsx: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        engine = AnalysisEngine()

        def explode(key, result):
            raise CacheWriteFailureError("disk full", stage="cache")

        monkeypatch.setattr(engine.cache, "put", explode)
        result = engine.analyze(str(simple_xlsx))
        assert result.success is True
        failures = [i for i in result.issues if i.code == ErrorCode.W_CACHE_WRITE_FAILURE]
        assert len(failures) == 1
        assert failures[0].recoverable is True


# ---------------------------------------------------------------------------
# Abort, batch, status
# ---------------------------------------------------------------------------


class TestAbort:
    def test_idle_abort(self) -> None:
        progress = _Progress()
        outcome = AnalysisEngine(progress_callback=progress).abort()
        assert outcome == {
            "success": True,
            "message": "Analysis aborted",
            "aborted_runs": 0,
            "terminated": 0,
            "unresponsive": 0,
        }
        assert progress.calls[-1] == ("Analysis aborted", -1)

    def test_in_flight_run_reports_aborted(self, multi_sheet_xlsx: Path) -> None:
        outcomes: list[dict] = []
        engine: AnalysisEngine | None = None

        def on_progress(message: str, percentage: float) -> None:
            if message.startswith("Strategy") and engine is not None:
                outcomes.append(engine.abort())

        engine = AnalysisEngine(progress_callback=on_progress)
        result = engine.analyze(str(multi_sheet_xlsx))
        assert result.success is False
        assert result.aborted is True
        assert result.error_type == "Aborted"
        assert outcomes[0]["aborted_runs"] == 1


class TestBatch:
    def test_order_preserved(self, simple_xlsx: Path, multi_sheet_xlsx: Path, tmp_path: Path) -> None:
        bad = tmp_path / "notes.txt"
        bad.write_text("x")
        paths = [str(multi_sheet_xlsx), str(bad), str(simple_xlsx)]
        batch = AnalysisEngine(AnalysisConfig(batch_concurrency=3)).analyze_batch(paths)
        assert [r.path for r in batch.results] == paths
        assert batch.total == 3
        assert batch.successful == 2
        assert batch.failed == 1
        assert batch.results[1].error_type == "UnsupportedFormat"

    def test_empty(self) -> None:
        batch = AnalysisEngine().analyze_batch([])
        assert batch.total == 0
        assert batch.results == []


class TestSystemStatus:
    def test_keys(self, test_config: AnalysisConfig) -> None:
        status = AnalysisEngine(test_config).get_system_status()
        assert set(status) == {"worker_pool", "cache", "memory", "settings"}
        assert status["worker_pool"] == {"total": 2, "active": 0, "available": 2}
        assert status["memory"]["rss"] > 0
        assert status["settings"]["worker_count"] == 2


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("ms", "expected"),
        [(500, "500ms"), (1500, "1.50s"), (125_000, "2m 5s")],
    )
    def test_format(self, ms: float, expected: str) -> None:
        assert format_duration(ms) == expected
