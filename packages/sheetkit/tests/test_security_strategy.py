"""Tests for the pre-flight scanner, error wrappers, and strategy selection."""

from __future__ import annotations

from pathlib import Path

import pytest

from sheetkit.config import AnalysisConfig
from sheetkit.errors import (
    AnalysisAbortedError,
    ErrorCode,
    SizeLimitExceededError,
)
from sheetkit.models import AnalysisStrategy
from sheetkit.security import PreflightScanner, fatal_issues, file_extension
from sheetkit.strategy import estimate_memory, format_size, select_strategy

_MB = 1024 * 1024


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


class TestPreflightScanner:
    def test_valid_file_passes(self, simple_xlsx: Path) -> None:
        assert PreflightScanner().scan(str(simple_xlsx)) == []

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.csv"
        path.write_text("a,b\n1,2\n")
        issues = PreflightScanner().scan(str(path))
        assert [i.code for i in issues] == [ErrorCode.E_UNSUPPORTED_FORMAT]
        assert ".csv" in issues[0].message

    def test_missing_extension(self, tmp_path: Path) -> None:
        issues = PreflightScanner().scan(str(tmp_path / "README"))
        assert issues[0].code == ErrorCode.E_UNSUPPORTED_FORMAT
        assert "<none>" in issues[0].message

    def test_missing_file(self, tmp_path: Path) -> None:
        issues = PreflightScanner().scan(str(tmp_path / "absent.xlsx"))
        assert [i.code for i in issues] == [ErrorCode.E_FILE_NOT_FOUND]

    def test_zero_byte_file(self, tmp_path: Path) -> None:
        path = tmp_path / "zero.xls"
        path.write_bytes(b"")
        issues = PreflightScanner().scan(str(path))
        assert [i.code for i in issues] == [ErrorCode.E_PARSE_EMPTY]

    def test_extension_is_case_insensitive(self) -> None:
        assert file_extension("/data/Report.XLSX") == ".xlsx"

    def test_fatal_issues_filters_warnings(self, tmp_path: Path) -> None:
        issues = PreflightScanner().scan(str(tmp_path / "absent.xlsb"))
        assert fatal_issues(issues) == issues


class TestErrorWrappers:
    def test_error_type_follows_code(self) -> None:
        exc = SizeLimitExceededError("too big", stage="strategy")
        assert exc.code == ErrorCode.E_SIZE_LIMIT_EXCEEDED
        assert exc.error_type == "SizeLimitExceeded"
        assert exc.issue.stage == "strategy"
        assert exc.issue.recoverable is False

    def test_aborted(self) -> None:
        assert AnalysisAbortedError("stop").error_type == "Aborted"


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestSelectStrategy:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [
            (1 * _MB, AnalysisStrategy.TRADITIONAL),
            (50 * _MB, AnalysisStrategy.TRADITIONAL),
            (50 * _MB + 1, AnalysisStrategy.PARALLEL),
            (100 * _MB, AnalysisStrategy.PARALLEL),
            (100 * _MB + 1, AnalysisStrategy.STREAMING),
        ],
    )
    def test_size_thresholds(self, size: int, expected: AnalysisStrategy) -> None:
        assert select_strategy(size, AnalysisConfig()).strategy is expected

    def test_streaming_disabled_falls_to_parallel(self) -> None:
        config = AnalysisConfig(enable_streaming=False)
        assert select_strategy(200 * _MB, config).strategy is AnalysisStrategy.PARALLEL

    def test_workers_disabled_falls_to_traditional(self) -> None:
        config = AnalysisConfig(enable_workers=False)
        assert select_strategy(60 * _MB, config).strategy is AnalysisStrategy.TRADITIONAL

    def test_force_streaming_wins(self) -> None:
        config = AnalysisConfig(force_streaming=True, force_parallel=True)
        assert select_strategy(10, config).strategy is AnalysisStrategy.STREAMING

    def test_force_parallel(self) -> None:
        config = AnalysisConfig(force_parallel=True)
        decision = select_strategy(10, config)
        assert decision.strategy is AnalysisStrategy.PARALLEL
        assert decision.method == "worker_pool"

    def test_size_limit(self) -> None:
        config = AnalysisConfig(max_file_size=1000)
        with pytest.raises(SizeLimitExceededError):
            select_strategy(1001, config)

    def test_deterministic(self) -> None:
        config = AnalysisConfig()
        assert select_strategy(70 * _MB, config) == select_strategy(70 * _MB, config)

    def test_memory_estimates(self) -> None:
        assert estimate_memory(AnalysisStrategy.STREAMING, 1000 * _MB) == 50 * _MB
        assert estimate_memory(AnalysisStrategy.STREAMING, 100 * _MB) == 10 * _MB
        assert estimate_memory(AnalysisStrategy.PARALLEL, 10) == 20
        assert estimate_memory(AnalysisStrategy.TRADITIONAL, 10) == 30


class TestFormatSize:
    def test_bytes(self) -> None:
        assert format_size(512) == "512 B"

    def test_megabytes(self) -> None:
        assert format_size(1.5 * _MB) == "1.50 MB"
