"""Tests for chunk merging, content analysis and the text summary."""

from __future__ import annotations

from sheetkit.aggregator import (
    column_trend,
    data_quality_score,
    detect_language,
    merge_chunks,
    optimization_report,
    structure_summary,
    text_content,
    trends,
)
from sheetkit.config import AnalysisConfig
from sheetkit.errors import AnalysisIssue, ErrorCode
from sheetkit.models import (
    ColumnProfile,
    ColumnType,
    ExtractionMethod,
    SamplingInfo,
    SamplingMethod,
    SheetPatterns,
    SheetProfile,
    SheetStatistics,
    WorkbookAnalysis,
    WorkbookMetadata,
)

_NAMES = ["Alpha", "Beta", "Gamma"]


def _chunk(*names: str, confidence: float = 0.95, **meta) -> WorkbookAnalysis:
    return WorkbookAnalysis(
        sheets=[SheetProfile(name=n, rows=10, columns=2, cells=20) for n in names],
        metadata=WorkbookMetadata(sheet_names=_NAMES, **meta),
        confidence=confidence,
        extraction_method=ExtractionMethod.OPENPYXL,
        sheet_count=len(names),
    )


def _failed(message: str) -> WorkbookAnalysis:
    return WorkbookAnalysis(
        failed=True,
        issues=[AnalysisIssue(code=ErrorCode.W_CHUNK_FAILED, message=message, recoverable=True)],
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMergeChunks:
    def test_workbook_order_regardless_of_completion(self) -> None:
        chunks = [_chunk("Gamma"), _failed("chunk 2/3 failed"), _chunk("Alpha")]
        forward = merge_chunks(chunks)
        backward = merge_chunks(list(reversed(chunks)))
        assert [s.name for s in forward.sheets] == ["Alpha", "Gamma"]
        assert [s.name for s in backward.sheets] == ["Alpha", "Gamma"]
        assert forward.issues == backward.issues
        assert forward.sheet_count == 2
        assert forward.failed is False

    def test_lowest_confidence_wins(self) -> None:
        merged = merge_chunks([_chunk("Alpha"), _chunk("Beta", confidence=0.7)])
        assert merged.confidence == 0.7

    def test_metadata_flags_combined(self) -> None:
        merged = merge_chunks([_chunk("Alpha"), _chunk("Beta", has_macros=True)])
        assert merged.metadata.has_macros is True

    def test_all_failed(self) -> None:
        merged = merge_chunks([_failed("b"), _failed("a")])
        assert merged.failed is True
        assert [i.message for i in merged.issues] == ["a", "b"]


class TestStructureSummary:
    def test_totals(self) -> None:
        merged = merge_chunks([_chunk("Alpha", "Beta")])
        summary = structure_summary(merged)
        assert summary.sheets == 2
        assert summary.total_rows == 20
        assert summary.total_columns == 2
        assert summary.total_cells == 40
        assert summary.processed_chunks is None
        assert summary.partial_failure is False


# ---------------------------------------------------------------------------
# Content analysis
# ---------------------------------------------------------------------------


class TestDetectLanguage:
    def test_korean(self) -> None:
        sheet = SheetProfile(name="s", headers=["이름"], data=[["홍길동", 3]])
        assert detect_language([sheet]) == "ko"

    def test_english(self) -> None:
        assert detect_language([], "Quarterly report") == "en"

    def test_unknown(self) -> None:
        assert detect_language([SheetProfile(name="s", data=[[1, 2]])]) == "unknown"


class TestDataQualityScore:
    def test_averages_over_all_sheets(self) -> None:
        filled = SheetProfile(
            name="a",
            columns=2,
            cells=10,
            has_headers=True,
            data_types={"mixed": 1, "number": 1},
            statistics=SheetStatistics(total_cells=10, filled_cells=8),
        )
        empty = SheetProfile(name="b")
        score = data_quality_score([filled, empty])
        assert score.completeness == 0.4
        assert score.consistency == 0.25
        assert score.accuracy == 0.4
        assert score.overall == (0.4 + 0.25 + 0.4) / 3

    def test_no_sheets(self) -> None:
        assert data_quality_score([]).overall == 0.0


class TestTrends:
    def test_column_trend(self) -> None:
        assert column_trend([1, 1, 2, 2]) == "increasing"
        assert column_trend([4, 4, 2, 2]) == "decreasing"
        assert column_trend([10, 10, 10, 10.5]) == "stable"
        assert column_trend([1, 2, 3]) is None

    def test_named_by_sheet_and_column(self) -> None:
        sheet = SheetProfile(
            name="Sales",
            data=[[i, "x"] for i in range(1, 11)],
            column_details=[
                ColumnProfile(index=0, name="Units", type=ColumnType.NUMBER),
                ColumnProfile(index=1, name="Tag", type=ColumnType.TEXT),
            ],
            patterns=SheetPatterns(numerical=True),
        )
        assert trends([sheet]).increasing == ["Sales: Units"]


class TestOptimizationReport:
    def test_only_for_large_sheets(self) -> None:
        assert optimization_report([SheetProfile(name="s", rows=10)]) is None

    def test_estimates(self) -> None:
        sheet = SheetProfile(
            name="Big",
            rows=20_000,
            cells=40_000,
            is_large_sheet=True,
            sampling_info=SamplingInfo(
                method=SamplingMethod.STRATIFIED,
                original_rows=20_000,
                sampled_rows=1_000,
                coverage=5.0,
            ),
        )
        report = optimization_report([sheet])
        assert report.large_sheets == 1
        assert report.sampled_rows == 1_000
        assert report.estimated_memory_bytes == 2_000_000
        assert report.estimated_seconds == 2.0
        assert "(5.0%)" in report.time_efficiency


# ---------------------------------------------------------------------------
# Text content
# ---------------------------------------------------------------------------


class TestTextContent:
    def test_layout(self) -> None:
        sheet = SheetProfile(
            name="Data",
            rows=8,
            columns=2,
            cells=16,
            has_headers=True,
            headers=["ID", "Name"],
            data=[[i, None if i == 2 else f"n{i}"] for i in range(1, 8)],
            data_types={"number": 1, "text": 1},
            patterns=SheetPatterns(sequential=True),
        )
        analysis = WorkbookAnalysis(
            sheets=[sheet, SheetProfile(name="Extra")],
            metadata=WorkbookMetadata(title="Inventory", author="QA"),
        )
        text = text_content(analysis, AnalysisConfig(max_display_sheets=1))
        lines = text.splitlines()
        assert lines[:3] == ["Workbook: Inventory", "Author: QA", "Sheets: 2"]
        assert "[Sheet 1: Data]" in lines
        assert "- Types: text(1), number(1), date(0)" in lines
        assert "- Patterns: sequential" in lines
        assert "- Headers: ID | Name" in lines
        assert "Row 1: 1 | n1" in lines
        assert "Row 2: 2 | " in lines
        assert "... (5 of 7 rows shown)" in lines
        assert "Remaining sheets: Extra" in lines
        assert text.endswith("\n")

    def test_untitled(self) -> None:
        text = text_content(WorkbookAnalysis(), AnalysisConfig())
        assert text.startswith("Workbook: Untitled\nAuthor: Unknown\nSheets: 0")
