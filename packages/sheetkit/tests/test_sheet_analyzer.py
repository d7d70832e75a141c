"""Tests for per-sheet profiling: type inference, headers, sampling, distributions."""

from __future__ import annotations

import datetime as dt

import pytest

from sheetkit.config import AnalysisConfig
from sheetkit.models import ColumnType, RawSheet, SamplingMethod
from sheetkit.sheet_analyzer import (
    SheetAnalyzer,
    classify_value,
    detect_header,
    histogram,
    infer_column_type,
    parse_date,
    sample_rows,
    to_number,
    unique_column_names,
)


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------


class TestTypeInference:
    def test_numeric_strings(self) -> None:
        assert infer_column_type(["1", "2", "3"])[0] is ColumnType.NUMBER

    def test_iso_dates(self) -> None:
        assert infer_column_type(["2024-01-01", "2024-02-01"])[0] is ColumnType.DATE

    def test_mixed(self) -> None:
        col_type, tally = infer_column_type(["1", "a"])
        assert col_type is ColumnType.MIXED
        assert tally == {"number": 1, "text": 1}

    def test_empty(self) -> None:
        assert infer_column_type([None, "", "  "])[0] is ColumnType.EMPTY

    def test_blanks_do_not_vote(self) -> None:
        assert infer_column_type([1, None, 2.5, ""])[0] is ColumnType.NUMBER

    def test_boolean_words(self) -> None:
        assert infer_column_type(["yes", "No", True])[0] is ColumnType.BOOLEAN

    def test_day_first_date(self) -> None:
        assert classify_value("31-12-2023") == "date"

    def test_thousands_separator(self) -> None:
        assert to_number("1,234.5") == 1234.5

    def test_bool_is_not_number(self) -> None:
        assert to_number(True) is None


class TestParseDate:
    def test_iso(self) -> None:
        assert parse_date("2024-02-29") == dt.date(2024, 2, 29)

    def test_day_first_when_unambiguous(self) -> None:
        assert parse_date("25/12/2023") == dt.date(2023, 12, 25)

    def test_invalid(self) -> None:
        assert parse_date("2023-13-45") is None


# ---------------------------------------------------------------------------
# Headers and sampling
# ---------------------------------------------------------------------------


class TestDetectHeader:
    def test_text_over_numbers(self) -> None:
        assert detect_header([["a", "b"], [1, 2]]) is True

    def test_equal_text_counts(self) -> None:
        assert detect_header([["a", "b"], ["c", "d"]]) is False

    def test_single_row(self) -> None:
        assert detect_header([["a"]]) is False

    def test_forced(self) -> None:
        assert detect_header([[1], [2]], force=True) is True

    def test_forced_empty(self) -> None:
        assert detect_header([], force=True) is False


class TestSampleRows:
    def test_full_when_within_limit(self) -> None:
        rows = [[i] for i in range(500)]
        sampled, info = sample_rows(rows, max_rows=1000, sample_size=100)
        assert sampled is rows
        assert info.method is SamplingMethod.FULL
        assert info.coverage == 100.0

    def test_stratified_segments(self) -> None:
        rows = [[i] for i in range(2000)]
        sampled, info = sample_rows(rows, max_rows=1000, sample_size=100)
        assert info.method is SamplingMethod.STRATIFIED
        assert info.original_rows == 2000
        assert info.sampled_rows == 100
        assert info.coverage == pytest.approx(5.0)
        values = [r[0] for r in sampled]
        assert values[:40] == list(range(40))
        assert values[40:60] == list(range(600, 620))
        assert values[60:] == list(range(1960, 2000))

    def test_sample_never_exceeds_max_rows(self) -> None:
        rows = [[i] for i in range(300)]
        sampled, _ = sample_rows(rows, max_rows=100, sample_size=50_000)
        assert len(sampled) == 100


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class TestSheetAnalyzer:
    def test_profile(self) -> None:
        rows = [["ID", "Name", "Joined"]] + [
            [i, f"user{i}", f"2024-01-{i:02d}"] for i in range(1, 11)
        ]
        analyzed = SheetAnalyzer(AnalysisConfig()).analyze(RawSheet(name="Users", rows=rows))
        profile = analyzed.profile
        assert profile.rows == 11
        assert profile.columns == 3
        assert profile.has_headers is True
        assert profile.headers == ["ID", "Name", "Joined"]
        assert len(analyzed.rows) == 10
        types = [c.type for c in profile.column_details]
        assert types == [ColumnType.NUMBER, ColumnType.TEXT, ColumnType.DATE]
        assert profile.data_types["number"] == 1
        assert profile.patterns.sequential is True
        assert profile.patterns.temporal is True

    def test_numeric_stats_and_histogram(self) -> None:
        rows = [["v"]] + [[i] for i in range(1, 11)]
        profile = SheetAnalyzer(AnalysisConfig()).analyze(RawSheet(name="S", rows=rows)).profile
        column = profile.column_details[0]
        assert column.stats.sum == 55
        assert column.stats.min == 1
        assert column.stats.max == 10
        assert column.stats.median == pytest.approx(5.5)
        assert sum(b.count for b in column.distribution.histogram) == 10
        assert len(column.distribution.histogram) == 10

    def test_date_distribution(self) -> None:
        rows = [["d"], ["2024-01-01"], ["2024-01-08"], ["2023-06-15"]]
        config = AnalysisConfig(force_headers=True)
        profile = SheetAnalyzer(config).analyze(RawSheet(name="S", rows=rows)).profile
        dist = profile.column_details[0].distribution
        assert dist.years == {"2023": 1, "2024": 2}
        assert dist.weekdays["Monday"] == 2

    def test_large_sheet_keeps_original_row_count(self) -> None:
        rows = [[i, i * 2] for i in range(300)]
        config = AnalysisConfig(max_rows_per_sheet=100, sample_rows=50)
        profile = SheetAnalyzer(config).analyze(RawSheet(name="Big", rows=rows)).profile
        assert profile.rows == 300
        assert profile.is_large_sheet is True
        assert profile.sampling_info.method is SamplingMethod.STRATIFIED
        assert profile.sampling_info.coverage < 100

    def test_presampled_sheet(self) -> None:
        raw = RawSheet(name="Stream", rows=[[1], [2]], total_rows=5000, presampled=True)
        profile = SheetAnalyzer(AnalysisConfig(max_rows_per_sheet=1000)).analyze(raw).profile
        assert profile.rows == 5000
        assert profile.sampling_info.sampled_rows == 2
        assert profile.sampling_info.method is SamplingMethod.STRATIFIED

    def test_duplicate_headers_disambiguated(self) -> None:
        assert unique_column_names(["a", "a", "b", "a"]) == ["a", "a_1", "b", "a_2"]

    def test_fails_soft(self, monkeypatch: pytest.MonkeyPatch) -> None:
        analyzer = SheetAnalyzer(AnalysisConfig())

        def explode(*args, **kwargs):
            raise RuntimeError("bad sheet")

        monkeypatch.setattr(analyzer, "_profile_column", explode)
        analyzed = analyzer.analyze(RawSheet(name="Bad", rows=[["a"], [1]]))
        assert analyzed.profile.error == "bad sheet"
        assert analyzed.profile.rows == 0
        assert analyzed.rows == []


class TestHistogram:
    def test_constant_values(self) -> None:
        bins = histogram([3.0, 3.0, 3.0])
        assert bins[0].count == 3
        assert sum(b.count for b in bins) == 3
