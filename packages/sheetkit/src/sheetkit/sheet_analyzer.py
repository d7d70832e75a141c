"""Per-sheet profiling: header detection, sampling, type inference,
distributions and summary statistics.

The analyzer fails soft: any exception while profiling a sheet yields a
zeroed :class:`~sheetkit.models.SheetProfile` carrying the error message,
never an aborted workbook.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import re
from collections import Counter
from dataclasses import dataclass

import numpy as np

from sheetkit.config import AnalysisConfig
from sheetkit.models import (
    CellValue,
    ColumnProfile,
    ColumnType,
    Distribution,
    HistogramBin,
    NumericStats,
    RawSheet,
    SamplingInfo,
    SamplingMethod,
    SheetPatterns,
    SheetProfile,
    SheetStatistics,
    ValueCount,
)

logger = logging.getLogger("sheetkit")

_ISO_DATE_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_DMY_DATE_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})")
_BOOLEAN_WORDS = frozenset({"true", "false", "yes", "no", "1", "0"})
_HISTOGRAM_BINS = 10

# Stratified sample shares: head, middle, tail.  The middle block starts
# 30% of the way into the sheet.
_HEAD_SHARE = 0.4
_MIDDLE_SHARE = 0.2
_MIDDLE_OFFSET = 0.3


# ---------------------------------------------------------------------------
# Cell classification
# ---------------------------------------------------------------------------


def _is_blank(value: CellValue) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def to_number(value: CellValue) -> float | None:
    """Numeric value of *value*, or ``None`` when it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def classify_value(value: CellValue) -> str:
    """Vote for one of ``empty``, ``number``, ``date``, ``boolean``, ``text``.

    Checks run in that order, so ``"1"`` and ``"0"`` vote ``number``.
    """
    if _is_blank(value):
        return "empty"
    if isinstance(value, bool):
        return "boolean"
    if to_number(value) is not None:
        return "number"
    text = str(value).strip()
    if _ISO_DATE_RE.match(text) or _DMY_DATE_RE.match(text):
        return "date"
    if text.lower() in _BOOLEAN_WORDS:
        return "boolean"
    return "text"


def infer_column_type(values: list[CellValue]) -> tuple[ColumnType, dict[str, int]]:
    """Vote over the non-empty cells of a column.

    Returns the inferred type and the per-kind tally.  A column with more
    than one kind of vote is ``mixed``; a column with no votes is ``empty``.
    """
    tally: Counter[str] = Counter()
    for value in values:
        kind = classify_value(value)
        if kind != "empty":
            tally[kind] += 1
    if not tally:
        return ColumnType.EMPTY, {}
    if len(tally) > 1:
        return ColumnType.MIXED, dict(tally)
    return ColumnType(next(iter(tally))), dict(tally)


def parse_date(value: CellValue) -> dt.date | None:
    """Parse ``YYYY-MM-DD`` / ``DD-MM-YYYY`` style prefixes (``/`` also accepted).

    For the day-first form a leading value above 12 is read as the day,
    otherwise as the month.
    """
    if value is None:
        return None
    text = str(value).strip()
    match = _ISO_DATE_RE.match(text)
    try:
        if match:
            return dt.date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        match = _DMY_DATE_RE.match(text)
        if match:
            first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
            if first > 12:
                return dt.date(year, second, first)
            return dt.date(year, first, second)
    except ValueError:
        return None
    return None


# ---------------------------------------------------------------------------
# Header detection and sampling
# ---------------------------------------------------------------------------


def _text_cell_count(row: list[CellValue]) -> int:
    return sum(1 for c in row if isinstance(c, str) and c.strip())


def detect_header(rows: list[list[CellValue]], force: bool = False) -> bool:
    """True iff the first row has strictly more non-empty text cells than
    the second row and at least one.  *force* short-circuits to True for
    any non-empty sheet.
    """
    if not rows:
        return False
    if force:
        return True
    if len(rows) < 2:
        return False
    first = _text_cell_count(rows[0])
    second = _text_cell_count(rows[1])
    return first > second and first > 0


def sample_rows(
    rows: list[list[CellValue]],
    max_rows: int,
    sample_size: int,
) -> tuple[list[list[CellValue]], SamplingInfo]:
    """Full pass-through when ``len(rows) <= max_rows``, otherwise a
    stratified sample of *sample_size* rows.

    The stratified sample takes 40% from the head, 20% starting 30% of the
    way into the rows, and 40% from the tail.
    """
    total = len(rows)
    if total <= max_rows:
        return rows, SamplingInfo(
            method=SamplingMethod.FULL,
            original_rows=total,
            sampled_rows=total,
            coverage=100.0,
        )

    size = min(sample_size, max_rows, total)
    head = int(size * _HEAD_SHARE)
    middle = int(size * _MIDDLE_SHARE)
    tail = size - head - middle
    middle_start = int(total * _MIDDLE_OFFSET)

    sampled = rows[:head] + rows[middle_start : middle_start + middle] + rows[total - tail :]
    return sampled, SamplingInfo(
        method=SamplingMethod.STRATIFIED,
        original_rows=total,
        sampled_rows=len(sampled),
        coverage=round(len(sampled) / total * 100.0, 4),
    )


# ---------------------------------------------------------------------------
# Pattern predicates
# ---------------------------------------------------------------------------


def is_sequential(values: list[CellValue]) -> bool:
    """Numbers with a near-constant positive step."""
    numbers = [n for n in (to_number(v) for v in values) if n is not None]
    if len(numbers) < 3:
        return False
    diffs = np.diff(np.asarray(numbers, dtype=float))
    avg = float(diffs.mean())
    return float(diffs.var()) < avg * 0.1


def is_categorical(values: list[CellValue]) -> bool:
    if len(values) < 3:
        return False
    unique = len({str(v) for v in values})
    return unique / len(values) < 0.3


def is_temporal(values: list[CellValue]) -> bool:
    if len(values) < 3:
        return False
    dates = sum(1 for v in values if _ISO_DATE_RE.match(str(v).strip()))
    return dates > len(values) * 0.5


def is_numerical(values: list[CellValue]) -> bool:
    if len(values) < 3:
        return False
    numbers = sum(1 for v in values if to_number(v) is not None)
    return numbers > len(values) * 0.7


# ---------------------------------------------------------------------------
# Statistics and distributions
# ---------------------------------------------------------------------------


def numeric_stats(numbers: list[float]) -> NumericStats | None:
    if not numbers:
        return None
    arr = np.asarray(numbers, dtype=float)
    q1, median, q3 = (float(q) for q in np.percentile(arr, [25, 50, 75]))
    return NumericStats(
        count=int(arr.size),
        sum=float(arr.sum()),
        avg=float(arr.mean()),
        min=float(arr.min()),
        max=float(arr.max()),
        stddev=float(arr.std()),
        q1=q1,
        median=median,
        q3=q3,
        iqr=q3 - q1,
    )


def histogram(numbers: list[float], bins: int = _HISTOGRAM_BINS) -> list[HistogramBin]:
    """Equal-width bins over ``[min, max]``; the max lands in the last bin."""
    if not numbers:
        return []
    low, high = min(numbers), max(numbers)
    width = (high - low) / bins
    counts = [0] * bins
    for value in numbers:
        idx = 0 if width == 0 else min(int((value - low) / width), bins - 1)
        counts[idx] += 1
    return [
        HistogramBin(start=low + i * width, end=low + (i + 1) * width, count=counts[i])
        for i in range(bins)
    ]


def date_distribution(dates: list[dt.date]) -> Distribution:
    years: Counter[str] = Counter()
    months: Counter[str] = Counter()
    days: Counter[str] = Counter()
    weekdays: Counter[str] = Counter()
    for d in dates:
        years[str(d.year)] += 1
        months[f"{d.month:02d}"] += 1
        days[f"{d.day:02d}"] += 1
        weekdays[calendar.day_name[d.weekday()]] += 1
    return Distribution(
        years=dict(sorted(years.items())),
        months=dict(sorted(months.items())),
        days=dict(sorted(days.items())),
        weekdays=dict(weekdays),
    )


def sheet_statistics(rows: list[list[CellValue]]) -> SheetStatistics:
    if not rows:
        return SheetStatistics()
    lengths = [len(r) for r in rows]
    total = sum(lengths)
    filled = sum(1 for r in rows for c in r if not _is_blank(c))
    return SheetStatistics(
        total_cells=total,
        filled_cells=filled,
        empty_cells=total - filled,
        avg_row_length=total / len(rows),
        max_row_length=max(lengths),
        min_row_length=min(lengths),
    )


def unique_column_names(names: list[str]) -> list[str]:
    """Disambiguate repeated column names by appending _1, _2, etc."""
    seen: dict[str, int] = {}
    result: list[str] = []
    for name in names:
        if name in seen:
            seen[name] += 1
            result.append(f"{name}_{seen[name]}")
        else:
            seen[name] = 0
            result.append(name)
    return result


def column_values(rows: list[list[CellValue]], index: int) -> list[CellValue]:
    return [row[index] if index < len(row) else None for row in rows]


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


@dataclass
class AnalyzedSheet:
    """Profile plus the sampled data rows the statistics engine consumes."""

    profile: SheetProfile
    rows: list[list[CellValue]]


class SheetAnalyzer:
    """Profile decoded sheets.

    Parameters
    ----------
    config:
        Engine configuration (``max_rows_per_sheet``, ``sample_rows``,
        ``force_headers``, ``top_n``, ``max_display_rows``).
    """

    def __init__(self, config: AnalysisConfig) -> None:
        self._config = config

    def analyze(self, sheet: RawSheet) -> AnalyzedSheet:
        """Profile one sheet.  Never raises."""
        try:
            return self._analyze(sheet)
        except Exception as exc:
            logger.warning(
                "sheetkit | stage=analyze | sheet=%s | detail=%s",
                sheet.name,
                exc,
                exc_info=True,
            )
            return AnalyzedSheet(profile=SheetProfile(name=sheet.name, error=str(exc)), rows=[])

    def _analyze(self, sheet: RawSheet) -> AnalyzedSheet:
        config = self._config
        is_large = sheet.total_rows > config.max_rows_per_sheet

        if sheet.presampled:
            processed = sheet.rows
            sampling = SamplingInfo(
                method=SamplingMethod.STRATIFIED if is_large else SamplingMethod.FULL,
                original_rows=sheet.total_rows,
                sampled_rows=len(processed),
                coverage=min(100.0, round(len(processed) / max(sheet.total_rows, 1) * 100.0, 4)),
            )
        else:
            processed, sampling = sample_rows(
                sheet.rows, config.max_rows_per_sheet, config.sample_rows
            )
        if is_large:
            logger.warning(
                "sheetkit | stage=analyze | sheet=%s | detail=%d rows > %d, sampled %d rows",
                sheet.name,
                sheet.total_rows,
                config.max_rows_per_sheet,
                sampling.sampled_rows,
            )

        has_headers = detect_header(processed, force=config.force_headers)
        header_row = processed[0] if has_headers and processed else []
        data = processed[1:] if has_headers else processed

        width = max((len(r) for r in processed), default=0)
        columns: list[ColumnProfile] = []
        data_types: Counter[str] = Counter({t.value: 0 for t in ColumnType})
        patterns = SheetPatterns()
        names = unique_column_names([self._column_name(header_row, i) for i in range(width)])
        for idx in range(width):
            values = column_values(data, idx)
            name = names[idx]
            column = self._profile_column(idx, name, values)
            columns.append(column)
            data_types[column.type.value] += 1

            non_empty = [v for v in values if not _is_blank(v)]
            if len(non_empty) >= 2:
                patterns.sequential = patterns.sequential or is_sequential(non_empty)
                patterns.categorical = patterns.categorical or is_categorical(non_empty)
                patterns.temporal = patterns.temporal or is_temporal(non_empty)
                patterns.numerical = patterns.numerical or is_numerical(non_empty)

        profile = SheetProfile(
            name=sheet.name,
            rows=sheet.total_rows,
            columns=max(sheet.total_columns, width),
            cells=sheet.total_cells,
            has_headers=has_headers,
            headers=[self._column_name(header_row, i) for i in range(len(header_row))],
            data=[list(r) for r in data[: config.max_display_rows]],
            data_types=dict(data_types),
            column_details=columns,
            statistics=sheet_statistics(processed),
            patterns=patterns,
            sampling_info=sampling,
            is_large_sheet=is_large,
            hidden=sheet.hidden,
            merged_cell_count=sheet.merged_cell_count,
        )
        return AnalyzedSheet(profile=profile, rows=data)

    def _profile_column(self, index: int, name: str, values: list[CellValue]) -> ColumnProfile:
        col_type, tally = infer_column_type(values)
        non_empty = [v for v in values if not _is_blank(v)]
        counts = Counter(str(v).strip() for v in non_empty)
        column = ColumnProfile(
            index=index,
            name=name,
            type=col_type,
            type_counts=tally,
            non_empty=len(non_empty),
            unique_count=len(counts),
            top_values=[
                ValueCount(value=value, count=count)
                for value, count in counts.most_common(self._config.top_n)
            ],
        )
        if col_type is ColumnType.NUMBER:
            numbers = [n for n in (to_number(v) for v in non_empty) if n is not None]
            column.stats = numeric_stats(numbers)
            column.distribution = Distribution(histogram=histogram(numbers))
        elif col_type is ColumnType.DATE:
            dates = [d for d in (parse_date(v) for v in non_empty) if d is not None]
            column.distribution = date_distribution(dates)
        return column

    @staticmethod
    def _column_name(header_row: list[CellValue], index: int) -> str:
        if index < len(header_row) and not _is_blank(header_row[index]):
            return str(header_row[index]).strip()
        return f"Column{index + 1}"
