"""Result aggregation: merge chunk analyses and derive the workbook report.

Chunk merging is order-independent: counts are summed, widths take the
maximum, and sheets are ordered by their position in the workbook rather
than by chunk completion order.
"""

from __future__ import annotations

import logging
import re

import numpy as np

from sheetkit.config import AnalysisConfig
from sheetkit.models import (
    BusinessInsights,
    ColumnType,
    ContentAnalysis,
    DataQualityScore,
    Opportunities,
    OptimizationReport,
    OverallStats,
    Risks,
    SheetProfile,
    StructureSummary,
    Trends,
    WorkbookAnalysis,
    WorkbookMetadata,
)
from sheetkit.sheet_analyzer import column_values, to_number
from sheetkit.strategy import format_size

logger = logging.getLogger("sheetkit")

_HANGUL_RE = re.compile(r"[가-힣]")
_LATIN_RE = re.compile(r"[A-Za-z]")

LARGE_SHEET_ROWS = 1000
TREND_CHANGE = 0.10
BYTES_PER_CELL = 50
ROWS_PER_SECOND = 10_000
SAMPLE_ROWS_IN_CONTENT = 5


# ---------------------------------------------------------------------------
# Chunk merge and structure
# ---------------------------------------------------------------------------


def merge_chunks(chunks: list[WorkbookAnalysis]) -> WorkbookAnalysis:
    """Merge the successful chunks of one run into a single analysis."""
    ok = [c for c in chunks if not c.failed]
    issues = [issue for c in chunks for issue in c.issues]
    issues.sort(key=lambda i: (i.code.value, i.sheet_name or "", i.message))
    if not ok:
        return WorkbookAnalysis(issues=issues, failed=True)

    metadata = _merged_metadata([c.metadata for c in ok])
    order = {name: i for i, name in enumerate(metadata.sheet_names)}
    sheets = sorted(
        (s for c in ok for s in c.sheets),
        key=lambda s: (order.get(s.name, len(order)), s.name),
    )
    advanced = {}
    for chunk in ok:
        advanced.update(chunk.advanced)
    primary = min(ok, key=lambda c: (c.confidence, c.extraction_method.value))
    return WorkbookAnalysis(
        sheets=sheets,
        advanced={s.name: advanced[s.name] for s in sheets if s.name in advanced},
        metadata=metadata,
        confidence=primary.confidence,
        extraction_method=primary.extraction_method,
        content="\n".join(sorted(c.content for c in ok if c.content)),
        sheet_count=max(sum(c.sheet_count for c in ok), len(sheets)),
        issues=issues,
    )


def _merged_metadata(items: list[WorkbookMetadata]) -> WorkbookMetadata:
    best = max(items, key=lambda m: len(m.sheet_names))
    return best.model_copy(
        update={
            "has_formulas": any(m.has_formulas for m in items),
            "has_charts": any(m.has_charts for m in items),
            "has_images": any(m.has_images for m in items),
            "has_macros": any(m.has_macros for m in items),
        }
    )


def structure_summary(
    analysis: WorkbookAnalysis,
    chunks: list[WorkbookAnalysis] | None = None,
) -> StructureSummary:
    """Sheet totals; chunk counts are filled in when *chunks* is given."""
    sheets = analysis.sheets
    summary = StructureSummary(
        sheets=max(analysis.sheet_count, len(sheets)),
        total_rows=sum(s.rows for s in sheets),
        total_columns=max((s.columns for s in sheets), default=0),
        total_cells=sum(s.cells for s in sheets),
        sheet_details=sheets,
    )
    if chunks is not None:
        processed = sum(1 for c in chunks if not c.failed)
        summary.processed_chunks = processed
        summary.total_chunks = len(chunks)
        summary.partial_failure = processed < len(chunks)
    return summary


def overall_stats(sheets: list[SheetProfile]) -> OverallStats:
    total_rows = sum(s.rows for s in sheets)
    return OverallStats(
        total_rows=total_rows,
        total_columns=max((s.columns for s in sheets), default=0),
        total_cells=sum(s.cells for s in sheets),
        total_sheets=len(sheets),
        avg_rows_per_sheet=total_rows / len(sheets) if sheets else 0.0,
    )


# ---------------------------------------------------------------------------
# Content analysis
# ---------------------------------------------------------------------------


def detect_language(sheets: list[SheetProfile], text: str = "") -> str:
    """``ko`` / ``en`` by majority of Hangul vs Latin letters, else ``unknown``."""
    korean = len(_HANGUL_RE.findall(text))
    english = len(_LATIN_RE.findall(text))
    for sheet in sheets:
        for cell in [*sheet.headers, *(c for row in sheet.data for c in row)]:
            if isinstance(cell, str):
                korean += len(_HANGUL_RE.findall(cell))
                english += len(_LATIN_RE.findall(cell))
    if korean > english:
        return "ko"
    if english > korean:
        return "en"
    return "unknown"


def data_type_totals(sheets: list[SheetProfile]) -> dict[str, int]:
    totals = {t.value: 0 for t in ColumnType}
    for sheet in sheets:
        for kind, count in sheet.data_types.items():
            totals[kind] = totals.get(kind, 0) + count
    return totals


def pattern_flags(sheets: list[SheetProfile]) -> dict[str, bool]:
    flags = {"sequential": False, "categorical": False, "temporal": False, "numerical": False}
    for sheet in sheets:
        for name, value in sheet.patterns.model_dump().items():
            flags[name] = flags.get(name, False) or bool(value)
    return flags


def data_quality_score(sheets: list[SheetProfile]) -> DataQualityScore:
    """Completeness (filled share), consistency (1 - mixed-column share) and
    accuracy (0.8 with headers, 0.5 without), averaged over sheets."""
    if not sheets:
        return DataQualityScore()
    completeness = consistency = accuracy = 0.0
    for sheet in sheets:
        if sheet.cells <= 0 or sheet.statistics.total_cells <= 0:
            continue
        completeness += sheet.statistics.filled_cells / sheet.statistics.total_cells
        consistency += 1 - sheet.data_types.get("mixed", 0) / max(sheet.columns, 1)
        accuracy += 0.8 if sheet.has_headers else 0.5
    n = len(sheets)
    score = DataQualityScore(
        completeness=completeness / n,
        consistency=consistency / n,
        accuracy=accuracy / n,
    )
    score.overall = (score.completeness + score.consistency + score.accuracy) / 3
    return score


def column_trend(values: list[float]) -> str | None:
    """Compare first-half and second-half means; ±10% marks a trend."""
    if len(values) < 4:
        return None
    half = len(values) // 2
    first = float(np.mean(values[:half]))
    second = float(np.mean(values[half:]))
    base = abs(first) if first else 1.0
    change = (second - first) / base
    if change > TREND_CHANGE:
        return "increasing"
    if change < -TREND_CHANGE:
        return "decreasing"
    return "stable"


def trends(sheets: list[SheetProfile]) -> Trends:
    result = Trends()
    for sheet in sheets:
        if not sheet.patterns.numerical:
            continue
        for column in sheet.column_details:
            if column.type is not ColumnType.NUMBER:
                continue
            numbers = [
                n for n in (to_number(v) for v in column_values(sheet.data, column.index))
                if n is not None
            ]
            direction = column_trend(numbers)
            if direction is not None:
                getattr(result, direction).append(f"{sheet.name}: {column.name}")
    return result


def opportunities(sheets: list[SheetProfile]) -> Opportunities:
    result = Opportunities()
    for sheet in sheets:
        empty = sheet.data_types.get("empty", 0)
        if empty > 0:
            result.data_gaps.append(f"{sheet.name}: {empty} empty columns")
        if sheet.rows > LARGE_SHEET_ROWS:
            result.optimization_areas.append(f"{sheet.name}: large data set, consider optimization")
        if sheet.patterns.sequential or sheet.patterns.temporal:
            result.automation_potential.append(f"{sheet.name}: automatable pattern found")
    return result


def risks(sheets: list[SheetProfile]) -> Risks:
    result = Risks()
    for sheet in sheets:
        if sheet.data_types.get("empty", 0) > sheet.columns * 0.5:
            result.data_loss.append(f"{sheet.name}: excessive empty data")
        if sheet.data_types.get("mixed", 0) > sheet.columns * 0.3:
            result.inconsistency.append(f"{sheet.name}: inconsistent data types")
        stats = sheet.statistics
        if stats.total_cells and stats.filled_cells / stats.total_cells < 0.5:
            result.quality.append(f"{sheet.name}: low data quality")
    return result


def recommendations(sheets: list[SheetProfile]) -> list[str]:
    recs: list[str] = []
    for sheet in sheets:
        if sheet.data_types.get("empty", 0) > 0:
            recs.append(f"{sheet.name}: clean up empty data")
        if not sheet.has_headers:
            recs.append(f"{sheet.name}: add a header row")
        if sheet.rows > LARGE_SHEET_ROWS:
            recs.append(f"{sheet.name}: consider migrating to a database")
        if sheet.patterns.numerical:
            recs.append(f"{sheet.name}: visualize the numeric data")
    return recs


def business_insights(sheets: list[SheetProfile]) -> BusinessInsights:
    return BusinessInsights(
        data_quality=data_quality_score(sheets),
        trends=trends(sheets),
        opportunities=opportunities(sheets),
        risks=risks(sheets),
        recommendations=recommendations(sheets),
    )


def optimization_report(sheets: list[SheetProfile]) -> OptimizationReport | None:
    """Memory and time estimates; only for workbooks with a sampled sheet."""
    large = [s for s in sheets if s.is_large_sheet]
    if not large:
        return None
    total_rows = sum(s.rows for s in sheets)
    sampled_rows = sum(
        s.sampling_info.sampled_rows if s.sampling_info is not None else s.rows for s in sheets
    )
    memory = sum(s.cells for s in sheets) * BYTES_PER_CELL
    seconds = total_rows / ROWS_PER_SECOND
    return OptimizationReport(
        total_sheets=len(sheets),
        large_sheets=len(large),
        total_rows=total_rows,
        sampled_rows=sampled_rows,
        estimated_memory_bytes=memory,
        memory_efficiency=f"{format_size(memory)} estimated for full load",
        estimated_seconds=round(seconds, 2),
        time_efficiency=(
            f"sampled {sampled_rows:,} of {total_rows:,} rows "
            f"({sampled_rows / total_rows * 100:.1f}%)"
            if total_rows
            else "no rows"
        ),
    )


def content_analysis(analysis: WorkbookAnalysis, text: str) -> ContentAnalysis:
    sheets = analysis.sheets
    return ContentAnalysis(
        language=detect_language(sheets, text),
        data_types=data_type_totals(sheets),
        patterns=pattern_flags(sheets),
        statistics=overall_stats(sheets),
        business_insights=business_insights(sheets),
        optimization=optimization_report(sheets),
        confidence=analysis.confidence,
        extraction_method=analysis.extraction_method,
    )


# ---------------------------------------------------------------------------
# Text content
# ---------------------------------------------------------------------------


def text_content(analysis: WorkbookAnalysis, config: AnalysisConfig) -> str:
    """Readable summary: workbook properties, then each sheet with its
    shape, types, patterns, headers and the first five data rows."""
    meta = analysis.metadata
    sheets = analysis.sheets
    lines = [
        f"Workbook: {meta.title or 'Untitled'}",
        f"Author: {meta.author or 'Unknown'}",
        f"Sheets: {len(sheets)}",
        "",
    ]
    large = [s for s in sheets if s.is_large_sheet]
    if large:
        lines += [f"Large sheets: {len(large)} sheet(s) were analyzed from a sample.", ""]

    shown = sheets[: config.max_display_sheets]
    for number, sheet in enumerate(shown, start=1):
        lines.append(f"[Sheet {number}: {sheet.name}]")
        lines.append(f"- Rows: {sheet.rows}, columns: {sheet.columns}, cells: {sheet.cells}")
        if sheet.sampling_info is not None and sheet.is_large_sheet:
            info = sheet.sampling_info
            lines.append(
                f"- Sampling: {info.sampled_rows} of {info.original_rows} rows "
                f"({info.coverage:.2f}% coverage)"
            )
        types = sheet.data_types
        lines.append(
            f"- Types: text({types.get('text', 0)}), number({types.get('number', 0)}), "
            f"date({types.get('date', 0)})"
        )
        active = [k for k, v in sheet.patterns.model_dump().items() if v]
        lines.append(f"- Patterns: {', '.join(active) or 'none'}")
        lines.append(f"- Headers: {' | '.join(sheet.headers) if sheet.headers else 'none'}")
        if sheet.data:
            lines.append("[Sample rows]")
            for idx, row in enumerate(sheet.data[:SAMPLE_ROWS_IN_CONTENT], start=1):
                if row:
                    lines.append(f"Row {idx}: {' | '.join('' if c is None else str(c) for c in row)}")
            if len(sheet.data) > SAMPLE_ROWS_IN_CONTENT:
                lines.append(
                    f"... ({SAMPLE_ROWS_IN_CONTENT} of {len(sheet.data)} rows shown)"
                )
        lines.append("")

    if len(sheets) > config.max_display_sheets:
        rest = sheets[config.max_display_sheets :]
        lines.append(f"... ({config.max_display_sheets} of {len(sheets)} sheets shown)")
        lines.append(f"Remaining sheets: {', '.join(s.name for s in rest)}")
        lines.append("")

    if analysis.content:
        lines.append(analysis.content)
    return "\n".join(lines).rstrip() + "\n"
