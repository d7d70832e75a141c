"""Precision-mode integrity validation over the retained sheet rows.

Active when the file name looks like a financial document or when
``precision_mode`` is set.  Validation never raises: an internal error is
reported as one more issue string.
"""

from __future__ import annotations

import logging
import os
import re

from sheetkit.models import SheetProfile, ValidationReport
from sheetkit.sheet_analyzer import to_number

logger = logging.getLogger("sheetkit")

FINANCIAL_KEYWORDS: tuple[str, ...] = (
    "invoice",
    "statement",
    "financial",
    "transaction",
    "내역",
    "명세",
    "재무",
    "회계",
    "거래",
    "매출",
    "매입",
    "손익",
)

AMOUNT_RE = re.compile(r"^[\-\+]?[\d,]+(\.\d+)?[원$₩]?$")

CONSECUTIVE_EMPTY_LIMIT = 5
TRAILING_ROWS_EXEMPT = 10
EMPTY_ROW_RATIO_LIMIT = 0.3
MIN_ROWS_FOR_RATIO = 10
EMPTY_COLUMN_RATIO_LIMIT = 0.5
COMPLETENESS_THRESHOLD = 70.0


def is_financial_document(file_path: str) -> bool:
    name = os.path.basename(file_path).lower()
    return any(keyword in name for keyword in FINANCIAL_KEYWORDS)


def _is_blank(value: object) -> bool:
    return value is None or value == ""


class IntegrityValidator:
    """Walk every retained data row of every sheet and collect issues."""

    def validate(self, sheets: list[SheetProfile]) -> ValidationReport:
        report = ValidationReport()
        try:
            for sheet in sheets:
                self._validate_sheet(sheet, report)

            stats = report.statistics
            if stats.total_data_cells > 0:
                rate = stats.verified_cells / stats.total_data_cells * 100.0
                report.completeness_rate = round(rate, 1)
                if rate < COMPLETENESS_THRESHOLD:
                    report.is_complete = False
                    report.issues.append(f"Overall data completeness too low: {rate:.1f}%")
                logger.info(
                    "sheetkit | stage=validate | detail=completeness %.1f%% (%d/%d cells)",
                    rate,
                    stats.verified_cells,
                    stats.total_data_cells,
                )
        except Exception as exc:
            logger.error("sheetkit | stage=validate | detail=%s", exc, exc_info=True)
            report.issues.append(f"Validation error: {exc}")
        return report

    def _validate_sheet(self, sheet: SheetProfile, report: ValidationReport) -> None:
        stats = report.statistics
        data = sheet.data
        if data:
            empty_rows = 0
            run = 0
            for index, row in enumerate(data):
                if all(_is_blank(c) for c in row):
                    empty_rows += 1
                    run += 1
                    continue
                self._flag_run(sheet.name, run, index - 1, len(data), report)
                run = 0
                for cell in row:
                    stats.total_data_cells += 1
                    if _is_blank(cell):
                        stats.empty_data_cells += 1
                        continue
                    stats.verified_cells += 1
                    if to_number(cell) is not None:
                        stats.numeric_cells += 1
                    if AMOUNT_RE.match(str(cell).strip()):
                        stats.amount_cells += 1
            self._flag_run(sheet.name, run, len(data) - 1, len(data), report)

            ratio = empty_rows / len(data)
            if ratio > EMPTY_ROW_RATIO_LIMIT and len(data) > MIN_ROWS_FOR_RATIO:
                report.issues.append(f"{sheet.name}: too many empty rows ({ratio * 100:.0f}%)")

        total_columns = sum(sheet.data_types.values())
        if total_columns > 0 and sheet.data_types.get("empty", 0) > total_columns * EMPTY_COLUMN_RATIO_LIMIT:
            report.issues.append(f"{sheet.name}: too many empty columns")

    @staticmethod
    def _flag_run(
        sheet_name: str,
        run: int,
        last_index: int,
        row_count: int,
        report: ValidationReport,
    ) -> None:
        """Report a run of empty rows ending at *last_index* once.

        Runs that reach the final ten rows are trailing padding, not gaps.
        """
        if run < CONSECUTIVE_EMPTY_LIMIT:
            return
        fifth = last_index - run + CONSECUTIVE_EMPTY_LIMIT
        if fifth < row_count - TRAILING_ROWS_EXEMPT:
            report.issues.append(f"{sheet_name}: {run} consecutive empty rows mid-sheet")
