"""Shared test fixtures for sheetkit tests.

Provides config fixtures and session-scoped .xlsx file generators built
with openpyxl in a temporary directory.
"""

from __future__ import annotations

import pathlib
import tempfile

import openpyxl
import pytest

from sheetkit.config import AnalysisConfig


@pytest.fixture()
def default_config() -> AnalysisConfig:
    """Return an AnalysisConfig with all defaults."""
    return AnalysisConfig()


@pytest.fixture()
def test_config() -> AnalysisConfig:
    """``AnalysisConfig`` pre-set with test-friendly values."""
    return AnalysisConfig(
        worker_count=2,
        timeout=10_000,
        abort_grace_seconds=1.0,
        log_sample_data=True,
    )


# ---------------------------------------------------------------------------
# Session-scoped .xlsx Fixture Generators
# ---------------------------------------------------------------------------

_XLSX_TMP_DIR: tempfile.TemporaryDirectory | None = None


def _xlsx_dir() -> pathlib.Path:
    """Lazily create a session-wide temp directory for generated .xlsx files."""
    global _XLSX_TMP_DIR  # noqa: PLW0603
    if _XLSX_TMP_DIR is None:
        _XLSX_TMP_DIR = tempfile.TemporaryDirectory(prefix="sheetkit_test_xlsx_")
    return pathlib.Path(_XLSX_TMP_DIR.name)


@pytest.fixture(scope="session")
def simple_xlsx() -> pathlib.Path:
    """Simple tabular .xlsx: ID, Name, Value header plus 20 rows."""
    path = _xlsx_dir() / "simple.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Data"
    ws.append(["ID", "Name", "Value"])
    for i in range(1, 21):
        ws.append([i, f"Item-{i}", round(i * 1.5, 2)])
    wb.properties.title = "Inventory"
    wb.properties.creator = "QA"
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def multi_sheet_xlsx() -> pathlib.Path:
    """Four sheets with 10 data rows each, for parallel chunking."""
    path = _xlsx_dir() / "multi_sheet.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    for number in range(1, 5):
        ws = wb.active if number == 1 else wb.create_sheet()
        ws.title = f"Sheet{number}"
        ws.append(["Key", "Amount"])
        for i in range(1, 11):
            ws.append([f"K{number}-{i}", i * number])
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def sales_xlsx() -> pathlib.Path:
    """Two years of monthly sales with a category column and one spike."""
    path = _xlsx_dir() / "sales.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Sales"
    ws.append(["Date", "Region", "Units", "Revenue"])
    regions = ["North", "South", "East"]
    for i in range(36):
        year, month = 2022 + i // 12, i % 12 + 1
        units = 100 + i * 5 + (20 if month in (11, 12) else 0)
        revenue = units * 9.5
        if i == 30:
            revenue = 250_000.0
        ws.append([f"{year}-{month:02d}-01", regions[i % 3], units, revenue])
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def gappy_xlsx() -> pathlib.Path:
    """A sheet where more than 30% of rows are fully empty."""
    path = _xlsx_dir() / "gappy.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Gaps"
    ws.append(["A", "B"])
    row = 2
    for block in range(4):
        for _ in range(3):
            ws.cell(row=row, column=1, value=block)
            ws.cell(row=row, column=2, value=block * 2)
            row += 1
        row += 3
    ws.cell(row=row, column=1, value="end")
    ws.cell(row=row, column=2, value=0)
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def korean_xlsx() -> pathlib.Path:
    """A sheet whose text is mostly Hangul."""
    path = _xlsx_dir() / "korean.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "목록"
    ws.append(["이름", "부서", "금액"])
    for i in range(1, 11):
        ws.append([f"직원{i}", "영업부", i * 1000])
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def empty_xlsx() -> pathlib.Path:
    """An .xlsx workbook with no data in any cell."""
    path = _xlsx_dir() / "empty.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def corrupt_xlsx() -> pathlib.Path:
    """Bytes that are not a zip container, under an .xlsx name."""
    path = _xlsx_dir() / "corrupt.xlsx"
    if path.exists():
        return path
    path.write_bytes(b"this is not a spreadsheet" * 20)
    return path
