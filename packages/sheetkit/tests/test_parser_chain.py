"""Tests for the tiered decoder chain.

Uses openpyxl-generated workbooks for the structured tier and hand-built
zip containers and byte buffers for the fallback tiers.
"""

from __future__ import annotations

import datetime as dt
import zipfile
from pathlib import Path

import openpyxl
import pytest

from sheetkit.config import AnalysisConfig
from sheetkit.errors import ErrorCode, ParseFailureError
from sheetkit.models import ExtractionMethod, ParsedWorkbook, WorkbookMetadata
from sheetkit.parser_chain import (
    BinarySignatureDecoder,
    ContainerXmlDecoder,
    DecodeOutcome,
    ParserChain,
    PlaceholderDecoder,
    format_datetime,
    inspect_container,
    normalize_cell,
    trim_grid,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FailingDecoder:
    name = "failing"

    def supports(self, extension: str) -> bool:
        return True

    def decode(self, file_path, sheet_names=None, token=None) -> DecodeOutcome:
        return DecodeOutcome.failure("boom")


class _FixedDecoder:
    name = "fixed"

    def __init__(self) -> None:
        self.calls = 0

    def supports(self, extension: str) -> bool:
        return True

    def decode(self, file_path, sheet_names=None, token=None) -> DecodeOutcome:
        self.calls += 1
        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=[],
                metadata=WorkbookMetadata(),
                confidence=0.5,
                extraction_method=ExtractionMethod.PLACEHOLDER,
            )
        )


def _write_container(path: Path) -> str:
    """Minimal xlsx-like zip: workbook index, one worksheet, shared strings."""
    workbook = (
        '<workbook><sheets><sheet name="Ledger" sheetId="1" r:id="rId1"/></sheets></workbook>'
    )
    rels = (
        "<Relationships>"
        '<Relationship Id="rId1" Target="worksheets/sheet1.xml"/>'
        "</Relationships>"
    )
    shared = "<sst><si><t>Name</t></si><si><t>Total</t></si><si><t>A &amp; B</t></si></sst>"
    sheet = (
        "<worksheet><sheetData>"
        '<row r="1"><c r="A1" t="s"><v>0</v></c><c r="B1" t="s"><v>1</v></c></row>'
        '<row r="2"><c r="A2" t="s"><v>2</v></c><c r="B2"><v>42</v></c></row>'
        '<row r="4"><c r="B4"><v>1.5</v></c></row>'
        "</sheetData></worksheet>"
    )
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("xl/workbook.xml", workbook)
        zf.writestr("xl/_rels/workbook.xml.rels", rels)
        zf.writestr("xl/sharedStrings.xml", shared)
        zf.writestr("xl/worksheets/sheet1.xml", sheet)
    return str(path)


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


class TestCellHelpers:
    def test_midnight_datetime_is_date(self) -> None:
        assert format_datetime(dt.datetime(2024, 3, 1)) == "2024-03-01"

    def test_datetime_with_time(self) -> None:
        assert format_datetime(dt.datetime(2024, 3, 1, 9, 30)) == "2024-03-01 09:30:00"

    def test_normalize_nan_is_none(self) -> None:
        assert normalize_cell(float("nan")) is None

    def test_normalize_keeps_bool(self) -> None:
        assert normalize_cell(True) is True

    def test_trim_grid_drops_trailing_empties(self) -> None:
        rows = [["a", None, ""], [None, None], [1, None], [None], [""]]
        assert trim_grid(rows) == [["a"], [None], [1]]


# ---------------------------------------------------------------------------
# Chain behaviour
# ---------------------------------------------------------------------------


class TestParserChain:
    def test_structured_tier(self, simple_xlsx: Path) -> None:
        parsed = ParserChain(AnalysisConfig()).parse(str(simple_xlsx))
        assert parsed.extraction_method is ExtractionMethod.OPENPYXL
        assert parsed.confidence == pytest.approx(0.95)
        assert parsed.issues == []
        sheet = parsed.sheets[0]
        assert sheet.name == "Data"
        assert sheet.total_rows == 21
        assert sheet.rows[0] == ["ID", "Name", "Value"]
        assert parsed.metadata.title == "Inventory"
        assert parsed.metadata.author == "QA"

    def test_sheet_filter(self, multi_sheet_xlsx: Path) -> None:
        parsed = ParserChain(AnalysisConfig()).parse(
            str(multi_sheet_xlsx), sheet_names=["Sheet2", "Sheet4"]
        )
        assert [s.name for s in parsed.sheets] == ["Sheet2", "Sheet4"]
        assert parsed.metadata.sheet_names == ["Sheet1", "Sheet2", "Sheet3", "Sheet4"]

    def test_sheet_cap(self, multi_sheet_xlsx: Path) -> None:
        parsed = ParserChain(AnalysisConfig(max_sheets=2)).parse(str(multi_sheet_xlsx))
        assert len(parsed.sheets) == 2
        assert ErrorCode.W_SHEETS_TRUNCATED in [i.code for i in parsed.issues]

    def test_list_sheet_names(self, multi_sheet_xlsx: Path) -> None:
        names = ParserChain(AnalysisConfig()).list_sheet_names(str(multi_sheet_xlsx))
        assert names == ["Sheet1", "Sheet2", "Sheet3", "Sheet4"]

    def test_list_sheet_names_unreadable(self, corrupt_xlsx: Path) -> None:
        assert ParserChain(AnalysisConfig()).list_sheet_names(str(corrupt_xlsx)) == []

    def test_fallback_records_each_failed_tier(self, simple_xlsx: Path) -> None:
        fixed = _FixedDecoder()
        chain = ParserChain(AnalysisConfig(), decoders=[_FailingDecoder(), _FailingDecoder(), fixed])
        parsed = chain.parse(str(simple_xlsx))
        assert fixed.calls == 1
        assert [i.code for i in parsed.issues] == [ErrorCode.W_PARSER_FALLBACK] * 2

    def test_short_circuits_on_first_success(self, simple_xlsx: Path) -> None:
        first, second = _FixedDecoder(), _FixedDecoder()
        ParserChain(AnalysisConfig(), decoders=[first, second]).parse(str(simple_xlsx))
        assert (first.calls, second.calls) == (1, 0)

    def test_all_tiers_failing_raises(self, simple_xlsx: Path) -> None:
        chain = ParserChain(AnalysisConfig(), decoders=[_FailingDecoder()])
        with pytest.raises(ParseFailureError, match="All decoders failed"):
            chain.parse(str(simple_xlsx))

    def test_corrupt_file_reaches_placeholder(self, corrupt_xlsx: Path) -> None:
        parsed = ParserChain(AnalysisConfig()).parse(str(corrupt_xlsx))
        assert parsed.extraction_method is ExtractionMethod.PLACEHOLDER
        assert parsed.confidence == pytest.approx(0.1)
        assert "could not be extracted" in parsed.content
        assert len(parsed.issues) >= 2


# ---------------------------------------------------------------------------
# Fallback tiers
# ---------------------------------------------------------------------------


class TestContainerXmlDecoder:
    def test_reads_rows_and_shared_strings(self, tmp_path: Path) -> None:
        outcome = ContainerXmlDecoder().decode(_write_container(tmp_path / "c.xlsx"))
        assert outcome.ok
        workbook = outcome.workbook
        assert workbook.confidence == pytest.approx(0.7)
        sheet = workbook.sheets[0]
        assert sheet.name == "Ledger"
        assert sheet.rows == [["Name", "Total"], ["A & B", 42], [], [None, 1.5]]

    def test_not_a_zip(self, corrupt_xlsx: Path) -> None:
        assert not ContainerXmlDecoder().decode(str(corrupt_xlsx)).ok


class TestBinarySignatureDecoder:
    def test_finds_tagged_text(self, tmp_path: Path) -> None:
        payload = b"Quarterly Revenue"
        buffer = (
            b"\x00" * 16
            + b"LABE"
            + len(payload).to_bytes(4, "little")
            + payload
            + b"\x00" * 16
        )
        path = tmp_path / "legacy.xls"
        path.write_bytes(buffer)
        outcome = BinarySignatureDecoder().decode(str(path))
        assert outcome.ok
        assert "Quarterly Revenue" in outcome.workbook.content
        assert outcome.workbook.confidence == pytest.approx(0.5)

    def test_nothing_readable_is_low_confidence(self, tmp_path: Path) -> None:
        path = tmp_path / "noise.xls"
        path.write_bytes(bytes(range(0, 32)) * 4)
        outcome = BinarySignatureDecoder().decode(str(path))
        assert outcome.workbook.confidence == pytest.approx(0.2)

    def test_block_length_clamped(self) -> None:
        buffer = b"TEXT" + (10_000).to_bytes(4, "little") + b"abc"
        assert BinarySignatureDecoder.find_text_blocks(buffer) == [(0, 3)]


class TestPlaceholderDecoder:
    def test_always_succeeds(self, tmp_path: Path) -> None:
        outcome = PlaceholderDecoder().decode(str(tmp_path / "gone.xlsb"))
        assert outcome.ok
        assert "Format: XLSB" in outcome.workbook.content
        assert "File size: unknown" in outcome.workbook.content


class TestHiddenAndMerged:
    def test_metadata_preserved(self, tmp_path: Path) -> None:
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Main"
        for i in range(5):
            ws.append([f"r{i}", i])
        ws.merge_cells("A1:B1")
        ws.row_dimensions[3].hidden = True
        hidden = wb.create_sheet("Secret")
        hidden.append(["x"])
        hidden.sheet_state = "hidden"
        path = tmp_path / "meta.xlsx"
        wb.save(path)

        parsed = ParserChain(AnalysisConfig()).parse(str(path))
        main, secret = parsed.sheets
        assert main.merged_cell_count == 1
        assert main.hidden_row_count == 1
        assert secret.hidden is True


class TestInspectContainer:
    def test_shared_strings_alone_are_not_formulas(self, tmp_path: Path) -> None:
        flags = inspect_container(_write_container(tmp_path / "strings.xlsx"))
        assert flags["has_formulas"] is False

    def test_text_only_workbook(self, simple_xlsx: Path) -> None:
        assert inspect_container(str(simple_xlsx))["has_formulas"] is False

    def test_formula_cell_detected(self, tmp_path: Path) -> None:
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Label", 1])
        ws.append(["Other", 2])
        ws["B3"] = "=SUM(B1:B2)"
        path = tmp_path / "formula.xlsx"
        wb.save(path)
        assert inspect_container(str(path))["has_formulas"] is True

    def test_calc_chain_detected(self, tmp_path: Path) -> None:
        path = tmp_path / "chain.xlsx"
        _write_container(path)
        with zipfile.ZipFile(path, "a") as zf:
            zf.writestr("xl/calcChain.xml", '<calcChain><c r="B2" i="1"/></calcChain>')
        assert inspect_container(str(path))["has_formulas"] is True

    def test_not_a_zip(self, corrupt_xlsx: Path) -> None:
        assert not any(inspect_container(str(corrupt_xlsx)).values())
