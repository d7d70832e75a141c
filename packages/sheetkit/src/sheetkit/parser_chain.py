"""Tiered decoder chain for spreadsheet files.

Decoders are tried in order, each only when the previous one failed:

1. **Structured** (confidence 0.9-0.95) -- openpyxl for ``.xlsx``/``.xlsm``,
   xlrd for ``.xls``, and pandas ``read_excel`` for every format
   (``pyxlsb`` engine for ``.xlsb``).  Preserves formatted values, dates,
   hidden-row and merged-cell metadata.
2. **Container XML scan** (confidence 0.7) -- for zip-based formats, reads
   the worksheet XML parts directly with regular expressions.
3. **Binary signature scan** (confidence 0.5, or 0.2 when nothing readable
   was found) -- for legacy binary formats, locates ``TEXT``/``LABE``/``STRI``
   record signatures and text runs inside the raw bytes.
4. **Placeholder** (confidence 0.1) -- a descriptive message only.

Every decoder returns a :class:`DecodeOutcome` instead of raising, and every
successful outcome carries the same :class:`~sheetkit.models.ParsedWorkbook`
shape, so downstream stages never need to know which tier produced it.
A ``W_PARSER_FALLBACK`` warning is recorded for each tier that failed.
"""

from __future__ import annotations

import datetime as dt
import html
import logging
import math
import os
import re
import zipfile
import zlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
import openpyxl
import pandas as pd
import xlrd

from sheetkit.config import AnalysisConfig
from sheetkit.errors import AnalysisIssue, ErrorCode, ParseFailureError, SheetkitError
from sheetkit.models import (
    CellValue,
    ExtractionMethod,
    ParsedWorkbook,
    RawSheet,
    WorkbookMetadata,
)
from sheetkit.security import ZIP_EXTENSIONS, file_extension
from sheetkit.strategy import format_size

if TYPE_CHECKING:
    from sheetkit.workers import CancellationToken

logger = logging.getLogger("sheetkit")

# Rows between cooperative cancellation checks.
_CANCEL_CHECK_ROWS = 1000


# ---------------------------------------------------------------------------
# Cell / grid helpers
# ---------------------------------------------------------------------------


def format_datetime(value: dt.datetime | dt.date) -> str:
    """ISO date for midnight timestamps, ISO date-time otherwise."""
    if isinstance(value, dt.datetime):
        if value.time() == dt.time(0, 0):
            return value.strftime("%Y-%m-%d")
        return value.isoformat(sep=" ", timespec="seconds")
    return value.isoformat()


def normalize_cell(value: Any) -> CellValue:
    """Convert a decoder-native cell value into a JSON-safe scalar."""
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return value
    if isinstance(value, (dt.datetime, dt.date)):
        return format_datetime(value)
    if isinstance(value, dt.time):
        return value.isoformat()
    return str(value)


def is_empty_cell(value: CellValue) -> bool:
    return value is None or value == ""


def trim_grid(rows: list[list[CellValue]]) -> list[list[CellValue]]:
    """Drop trailing empty rows and trailing all-empty columns.

    Interior empty rows are kept: integrity checks depend on them.
    """
    end = len(rows)
    while end > 0 and all(is_empty_cell(c) for c in rows[end - 1]):
        end -= 1
    rows = rows[:end]

    width = 0
    for row in rows:
        for idx in range(len(row) - 1, -1, -1):
            if not is_empty_cell(row[idx]):
                width = max(width, idx + 1)
                break
    return [list(row[:width]) for row in rows]


# Formula element in worksheet XML, with or without a namespace prefix.
_FORMULA_TAG_RE = re.compile(rb"<(?:\w+:)?f[\s>/]")
_SCAN_BLOCK_BYTES = 1024 * 1024


def _part_has_formula(zf: zipfile.ZipFile, name: str) -> bool:
    """Scan one worksheet part for ``<f>`` elements, block by block."""
    carry = b""
    with zf.open(name) as part:
        while True:
            block = part.read(_SCAN_BLOCK_BYTES)
            if not block:
                return False
            if _FORMULA_TAG_RE.search(carry + block):
                return True
            carry = block[-16:]


def inspect_container(file_path: str) -> dict[str, bool]:
    """Feature flags derived from the parts of a zip container.

    ``has_formulas`` is set by a calculation chain or by any ``<f>`` element
    in a worksheet part.
    """
    flags = {
        "has_formulas": False,
        "has_charts": False,
        "has_images": False,
        "has_macros": False,
    }
    try:
        with zipfile.ZipFile(file_path) as zf:
            names = zf.namelist()
            for name in names:
                lower = name.lower()
                if lower.endswith("/calcchain.xml"):
                    flags["has_formulas"] = True
                if "/charts/" in lower or "/drawings/" in lower:
                    flags["has_charts"] = True
                if "/media/" in lower and re.search(r"\.(jpe?g|png|gif|bmp|svg)$", lower):
                    flags["has_images"] = True
                if lower.endswith("/vbaproject.bin") or "/macros/" in lower:
                    flags["has_macros"] = True
            if not flags["has_formulas"]:
                sheet_parts = [
                    n for n in names
                    if n.lower().startswith("xl/worksheets/") and n.lower().endswith(".xml")
                ]
                flags["has_formulas"] = any(_part_has_formula(zf, n) for n in sheet_parts)
    except (zipfile.BadZipFile, OSError, zlib.error):
        return flags
    return flags


def _check_cancel(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


# ---------------------------------------------------------------------------
# Decoder protocol
# ---------------------------------------------------------------------------


@dataclass
class DecodeOutcome:
    """Result of one decoder attempt: a workbook or an error message."""

    workbook: ParsedWorkbook | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.workbook is not None

    @classmethod
    def success(cls, workbook: ParsedWorkbook) -> DecodeOutcome:
        return cls(workbook=workbook)

    @classmethod
    def failure(cls, error: str) -> DecodeOutcome:
        return cls(error=error)


class Decoder(Protocol):
    """Interface every tier implements."""

    name: str

    def supports(self, extension: str) -> bool:
        ...

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        ...


# ---------------------------------------------------------------------------
# Tier 1: structured decoders
# ---------------------------------------------------------------------------


class OpenpyxlDecoder:
    """Full-fidelity decode of ``.xlsx``/``.xlsm`` via openpyxl."""

    name = "openpyxl"
    confidence = 0.95

    def supports(self, extension: str) -> bool:
        return extension in ZIP_EXTENSIONS

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        try:
            wb = openpyxl.load_workbook(file_path, data_only=True)
        except SheetkitError:
            raise
        except Exception as exc:
            logger.debug("openpyxl could not open %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"openpyxl: {exc}")

        try:
            sheets: list[RawSheet] = []
            charts_present = bool(wb.chartsheets)
            images_present = False
            for ws in wb.worksheets:
                if sheet_names is not None and ws.title not in sheet_names:
                    continue
                _check_cancel(token)
                rows: list[list[CellValue]] = []
                for idx, row in enumerate(ws.iter_rows(values_only=True)):
                    if idx % _CANCEL_CHECK_ROWS == 0:
                        _check_cancel(token)
                    rows.append([normalize_cell(v) for v in row])
                rows = trim_grid(rows)
                charts_present = charts_present or bool(getattr(ws, "_charts", []))
                images_present = images_present or bool(getattr(ws, "_images", []))
                sheets.append(
                    RawSheet(
                        name=ws.title,
                        rows=rows,
                        hidden=ws.sheet_state != "visible",
                        merged_cell_count=len(ws.merged_cells.ranges),
                        hidden_row_count=sum(
                            1 for dim in ws.row_dimensions.values() if dim.hidden
                        ),
                    )
                )

            props = wb.properties
            flags = inspect_container(file_path)
            metadata = WorkbookMetadata(
                title=props.title,
                author=props.creator,
                subject=props.subject,
                created=format_datetime(props.created) if props.created else None,
                modified=format_datetime(props.modified) if props.modified else None,
                sheet_names=list(wb.sheetnames),
                has_formulas=flags["has_formulas"],
                has_charts=flags["has_charts"] or charts_present,
                has_images=flags["has_images"] or images_present,
                has_macros=flags["has_macros"],
            )
        except SheetkitError:
            raise
        except Exception as exc:
            logger.debug("openpyxl failed reading %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"openpyxl: {exc}")
        finally:
            wb.close()

        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=sheets,
                metadata=metadata,
                confidence=self.confidence,
                extraction_method=ExtractionMethod.OPENPYXL,
            )
        )


class XlrdDecoder:
    """Structured decode of legacy ``.xls`` (BIFF) workbooks via xlrd."""

    name = "xlrd"
    confidence = 0.95

    def supports(self, extension: str) -> bool:
        return extension == ".xls"

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        try:
            book = xlrd.open_workbook(file_path, on_demand=True)
        except Exception as exc:
            logger.debug("xlrd could not open %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"xlrd: {exc}")

        try:
            sheets: list[RawSheet] = []
            for idx, name in enumerate(book.sheet_names()):
                if sheet_names is not None and name not in sheet_names:
                    continue
                _check_cancel(token)
                sheet = book.sheet_by_index(idx)
                rows: list[list[CellValue]] = []
                for r in range(sheet.nrows):
                    if r % _CANCEL_CHECK_ROWS == 0:
                        _check_cancel(token)
                    rows.append([self._format_cell(c, book) for c in sheet.row(r)])
                sheets.append(
                    RawSheet(
                        name=name,
                        rows=trim_grid(rows),
                        hidden=getattr(sheet, "visibility", 0) != 0,
                        merged_cell_count=len(sheet.merged_cells),
                    )
                )
                book.unload_sheet(idx)

            metadata = WorkbookMetadata(
                author=(book.user_name or None),
                sheet_names=list(book.sheet_names()),
            )
        except SheetkitError:
            raise
        except Exception as exc:
            logger.debug("xlrd failed reading %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"xlrd: {exc}")
        finally:
            book.release_resources()

        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=sheets,
                metadata=metadata,
                confidence=self.confidence,
                extraction_method=ExtractionMethod.XLRD,
            )
        )

    @staticmethod
    def _format_cell(cell: Any, book: Any) -> CellValue:
        if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
            return None
        if cell.ctype == xlrd.XL_CELL_DATE:
            try:
                return format_datetime(xlrd.xldate_as_datetime(cell.value, book.datemode))
            except Exception:
                logger.debug("xlrd date conversion failed for %r", cell.value)
                return cell.value
        if cell.ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        if cell.ctype == xlrd.XL_CELL_ERROR:
            return "#ERROR"
        if cell.ctype == xlrd.XL_CELL_NUMBER and float(cell.value).is_integer():
            return int(cell.value)
        return normalize_cell(cell.value)


class PandasDecoder:
    """Reduced-fidelity decode via ``pandas.read_excel`` (all formats)."""

    name = "pandas"
    confidence = 0.9

    def supports(self, extension: str) -> bool:
        return True

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        engine = "pyxlsb" if file_extension(file_path) == ".xlsb" else None
        try:
            frames: dict[str, pd.DataFrame] = pd.read_excel(
                file_path,
                sheet_name=sheet_names if sheet_names is not None else None,
                header=None,
                dtype=object,
                engine=engine,
            )
        except Exception as exc:
            logger.debug("pandas could not read %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"pandas: {exc}")

        sheets: list[RawSheet] = []
        for name, df in frames.items():
            _check_cancel(token)
            df = df.astype(object).where(pd.notna(df), None)
            rows = [[normalize_cell(v) for v in rec] for rec in df.itertuples(index=False)]
            sheets.append(RawSheet(name=str(name), rows=trim_grid(rows)))

        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=sheets,
                metadata=WorkbookMetadata(sheet_names=[s.name for s in sheets]),
                confidence=self.confidence,
                extraction_method=ExtractionMethod.PANDAS,
            )
        )


# ---------------------------------------------------------------------------
# Tier 2: container XML scan
# ---------------------------------------------------------------------------

_ATTR_RE = re.compile(r'([\w:]+)="([^"]*)"')
_SHEET_TAG_RE = re.compile(r"<sheet\b([^>]*)/?>")
_REL_TAG_RE = re.compile(r"<Relationship\b([^>]*)/?>")
_SI_RE = re.compile(r"<si>(.*?)</si>", re.DOTALL)
_T_RE = re.compile(r"<t[^>]*>(.*?)</t>", re.DOTALL)
_ROW_RE = re.compile(r"<row\b([^>]*?)(?:/>|>(.*?)</row>)", re.DOTALL)
_CELL_RE = re.compile(r"<c\b([^>]*?)(?:/>|>(.*?)</c>)", re.DOTALL)
_V_RE = re.compile(r"<v>(.*?)</v>", re.DOTALL)
_REF_RE = re.compile(r"([A-Z]+)(\d+)")


def _attrs(fragment: str) -> dict[str, str]:
    return {k: html.unescape(v) for k, v in _ATTR_RE.findall(fragment)}


def _column_index(letters: str) -> int:
    idx = 0
    for ch in letters:
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def _coerce_number(text: str) -> CellValue:
    try:
        number = float(text)
    except ValueError:
        return text
    if math.isnan(number) or math.isinf(number):
        return text
    if number.is_integer() and "." not in text and "e" not in text.lower():
        return int(number)
    return number


class ContainerXmlDecoder:
    """Regex scan of worksheet XML parts inside a zip container."""

    name = "zip_xml"
    confidence = 0.7

    def supports(self, extension: str) -> bool:
        return extension in ZIP_EXTENSIONS

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        try:
            with zipfile.ZipFile(file_path) as zf:
                parts = self._sheet_parts(zf)
                shared = self._shared_strings(zf)
                sheets: list[RawSheet] = []
                for name, part in parts:
                    if sheet_names is not None and name not in sheet_names:
                        continue
                    _check_cancel(token)
                    xml = zf.read(part).decode("utf-8", errors="replace")
                    sheets.append(RawSheet(name=name, rows=trim_grid(self._rows(xml, shared))))
                core = self._read_optional(zf, "docProps/core.xml")
        except SheetkitError:
            raise
        except Exception as exc:
            logger.debug("container scan failed for %s", file_path, exc_info=True)
            return DecodeOutcome.failure(f"zip_xml: {exc}")

        if not parts:
            return DecodeOutcome.failure("zip_xml: no worksheet parts found")

        flags = inspect_container(file_path)
        metadata = WorkbookMetadata(
            title=self._core_field(core, "dc:title"),
            author=self._core_field(core, "dc:creator"),
            subject=self._core_field(core, "dc:subject"),
            created=self._core_field(core, "dcterms:created"),
            modified=self._core_field(core, "dcterms:modified"),
            sheet_names=[name for name, _ in parts],
            **flags,
        )
        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=sheets,
                metadata=metadata,
                confidence=self.confidence,
                extraction_method=ExtractionMethod.ZIP_XML,
            )
        )

    # -- helpers --------------------------------------------------------

    @staticmethod
    def _read_optional(zf: zipfile.ZipFile, name: str) -> str:
        try:
            return zf.read(name).decode("utf-8", errors="replace")
        except KeyError:
            return ""

    def _sheet_parts(self, zf: zipfile.ZipFile) -> list[tuple[str, str]]:
        """Ordered ``(sheet name, part path)`` pairs."""
        workbook_xml = self._read_optional(zf, "xl/workbook.xml")
        rels_xml = self._read_optional(zf, "xl/_rels/workbook.xml.rels")
        targets: dict[str, str] = {}
        for tag in _REL_TAG_RE.findall(rels_xml):
            attrs = _attrs(tag)
            if "Id" in attrs and "Target" in attrs:
                target = attrs["Target"].lstrip("/")
                if not target.startswith("xl/"):
                    target = "xl/" + target
                targets[attrs["Id"]] = target

        available = set(zf.namelist())
        parts: list[tuple[str, str]] = []
        for tag in _SHEET_TAG_RE.findall(workbook_xml):
            attrs = _attrs(tag)
            target = targets.get(attrs.get("r:id", ""))
            if target in available and "/worksheets/" in target:
                parts.append((attrs.get("name", target), target))
        if parts:
            return parts

        # No usable workbook index; fall back to part numbering.
        numbered = []
        for name in available:
            match = re.match(r"xl/worksheets/sheet(\d+)\.xml$", name)
            if match:
                numbered.append((int(match.group(1)), name))
        return [(f"Sheet{num}", name) for num, name in sorted(numbered)]

    def _shared_strings(self, zf: zipfile.ZipFile) -> list[str]:
        xml = self._read_optional(zf, "xl/sharedStrings.xml")
        return [
            html.unescape("".join(_T_RE.findall(si))) for si in _SI_RE.findall(xml)
        ]

    @staticmethod
    def _rows(xml: str, shared: list[str]) -> list[list[CellValue]]:
        rows: list[list[CellValue]] = []
        for row_attrs, body in _ROW_RE.findall(xml):
            row_num = _attrs(row_attrs).get("r")
            if row_num and row_num.isdigit():
                while len(rows) < int(row_num) - 1:
                    rows.append([])
            cells: list[CellValue] = []
            for cell_attrs, cell_body in _CELL_RE.findall(body or ""):
                attrs = _attrs(cell_attrs)
                ref = _REF_RE.match(attrs.get("r", ""))
                col = _column_index(ref.group(1)) if ref else len(cells)
                while len(cells) < col:
                    cells.append(None)
                cells.append(ContainerXmlDecoder._cell_value(attrs.get("t"), cell_body, shared))
            rows.append(cells)
        return rows

    @staticmethod
    def _cell_value(cell_type: str | None, body: str, shared: list[str]) -> CellValue:
        if cell_type == "inlineStr":
            return html.unescape("".join(_T_RE.findall(body or "")))
        match = _V_RE.search(body or "")
        if match is None:
            return None
        raw = html.unescape(match.group(1))
        if cell_type == "s":
            try:
                return shared[int(raw)]
            except (ValueError, IndexError):
                return raw
        if cell_type == "b":
            return raw == "1"
        if cell_type in ("str", "e"):
            return raw
        return _coerce_number(raw)

    @staticmethod
    def _core_field(xml: str, tag: str) -> str | None:
        match = re.search(rf"<{tag}[^>]*>([^<]*)</{tag}>", xml)
        return html.unescape(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Tier 3: binary signature scan
# ---------------------------------------------------------------------------

_TEXT_SIGNATURES = (b"TEXT", b"LABE", b"STRI")
_SHEET_SIGNATURE = b"BOUN"
_MAX_BLOCK_BYTES = 4096
_TEXT_RUN_PATTERNS = (
    re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]+"),
    re.compile(r"[A-Za-z0-9][A-Za-z0-9 ]{2,}"),
)
_UTF16_RUN_RE = re.compile(rb"(?:[\x20-\x7e]\x00|[\x00-\xff][\xac-\xd7]){4,}")


class BinarySignatureDecoder:
    """Heuristic text recovery from legacy binary workbooks."""

    name = "binary_scan"

    def supports(self, extension: str) -> bool:
        return extension in (".xls", ".xlsb")

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        try:
            with open(file_path, "rb") as fh:
                buffer = fh.read()
        except OSError as exc:
            return DecodeOutcome.failure(f"binary_scan: {exc}")

        _check_cancel(token)
        lines: list[str] = []
        for offset, length in self.find_text_blocks(buffer):
            chunk = buffer[offset + 8 : offset + 8 + length]
            text = chunk.decode("utf-8", errors="ignore")
            for pattern in _TEXT_RUN_PATTERNS:
                matches = [m.strip() for m in pattern.findall(text) if m.strip()]
                if matches:
                    lines.append(" ".join(matches))

        # BIFF8 stores most strings as UTF-16LE runs outside the tagged blocks.
        for run in _UTF16_RUN_RE.findall(buffer):
            text = run.decode("utf-16-le", errors="ignore").strip()
            if len(text) >= 4:
                lines.append(text)

        content = "\n".join(dict.fromkeys(lines)).strip()
        sheet_count = buffer.count(_SHEET_SIGNATURE)
        title = os.path.splitext(os.path.basename(file_path))[0]
        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=[],
                metadata=WorkbookMetadata(title=title),
                confidence=0.5 if content else 0.2,
                extraction_method=ExtractionMethod.BINARY_SCAN,
                content=content,
                sheet_count=sheet_count,
            )
        )

    @staticmethod
    def find_text_blocks(buffer: bytes) -> list[tuple[int, int]]:
        """``(offset, length)`` of every signature-tagged block.

        The four bytes after a signature hold the little-endian block length,
        clamped to the buffer and to ``_MAX_BLOCK_BYTES``.
        """
        blocks: list[tuple[int, int]] = []
        for signature in _TEXT_SIGNATURES:
            start = buffer.find(signature)
            while start != -1:
                header_end = start + 8
                if header_end <= len(buffer):
                    length = int.from_bytes(buffer[start + 4 : header_end], "little")
                    length = min(length, _MAX_BLOCK_BYTES, len(buffer) - header_end)
                    blocks.append((start, length))
                start = buffer.find(signature, start + 4)
        blocks.sort()
        return blocks


# ---------------------------------------------------------------------------
# Tier 4: placeholder
# ---------------------------------------------------------------------------


class PlaceholderDecoder:
    """Always succeeds with a descriptive message and no data."""

    name = "placeholder"
    confidence = 0.1

    def supports(self, extension: str) -> bool:
        return True

    def decode(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> DecodeOutcome:
        file_name = os.path.splitext(os.path.basename(file_path))[0]
        ext = file_extension(file_path).lstrip(".").upper()
        try:
            size = format_size(os.path.getsize(file_path))
        except OSError:
            size = "unknown"
        content = (
            f"Spreadsheet: {file_name}\n\n"
            f"File size: {size}\n"
            f"Format: {ext}\n\n"
            "The data in this workbook could not be extracted. "
            "Convert it with a spreadsheet application and analyze the result."
        )
        return DecodeOutcome.success(
            ParsedWorkbook(
                sheets=[],
                metadata=WorkbookMetadata(title=file_name),
                confidence=self.confidence,
                extraction_method=ExtractionMethod.PLACEHOLDER,
                content=content,
            )
        )


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


def default_decoders() -> list[Decoder]:
    return [
        OpenpyxlDecoder(),
        XlrdDecoder(),
        PandasDecoder(),
        ContainerXmlDecoder(),
        BinarySignatureDecoder(),
        PlaceholderDecoder(),
    ]


class ParserChain:
    """Ordered decoder list with short-circuit on the first success.

    Parameters
    ----------
    config:
        Engine configuration; ``max_sheets`` caps the decoded sheet list.
    decoders:
        Decoder order override.  Defaults to :func:`default_decoders`.
    """

    def __init__(
        self,
        config: AnalysisConfig,
        decoders: list[Decoder] | None = None,
    ) -> None:
        self._config = config
        self._decoders = decoders if decoders is not None else default_decoders()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(
        self,
        file_path: str,
        sheet_names: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> ParsedWorkbook:
        """Decode *file_path* with the first decoder that succeeds.

        Parameters
        ----------
        file_path:
            Filesystem path to the workbook.
        sheet_names:
            Restrict decoding to these sheets (parallel chunks).  ``None``
            decodes every sheet.
        token:
            Optional cancellation token checked between sheets and rows.

        Returns
        -------
        ParsedWorkbook
            The decoded workbook, with a ``W_PARSER_FALLBACK`` issue for
            every tier that failed before it.

        Raises
        ------
        ParseFailureError
            Only when every configured decoder failed.
        """
        ext = file_extension(file_path)
        issues: list[AnalysisIssue] = []

        for decoder in self._decoders:
            if not decoder.supports(ext):
                continue
            outcome = decoder.decode(file_path, sheet_names=sheet_names, token=token)
            if not outcome.ok:
                logger.warning(
                    "sheetkit | stage=parse | file=%s | code=%s | detail=%s",
                    os.path.basename(file_path),
                    ErrorCode.W_PARSER_FALLBACK.value,
                    outcome.error,
                )
                issues.append(
                    AnalysisIssue(
                        code=ErrorCode.W_PARSER_FALLBACK,
                        message=f"{decoder.name} failed: {outcome.error}",
                        stage="parse",
                        recoverable=True,
                    )
                )
                continue

            workbook = outcome.workbook
            assert workbook is not None
            workbook.issues = issues + workbook.issues
            self._apply_sheet_cap(workbook)
            logger.debug(
                "Decoded %s with %s (confidence=%.2f, sheets=%d)",
                file_path,
                decoder.name,
                workbook.confidence,
                len(workbook.sheets),
            )
            return workbook

        raise ParseFailureError(
            f"All decoders failed for {os.path.basename(file_path)}: "
            + "; ".join(i.message for i in issues),
            stage="parse",
        )

    def list_sheet_names(self, file_path: str) -> list[str]:
        """Sheet names without decoding cell data.  Empty on failure."""
        ext = file_extension(file_path)
        try:
            if ext in ZIP_EXTENSIONS:
                wb = openpyxl.load_workbook(file_path, read_only=True)
                try:
                    return [ws.title for ws in wb.worksheets]
                finally:
                    wb.close()
            if ext == ".xls":
                book = xlrd.open_workbook(file_path, on_demand=True)
                try:
                    return list(book.sheet_names())
                finally:
                    book.release_resources()
            with pd.ExcelFile(file_path, engine="pyxlsb") as xl:
                return [str(n) for n in xl.sheet_names]
        except Exception:
            logger.debug("Could not list sheets of %s", file_path, exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply_sheet_cap(self, workbook: ParsedWorkbook) -> None:
        limit = self._config.max_sheets
        if len(workbook.sheets) <= limit:
            return
        dropped = len(workbook.sheets) - limit
        workbook.sheets = workbook.sheets[:limit]
        workbook.issues.append(
            AnalysisIssue(
                code=ErrorCode.W_SHEETS_TRUNCATED,
                message=f"Workbook has {limit + dropped} sheets; analyzed the first {limit}.",
                stage="parse",
                recoverable=True,
            )
        )
