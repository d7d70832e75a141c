"""Ingestion adapters: drive the parser chain and sheet analyzer for one file.

Three adapters share one output shape, :class:`AdapterRun`:

- **Traditional** decodes the whole workbook in memory.
- **Streaming** reads ``.xlsx``/``.xlsm`` row by row through a
  progress-reporting file wrapper into a bounded stratified sample.
- **Parallel** partitions the workbook's sheets into contiguous groups,
  analyzes each group as a task on the :class:`~sheetkit.workers.WorkerPool`
  and isolates chunk failures.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import IO, Any, Callable

import openpyxl

from sheetkit.config import AnalysisConfig
from sheetkit.errors import (
    AnalysisIssue,
    ErrorCode,
    SheetkitError,
    WorkerCrashError,
    WorkerTimeoutError,
)
from sheetkit.models import (
    AnalysisStrategy,
    CellValue,
    ExtractionMethod,
    ParsedWorkbook,
    RawSheet,
    WorkbookAnalysis,
    WorkbookMetadata,
)
from sheetkit.parser_chain import (
    ParserChain,
    format_datetime,
    inspect_container,
    is_empty_cell,
    normalize_cell,
)
from sheetkit.security import ZIP_EXTENSIONS, file_extension
from sheetkit.sheet_analyzer import SheetAnalyzer
from sheetkit.stats.engine import StatisticsEngine
from sheetkit.workers import CancellationToken, TaskOutcome, WorkerPool

logger = logging.getLogger("sheetkit")

ProgressCallback = Callable[[str, float], None]
ChunkFn = Callable[..., WorkbookAnalysis]

# Share of the progress budget the streaming read may consume.
STREAM_PROGRESS_CAP = 70.0
STREAM_PROGRESS_STEP = 0.05


@dataclass
class AdapterRun:
    """Output of one adapter: one analysis per chunk.

    ``chunked`` is set when the run was split across worker tasks, so the
    aggregator reports ``processed_chunks`` / ``total_chunks``.
    """

    chunks: list[WorkbookAnalysis] = field(default_factory=list)
    chunked: bool = False


def analyze_workbook(
    parsed: ParsedWorkbook,
    analyzer: SheetAnalyzer,
    stats_engine: StatisticsEngine | None,
    token: CancellationToken | None = None,
) -> WorkbookAnalysis:
    """Profile every decoded sheet and run the statistics engine on it."""
    issues = list(parsed.issues)
    profiles = []
    advanced = {}
    for raw in parsed.sheets:
        if token is not None:
            token.raise_if_cancelled()
        analyzed = analyzer.analyze(raw)
        profile = analyzed.profile
        if profile.error:
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.W_SHEET_ANALYSIS_FAILED,
                    message=profile.error,
                    sheet_name=raw.name,
                    stage="analyze",
                    recoverable=True,
                )
            )
        elif profile.is_large_sheet and profile.sampling_info is not None:
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.W_ROWS_SAMPLED,
                    message=(
                        f"Sampled {profile.sampling_info.sampled_rows} of "
                        f"{profile.sampling_info.original_rows} rows"
                    ),
                    sheet_name=raw.name,
                    stage="analyze",
                    recoverable=True,
                )
            )
        if stats_engine is not None:
            advanced[raw.name] = stats_engine.analyze_sheet(analyzed)
        profiles.append(profile)

    return WorkbookAnalysis(
        sheets=profiles,
        advanced=advanced,
        metadata=parsed.metadata,
        confidence=parsed.confidence,
        extraction_method=parsed.extraction_method,
        content=parsed.content,
        sheet_count=parsed.sheet_count,
        issues=issues,
    )


class _BaseAdapter:
    strategy: AnalysisStrategy

    def __init__(
        self,
        config: AnalysisConfig,
        parser: ParserChain | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._config = config
        self._parser = parser or ParserChain(config)
        self._analyzer = SheetAnalyzer(config)
        self._stats = StatisticsEngine(config) if config.advanced_enabled else None
        self._progress = progress

    def _report(self, message: str, percentage: float) -> None:
        if self._progress is not None:
            self._progress(message, percentage)

    def _analyze_parsed(
        self, parsed: ParsedWorkbook, token: CancellationToken | None
    ) -> WorkbookAnalysis:
        return analyze_workbook(parsed, self._analyzer, self._stats, token)


# ---------------------------------------------------------------------------
# Traditional
# ---------------------------------------------------------------------------


class TraditionalAdapter(_BaseAdapter):
    """Decode the whole file in memory and analyze every sheet."""

    strategy = AnalysisStrategy.TRADITIONAL

    def run(self, file_path: str, token: CancellationToken | None = None) -> AdapterRun:
        self._report("Reading workbook", 20.0)
        parsed = self._parser.parse(file_path, token=token)
        self._report("Analyzing sheets", 50.0)
        analysis = self._analyze_parsed(parsed, token)
        self._report("Sheets analyzed", 70.0)
        return AdapterRun(chunks=[analysis])


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class ProgressReader:
    """Read-only file wrapper that reports consumed bytes.

    Progress is the number of bytes read so far, reported each time it
    crosses another 5% of the file size and scaled into ``[0, cap]``.
    """

    def __init__(
        self,
        raw: IO[bytes],
        total_bytes: int,
        callback: ProgressCallback | None = None,
        cap: float = STREAM_PROGRESS_CAP,
        step: float = STREAM_PROGRESS_STEP,
    ) -> None:
        self._raw = raw
        self._total = max(total_bytes, 1)
        self._callback = callback
        self._cap = cap
        self._step = step
        self._consumed = 0
        self._steps_reported = 0
        self.reports: list[float] = []

    # File protocol used by zipfile / openpyxl.

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        self._advance(len(data))
        return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        return self._raw.tell()

    def seekable(self) -> bool:
        return True

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        self._raw.close()

    @property
    def closed(self) -> bool:
        return self._raw.closed

    def _advance(self, consumed: int) -> None:
        self._consumed += consumed
        fraction = min(1.0, self._consumed / self._total)
        reached = int(fraction / self._step + 1e-9)
        while self._steps_reported < reached:
            self._steps_reported += 1
            share = self._steps_reported * self._step
            percentage = min(self._cap, share * self._cap)
            self.reports.append(percentage)
            if self._callback is not None:
                self._callback(f"Streaming {round(share * 100)}%", percentage)


class SampleSink:
    """Bounded accumulator for streamed rows.

    Sheets expected to fit within ``max_rows`` keep every row (up to
    ``max_rows``).  Larger sheets keep a stratified sample of
    ``min(sample_rows, max_rows)`` rows: 40% head, 20% starting 30% of the
    way in, and the rest from the tail.
    """

    def __init__(self, max_rows: int, sample_rows: int, expected_rows: int | None) -> None:
        self._sampled = expected_rows is not None and expected_rows > max_rows
        size = min(sample_rows, max_rows)
        self._head_limit = int(size * 0.4) if self._sampled else max_rows
        middle = int(size * 0.2) if self._sampled else 0
        self._middle_start = int((expected_rows or 0) * 0.3)
        self._middle_end = self._middle_start + middle
        self._head: list[list[CellValue]] = []
        self._middle: list[list[CellValue]] = []
        self._tail: deque[tuple[int, list[CellValue]]] = deque(
            maxlen=max(0, size - self._head_limit - middle) if self._sampled else 0
        )
        self._seen = 0
        self.total_rows = 0
        self.total_cells = 0
        self.total_columns = 0
        self._cells_running = 0

    def add(self, row: list[CellValue]) -> None:
        index = self._seen
        self._seen += 1

        width = len(row)
        while width and is_empty_cell(row[width - 1]):
            width -= 1
        row = row[:width]
        self._cells_running += width
        if width:
            self.total_rows = index + 1
            self.total_cells = self._cells_running
            self.total_columns = max(self.total_columns, width)

        if index < self._head_limit:
            self._head.append(row)
        elif self._middle_start <= index < self._middle_end:
            self._middle.append(row)
        elif self._tail.maxlen:
            self._tail.append((index, row))

    def rows(self) -> list[list[CellValue]]:
        tail = [row for index, row in self._tail if index < self.total_rows]
        head = self._head[: self.total_rows]
        middle = self._middle[: max(0, self.total_rows - self._middle_start)]
        return head + middle + tail


class StreamingAdapter(_BaseAdapter):
    """Row-by-row ingestion with bounded memory for large zip workbooks.

    Legacy binary formats have no incremental reader; they go through the
    parser chain with progress reported before and after.
    """

    strategy = AnalysisStrategy.STREAMING

    def run(self, file_path: str, token: CancellationToken | None = None) -> AdapterRun:
        if file_extension(file_path) not in ZIP_EXTENSIONS:
            self._report("Reading workbook", 10.0)
            parsed = self._parser.parse(file_path, token=token)
            self._report("Workbook read", STREAM_PROGRESS_CAP)
            return AdapterRun(chunks=[self._analyze_parsed(parsed, token)])

        try:
            parsed = self._stream(file_path, token)
        except SheetkitError:
            raise
        except Exception as exc:
            logger.warning(
                "sheetkit | stage=stream | file=%s | code=%s | detail=%s",
                os.path.basename(file_path),
                ErrorCode.W_PARSER_FALLBACK.value,
                exc,
            )
            parsed = self._parser.parse(file_path, token=token)
            parsed.issues.insert(
                0,
                AnalysisIssue(
                    code=ErrorCode.W_PARSER_FALLBACK,
                    message=f"streaming read failed: {exc}",
                    stage="stream",
                    recoverable=True,
                ),
            )
        return AdapterRun(chunks=[self._analyze_parsed(parsed, token)])

    def _stream(self, file_path: str, token: CancellationToken | None) -> ParsedWorkbook:
        config = self._config
        size = os.path.getsize(file_path)
        with open(file_path, "rb") as raw:
            reader = ProgressReader(raw, size, self._progress)
            wb = openpyxl.load_workbook(reader, read_only=True, data_only=True)
            try:
                sheets: list[RawSheet] = []
                for ws in wb.worksheets[: config.max_sheets]:
                    if token is not None:
                        token.raise_if_cancelled()
                    sheets.append(self._stream_sheet(ws, token))
                props = wb.properties
                metadata = WorkbookMetadata(
                    title=props.title,
                    author=props.creator,
                    subject=props.subject,
                    created=format_datetime(props.created) if props.created else None,
                    modified=format_datetime(props.modified) if props.modified else None,
                    sheet_names=list(wb.sheetnames),
                    **inspect_container(file_path),
                )
            finally:
                wb.close()

        issues: list[AnalysisIssue] = []
        if len(wb.sheetnames) > config.max_sheets:
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.W_SHEETS_TRUNCATED,
                    message=(
                        f"Workbook has {len(wb.sheetnames)} sheets; "
                        f"analyzed the first {config.max_sheets}."
                    ),
                    stage="stream",
                    recoverable=True,
                )
            )
        return ParsedWorkbook(
            sheets=sheets,
            metadata=metadata,
            confidence=0.95,
            extraction_method=ExtractionMethod.OPENPYXL_STREAMING,
            issues=issues,
        )

    def _stream_sheet(self, ws: Any, token: CancellationToken | None) -> RawSheet:
        expected = ws.max_row if isinstance(ws.max_row, int) else None
        sink = SampleSink(self._config.max_rows_per_sheet, self._config.sample_rows, expected)
        for idx, row in enumerate(ws.iter_rows(values_only=True)):
            if token is not None and idx % self._config.chunk_size == 0:
                token.raise_if_cancelled()
            sink.add([normalize_cell(v) for v in row])
        return RawSheet(
            name=ws.title,
            rows=sink.rows(),
            total_rows=sink.total_rows,
            total_cells=sink.total_cells,
            total_columns=sink.total_columns,
            hidden=getattr(ws, "sheet_state", "visible") != "visible",
            presampled=True,
        )


# ---------------------------------------------------------------------------
# Parallel
# ---------------------------------------------------------------------------


def partition(names: list[str], parts: int) -> list[list[str]]:
    """Split *names* into at most *parts* contiguous, non-empty groups."""
    if not names:
        return []
    parts = max(1, min(parts, len(names)))
    base, extra = divmod(len(names), parts)
    groups: list[list[str]] = []
    start = 0
    for i in range(parts):
        end = start + base + (1 if i < extra else 0)
        groups.append(names[start:end])
        start = end
    return groups


class ParallelAdapter(_BaseAdapter):
    """Sheet-level chunking over a bounded worker pool.

    Parameters
    ----------
    config:
        Engine configuration (``worker_count``, ``timeout``, ``max_sheets``).
    pool:
        Worker pool owned by the engine.
    chunk_fn:
        ``chunk_fn(file_path, sheet_names, token=...) -> WorkbookAnalysis``.
        Defaults to decoding and analyzing the given sheets.
    """

    strategy = AnalysisStrategy.PARALLEL

    def __init__(
        self,
        config: AnalysisConfig,
        pool: WorkerPool,
        parser: ParserChain | None = None,
        progress: ProgressCallback | None = None,
        chunk_fn: ChunkFn | None = None,
    ) -> None:
        super().__init__(config, parser, progress)
        self._pool = pool
        self._chunk_fn = chunk_fn or self.analyze_chunk

    def analyze_chunk(
        self,
        file_path: str,
        sheet_names: list[str],
        token: CancellationToken | None = None,
    ) -> WorkbookAnalysis:
        parsed = self._parser.parse(file_path, sheet_names=sheet_names, token=token)
        return self._analyze_parsed(parsed, token)

    def run(self, file_path: str, token: CancellationToken | None = None) -> AdapterRun:
        names = self._parser.list_sheet_names(file_path)
        truncated: AnalysisIssue | None = None
        if len(names) > self._config.max_sheets:
            truncated = AnalysisIssue(
                code=ErrorCode.W_SHEETS_TRUNCATED,
                message=(
                    f"Workbook has {len(names)} sheets; "
                    f"analyzed the first {self._config.max_sheets}."
                ),
                stage="parallel",
                recoverable=True,
            )
            names = names[: self._config.max_sheets]
        groups = partition(names, self._config.worker_count)
        if not groups:
            logger.info(
                "sheetkit | stage=parallel | file=%s | detail=sheet list unavailable, "
                "using traditional load",
                os.path.basename(file_path),
            )
            return self._traditional().run(file_path, token)

        self._report(f"Dispatching {len(groups)} chunks", 20.0)
        task_ids = [self._pool.submit(self._chunk_fn, file_path, group)[0] for group in groups]
        outcomes = self._pool.wait_all(task_ids, timeout=self._config.timeout_seconds)
        if token is not None:
            token.raise_if_cancelled()

        chunks: list[WorkbookAnalysis] = []
        for number, task_id in enumerate(task_ids, start=1):
            outcome = outcomes[task_id]
            if outcome.ok:
                chunks.append(outcome.value)
                continue
            failure = self._chunk_failure(number, len(task_ids), outcome)
            logger.warning(
                "sheetkit | stage=parallel | file=%s | code=%s | detail=%s",
                os.path.basename(file_path),
                failure.code.value,
                failure.message,
            )
            chunks.append(
                WorkbookAnalysis(
                    failed=True,
                    issues=[failure.issue.model_copy(update={"recoverable": True})],
                )
            )
        self._report("Chunks complete", 70.0)

        failed = [c for c in chunks if c.failed]
        if len(failed) == len(chunks):
            logger.warning(
                "sheetkit | stage=parallel | file=%s | detail=all %d chunks failed, "
                "falling back to traditional load",
                os.path.basename(file_path),
                len(chunks),
            )
            return self._traditional().run(file_path, token)
        if failed:
            failed[0].issues.append(
                AnalysisIssue(
                    code=ErrorCode.W_CHUNK_FAILED,
                    message=f"{len(failed)} of {len(chunks)} chunks failed; results are partial.",
                    stage="parallel",
                    recoverable=True,
                )
            )
        if truncated is not None:
            chunks[0].issues.append(truncated)
        return AdapterRun(chunks=chunks, chunked=True)

    def _chunk_failure(self, number: int, total: int, outcome: TaskOutcome) -> SheetkitError:
        if outcome.timed_out:
            return WorkerTimeoutError(
                f"Chunk {number}/{total} timed out after "
                f"{self._config.timeout_seconds:.1f}s",
                stage="parallel",
            )
        return WorkerCrashError(
            f"Chunk {number}/{total} failed: {type(outcome.error).__name__}: {outcome.error}",
            stage="parallel",
        )

    def _traditional(self) -> TraditionalAdapter:
        return TraditionalAdapter(self._config, self._parser, self._progress)
