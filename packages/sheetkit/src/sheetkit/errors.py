"""Normalized error codes, structured issues and raisable errors for sheetkit."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Normalized error codes for the sheetkit analysis pipeline.

    All errors and warnings use a stable string code suitable for metrics,
    alerting, and programmatic handling. Codes prefixed with ``E_`` are errors;
    codes prefixed with ``W_`` are non-fatal warnings.
    """

    # Pre-flight errors
    E_UNSUPPORTED_FORMAT = "E_UNSUPPORTED_FORMAT"
    E_SIZE_LIMIT_EXCEEDED = "E_SIZE_LIMIT_EXCEEDED"
    E_FILE_NOT_FOUND = "E_FILE_NOT_FOUND"

    # Parse errors
    E_PARSE_EMPTY = "E_PARSE_EMPTY"
    E_PARSE_FAILURE = "E_PARSE_FAILURE"

    # Execution errors
    E_WORKER_TIMEOUT = "E_WORKER_TIMEOUT"
    E_WORKER_CRASH = "E_WORKER_CRASH"
    E_ABORTED = "E_ABORTED"
    E_INTERNAL = "E_INTERNAL"

    # Warnings (non-fatal)
    W_PARSER_FALLBACK = "W_PARSER_FALLBACK"
    W_CHUNK_FAILED = "W_CHUNK_FAILED"
    W_SHEET_ANALYSIS_FAILED = "W_SHEET_ANALYSIS_FAILED"
    W_SHEETS_TRUNCATED = "W_SHEETS_TRUNCATED"
    W_ROWS_SAMPLED = "W_ROWS_SAMPLED"
    W_CACHE_WRITE_FAILURE = "W_CACHE_WRITE_FAILURE"
    W_VALIDATION_ISSUE = "W_VALIDATION_ISSUE"
    W_STATS_FAILED = "W_STATS_FAILED"


# Taxonomy names reported as ``error_type`` on failed results.
ERROR_TYPES: dict[ErrorCode, str] = {
    ErrorCode.E_UNSUPPORTED_FORMAT: "UnsupportedFormat",
    ErrorCode.E_SIZE_LIMIT_EXCEEDED: "SizeLimitExceeded",
    ErrorCode.E_FILE_NOT_FOUND: "FileNotFound",
    ErrorCode.E_PARSE_EMPTY: "ParseFailure",
    ErrorCode.E_PARSE_FAILURE: "ParseFailure",
    ErrorCode.E_WORKER_TIMEOUT: "WorkerTimeout",
    ErrorCode.E_WORKER_CRASH: "WorkerCrash",
    ErrorCode.E_ABORTED: "Aborted",
    ErrorCode.E_INTERNAL: "InternalError",
    ErrorCode.W_CACHE_WRITE_FAILURE: "CacheWriteFailure",
    ErrorCode.W_VALIDATION_ISSUE: "ValidationIssue",
}


class AnalysisIssue(BaseModel):
    """Structured error or warning with code, message, and context.

    Note: This is a Pydantic model (data structure), not a Python Exception.
    To raise errors, use :class:`SheetkitError` or one of its subclasses,
    which wrap this model.
    """

    code: ErrorCode
    message: str
    sheet_name: str | None = None
    stage: str | None = None
    recoverable: bool = False


class SheetkitError(Exception):
    """Raisable exception wrapping an :class:`AnalysisIssue`.

    Carries the structured issue as the ``.issue`` attribute so callers can
    attach it to a result without re-deriving code and stage.
    """

    default_code: ErrorCode = ErrorCode.E_INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        stage: str | None = None,
        sheet_name: str | None = None,
    ) -> None:
        self.issue = AnalysisIssue(
            code=code or self.default_code,
            message=message,
            stage=stage,
            sheet_name=sheet_name,
            recoverable=False,
        )
        super().__init__(message)

    @property
    def code(self) -> ErrorCode:
        return self.issue.code

    @property
    def message(self) -> str:
        return self.issue.message

    @property
    def error_type(self) -> str:
        return ERROR_TYPES.get(self.issue.code, "InternalError")


class UnsupportedFormatError(SheetkitError):
    default_code = ErrorCode.E_UNSUPPORTED_FORMAT


class SizeLimitExceededError(SheetkitError):
    default_code = ErrorCode.E_SIZE_LIMIT_EXCEEDED


class ParseFailureError(SheetkitError):
    """Raised only when every parser tier has failed."""

    default_code = ErrorCode.E_PARSE_FAILURE


class WorkerTimeoutError(SheetkitError):
    default_code = ErrorCode.E_WORKER_TIMEOUT


class WorkerCrashError(SheetkitError):
    default_code = ErrorCode.E_WORKER_CRASH


class CacheWriteFailureError(SheetkitError):
    """Non-fatal; the engine logs it and carries on without caching."""

    default_code = ErrorCode.W_CACHE_WRITE_FAILURE


class AnalysisAbortedError(SheetkitError):
    default_code = ErrorCode.E_ABORTED
