"""Pre-flight scanner for spreadsheet files.

Rejects unsupported or unusable files before any parsing begins.
Checks file extension, existence and emptiness.  The size ceiling is
enforced by the strategy selector so that strategy choice stays a pure
function of (size, options).
"""

from __future__ import annotations

import logging
import os

from sheetkit.errors import AnalysisIssue, ErrorCode

logger = logging.getLogger("sheetkit")

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({".xls", ".xlsx", ".xlsm", ".xlsb"})

# Formats stored as a zip container of XML parts.
ZIP_EXTENSIONS: frozenset[str] = frozenset({".xlsx", ".xlsm"})


def file_extension(file_path: str) -> str:
    return os.path.splitext(file_path)[1].lower()


class PreflightScanner:
    """Run pre-flight checks on a spreadsheet file.

    Returns a list of issues.  Fatal issues (``E_*`` codes) mean the file
    should not be processed further.
    """

    def scan(self, file_path: str) -> list[AnalysisIssue]:
        """Run all pre-flight checks.

        Returns:
            List of issues.  Fatal issues have codes starting with ``E_``.
        """
        issues: list[AnalysisIssue] = []

        # --- 1. Extension check ---
        ext = file_extension(file_path)
        if ext not in SUPPORTED_EXTENSIONS:
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.E_UNSUPPORTED_FORMAT,
                    message=(
                        f"Unsupported file format '{ext or '<none>'}'. "
                        f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
                    ),
                    stage="preflight",
                )
            )
            return issues

        # --- 2. File existence and readability ---
        if not os.path.isfile(file_path):
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.E_FILE_NOT_FOUND,
                    message=f"File not found or not readable: {file_path}",
                    stage="preflight",
                )
            )
            return issues

        # --- 3. Empty file ---
        if os.path.getsize(file_path) == 0:
            issues.append(
                AnalysisIssue(
                    code=ErrorCode.E_PARSE_EMPTY,
                    message=f"File is empty (0 bytes): {file_path}",
                    stage="preflight",
                )
            )

        return issues


def fatal_issues(issues: list[AnalysisIssue]) -> list[AnalysisIssue]:
    return [i for i in issues if i.code.value.startswith("E_")]
