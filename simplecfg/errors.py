# simplecfg/errors.py
"""
Error types for the simplecfg analysis pipeline.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                     │
├─────────────────────────────────────────────────────────────────────────────┤
│  SimpleCfgError (base)                                                      │
│  ├── JavaParseError     - javalang could not parse a compilation unit       │
│  ├── FileAnalysisError  - reading or analyzing one file failed              │
│  ├── AnalyzerError      - batch-level failure (one or more files failed)    │
│  └── CfgInvariantError  - a CFG violated a structural invariant (a bug)     │
└─────────────────────────────────────────────────────────────────────────────┘

The CFG builder itself never raises on unfamiliar syntax; it degrades to a
pass-through node.  Everything in this module is raised at a boundary
(parsing, file I/O, the batch loop) or by consistency checks that are
meant to fail loudly in tests.

Example Usage:
──────────────
    from simplecfg.errors import AnalyzerError

    try:
        findings = analyze(repo_root, paths)
    except AnalyzerError as exc:
        for failure in exc.failures:
            print(failure)
        findings = exc.findings
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence


class ErrorPhase(Enum):
    """Pipeline phase in which an error originated."""
    PARSE = "parse"
    IO = "io"
    ANALYSIS = "analysis"
    INTERNAL = "internal"


@dataclass(frozen=True)
class SourceSpan:
    """A source position attached to an error."""

    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if not self.file:
            return ""
        if self.line <= 0:
            return self.file
        return f"{self.file}:{self.line}:{self.column}"


class SimpleCfgError(Exception):
    """
    Base exception for all simplecfg errors.

    Carries a message, an optional source span and the underlying cause,
    and renders them GCC-style (``file:line:col: message``).
    """

    phase = ErrorPhase.INTERNAL

    def __init__(
        self,
        message: str,
        span: Optional[SourceSpan] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.span = span or SourceSpan()
        self.cause = cause

    @property
    def path(self) -> str:
        return self.span.file

    def to_gcc_format(self) -> str:
        location = str(self.span)
        if location:
            return f"{location}: {self.message}"
        return self.message

    def __str__(self) -> str:
        return self.to_gcc_format()


# ───────────────────────────────────────────────────────────────────────────────
# FRONT END
# ───────────────────────────────────────────────────────────────────────────────

class JavaParseError(SimpleCfgError):
    """javalang rejected the source (lexer or syntax error)."""

    phase = ErrorPhase.PARSE

    @classmethod
    def from_javalang(cls, path: str, exc: BaseException) -> "JavaParseError":
        position = getattr(exc, "at", None)
        position = getattr(position, "position", None) or getattr(exc, "position", None)
        line = getattr(position, "line", 0) or 0
        column = getattr(position, "column", 0) or 0
        detail = getattr(exc, "description", None) or str(exc) or type(exc).__name__
        return cls(
            f"syntax error: {detail}",
            span=SourceSpan(file=path, line=line, column=column),
            cause=exc,
        )


class FileAnalysisError(SimpleCfgError):
    """Analysis of a single file failed."""

    phase = ErrorPhase.IO

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to analyze file {path}: {cause}",
            cause=cause,
        )
        self.file_path = path

    def to_gcc_format(self) -> str:
        return self.message


# ───────────────────────────────────────────────────────────────────────────────
# BATCH
# ───────────────────────────────────────────────────────────────────────────────

class AnalyzerError(SimpleCfgError):
    """
    One or more files of a batch could not be analyzed.

    Attributes
    ----------
    failures : list of FileAnalysisError
        One entry per failed file, in request order.
    findings : list of Finding
        Findings collected from the files that did succeed.
    """

    phase = ErrorPhase.ANALYSIS

    def __init__(
        self,
        failures: Sequence[FileAnalysisError],
        findings: Sequence[Any] = (),
    ) -> None:
        self.failures: List[FileAnalysisError] = list(failures)
        self.findings: List[Any] = list(findings)
        if len(self.failures) == 1:
            message = self.failures[0].message
        else:
            message = "; ".join(f.message for f in self.failures)
        super().__init__(message, cause=self.failures[0].cause if self.failures else None)


# ───────────────────────────────────────────────────────────────────────────────
# INTERNAL
# ───────────────────────────────────────────────────────────────────────────────

class CfgInvariantError(SimpleCfgError, AssertionError):
    """A CFG failed a structural check.  Always a programming defect."""

    phase = ErrorPhase.INTERNAL
