"""
simplecfg/findings.py
═════════════════════

Finding model: located diagnostics with optional suggested fixes.

    ┌──────────────┐      make_finding()      ┌─────────────────────────┐
    │ViolationCtx  │ ───────────────────────▶ │ Finding                 │
    │ path, pos,   │                          │  path, range, message,  │
    │ message, ... │                          │  category, subcategory, │
    └──────────────┘                          │  fixes: (Fix, ...)      │
                                              │    └─ (Replacement,...) │
                                              └─────────────────────────┘

Everything here is a frozen value object; building a finding never reads
files or touches the syntax tree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import CATEGORY

Position = Tuple[int, int]


@dataclass(frozen=True)
class Replacement:
    """Replace a source range with literal text.

    Line numbers are 1-based.  A column of 0 means "whole line".
    """

    path: str
    start_line: int
    end_line: int
    new_content: str
    start_column: int = 0
    end_column: int = 0

    @property
    def whole_lines(self) -> bool:
        return self.start_column == 0 and self.end_column == 0


@dataclass(frozen=True)
class Fix:
    description: str
    replacements: Tuple[Replacement, ...]


@dataclass(frozen=True)
class Finding:
    """
    A single located diagnostic.

    Attributes
    ----------
    path        : source path as given to the analyzer
    start_line  : 1-based
    start_column: 1-based, 0 when unknown
    end_line, end_column
    message     : human readable text
    category    : always the analyzer category (``SimpleCFG``)
    subcategory : ``AlreadyClosed`` or ``NullableDereference``
    fixes       : suggested fixes, possibly empty
    """

    path: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    message: str
    category: str
    subcategory: str
    fixes: Tuple[Fix, ...] = ()

    @property
    def sort_key(self) -> Tuple[str, int, int, str]:
        return (self.path, self.start_line, self.start_column, self.message)

    def __str__(self) -> str:
        return f"{self.path}:{self.start_line}:{self.start_column}: {self.message}"


@dataclass(frozen=True)
class ViolationContext:
    """Everything a checker knows about one violation."""

    path: str
    position: Optional[Position]
    message: str
    subcategory: str
    category: str = CATEGORY
    end_position: Optional[Position] = None
    fixes: Tuple[Fix, ...] = ()


def make_finding(violation: ViolationContext) -> Finding:
    """Build a :class:`Finding`, clamping lines to ≥ 1 and columns to ≥ 0."""
    line, column = violation.position or (1, 0)
    end_line, end_column = violation.end_position or (line, column)
    line = max(line, 1)
    column = max(column, 0)
    return Finding(
        path=violation.path,
        start_line=line,
        start_column=column,
        end_line=max(end_line, line),
        end_column=max(end_column, 0),
        message=violation.message,
        category=violation.category,
        subcategory=violation.subcategory,
        fixes=tuple(violation.fixes),
    )


def sorted_findings(findings: Iterable[Finding]) -> List[Finding]:
    """Deduplicate and order by ``Finding.sort_key``.

    The key is (path, line, column, message), i.e. source order within a
    file.  Findings with equal keys keep the order they were emitted in;
    the first of several equal findings is the one kept.
    """
    return sorted(dict.fromkeys(findings), key=lambda f: f.sort_key)


# ───────────────────────────────────────────────────────────────────────────────
# FIX BUILDERS
# ───────────────────────────────────────────────────────────────────────────────

def ensure_line_terminator(text: str) -> str:
    if text.endswith("\n"):
        return text
    return text + "\n"


def line_replacement(path: str, start_line: int, end_line: int, new_text: str) -> Replacement:
    """Replace whole lines ``start_line..end_line``; the text ends with a newline."""
    return Replacement(
        path=path,
        start_line=max(start_line, 1),
        end_line=max(end_line, start_line, 1),
        new_content=ensure_line_terminator(new_text),
    )


def is_single_statement_line(line_text: str, column: int) -> bool:
    """Does ``line_text`` hold exactly one complete statement starting at *column*?

    The statement must begin at the first non-blank character, end with
    ``;`` and keep its parentheses balanced on the line.
    """
    stripped = line_text.strip()
    if not stripped.endswith(";") or stripped.count(";") != 1:
        return False
    indent = len(line_text) - len(line_text.lstrip())
    if column and column != indent + 1:
        return False
    return stripped.count("(") == stripped.count(")") and "//" not in stripped


def null_guard_fix(path: str, line: int, line_text: str, name: str,
                   indent_unit: str = "  ") -> Fix:
    """Wrap source line *line* in ``if (name != null) { ... }``."""
    indent = line_text[: len(line_text) - len(line_text.lstrip())]
    body = line_text.strip()
    new_text = (
        f"{indent}if ({name} != null) {{\n"
        f"{indent}{indent_unit}{body}\n"
        f"{indent}}}\n"
    )
    return Fix(
        description=f"Add null check for {name}",
        replacements=(line_replacement(path, line, line, new_text),),
    )
