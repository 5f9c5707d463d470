"""
simplecfg/adapter.py
════════════════════

Wire representation of findings.

    Finding ──▶ to_note(finding, repo_root) ──▶ Note (pydantic)

    Note
     ├─ location:    { path, range{start_line, start_column, end_line, end_column} }
     ├─ description
     ├─ category     "SimpleCFG"
     ├─ subcategory
     └─ fixes[]:     { description, replacements[{path, range, new_content}] }

Paths in notes are relative to the repository root the request named.
"""

from __future__ import annotations

import os
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from .config import CATEGORY
from .findings import Finding, Fix, Replacement


class TextRange(BaseModel):
    """1-based line range; columns are 0 when a whole line is meant."""

    start_line: int = Field(..., ge=1)
    start_column: int = Field(0, ge=0)
    end_line: int = Field(..., ge=1)
    end_column: int = Field(0, ge=0)


class Location(BaseModel):
    path: str
    range: TextRange


class ReplacementModel(BaseModel):
    path: str
    range: TextRange
    new_content: str


class FixModel(BaseModel):
    description: str
    replacements: List[ReplacementModel] = Field(default_factory=list)


class Note(BaseModel):
    """One analyzer note as sent over the wire."""

    location: Location
    description: str
    category: str = CATEGORY
    subcategory: str
    fixes: List[FixModel] = Field(default_factory=list)


def relative_path(path: str, repo_root: Optional[str]) -> str:
    """Strip *repo_root* (and the separator after it) from the front of *path*."""
    if not repo_root:
        return path
    prefix = repo_root.rstrip("/\\")
    if path == prefix:
        return ""
    for sep in ("/", os.sep):
        if path.startswith(prefix + sep):
            return path[len(prefix) + len(sep):]
    return path


def _replacement(replacement: Replacement, repo_root: Optional[str]) -> ReplacementModel:
    return ReplacementModel(
        path=relative_path(replacement.path, repo_root),
        range=TextRange(
            start_line=replacement.start_line,
            start_column=replacement.start_column,
            end_line=replacement.end_line,
            end_column=replacement.end_column,
        ),
        new_content=replacement.new_content,
    )


def _fix(fix: Fix, repo_root: Optional[str]) -> FixModel:
    return FixModel(
        description=fix.description,
        replacements=[_replacement(r, repo_root) for r in fix.replacements],
    )


def to_note(finding: Finding, repo_root: Optional[str] = None) -> Note:
    return Note(
        location=Location(
            path=relative_path(finding.path, repo_root),
            range=TextRange(
                start_line=finding.start_line,
                start_column=finding.start_column,
                end_line=finding.end_line,
                end_column=finding.end_column,
            ),
        ),
        description=finding.message,
        category=finding.category,
        subcategory=finding.subcategory,
        fixes=[_fix(f, repo_root) for f in finding.fixes],
    )


def to_notes(findings: Iterable[Finding], repo_root: Optional[str] = None) -> List[Note]:
    return [to_note(f, repo_root) for f in findings]
