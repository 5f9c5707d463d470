"""
simplecfg/frontend.py
═════════════════════

Entry points that turn Java source into findings.

    analyze(repo_root, paths)
        │
        ├── directory ──▶ warning "skipping directory <path>"
        │
        └── file ──▶ analyze_file ──▶ analyze_source
                                          │
                                          ├── parse_unit      (ast_helper)
                                          └── CheckerRunner   (checkers)

A failing file never stops the batch: every path is attempted and the
failures are reported together in one :class:`AnalyzerError` that also
carries the findings of the files that did succeed.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, List, Optional

from .ast_helper import parse_unit
from .checkers import CheckerRunner
from .config import DEFAULT_CONFIG, AnalyzerConfig
from .errors import AnalyzerError, FileAnalysisError
from .findings import Finding, sorted_findings

logger = logging.getLogger(__name__)


def analyze_source(
    source: str,
    path: str = "<string>",
    config: AnalyzerConfig = DEFAULT_CONFIG,
) -> List[Finding]:
    """Analyze one compilation unit given as text."""
    unit = parse_unit(source, path)
    return CheckerRunner(config).run(unit)


def analyze_file(path: str, config: AnalyzerConfig = DEFAULT_CONFIG) -> List[Finding]:
    """Read *path* as UTF-8 and analyze it.

    Raises
    ------
    OSError
        The file cannot be read.
    JavaParseError
        The file is not valid Java.
    """
    with open(path, encoding="utf-8") as fh:
        source = fh.read()
    return analyze_source(source, path, config)


def resolve_path(repo_root: Optional[str], path: str) -> str:
    if repo_root and not os.path.isabs(path):
        return os.path.join(repo_root, path)
    return path


def analyze(
    repo_root: Optional[str],
    paths: Iterable[str],
    config: AnalyzerConfig = DEFAULT_CONFIG,
) -> List[Finding]:
    """Analyze a batch of files.

    Relative paths are resolved against *repo_root*.  Directories are
    skipped with a warning.

    Raises
    ------
    AnalyzerError
        At least one file failed; ``failures`` holds one
        :class:`FileAnalysisError` per failed file and ``findings`` the
        findings of the others.
    """
    findings: List[Finding] = []
    failures: List[FileAnalysisError] = []
    for path in paths:
        full_path = resolve_path(repo_root, path)
        if os.path.isdir(full_path):
            logger.warning("skipping directory %s", path)
            continue
        try:
            found = analyze_file(full_path, config)
        except Exception as exc:
            failure = FileAnalysisError(path, exc)
            logger.error("%s", failure.message)
            failures.append(failure)
            continue
        logger.debug("%s: %d finding(s)", path, len(found))
        findings.extend(found)

    findings = sorted_findings(findings)
    if failures:
        raise AnalyzerError(failures, findings)
    return findings
