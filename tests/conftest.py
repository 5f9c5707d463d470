# tests/conftest.py
"""
Shared fixtures for the simplecfg test-suite.

Java snippets are written inline and dedented; line 1 of a snippet is its
first non-empty line.  Larger inputs live in ``tests/testdata``.
"""

import shutil
import textwrap
from pathlib import Path

import pytest

from simplecfg.ast_helper import iter_bodies, parse_unit
from simplecfg.config import DEFAULT_CONFIG
from simplecfg.ctrlflow_graph import build_cfg
from simplecfg.frontend import analyze_source

TESTDATA = Path(__file__).parent / "testdata"


def java(source):
    """Dedent a Java snippet and drop its leading blank line."""
    return textwrap.dedent(source).lstrip("\n")


def labels(nodes):
    return [n.label for n in nodes]


def find_body(unit, name=None):
    """First body of *unit*, or the one whose (qualified) name is *name*."""
    for body in iter_bodies(unit):
        if name is None or name in (body.name, body.qualified_name):
            return body
    raise LookupError(f"no body named {name!r}")


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def testdata():
    return TESTDATA


@pytest.fixture
def copy_testdata(tmp_path):
    """Copy named testdata files into ``tmp_path`` and return it."""
    def _copy(*names):
        for name in names:
            shutil.copy(TESTDATA / name, tmp_path / name)
        return tmp_path
    return _copy


@pytest.fixture
def unit_of():
    def _unit(source, path="Test.java"):
        return parse_unit(java(source), path)
    return _unit


@pytest.fixture
def cfg_of():
    """CFG of a body in a complete compilation unit."""
    def _cfg(source, name=None):
        return build_cfg(find_body(parse_unit(java(source)), name))
    return _cfg


@pytest.fixture
def method_cfg():
    """CFG of a method ``m`` wrapped around the given statements."""
    def _cfg(statements, params=""):
        source = (
            "class T {\n"
            f"  void m({params}) throws Exception {{\n"
            f"{textwrap.indent(java(statements), '    ')}"
            "  }\n"
            "}\n"
        )
        return build_cfg(find_body(parse_unit(source), "m"))
    return _cfg


@pytest.fixture
def findings_of():
    """Findings for a Java snippet, optionally with extra config options."""
    def _findings(source, path="Test.java", **options):
        config = DEFAULT_CONFIG.with_options(**options) if options else DEFAULT_CONFIG
        return analyze_source(java(source), path, config)
    return _findings


@pytest.fixture
def succ():
    """Labels of the visible successors of the single node labelled *label*."""
    def _succ(cfg, label):
        matches = cfg.find(label)
        assert len(matches) == 1, f"{label!r} occurs {len(matches)} times"
        return labels(matches[0].visible_successors())
    return _succ
