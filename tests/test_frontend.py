# tests/test_frontend.py
"""Tests for analyze_source / analyze_file / the batch analyze()."""

import logging

import pytest

from simplecfg.errors import AnalyzerError, FileAnalysisError, JavaParseError
from simplecfg.frontend import analyze, analyze_file, analyze_source, resolve_path


class TestSingleFile:

    def test_analyze_source_uses_given_path(self):
        findings = analyze_source(
            "class T { void f(@Nullable String s) { s.trim(); } }\n", "pkg/T.java")
        assert [f.path for f in findings] == ["pkg/T.java"]

    def test_parse_error(self):
        with pytest.raises(JavaParseError) as info:
            analyze_source("class T { void f( { } }\n", "T.java")
        assert info.value.path == "T.java"
        assert str(info.value).startswith("T.java:")

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            analyze_file(str(tmp_path / "Missing.java"))


class TestResolvePath:

    def test_relative_path_is_joined(self):
        assert resolve_path("/repo", "src/A.java") == "/repo/src/A.java"

    def test_absolute_path_is_kept(self):
        assert resolve_path("/repo", "/other/A.java") == "/other/A.java"

    def test_no_root(self):
        assert resolve_path(None, "src/A.java") == "src/A.java"


class TestBatch:

    def test_findings_from_all_files_are_merged(self, copy_testdata):
        root = copy_testdata("AlreadyClosedExamples.java", "NullableExamples.java")
        findings = analyze(str(root), ["NullableExamples.java", "AlreadyClosedExamples.java"])
        assert len(findings) == 9
        assert findings[0].path == str(root / "AlreadyClosedExamples.java")
        assert findings == sorted(findings, key=lambda f: f.sort_key)

    def test_directory_is_skipped_with_warning(self, copy_testdata, caplog):
        root = copy_testdata("Clean.java")
        (root / "sub").mkdir()
        with caplog.at_level(logging.WARNING, logger="simplecfg"):
            findings = analyze(str(root), ["sub", "Clean.java"])
        assert findings == []
        assert "skipping directory sub" in caplog.messages

    def test_failures_do_not_stop_the_batch(self, copy_testdata, caplog):
        root = copy_testdata("Broken.java", "NullableExamples.java")
        with caplog.at_level(logging.ERROR, logger="simplecfg"):
            with pytest.raises(AnalyzerError) as info:
                analyze(str(root), ["Broken.java", "Missing.java", "NullableExamples.java"])
        error = info.value
        assert [f.file_path for f in error.failures] == ["Broken.java", "Missing.java"]
        assert all(isinstance(f, FileAnalysisError) for f in error.failures)
        assert error.failures[0].message.startswith("Failed to analyze file Broken.java: ")
        assert isinstance(error.failures[0].cause, JavaParseError)
        assert isinstance(error.failures[1].cause, OSError)
        assert len(error.findings) == 5
        assert len(caplog.records) == 2

    def test_single_failure_message(self, copy_testdata):
        root = copy_testdata("Broken.java")
        with pytest.raises(AnalyzerError) as info:
            analyze(str(root), ["Broken.java"])
        assert str(info.value) == info.value.failures[0].message

    def test_empty_batch(self):
        assert analyze(None, []) == []
