# tests/test_nullable_dereference.py
"""Tests for the nullable-dereference checker."""

import pytest

from simplecfg.checkers import NullableDereferenceChecker
from simplecfg.findings import Fix, Replacement
from simplecfg.frontend import analyze_file


def nullable_findings(findings):
    return [f for f in findings if f.subcategory == NullableDereferenceChecker.subcategory]


def lines(findings):
    return [f.start_line for f in findings]


def deref(param_decl, *statements):
    """A class with one method ``f`` taking *param_decl* and running *statements*."""
    body = "\n".join(f"    {s}" for s in statements)
    return (
        "class T {\n"
        f"  void f({param_decl}) {{\n"
        f"{body}\n"
        "  }\n"
        "}\n"
    )


class TestExamplesFile:

    @pytest.fixture
    def findings(self, testdata):
        path = str(testdata / "NullableExamples.java")
        return path, nullable_findings(analyze_file(path))

    def test_reported_lines(self, findings):
        _, found = findings
        assert lines(found) == [5, 9, 30, 35, 40]

    def test_positions_point_at_the_dereferenced_name(self, findings):
        _, found = findings
        by_line = {f.start_line: f for f in found}
        assert by_line[5].start_column == 12
        assert by_line[9].start_column == 5
        assert by_line[35].start_column == 12

    def test_message(self, findings):
        _, found = findings
        assert found[0].message == "Dereferencing s, which was declared @Nullable."
        assert found[3].message == "Dereferencing values, which was declared @Nullable."
        assert found[4].message == "Dereferencing t, which was declared @Nullable."

    def test_fix_wraps_statement_in_null_check(self, findings):
        path, found = findings
        by_line = {f.start_line: f for f in found}
        assert by_line[9].fixes == (
            Fix(
                description="Add null check for s",
                replacements=(
                    Replacement(
                        path=path,
                        start_line=9,
                        end_line=9,
                        new_content="    if (s != null) {\n      s.trim();\n    }\n",
                    ),
                ),
            ),
        )

    def test_no_fix_inside_return(self, findings):
        _, found = findings
        assert found[0].fixes == ()


class TestRefinement:

    @pytest.mark.parametrize("statements", [
        ("if (s != null) { s.trim(); }",),
        ("if (null != s) { s.trim(); }",),
        ("if (s == null) { return; }", "s.trim();"),
        ("if (s == null) return;", "s.trim();"),
        ("if (s instanceof String) { s.trim(); }",),
        ("if (!(s == null)) { s.trim(); }",),
        ("if (s != null && s.isEmpty()) { s.trim(); }",),
        ("boolean b = s == null || s.isEmpty();",),
        ("if (s == null || s.isEmpty()) { return; }", "s.trim();"),
        ("while (s != null) { s.trim(); s = next(); }",),
        ('s = "x";', "s.trim();"),
        ("s = new String();", "s.trim();"),
    ])
    def test_guarded_dereferences_are_not_reported(self, findings_of, statements):
        assert findings_of(deref("@Nullable String s", *statements)) == []

    @pytest.mark.parametrize("statements", [
        ("if (s == null) { s.trim(); }",),
        ("if (s != null) { a(); }", "s.trim();"),
        ("if (s instanceof String) { } else { s.trim(); }",),
        ("s = null;", "s.trim();"),
        ("s = next();", "s.trim();"),
        ("while (b()) { s.trim(); s = null; }",),
    ])
    def test_unguarded_dereferences_are_reported(self, findings_of, statements):
        findings = findings_of(deref("@Nullable String s", *statements))
        assert len(findings) == 1

    def test_contradictory_branch_is_unreachable(self, findings_of):
        source = deref("@Nullable String s",
                       "if (s != null) {",
                       "  if (s == null) { s.trim(); }",
                       "}")
        assert findings_of(source) == []

    def test_dereference_makes_variable_non_null(self, findings_of):
        findings = findings_of(deref("@Nullable String s", "s.trim();", "s.length();"))
        assert lines(findings) == [3]


class TestTernary:

    def test_checked_ternary_is_non_null(self, findings_of):
        source = deref("@Nullable String s",
                       '@Nullable String t = s != null ? s : "x";',
                       "t.trim();")
        assert findings_of(source) == []

    def test_ternary_with_null_arm_may_be_null(self, findings_of):
        source = deref("@Nullable String s, boolean b",
                       "@Nullable String t = b ? s : null;",
                       "t.trim();")
        assert lines(findings_of(source)) == [4]


class TestAnnotations:

    def test_check_for_null(self, findings_of):
        assert len(findings_of(deref("@CheckForNull String s", "s.trim();"))) == 1

    def test_qualified_annotation(self, findings_of):
        source = deref("@javax.annotation.Nullable String s", "s.trim();")
        assert len(findings_of(source)) == 1

    def test_custom_annotation_needs_configuration(self, findings_of):
        source = deref("@MaybeNull String s", "s.trim();")
        assert findings_of(source) == []
        assert len(findings_of(source, nullable_annotations=["MaybeNull"])) == 1

    def test_unannotated_parameter(self, findings_of):
        assert findings_of(deref("String s", "s.trim();")) == []

    def test_varargs_parameter(self, findings_of):
        assert findings_of(deref("@Nullable String... rest", "rest.clone();")) == []


class TestFixes:

    def test_no_fix_when_line_has_two_statements(self, findings_of):
        (finding,) = findings_of(deref("@Nullable String s", "s.trim(); a();"))
        assert finding.fixes == ()

    def test_no_fix_for_guarded_operand(self, findings_of):
        (finding,) = findings_of(deref("@Nullable String s", "boolean b = c() && s.isEmpty();"))
        assert finding.fixes == ()

    def test_fix_keeps_indentation(self, findings_of):
        source = deref("@Nullable String s, boolean b", "if (b) {", "  s.trim();", "}")
        (finding,) = findings_of(source)
        (replacement,) = finding.fixes[0].replacements
        assert replacement.start_line == 4
        assert replacement.new_content == (
            "      if (s != null) {\n"
            "        s.trim();\n"
            "      }\n"
        )

    def test_disabled(self, findings_of):
        source = deref("@Nullable String s", "s.trim();")
        assert findings_of(source, disabled_checkers=["nullable-dereference"]) == []
