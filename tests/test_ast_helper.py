# tests/test_ast_helper.py
"""Tests for the javalang access layer."""

import pytest

from simplecfg.ast_helper import (
    BodyKind,
    TypeHierarchy,
    constant_truth,
    declared_variables,
    expr_to_string,
    is_nullable_declaration,
    is_statically_non_null,
    iter_bodies,
    node_position,
    null_test,
    parse_unit,
    qualifier_root,
    simple_name,
    simple_type_name,
)
from simplecfg.config import DEFAULT_NULLABLE_ANNOTATIONS
from simplecfg.errors import JavaParseError


def expression(text):
    """The javalang node of a Java expression."""
    unit = parse_unit(f"class T {{\n  void f() {{\n    Object x = {text};\n  }}\n}}\n")
    return next(iter_bodies(unit)).statements[0].declarators[0].initializer


class TestParseUnit:

    def test_lines_are_kept(self):
        unit = parse_unit("class T {\n  void f() {}\n}\n", "T.java")
        assert unit.path == "T.java"
        assert unit.line_text(2) == "  void f() {}"
        assert unit.line_text(0) == ""
        assert unit.line_text(99) == ""

    def test_syntax_error(self):
        with pytest.raises(JavaParseError) as info:
            parse_unit("class T {\n  void f( {\n  }\n}\n", "T.java")
        error = info.value
        assert error.path == "T.java"
        assert error.span.line > 0
        assert "syntax error" in error.message


class TestBodies:

    def test_kinds_and_parameters(self):
        unit = parse_unit(
            "class T {\n"
            "  static { init(); }\n"
            "  T(int n) { }\n"
            "  void f(@Nullable String s, int n) { }\n"
            "}\n"
        )
        bodies = list(iter_bodies(unit))
        assert [b.kind for b in bodies] == [
            BodyKind.INITIALIZER, BodyKind.CONSTRUCTOR, BodyKind.METHOD,
        ]
        s, n = bodies[2].parameters
        assert s.annotations == ("Nullable",)
        assert s.is_parameter and s.is_reference
        assert not n.is_reference
        assert is_nullable_declaration(s, DEFAULT_NULLABLE_ANNOTATIONS)
        assert not is_nullable_declaration(n, DEFAULT_NULLABLE_ANNOTATIONS)

    def test_enum_methods(self):
        unit = parse_unit("enum E {\n  A, B;\n  void f() { g(); }\n}\n")
        assert [b.qualified_name for b in iter_bodies(unit)] == ["E.f"]

    def test_enum_constant_bodies(self):
        unit = parse_unit(
            "enum E {\n"
            "  A {\n"
            "    void f() { g(); }\n"
            "  },\n"
            "  B;\n"
            "  void h() { g(); }\n"
            "}\n"
        )
        assert [b.qualified_name for b in iter_bodies(unit)] == ["E.A.f", "E.h"]

    def test_empty_initializer_blocks_are_not_reported(self):
        unit = parse_unit("class T {\n  static { }\n  { }\n  void f() { }\n}\n")
        assert [b.kind for b in iter_bodies(unit)] == [BodyKind.METHOD]

    def test_declared_variables(self):
        unit = parse_unit("class T {\n  void f() {\n    int a = 1, b[] = null;\n  }\n}\n")
        declaration = next(iter_bodies(unit)).statements[0]
        a, b = declared_variables(declaration)
        assert (a.name, a.is_reference) == ("a", False)
        assert (b.name, b.is_reference) == ("b", True)
        assert node_position(declaration) == (3, 5)


class TestExpressionText:

    @pytest.mark.parametrize("source, text", [
        ("(x + y) == (400 - z)", "x + y == 400 - z"),
        ("a - b - c", "a - b - c"),
        ("a - (b - c)", "a - (b - c)"),
        ("(a || b) && c", "(a || b) && c"),
        ("a.b(c, d.e())", "a.b(c, d.e())"),
        ("this.x.y()", "this.x.y()"),
        ("new Foo(1)", "new Foo(1)"),
        ("values[i + 1]", "values[i + 1]"),
        ("!done", "!done"),
        ("c ? a : b", "c ? a : b"),
        ("(String) o", "(String) o"),
        ("s instanceof String", "s instanceof String"),
        ('"x" + 1', '"x" + 1'),
    ])
    def test_render(self, source, text):
        assert expr_to_string(expression(source)) == text


class TestExpressionPredicates:

    @pytest.mark.parametrize("source, truth", [
        ("true", True),
        ("false", False),
        ("!true", False),
        ("x", None),
    ])
    def test_constant_truth(self, source, truth):
        assert constant_truth(expression(source)) is truth

    @pytest.mark.parametrize("source, result", [
        ("s == null", ("s", False)),
        ("null != s", ("s", True)),
        ("!(s != null)", ("s", False)),
        ("s instanceof String", ("s", True)),
        ("s.t == null", None),
        ("a == b", None),
        ("f()", None),
    ])
    def test_null_test(self, source, result):
        assert null_test(expression(source)) == result

    @pytest.mark.parametrize("source, non_null", [
        ("new Foo()", True),
        ("new int[3]", True),
        ('"a" + b', True),
        ('"a"', True),
        ("null", False),
        ("foo()", False),
        ("x", False),
    ])
    def test_statically_non_null(self, source, non_null):
        assert is_statically_non_null(expression(source)) is non_null

    def test_simple_name(self):
        assert simple_name(expression("x")) == "x"
        assert simple_name(expression("x.y")) is None
        assert simple_name(expression("x[0]")) is None

    def test_qualifier_root(self):
        assert qualifier_root("a.b.c") == "a"
        assert qualifier_root("") is None
        assert qualifier_root(None) is None


class TestTypes:

    @pytest.mark.parametrize("name, simple", [
        ("java.util.List<String>", "List"),
        ("InputStream", "InputStream"),
        ("int[]", "int[]"),
    ])
    def test_simple_type_name(self, name, simple):
        assert simple_type_name(name) == simple

    def test_known_closeable_types(self):
        hierarchy = TypeHierarchy()
        assert hierarchy.is_closeable("java.io.InputStream")
        assert hierarchy.is_closeable("BufferedReader")
        assert not hierarchy.is_closeable("String")
        assert not hierarchy.is_closeable("int")
        assert not hierarchy.is_closeable("InputStream[]")

    def test_hierarchy_from_unit(self):
        unit = parse_unit(
            "import java.io.Closeable;\n"
            "class A implements Closeable { public void close() {} }\n"
            "class B extends A { }\n"
            "class X extends Y { }\n"
            "class Y extends X { }\n"
        )
        assert unit.hierarchy.is_closeable("B")
        assert not unit.hierarchy.is_closeable("X")

    def test_extra_closeable(self):
        hierarchy = TypeHierarchy().with_extra_closeable(["Handle"])
        assert hierarchy.is_closeable("com.example.Handle")
        assert not TypeHierarchy().is_closeable("Handle")
