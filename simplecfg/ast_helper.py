#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
simplecfg/ast_helper.py
═══════════════════════

Access layer over the javalang syntax tree.

Everything the CFG builder and the checkers need to know about Java source
goes through this module:

    ┌─────────────────────────────────────────────────────────────────┐
    │  Units and bodies                                               │
    │    • parse_unit: source text → JavaUnit (javalang tree + lines) │
    │    • iter_bodies: methods, constructors, initializer blocks     │
    ├─────────────────────────────────────────────────────────────────┤
    │  Declarations                                                   │
    │    • LocalVariable: parameters and locals, with annotations     │
    │    • annotation_names, is_nullable_declaration                  │
    │    • TypeHierarchy: "is this type closeable?"                   │
    ├─────────────────────────────────────────────────────────────────┤
    │  Expressions                                                    │
    │    • expr_to_string / type_to_string                            │
    │    • constant_truth, is_null_literal, is_statically_non_null    │
    │    • null_test: recognise x == null, x != null, x instanceof T  │
    ├─────────────────────────────────────────────────────────────────┤
    │  Positions                                                      │
    │    • node_position: first known (line, column) of a subtree     │
    └─────────────────────────────────────────────────────────────────┘

javalang does not resolve types or bindings.  The layer approximates
both: variables are resolved by name against the lexical scopes the CFG
builder maintains, and closeable-ness is decided from simple type names
(JDK types plus the classes declared in the same unit).

Usage Example
─────────────
    from simplecfg.ast_helper import parse_unit, iter_bodies

    unit = parse_unit(source, "Foo.java")
    for body in iter_bodies(unit):
        print(body.qualified_name, len(body.statements))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from javalang import tree as jt
from javalang.parse import parse as parse_java
from javalang.parser import JavaSyntaxError
from javalang.tokenizer import LexerError

from .errors import JavaParseError

logger = logging.getLogger(__name__)

Position = Tuple[int, int]


# ═══════════════════════════════════════════════════════════════════════════
#  CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

PRIMITIVE_TYPES: FrozenSet[str] = frozenset({
    "boolean", "byte", "char", "short", "int", "long", "float", "double",
})

# Subtypes of java.io.Closeable found in the JDK.
KNOWN_CLOSEABLE_TYPES: FrozenSet[str] = frozenset({
    "Closeable",
    # java.io
    "InputStream", "OutputStream", "Reader", "Writer",
    "FileInputStream", "FileOutputStream", "FileReader", "FileWriter",
    "BufferedInputStream", "BufferedOutputStream",
    "BufferedReader", "BufferedWriter",
    "InputStreamReader", "OutputStreamWriter",
    "PrintStream", "PrintWriter",
    "DataInputStream", "DataOutputStream",
    "ObjectInputStream", "ObjectOutputStream",
    "ByteArrayInputStream", "ByteArrayOutputStream",
    "CharArrayReader", "CharArrayWriter",
    "StringReader", "StringWriter",
    "FilterInputStream", "FilterOutputStream", "FilterReader", "FilterWriter",
    "PushbackInputStream", "PushbackReader", "LineNumberReader",
    "PipedInputStream", "PipedOutputStream", "PipedReader", "PipedWriter",
    "SequenceInputStream", "RandomAccessFile",
    # java.util / java.util.zip / java.util.jar
    "Scanner", "Formatter",
    "ZipFile", "JarFile", "ZipInputStream", "ZipOutputStream",
    "JarInputStream", "JarOutputStream",
    "GZIPInputStream", "GZIPOutputStream",
    "InflaterInputStream", "DeflaterOutputStream",
    # java.net / java.nio
    "Socket", "ServerSocket", "DatagramSocket",
    "Channel", "FileChannel", "SocketChannel", "ServerSocketChannel",
    "DatagramChannel", "ReadableByteChannel", "WritableByteChannel",
    "ByteChannel", "SeekableByteChannel",
    "Selector", "WatchService", "FileSystem", "DirectoryStream",
})

# Java binary operator precedence, loosest first.
BINARY_PRECEDENCE: Dict[str, int] = {
    "||": 1,
    "&&": 2,
    "|": 3,
    "^": 4,
    "&": 5,
    "==": 6, "!=": 6,
    "<": 7, ">": 7, "<=": 7, ">=": 7, "instanceof": 7,
    "<<": 8, ">>": 8, ">>>": 8,
    "+": 9, "-": 9,
    "*": 10, "/": 10, "%": 10,
}

_ATOM_PRECEDENCE = 100


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — UNITS AND BODIES
# ═══════════════════════════════════════════════════════════════════════════

class BodyKind(Enum):
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    INITIALIZER = "initializer"


@dataclass
class JavaUnit:
    """One parsed compilation unit."""

    path: str
    source: str
    tree: Any
    lines: List[str] = field(default_factory=list)
    hierarchy: Optional["TypeHierarchy"] = None

    def line_text(self, line: int) -> str:
        """Return source line ``line`` (1-based) without its terminator."""
        if 1 <= line <= len(self.lines):
            return self.lines[line - 1]
        return ""


@dataclass(eq=False)
class BodyDecl:
    """A method, constructor or initializer body.

    Attributes
    ----------
    kind : BodyKind
    name : str
        Method name, constructor (class) name, or ``<init>`` for an
        initializer block.
    owner : str
        Simple name of the declaring type (``<anonymous>`` for anonymous
        classes, ``E.CONSTANT`` for an enum constant's class body).
    parameters : list of LocalVariable
    statements : list
        javalang statement nodes of the body.
    declaration : javalang node or None
    """

    kind: BodyKind
    name: str
    owner: str
    parameters: List["LocalVariable"]
    statements: List[Any]
    declaration: Any = None
    position: Optional[Position] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"


def parse_unit(source: str, path: str = "<string>") -> JavaUnit:
    """Parse Java source into a :class:`JavaUnit`.

    Raises
    ------
    JavaParseError
        On any javalang lexer or syntax error.
    """
    try:
        tree = parse_java(source)
    except (JavaSyntaxError, LexerError) as exc:
        raise JavaParseError.from_javalang(path, exc) from exc
    unit = JavaUnit(path=path, source=source, tree=tree,
                    lines=source.splitlines())
    unit.hierarchy = TypeHierarchy.from_tree(tree)
    return unit


def iter_bodies(unit: JavaUnit) -> Iterator[BodyDecl]:
    """Yield every analyzable body in declaration order.

    Covers methods with a body, constructors and initializer blocks of
    top-level, member, local and anonymous classes, of enums and of
    enum-constant class bodies.
    Abstract and interface methods without a body are skipped.
    """
    for _, node in unit.tree:
        if isinstance(node, (jt.ClassDeclaration, jt.InterfaceDeclaration)):
            yield from _bodies_of(node.name, node.body or [])
        elif isinstance(node, jt.EnumDeclaration):
            for constant in getattr(node.body, "constants", None) or []:
                if constant.body:
                    yield from _bodies_of(f"{node.name}.{constant.name}", constant.body)
            declarations = getattr(node.body, "declarations", None) or []
            yield from _bodies_of(node.name, declarations)
        elif isinstance(node, jt.ClassCreator) and node.body:
            yield from _bodies_of("<anonymous>", node.body)


def _bodies_of(owner: str, members: Sequence[Any]) -> Iterator[BodyDecl]:
    for member in members:
        if isinstance(member, jt.MethodDeclaration):
            if member.body is None:
                continue
            yield BodyDecl(
                kind=BodyKind.METHOD,
                name=member.name,
                owner=owner,
                parameters=[parameter_variable(p) for p in member.parameters or []],
                statements=list(member.body),
                declaration=member,
                position=member.position,
            )
        elif isinstance(member, jt.ConstructorDeclaration):
            yield BodyDecl(
                kind=BodyKind.CONSTRUCTOR,
                name=member.name,
                owner=owner,
                parameters=[parameter_variable(p) for p in member.parameters or []],
                statements=list(member.body or []),
                declaration=member,
                position=member.position,
            )
        elif isinstance(member, list):
            # javalang keeps initializer blocks as bare statement lists.
            yield BodyDecl(
                kind=BodyKind.INITIALIZER,
                name="<init>",
                owner=owner,
                parameters=[],
                statements=list(member),
                position=node_position(member),
            )


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — DECLARATIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class LocalVariable:
    """A parameter or local variable.

    Instances compare by identity: two declarations of ``w`` in sibling
    blocks are different variables.
    """

    name: str
    type_name: str
    annotations: Tuple[str, ...] = ()
    is_parameter: bool = False
    is_varargs: bool = False
    is_reference: bool = True
    position: Optional[Position] = None

    @property
    def simple_type_name(self) -> str:
        return simple_type_name(self.type_name)

    def __repr__(self) -> str:
        return f"LocalVariable({self.type_name} {self.name})"


def annotation_names(declaration: Any) -> Tuple[str, ...]:
    """Simple names of the annotations on a declaration."""
    names = []
    for annotation in getattr(declaration, "annotations", None) or []:
        name = getattr(annotation, "name", "") or ""
        names.append(name.rsplit(".", 1)[-1])
    return tuple(names)


def is_reference_type(type_node: Any) -> bool:
    """False only for a primitive type without array dimensions."""
    if type_node is None:
        return True
    if isinstance(type_node, jt.BasicType) and not _dimensions(type_node):
        return False
    return True


def parameter_variable(parameter: Any) -> LocalVariable:
    type_node = getattr(parameter, "type", None)
    varargs = bool(getattr(parameter, "varargs", False))
    return LocalVariable(
        name=parameter.name,
        type_name=type_to_string(type_node) + ("..." if varargs else ""),
        annotations=annotation_names(parameter),
        is_parameter=True,
        is_varargs=varargs,
        is_reference=varargs or is_reference_type(type_node),
        position=getattr(parameter, "position", None),
    )


def declared_variables(declaration: Any) -> List[LocalVariable]:
    """Variables introduced by a (local) variable declaration node."""
    type_node = getattr(declaration, "type", None)
    annotations = annotation_names(declaration)
    variables = []
    for declarator in getattr(declaration, "declarators", None) or []:
        reference = is_reference_type(type_node) or bool(
            getattr(declarator, "dimensions", None))
        variables.append(LocalVariable(
            name=declarator.name,
            type_name=type_to_string(type_node),
            annotations=annotations,
            is_reference=reference,
            position=node_position(declarator) or node_position(declaration),
        ))
    return variables


def resource_variable(resource: Any) -> LocalVariable:
    """Variable declared by a try-with-resources resource."""
    type_node = getattr(resource, "type", None)
    return LocalVariable(
        name=resource.name,
        type_name=type_to_string(type_node),
        annotations=annotation_names(resource),
        is_reference=True,
        position=node_position(resource),
    )


def catch_variable(clause: Any) -> LocalVariable:
    parameter = clause.parameter
    types = getattr(parameter, "types", None) or ["Throwable"]
    return LocalVariable(
        name=parameter.name,
        type_name=" | ".join(types),
        annotations=annotation_names(parameter),
        is_reference=True,
        position=node_position(clause),
    )


def is_nullable_declaration(
    variable: LocalVariable, nullable_annotations: Iterable[str]
) -> bool:
    """Is ``variable`` annotated as nullable?

    Variable-arity parameters are never treated as nullable: the annotation
    there describes the array elements.
    """
    if variable.is_varargs:
        return False
    wanted = set(nullable_annotations)
    return any(name in wanted for name in variable.annotations)


class TypeHierarchy:
    """Closeable-ness of simple type names.

    Built from the type declarations of one unit: a class is closeable when
    it extends or implements a closeable type, transitively.
    """

    def __init__(
        self,
        supertypes: Optional[Dict[str, List[str]]] = None,
        extra_closeable: Iterable[str] = (),
    ) -> None:
        self._supertypes: Dict[str, List[str]] = supertypes or {}
        self._closeable: Set[str] = set(KNOWN_CLOSEABLE_TYPES) | set(extra_closeable)
        self._cache: Dict[str, bool] = {}

    @classmethod
    def from_tree(cls, tree: Any) -> "TypeHierarchy":
        supertypes: Dict[str, List[str]] = {}
        for _, node in tree:
            if isinstance(node, jt.ClassDeclaration):
                parents = []
                if node.extends is not None:
                    parents.append(type_to_string(node.extends))
                parents.extend(type_to_string(t) for t in node.implements or [])
                supertypes[node.name] = [simple_type_name(p) for p in parents]
            elif isinstance(node, jt.InterfaceDeclaration):
                supertypes[node.name] = [
                    simple_type_name(type_to_string(t)) for t in node.extends or []
                ]
            elif isinstance(node, jt.EnumDeclaration):
                supertypes[node.name] = [
                    simple_type_name(type_to_string(t)) for t in node.implements or []
                ]
        return cls(supertypes)

    def with_extra_closeable(self, names: Iterable[str]) -> "TypeHierarchy":
        return TypeHierarchy(self._supertypes, set(self._closeable) | set(names))

    def is_closeable(self, type_name: str) -> bool:
        name = simple_type_name(type_name)
        if not name or name.endswith("]") or name in PRIMITIVE_TYPES:
            return False
        if name not in self._cache:
            self._cache[name] = self._search(name, set())
        return self._cache[name]

    def _search(self, name: str, seen: Set[str]) -> bool:
        if name in self._closeable:
            return True
        if name in seen:
            return False
        seen.add(name)
        return any(self._search(parent, seen) for parent in self._supertypes.get(name, ()))


def simple_type_name(type_name: str) -> str:
    """``java.util.List<String>`` → ``List``; arrays keep their brackets."""
    base = type_name.split("<", 1)[0].split("[", 1)[0].strip()
    suffix = ""
    if type_name.endswith("]"):
        suffix = "[]"
    return base.rsplit(".", 1)[-1] + suffix


def _dimensions(type_node: Any) -> List[Any]:
    return [d for d in getattr(type_node, "dimensions", None) or [] if d is not False]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — EXPRESSIONS
# ═══════════════════════════════════════════════════════════════════════════

def type_to_string(type_node: Any) -> str:
    """Render a javalang type node as Java source."""
    if type_node is None:
        return "var"
    if isinstance(type_node, str):
        return type_node
    name = getattr(type_node, "name", "") or ""
    arguments = getattr(type_node, "arguments", None)
    if arguments:
        rendered = []
        for argument in arguments:
            inner = getattr(argument, "type", None)
            pattern = getattr(argument, "pattern_type", None)
            if inner is None:
                rendered.append("?")
            elif pattern:
                rendered.append(f"? {pattern} {type_to_string(inner)}")
            else:
                rendered.append(type_to_string(inner))
        name += "<" + ", ".join(rendered) + ">"
    sub_type = getattr(type_node, "sub_type", None)
    if sub_type is not None:
        name += "." + type_to_string(sub_type)
    return name + "[]" * len(_dimensions(type_node))


def expr_to_string(expr: Any) -> str:
    """Render an expression back to (normalized) Java source.

    Parentheses are re-inserted from operator precedence, so
    ``(x + y) == (400 - z)`` renders as ``x + y == 400 - z``.
    """
    return _render(expr)[0]


def _render(expr: Any) -> Tuple[str, int]:
    """Return ``(text, precedence)`` for an expression."""
    if expr is None:
        return "", _ATOM_PRECEDENCE
    if isinstance(expr, str):
        return expr, _ATOM_PRECEDENCE
    if isinstance(expr, list):
        return ", ".join(expr_to_string(e) for e in expr), _ATOM_PRECEDENCE

    if isinstance(expr, jt.BinaryOperation):
        op = expr.operator
        prec = BINARY_PRECEDENCE.get(op, 0)
        left = _paren(expr.operandl, prec, right=False)
        if op == "instanceof":
            right = type_to_string(expr.operandr)
        else:
            right = _paren(expr.operandr, prec, right=True)
        return _wrap_unary(expr, f"{left} {op} {right}", prec)
    if isinstance(expr, jt.Assignment):
        text = f"{expr_to_string(expr.expressionl)} {expr.type} {expr_to_string(expr.value)}"
        return text, -1
    if isinstance(expr, jt.TernaryExpression):
        text = (f"{_paren(expr.condition, 1, right=False)} ? "
                f"{expr_to_string(expr.if_true)} : {expr_to_string(expr.if_false)}")
        return _wrap_unary(expr, text, 0)
    if isinstance(expr, jt.Cast):
        text = f"({type_to_string(expr.type)}) {_paren(expr.expression, _ATOM_PRECEDENCE - 1, right=False)}"
        return _wrap_unary(expr, text, _ATOM_PRECEDENCE - 1)
    if isinstance(expr, jt.LambdaExpression):
        params = ", ".join(_param_name(p) for p in expr.parameters or [])
        return f"({params}) -> {{...}}", -1
    if isinstance(expr, jt.MethodReference):
        target = expr_to_string(expr.expression)
        method = expr_to_string(expr.method)
        return f"{target}::{method}", _ATOM_PRECEDENCE

    return _render_primary(expr), _ATOM_PRECEDENCE


def _param_name(parameter: Any) -> str:
    return getattr(parameter, "name", None) or expr_to_string(parameter)


def _paren(expr: Any, parent_prec: int, right: bool) -> str:
    text, prec = _render(expr)
    if prec < parent_prec or (right and prec == parent_prec):
        return f"({text})"
    return text


def _wrap_unary(expr: Any, text: str, prec: int) -> Tuple[str, int]:
    prefix = "".join(getattr(expr, "prefix_operators", None) or [])
    postfix = "".join(getattr(expr, "postfix_operators", None) or [])
    if prefix or postfix:
        return f"{prefix}({text}){postfix}", _ATOM_PRECEDENCE
    return text, prec


def _render_primary(expr: Any) -> str:
    if isinstance(expr, jt.Literal):
        core = str(expr.value)
    elif isinstance(expr, jt.MethodInvocation):
        core = _qualified(expr, f"{expr.member}({_arguments(expr)})")
    elif isinstance(expr, jt.SuperMethodInvocation):
        core = f"super.{expr.member}({_arguments(expr)})"
    elif isinstance(expr, jt.SuperConstructorInvocation):
        core = f"super({_arguments(expr)})"
    elif isinstance(expr, jt.ExplicitConstructorInvocation):
        core = f"this({_arguments(expr)})"
    elif isinstance(expr, jt.MemberReference):
        core = _qualified(expr, expr.member)
    elif isinstance(expr, jt.SuperMemberReference):
        core = f"super.{expr.member}"
    elif isinstance(expr, jt.This):
        core = _qualified(expr, "this")
    elif isinstance(expr, jt.ClassCreator):
        core = f"new {type_to_string(expr.type)}({_arguments(expr)})"
        if expr.body:
            core += " {...}"
    elif isinstance(expr, jt.ArrayCreator):
        dims = "".join(f"[{expr_to_string(d)}]" for d in expr.dimensions or [])
        core = f"new {type_to_string(expr.type)}{dims}"
        if expr.initializer is not None:
            core += " " + expr_to_string(expr.initializer)
    elif isinstance(expr, jt.ArrayInitializer):
        core = "{" + ", ".join(expr_to_string(e) for e in expr.initializers or []) + "}"
    elif isinstance(expr, jt.VoidClassReference):
        core = "void.class"
    elif isinstance(expr, jt.ClassReference):
        core = f"{type_to_string(expr.type)}.class"
    elif isinstance(expr, jt.BinaryOperation):
        core = f"({expr_to_string(expr)})"
    else:
        core = type(expr).__name__
    prefix = "".join(getattr(expr, "prefix_operators", None) or [])
    postfix = "".join(getattr(expr, "postfix_operators", None) or [])
    return prefix + core + _selectors(expr) + postfix


def _qualified(expr: Any, core: str) -> str:
    qualifier = getattr(expr, "qualifier", None)
    if qualifier:
        return f"{qualifier}.{core}"
    return core


def _arguments(expr: Any) -> str:
    return ", ".join(expr_to_string(a) for a in getattr(expr, "arguments", None) or [])


def _selectors(expr: Any) -> str:
    parts = []
    for selector in getattr(expr, "selectors", None) or []:
        if isinstance(selector, jt.ArraySelector):
            parts.append(f"[{expr_to_string(selector.index)}]")
        else:
            parts.append("." + _render_primary(selector))
    return "".join(parts)


def negation_count(expr: Any) -> int:
    """Number of leading ``!`` operators applied to ``expr``."""
    return sum(1 for op in getattr(expr, "prefix_operators", None) or [] if op == "!")


def constant_truth(expr: Any) -> Optional[bool]:
    """``True``/``False`` for a (possibly negated) boolean literal, else ``None``."""
    if not isinstance(expr, jt.Literal) or expr.value not in ("true", "false"):
        return None
    if getattr(expr, "selectors", None):
        return None
    value = expr.value == "true"
    if negation_count(expr) % 2:
        value = not value
    return value


def is_null_literal(expr: Any) -> bool:
    return isinstance(expr, jt.Literal) and expr.value == "null"


def simple_name(expr: Any) -> Optional[str]:
    """The variable name if ``expr`` is a bare identifier, else ``None``."""
    if not isinstance(expr, jt.MemberReference):
        return None
    if expr.qualifier or getattr(expr, "selectors", None):
        return None
    if getattr(expr, "prefix_operators", None) or getattr(expr, "postfix_operators", None):
        return None
    return expr.member


def null_test(expr: Any) -> Optional[Tuple[str, bool]]:
    """Recognise a nullness test on a bare variable.

    Returns ``(name, non_null_when_true)``:

    * ``x != null`` / ``null != x``  → ``(x, True)``
    * ``x == null`` / ``null == x``  → ``(x, False)``
    * ``x instanceof T``             → ``(x, True)``

    A leading ``!`` on the whole test flips the polarity.  ``None`` when the
    expression is not such a test.
    """
    if not isinstance(expr, jt.BinaryOperation):
        return None
    result: Optional[Tuple[str, bool]] = None
    if expr.operator in ("==", "!="):
        name = None
        if is_null_literal(expr.operandr):
            name = simple_name(expr.operandl)
        elif is_null_literal(expr.operandl):
            name = simple_name(expr.operandr)
        if name is not None:
            result = (name, expr.operator == "!=")
    elif expr.operator == "instanceof":
        name = simple_name(expr.operandl)
        if name is not None:
            result = (name, True)
    if result is not None and negation_count(expr) % 2:
        result = (result[0], not result[1])
    return result


def is_statically_non_null(expr: Any) -> bool:
    """Expressions that can never evaluate to ``null``."""
    if isinstance(expr, (jt.ClassCreator, jt.ArrayCreator, jt.ArrayInitializer,
                         jt.LambdaExpression, jt.MethodReference,
                         jt.ClassReference)):
        return not getattr(expr, "selectors", None)
    if isinstance(expr, jt.This):
        return not getattr(expr, "selectors", None)
    if isinstance(expr, jt.Literal):
        return expr.value != "null" and not getattr(expr, "selectors", None)
    if isinstance(expr, jt.BinaryOperation) and expr.operator == "+":
        # String concatenation always yields a String.
        if _is_string_literal(expr.operandl) or _is_string_literal(expr.operandr):
            return True
        return isinstance(expr.operandl, jt.BinaryOperation) and is_statically_non_null(expr.operandl)
    return False


def _is_string_literal(expr: Any) -> bool:
    return isinstance(expr, jt.Literal) and str(expr.value).startswith('"')


def qualifier_root(qualifier: Optional[str]) -> Optional[str]:
    """First segment of a dotted qualifier (``a.b.c`` → ``a``)."""
    if not qualifier:
        return None
    return qualifier.split(".", 1)[0]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — POSITIONS
# ═══════════════════════════════════════════════════════════════════════════

def node_position(node: Any) -> Optional[Position]:
    """First known ``(line, column)`` in ``node``'s subtree (pre-order)."""
    if node is None:
        return None
    if isinstance(node, (list, tuple)):
        for child in node:
            position = node_position(child)
            if position is not None:
                return position
        return None
    if not isinstance(node, jt.Node):
        return None
    position = getattr(node, "position", None)
    if position is not None:
        return (position.line, position.column)
    for child in node.children:
        if isinstance(child, (jt.Node, list, tuple)):
            found = node_position(child)
            if found is not None:
                return found
    return None
