"""
simplecfg.ctrlflow_graph
========================

Builds simplified intraprocedural Control Flow Graphs (CFGs) from javalang
method, constructor and initializer bodies.

Each body yields one CFG.  Unlike a basic-block graph, every node is a
single *event* that an analysis cares about: a method call, a field or
array access through a local, a definition of a reference local, a
branch, or a synthetic marker.  Straight-line code that does none of
these disappears from the graph.

Public API
----------
    NodeKind          - classification of a FlowNode
    EdgeKind          - classification of a CFGEdge
    IdentityTupleSet  - two-element set with identity membership
    FlowNode          - a single CFG vertex
    CFGEdge           - a directed edge between two FlowNodes
    CFG               - the control flow graph for one body
    build_cfg         - build a CFG from an ast_helper.BodyDecl
    build_all_cfgs    - build CFGs for every body of a JavaUnit
    cfg_summary       - multi-line textual dump
    generate_cfg_test - pytest source asserting a CFG's structure

Typical usage::

    from simplecfg.ast_helper import parse_unit
    from simplecfg.ctrlflow_graph import build_all_cfgs

    unit = parse_unit(open("Foo.java").read(), "Foo.java")
    for body, cfg in build_all_cfgs(unit).items():
        print(f"{body.qualified_name}: {len(cfg.nodes)} nodes")
        for node in cfg.nodes:
            print(f"  N{node.index}: {node.label}")

Implementation notes
--------------------
* Construction is continuation passing and runs *backwards*: every rule
  receives the already-built node that follows it and returns the node
  control enters it through.  A statement with no interesting events
  returns its continuation unchanged.
* ``finally`` blocks are duplicated once per (exit kind, destination):
  normal completion, exception, return, break and continue each get
  their own copy, so analyses see path-precise states.
* Exception flow is approximate: every call inside a ``try`` body may
  throw; calls outside any ``try`` are assumed not to.  ``throw`` always
  transfers to the innermost handler (or ``exit``).
* Nodes not reachable from ``entry`` are pruned once the graph is built;
  ``exit`` is always kept.
"""

from __future__ import annotations

import collections.abc
import enum
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, replace
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from javalang import tree as jt

from .ast_helper import (
    BodyDecl,
    JavaUnit,
    LocalVariable,
    Position,
    catch_variable,
    constant_truth,
    declared_variables,
    expr_to_string,
    iter_bodies,
    node_position,
    qualifier_root,
    resource_variable,
    simple_name,
    type_to_string,
)
from .errors import CfgInvariantError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node and edge kinds
# ---------------------------------------------------------------------------


class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    EXCEPTION = "exception"


class NodeKind(enum.Enum):
    """Classification of a CFG node."""

    ENTRY = "entry"
    EXIT = "exit"
    CALL = "call"
    ACCESS = "access"
    VARDEF = "vardef"
    BRANCH = "branch"
    MARKER = "marker"
    RESOURCE_CLOSE = "resource-close"


TRANSPARENT_MARKERS = frozenset({
    "then-end", "else-end", "break", "continue", "return", "pass",
})

_LOOP_STATEMENTS = (jt.WhileStatement, jt.DoStatement, jt.ForStatement)


# ---------------------------------------------------------------------------
# IdentityTupleSet
# ---------------------------------------------------------------------------

class IdentityTupleSet(collections.abc.Set):
    """An immutable set of exactly two slots compared by identity.

    ``IdentityTupleSet(a, a)`` has size 1.  Membership uses ``is``, so two
    equal-but-distinct objects are both members.  Used to tell whether a
    branch has two distinct targets.
    """

    __slots__ = ("first", "second")

    def __init__(self, first: Any, second: Any) -> None:
        self.first = first
        self.second = second

    def __contains__(self, item: object) -> bool:
        return item is self.first or item is self.second

    def __iter__(self) -> Iterator[Any]:
        yield self.first
        if self.second is not self.first:
            yield self.second

    def __len__(self) -> int:
        return 1 if self.first is self.second else 2

    def __repr__(self) -> str:
        return f"IdentityTupleSet({', '.join(repr(x) for x in self)})"


# ---------------------------------------------------------------------------
# FlowNode / CFGEdge
# ---------------------------------------------------------------------------

class FlowNode:
    """A single vertex of a :class:`CFG`.

    Attributes
    ----------
    index : int
        Position in ``CFG.nodes`` (breadth-first from ``entry``); ``-1``
        until the graph is finalized.
    kind : NodeKind
    label : str
    ast : javalang node or None
        The call, access, declarator, assignment or statement the node
        was derived from.
    stmt : javalang node or None
        The enclosing statement.
    position : (line, column) or None
    var : LocalVariable or None
        Receiver of a call or access, or the variable a VARDEF defines.
    value : javalang expression or None
        Right-hand side of a VARDEF (``None`` when unknown).
    guards : tuple of (expression, bool)
        Short-circuit conditions that must have evaluated to the given
        truth value for the node to execute.
    condition : javalang expression or None
        The condition of a branch node.
    out_edges, in_edges : list of CFGEdge
    """

    __slots__ = (
        "index", "kind", "label", "ast", "stmt", "position", "var", "value",
        "guards", "condition", "out_edges", "in_edges",
    )

    def __init__(
        self,
        kind: NodeKind,
        label: str,
        ast: Any = None,
        stmt: Any = None,
        position: Optional[Position] = None,
        var: Optional[LocalVariable] = None,
        value: Any = None,
        guards: Tuple[Tuple[Any, bool], ...] = (),
        condition: Any = None,
    ) -> None:
        self.index = -1
        self.kind = kind
        self.label = label
        self.ast = ast
        self.stmt = stmt
        self.position = position
        self.var = var
        self.value = value
        self.guards = guards
        self.condition = condition
        self.out_edges: List[CFGEdge] = []
        self.in_edges: List[CFGEdge] = []

    # ----- construction -----------------------------------------------------

    def link(self, target: "FlowNode", kind: EdgeKind = EdgeKind.FALL_THROUGH) -> "CFGEdge":
        """Add an edge to *target*; a second edge to the same node is merged."""
        for edge in self.out_edges:
            if edge.dst is target:
                if edge.kind is not kind:
                    edge.kind = EdgeKind.FALL_THROUGH
                return edge
        edge = CFGEdge(self, target, kind)
        self.out_edges.append(edge)
        return edge

    # ----- queries ----------------------------------------------------------

    @property
    def successors(self) -> List["FlowNode"]:
        return [e.dst for e in self.out_edges]

    @property
    def predecessors(self) -> List["FlowNode"]:
        return [e.src for e in self.in_edges]

    @property
    def is_transparent(self) -> bool:
        return self.kind is NodeKind.MARKER and self.label in TRANSPARENT_MARKERS

    @property
    def line(self) -> int:
        return self.position[0] if self.position else 0

    @property
    def column(self) -> int:
        return self.position[1] if self.position else 0

    def visible_successors(self) -> List["FlowNode"]:
        """Successors with transparent markers skipped, in edge order."""
        result: List[FlowNode] = []
        seen: Set[int] = set()
        stack = list(reversed(self.successors))
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            if node.is_transparent:
                stack.extend(reversed(node.successors))
            else:
                result.append(node)
        return result

    def __str__(self) -> str:
        return self.label

    def __repr__(self) -> str:
        return f"FlowNode(index={self.index}, kind={self.kind.value!r}, label={self.label!r})"


class CFGEdge:
    """A directed edge in the CFG.

    Attributes
    ----------
    src : FlowNode
    dst : FlowNode
    kind : EdgeKind
    """

    __slots__ = ("src", "dst", "kind")

    def __init__(
        self,
        src: FlowNode,
        dst: FlowNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"CFGEdge(N{self.src.index} -> N{self.dst.index}, "
            f"kind={self.kind.value!r})"
        )


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Control flow graph for a single body.

    Attributes
    ----------
    body : BodyDecl or None
    entry : FlowNode
    exit : FlowNode
    nodes : list[FlowNode]
        Every node reachable from ``entry``, plus ``exit``, indexed in
        breadth-first order.
    """

    def __init__(self, body: Optional[BodyDecl] = None) -> None:
        self.body = body
        self.entry = FlowNode(NodeKind.ENTRY, "entry")
        self.exit = FlowNode(NodeKind.EXIT, "exit")
        self.nodes: List[FlowNode] = []

    @property
    def name(self) -> str:
        return self.body.qualified_name if self.body is not None else "<cfg>"

    def _finalize(self) -> None:
        order: List[FlowNode] = []
        seen: Set[int] = {id(self.entry)}
        queue = deque([self.entry])
        while queue:
            node = queue.popleft()
            order.append(node)
            for succ in node.successors:
                if id(succ) not in seen:
                    seen.add(id(succ))
                    queue.append(succ)
        if id(self.exit) not in seen:
            order.append(self.exit)
        for index, node in enumerate(order):
            node.index = index
            node.in_edges = []
        for node in order:
            for edge in node.out_edges:
                edge.dst.in_edges.append(edge)
        self.nodes = order

    # ----- queries ----------------------------------------------------------

    @property
    def edges(self) -> List[CFGEdge]:
        return [e for n in self.nodes for e in n.out_edges]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[FlowNode]:
        return iter(self.nodes)

    def find(self, label: str) -> List[FlowNode]:
        """All nodes carrying *label*, in index order."""
        return [n for n in self.nodes if n.label == label]

    def reachable_from(self, start: FlowNode, reverse: bool = False) -> Set[FlowNode]:
        """Return the set of nodes reachable from *start* (DFS)."""
        visited: Set[FlowNode] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            worklist.extend(n.predecessors if reverse else n.successors)
        return visited

    def check(self) -> None:
        """Verify well-formedness; raise :class:`CfgInvariantError` if broken."""
        members = {id(n) for n in self.nodes}
        if not self.nodes or self.nodes[0] is not self.entry:
            raise CfgInvariantError(f"{self.name}: entry is not the first node")
        if id(self.exit) not in members:
            raise CfgInvariantError(f"{self.name}: exit missing from node arena")
        if self.entry.in_edges:
            raise CfgInvariantError(f"{self.name}: entry has predecessors")
        if self.exit.out_edges:
            raise CfgInvariantError(f"{self.name}: exit has successors")
        for index, node in enumerate(self.nodes):
            if node.index != index:
                raise CfgInvariantError(f"{self.name}: {node!r} stored at index {index}")
            if node is not self.exit and not node.out_edges:
                raise CfgInvariantError(f"{self.name}: {node!r} has no successors")
            if node.kind in (NodeKind.ENTRY, NodeKind.EXIT) and node not in (self.entry, self.exit):
                raise CfgInvariantError(f"{self.name}: stray {node.kind.value} node")
            kinds = [e.kind for e in node.out_edges]
            if (EdgeKind.BRANCH_TRUE in kinds) != (EdgeKind.BRANCH_FALSE in kinds):
                raise CfgInvariantError(f"{self.name}: {node!r} has a one-sided branch")
            for edge in node.out_edges:
                if edge.src is not node or id(edge.dst) not in members:
                    raise CfgInvariantError(f"{self.name}: dangling edge {edge!r}")
        reachable = self.reachable_from(self.entry)
        for node in self.nodes:
            if node is not self.exit and node not in reachable:
                raise CfgInvariantError(f"{self.name}: {node!r} unreachable from entry")

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None, reverse: bool = False) -> str:
        """Return a Graphviz DOT representation of this CFG.

        With *reverse* every edge is drawn from successor to predecessor.
        """
        lines = ["digraph CFG {"]
        lines.append(f'  label="{_dot_escape(title or self.name)}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for n in self.nodes:
            style = ""
            if n.kind is NodeKind.ENTRY:
                style = ', style=filled, fillcolor="#ccffcc"'
            elif n.kind is NodeKind.EXIT:
                style = ', style=filled, fillcolor="#ffcccc"'
            elif n.kind is NodeKind.MARKER:
                style = ", shape=ellipse, style=dashed"
            elif n.kind is NodeKind.BRANCH:
                style = ", shape=diamond"
            lines.append(f'  N{n.index} [label="{_dot_escape(n.label)}"{style}];')
        for e in self.edges:
            src, dst = (e.dst, e.src) if reverse else (e.src, e.dst)
            style = ""
            if e.kind is EdgeKind.BRANCH_TRUE:
                style = ' [label="T", color=green, fontcolor=green]'
            elif e.kind is EdgeKind.BRANCH_FALSE:
                style = ' [label="F", color=red, fontcolor=red]'
            elif e.kind is EdgeKind.EXCEPTION:
                style = " [style=dashed, color=blue]"
            lines.append(f"  N{src.index} -> N{dst.index}{style};")
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CFG(body={self.name!r}, nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


# ===========================================================================
# CFG BUILDER
# ===========================================================================

@dataclass(frozen=True, eq=False)
class _Scope:
    """One link of the jump-target chain (loops, switches, labels, finally)."""

    parent: Optional["_Scope"]
    kind: str
    label: Optional[str] = None
    break_target: Optional[FlowNode] = None
    continue_target: Optional[FlowNode] = None
    region: Optional["_FinallyRegion"] = None


class _FinallyRegion:
    """A ``finally`` block and the copies materialized for it so far."""

    def __init__(self, block: Sequence[Any], outer: "_Context") -> None:
        self.block = list(block)
        self.outer = outer
        self.copies: Dict[Tuple[str, int], FlowNode] = {}


class _Handler:
    """Where an exception raised in a protected region goes.

    The ``exception`` marker and its targets are created on first use, so
    regions that cannot throw leave nothing behind.
    """

    def __init__(
        self,
        builder: "_CFGBuilder",
        targets: Callable[[], List[FlowNode]],
        fallback: Optional["_Handler"] = None,
    ) -> None:
        self._builder = builder
        self._make_targets = targets
        self._fallback = fallback
        self._targets: Optional[List[FlowNode]] = None
        self._marker: Optional[FlowNode] = None

    def targets(self) -> List[FlowNode]:
        if self._targets is None:
            self._targets = self._make_targets()
        return self._targets

    def marker(self) -> FlowNode:
        if self._marker is None:
            targets = self.targets()
            if not targets and self._fallback is not None:
                self._marker = self._fallback.marker()
            else:
                marker = FlowNode(NodeKind.MARKER, "exception")
                for target in targets:
                    marker.link(target)
                self._marker = marker
        return self._marker


@dataclass(frozen=True, eq=False)
class _Context:
    """Everything a construction rule needs besides its continuation."""

    scope: Optional[_Scope]
    symbols: Tuple[Dict[str, LocalVariable], ...]
    throw_handler: _Handler
    call_handler: Optional[_Handler] = None
    guards: Tuple[Tuple[Any, bool], ...] = ()
    stmt: Any = None
    stmt_position: Optional[Position] = None

    def lookup(self, name: Optional[str]) -> Optional[LocalVariable]:
        if not name:
            return None
        for table in reversed(self.symbols):
            if name in table:
                return table[name]
        return None

    def declare(self, variables: Sequence[LocalVariable]) -> "_Context":
        if not variables:
            return self
        return replace(self, symbols=self.symbols + ({v.name: v for v in variables},))

    def push(self, kind: str, **fields: Any) -> "_Context":
        return replace(self, scope=_Scope(self.scope, kind, **fields))


class _CFGBuilder:
    """Internal builder that constructs a CFG for a single body.

    Statement and expression rules are looked up by javalang node class in
    ``_STATEMENT_RULES`` / ``_EXPRESSION_RULES``.  Shapes without a rule
    degrade to a transparent ``pass`` marker (statements) or to their
    selectors only (expressions).
    """

    def __init__(self, body: BodyDecl) -> None:
        self.body = body
        self.cfg = CFG(body)

    def build(self) -> CFG:
        cfg = self.cfg
        method_handler = _Handler(self, lambda: [cfg.exit])
        ctx = _Context(
            scope=None,
            symbols=({p.name: p for p in self.body.parameters},),
            throw_handler=method_handler,
        )
        first = self._block(self.body.statements, cfg.exit, ctx)
        cfg.entry.link(first)
        cfg._finalize()
        logger.debug("built CFG for %s: %d nodes, %d edges",
                     cfg.name, len(cfg.nodes), len(cfg.edges))
        return cfg

    # ----- helpers ----------------------------------------------------------

    def _node(
        self,
        kind: NodeKind,
        label: str,
        ast: Any,
        ctx: _Context,
        **fields: Any,
    ) -> FlowNode:
        position = getattr(ast, "position", None)
        if position is not None:
            position = (position.line, position.column)
        else:
            position = ctx.stmt_position
        return FlowNode(kind, label, ast=ast, stmt=ctx.stmt, position=position,
                        guards=ctx.guards, **fields)

    def _marker(self, label: str, ctx: _Context, nxt: FlowNode) -> FlowNode:
        node = FlowNode(NodeKind.MARKER, label, stmt=ctx.stmt,
                        position=ctx.stmt_position)
        node.link(nxt)
        return node

    def _branch(self, node: FlowNode, on_true: FlowNode, on_false: FlowNode) -> None:
        if len(IdentityTupleSet(on_true, on_false)) == 1:
            node.link(on_true)
        else:
            node.link(on_true, EdgeKind.BRANCH_TRUE)
            node.link(on_false, EdgeKind.BRANCH_FALSE)

    def _loop_branch(self, node: FlowNode, condition: Any,
                     body: FlowNode, nxt: FlowNode) -> None:
        truth = True if condition is None else constant_truth(condition)
        if truth is True:
            node.link(body)
        elif truth is False:
            node.link(nxt)
        else:
            self._branch(node, body, nxt)

    def _call(self, label: str, ast: Any, nxt: FlowNode, ctx: _Context,
              var: Optional[LocalVariable] = None) -> FlowNode:
        node = self._node(NodeKind.CALL, label, ast, ctx, var=var)
        node.link(nxt)
        if ctx.call_handler is not None:
            node.link(ctx.call_handler.marker(), EdgeKind.EXCEPTION)
        return node

    def _vardef(self, var: LocalVariable, label: str, value: Any, ast: Any,
                nxt: FlowNode, ctx: _Context) -> FlowNode:
        node = self._node(NodeKind.VARDEF, label, ast, ctx, var=var, value=value)
        node.link(nxt)
        return node

    @staticmethod
    def _reference(ctx: _Context, name: Optional[str]) -> Optional[LocalVariable]:
        var = ctx.lookup(name)
        if var is not None and var.is_reference:
            return var
        return None

    # ----- jumps and finally ------------------------------------------------

    def _jump(self, ctx: _Context, kind: str, label: Optional[str]) -> FlowNode:
        passed: List[_FinallyRegion] = []
        target: Optional[FlowNode] = None
        scope = ctx.scope
        while scope is not None:
            if scope.kind == "finally":
                passed.append(scope.region)
            elif kind == "break" and (
                (label is None and scope.kind in ("loop", "switch"))
                or (label is not None and scope.label == label)
            ):
                target = scope.break_target
                break
            elif kind == "continue" and scope.kind == "loop" and (
                label is None or scope.label == label
            ):
                target = scope.continue_target
                break
            scope = scope.parent
        if target is None:
            if kind != "return":
                logger.debug("%s: unresolved %s %s; jumping to exit",
                             self.cfg.name, kind, label or "")
            target = self.cfg.exit
        for region in reversed(passed):
            target = self._through_finally(region, kind, target)
        return target

    def _through_finally(self, region: _FinallyRegion, kind: str,
                         dest: FlowNode) -> FlowNode:
        key = (kind, id(dest))
        copy = region.copies.get(key)
        if copy is None:
            ctx = region.outer
            if kind == "exception":
                ctx = replace(ctx, call_handler=None)
            copy = self._block(region.block, dest, ctx)
            region.copies[key] = copy
        return copy

    # ----- statements -------------------------------------------------------

    def _block(self, statements: Sequence[Any], nxt: FlowNode, ctx: _Context) -> FlowNode:
        variables: List[LocalVariable] = []
        for stmt in statements or []:
            if isinstance(stmt, jt.LocalVariableDeclaration):
                variables.extend(declared_variables(stmt))
        return self._sequence(statements, nxt, ctx.declare(variables))

    def _sequence(self, statements: Sequence[Any], nxt: FlowNode, ctx: _Context) -> FlowNode:
        entry = nxt
        for stmt in reversed(list(statements or [])):
            entry = self._stmt(stmt, entry, ctx)
        return entry

    def _stmt(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        if stmt is None:
            return nxt
        ctx = replace(ctx, stmt=stmt, stmt_position=node_position(stmt), guards=())
        label = getattr(stmt, "label", None)
        if label and not isinstance(stmt, _LOOP_STATEMENTS):
            ctx = ctx.push("label", label=label, break_target=nxt)
        rule = self._STATEMENT_RULES.get(type(stmt))
        if rule is None:
            logger.debug("%s: no CFG rule for %s; treating as pass-through",
                         self.cfg.name, type(stmt).__name__)
            return self._marker("pass", ctx, nxt)
        return rule(self, stmt, nxt, ctx)

    def _empty(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return nxt

    def _block_statement(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._block(stmt.statements, nxt, ctx)

    def _expression_statement(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(stmt.expression, nxt, ctx)

    def _local_declaration(self, decl: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        entry = nxt
        for declarator in reversed(decl.declarators or []):
            value = declarator.initializer
            if value is None:
                continue
            after = entry
            var = self._reference(ctx, declarator.name)
            if var is not None:
                after = self._vardef(var, f"{var.name} = {expr_to_string(value)}",
                                     value, declarator, entry, ctx)
            entry = self._expr(value, after, ctx)
        return entry

    def _if(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        branch = self._node(NodeKind.BRANCH, f"if ({expr_to_string(stmt.condition)})",
                            stmt, ctx, condition=stmt.condition)
        on_true = self._stmt(stmt.then_statement, self._marker("then-end", ctx, nxt), ctx)
        on_false = nxt
        if stmt.else_statement is not None:
            on_false = self._stmt(stmt.else_statement,
                                  self._marker("else-end", ctx, nxt), ctx)
        self._branch(branch, on_true, on_false)
        return self._expr(stmt.condition, branch, ctx)

    def _while(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        branch = self._node(NodeKind.BRANCH, f"while ({expr_to_string(stmt.condition)})",
                            stmt, ctx, condition=stmt.condition)
        test = self._expr(stmt.condition, branch, ctx)
        body_ctx = ctx.push("loop", label=stmt.label, break_target=nxt,
                            continue_target=test)
        body = self._stmt(stmt.body, test, body_ctx)
        self._loop_branch(branch, stmt.condition, body, nxt)
        return test

    def _do(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        branch = self._node(NodeKind.BRANCH, f"do_while ({expr_to_string(stmt.condition)})",
                            stmt, ctx, condition=stmt.condition)
        test = self._expr(stmt.condition, branch, ctx)
        body_ctx = ctx.push("loop", label=stmt.label, break_target=nxt,
                            continue_target=test)
        body = self._stmt(stmt.body, test, body_ctx)
        self._loop_branch(branch, stmt.condition, body, nxt)
        return body

    def _for(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        control = stmt.control
        if isinstance(control, jt.EnhancedForControl):
            return self._foreach(stmt, nxt, ctx)
        init = control.init
        if isinstance(init, jt.VariableDeclaration):
            ctx = ctx.declare(declared_variables(init))
        condition = control.condition
        label = "for (;;)" if condition is None else f"for ({expr_to_string(condition)})"
        branch = self._node(NodeKind.BRANCH, label, stmt, ctx, condition=condition)
        test = self._expr(condition, branch, ctx)
        update = self._expr_list(control.update, test, ctx)
        body_ctx = ctx.push("loop", label=stmt.label, break_target=nxt,
                            continue_target=update)
        body = self._stmt(stmt.body, update, body_ctx)
        self._loop_branch(branch, condition, body, nxt)
        if isinstance(init, jt.VariableDeclaration):
            return self._local_declaration(init, test, ctx)
        return self._expr_list(init, test, ctx)

    def _foreach(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        control = stmt.control
        declaration = control.var
        variables = declared_variables(declaration)
        names = ", ".join(v.name for v in variables)
        label = (f"for ({type_to_string(declaration.type)} {names} : "
                 f"{expr_to_string(control.iterable)})")
        branch = self._node(NodeKind.BRANCH, label, stmt, ctx)
        head = self._expr(control.iterable, branch, ctx)
        loop_ctx = ctx.declare(variables)
        body_ctx = loop_ctx.push("loop", label=stmt.label, break_target=nxt,
                                 continue_target=head)
        body = self._stmt(stmt.body, head, body_ctx)
        for var in reversed(variables):
            if var.is_reference:
                body = self._vardef(var, f"{var.type_name} {var.name}", None,
                                    control, body, loop_ctx)
        self._branch(branch, body, nxt)
        return head

    def _switch(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        branch = self._node(NodeKind.BRANCH, f"switch ({expr_to_string(stmt.expression)})",
                            stmt, ctx)
        groups = list(stmt.cases or [])
        variables: List[LocalVariable] = []
        for group in groups:
            for inner in group.statements or []:
                if isinstance(inner, jt.LocalVariableDeclaration):
                    variables.extend(declared_variables(inner))
        switch_ctx = ctx.declare(variables).push("switch", break_target=nxt)
        entries: List[FlowNode] = []
        follow = nxt
        for group in reversed(groups):
            follow = self._sequence(group.statements, follow, switch_ctx)
            entries.append(follow)
        for entry in reversed(entries):
            branch.link(entry)
        if not any(not group.case or "default" in group.case for group in groups):
            branch.link(nxt)
        return self._expr(stmt.expression, branch, ctx)

    def _return(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        marker = self._marker("return", ctx, self._jump(ctx, "return", None))
        return self._expr(stmt.expression, marker, ctx)

    def _throw(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(stmt.expression, ctx.throw_handler.marker(), ctx)

    def _break(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._marker("break", ctx, self._jump(ctx, "break", stmt.goto))

    def _continue(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._marker("continue", ctx, self._jump(ctx, "continue", stmt.goto))

    def _synchronized(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(stmt.lock, self._block(stmt.block, nxt, ctx), ctx)

    def _assert(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(stmt.condition, nxt, ctx)

    def _try(self, stmt: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        outer = ctx
        region = None
        if stmt.finally_block is not None:
            region = _FinallyRegion(stmt.finally_block, outer)
        inner = outer.push("finally", region=region) if region is not None else outer
        resources = list(stmt.resources or [])
        res_vars = [resource_variable(r) for r in resources]

        normal_next = nxt
        if region is not None:
            normal_next = self._through_finally(region, "normal", nxt)

        def rethrow() -> FlowNode:
            return self._through_finally(region, "exception", outer.throw_handler.marker())

        catch_ctx = inner
        if region is not None:
            catch_ctx = replace(inner, throw_handler=_Handler(self, lambda: [rethrow()]))
            if outer.call_handler is not None:
                outer_calls = outer.call_handler
                # calls in a catch block still leave through this finally
                catch_ctx = replace(catch_ctx, call_handler=_Handler(
                    self,
                    lambda: [self._through_finally(region, "exception", outer_calls.marker())],
                ))
        catch_entries = []
        for clause in stmt.catches or []:
            clause_ctx = catch_ctx.declare([catch_variable(clause)])
            catch_entries.append(self._block(clause.block, normal_next, clause_ctx))

        def handler_targets() -> List[FlowNode]:
            targets = list(catch_entries)
            if region is not None and (not catch_entries or resources):
                targets.append(rethrow())
            return targets

        handler = _Handler(self, handler_targets, fallback=outer.throw_handler)

        body_ctx = inner.declare(res_vars)
        body_next = normal_next
        body_handler = handler
        if resources:
            exceptional = handler.marker()
            for var, resource in zip(res_vars, resources):
                body_next = self._implicit_close(var, resource, body_next, handler, body_ctx)
                exceptional = self._implicit_close(var, resource, exceptional, handler, body_ctx)
            body_handler = _Handler(self, lambda: [exceptional])
        body_ctx = replace(body_ctx, call_handler=body_handler, throw_handler=body_handler)
        body_entry = self._block(stmt.block, body_next, body_ctx)

        try_node = self._node(NodeKind.BRANCH, "try", stmt, outer)
        try_node.link(body_entry)
        for target in handler.targets():
            try_node.link(target, EdgeKind.EXCEPTION)

        entry = try_node
        resource_ctx = outer.declare(res_vars)
        for var, resource in reversed(list(zip(res_vars, resources))):
            if resource.value is None:
                continue
            define = self._vardef(var, f"{var.name} = {expr_to_string(resource.value)}",
                                  resource.value, resource, entry, resource_ctx)
            entry = self._expr(resource.value, define, resource_ctx)
        return entry

    def _implicit_close(self, var: LocalVariable, resource: Any, nxt: FlowNode,
                        handler: _Handler, ctx: _Context) -> FlowNode:
        node = self._node(NodeKind.RESOURCE_CLOSE, "close()", resource, ctx, var=var)
        node.link(nxt)
        node.link(handler.marker(), EdgeKind.EXCEPTION)
        return node

    # ----- expressions ------------------------------------------------------

    def _expr_list(self, exprs: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        if exprs is None:
            return nxt
        if not isinstance(exprs, (list, tuple)):
            exprs = [exprs]
        entry = nxt
        for expr in reversed(exprs):
            entry = self._expr(expr, entry, ctx)
        return entry

    def _expr(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        if expr is None or isinstance(expr, str):
            return nxt
        if isinstance(expr, (list, tuple)):
            return self._expr_list(expr, nxt, ctx)
        rule = self._EXPRESSION_RULES.get(type(expr))
        if rule is None:
            logger.debug("%s: no CFG rule for expression %s",
                         self.cfg.name, type(expr).__name__)
            return self._selectors(expr, nxt, ctx)
        return rule(self, expr, nxt, ctx)

    def _selectors(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        entry = nxt
        for selector in reversed(getattr(expr, "selectors", None) or []):
            if isinstance(selector, (jt.MethodInvocation, jt.SuperMethodInvocation)):
                entry = self._call(f"{selector.member}()", selector, entry, ctx)
                entry = self._expr_list(selector.arguments, entry, ctx)
            elif isinstance(selector, jt.ArraySelector):
                entry = self._expr(selector.index, entry, ctx)
        return entry

    def _primary(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._selectors(expr, nxt, ctx)

    def _method_invocation(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._selectors(expr, nxt, ctx)
        var = self._reference(ctx, qualifier_root(expr.qualifier))
        call = self._call(f"{expr.member}()", expr, after, ctx, var=var)
        return self._expr_list(expr.arguments, call, ctx)

    def _super_method_invocation(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._selectors(expr, nxt, ctx)
        call = self._call(f"{expr.member}()", expr, after, ctx)
        return self._expr_list(expr.arguments, call, ctx)

    def _this_call(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr_list(expr.arguments, self._call("this()", expr, nxt, ctx), ctx)

    def _super_call(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr_list(expr.arguments, self._call("super()", expr, nxt, ctx), ctx)

    def _member_reference(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._selectors(expr, nxt, ctx)
        selectors = getattr(expr, "selectors", None) or []
        if expr.qualifier:
            var = self._reference(ctx, qualifier_root(expr.qualifier))
            label = f"{expr.qualifier}.{expr.member}"
        elif selectors and isinstance(selectors[0], jt.ArraySelector):
            var = self._reference(ctx, expr.member)
            label = f"{expr.member}[{expr_to_string(selectors[0].index)}]"
        else:
            return after
        if var is None:
            return after
        return self._node_before(NodeKind.ACCESS, label, expr, after, ctx, var)

    def _node_before(self, kind: NodeKind, label: str, ast: Any, nxt: FlowNode,
                     ctx: _Context, var: Optional[LocalVariable]) -> FlowNode:
        node = self._node(kind, label, ast, ctx, var=var)
        node.link(nxt)
        return node

    def _class_creator(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr_list(expr.arguments, self._selectors(expr, nxt, ctx), ctx)

    def _array_creator(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._expr(expr.initializer, self._selectors(expr, nxt, ctx), ctx)
        return self._expr_list(expr.dimensions, after, ctx)

    def _array_initializer(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr_list(expr.initializers, nxt, ctx)

    def _binary(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._selectors(expr, nxt, ctx)
        if expr.operator == "instanceof":
            return self._expr(expr.operandl, after, ctx)
        right_ctx = ctx
        if expr.operator in ("&&", "||"):
            right_ctx = replace(ctx, guards=ctx.guards + ((expr.operandl, expr.operator == "&&"),))
        right = self._expr(expr.operandr, after, right_ctx)
        return self._expr(expr.operandl, right, ctx)

    def _ternary(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        after = self._selectors(expr, nxt, ctx)
        branch = self._node(NodeKind.BRANCH, f"if ({expr_to_string(expr.condition)})",
                            expr, ctx, condition=expr.condition)
        on_true = self._expr(expr.if_true, after, ctx)
        on_false = self._expr(expr.if_false, after, ctx)
        self._branch(branch, on_true, on_false)
        return self._expr(expr.condition, branch, ctx)

    def _assignment(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        name = simple_name(expr.expressionl)
        if name is not None and ctx.lookup(name) is not None:
            var = self._reference(ctx, name)
            after = nxt
            if var is not None:
                value = expr.value if expr.type == "=" else expr
                label = f"{var.name} {expr.type} {expr_to_string(expr.value)}"
                after = self._vardef(var, label, value, expr, nxt, ctx)
            return self._expr(expr.value, after, ctx)
        value_entry = self._expr(expr.value, nxt, ctx)
        return self._expr(expr.expressionl, value_entry, ctx)

    def _cast(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(expr.expression, self._selectors(expr, nxt, ctx), ctx)

    def _opaque(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return nxt

    def _nested_statement(self, expr: Any, nxt: FlowNode, ctx: _Context) -> FlowNode:
        return self._expr(expr.expression, nxt, ctx)

    _STATEMENT_RULES: Dict[type, Callable[..., FlowNode]] = {
        jt.Statement: _empty,
        jt.ClassDeclaration: _empty,
        jt.InterfaceDeclaration: _empty,
        jt.EnumDeclaration: _empty,
        jt.BlockStatement: _block_statement,
        jt.StatementExpression: _expression_statement,
        jt.LocalVariableDeclaration: _local_declaration,
        jt.IfStatement: _if,
        jt.WhileStatement: _while,
        jt.DoStatement: _do,
        jt.ForStatement: _for,
        jt.SwitchStatement: _switch,
        jt.ReturnStatement: _return,
        jt.ThrowStatement: _throw,
        jt.BreakStatement: _break,
        jt.ContinueStatement: _continue,
        jt.SynchronizedStatement: _synchronized,
        jt.AssertStatement: _assert,
        jt.TryStatement: _try,
    }

    _EXPRESSION_RULES: Dict[type, Callable[..., FlowNode]] = {
        jt.MethodInvocation: _method_invocation,
        jt.SuperMethodInvocation: _super_method_invocation,
        jt.ExplicitConstructorInvocation: _this_call,
        jt.SuperConstructorInvocation: _super_call,
        jt.MemberReference: _member_reference,
        jt.SuperMemberReference: _primary,
        jt.Literal: _primary,
        jt.This: _primary,
        jt.ClassReference: _primary,
        jt.VoidClassReference: _primary,
        jt.ClassCreator: _class_creator,
        jt.ArrayCreator: _array_creator,
        jt.ArrayInitializer: _array_initializer,
        jt.BinaryOperation: _binary,
        jt.TernaryExpression: _ternary,
        jt.Assignment: _assignment,
        jt.Cast: _cast,
        jt.LambdaExpression: _opaque,
        jt.MethodReference: _opaque,
        jt.StatementExpression: _nested_statement,
    }


# ===========================================================================
# PUBLIC API
# ===========================================================================

def build_cfg(body: BodyDecl) -> CFG:
    """Build a :class:`CFG` for one method, constructor or initializer."""
    return _CFGBuilder(body).build()


def build_all_cfgs(unit: JavaUnit) -> "OrderedDict[BodyDecl, CFG]":
    """Build CFGs for every body in *unit*, in declaration order."""
    result: "OrderedDict[BodyDecl, CFG]" = OrderedDict()
    for body in iter_bodies(unit):
        result[body] = build_cfg(body)
    return result


# ---------------------------------------------------------------------------
# Convenience: print a summary
# ---------------------------------------------------------------------------

def cfg_summary(cfg: CFG) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for node in cfg.nodes:
        succ_ids = ", ".join(
            f"N{e.dst.index}({e.kind.value})" for e in node.out_edges)
        pred_ids = ", ".join(f"N{e.src.index}" for e in node.in_edges)
        lines.append(
            f"  N{node.index} [{node.kind.value}] {node.label!r}  "
            f"succ=[{succ_ids}]  "
            f"pred=[{pred_ids}]"
        )
    return "\n".join(lines)


def generate_cfg_test(cfg: CFG, name: str, source_path: str) -> str:
    """Return pytest source that rebuilds *cfg* from *source_path* and
    asserts its node labels and visible successor structure.

    Transparent markers are not asserted on; they are only reachable
    through their neighbours.
    """
    qualified = cfg.name
    lines = [
        f"def test_{name}():",
        f"    with open({source_path!r}, encoding='utf-8') as fh:",
        f"        unit = parse_unit(fh.read(), {source_path!r})",
        f"    body = next(b for b in iter_bodies(unit) if b.qualified_name == {qualified!r})",
        "    cfg = build_cfg(body)",
        "    nodes = cfg.nodes",
        f"    assert [n.label for n in nodes] == {[n.label for n in cfg.nodes]!r}",
    ]
    for node in cfg.nodes:
        if node.is_transparent:
            continue
        targets = [s.index for s in node.visible_successors()]
        lines.append(
            f"    assert [s.index for s in nodes[{node.index}].visible_successors()]"
            f" == {targets!r}"
        )
    header = [
        "from simplecfg.ast_helper import iter_bodies, parse_unit",
        "from simplecfg.ctrlflow_graph import build_cfg",
        "",
        "",
    ]
    return "\n".join(header + lines) + "\n"
