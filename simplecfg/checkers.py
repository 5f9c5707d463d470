"""
simplecfg/checkers.py
═════════════════════

Checker framework that runs dataflow analyses over the CFGs of one Java
unit and turns the violations they expose into :class:`Finding` objects.

Architecture
────────────

  ┌─────────────────────────────────────────────────────────┐
  │                   CheckerRunner                         │
  │  ┌────────────────────┐      ┌───────────────────────┐  │
  │  │AlreadyClosedChecker│      │NullableDereference-   │  │
  │  │                    │      │Checker                │  │
  │  └─────────┬──────────┘      └──────────┬────────────┘  │
  │            │                            │               │
  │  ┌─────────▼────────────────────────────▼────────────┐  │
  │  │              Evidence Collection                  │  │
  │  │     ctrlflow_graph (one CFG per body)             │  │
  │  │     dataflow_engine (forward, MapLattice)         │  │
  │  └──────────────────────────┬────────────────────────┘  │
  │                             │                           │
  │  ┌──────────────────────────▼────────────────────────┐  │
  │  │     findings.make_finding (sorted, deduplicated)  │  │
  │  └───────────────────────────────────────────────────┘  │
  └─────────────────────────────────────────────────────────┘

Each Checker follows a four-phase lifecycle:

  1. **configure()**        — read options from the AnalyzerConfig
  2. **collect_evidence()** — run the dataflow analysis on every CFG
  3. **diagnose()**         — inspect the fixed point at each site
  4. **report()**           — return Findings in source order
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
)

from javalang import tree as jt

from .ast_helper import (
    BodyDecl,
    JavaUnit,
    LocalVariable,
    TypeHierarchy,
    is_null_literal,
    is_nullable_declaration,
    is_statically_non_null,
    negation_count,
    node_position,
    null_test,
    simple_name,
)
from .config import DEFAULT_CONFIG, AnalyzerConfig
from .ctrlflow_graph import CFG, CFGEdge, EdgeKind, FlowNode, NodeKind, build_all_cfgs
from .dataflow_engine import (
    DataflowResult,
    FlatLattice,
    FrozenDict,
    MapLattice,
    WorklistStrategy,
    run_forward_analysis,
)
from .findings import (
    Finding,
    Fix,
    ViolationContext,
    is_single_statement_line,
    make_finding,
    null_guard_fix,
    sorted_findings,
)

logger = logging.getLogger(__name__)

State = Optional[FrozenDict]


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — ABSTRACT VALUES
# ═════════════════════════════════════════════════════════════════════════

class Nullness(Enum):
    NULL = "null"
    NOT_NULL = "not-null"
    MAYBE_NULL = "maybe-null"


class Closedness(Enum):
    OPEN = "open"
    CLOSED = "closed"
    MAYBE_CLOSED = "maybe-closed"


NULLNESS_LATTICE = FlatLattice({Nullness.NULL, Nullness.NOT_NULL},
                               top=Nullness.MAYBE_NULL)
CLOSEDNESS_LATTICE = FlatLattice({Closedness.OPEN, Closedness.CLOSED},
                                 top=Closedness.MAYBE_CLOSED)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CHECKER BASE, CONTEXT, REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class Checker(ABC):
    """
    Abstract base class for all checkers.

    Lifecycle
    ─────────
      1. ``configure(ctx)``        — receive context, read options
      2. ``collect_evidence(ctx)`` — run analyses over every CFG
      3. ``diagnose(ctx)``         — turn fixed points into findings
      4. ``report(ctx)``           — return sorted, deduplicated findings

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``subcategory``
      - Implement ``collect_evidence()`` and ``diagnose()``
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    subcategory: ClassVar[str] = ""

    def __init__(self) -> None:
        self._findings: List[Finding] = []
        self._results: List[Tuple[BodyDecl, CFG, DataflowResult]] = []

    @property
    def findings(self) -> List[Finding]:
        return list(self._findings)

    def configure(self, ctx: "CheckerContext") -> None:
        """Called before evidence collection.  Default does nothing."""
        pass

    @abstractmethod
    def collect_evidence(self, ctx: "CheckerContext") -> None:
        ...

    @abstractmethod
    def diagnose(self, ctx: "CheckerContext") -> None:
        ...

    def report(self, ctx: "CheckerContext") -> List[Finding]:
        return sorted_findings(self._findings)

    def _emit(
        self,
        ctx: "CheckerContext",
        position: Optional[Tuple[int, int]],
        message: str,
        fixes: Tuple[Fix, ...] = (),
    ) -> None:
        self._findings.append(make_finding(ViolationContext(
            path=ctx.unit.path,
            position=position,
            message=message,
            subcategory=self.subcategory,
            category=ctx.config.category,
            fixes=fixes,
        )))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


@dataclass
class CheckerContext:
    """
    Shared context passed to every checker during execution.

    Attributes
    ----------
    unit      : the parsed compilation unit
    cfgs      : one CFG per body, in declaration order
    config    : analyzer settings
    hierarchy : closeable-type oracle for this unit
    stats     : timing and counting statistics
    """
    unit: JavaUnit
    cfgs: "OrderedDict[BodyDecl, CFG]"
    config: AnalyzerConfig = DEFAULT_CONFIG
    hierarchy: TypeHierarchy = field(default_factory=TypeHierarchy)
    stats: Dict[str, Any] = field(default_factory=dict)


class CheckerRegistry:
    """
    Registry of available checkers.

    Usage
    -----
    >>> registry = CheckerRegistry()
    >>> registry.register(AlreadyClosedChecker)
    >>> checkers = registry.get_enabled()
    """

    def __init__(self) -> None:
        self._checkers: Dict[str, Type[Checker]] = {}

    def register(self, checker_cls: Type[Checker]) -> None:
        self._checkers[checker_cls.name] = checker_cls

    def get_enabled(self, disabled: FrozenSet[str] = frozenset()) -> List[Type[Checker]]:
        """Return enabled checker classes, skipping names in *disabled*."""
        return [cls for name, cls in self._checkers.items() if name not in disabled]

    def get_by_name(self, name: str) -> Optional[Type[Checker]]:
        return self._checkers.get(name)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — ALREADY-CLOSED CHECKER
# ═════════════════════════════════════════════════════════════════════════

class AlreadyClosedChecker(Checker):
    """
    Detects ``close()`` calls on a resource that may already be closed.

    Tracks locals and parameters whose declared type is closeable.  A
    definition opens the resource, an explicit or implicit (try-with-
    resources) ``close()`` closes it.  An explicit ``close()`` whose
    input state is CLOSED or MAYBE_CLOSED is reported once per call
    site, however many finally copies contain it.
    """

    name: ClassVar[str] = "already-closed"
    description: ClassVar[str] = "close() called on a possibly closed resource"
    subcategory: ClassVar[str] = "AlreadyClosed"

    lattice = MapLattice(CLOSEDNESS_LATTICE)

    def configure(self, ctx: CheckerContext) -> None:
        self._hierarchy = ctx.hierarchy.with_extra_closeable(ctx.config.extra_closeable_types)
        self._tracked: Dict[int, bool] = {}

    def _is_tracked(self, var: Optional[LocalVariable]) -> bool:
        if var is None:
            return False
        key = id(var)
        if key not in self._tracked:
            self._tracked[key] = self._hierarchy.is_closeable(var.type_name)
        return self._tracked[key]

    def _is_close_call(self, node: FlowNode) -> bool:
        call = node.ast
        return (
            node.kind is NodeKind.CALL
            and isinstance(call, jt.MethodInvocation)
            and call.member == "close"
            and not call.arguments
            and call.qualifier == node.var.name
            and not getattr(call, "selectors", None)
        )

    def transfer(self, node: FlowNode, state: FrozenDict) -> FrozenDict:
        var = node.var
        if not self._is_tracked(var):
            return state
        if node.kind is NodeKind.VARDEF:
            return state.set(var, Closedness.OPEN)
        if node.kind is NodeKind.RESOURCE_CLOSE or self._is_close_call(node):
            return state.set(var, Closedness.CLOSED)
        return state

    def collect_evidence(self, ctx: CheckerContext) -> None:
        for body, cfg in ctx.cfgs.items():
            if not any(self._is_tracked(n.var) for n in cfg.nodes) and not any(
                    self._is_tracked(p) for p in body.parameters):
                continue
            initial = FrozenDict({
                p: Closedness.OPEN for p in body.parameters if self._is_tracked(p)
            })
            result = run_forward_analysis(cfg, self.lattice, self.transfer,
                                          initial_value=initial)
            self._results.append((body, cfg, result))

    def diagnose(self, ctx: CheckerContext) -> None:
        seen: Set[int] = set()
        for _, cfg, result in self._results:
            for node in cfg.nodes:
                if not self._is_tracked(node.var) or not self._is_close_call(node):
                    continue
                state = result.fact_at(node)
                if state is None:
                    continue
                if state.get(node.var) not in (Closedness.CLOSED, Closedness.MAYBE_CLOSED):
                    continue
                if id(node.ast) in seen:
                    continue
                seen.add(id(node.ast))
                position = node_position(node.stmt) or node.position
                self._emit(
                    ctx, position,
                    f"close() may have already been called on {node.var.name} at this point",
                )


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — NULLABLE-DEREFERENCE CHECKER
# ═════════════════════════════════════════════════════════════════════════

class NullableDereferenceChecker(Checker):
    """
    Detects dereferences of ``@Nullable`` declarations that are not
    preceded by a null check.

    Parameters start MAYBE_NULL; locals take the nullness of their
    right-hand side.  Branch edges and short-circuit guards refine the
    state through the lattice meet; a contradictory refinement makes the
    program point unreachable.  After a dereference the variable is
    NOT_NULL.
    """

    name: ClassVar[str] = "nullable-dereference"
    description: ClassVar[str] = "dereference of a @Nullable declaration"
    subcategory: ClassVar[str] = "NullableDereference"

    lattice = MapLattice(NULLNESS_LATTICE)

    def configure(self, ctx: CheckerContext) -> None:
        self._annotations = ctx.config.nullable_annotations
        self._tracked: Dict[int, bool] = {}

    def _is_tracked(self, var: Optional[LocalVariable]) -> bool:
        if var is None:
            return False
        key = id(var)
        if key not in self._tracked:
            self._tracked[key] = is_nullable_declaration(var, self._annotations)
        return self._tracked[key]

    # ----- refinement -------------------------------------------------------

    def refine(self, state: State, condition: Any, truth: bool) -> State:
        """State after *condition* evaluated to *truth*."""
        if state is None:
            return None
        test = null_test(condition)
        if test is not None:
            name, non_null_when_true = test
            if condition.operator == "instanceof" and truth != non_null_when_true:
                return state
            value = Nullness.NOT_NULL if truth == non_null_when_true else Nullness.NULL
            for var in [v for v in state if v.name == name]:
                state = self.lattice.refine(state, var, value)
            return state
        if isinstance(condition, jt.BinaryOperation) and condition.operator in ("&&", "||"):
            if negation_count(condition) % 2:
                truth = not truth
            left, right = condition.operandl, condition.operandr
            conjunction = condition.operator == "&&"
            if truth == conjunction:
                # Both operands took the same value.
                return self.refine(self.refine(state, left, truth), right, truth)
            return self.lattice.join(
                self.refine(state, left, truth),
                self.refine(self.refine(state, left, not truth), right, truth),
            )
        return state

    def edge_transfer(self, edge: CFGEdge, state: State) -> State:
        src = edge.src
        if src.kind is NodeKind.BRANCH and src.condition is not None:
            if edge.kind is EdgeKind.BRANCH_TRUE:
                return self.refine(state, src.condition, True)
            if edge.kind is EdgeKind.BRANCH_FALSE:
                return self.refine(state, src.condition, False)
        return state

    def guarded(self, node: FlowNode, state: State) -> State:
        for condition, truth in node.guards:
            state = self.refine(state, condition, truth)
        return state

    # ----- evaluation -------------------------------------------------------

    def evaluate(self, expr: Any, state: FrozenDict) -> Nullness:
        """Nullness of *expr* in *state*."""
        if expr is None:
            return Nullness.MAYBE_NULL
        if isinstance(expr, jt.Assignment):
            # Compound assignment; only += on a reference is legal (String).
            return Nullness.NOT_NULL
        if isinstance(expr, jt.Cast):
            return self.evaluate(expr.expression, state)
        if is_null_literal(expr):
            return Nullness.NULL
        if is_statically_non_null(expr):
            return Nullness.NOT_NULL
        if isinstance(expr, jt.TernaryExpression):
            values = []
            for branch, truth in ((expr.if_true, True), (expr.if_false, False)):
                refined = self.refine(state, expr.condition, truth)
                if refined is not None:
                    values.append(self.evaluate(branch, refined))
            return NULLNESS_LATTICE.join_all(values) if values else Nullness.MAYBE_NULL
        name = simple_name(expr)
        if name is not None:
            for var, value in state.items():
                if var.name == name:
                    return value
        return Nullness.MAYBE_NULL

    def transfer(self, node: FlowNode, state: FrozenDict) -> FrozenDict:
        var = node.var
        if not self._is_tracked(var):
            return state
        if node.kind is NodeKind.VARDEF:
            return state.set(var, self.evaluate(node.value, state))
        if node.kind in (NodeKind.CALL, NodeKind.ACCESS) and not node.guards:
            return state.set(var, Nullness.NOT_NULL)
        return state

    # ----- lifecycle --------------------------------------------------------

    def collect_evidence(self, ctx: CheckerContext) -> None:
        for body, cfg in ctx.cfgs.items():
            initial = FrozenDict({
                p: Nullness.MAYBE_NULL for p in body.parameters if self._is_tracked(p)
            })
            if not initial and not any(self._is_tracked(n.var) for n in cfg.nodes):
                continue
            result = run_forward_analysis(
                cfg, self.lattice, self.transfer,
                initial_value=initial,
                edge_transfer=self.edge_transfer,
                strategy=WorklistStrategy.RPO,
            )
            self._results.append((body, cfg, result))

    def diagnose(self, ctx: CheckerContext) -> None:
        seen: Set[int] = set()
        for _, cfg, result in self._results:
            for node in cfg.nodes:
                if node.kind not in (NodeKind.CALL, NodeKind.ACCESS):
                    continue
                if not self._is_tracked(node.var):
                    continue
                state = self.guarded(node, result.fact_at(node))
                if state is None:
                    continue
                if state.get(node.var) not in (Nullness.NULL, Nullness.MAYBE_NULL):
                    continue
                if id(node.ast) in seen:
                    continue
                seen.add(id(node.ast))
                name = node.var.name
                self._emit(
                    ctx, node.position,
                    f"Dereferencing {name}, which was declared @Nullable.",
                    fixes=self._fixes(ctx, node),
                )

    def _fixes(self, ctx: CheckerContext, node: FlowNode) -> Tuple[Fix, ...]:
        stmt = node.stmt
        if not isinstance(stmt, jt.StatementExpression) or node.guards:
            return ()
        start = node_position(stmt)
        if start is None:
            return ()
        line_text = ctx.unit.line_text(start[0])
        if not is_single_statement_line(line_text, start[1]):
            return ()
        return (null_guard_fix(ctx.unit.path, start[0], line_text, node.var.name),)


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — RUNNER
# ═════════════════════════════════════════════════════════════════════════

_DEFAULT_REGISTRY = CheckerRegistry()
_DEFAULT_REGISTRY.register(AlreadyClosedChecker)
_DEFAULT_REGISTRY.register(NullableDereferenceChecker)


def default_registry() -> CheckerRegistry:
    return _DEFAULT_REGISTRY


class CheckerRunner:
    """
    Runs a suite of checkers against one Java unit.

    Usage
    -----
    >>> runner = CheckerRunner(config)
    >>> findings = runner.run(unit)

    Exceptions raised by a checker propagate; the batch front end turns
    them into a per-file failure.
    """

    def __init__(
        self,
        config: AnalyzerConfig = DEFAULT_CONFIG,
        registry: Optional[CheckerRegistry] = None,
    ) -> None:
        self.config = config
        self.registry = registry or _DEFAULT_REGISTRY

    def run(self, unit: JavaUnit, checkers: Optional[Sequence[str]] = None) -> List[Finding]:
        """Build CFGs for *unit* and run the selected (default: enabled) checkers."""
        ctx = CheckerContext(
            unit=unit,
            cfgs=build_all_cfgs(unit),
            config=self.config,
            hierarchy=unit.hierarchy or TypeHierarchy(),
        )
        if checkers is not None:
            checker_classes = [
                cls for cls in (self.registry.get_by_name(n) for n in checkers)
                if cls is not None
            ]
        else:
            checker_classes = self.registry.get_enabled(self.config.disabled_checkers)

        findings: List[Finding] = []
        for cls in checker_classes:
            checker = cls()
            t0 = time.monotonic()
            checker.configure(ctx)
            checker.collect_evidence(ctx)
            checker.diagnose(ctx)
            found = checker.report(ctx)
            elapsed_ms = (time.monotonic() - t0) * 1000.0
            ctx.stats[f"{cls.name}_elapsed_ms"] = elapsed_ms
            logger.debug("%s: %s found %d issue(s) in %.1f ms",
                         unit.path, cls.name, len(found), elapsed_ms)
            findings.extend(found)
        return sorted_findings(findings)
