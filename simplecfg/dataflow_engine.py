"""
simplecfg.dataflow_engine
=========================

A generic, lattice-based dataflow analysis framework operating over the
CFGs of :mod:`simplecfg.ctrlflow_graph`.

Theory
------
A dataflow analysis is defined by:

1.  A **lattice** ``(L, ⊑, ⊥, ⊤, ⊔)`` — a partially-ordered set with a
    least element ``⊥``, greatest element ``⊤``, and a join (least upper
    bound) operator ``⊔``.
2.  A **direction** — *forward* (information flows along control-flow edges)
    or *backward* (information flows against control-flow edges).
3.  A **transfer function** ``f : Node × L → L`` — transforms the dataflow
    fact at a CFG node.
4.  An **initial value** for the entry (forward) or exit (backward) node.

The engine iterates until a **fixpoint** is reached: no node's dataflow
fact changes upon re-application of its transfer function.  All lattices
used here have finite height, so no widening is needed.

``⊥`` doubles as "unreached": a node whose merged input is ``⊥`` is not
transferred and does not propagate.  For :class:`MapLattice` this is
``None``, which keeps "unreached" apart from "reached with nothing
tracked" (an empty :class:`FrozenDict`).

Worklist algorithms
-------------------
``FIFO``
    Simple BFS-like iteration.
``LIFO``
    Simple DFS-like iteration.
``RPO`` (Reverse Post-Order)
    Priority queue keyed by reverse post-order rank; processes
    predecessors before successors.

Public API
----------
    FrozenDict              - immutable, hashable mapping (analysis states)
    Lattice                 - abstract base for lattice definitions
    FlatLattice             - flat lattice over a finite set
    MapLattice              - lattice of maps (variable → value)
    Direction               - forward / backward enum
    WorklistStrategy        - iteration order enum
    DataflowResult          - container for analysis results
    IntraproceduralSolver   - single-body fixpoint engine
    solve                   - convenience wrapper
    run_forward_analysis    - convenience function
    run_backward_analysis   - convenience function
    check_monotonicity      - sample-based monotonicity check

Usage example
-------------
::

    from simplecfg.ctrlflow_graph import build_cfg
    from simplecfg.dataflow_engine import (
        FlatLattice, FrozenDict, MapLattice, run_forward_analysis,
    )

    lattice = MapLattice(FlatLattice({"open", "closed"}, top="maybe"))

    def transfer(node, state):
        if node.var is not None and node.label == "close()":
            return state.set(node.var, "closed")
        return state

    result = run_forward_analysis(cfg, lattice, transfer,
                                  initial_value=FrozenDict())
"""

from __future__ import annotations

import abc
import collections.abc
import enum
import heapq
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from .ctrlflow_graph import EdgeKind

logger = logging.getLogger(__name__)

# ===========================================================================
# TYPE VARIABLES
# ===========================================================================

L = TypeVar("L")          # Lattice value type
K = TypeVar("K")
V = TypeVar("V")


# ===========================================================================
# FROZEN DICT
# ===========================================================================

class FrozenDict(collections.abc.Mapping, Generic[K, V]):
    """An immutable mapping.  Updates return a new instance."""

    __slots__ = ("_data", "_hash")

    def __init__(self, data: Optional[Mapping[K, V]] = None, **kwargs: V) -> None:
        self._data: Dict[K, V] = dict(data or {}, **kwargs)
        self._hash: Optional[int] = None

    def __getitem__(self, key: K) -> V:
        return self._data[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def set(self, key: K, value: V) -> "FrozenDict[K, V]":
        if key in self._data and self._data[key] == value:
            return self
        data = dict(self._data)
        data[key] = value
        return FrozenDict(data)

    def update(self, other: Mapping[K, V]) -> "FrozenDict[K, V]":
        data = dict(self._data)
        data.update(other)
        return FrozenDict(data)

    def __repr__(self) -> str:
        return f"FrozenDict({self._data!r})"


# ===========================================================================
# DIRECTION
# ===========================================================================

class Direction(enum.Enum):
    """Direction of dataflow propagation."""
    FORWARD = "forward"
    BACKWARD = "backward"


# ===========================================================================
# WORKLIST STRATEGY
# ===========================================================================

class WorklistStrategy(enum.Enum):
    """Strategy for selecting the next worklist node."""
    FIFO = "fifo"
    LIFO = "lifo"
    RPO  = "rpo"        # Reverse post-order (best for forward)


# ===========================================================================
# LATTICE — ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice ``(L, ⊑, ⊥, ⊤, ⊔)`` must provide:

    - ``bottom()``  → the least element ⊥.
    - ``top()``     → the greatest element ⊤ (may raise if unbounded).
    - ``join(a, b)`` → the least upper bound ``a ⊔ b``.
    - ``leq(a, b)``  → ``True`` iff ``a ⊑ b``.

    Optionally ``meet(a, b)`` → the greatest lower bound ``a ⊓ b``, used
    for branch refinement.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def top(self) -> L:
        """Return the greatest element ⊤."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def meet(self, a: L, b: L) -> L:
        """Return the greatest lower bound ``a ⊓ b``.

        Default implementation raises ``NotImplementedError``.
        """
        raise NotImplementedError("meet() not implemented for this lattice")

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def is_bottom(self, a: L) -> bool:
        """Is ``a`` the bottom element?"""
        return self.eq(a, self.bottom())

    def is_top(self, a: L) -> bool:
        """Is ``a`` the top element?"""
        try:
            return self.eq(a, self.top())
        except NotImplementedError:
            return False

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result

    def copy_value(self, v: L) -> L:
        """Lattice values here are immutable; copying is the identity."""
        return v


# ===========================================================================
# BUILT-IN LATTICES
# ===========================================================================

# ---------- FlatLattice -----------------------------------------------------

class _Sentinel:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


FLAT_BOTTOM = _Sentinel("⊥")
FLAT_TOP = _Sentinel("⊤")


class FlatLattice(Lattice):
    """A flat lattice over a finite set of values.

    ::

            ⊤
          / | \\
         a  b  c  ...
          \\ | /
            ⊥

    Any two distinct non-bottom, non-top elements are incomparable.
    The join of two different concrete values is ⊤.

    Parameters
    ----------
    values : iterable
        The concrete (middle) elements.
    top : optional
        Value used for ⊤.  Analyses pass their "uncertain" element here
        (e.g. ``MAYBE_NULL``) so that ``join(NULL, NOT_NULL)`` yields it.
    bottom : optional
        Value used for ⊥.
    """

    def __init__(self, values: Iterable[Any] = (), top: Any = FLAT_TOP,
                 bottom: Any = FLAT_BOTTOM) -> None:
        self.values = frozenset(values)
        self._top = top
        self._bottom = bottom

    def bottom(self):
        return self._bottom

    def top(self):
        return self._top

    def elements(self) -> List[Any]:
        """Every element, bottom first and top last."""
        middle = sorted(self.values, key=repr)
        return [self._bottom] + middle + [self._top]

    def join(self, a, b):
        if a == self._bottom:
            return b
        if b == self._bottom:
            return a
        if a == self._top or b == self._top:
            return self._top
        if a == b:
            return a
        return self._top

    def leq(self, a, b) -> bool:
        if a == self._bottom:
            return True
        if b == self._top:
            return True
        return a == b

    def meet(self, a, b):
        if a == self._top:
            return b
        if b == self._top:
            return a
        if a == self._bottom or b == self._bottom:
            return self._bottom
        if a == b:
            return a
        return self._bottom

    def eq(self, a, b) -> bool:
        return a == b


# ---------- MapLattice ------------------------------------------------------

class MapLattice(Lattice[Optional[FrozenDict]]):
    """Lattice of maps from keys to values in a sub-lattice.

    ``MapLattice(value_lattice)`` represents ``Key → ValueLattice`` plus a
    separate ⊥ (``None``) for unreached program points.  The join is
    pointwise; missing keys are implicitly the value lattice's ⊥ and are
    never stored.

    Parameters
    ----------
    value_lattice : Lattice
        The lattice for individual values.
    """

    def __init__(self, value_lattice: Lattice) -> None:
        self.value_lattice = value_lattice

    def bottom(self) -> Optional[FrozenDict]:
        return None

    def top(self) -> FrozenDict:
        raise NotImplementedError(
            "MapLattice.top() is not representable (open key domain)"
        )

    def is_bottom(self, a: Optional[FrozenDict]) -> bool:
        return a is None

    def eq(self, a: Optional[FrozenDict], b: Optional[FrozenDict]) -> bool:
        return a == b

    def join(self, a: Optional[FrozenDict], b: Optional[FrozenDict]) -> Optional[FrozenDict]:
        if a is None:
            return b
        if b is None:
            return a
        vl = self.value_lattice
        result = dict(a)
        for k, v in b.items():
            if k in result:
                result[k] = vl.join(result[k], v)
            else:
                result[k] = v
        return FrozenDict(result)

    def leq(self, a: Optional[FrozenDict], b: Optional[FrozenDict]) -> bool:
        if a is None:
            return True
        if b is None:
            return False
        vl = self.value_lattice
        for k, va in a.items():
            vb = b.get(k, vl.bottom())
            if not vl.leq(va, vb):
                return False
        return True

    def meet(self, a: Optional[FrozenDict], b: Optional[FrozenDict]) -> Optional[FrozenDict]:
        if a is None or b is None:
            return None
        vl = self.value_lattice
        result = {}
        for k, va in a.items():
            if k not in b:
                continue
            value = vl.meet(va, b[k])
            if vl.is_bottom(value):
                return None
            result[k] = value
        return FrozenDict(result)

    def refine(self, state: Optional[FrozenDict], key: Any, value: Any) -> Optional[FrozenDict]:
        """Meet the entry for *key* with *value*, leaving other keys alone.

        Returns ``None`` (unreached) when the refinement is contradictory.
        Keys absent from *state* are left absent.
        """
        if state is None or key not in state:
            return state
        vl = self.value_lattice
        refined = vl.meet(state[key], value)
        if vl.is_bottom(refined):
            return None
        return state.set(key, refined)


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

@dataclass
class DataflowResult(Generic[L]):
    """Container for dataflow analysis results.

    Attributes
    ----------
    facts_in : dict
        Map from CFG node → incoming (pre-node) dataflow fact.
    facts_out : dict
        Map from CFG node → outgoing (post-node) dataflow fact.
    iterations : int
        Number of worklist iterations performed.
    converged : bool
        Whether the analysis reached a fixpoint (vs. hitting the limit).
    elapsed_seconds : float
        Wall-clock time.
    direction : Direction
        Analysis direction.
    """
    facts_in: Dict[Any, L] = field(default_factory=dict)
    facts_out: Dict[Any, L] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = False
    elapsed_seconds: float = 0.0
    direction: Direction = Direction.FORWARD

    def fact_at(self, node, *, before: bool = True) -> L:
        """Return the fact at a node.

        Parameters
        ----------
        node : FlowNode
            The CFG node.
        before : bool
            If ``True``, return the incoming fact (before the node's
            transfer).  If ``False``, return the outgoing fact.
        """
        if before:
            return self.facts_in.get(node)
        return self.facts_out.get(node)


# ===========================================================================
# INTRAPROCEDURAL SOLVER
# ===========================================================================

class IntraproceduralSolver(Generic[L]):
    """Fixpoint engine for intraprocedural dataflow analysis.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph (from :mod:`simplecfg.ctrlflow_graph`).
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(node, L) → L
        The transfer function.  Never called with ⊥.
    direction : Direction
        Forward or backward.
    strategy : WorklistStrategy
        Worklist iteration order.
    edge_transfer : callable(edge, L) → L, optional
        Edge-sensitive refinement (e.g., branch conditions).
    initial_value : L, optional
        Initial fact for the entry/exit node.  Defaults to ``lattice.bottom()``.
    max_iterations : int
        Safety bound on iterations.
    seed : DataflowResult, optional
        Facts to start from instead of ⊥, typically an earlier fixpoint of
        the same analysis.  Seeded facts must lie below the fixpoint.

    Notes
    -----
    In the forward direction, facts flowing along an ``EXCEPTION`` edge
    are the source node's *input* fact: the raising node may not have
    completed.
    """

    def __init__(
        self,
        cfg,
        lattice: Lattice[L],
        transfer: Callable,
        direction: Direction = Direction.FORWARD,
        strategy: WorklistStrategy = WorklistStrategy.RPO,
        edge_transfer: Optional[Callable] = None,
        initial_value: Optional[L] = None,
        max_iterations: int = 1_000_000,
        seed: Optional["DataflowResult[L]"] = None,
    ) -> None:
        self.cfg = cfg
        self.lattice = lattice
        self.transfer = transfer
        self.direction = direction
        self.strategy = strategy
        self.edge_transfer = edge_transfer
        self.initial_value = (
            initial_value if initial_value is not None
            else lattice.bottom()
        )
        self.max_iterations = max_iterations
        self.seed = seed

        self._nodes: List = list(cfg.nodes)
        self._start = cfg.entry if direction == Direction.FORWARD else cfg.exit

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to fixpoint.

        Returns
        -------
        DataflowResult[L]
        """
        t0 = time.monotonic()
        lat = self.lattice
        bot = lat.bottom()
        facts_in: Dict[Any, L] = {node: bot for node in self._nodes}
        facts_out: Dict[Any, L] = {node: bot for node in self._nodes}
        if self.seed is not None:
            for node in self._nodes:
                facts_in[node] = self.seed.facts_in.get(node, bot)
                facts_out[node] = self.seed.facts_out.get(node, bot)
        visited: Set[int] = set()

        worklist = _Worklist(self.strategy, self._priorities())
        worklist.push(self._start)
        iterations = 0

        while worklist and iterations < self.max_iterations:
            node = worklist.pop()
            iterations += 1

            merged = self._merge_incoming(node, facts_in, facts_out)
            if node is self._start:
                merged = lat.join(merged, lat.copy_value(self.initial_value))

            first_visit = id(node) not in visited
            in_changed = not lat.eq(merged, facts_in[node])
            facts_in[node] = merged
            if lat.is_bottom(merged):
                continue
            visited.add(id(node))

            new_out = self.transfer(node, merged)
            out_changed = not lat.eq(new_out, facts_out[node])
            facts_out[node] = new_out

            if first_visit or in_changed or out_changed:
                for succ in self._successors(node):
                    worklist.push(succ)

        converged = not worklist
        elapsed = time.monotonic() - t0
        if not converged:
            logger.warning("dataflow did not converge on %s after %d iterations",
                           getattr(self.cfg, "name", self.cfg), iterations)
        logger.debug("dataflow on %s: %d iterations, %.3fs",
                     getattr(self.cfg, "name", self.cfg), iterations, elapsed)

        return DataflowResult(
            facts_in=facts_in,
            facts_out=facts_out,
            iterations=iterations,
            converged=converged,
            elapsed_seconds=elapsed,
            direction=self.direction,
        )

    # ----- Internal helpers -------------------------------------------------

    def _successors(self, node) -> List:
        if self.direction == Direction.FORWARD:
            return [e.dst for e in node.out_edges]
        return [e.src for e in node.in_edges]

    def _merge_incoming(self, node, facts_in: Dict, facts_out: Dict) -> L:
        """Merge facts from predecessors, applying edge transfer."""
        lat = self.lattice
        result = lat.bottom()
        if self.direction == Direction.FORWARD:
            incoming = [(e, e.src) for e in node.in_edges]
        else:
            incoming = [(e, e.dst) for e in node.out_edges]
        for edge, pred in incoming:
            if self.direction == Direction.FORWARD and edge.kind is EdgeKind.EXCEPTION:
                fact = facts_in.get(pred, lat.bottom())
            else:
                fact = facts_out.get(pred, lat.bottom())
            if lat.is_bottom(fact):
                continue
            if self.edge_transfer is not None:
                fact = self.edge_transfer(edge, fact)
            result = lat.join(result, fact)
        return result

    def _priorities(self) -> Dict[int, int]:
        """Reverse post-order rank of every node, from the start node."""
        order: List = []
        visited: Set[int] = set()
        stack: List[Tuple[Any, Iterator]] = []

        def enter(node) -> None:
            visited.add(id(node))
            stack.append((node, iter(self._successors(node))))

        enter(self._start)
        while stack:
            node, successors = stack[-1]
            for succ in successors:
                if id(succ) not in visited:
                    enter(succ)
                    break
            else:
                stack.pop()
                order.append(node)
        order.reverse()
        ranks = {id(node): rank for rank, node in enumerate(order)}
        for node in self._nodes:
            ranks.setdefault(id(node), len(ranks))
        return ranks


class _Worklist:
    """Deque- or heap-backed worklist that holds each node at most once."""

    def __init__(self, strategy: WorklistStrategy, ranks: Dict[int, int]) -> None:
        self.strategy = strategy
        self._ranks = ranks
        self._queue: deque = deque()
        self._heap: List[Tuple[int, int, Any]] = []
        self._members: Set[int] = set()
        self._counter = itertools.count()

    def __bool__(self) -> bool:
        return bool(self._members)

    def push(self, node) -> None:
        if id(node) in self._members:
            return
        self._members.add(id(node))
        if self.strategy == WorklistStrategy.RPO:
            heapq.heappush(self._heap, (self._ranks.get(id(node), 0), next(self._counter), node))
        else:
            self._queue.append(node)

    def pop(self):
        if self.strategy == WorklistStrategy.RPO:
            node = heapq.heappop(self._heap)[2]
        elif self.strategy == WorklistStrategy.LIFO:
            node = self._queue.pop()
        else:
            node = self._queue.popleft()
        self._members.discard(id(node))
        return node


# ===========================================================================
# PUBLIC API
# ===========================================================================

def solve(
    cfg,
    lattice: Lattice[L],
    transfer: Callable,
    direction: Direction = Direction.FORWARD,
    **options: Any,
) -> DataflowResult[L]:
    """Run :class:`IntraproceduralSolver` with the given options."""
    return IntraproceduralSolver(cfg, lattice, transfer, direction=direction,
                                 **options).solve()


def run_forward_analysis(
    cfg,
    lattice: Lattice[L],
    transfer: Callable,
    *,
    initial_value: Optional[L] = None,
    edge_transfer: Optional[Callable] = None,
    strategy: WorklistStrategy = WorklistStrategy.RPO,
    max_iterations: int = 1_000_000,
) -> DataflowResult[L]:
    """Run a forward dataflow analysis on a single CFG.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph.
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(node, L) → L
        The transfer function.
    initial_value : L, optional
        Initial fact for the entry node.
    edge_transfer : callable(edge, L) → L, optional
        Edge-sensitive refinement.
    strategy : WorklistStrategy
        Worklist order.
    max_iterations : int
        Safety bound.

    Returns
    -------
    DataflowResult[L]
    """
    solver = IntraproceduralSolver(
        cfg=cfg,
        lattice=lattice,
        transfer=transfer,
        direction=Direction.FORWARD,
        strategy=strategy,
        edge_transfer=edge_transfer,
        initial_value=initial_value,
        max_iterations=max_iterations,
    )
    return solver.solve()


def run_backward_analysis(
    cfg,
    lattice: Lattice[L],
    transfer: Callable,
    *,
    initial_value: Optional[L] = None,
    edge_transfer: Optional[Callable] = None,
    strategy: WorklistStrategy = WorklistStrategy.RPO,
    max_iterations: int = 1_000_000,
) -> DataflowResult[L]:
    """Run a backward dataflow analysis on a single CFG.

    The initial value seeds the exit node; facts flow against the edges.
    """
    solver = IntraproceduralSolver(
        cfg=cfg,
        lattice=lattice,
        transfer=transfer,
        direction=Direction.BACKWARD,
        strategy=strategy,
        edge_transfer=edge_transfer,
        initial_value=initial_value,
        max_iterations=max_iterations,
    )
    return solver.solve()


def check_monotonicity(
    lattice: Lattice[L],
    transfer: Callable,
    nodes: Iterable[Any],
    samples: Sequence[L],
) -> List[Tuple[Any, L, L]]:
    """Return ``(node, a, b)`` triples where ``a ⊑ b`` but
    ``transfer(node, a) ⋢ transfer(node, b)``.

    ⊥ samples are skipped, matching the solver, which never transfers ⊥.
    An empty list means no violation was found among the samples.
    """
    values = [s for s in samples if not lattice.is_bottom(s)]
    violations: List[Tuple[Any, L, L]] = []
    for node in nodes:
        for a in values:
            for b in values:
                if lattice.leq(a, b) and not lattice.leq(transfer(node, a), transfer(node, b)):
                    violations.append((node, a, b))
    return violations
