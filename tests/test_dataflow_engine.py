# tests/test_dataflow_engine.py
"""
Tests for the lattices and the worklist solver.

Most solver tests run a "labels seen" analysis: every node adds its own
label to a map, so the fact reaching a node names every node on some
path to it.
"""

import itertools

import pytest

from simplecfg.checkers import CLOSEDNESS_LATTICE, NULLNESS_LATTICE, Closedness, Nullness
from simplecfg.ctrlflow_graph import EdgeKind
from simplecfg.dataflow_engine import (
    FLAT_BOTTOM,
    Direction,
    FlatLattice,
    FrozenDict,
    MapLattice,
    WorklistStrategy,
    check_monotonicity,
    run_backward_analysis,
    run_forward_analysis,
    solve,
)

SEEN = "seen"


def seen_lattice():
    return MapLattice(FlatLattice({SEEN}))


def mark_seen(node, state):
    return state.set(node.label, SEEN)


IF_ELSE = """
    if (c) {
      a();
    } else {
      b();
    }
    d();
"""


# ═══════════════════════════════════════════════════════════════════════════
#  FrozenDict
# ═══════════════════════════════════════════════════════════════════════════

class TestFrozenDict:

    def test_set_returns_new_mapping(self):
        empty = FrozenDict()
        one = empty.set("x", 1)
        assert dict(one) == {"x": 1}
        assert len(empty) == 0

    def test_set_to_same_value_returns_self(self):
        d = FrozenDict(x=1)
        assert d.set("x", 1) is d

    def test_equal_mappings_hash_equal(self):
        assert FrozenDict({"x": 1, "y": 2}) == FrozenDict(y=2, x=1)
        assert hash(FrozenDict({"x": 1, "y": 2})) == hash(FrozenDict(y=2, x=1))

    def test_update(self):
        d = FrozenDict(x=1).update({"x": 2, "y": 3})
        assert dict(d) == {"x": 2, "y": 3}


# ═══════════════════════════════════════════════════════════════════════════
#  FlatLattice
# ═══════════════════════════════════════════════════════════════════════════

class TestFlatLattice:

    @pytest.fixture
    def lattice(self):
        return FlatLattice({"a", "b"}, top="maybe")

    def test_elements_order(self, lattice):
        assert lattice.elements() == [FLAT_BOTTOM, "a", "b", "maybe"]

    def test_join_of_distinct_values_is_top(self, lattice):
        assert lattice.join("a", "b") == "maybe"
        assert lattice.join("a", "a") == "a"
        assert lattice.join(FLAT_BOTTOM, "b") == "b"

    def test_meet_of_distinct_values_is_bottom(self, lattice):
        assert lattice.meet("a", "b") is FLAT_BOTTOM
        assert lattice.meet("maybe", "b") == "b"

    def test_join_is_least_upper_bound(self, lattice):
        elements = lattice.elements()
        for a, b in itertools.product(elements, repeat=2):
            j = lattice.join(a, b)
            assert j == lattice.join(b, a)
            assert lattice.leq(a, j) and lattice.leq(b, j)
            for c in elements:
                if lattice.leq(a, c) and lattice.leq(b, c):
                    assert lattice.leq(j, c)

    def test_meet_is_greatest_lower_bound(self, lattice):
        elements = lattice.elements()
        for a, b in itertools.product(elements, repeat=2):
            m = lattice.meet(a, b)
            assert m == lattice.meet(b, a)
            assert lattice.leq(m, a) and lattice.leq(m, b)

    @pytest.mark.parametrize("checker_lattice", [NULLNESS_LATTICE, CLOSEDNESS_LATTICE])
    def test_checker_lattices_join_laws(self, checker_lattice):
        elements = checker_lattice.elements()
        for a, b in itertools.product(elements, repeat=2):
            assert checker_lattice.join(a, b) == checker_lattice.join(b, a)
            for c in elements:
                assert checker_lattice.join(checker_lattice.join(a, b), c) == \
                    checker_lattice.join(a, checker_lattice.join(b, c))
        for a in elements:
            assert checker_lattice.join(a, a) == a

    def test_top_and_bottom(self, lattice):
        assert lattice.is_top("maybe")
        assert lattice.is_bottom(FLAT_BOTTOM)
        assert not lattice.is_bottom("a")


# ═══════════════════════════════════════════════════════════════════════════
#  MapLattice
# ═══════════════════════════════════════════════════════════════════════════

class TestMapLattice:

    @pytest.fixture
    def lattice(self):
        return MapLattice(FlatLattice({"a", "b"}, top="maybe"))

    def test_none_is_bottom(self, lattice):
        assert lattice.bottom() is None
        assert lattice.is_bottom(None)
        assert not lattice.is_bottom(FrozenDict())

    def test_join_is_pointwise(self, lattice):
        joined = lattice.join(FrozenDict(x="a", y="a"), FrozenDict(x="b", z="b"))
        assert dict(joined) == {"x": "maybe", "y": "a", "z": "b"}

    def test_join_with_bottom(self, lattice):
        d = FrozenDict(x="a")
        assert lattice.join(None, d) is d
        assert lattice.join(d, None) is d

    def test_leq(self, lattice):
        assert lattice.leq(None, FrozenDict())
        assert lattice.leq(FrozenDict(x="a"), FrozenDict(x="maybe"))
        assert not lattice.leq(FrozenDict(x="a"), FrozenDict(x="b"))
        assert not lattice.leq(FrozenDict(x="a"), FrozenDict())

    def test_top_is_not_representable(self, lattice):
        with pytest.raises(NotImplementedError):
            lattice.top()

    def test_meet_contradiction_is_bottom(self, lattice):
        assert lattice.meet(FrozenDict(x="a"), FrozenDict(x="b")) is None
        assert dict(lattice.meet(FrozenDict(x="maybe"), FrozenDict(x="b"))) == {"x": "b"}

    def test_closedness_map_join_laws(self):
        lattice = MapLattice(CLOSEDNESS_LATTICE)
        states = [
            None,
            FrozenDict(),
            FrozenDict(x=Closedness.OPEN),
            FrozenDict(x=Closedness.CLOSED),
            FrozenDict(x=Closedness.OPEN, y=Closedness.CLOSED),
            FrozenDict(y=Closedness.MAYBE_CLOSED),
        ]
        for a, b in itertools.product(states, repeat=2):
            assert lattice.join(a, b) == lattice.join(b, a)
            for c in states:
                assert lattice.join(lattice.join(a, b), c) == lattice.join(a, lattice.join(b, c))
        for a in states:
            assert lattice.join(a, a) == a

    def test_nullness_map_join_is_upper_bound(self):
        lattice = MapLattice(NULLNESS_LATTICE)
        null, not_null = FrozenDict(s=Nullness.NULL), FrozenDict(s=Nullness.NOT_NULL)
        joined = lattice.join(null, not_null)
        assert dict(joined) == {"s": Nullness.MAYBE_NULL}
        assert lattice.leq(null, joined) and lattice.leq(not_null, joined)
        assert lattice.join(joined, joined) == joined

    def test_refine(self, lattice):
        state = FrozenDict(x="maybe", y="a")
        assert dict(lattice.refine(state, "x", "a")) == {"x": "a", "y": "a"}
        assert lattice.refine(state, "y", "b") is None
        assert lattice.refine(state, "z", "a") is state
        assert lattice.refine(None, "x", "a") is None


# ═══════════════════════════════════════════════════════════════════════════
#  Solver
# ═══════════════════════════════════════════════════════════════════════════

class TestForwardSolver:

    def test_facts_at_exit_cover_both_branches(self, method_cfg):
        cfg = method_cfg(IF_ELSE, params="boolean c")
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict())
        assert result.converged
        at_exit = result.fact_at(cfg.exit)
        assert {"entry", "if (c)", "a()", "b()", "d()"} <= set(at_exit)
        assert "exit" not in at_exit
        assert "exit" in result.fact_at(cfg.exit, before=False)

    def test_branch_facts_stay_separate(self, method_cfg):
        cfg = method_cfg(IF_ELSE, params="boolean c")
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict())
        at_b = result.fact_at(cfg.find("b()")[0])
        assert "a()" not in at_b
        assert "if (c)" in at_b

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_strategies_agree(self, method_cfg, strategy):
        cfg = method_cfg("""
            while (c) {
              if (d()) { a(); } else { b(); }
            }
            e();
        """, params="boolean c")
        reference = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                         initial_value=FrozenDict())
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict(), strategy=strategy)
        assert result.converged
        assert result.facts_in == reference.facts_in
        assert result.facts_out == reference.facts_out

    def test_loop_facts_flow_around_back_edge(self, method_cfg):
        cfg = method_cfg("while (c) { a(); }\n", params="boolean c")
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict())
        assert "a()" in result.fact_at(cfg.find("while (c)")[0])

    def test_unreachable_exit_stays_bottom(self, method_cfg):
        cfg = method_cfg("while (true) { a(); }\n")
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict())
        assert result.fact_at(cfg.exit) is None

    def test_bottom_initial_value_reaches_nothing(self, method_cfg):
        cfg = method_cfg("a();\n")
        calls = []

        def transfer(node, state):
            calls.append(node)
            return state

        result = run_forward_analysis(cfg, seen_lattice(), transfer)
        assert calls == []
        assert all(fact is None for fact in result.facts_in.values())

    def test_edge_transfer_can_cut_a_branch(self, method_cfg):
        cfg = method_cfg(IF_ELSE, params="boolean c")

        def only_true(edge, state):
            return None if edge.kind is EdgeKind.BRANCH_FALSE else state

        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict(),
                                      edge_transfer=only_true)
        assert result.fact_at(cfg.find("b()")[0]) is None
        assert "b()" not in result.fact_at(cfg.find("d()")[0])

    def test_exception_edges_carry_the_input_fact(self, method_cfg):
        cfg = method_cfg("""
            try {
              a();
            } catch (Exception e) {
              b();
            }
        """)
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict())
        marker = cfg.find("exception")[0]
        assert "try" in result.fact_at(marker)
        assert "a()" not in result.fact_at(marker)

    def test_iteration_limit(self, method_cfg):
        cfg = method_cfg("while (c) { a(); }\n", params="boolean c")
        result = run_forward_analysis(cfg, seen_lattice(), mark_seen,
                                      initial_value=FrozenDict(), max_iterations=1)
        assert not result.converged
        assert result.iterations == 1

    def test_solve_wrapper(self, method_cfg):
        cfg = method_cfg("a();\n")
        result = solve(cfg, seen_lattice(), mark_seen, initial_value=FrozenDict())
        assert result.direction is Direction.FORWARD
        assert "a()" in result.fact_at(cfg.exit)


class TestBackwardSolver:

    def test_facts_flow_against_edges(self, method_cfg):
        cfg = method_cfg(IF_ELSE, params="boolean c")
        result = run_backward_analysis(cfg, seen_lattice(), mark_seen,
                                       initial_value=FrozenDict())
        assert result.converged
        assert result.direction is Direction.BACKWARD
        after_a = result.fact_at(cfg.find("a()")[0])
        assert "d()" in after_a and "exit" in after_a
        assert "b()" not in after_a
        assert {"a()", "b()", "if (c)"} <= set(result.fact_at(cfg.entry, before=False))


# ═══════════════════════════════════════════════════════════════════════════
#  Fixpoints
# ═══════════════════════════════════════════════════════════════════════════

LOOPS_AND_TRY = """
    while (c) {
      try {
        if (d()) { a(); } else { break; }
      } catch (Exception e) {
        b();
      }
    }
    e();
"""


class TestFixpoint:

    @pytest.mark.parametrize("direction", list(Direction))
    def test_solving_from_a_fixpoint_changes_nothing(self, method_cfg, direction):
        cfg = method_cfg(LOOPS_AND_TRY, params="boolean c")
        first = solve(cfg, seen_lattice(), mark_seen, direction,
                      initial_value=FrozenDict())
        again = solve(cfg, seen_lattice(), mark_seen, direction,
                      initial_value=FrozenDict(), seed=first)
        assert first.converged and again.converged
        assert again.facts_in == first.facts_in
        assert again.facts_out == first.facts_out

    def test_seed_below_the_fixpoint_reaches_it(self, method_cfg):
        cfg = method_cfg(LOOPS_AND_TRY, params="boolean c")
        reference = solve(cfg, seen_lattice(), mark_seen, initial_value=FrozenDict())
        partial = solve(cfg, seen_lattice(), mark_seen, initial_value=FrozenDict(),
                        max_iterations=3)
        result = solve(cfg, seen_lattice(), mark_seen, initial_value=FrozenDict(),
                       seed=partial)
        assert result.facts_in == reference.facts_in
        assert result.facts_out == reference.facts_out

    def test_transfer_is_stable_at_the_fixpoint(self, method_cfg):
        cfg = method_cfg(LOOPS_AND_TRY, params="boolean c")
        result = solve(cfg, seen_lattice(), mark_seen, initial_value=FrozenDict())
        for node in cfg.nodes:
            fact = result.fact_at(node)
            if fact is not None:
                assert mark_seen(node, fact) == result.fact_at(node, before=False)


# ═══════════════════════════════════════════════════════════════════════════
#  Monotonicity
# ═══════════════════════════════════════════════════════════════════════════

class TestMonotonicity:

    LATTICE = FlatLattice({"a"}, top="maybe")

    def test_identity_is_monotone(self):
        samples = self.LATTICE.elements()
        assert check_monotonicity(self.LATTICE, lambda n, v: v, ["n"], samples) == []

    def test_inverting_transfer_is_reported(self):
        def invert(node, value):
            return "a" if value == "maybe" else "maybe"

        samples = self.LATTICE.elements()
        violations = check_monotonicity(self.LATTICE, invert, ["n1", "n2"], samples)
        assert violations == [("n1", "a", "maybe"), ("n2", "a", "maybe")]
