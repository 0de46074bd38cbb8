"""Tests for the per-stage structural checks."""

import pytest

from goallab.atoms import derived_atom, world_atom
from goallab.context import StageContext
from goallab.errors import AtomValidationError
from goallab.invariants import check_new_atoms, compute_stats, expect_output, goal_boundary_violations
from goallab.pipeline import run_enrichers


def make_atom(atom_id: str, used=(), magnitude: float = 0.5):
    return derived_atom(atom_id, kind="test", source="test", magnitude=magnitude, used=used)


def make_goal_chain(via: str):
    """goal -> <via> -> action, where ``via`` is the intermediate atom id."""
    goal = make_atom("goal:safety:ana", used=["drv:safetyNeed:ana"])
    middle = make_atom(via, used=[goal.id])
    action = make_atom("action:score:ana:hide", used=[middle.id, "aff:hide"])
    return [goal, middle, action]


def test_action_reaching_goal_through_non_util_atom_is_flagged():
    atoms = make_goal_chain("ctx:goalEcho:ana")

    warnings = goal_boundary_violations(atoms)

    assert len(warnings) == 1
    assert warnings[0].startswith("goal/action boundary: action:score:ana:hide reaches goal:safety:ana")
    assert "without a util:* projection" in warnings[0]


def test_action_reaching_goal_through_util_atom_is_clean():
    atoms = make_goal_chain("util:hide:ana")

    assert goal_boundary_violations(atoms) == []


def test_direct_goal_citation_is_flagged():
    goal = make_atom("goal:safety:ana", used=["drv:safetyNeed:ana"])
    action = make_atom("action:score:ana:hide", used=[goal.id, "util:hide:ana"])

    warnings = goal_boundary_violations([goal, action])

    assert warnings == ["goal/action boundary: action:score:ana:hide cites goal atoms directly (goal:safety:ana)"]


def test_boundary_check_limited_to_changed_ids():
    atoms = make_goal_chain("ctx:goalEcho:ana")

    assert goal_boundary_violations(atoms, only_ids=["ctx:goalEcho:ana"]) == []
    assert len(goal_boundary_violations(atoms, only_ids=["action:score:ana:hide"])) == 1


def test_cyclic_traces_terminate():
    first = make_atom("ctx:a:ana", used=["ctx:b:ana"])
    second = make_atom("ctx:b:ana", used=["ctx:a:ana"])
    action = make_atom("action:score:ana:wait", used=[first.id])

    assert goal_boundary_violations([first, second, action]) == []


def test_derived_atom_without_trace_data_is_reported():
    bare = make_atom("ctx:mystery:ana")
    traced = make_atom("ctx:danger:ana", used=["world:loc:danger:ana"])

    warnings = check_new_atoms([bare, traced], [bare.id, traced.id], strict=False)

    assert warnings == ["ctx:mystery:ana: derived atom has no trace data"]
    assert compute_stats([bare, traced], 2).missing_trace_derived_count == 1


def test_strict_validation_raises():
    bare = make_atom("ctx:mystery:ana")

    with pytest.raises(AtomValidationError) as exc_info:
        check_new_atoms([bare], [bare.id], strict=True)

    assert exc_info.value.atom_id == "ctx:mystery:ana"
    assert "derived atom has no trace data" in exc_info.value.issues


def test_world_atoms_need_no_trace():
    atom = world_atom("world:loc:danger:ana", kind="test", source="test", magnitude=0.4)

    assert check_new_atoms([atom], [atom.id], strict=True) == []


def test_expect_output_warns_only_with_inputs():
    assert expect_output("social", True, []) == ["social produced zero atoms despite qualifying inputs"]
    assert expect_output("social", False, []) == []
    assert expect_output("social", True, [make_atom("soc:x:ana", used=["obs:nearby:ana:ben"])]) == []


def test_silent_enricher_with_inputs_is_reported():
    def silent(atoms, ctx):
        return []

    def echo(atoms, ctx):
        return [make_atom("ctx:echo:ana", used=[atoms[0].id])]

    def has_nearby(atoms):
        return any(a.id.startswith("obs:nearby:") for a in atoms)

    inputs = [world_atom("obs:nearby:ana:ben", kind="test", source="test", magnitude=0.6)]
    steps = [
        ("silent", silent, has_nearby),
        ("echo", echo, has_nearby),
        ("unchecked", silent, None),
    ]

    produced, warnings = run_enrichers(inputs, StageContext(self_id="ana", tick=1), steps)

    assert [a.id for a in produced] == ["ctx:echo:ana"]
    assert warnings == ["silent produced zero atoms despite qualifying inputs"]
