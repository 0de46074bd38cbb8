"""Tests for the S0-S9 stage pipeline runner."""

import pytest

from goallab.atoms import world_atom
from goallab.config import PipelineSettings
from goallab.errors import AgentNotFoundError, PipelineStageError
from goallab.pipeline import TOM_DISABLED_WARNING, run_pipeline
from goallab.schemas import (
    AgentState,
    Location,
    LocationGrid,
    RelationBase,
    SimStep,
    WorldEvent,
    WorldState,
)

STAGES = ["S0", "S1", "S2", "S3", "S4", "S5", "S6", "S7", "S8"]


def make_world(*, strict: float = 0.0, weapon: bool = True) -> WorldState:
    return WorldState(
        tick=0,
        agents=[
            AgentState(
                agent_id="ana",
                name="Ana",
                location_id="yard",
                position=(1, 1),
                traits={"paranoia": 0.6, "aggression": 0.7},
                body={"fatigue": 0.3, "stress": 0.5},
                capabilities={"weapon": 1.0} if weapon else {},
                relations={"ben": RelationBase(hostility=0.6, closeness=0.2)},
            ),
            AgentState(agent_id="ben", name="Ben", location_id="yard", position=(2, 1)),
            AgentState(agent_id="cal", name="Cal", location_id="hall"),
        ],
        locations=[
            Location(
                location_id="yard",
                danger=0.6,
                cover=0.5,
                escape=0.4,
                procedural_strict=strict,
                grid=LocationGrid(width=8, height=8, hazards=[(3, 3)]),
            ),
            Location(location_id="hall"),
        ],
        event_log=[
            WorldEvent(event_id="e1", tick=0, kind="attack", actor_id="ben", target_id="ana", location_id="yard", intensity=0.8)
        ],
        scene={"tension": 0.5},
    )


def make_step(t: int = 1, seed: int = 7) -> SimStep:
    return SimStep(t=t, seed=seed)


def run(world=None, settings=None, **kwargs):
    return run_pipeline(world or make_world(), "ana", make_step(), settings=settings, debug=False, **kwargs)


def test_runs_stages_in_order_and_decides():
    result = run()

    assert [frame.stage for frame in result.stages] == STAGES
    assert result.failed_stage is None
    assert result.decision is not None
    assert result.decision.best is not None
    assert result.participant_ids == ["ana", "ben"]


def test_frames_accumulate_atoms():
    result = run()

    previous_ids = set()
    for frame in result.stages:
        ids = {a.id for a in frame.atoms}
        assert previous_ids <= ids
        assert frame.stats.atom_count == len(frame.atoms)
        assert frame.stats.added_count == len(frame.new_atom_ids)
        previous_ids = ids
    assert result.stages[0].stats.added_count == len(result.stages[0].atoms)
    assert result.stages[1].new_atom_ids == []


def test_s1_regroups_without_new_facts():
    result = run()
    s0, s1 = result.stages[0], result.stages[1]

    assert s1.atoms == s0.atoms
    frames = s1.artifacts["quark_frames"]
    assert sorted(i for ids in frames.values() for i in ids) == sorted(a.id for a in s0.atoms)


def test_no_atom_cites_itself_and_observer_is_not_an_other():
    result = run()

    for atom in result.final_atoms():
        assert atom.id not in atom.used_atom_ids
    assert all(not a.id.startswith("obs:nearby:ana:ana") for a in result.final_atoms())
    assert all(":ana:ana:" not in a.id for a in result.final_atoms() if a.id.startswith("tom:dyad:"))


def test_action_atoms_respect_goal_boundary():
    result = run()

    assert not any("goal/action boundary" in warning for warning in result.warnings)
    for atom in result.final_atoms():
        if atom.id.startswith("action:"):
            assert not any(u.startswith("goal:") for u in atom.used_atom_ids)


def test_same_step_same_decision():
    first = run()
    second = run()

    assert first.decision.best.action_key == second.decision.best.action_key
    assert first.stages[-1].atoms == second.stages[-1].atoms


def test_possibility_failure_is_isolated_to_s8(monkeypatch):
    reference = run()

    def boom(atoms, ctx):
        raise RuntimeError("possibility rules exploded")

    monkeypatch.setattr("goallab.pipeline.derive_possibilities", boom)

    result = run()

    assert [frame.stage for frame in result.stages] == STAGES
    for failed, expected in zip(result.stages[:8], reference.stages[:8]):
        assert failed.atoms == expected.atoms
    s8 = result.stages[8]
    assert s8.failed
    assert s8.artifacts["error"]["name"] == "RuntimeError"
    assert "possibility rules exploded" in s8.artifacts["error"]["message"]
    assert "Traceback" in s8.artifacts["error"]["stack"]
    assert s8.atoms == result.stages[7].atoms
    assert result.decision is None
    assert result.failed_stage == "S8"


def test_total_stage_failure_is_wrapped(monkeypatch):
    def broken_axes(atoms, ctx):
        raise ZeroDivisionError("bad axis")

    monkeypatch.setattr("goallab.pipeline.derive_axes", broken_axes)

    with pytest.raises(PipelineStageError) as exc_info:
        run()

    assert exc_info.value.stage == "S2"
    assert exc_info.value.agent_id == "ana"
    assert isinstance(exc_info.value.__cause__, ZeroDivisionError)


def test_unknown_observer_raises():
    with pytest.raises(AgentNotFoundError):
        run_pipeline(make_world(), "zed", make_step(), debug=False)


def test_tom_can_be_disabled():
    result = run(settings=PipelineSettings(tom_enabled=False))

    s5 = result.frame("S5")
    assert TOM_DISABLED_WARNING in s5.warnings
    assert s5.new_atom_ids == []
    assert s5.artifacts["enabled"] is False
    assert result.decision is not None


def test_lookahead_adds_s9_predictions():
    result = run(settings=PipelineSettings(lookahead_enabled=True))

    assert [frame.stage for frame in result.stages] == [*STAGES, "S9"]
    s9 = result.frame("S9")
    assert any(a.id == "pred:next:threat:ana" for a in s9.atoms)
    assert s9.artifacts["transition_snapshot"]["projections"]
    assert all(item.q_lookahead is not None for item in result.decision.ranked if item.action_key in result.decision.retained)


def test_prediction_failure_keeps_decision(monkeypatch):
    def boom(atoms, decision, ctx):
        raise ValueError("no crystal ball")

    monkeypatch.setattr("goallab.pipeline.prediction_atoms", boom)

    result = run(settings=PipelineSettings(lookahead_enabled=True))

    assert [frame.stage for frame in result.stages] == [*STAGES, "S9"]
    assert result.failed_stage == "S9"
    assert result.decision is not None and result.decision.best is not None
    s9 = result.frame("S9")
    assert s9.failed
    assert s9.atoms == result.frame("S8").atoms
    assert s9.artifacts["error"]["name"] == "ValueError"
    assert s9.warnings == ["stage failed: ValueError: no crystal ball"]


def test_lookahead_does_not_change_choice_without_opt_in():
    base = run(settings=PipelineSettings(temperature=0.0))
    with_lookahead = run(settings=PipelineSettings(temperature=0.0, lookahead_enabled=True))

    assert with_lookahead.decision.best.action_key == base.decision.best.action_key
    assert with_lookahead.decision.chosen_by == "argmax"


def test_procedural_strictness_blocks_attack_end_to_end():
    result = run(make_world(strict=0.9))

    possibilities = {p["id"]: p for p in result.frame("S8").artifacts["possibilities"]}
    attack = possibilities["aff:attack:ben"]
    assert attack["enabled"] is False
    assert "con:protocol:noViolence" in attack["blocked_by"]
    assert result.decision.best.candidate.kind != "attack"


def test_missing_weapon_gates_attack_end_to_end():
    result = run(make_world(weapon=False))

    possibilities = {p["id"]: p for p in result.frame("S8").artifacts["possibilities"]}
    assert "access:weapon:ana" in possibilities["aff:attack:ben"]["blocked_by"]
    assert possibilities["aff:attack:ben"]["enabled"] is False


def test_overrides_win_over_observations():
    override = world_atom("world:map:cover:ana", kind="map_feature", source="host", magnitude=0.0)

    result = run(override_atoms=[override])

    s0 = result.frame("S0")
    cover = next(a for a in s0.atoms if a.id == "world:map:cover:ana")
    assert cover.magnitude == 0.0
    assert cover.source == "host"
    assert "world:map:cover:ana" in s0.artifacts["overridden_by_overrides"]


def test_belief_atoms_enter_at_s0():
    belief = world_atom("mem:event:help:old", kind="memory_event", source="memory", magnitude=0.5, subject="ben", target="ana")

    result = run(belief_atoms=[belief])

    assert "mem:event:help:old" in result.frame("S0").new_atom_ids
    assert result.frame("S0").artifacts["belief_atom_count"] == 1


def test_events_visible_at_s0():
    result = run()

    assert any(a.id == "event:attack:e1" for a in result.frame("S0").atoms)
    assert result.frame("S0").artifacts["visible_events"] == ["e1"]
