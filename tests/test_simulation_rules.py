"""Tests for the world-application boundary."""

import pytest

from goallab.schemas import (
    ActionCandidate,
    AgentState,
    DecisionResult,
    Location,
    ScoredAction,
    SimStep,
    WorldEvent,
    WorldState,
)
from goallab.simulation_rules import EventLogRules, append_events, event_from_decision, format_scene_generic


def make_world_state() -> WorldState:
    return WorldState(
        tick=4,
        agents=[AgentState(agent_id="ana", name="Ana", location_id="yard")],
        locations=[Location(location_id="yard")],
        event_log=[
            WorldEvent(event_id="old", tick=1, kind="talk", actor_id="ana"),
            WorldEvent(event_id="new", tick=4, kind="help", actor_id="ana"),
        ],
        scene={"tension": 0.5, "chaos": 0.02},
    )


def make_decision(key: str = "attack:ben", chosen_by: str = "argmax") -> DecisionResult:
    kind, _, target = key.partition(":")
    candidate = ActionCandidate(id=key, kind=kind, actor_id="ana", target_id=target or None, possibility_id=f"aff:{key}")
    scored = ScoredAction(candidate=candidate, q_raw=0.3, penalty=0.0, q=0.3)
    return DecisionResult(actor_id="ana", tick=5, best=scored, ranked=[scored], chosen_by=chosen_by, intensity=0.65)


def test_apply_tick_ages_events_and_relaxes_scene():
    rules = EventLogRules(retention_ticks=2, scene_decay=0.05)
    state = make_world_state()

    updated = rules.apply_tick(state, SimStep(t=5))

    assert updated.tick == 5
    assert [e.event_id for e in updated.event_log] == ["new"]
    assert updated.scene["tension"] == pytest.approx(0.45)
    assert updated.scene["chaos"] == 0.0
    # Input state is untouched
    assert state.tick == 4
    assert len(state.event_log) == 2


def test_scene_decay_scales_with_tick_duration():
    rules = EventLogRules(scene_decay=0.1)

    updated = rules.apply_tick(make_world_state(), SimStep(t=5, dt=2.0))

    assert updated.scene["tension"] == pytest.approx(0.3)


def test_event_from_decision():
    event = event_from_decision(make_decision(), make_world_state(), SimStep(t=5))

    assert event.event_id == "5:ana:attack:ben"
    assert event.kind == "attack"
    assert event.target_id == "ben"
    assert event.location_id == "yard"
    assert event.intensity == pytest.approx(0.65)
    assert event.tags == ["decision", "argmax"]


def test_no_choice_gives_no_event():
    decision = DecisionResult(actor_id="ana", tick=5)

    assert event_from_decision(decision, make_world_state(), SimStep(t=5)) is None
    assert EventLogRules().apply_decision(make_world_state(), "ana", decision, SimStep(t=5)) is None


def test_append_events_skips_none_and_copies():
    state = make_world_state()
    extra = WorldEvent(event_id="x", tick=5, kind="wait")

    updated = append_events(state, [extra, None])

    assert [e.event_id for e in updated.event_log] == ["old", "new", "x"]
    assert len(state.event_log) == 2


def test_scene_summary_format():
    assert format_scene_generic(make_world_state()) == "Chaos=0.02, Tension=0.50"
    assert EventLogRules().format_scene_summary(WorldState()) == ""


def test_default_hooks():
    rules = EventLogRules()
    state = make_world_state()

    assert rules.get_tick_duration_seconds() == 1.0
    assert rules.on_simulation_start(state) is state
    assert rules.should_stop(state, 3) is False
