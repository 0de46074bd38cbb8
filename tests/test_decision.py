"""Tests for candidate building, scoring, sampling and lookahead annotation."""

import pytest

from goallab.actions.candidates import build_candidates
from goallab.actions.decision import (
    EMPTY_GOAL_ENERGY_WARNING,
    apply_lookahead,
    choice_atom_id,
    decide_action,
    score_atom_id,
    score_candidate,
)
from goallab.actions.lookahead import build_transition_snapshot, value_weights
from goallab.atoms import derived_atom, world_atom
from goallab.config import PipelineSettings
from goallab.context import StageContext
from goallab.rng import rng_channel
from goallab.schemas import ActionCandidate, ActionProjection, Possibility, TransitionSnapshot


def make_candidate(key: str, *, deltas=None, cost: float = 0.1, confidence: float = 1.0, enabled: bool = True, blocked_by=()):
    kind, _, target = key.partition(":")
    return ActionCandidate(
        id=key,
        kind=kind,
        actor_id="ana",
        target_id=target or None,
        possibility_id=f"aff:{key}",
        delta_goals=dict(deltas or {}),
        cost=cost,
        confidence=confidence,
        support_atoms=[f"aff:{key}"],
        enabled=enabled,
        blocked_by=list(blocked_by),
    )


def decide(candidates, goal_energy, *, temperature=0.0, top_k=5, seed=0, tick=1):
    return decide_action(
        candidates,
        goal_energy,
        temperature=temperature,
        top_k=top_k,
        risk_penalty=0.4,
        rng=rng_channel(seed, "ana", tick, "decision"),
        actor_id="ana",
        tick=tick,
    )


def make_menu():
    return [
        make_candidate("hide", deltas={"safety": 0.7}, cost=0.15),
        make_candidate("escape", deltas={"safety": 0.8}, cost=0.35),
        make_candidate("wait", deltas={"safety": 0.1}, cost=0.05),
        make_candidate("talk:ben", deltas={"safety": 0.1, "affiliation": 0.6}, cost=0.2),
    ]


def test_score_is_energy_weighted_progress_minus_cost():
    scored = score_candidate(make_candidate("hide", deltas={"safety": 0.7}, cost=0.15), {"safety": 0.8})

    assert scored.q_raw == pytest.approx(0.8 * 0.7 - 0.15)
    assert scored.penalty == 0.0
    assert scored.q == pytest.approx(scored.q_raw)


@pytest.mark.parametrize("q_sign", [1.0, -1.0])
def test_uncertainty_penalty_never_flips_sign(q_sign):
    candidate = make_candidate("hide", deltas={"safety": q_sign}, cost=0.0, confidence=0.0)

    scored = score_candidate(candidate, {"safety": 1.0}, risk_penalty=0.4)

    assert scored.penalty == pytest.approx(0.4)
    assert scored.q == pytest.approx(q_sign - 0.4)
    assert (scored.q > 0) == (scored.q_raw > 0)


def test_argmax_at_zero_temperature():
    result = decide(make_menu(), {"safety": 0.8, "affiliation": 0.2})

    assert result.chosen_by == "argmax"
    assert result.best.action_key == "hide"
    assert [s.action_key for s in result.ranked][0] == "hide"


def test_ties_break_by_action_key():
    candidates = [make_candidate("wait", cost=0.1), make_candidate("hide", cost=0.1)]

    result = decide(candidates, {"safety": 1.0})

    assert result.best.action_key == "hide"


def test_same_seed_same_choice():
    energy = {"safety": 0.5, "affiliation": 0.5}
    picks = {decide(make_menu(), energy, temperature=1.0, seed=11).best.action_key for _ in range(5)}

    assert len(picks) == 1


def test_sampling_explores_under_high_temperature():
    energy = {"safety": 0.5, "affiliation": 0.5}
    picks = {decide(make_menu(), energy, temperature=50.0, seed=seed).best.action_key for seed in range(40)}

    assert len(picks) > 1
    for seed in range(5):
        assert decide(make_menu(), energy, temperature=50.0, seed=seed).chosen_by == "sample"


def test_sampling_stays_inside_top_k():
    energy = {"safety": 0.8}
    for seed in range(20):
        result = decide(make_menu(), energy, temperature=50.0, top_k=2, seed=seed)
        assert result.best.action_key in result.retained
        assert len(result.retained) == 2


def test_empty_candidates_give_no_decision():
    result = decide([], {"safety": 0.5})

    assert result.best is None
    assert result.chosen_by == "none"
    assert result.atoms == []
    assert result.intensity == 0.0


def test_empty_goal_energy_is_valid_but_flagged():
    result = decide(make_menu(), {})

    assert EMPTY_GOAL_ENERGY_WARNING in result.warnings
    # Ranking degenerates to the cheapest action
    assert result.best.action_key == "wait"


def test_blocked_candidates_are_reported_not_ranked():
    candidates = [
        *make_menu(),
        make_candidate("attack:ben", deltas={"safety": 1.0}, cost=0.0, enabled=False, blocked_by=["con:protocol:noViolence"]),
    ]

    result = decide(candidates, {"safety": 0.8})

    assert "attack:ben" not in [s.action_key for s in result.ranked]
    assert [c.id for c in result.blocked] == ["attack:ben"]
    blocked_atom = next(a for a in result.atoms if a.id == score_atom_id("ana", "attack:ben"))
    assert blocked_atom.magnitude == 0.0
    assert blocked_atom.trace.parts["blockedBy"] == ["con:protocol:noViolence"]
    assert "con:protocol:noViolence" in blocked_atom.used_atom_ids


def test_choice_atom_cites_score_atom():
    result = decide(make_menu(), {"safety": 0.8})

    choice = next(a for a in result.atoms if a.id == choice_atom_id("ana"))
    assert choice.used_atom_ids == [score_atom_id("ana", result.best.action_key)]
    assert choice.trace.parts["chosenBy"] == "argmax"


def test_build_candidates_reads_util_layer_only():
    ctx = StageContext(self_id="ana", tick=1)
    atoms = [
        derived_atom("util:activeGoal:ana:safety", kind="util", source="test", magnitude=0.8, used=["goal:active:safety:ana"]),
        derived_atom("util:hint:allow:safety:hide", kind="util", source="test", magnitude=0.85, used=["goal:hint:allow:safety:hide"]),
        derived_atom("goal:hint:allow:safety:hide", kind="goal", source="test", magnitude=0.85, used=["goal:active:safety:ana"]),
    ]
    possibility = Possibility(id="aff:hide", kind="hide", action_id="hide", label="Hide", magnitude=0.5, enabled=True, cost=0.1)

    candidates, energy = build_candidates([possibility], atoms, ctx)

    assert energy == {"safety": pytest.approx(0.8)}
    assert candidates[0].delta_goals["safety"] == pytest.approx(0.7)
    assert candidates[0].cost == pytest.approx(0.1)
    assert not any(a.startswith("goal:") for a in candidates[0].support_atoms)
    assert "util:hint:allow:safety:hide" in candidates[0].support_atoms


def test_targeted_deltas_scaled_by_prior_and_confidence_by_uncertainty():
    ctx = StageContext(self_id="ana", tick=1)
    atoms = [
        derived_atom("util:activeGoal:ana:affiliation", kind="util", source="test", magnitude=0.6, parts={"e": 0.6}),
        derived_atom("util:hint:allow:affiliation:help", kind="util", source="test", magnitude=0.8, parts={"d": 0.6}),
        derived_atom("act:prior:ana:ben:help", kind="action_prior", source="test", magnitude=0.9, parts={"p": 0.9}),
        world_atom("tom:dyad:ana:ben:uncertainty", kind="tom_dyad", source="test", magnitude=0.4),
    ]
    possibility = Possibility(
        id="aff:help:ben", kind="help", action_id="help", target_id="ben", label="Help", magnitude=0.5, enabled=True
    )

    candidates, _ = build_candidates([possibility], atoms, ctx)

    assert candidates[0].id == "help:ben"
    assert candidates[0].delta_goals["affiliation"] == pytest.approx(min(1.0, 0.6 * 1.4))
    assert candidates[0].confidence == pytest.approx(0.8)
    assert "act:prior:ana:ben:help" in candidates[0].support_atoms


def make_snapshot(decision, favourite: str) -> TransitionSnapshot:
    projections = [
        ActionProjection(
            action_key=item.action_key,
            z1={},
            v0=0.5,
            v1=0.5,
            q_now=item.q,
            q_lookahead=item.q + (10.0 if item.action_key == favourite else 0.0),
        )
        for item in decision.ranked
        if item.action_key in decision.retained
    ]
    return TransitionSnapshot(z0={}, gamma=0.5, value_weights={}, projections=projections)


def test_lookahead_annotates_without_changing_best():
    decision = decide(make_menu(), {"safety": 0.8})

    annotated = apply_lookahead(decision, make_snapshot(decision, "wait"))

    assert annotated.best.action_key == decision.best.action_key
    assert annotated.chosen_by == "argmax"
    assert all(item.q_lookahead is not None for item in annotated.ranked)
    assert annotated.lookahead is not None


def test_lookahead_changes_best_only_when_opted_in():
    decision = decide(make_menu(), {"safety": 0.8})

    annotated = apply_lookahead(decision, make_snapshot(decision, "wait"), opt_in=True)

    assert annotated.best.action_key == "wait"
    assert annotated.chosen_by == "lookahead"
    choice = next(a for a in annotated.atoms if a.id == choice_atom_id("ana"))
    assert choice.trace.parts["actionKey"] == "wait"


def test_transition_snapshot_projects_retained_candidates():
    ctx = StageContext(self_id="ana", tick=1, run_seed=3, settings=PipelineSettings(lookahead_enabled=True))
    atoms = [
        world_atom("ctx:danger:ana", kind="axis", source="test", magnitude=0.6),
        world_atom("world:map:cover:ana", kind="map", source="test", magnitude=0.5),
    ]
    decision = decide(make_menu(), {"safety": 0.8}, top_k=3)

    snapshot, warnings = build_transition_snapshot(atoms, decision, ctx)
    again, _ = build_transition_snapshot(atoms, decision, ctx)

    assert [p.action_key for p in snapshot.projections] == decision.retained
    assert snapshot == again
    assert snapshot.z0["threat"] == pytest.approx(0.6)
    assert warnings and "missing" in warnings[0]
    for projection in snapshot.projections:
        assert projection.q_lookahead == pytest.approx(projection.q_now + 0.5 * projection.v1)


def test_value_weights_follow_goal_energy():
    neutral = value_weights({})
    safety_heavy = value_weights({"safety": 1.0})

    assert sum(neutral.values()) == pytest.approx(1.0)
    assert sum(safety_heavy.values()) == pytest.approx(1.0)
    assert safety_heavy["safety"] > neutral["safety"]
