"""
One-step lookahead (S9).

For each retained candidate the current feature vector z0 is pushed one step
forward: ``z1 = clamp(z0 + action effect + passive drift + noise)``. The value
of z1 is a goal-weighted mixture of interpretable terms, reduced by a risk
penalty on the size of the step, and blended into the score as
``Q_lookahead = Q_now + gamma * V(z1)``.

Noise for each action is drawn from its own ``lookahead:<actionKey>`` channel,
so adding or removing a candidate never changes another candidate's projection.
"""

from typing import Dict, List, Sequence, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ActionProjection, ContextAtom, DecisionResult, ScoredAction, TransitionSnapshot

SOURCE = "actions.lookahead"

FEATURES = ("threat", "escape", "cover", "visibility", "resourceAccess", "scarcity", "fatigue", "stress")

# Value terms and their base weights; sum to 1
VALUE_WEIGHTS: Dict[str, float] = {
    "safety": 0.33,
    "resource": 0.20,
    "progress": 0.22,
    "stealth": 0.12,
    "wellbeing": 0.13,
}

# value term -> goal domain whose energy boosts it
VALUE_GOALS = {
    "safety": "safety",
    "resource": "wealth",
    "progress": "exploration",
    "stealth": "safety",
    "wellbeing": "rest",
}

ACTION_EFFECTS: Dict[str, Dict[str, float]] = {
    "hide": {"threat": -0.08, "visibility": -0.12, "cover": 0.05, "fatigue": 0.02},
    "escape": {"escape": 0.18, "threat": 0.03, "fatigue": 0.06, "stress": 0.03},
    "wait": {"fatigue": -0.02, "stress": -0.02, "threat": 0.02},
    "talk": {"threat": -0.03, "stress": -0.02},
    "help": {"stress": -0.03, "fatigue": 0.03},
    "share_secret": {"stress": -0.02, "visibility": 0.04},
    "attack": {"threat": -0.02, "stress": 0.05, "fatigue": 0.06, "visibility": 0.08},
}


def feature_sources(self_id: str) -> Dict[str, List[str]]:
    s = self_id
    return {
        "threat": [f"threat:final:{s}", f"mind:threat:{s}", f"ctx:danger:{s}"],
        "escape": [f"world:map:escape:{s}", f"ctx:escape:{s}"],
        "cover": [f"world:map:cover:{s}", f"ctx:cover:{s}"],
        "visibility": [f"ctx:surveillance:{s}", f"world:loc:surveillance:{s}"],
        "resourceAccess": [f"world:loc:resources:{s}"],
        "scarcity": [f"ctx:scarcity:{s}"],
        "fatigue": [f"body:fatigue:{s}"],
        "stress": [f"body:stress:{s}"],
    }


def build_feature_vector(atoms: Sequence[ContextAtom], self_id: str) -> Tuple[Dict[str, float], List[str], List[str]]:
    """Return (z, used atom ids, missing feature names). Missing features default to 0."""
    index = AtomIndex(atoms)
    z: Dict[str, float] = {}
    used: List[str] = []
    missing: List[str] = []
    for feature, ids in feature_sources(self_id).items():
        atom = index.first(ids)
        if atom is None:
            z[feature] = 0.0
            missing.append(feature)
            continue
        z[feature] = clamp01(atom.magnitude)
        used.append(atom.id)
    return z, used, missing


def value_terms(z: Dict[str, float]) -> Dict[str, float]:
    return {
        "safety": clamp01(1.0 - z["threat"]),
        "resource": clamp01(0.6 * z["resourceAccess"] + 0.4 * (1.0 - z["scarcity"])),
        "progress": clamp01(z["escape"]),
        "stealth": clamp01(0.6 * z["cover"] + 0.4 * (1.0 - z["visibility"])),
        "wellbeing": clamp01(1.0 - 0.55 * z["fatigue"] - 0.45 * z["stress"]),
    }


def value_weights(goal_energy: Dict[str, float]) -> Dict[str, float]:
    """Base weights boosted by the energy of the matching goal, renormalized."""
    raw = {
        term: weight * (1.0 + goal_energy.get(VALUE_GOALS[term], 0.0))
        for term, weight in VALUE_WEIGHTS.items()
    }
    total = sum(raw.values())
    return {term: w / total for term, w in raw.items()}


def state_value(z: Dict[str, float], weights: Dict[str, float]) -> float:
    terms = value_terms(z)
    return clamp01(sum(weights[t] * terms[t] for t in weights))


def passive_drift(z: Dict[str, float]) -> Dict[str, float]:
    return {
        "fatigue": 0.01 + 0.02 * z["threat"],
        "stress": 0.01 + 0.02 * z["scarcity"] + 0.01 * z["threat"],
    }


def project_action(
    item: ScoredAction,
    z0: Dict[str, float],
    weights: Dict[str, float],
    ctx: StageContext,
) -> ActionProjection:
    settings = ctx.settings
    rng = ctx.rng(f"lookahead:{item.action_key}")
    drift = passive_drift(z0)
    effect = ACTION_EFFECTS.get(item.candidate.kind, {})

    z1: Dict[str, float] = {}
    spread = 0.0
    for feature in FEATURES:
        # Sum of four uniforms approximates a unit normal
        noise = settings.lookahead_noise * (rng.random() + rng.random() + rng.random() + rng.random() - 2.0) * 0.5
        delta = drift.get(feature, 0.0) + effect.get(feature, 0.0) + noise
        spread += abs(delta)
        z1[feature] = clamp01(z0[feature] + delta)

    v0 = state_value(z0, weights)
    v1 = clamp01(state_value(z1, weights) - settings.lookahead_risk_aversion * 0.5 * spread)
    return ActionProjection(
        action_key=item.action_key,
        z1=z1,
        v0=v0,
        v1=v1,
        q_now=item.q,
        q_lookahead=item.q + settings.lookahead_gamma * v1,
    )


def build_transition_snapshot(
    atoms: Sequence[ContextAtom], decision: DecisionResult, ctx: StageContext
) -> Tuple[TransitionSnapshot, List[str]]:
    """Project every retained candidate one step forward."""
    z0, _, missing = build_feature_vector(atoms, ctx.self_id)
    weights = value_weights(decision.goal_energy)
    by_key = {item.action_key: item for item in decision.ranked}
    projections = [project_action(by_key[key], z0, weights, ctx) for key in decision.retained]
    warnings = [f"feature vector missing keys: {', '.join(missing)}"] if missing else []
    snapshot = TransitionSnapshot(
        z0=z0,
        gamma=ctx.settings.lookahead_gamma,
        value_weights=weights,
        projections=projections,
    )
    return snapshot, warnings


def prediction_atoms(
    atoms: Sequence[ContextAtom], decision: DecisionResult, ctx: StageContext
) -> List[ContextAtom]:
    """``pred:next:<feature>:<self>`` for the chosen action's projected state."""
    if decision.best is None or decision.lookahead is None:
        return []
    projection = decision.lookahead.projection(decision.best.action_key)
    if projection is None:
        return []
    s = ctx.self_id
    _, used, _ = build_feature_vector(atoms, s)
    choice_id = f"action:choice:{s}"
    return [
        derived_atom(
            f"pred:next:{feature}:{s}",
            kind="prediction",
            source=SOURCE,
            magnitude=projection.z1[feature],
            used=[choice_id, *used],
            parts={
                "actionKey": projection.action_key,
                "z0": decision.lookahead.z0[feature],
                "z1": projection.z1[feature],
            },
            subject=s,
            tags=["pred", feature],
            label=f"predicted {feature} after {projection.action_key}",
        )
        for feature in FEATURES
    ]
