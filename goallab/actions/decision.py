"""
Decision engine: score candidates, keep the top-K, sample one.

Scoring:
    Q_raw = sum_g energy[g] * delta_g(a) - cost(a)
    Q     = Q_raw - risk_penalty * |Q_raw| * (1 - confidence(a))

The penalty is additive so low confidence dampens a preference without ever
flipping its sign.

Sampling uses the Gumbel-max trick over the retained candidates:
argmax(Q / T + g) with g = -log(-log u) drawn from the tick's "decision" RNG
channel. At T ~ 0 this is plain argmax; as T grows it approaches a uniform
choice among the top-K. Ties are broken by action key.
"""

import random
from typing import Dict, List, Optional, Sequence

from goallab.atoms import clamp01, derived_atom
from goallab.rng import gumbel_noise
from goallab.schemas import (
    ActionCandidate,
    ContextAtom,
    DecisionResult,
    ScoredAction,
    TransitionSnapshot,
)

SOURCE = "actions.decision"

# Temperatures at or below this are treated as deterministic argmax
MIN_TEMPERATURE = 1e-6

EMPTY_GOAL_ENERGY_WARNING = "empty goal energy: ranking degenerates to cost minimization"


def score_candidate(
    candidate: ActionCandidate, goal_energy: Dict[str, float], *, risk_penalty: float = 0.4
) -> ScoredAction:
    contributions = {
        goal: energy * candidate.delta_goals[goal]
        for goal, energy in goal_energy.items()
        if goal in candidate.delta_goals
    }
    q_raw = sum(contributions.values()) - candidate.cost
    penalty = risk_penalty * abs(q_raw) * (1.0 - clamp01(candidate.confidence))
    return ScoredAction(
        candidate=candidate,
        q_raw=q_raw,
        penalty=penalty,
        q=q_raw - penalty,
        contributions=contributions,
    )


def score_magnitude(q: float) -> float:
    """Map a bipolar score into [0,1] with 0.5 as neutral."""
    return clamp01(0.5 + 0.5 * q)


def score_atom_id(actor_id: str, action_key: str) -> str:
    return f"action:score:{actor_id}:{action_key}"


def choice_atom_id(actor_id: str) -> str:
    return f"action:choice:{actor_id}"


def _rank(scored: Sequence[ScoredAction]) -> List[ScoredAction]:
    return sorted(scored, key=lambda item: (-item.q, item.action_key))


def _sample(retained: Sequence[ScoredAction], temperature: float, rng: random.Random) -> ScoredAction:
    best: Optional[ScoredAction] = None
    best_key = float("-inf")
    # One draw per retained candidate in rank order keeps the channel reproducible
    for item in retained:
        key = item.q / temperature + gumbel_noise(rng)
        if key > best_key:
            best, best_key = item, key
    return best


def _without_goal_ids(ids: Sequence[str]) -> List[str]:
    return [atom_id for atom_id in ids if not atom_id.startswith("goal:")]


def decision_atoms(
    actor_id: str,
    ranked: Sequence[ScoredAction],
    blocked: Sequence[ActionCandidate],
    best: Optional[ScoredAction],
    *,
    retained: Sequence[str] = (),
    chosen_by: str = "none",
    temperature: float = 0.0,
) -> List[ContextAtom]:
    """Reify every ranked and blocked candidate, plus the choice, as action atoms."""
    atoms: List[ContextAtom] = []
    for rank, item in enumerate(ranked, start=1):
        candidate = item.candidate
        atoms.append(
            derived_atom(
                score_atom_id(actor_id, item.action_key),
                kind="action_score",
                source=SOURCE,
                magnitude=score_magnitude(item.q),
                used=_without_goal_ids(candidate.support_atoms),
                parts={
                    "rank": rank,
                    "retained": item.action_key in retained,
                    "qRaw": item.q_raw,
                    "penalty": item.penalty,
                    "q": item.q,
                    "cost": candidate.cost,
                    "confidence": candidate.confidence,
                    "contributions": dict(item.contributions),
                },
                subject=actor_id,
                target=candidate.target_id,
                confidence=candidate.confidence,
                tags=["action", "score", candidate.kind],
                label=f"Q({item.action_key})={item.q:+.3f}",
            )
        )
    for candidate in blocked:
        atoms.append(
            derived_atom(
                score_atom_id(actor_id, candidate.id),
                kind="action_score",
                source=SOURCE,
                magnitude=0.0,
                used=_without_goal_ids([*candidate.support_atoms, *candidate.blocked_by]),
                parts={"blocked": True, "blockedBy": list(candidate.blocked_by)},
                subject=actor_id,
                target=candidate.target_id,
                tags=["action", "score", "blocked", candidate.kind],
                label=f"{candidate.id} blocked",
            )
        )
    if best is not None:
        atoms.append(
            derived_atom(
                choice_atom_id(actor_id),
                kind="action_choice",
                source=SOURCE,
                magnitude=score_magnitude(best.q),
                used=[score_atom_id(actor_id, best.action_key)],
                parts={
                    "actionKey": best.action_key,
                    "kind": best.candidate.kind,
                    "targetId": best.candidate.target_id,
                    "chosenBy": chosen_by,
                    "temperature": temperature,
                    "q": best.q,
                },
                subject=actor_id,
                target=best.candidate.target_id,
                tags=["action", "choice", best.candidate.kind],
                label=f"chose {best.action_key}",
            )
        )
    return atoms


def decide_action(
    candidates: Sequence[ActionCandidate],
    goal_energy: Dict[str, float],
    *,
    temperature: float,
    top_k: int,
    risk_penalty: float,
    rng: random.Random,
    actor_id: str,
    tick: int = 0,
) -> DecisionResult:
    """Score, rank, retain the top-K and sample a single best action.

    An empty candidate set yields ``best=None``; empty goal energy is valid and
    only flagged with a warning.
    """
    warnings: List[str] = []
    if not goal_energy:
        warnings.append(EMPTY_GOAL_ENERGY_WARNING)

    enabled = [c for c in candidates if c.enabled]
    blocked = [c for c in candidates if not c.enabled]
    ranked = _rank([score_candidate(c, goal_energy, risk_penalty=risk_penalty) for c in enabled])
    retained = ranked[: max(1, top_k)]

    best: Optional[ScoredAction] = None
    chosen_by = "none"
    if retained:
        if temperature <= MIN_TEMPERATURE:
            best, chosen_by = retained[0], "argmax"
        else:
            best, chosen_by = _sample(retained, temperature, rng), "sample"

    retained_keys = [item.action_key for item in retained]
    return DecisionResult(
        actor_id=actor_id,
        tick=tick,
        best=best,
        ranked=ranked,
        retained=retained_keys,
        blocked=blocked,
        goal_energy=dict(goal_energy),
        temperature=temperature,
        chosen_by=chosen_by,
        intensity=score_magnitude(best.q) if best is not None else 0.0,
        warnings=warnings,
        atoms=decision_atoms(
            actor_id,
            ranked,
            blocked,
            best,
            retained=retained_keys,
            chosen_by=chosen_by,
            temperature=temperature,
        ),
    )


def apply_lookahead(decision: DecisionResult, snapshot: TransitionSnapshot, *, opt_in: bool = False) -> DecisionResult:
    """Annotate ranked actions with Q_lookahead.

    The reported best only changes when the caller opts in to lookahead-driven
    choice; otherwise lookahead is an annotation on top of the base ranking.
    """
    annotated: List[ScoredAction] = []
    for item in decision.ranked:
        projection = snapshot.projection(item.action_key)
        if projection is None:
            annotated.append(item)
        else:
            annotated.append(item.model_copy(update={"q_lookahead": projection.q_lookahead}))
    by_key = {item.action_key: item for item in annotated}

    best = by_key.get(decision.best.action_key) if decision.best is not None else None
    chosen_by = decision.chosen_by
    atoms = decision.atoms
    if opt_in and best is not None:
        pool = [by_key[key] for key in decision.retained if by_key[key].q_lookahead is not None]
        if pool:
            pick = sorted(pool, key=lambda item: (-item.q_lookahead, item.action_key))[0]
            if pick.action_key != best.action_key:
                best, chosen_by = pick, "lookahead"
                atoms = decision_atoms(
                    decision.actor_id,
                    annotated,
                    decision.blocked,
                    best,
                    retained=decision.retained,
                    chosen_by=chosen_by,
                    temperature=decision.temperature,
                )

    return decision.model_copy(
        update={
            "ranked": annotated,
            "best": best,
            "chosen_by": chosen_by,
            "intensity": score_magnitude(best.q) if best is not None else 0.0,
            "atoms": atoms,
            "lookahead": snapshot,
        }
    )
