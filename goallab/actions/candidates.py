"""
Action candidate builder.

Projects goal energy onto possibilities. Goal influence is read only from the
``util:*`` projections emitted at S7:

- goal energy: ``util:activeGoal:<self>:<goal>``
- per-goal deltas: ``util:hint:allow:<goal>:<kind>`` (magnitude m, delta 2m - 1)

Targeted positive deltas are modulated by the matching action prior. The
candidate's support atoms never include ``goal:*`` ids.
"""

from typing import Dict, List, Sequence, Tuple

from goallab.atoms import AtomIndex, clamp01
from goallab.context import StageContext
from goallab.enrichment.goals import magnitude_to_delta
from goallab.schemas import ActionCandidate, ContextAtom, Possibility

from .priors import prior_id

# action kind -> prior that modulates its targeted deltas
KIND_PRIOR = {
    "talk": "ask_info",
    "help": "help",
    "share_secret": "help",
    "attack": "harm",
}

DYAD_UNCERTAINTY_WEIGHT = 0.5


def read_goal_energy(atoms: Sequence[ContextAtom], self_id: str) -> Tuple[Dict[str, float], List[str]]:
    prefix = f"util:activeGoal:{self_id}:"
    energy: Dict[str, float] = {}
    used: List[str] = []
    for atom in AtomIndex(atoms).by_prefix(prefix):
        energy[atom.id[len(prefix):]] = atom.magnitude
        used.append(atom.id)
    return energy, used


def build_candidates(
    possibilities: Sequence[Possibility], atoms: Sequence[ContextAtom], ctx: StageContext
) -> Tuple[List[ActionCandidate], Dict[str, float]]:
    """Return one candidate per possibility plus the goal energy map used."""
    index = AtomIndex(atoms)
    s = ctx.self_id
    goal_energy, _ = read_goal_energy(atoms, s)

    candidates: List[ActionCandidate] = []
    for possibility in possibilities:
        kind = possibility.kind
        target = possibility.target_id
        deltas: Dict[str, float] = {}
        support: List[str] = [possibility.id, *possibility.why_atom_ids]
        if possibility.cost_atom_id:
            support.append(possibility.cost_atom_id)

        prior_atom = None
        if target is not None and kind in KIND_PRIOR:
            prior_atom = index.get(prior_id(s, target, KIND_PRIOR[kind]))

        for goal in goal_energy:
            hint = index.get(f"util:hint:allow:{goal}:{kind}")
            if hint is None:
                continue
            delta = magnitude_to_delta(hint.magnitude)
            if prior_atom is not None and delta > 0:
                delta = min(1.0, delta * (0.5 + prior_atom.magnitude))
            deltas[goal] = delta
            support.extend([f"util:activeGoal:{s}:{goal}", hint.id])
        if prior_atom is not None:
            support.append(prior_atom.id)

        confidence = possibility.confidence
        if target is not None:
            uncertainty_id = f"tom:dyad:{s}:{target}:uncertainty"
            if uncertainty_id in index:
                confidence *= 1.0 - DYAD_UNCERTAINTY_WEIGHT * index.magnitude(uncertainty_id)
                support.append(uncertainty_id)

        candidates.append(
            ActionCandidate(
                id=possibility.action_key,
                kind=kind,
                actor_id=s,
                target_id=target,
                possibility_id=possibility.id,
                delta_goals=deltas,
                cost=possibility.cost or 0.0,
                confidence=clamp01(confidence),
                support_atoms=[a for a in dict.fromkeys(support) if not a.startswith("goal:")],
                enabled=possibility.enabled,
                blocked_by=list(possibility.blocked_by),
            )
        )
    return candidates, goal_energy
