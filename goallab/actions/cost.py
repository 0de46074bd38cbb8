"""
Cost model.

Every non-negligible possibility gets a cost vector
``{time, energy, social, risk, moral}`` computed by an action-specific linear
formula over context atoms, scalarized with the configured weights into a
single [0,1] cost. The cost atom keeps the full vector and its inputs.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.config import CostWeights
from goallab.context import StageContext
from goallab.schemas import ContextAtom, Possibility

SOURCE = "actions.cost"

CostVector = Dict[str, float]

DEFAULT_VECTOR: CostVector = {"time": 0.2, "energy": 0.2, "social": 0.1, "risk": 0.1, "moral": 0.05}


def cost_atom_id(kind: str, self_id: str, target_id: Optional[str] = None) -> str:
    return f"cost:{kind}:{self_id}:{target_id or 'none'}"


def cost_inputs(index: AtomIndex, self_id: str) -> Tuple[Dict[str, float], List[str]]:
    s = self_id
    sources = {
        "fatigue": [f"body:fatigue:{s}"],
        "pain": [f"body:pain:{s}"],
        "timePressure": [f"ctx:timePressure:{s}"],
        "publicness": [f"ctx:publicness:{s}"],
        "surveillance": [f"ctx:surveillance:{s}"],
        "proceduralStrict": [f"ctx:proceduralStrict:{s}"],
        "threat": [f"threat:final:{s}", f"ctx:danger:{s}"],
    }
    values: Dict[str, float] = {}
    used: List[str] = []
    for name, candidates in sources.items():
        atom = index.first(candidates)
        values[name] = atom.magnitude if atom else 0.0
        if atom:
            used.append(atom.id)
    return values, used


def cost_vector(kind: str, x: Dict[str, float]) -> CostVector:
    fatigue, pain, tp = x["fatigue"], x["pain"], x["timePressure"]
    pub, surv, strict, threat = x["publicness"], x["surveillance"], x["proceduralStrict"], x["threat"]

    if kind == "hide":
        return {"time": 0.20, "energy": 0.10 + 0.25 * fatigue, "social": 0.05, "risk": 0.05 + 0.15 * threat, "moral": 0.03}
    if kind == "escape":
        return {
            "time": 0.45 + 0.35 * tp,
            "energy": 0.35 + 0.35 * fatigue + 0.15 * pain,
            "social": 0.15,
            "risk": 0.25 + 0.35 * threat,
            "moral": 0.05,
        }
    if kind == "talk":
        return {
            "time": 0.25,
            "energy": 0.10 + 0.15 * fatigue,
            "social": 0.25 + 0.45 * pub + 0.25 * surv,
            "risk": 0.10 + 0.20 * threat,
            "moral": 0.03,
        }
    if kind == "attack":
        return {
            "time": 0.25,
            "energy": 0.55 + 0.25 * fatigue + 0.15 * pain,
            "social": 0.35 + 0.35 * pub,
            "risk": 0.65 + 0.25 * threat,
            "moral": 0.35 + 0.35 * strict,
        }
    if kind == "help":
        return {
            "time": 0.30,
            "energy": 0.25 + 0.20 * fatigue,
            "social": 0.10 + 0.15 * pub,
            "risk": 0.15 + 0.20 * threat,
            "moral": 0.02,
        }
    if kind == "share_secret":
        return {
            "time": 0.25,
            "energy": 0.10,
            "social": 0.55 + 0.25 * pub + 0.25 * surv,
            "risk": 0.20 + 0.20 * threat,
            "moral": 0.05 + 0.20 * strict,
        }
    if kind == "wait":
        return {"time": 0.30 + 0.40 * tp, "energy": 0.02, "social": 0.05, "risk": 0.05 + 0.30 * threat, "moral": 0.0}
    return dict(DEFAULT_VECTOR)


def scalarize(vector: CostVector, weights: CostWeights) -> float:
    w = weights.as_dict()
    return clamp01(sum(w[key] * clamp01(vector.get(key, 0.0)) for key in w))


def is_negligible(possibility: Possibility, threshold: float) -> bool:
    return not possibility.enabled and possibility.magnitude < threshold


def compute_costs(
    possibilities: Sequence[Possibility], atoms: Sequence[ContextAtom], ctx: StageContext
) -> Tuple[List[Possibility], List[ContextAtom]]:
    """Attach scalar costs to possibilities and emit one cost atom per costed action."""
    index = AtomIndex(atoms)
    s = ctx.self_id
    inputs, used = cost_inputs(index, s)
    weights = ctx.settings.cost_weights

    costed: List[Possibility] = []
    cost_atoms: List[ContextAtom] = []
    for possibility in possibilities:
        if is_negligible(possibility, ctx.settings.negligible_magnitude):
            costed.append(possibility)
            continue
        vector = cost_vector(possibility.kind, inputs)
        total = scalarize(vector, weights)
        atom_id = cost_atom_id(possibility.kind, s, possibility.target_id)
        cost_atoms.append(
            derived_atom(
                atom_id,
                kind="action_cost",
                source=SOURCE,
                magnitude=total,
                used=used,
                notes=[f"linear cost model for {possibility.kind}"],
                parts={"vector": vector, "weights": weights.as_dict(), "inputs": dict(inputs)},
                subject=s,
                target=possibility.target_id,
                tags=["cost", possibility.kind],
                label=f"cost {possibility.kind}={round(total * 100)}%",
            )
        )
        costed.append(possibility.model_copy(update={"cost": total, "cost_atom_id": atom_id}))
    return costed, cost_atoms
