"""
Character lens (S3).

Distorts the objective S2 axes into the observer's perceived context. Each
lensed axis is overridden in place after its pre-lens value is copied to
``ctx:base:<axis>:<self>``; the same pattern applies to ToM dyads already held
in memory (``tom:base:dyad:...``). The stage closes with the final threat
stack ``threat:final:<self>``.

Gains use ``amplify(x, k) = 0.5 + (x - 0.5) * k``: k > 1 pushes values away
from the midpoint, k < 1 flattens them.
"""

from typing import Dict, List, Tuple

from goallab.atoms import AtomIndex, base_copy, base_id_for, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.lens"

LENS_TRAITS = ("paranoia", "sensitivity", "experience")


def amplify(x: float, k: float) -> float:
    return clamp01(0.5 + (x - 0.5) * k)


def lens_gains(index: AtomIndex, self_id: str) -> Tuple[Dict[str, float], Dict[str, float], List[str]]:
    """Per-axis gains from traits and body state, plus the inputs read."""
    trait_ids = {t: f"feat:char:{self_id}:trait.{t}" for t in LENS_TRAITS}
    body_ids = {b: f"body:{b}:{self_id}" for b in ("stress", "fatigue")}
    paranoia = index.magnitude(trait_ids["paranoia"], 0.5)
    sensitivity = index.magnitude(trait_ids["sensitivity"], 0.5)
    experience = index.magnitude(trait_ids["experience"], 0.5)
    stress = index.magnitude(body_ids["stress"])
    fatigue = index.magnitude(body_ids["fatigue"])
    inputs = {
        "paranoia": paranoia,
        "sensitivity": sensitivity,
        "experience": experience,
        "stress": stress,
        "fatigue": fatigue,
    }
    gains = {
        "danger": 0.8 + 0.8 * paranoia + 0.3 * stress - 0.3 * experience,
        "uncertainty": 0.8 + 0.6 * sensitivity + 0.3 * fatigue - 0.2 * experience,
        "surveillance": 0.85 + 0.5 * paranoia - 0.1 * experience,
        "intimacy": 0.9 + 0.3 * sensitivity - 0.2 * paranoia,
        "timePressure": 0.9 + 0.4 * stress,
    }
    used = index.present([*trait_ids.values(), *body_ids.values()])
    return gains, inputs, used


def apply_character_lens(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    self_id = ctx.self_id
    gains, inputs, lens_used = lens_gains(index, self_id)
    out: List[ContextAtom] = []

    for axis, k in gains.items():
        atom = index.get(f"ctx:{axis}:{self_id}")
        if atom is None:
            continue
        base_id = base_id_for(atom.id)
        if base_id not in index:
            out.append(base_copy(atom, base_id, source=SOURCE))
        base_value = index.magnitude(base_id, atom.magnitude)
        out.append(
            derived_atom(
                atom.id,
                kind=atom.kind,
                source=SOURCE,
                magnitude=amplify(base_value, k),
                used=[base_id, *lens_used],
                notes=["lensed"],
                parts={"base": base_value, "gain": k, **inputs},
                subject=self_id,
                tags=[*atom.tags, "lensed"],
                label=f"perceived {axis}",
                confidence=atom.confidence,
            )
        )

    paranoia = inputs["paranoia"]
    for dyad in index.by_prefix(f"tom:dyad:{self_id}:"):
        metric = dyad.id.rsplit(":", 1)[-1]
        if metric not in ("trust", "threat"):
            continue
        base_id = base_id_for(dyad.id)
        if base_id not in index:
            out.append(base_copy(dyad, base_id, source=SOURCE))
        base_value = index.magnitude(base_id, dyad.magnitude)
        if metric == "trust":
            value = clamp01(base_value - 0.3 * (paranoia - 0.5))
        else:
            value = amplify(base_value, gains["danger"])
        out.append(
            derived_atom(
                dyad.id,
                kind=dyad.kind,
                source=SOURCE,
                magnitude=value,
                used=[base_id, *lens_used],
                notes=["lensed"],
                parts={"base": base_value, "paranoia": paranoia},
                subject=dyad.subject,
                target=dyad.target,
                tags=[*dyad.tags, "lensed"],
                label=dyad.label,
                confidence=dyad.confidence,
                origin=dyad.origin,
            )
        )
    return out


def derive_threat_stack(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    """``threat:final`` = strongest of perceived danger, social threat and close hostile dyads."""
    index = AtomIndex(atoms)
    self_id = ctx.self_id
    terms: Dict[str, float] = {}
    used: List[str] = []
    for atom_id in (f"ctx:danger:{self_id}", f"soc:threat:{self_id}"):
        if atom_id in index:
            terms[atom_id] = index.magnitude(atom_id)
            used.append(atom_id)
    for other, closeness in index.nearby(self_id).items():
        dyad_id = f"tom:dyad:{self_id}:{other}:threat"
        if dyad_id in index:
            terms[dyad_id] = index.magnitude(dyad_id) * closeness
            used.extend([dyad_id, f"obs:nearby:{self_id}:{other}"])
    value = max(terms.values(), default=0.0)
    return [
        derived_atom(
            f"threat:final:{self_id}",
            kind="threat_final",
            source=SOURCE,
            magnitude=value,
            used=used,
            parts={"terms": terms},
            subject=self_id,
            tags=["threat"],
            label="overall perceived threat",
        )
    ]
