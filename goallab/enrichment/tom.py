"""
Theory of Mind (S5).

Keeps the per-observer belief matrix ``tom:dyad:<self>:<other>:<metric>``
consistent with the relation base and builds on it:

1. Relation priors: seed missing dyad metrics from ``rel:base`` (origin belief,
   confidence 0.65) and clamp every bounded metric into ``[floor, cap]``
   computed from the relation base. Clamped values override the dyad id in
   place; the pre-clamp value is kept at ``tom:base:dyad:...``.
2. Non-contextual baselines: familiarity and predictability per known agent.
3. Belief bias: remembered and current events shift trust/threat into
   ``tom:effective:dyad:...``.
4. Policy layer: reasoning mode and predicted help/harm/truth tendencies.

Pairs whose relation strength is below 0.05 are left untouched.
"""

from typing import Dict, List, Optional, Tuple

from goallab.atoms import (
    AtomIndex,
    base_copy,
    base_id_for,
    belief_atom,
    clamp01,
    derived_atom,
    sigmoid,
)
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.tom"

SEED_CONFIDENCE = 0.65
MIN_REL_STRENGTH = 0.05
RELATION_METRICS = ("closeness", "loyalty", "hostility", "dependency", "authority")
DYAD_METRICS = (
    "trust",
    "threat",
    "intimacy",
    "uncertainty",
    "alignment",
    "respect",
    "dominance",
    "support",
)
HARM_EVENT_KINDS = {"attack", "threaten", "betray", "harm"}
HELP_EVENT_KINDS = {"help", "share_secret", "protect", "gift"}


def relation_base(index: AtomIndex, self_id: str, other: str) -> Tuple[Dict[str, float], List[str]]:
    prefix = f"rel:base:{self_id}:{other}"
    values = {m: index.magnitude(f"{prefix}:{m}") for m in RELATION_METRICS}
    used = index.present(f"{prefix}:{m}" for m in RELATION_METRICS)
    return values, used


def seed_values(rel: Dict[str, float]) -> Dict[str, float]:
    c, l, h, d, a = (rel[m] for m in RELATION_METRICS)
    return {
        "trust": clamp01(0.55 * l + 0.35 * c + 0.1 * d - 0.6 * h),
        "threat": clamp01(0.75 * h + 0.15 * (1.0 - c) + 0.1 * a * h),
        "intimacy": clamp01(0.7 * c + 0.2 * l - 0.3 * h),
        "uncertainty": clamp01(0.6 - 0.4 * c - 0.2 * l + 0.2 * h),
        "alignment": clamp01(0.5 + 0.4 * l + 0.2 * c - 0.6 * h),
        "respect": clamp01(0.6 * a + 0.2 * l + 0.1 * c),
        "dominance": clamp01(0.5 + 0.4 * a - 0.3 * d),
        "support": clamp01(0.5 * l + 0.3 * c + 0.2 * d - 0.5 * h),
    }


def metric_bounds(
    metric: str, rel: Dict[str, float], physical_threat: float
) -> Tuple[Optional[float], Optional[float]]:
    """(floor, cap) for a dyad metric; None where the metric is unbounded on that side."""
    c, l, h, a = rel["closeness"], rel["loyalty"], rel["hostility"], rel["authority"]
    if metric == "trust":
        return clamp01(0.5 * (0.6 * l + 0.4 * c) * (1.0 - h)), clamp01(1.0 - 0.85 * h)
    if metric == "threat":
        return clamp01(0.6 * h + 0.3 * physical_threat), None
    if metric == "intimacy":
        return None, clamp01(1.0 - 0.7 * h)
    if metric == "support":
        return None, clamp01(1.0 - 0.6 * h)
    if metric == "alignment":
        return None, clamp01(1.0 - 0.5 * h)
    if metric == "respect":
        return clamp01(0.5 * a), None
    return None, None


def clamp_to_bounds(base: float, floor: Optional[float], cap: Optional[float]) -> float:
    """max(base, floor) clamped to cap."""
    value = base if floor is None else max(base, floor)
    return value if cap is None else min(value, cap)


def apply_relation_priors(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    nearby = index.nearby(s)
    out: List[ContextAtom] = []

    for other in index.others_of(s):
        rel, rel_used = relation_base(index, s, other)
        strength = max(rel.values())
        if not rel_used or strength < MIN_REL_STRENGTH:
            continue
        physical = nearby.get(other, 0.0) * rel["hostility"]
        seeds = seed_values(rel)

        for metric in DYAD_METRICS:
            atom_id = f"tom:dyad:{s}:{other}:{metric}"
            floor, cap = metric_bounds(metric, rel, physical)
            if floor is not None and cap is not None:
                floor = min(floor, cap)
            existing = index.get(atom_id)
            if existing is None:
                seed = seeds[metric]
                out.append(
                    belief_atom(
                        atom_id,
                        kind="tom_dyad",
                        source=SOURCE,
                        magnitude=clamp_to_bounds(seed, floor, cap),
                        used=rel_used,
                        notes=["seeded from relation base"],
                        parts={"seed": seed, "base": seed, "floor": floor, "cap": cap, "relStrength": strength},
                        subject=s,
                        target=other,
                        confidence=SEED_CONFIDENCE,
                        tags=["tom", "dyad", metric, "prior"],
                        label=f"{metric} toward {other} (relation prior)",
                    )
                )
                continue
            if floor is None and cap is None:
                continue
            base_id = base_id_for(atom_id)
            value = existing.magnitude
            notes = ["clamped to relation bounds"]
            parts = {"base": value, "floor": floor, "cap": cap, "relStrength": strength}
            prior_base = index.get(base_id)
            if prior_base is None:
                out.append(base_copy(existing, base_id, source=SOURCE))
            else:
                # The lens already copied the pre-lens value; the clamp input is the lensed one
                parts.update(base=prior_base.magnitude, lensed=value)
                notes.append(f"{base_id} holds the pre-lens value")
            out.append(
                derived_atom(
                    atom_id,
                    kind=existing.kind,
                    source=SOURCE,
                    magnitude=clamp_to_bounds(value, floor, cap),
                    used=[base_id, *rel_used],
                    notes=notes,
                    parts=parts,
                    subject=s,
                    target=other,
                    confidence=existing.confidence,
                    tags=[*existing.tags, "bounded"],
                    label=existing.label or f"{metric} toward {other}",
                    origin=existing.origin,
                )
            )
    return out


def _events_about(index: AtomIndex, actor: str, target: str) -> List[ContextAtom]:
    current = index.by_prefix("event:")
    seen = {e.id for e in current}
    # A remembered event that is also visible this tick counts once
    recalled = [e for e in index.by_prefix("mem:event:") if e.id[len("mem:"):] not in seen]
    return [e for e in [*current, *recalled] if e.subject == actor and e.target == target]


def derive_noncontext_baselines(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    nearby = index.nearby(s)
    out: List[ContextAtom] = []
    for other in index.others_of(s):
        rel, rel_used = relation_base(index, s, other)
        if max(rel.values()) < MIN_REL_STRENGTH and other not in nearby:
            continue
        shared = [*_events_about(index, other, s), *_events_about(index, s, other)]
        familiarity = clamp01(0.6 * rel["closeness"] + 0.4 * min(1.0, len(shared) / 5.0))
        predictability = clamp01(0.4 + 0.3 * rel["loyalty"] - 0.2 * rel["hostility"] + 0.3 * familiarity)
        used = [*rel_used, *(e.id for e in shared)]
        for metric, value in (("familiarity", familiarity), ("predictability", predictability)):
            out.append(
                derived_atom(
                    f"tom:baseline:{s}:{other}:{metric}",
                    kind="tom_baseline",
                    source=SOURCE,
                    magnitude=value,
                    used=used,
                    parts={"sharedEvents": len(shared), **rel},
                    subject=s,
                    target=other,
                    tags=["tom", "baseline", metric],
                    label=f"{metric} of {other}",
                )
            )
    return out


def apply_belief_bias(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []
    for other in index.others_of(s):
        trust_atom = index.get(f"tom:dyad:{s}:{other}:trust")
        threat_atom = index.get(f"tom:dyad:{s}:{other}:threat")
        if trust_atom is None and threat_atom is None:
            continue
        events = _events_about(index, other, s)
        harm = [e for e in events if _event_kind(e) in HARM_EVENT_KINDS]
        help_ = [e for e in events if _event_kind(e) in HELP_EVENT_KINDS]
        threat_bias = min(0.4, sum(0.15 * e.magnitude for e in harm))
        trust_bias = min(0.3, sum(0.1 * e.magnitude for e in help_))

        bias_ids: List[str] = []
        for metric, bias, sources in (("threat", threat_bias, harm), ("trust", trust_bias, help_)):
            if not sources:
                continue
            bias_id = f"tom:bias:{s}:{other}:{metric}"
            bias_ids.append(bias_id)
            out.append(
                derived_atom(
                    bias_id,
                    kind="tom_bias",
                    source=SOURCE,
                    magnitude=bias,
                    used=[e.id for e in sources],
                    parts={"events": len(sources)},
                    subject=s,
                    target=other,
                    tags=["tom", "bias", metric],
                    label=f"remembered events shift {metric} toward {other}",
                )
            )

        trust = trust_atom.magnitude if trust_atom else 0.5
        threat = threat_atom.magnitude if threat_atom else 0.0
        effective = {
            "trust": (clamp01(trust + trust_bias - 0.5 * threat_bias), trust_atom),
            "threat": (clamp01(threat + threat_bias - 0.3 * trust_bias), threat_atom),
        }
        for metric, (value, source_atom) in effective.items():
            out.append(
                derived_atom(
                    f"tom:effective:dyad:{s}:{other}:{metric}",
                    kind="tom_effective",
                    source=SOURCE,
                    magnitude=value,
                    used=[*([source_atom.id] if source_atom else []), *bias_ids],
                    parts={"trustBias": trust_bias, "threatBias": threat_bias},
                    subject=s,
                    target=other,
                    confidence=source_atom.confidence if source_atom else SEED_CONFIDENCE,
                    tags=["tom", "effective", metric],
                    label=f"effective {metric} toward {other}",
                )
            )
    return out


def _event_kind(atom: ContextAtom) -> str:
    # event:<kind>:<id> and mem:event:<kind>:<id>
    parts = atom.id.split(":")
    return parts[2] if parts[0] == "mem" else parts[1]


def derive_tom_policy(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []

    uncertainty = index.magnitude(f"ctx:uncertainty:{s}", 0.5)
    time_pressure = index.magnitude(f"ctx:timePressure:{s}")
    dyad_unc = [a for a in index.by_prefix(f"tom:dyad:{s}:") if a.id.endswith(":uncertainty")]
    max_dyad_unc = max((a.magnitude for a in dyad_unc), default=0.0)
    voi = clamp01(0.6 * uncertainty + 0.4 * max_dyad_unc)
    out.append(
        derived_atom(
            f"tom:mode:{s}",
            kind="tom_mode",
            source=SOURCE,
            magnitude=sigmoid(6.0 * (voi - time_pressure)),
            used=index.present([f"ctx:uncertainty:{s}", f"ctx:timePressure:{s}", *(a.id for a in dyad_unc)]),
            notes=["high = deliberate (System 2) reasoning about others"],
            parts={"voi": voi, "timePressure": time_pressure},
            subject=s,
            tags=["tom", "mode"],
            label="reasoning mode",
        )
    )

    for other in index.others_of(s):
        trust_atom = index.first([f"tom:effective:dyad:{s}:{other}:trust", f"tom:dyad:{s}:{other}:trust"])
        threat_atom = index.first([f"tom:effective:dyad:{s}:{other}:threat", f"tom:dyad:{s}:{other}:threat"])
        if trust_atom is None and threat_atom is None:
            continue
        trust = trust_atom.magnitude if trust_atom else 0.5
        threat = threat_atom.magnitude if threat_atom else 0.0
        support_id = f"tom:dyad:{s}:{other}:support"
        alignment_id = f"tom:dyad:{s}:{other}:alignment"
        support = index.magnitude(support_id, 0.5)
        alignment = index.magnitude(alignment_id, 0.5)
        used = [a.id for a in (trust_atom, threat_atom) if a is not None] + index.present([support_id, alignment_id])
        logits = {
            "help": -0.5 + 2.5 * (trust - 0.5) + 1.5 * (support - 0.5) - 1.5 * (threat - 0.5),
            "harm": -1.0 + 3.0 * (threat - 0.5) - 1.5 * (alignment - 0.5) - 1.0 * (trust - 0.5),
            "truth": 0.3 + 2.0 * (trust - 0.5) + 1.5 * (alignment - 0.5),
        }
        for name, logit in logits.items():
            out.append(
                derived_atom(
                    f"tom:policy:{s}:{other}:{name}",
                    kind="tom_policy",
                    source=SOURCE,
                    magnitude=sigmoid(logit),
                    used=used,
                    parts={"logit": logit},
                    subject=s,
                    target=other,
                    tags=["tom", "policy", name],
                    label=f"expects {other} to {name}",
                )
            )
    return out
