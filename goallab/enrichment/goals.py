"""
Goal ecology (S7).

1. Score every goal domain from drivers and context: ``goal:domain:<d>:<self>``.
2. Rank planning goals; the top ones become ``goal:active:<d>:<self>`` with
   their activation as goal energy.
3. Link active goals to the actions they permit: ``goal:hint:allow:<d>:<action>``.
4. Project into the util layer, the only goal-derived input the action layer
   may read: ``util:activeGoal:<self>:<d>`` and ``util:hint:allow:<d>:<action>``.

Hint deltas are bipolar in [-1, 1] and stored as magnitude ``(delta + 1) / 2``.
"""

from typing import Dict, List, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.goals"

GOAL_DOMAINS = ("safety", "control", "affiliation", "status", "exploration", "order", "rest", "wealth")

# Planning goals below this activation are never promoted
MIN_ACTIVE_ENERGY = 0.05

# domain -> action kind -> expected progress in [-1, 1]
DOMAIN_ACTION_DELTAS: Dict[str, Dict[str, float]] = {
    "safety": {"hide": 0.7, "escape": 0.8, "wait": 0.1, "talk": 0.1, "help": -0.1, "share_secret": -0.2, "attack": 0.2},
    "control": {"attack": 0.4, "talk": 0.3, "hide": 0.2, "help": 0.1, "escape": -0.1, "wait": -0.1, "share_secret": -0.1},
    "affiliation": {"talk": 0.6, "help": 0.7, "share_secret": 0.6, "attack": -0.8, "hide": -0.2, "escape": -0.3},
    "status": {"attack": 0.3, "talk": 0.2, "help": 0.3, "hide": -0.3, "escape": -0.4, "share_secret": -0.1, "wait": -0.1},
    "exploration": {"talk": 0.4, "escape": 0.2, "share_secret": 0.2, "hide": -0.1, "wait": -0.2},
    "order": {"wait": 0.3, "help": 0.3, "talk": 0.2, "attack": -0.7, "escape": -0.2, "share_secret": -0.3},
    "rest": {"wait": 0.7, "hide": 0.3, "talk": -0.1, "help": -0.3, "escape": -0.4, "attack": -0.6},
    "wealth": {"talk": 0.2, "attack": 0.2, "share_secret": 0.1, "help": -0.1},
}


def delta_to_magnitude(delta: float) -> float:
    return clamp01((delta + 1.0) / 2.0)


def magnitude_to_delta(magnitude: float) -> float:
    return max(-1.0, min(1.0, 2.0 * magnitude - 1.0))


def _domain_inputs(index: AtomIndex, s: str) -> Dict[str, Tuple[float, List[str]]]:
    def m(atom_id: str) -> float:
        return index.magnitude(atom_id)

    drv = {name: f"drv:{name}:{s}" for name in (
        "safetyNeed", "controlNeed", "statusNeed", "affiliationNeed", "resolveNeed", "restNeed", "curiosityNeed"
    )}
    return {
        "safety": (0.8 * m(drv["safetyNeed"]) + 0.2 * m(f"ctx:danger:{s}"), [drv["safetyNeed"], f"ctx:danger:{s}"]),
        "control": (
            0.6 * m(drv["controlNeed"]) + 0.4 * m(drv["resolveNeed"]),
            [drv["controlNeed"], drv["resolveNeed"]],
        ),
        "affiliation": (
            0.8 * m(drv["affiliationNeed"]) + 0.2 * m(f"emo:care:{s}"),
            [drv["affiliationNeed"], f"emo:care:{s}"],
        ),
        "status": (m(drv["statusNeed"]), [drv["statusNeed"]]),
        "exploration": (m(drv["curiosityNeed"]), [drv["curiosityNeed"]]),
        "order": (
            0.6 * m(f"ctx:normPressure:{s}") + 0.4 * m(f"ctx:proceduralStrict:{s}"),
            [f"ctx:normPressure:{s}", f"ctx:proceduralStrict:{s}"],
        ),
        "rest": (m(drv["restNeed"]), [drv["restNeed"]]),
        "wealth": (0.7 * m(f"ctx:scarcity:{s}"), [f"ctx:scarcity:{s}"]),
    }


def score_goal_domains(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    return [
        derived_atom(
            f"goal:domain:{domain}:{s}",
            kind="goal_domain",
            source=SOURCE,
            magnitude=clamp01(value),
            used=index.present(used),
            parts={"activation": clamp01(value)},
            subject=s,
            tags=["goal", domain],
            label=f"{domain} goal activation",
        )
        for domain, (value, used) in _domain_inputs(index, s).items()
    ]


def rank_planning_goals(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    domains = [
        (domain, index.magnitude(f"goal:domain:{domain}:{s}"))
        for domain in GOAL_DOMAINS
        if f"goal:domain:{domain}:{s}" in index
    ]
    # Stable tie-break on domain order keeps the ranking deterministic
    ranked = sorted(domains, key=lambda item: (-item[1], GOAL_DOMAINS.index(item[0])))
    out: List[ContextAtom] = []
    for rank, (domain, energy) in enumerate(ranked[: ctx.settings.planning_goal_count], start=1):
        if energy < MIN_ACTIVE_ENERGY:
            break
        out.append(
            derived_atom(
                f"goal:active:{domain}:{s}",
                kind="goal_active",
                source=SOURCE,
                magnitude=energy,
                used=[f"goal:domain:{domain}:{s}"],
                parts={"rank": rank, "energy": energy},
                subject=s,
                tags=["goal", "active", domain],
                label=f"planning goal #{rank}: {domain}",
            )
        )
    return out


def link_goal_actions(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []
    for active in index.by_prefix("goal:active:"):
        if active.subject != s:
            continue
        domain = active.id.split(":")[2]
        for action, delta in DOMAIN_ACTION_DELTAS.get(domain, {}).items():
            out.append(
                derived_atom(
                    f"goal:hint:allow:{domain}:{action}",
                    kind="goal_hint",
                    source=SOURCE,
                    magnitude=delta_to_magnitude(delta),
                    used=[active.id],
                    parts={"delta": delta},
                    subject=s,
                    tags=["goal", "hint", domain, action],
                    label=f"{action} serves {domain} ({delta:+.2f})",
                )
            )
    return out


def project_goals_to_util(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []
    for active in index.by_prefix("goal:active:"):
        if active.subject != s:
            continue
        domain = active.id.split(":")[2]
        out.append(
            derived_atom(
                f"util:activeGoal:{s}:{domain}",
                kind="util_goal_energy",
                source=SOURCE,
                magnitude=active.magnitude,
                used=[active.id],
                parts={"energy": active.magnitude},
                subject=s,
                tags=["util", domain],
                label=f"goal energy for {domain}",
            )
        )
    for hint in index.by_prefix("goal:hint:allow:"):
        _, _, _, domain, action = hint.id.split(":")
        out.append(
            derived_atom(
                f"util:hint:allow:{domain}:{action}",
                kind="util_hint",
                source=SOURCE,
                magnitude=hint.magnitude,
                used=[hint.id],
                parts={"delta": magnitude_to_delta(hint.magnitude)},
                subject=s,
                tags=["util", "hint", domain, action],
                label=hint.label,
            )
        )
    return out
