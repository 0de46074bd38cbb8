"""
Drivers bridge (S6).

Compresses the enriched context into a small scoreboard of motivational
pressures (``mind:*``), then derives the driver atoms (``drv:*``) that goal
scoring consumes.
"""

from typing import Dict, List, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.drivers"


def compute_scoreboard(index: AtomIndex, self_id: str) -> Dict[str, Tuple[float, List[str]]]:
    s = self_id
    threat_id = index.first([f"threat:final:{s}", f"ctx:danger:{s}"])
    return {
        "threat": (threat_id.magnitude if threat_id else 0.0, [threat_id.id] if threat_id else []),
        "pressure": (index.magnitude(f"app:pressure:{s}"), index.present([f"app:pressure:{s}"])),
        "support": (index.magnitude(f"soc:support:{s}"), index.present([f"soc:support:{s}"])),
        "crowd": (index.magnitude(f"ctx:crowd:{s}"), index.present([f"ctx:crowd:{s}"])),
    }


def atomize_scoreboard(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    return [
        derived_atom(
            f"mind:{metric}:{ctx.self_id}",
            kind="mind_metric",
            source=SOURCE,
            magnitude=value,
            used=used,
            parts={"value": value},
            subject=ctx.self_id,
            tags=["mind", metric],
            label=f"scoreboard {metric}",
        )
        for metric, (value, used) in compute_scoreboard(index, ctx.self_id).items()
    ]


def derive_drivers(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id

    def m(atom_id: str, default: float = 0.0) -> float:
        return index.magnitude(atom_id, default)

    threat = m(f"mind:threat:{s}")
    pressure = m(f"mind:pressure:{s}")
    support = m(f"mind:support:{s}")
    uncertainty = m(f"ctx:uncertainty:{s}", 0.5)

    drivers = {
        "safetyNeed": (
            0.6 * threat + 0.4 * m(f"emo:fear:{s}"),
            [f"mind:threat:{s}", f"emo:fear:{s}"],
        ),
        "controlNeed": (
            0.5 * (1.0 - m(f"ctx:control:{s}", 0.5)) + 0.3 * m(f"app:uncertainty:{s}") + 0.2 * pressure,
            [f"ctx:control:{s}", f"app:uncertainty:{s}", f"mind:pressure:{s}"],
        ),
        "statusNeed": (
            0.5 * m(f"ctx:hierarchy:{s}") + 0.3 * m(f"emo:shame:{s}") + 0.2 * m(f"ctx:publicness:{s}"),
            [f"ctx:hierarchy:{s}", f"emo:shame:{s}", f"ctx:publicness:{s}"],
        ),
        "affiliationNeed": (
            0.5 * (1.0 - support) * (0.5 + 0.5 * m(f"emo:care:{s}")) + 0.3 * m(f"app:attachment:{s}"),
            [f"mind:support:{s}", f"emo:care:{s}", f"app:attachment:{s}"],
        ),
        "resolveNeed": (
            0.5 * m(f"emo:resolve:{s}") + 0.5 * m(f"app:goalBlock:{s}"),
            [f"emo:resolve:{s}", f"app:goalBlock:{s}"],
        ),
        "restNeed": (
            0.7 * m(f"body:fatigue:{s}") + 0.3 * m(f"body:pain:{s}"),
            [f"body:fatigue:{s}", f"body:pain:{s}"],
        ),
        "curiosityNeed": (
            uncertainty * (1.0 - threat),
            [f"ctx:uncertainty:{s}", f"mind:threat:{s}"],
        ),
    }
    return [
        derived_atom(
            f"drv:{name}:{s}",
            kind="driver",
            source=SOURCE,
            magnitude=clamp01(value),
            used=index.present(used),
            parts={"raw": value},
            subject=s,
            tags=["driver", name],
            label=name,
        )
        for name, (value, used) in drivers.items()
    ]
