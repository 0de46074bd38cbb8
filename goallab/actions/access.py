"""
Access control for possibilities.

``access:<resource>:<self>`` atoms combine what the agent carries
(``cap:<resource>:<self>``) with what the location forbids
(``loc:access:ban.<resource>:<self>``). A possibility that names a required
access atom stays disabled unless that atom reaches the threshold.
"""

from typing import List, Sequence

from goallab.atoms import AtomIndex, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom, Possibility

SOURCE = "actions.access"

# Gated possibilities keep an atom, pinned below this magnitude
GATED_MAGNITUDE_CAP = 0.05


def derive_access(atoms: Sequence[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []
    for cap in index.by_prefix("cap:"):
        segments = cap.id.split(":")
        if len(segments) != 3 or segments[2] != s:
            continue
        resource = segments[1]
        access_id = f"access:{resource}:{s}"
        # Supplied access atoms win over the derived value
        if access_id in index:
            continue
        ban_id = f"loc:access:ban.{resource}:{s}"
        ban = index.magnitude(ban_id)
        out.append(
            derived_atom(
                access_id,
                kind="access",
                source=SOURCE,
                magnitude=cap.magnitude * (1.0 - ban),
                used=[cap.id, *index.present([ban_id])],
                parts={"capability": cap.magnitude, "ban": ban},
                subject=s,
                tags=["access", resource],
                label=f"access to {resource}",
            )
        )
    return out


def apply_access_gates(
    possibilities: Sequence[Possibility], atoms: Sequence[ContextAtom], *, threshold: float = 0.5
) -> List[Possibility]:
    """Disable possibilities whose required access atom is absent or below threshold."""
    index = AtomIndex(atoms)
    gated: List[Possibility] = []
    for possibility in possibilities:
        access_id = possibility.requires_access
        if access_id is None:
            gated.append(possibility)
            continue
        level = index.magnitude(access_id)
        if access_id in index and level >= threshold:
            gated.append(
                possibility.model_copy(update={"why_atom_ids": [*possibility.why_atom_ids, access_id]})
            )
            continue
        gated.append(
            possibility.model_copy(
                update={
                    "enabled": False,
                    "magnitude": min(possibility.magnitude, GATED_MAGNITUDE_CAP),
                    "blocked_by": [*possibility.blocked_by, access_id],
                }
            )
        )
    return gated
