"""
Possibility derivation: the per-tick menu of candidate actions.

Each action kind has one rule reading specific atom ids. Structural
prohibitions are emitted as ``con:*`` atoms first and then cited in the
blocked possibility's ``blocked_by`` list, so every refusal is traceable.

Possibility atoms are always emitted, enabled or not, so the decision layer
can explain why an action scored low instead of it silently not existing.
"""

from typing import List, Optional, Sequence, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.enrichment.social import dyad_trust_threat
from goallab.schemas import ContextAtom, Possibility

SOURCE = "actions.possibilities"

NO_VIOLENCE_ID = "con:protocol:noViolence"
PROTOCOL_STRICT_THRESHOLD = 0.6
TABOO_TAGS = ("lover", "friend", "family", "protected")

AGGRESSION_THRESHOLD = 0.35
MIN_TARGET_CLOSENESS = 0.15
MIN_COVER = 0.2
MIN_ESCAPE = 0.2
MIN_HELP_TRUST = 0.35
MIN_SECRET_TRUST = 0.6
MIN_SECRET_PRIVACY = 0.4

SELF_KINDS = ("hide", "escape", "wait")
TARGETED_KINDS = ("talk", "help", "share_secret", "attack")


def possibility_id(kind: str, target_id: Optional[str] = None) -> str:
    return f"aff:{kind}:{target_id}" if target_id else f"aff:{kind}"


def taboo_id(self_id: str, other: str) -> str:
    return f"con:taboo:attack:{self_id}:{other}"


def derive_constraints(atoms: Sequence[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    """Emit ``con:*`` atoms for the prohibitions that hold this tick."""
    index = AtomIndex(atoms)
    s = ctx.self_id
    out: List[ContextAtom] = []

    strict_id = f"ctx:proceduralStrict:{s}"
    strict = index.magnitude(strict_id)
    # A supplied constraint atom (scenario or override) is kept as-is
    if NO_VIOLENCE_ID not in index and strict > PROTOCOL_STRICT_THRESHOLD:
        out.append(
            derived_atom(
                NO_VIOLENCE_ID,
                kind="constraint",
                source=SOURCE,
                magnitude=strict,
                used=[strict_id],
                parts={"proceduralStrict": strict, "threshold": PROTOCOL_STRICT_THRESHOLD},
                subject=s,
                tags=["constraint", "protocol", "violence"],
                label="protocol forbids violence",
            )
        )

    for other in index.others_of(s):
        tag_ids = index.present(f"rel:tag:{s}:{other}:{tag}" for tag in TABOO_TAGS)
        if not tag_ids:
            continue
        out.append(
            derived_atom(
                taboo_id(s, other),
                kind="constraint",
                source=SOURCE,
                magnitude=1.0,
                used=tag_ids,
                parts={"tags": [t.rsplit(":", 1)[-1] for t in tag_ids]},
                subject=s,
                target=other,
                tags=["constraint", "taboo", "attack"],
                label=f"taboo: cannot attack {other}",
            )
        )
    return out


def active_constraints(index: AtomIndex, ctx: StageContext, target_id: Optional[str]) -> List[str]:
    """Ids of constraints that block violence toward ``target_id``."""
    s = ctx.self_id
    blocking: List[str] = []
    no_violence = index.get(NO_VIOLENCE_ID)
    if no_violence is not None and no_violence.magnitude > 0.0:
        blocking.append(NO_VIOLENCE_ID)
    if target_id is not None:
        taboo = index.get(taboo_id(s, target_id))
        if taboo is not None and taboo.magnitude > 0.0:
            blocking.append(taboo.id)
    return blocking


def _make(
    kind: str,
    *,
    target_id: Optional[str] = None,
    magnitude: float,
    enabled: bool,
    why: Sequence[str],
    blocked_by: Sequence[str] = (),
    requires_access: Optional[str] = None,
    label: str,
) -> Possibility:
    return Possibility(
        id=possibility_id(kind, target_id),
        kind=kind,
        action_id=kind,
        target_id=target_id,
        label=label,
        magnitude=clamp01(magnitude),
        enabled=enabled and not blocked_by,
        blocked_by=list(blocked_by),
        why_atom_ids=list(dict.fromkeys(why)),
        requires_access=requires_access,
    )


def _self_possibilities(index: AtomIndex, s: str) -> List[Possibility]:
    cover_atom = index.first([f"ctx:cover:{s}", f"world:map:cover:{s}"])
    escape_atom = index.first([f"ctx:escape:{s}", f"world:map:escape:{s}"])
    cover = cover_atom.magnitude if cover_atom else 0.0
    escape = escape_atom.magnitude if escape_atom else 0.0
    surveillance = index.magnitude(f"ctx:surveillance:{s}")
    time_pressure = index.magnitude(f"ctx:timePressure:{s}")
    danger = index.magnitude(f"ctx:danger:{s}")

    return [
        _make(
            "hide",
            magnitude=0.7 * cover + 0.3 * (1.0 - surveillance),
            enabled=cover > MIN_COVER,
            why=[*(a.id for a in [cover_atom] if a), *index.present([f"ctx:surveillance:{s}"])],
            label="Hide (use cover)",
        ),
        _make(
            "escape",
            magnitude=escape * (0.6 + 0.4 * danger),
            enabled=escape > MIN_ESCAPE,
            why=[*(a.id for a in [escape_atom] if a), *index.present([f"ctx:danger:{s}"])],
            label="Escape",
        ),
        _make(
            "wait",
            magnitude=0.6 - 0.4 * time_pressure,
            enabled=True,
            why=index.present([f"ctx:timePressure:{s}"]),
            label="Wait",
        ),
    ]


def _targeted_possibilities(index: AtomIndex, ctx: StageContext, other: str, closeness: float) -> List[Possibility]:
    s = ctx.self_id
    nearby_id = f"obs:nearby:{s}:{other}"
    trust, threat, dyad_used = dyad_trust_threat(index, s, other)
    privacy = index.magnitude(f"ctx:privacy:{s}", 0.5)
    anger = index.magnitude(f"emo:anger:{s}")
    danger = index.magnitude(f"ctx:danger:{s}")
    reachable = closeness > MIN_TARGET_CLOSENESS

    aggression = 0.6 * anger + 0.4 * danger
    attack_blocked = active_constraints(index, ctx, other)

    return [
        _make(
            "talk",
            target_id=other,
            magnitude=closeness * (0.6 + 0.4 * (1.0 - threat)),
            enabled=reachable,
            why=[nearby_id, *dyad_used],
            label=f"Talk to {other}",
        ),
        _make(
            "help",
            target_id=other,
            magnitude=closeness * trust,
            enabled=reachable and trust >= MIN_HELP_TRUST,
            why=[nearby_id, *dyad_used],
            label=f"Help {other}",
        ),
        _make(
            "share_secret",
            target_id=other,
            magnitude=closeness * trust * privacy,
            enabled=reachable and trust >= MIN_SECRET_TRUST and privacy >= MIN_SECRET_PRIVACY,
            why=[nearby_id, *dyad_used, *index.present([f"ctx:privacy:{s}"])],
            label=f"Share a secret with {other}",
        ),
        _make(
            "attack",
            target_id=other,
            magnitude=aggression * (0.5 + 0.5 * closeness),
            enabled=reachable and aggression >= AGGRESSION_THRESHOLD,
            why=[nearby_id, *index.present([f"emo:anger:{s}", f"ctx:danger:{s}"])],
            blocked_by=attack_blocked,
            requires_access=f"access:weapon:{s}",
            label=f"Attack {other}",
        ),
    ]


def derive_possibilities(
    atoms: Sequence[ContextAtom], ctx: StageContext
) -> Tuple[List[Possibility], List[ContextAtom]]:
    """Return the possibility menu and the constraint atoms it cites.

    Constraints are computed first and visible to the possibility rules.
    """
    constraints = derive_constraints(atoms, ctx)
    index = AtomIndex([*atoms, *constraints])
    possibilities = _self_possibilities(index, ctx.self_id)
    for other, closeness in index.nearby(ctx.self_id).items():
        if other == ctx.self_id:
            continue
        possibilities.extend(_targeted_possibilities(index, ctx, other, closeness))
    return possibilities, constraints


def possibility_atom(possibility: Possibility, self_id: str) -> ContextAtom:
    used = [*possibility.why_atom_ids, *possibility.blocked_by]
    if possibility.cost_atom_id:
        used.append(possibility.cost_atom_id)
    return derived_atom(
        possibility.id,
        kind="possibility",
        source=SOURCE,
        magnitude=possibility.magnitude,
        used=used,
        parts={
            "kind": possibility.kind,
            "enabled": possibility.enabled,
            "blockedBy": list(possibility.blocked_by),
            "cost": possibility.cost,
            "requiresAccess": possibility.requires_access,
        },
        subject=self_id,
        target=possibility.target_id,
        confidence=possibility.confidence,
        tags=["aff", possibility.kind, "enabled" if possibility.enabled else "blocked"],
        label=possibility.label,
    )
