"""
Social proximity enricher (S2).

Classifies every co-located agent as friend, enemy or neutral and aggregates
the result into the observer's felt social support and social threat.

Inputs per other agent: ``obs:nearby`` closeness, ToM dyads when memory
already holds them, otherwise the relation base; relation tags
(friend/lover/family) force the friend class.
"""

from typing import List, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom, noisy_or
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.social"

FRIEND_TRUST = 0.65
FRIEND_MAX_THREAT = 0.45
ENEMY_THREAT = 0.6
FRIEND_TAGS = ("friend", "lover", "family")


def dyad_trust_threat(index: AtomIndex, self_id: str, other: str) -> Tuple[float, float, List[str]]:
    """Best available trust/threat toward ``other`` with the ids they came from.

    Effective dyads (belief-biased) beat raw dyads, which beat the relation base.
    """
    used: List[str] = []
    trust_atom = index.first(
        [
            f"tom:effective:dyad:{self_id}:{other}:trust",
            f"tom:dyad:{self_id}:{other}:trust",
        ]
    )
    threat_atom = index.first(
        [
            f"tom:effective:dyad:{self_id}:{other}:threat",
            f"tom:dyad:{self_id}:{other}:threat",
        ]
    )
    rel = f"rel:base:{self_id}:{other}"
    loyalty = index.magnitude(f"{rel}:loyalty")
    closeness = index.magnitude(f"{rel}:closeness")
    hostility = index.magnitude(f"{rel}:hostility")
    if trust_atom is not None:
        trust = trust_atom.magnitude
        used.append(trust_atom.id)
    else:
        trust = clamp01(0.5 + 0.4 * loyalty + 0.3 * closeness - 0.6 * hostility)
        used.extend(index.present([f"{rel}:loyalty", f"{rel}:closeness", f"{rel}:hostility"]))
    if threat_atom is not None:
        threat = threat_atom.magnitude
        used.append(threat_atom.id)
    else:
        threat = clamp01(0.8 * hostility)
        used.extend(index.present([f"{rel}:hostility"]))
    return trust, threat, used


def derive_social_proximity(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    self_id = ctx.self_id
    nearby = index.nearby(self_id)
    if not nearby:
        return []

    out: List[ContextAtom] = []
    support_terms: List[float] = []
    threat_terms: List[float] = []
    support_used: List[str] = []
    threat_used: List[str] = []

    for other, closeness in nearby.items():
        near_id = f"obs:nearby:{self_id}:{other}"
        trust, threat, used = dyad_trust_threat(index, self_id, other)
        tag_ids = index.present(f"rel:tag:{self_id}:{other}:{tag}" for tag in FRIEND_TAGS)
        hostility = index.magnitude(f"rel:base:{self_id}:{other}:hostility")

        if tag_ids or (trust >= FRIEND_TRUST and threat <= FRIEND_MAX_THREAT):
            klass = "friend"
            support_terms.append(closeness * max(trust, 0.5 if tag_ids else 0.0))
            support_used.append(f"prox:friend:{self_id}:{other}")
        elif threat >= ENEMY_THREAT or hostility >= ENEMY_THREAT:
            klass = "enemy"
            threat_terms.append(closeness * max(threat, hostility))
            threat_used.append(f"prox:enemy:{self_id}:{other}")
        else:
            klass = "neutral"

        out.append(
            derived_atom(
                f"prox:{klass}:{self_id}:{other}",
                kind=f"proximity_{klass}",
                source=SOURCE,
                magnitude=closeness,
                used=[near_id, *used, *tag_ids],
                parts={"closeness": closeness, "trust": trust, "threat": threat},
                subject=self_id,
                target=other,
                tags=["social", klass],
                label=f"{other} is a nearby {klass}",
            )
        )

    out.append(
        derived_atom(
            f"soc:support:{self_id}",
            kind="social_support",
            source=SOURCE,
            magnitude=noisy_or(support_terms),
            used=support_used or [f"obs:nearby:{self_id}:{o}" for o in nearby],
            parts={"terms": support_terms},
            subject=self_id,
            label="felt support from nearby allies",
        )
    )
    out.append(
        derived_atom(
            f"soc:threat:{self_id}",
            kind="social_threat",
            source=SOURCE,
            magnitude=noisy_or(threat_terms),
            used=threat_used or [f"obs:nearby:{self_id}:{o}" for o in nearby],
            parts={"terms": threat_terms},
            subject=self_id,
            label="felt threat from nearby enemies",
        )
    )
    return out
