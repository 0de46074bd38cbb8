"""Base action priors toward each known agent: help, harm, ask_info, avoid, confront."""

from typing import List, Sequence

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "actions.priors"

PRIOR_KINDS = ("help", "harm", "ask_info", "avoid", "confront")


def prior_id(self_id: str, other: str, prior: str) -> str:
    return f"act:prior:{self_id}:{other}:{prior}"


def derive_action_priors(atoms: Sequence[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    danger = index.magnitude(f"ctx:danger:{s}")
    norm = index.magnitude(f"ctx:normPressure:{s}")
    publicness = index.magnitude(f"ctx:publicness:{s}")
    surveillance = index.magnitude(f"ctx:surveillance:{s}")
    # Norms and being watched push toward the safer actions
    social_risk = clamp01(0.45 * publicness + 0.35 * surveillance + 0.20 * norm)

    out: List[ContextAtom] = []
    for other in index.others_of(s):
        rel = f"rel:base:{s}:{other}"
        hostility = index.magnitude(f"{rel}:hostility")
        closeness = index.magnitude(f"{rel}:closeness", 0.2)
        obligation = index.magnitude(f"{rel}:dependency")
        respect = index.magnitude(f"{rel}:authority")
        trust_atom = index.first([f"tom:effective:dyad:{s}:{other}:trust", f"tom:dyad:{s}:{other}:trust"])
        threat_atom = index.first([f"tom:effective:dyad:{s}:{other}:threat", f"tom:dyad:{s}:{other}:threat"])
        trust = trust_atom.magnitude if trust_atom else 0.5
        threat = threat_atom.magnitude if threat_atom else 0.2

        values = {
            "help": clamp01(0.55 * trust + 0.20 * closeness + 0.20 * obligation - 0.30 * threat)
            * clamp01(1.0 - 0.45 * danger),
            "harm": clamp01(0.70 * hostility + 0.25 * threat - 0.20 * trust) * clamp01(1.0 - 0.60 * social_risk),
            "ask_info": clamp01(0.35 + 0.25 * (1.0 - trust) + 0.25 * (1.0 - closeness) + 0.15 * respect)
            * clamp01(1.0 - 0.25 * danger),
            "avoid": clamp01(0.25 + 0.55 * threat + 0.25 * danger + 0.15 * social_risk - 0.25 * obligation),
            "confront": clamp01(
                0.20 + 0.50 * hostility + 0.25 * (1.0 - social_risk) + 0.15 * respect - 0.35 * danger
            ),
        }
        used = index.present(
            [
                f"ctx:danger:{s}",
                f"ctx:normPressure:{s}",
                f"ctx:publicness:{s}",
                f"ctx:surveillance:{s}",
                f"{rel}:hostility",
                f"{rel}:closeness",
                f"{rel}:dependency",
                f"{rel}:authority",
            ]
        ) + [a.id for a in (trust_atom, threat_atom) if a is not None]
        inputs = {"trust": trust, "threat": threat, "hostility": hostility, "socialRisk": social_risk, "danger": danger}
        for prior in PRIOR_KINDS:
            out.append(
                derived_atom(
                    prior_id(s, other, prior),
                    kind="action_prior",
                    source=SOURCE,
                    magnitude=values[prior],
                    used=used,
                    notes=["base action priors"],
                    parts=inputs,
                    subject=s,
                    target=other,
                    tags=["act", "prior", prior],
                    label=f"prior.{prior}:{round(values[prior] * 100)}%",
                )
            )
    return out
