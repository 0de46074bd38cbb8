"""
Appraisal -> emotion -> dyadic emotion chain (S4).

Appraisals read the lensed context; emotions combine appraisals and are tilted
by personality traits; dyadic emotions color each relationship with the
observer's current emotional state.
"""

from typing import Dict, List, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.emotion"

# Strength of trait tilt on base emotion intensity
TRAIT_TILT_ALPHA = 0.35

# emotion -> (trait, direction); direction -1 means a high trait value dampens it
EMOTION_TILT: Dict[str, Tuple[str, int]] = {
    "fear": ("neuroticism", 1),
    "anger": ("agreeableness", -1),
    "shame": ("conscientiousness", 1),
    "relief": ("neuroticism", -1),
    "resolve": ("conscientiousness", 1),
    "care": ("agreeableness", 1),
    "arousal": ("neuroticism", 1),
}


def derive_appraisals(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id

    def ctx_axis(name: str, default: float = 0.0) -> float:
        return index.magnitude(f"ctx:{name}:{s}", default)

    threat = index.magnitude(f"threat:final:{s}", ctx_axis("danger"))
    control = ctx_axis("control", 0.5)
    uncertainty = ctx_axis("uncertainty", 0.5)
    escape = ctx_axis("escape", 0.5)
    scarcity = ctx_axis("scarcity")
    support = index.magnitude(f"soc:support:{s}")
    friends = index.by_prefix(f"prox:friend:{s}:")
    attachment = max([support, *(a.magnitude for a in friends)])

    appraisals = {
        "threat": (threat, [f"threat:final:{s}", f"ctx:danger:{s}"]),
        "uncertainty": (uncertainty, [f"ctx:uncertainty:{s}"]),
        "control": (control, [f"ctx:control:{s}"]),
        "pressure": (
            clamp01(0.5 * ctx_axis("timePressure") + 0.3 * ctx_axis("normPressure") + 0.2 * ctx_axis("surveillance")),
            [f"ctx:timePressure:{s}", f"ctx:normPressure:{s}", f"ctx:surveillance:{s}"],
        ),
        "attachment": (attachment, [f"soc:support:{s}", *(a.id for a in friends)]),
        "loss": (index.magnitude(f"scene:loss:{s}"), [f"scene:loss:{s}"]),
        "goalBlock": (
            clamp01(0.6 * scarcity * (1.0 - control) + 0.4 * threat * (1.0 - escape)),
            [f"ctx:scarcity:{s}", f"ctx:control:{s}", f"threat:final:{s}", f"ctx:escape:{s}"],
        ),
    }
    return [
        derived_atom(
            f"app:{name}:{s}",
            kind="appraisal",
            source=SOURCE,
            magnitude=value,
            used=index.present(used),
            parts={"value": value},
            subject=s,
            tags=["appraisal", name],
            label=f"appraised {name}",
        )
        for name, (value, used) in appraisals.items()
    ]


def derive_emotions(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id

    def app(name: str) -> float:
        return index.magnitude(f"app:{name}:{s}")

    threat, control, uncertainty = app("threat"), app("control"), app("uncertainty")
    pressure, attachment, loss, block = app("pressure"), app("attachment"), app("loss"), app("goalBlock")
    norm = index.magnitude(f"ctx:normPressure:{s}")

    base = {
        "fear": (threat * (1.0 - control) * (0.6 + 0.4 * uncertainty), ["threat", "control", "uncertainty"]),
        "anger": (block * (0.5 + 0.5 * control) + 0.3 * threat * control, ["goalBlock", "control", "threat"]),
        "shame": (pressure * norm + 0.3 * loss * pressure, ["pressure", "loss"]),
        "relief": (0.8 * (1.0 - threat) * control * (1.0 - block), ["threat", "control", "goalBlock"]),
        "resolve": (
            (0.5 * control + 0.3 * attachment + 0.2 * threat) * (1.0 - 0.5 * uncertainty),
            ["control", "attachment", "threat", "uncertainty"],
        ),
        "care": (attachment * (1.0 - 0.5 * threat), ["attachment", "threat"]),
        "arousal": (0.5 * threat + 0.3 * pressure + 0.2 * uncertainty, ["threat", "pressure", "uncertainty"]),
    }

    out: List[ContextAtom] = []
    values: Dict[str, float] = {}
    for name, (raw, inputs) in base.items():
        trait, direction = EMOTION_TILT[name]
        trait_id = f"feat:char:{s}:trait.{trait}"
        tilt = direction * (2.0 * index.magnitude(trait_id, 0.5) - 1.0)
        value = clamp01(clamp01(raw) * (1.0 + TRAIT_TILT_ALPHA * tilt))
        values[name] = value
        out.append(
            derived_atom(
                f"emo:{name}:{s}",
                kind="emotion",
                source=SOURCE,
                magnitude=value,
                used=index.present([*(f"app:{i}:{s}" for i in inputs), trait_id]),
                parts={"raw": clamp01(raw), "tilt": tilt, "alpha": TRAIT_TILT_ALPHA},
                subject=s,
                tags=["emotion", name],
                label=name,
            )
        )

    # Bipolar valence mapped into [0,1] with 0.5 as neutral
    valence = clamp01(
        0.5 + 0.25 * (values["relief"] + values["care"] - values["fear"] - values["anger"] - values["shame"])
    )
    out.append(
        derived_atom(
            f"emo:valence:{s}",
            kind="emotion",
            source=SOURCE,
            magnitude=valence,
            used=[f"emo:{n}:{s}" for n in ("relief", "care", "fear", "anger", "shame")],
            parts={"neutral": 0.5},
            subject=s,
            tags=["emotion", "valence"],
            label="valence",
        )
    )
    return out


def derive_dyadic_emotions(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    s = ctx.self_id
    fear = index.magnitude(f"emo:fear:{s}")
    anger = index.magnitude(f"emo:anger:{s}")
    care = index.magnitude(f"emo:care:{s}")
    out: List[ContextAtom] = []

    for other in index.others_of(s):
        rel = f"rel:base:{s}:{other}"
        trust_atom = index.get(f"tom:dyad:{s}:{other}:trust")
        threat_atom = index.get(f"tom:dyad:{s}:{other}:threat")
        loyalty = index.magnitude(f"{rel}:loyalty")
        closeness = index.magnitude(f"{rel}:closeness")
        hostility = index.magnitude(f"{rel}:hostility")
        authority = index.magnitude(f"{rel}:authority")
        trust = trust_atom.magnitude if trust_atom else clamp01(0.5 + 0.4 * loyalty + 0.3 * closeness - 0.6 * hostility)
        threat = threat_atom.magnitude if threat_atom else clamp01(0.8 * hostility)
        used_rel = index.present([f"{rel}:{m}" for m in ("loyalty", "closeness", "hostility", "authority")])
        used_dyad = [a.id for a in (trust_atom, threat_atom) if a is not None]

        dyadic = {
            "fearOf": (threat * (0.5 + 0.5 * fear), [f"emo:fear:{s}"]),
            "affinity": (trust * (0.5 + 0.5 * care), [f"emo:care:{s}"]),
            "hostility": (threat * (0.5 + 0.5 * anger), [f"emo:anger:{s}"]),
            "gratitude": (trust * closeness * (0.5 + 0.5 * care), [f"emo:care:{s}"]),
            "respect": (clamp01(0.6 * authority + 0.4 * trust * loyalty), []),
        }
        for name, (value, emo_used) in dyadic.items():
            out.append(
                derived_atom(
                    f"emo:dyad:{name}:{s}:{other}",
                    kind="emotion_dyad",
                    source=SOURCE,
                    magnitude=value,
                    used=[*index.present(emo_used), *used_dyad, *used_rel],
                    parts={"trust": trust, "threat": threat},
                    subject=s,
                    target=other,
                    tags=["emotion", "dyad", name],
                    label=f"{name} toward {other}",
                )
            )
    return out
