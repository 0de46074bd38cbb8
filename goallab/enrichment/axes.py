"""
Context axes (S2).

Derives the objective situational axes ``ctx:<axis>:<self>`` from S0
observations plus the social-proximity and hazard-geometry enrichers. An axis
already present in the atom set (a manual override or a recalled belief) is
pinned and not re-derived.
"""

from typing import Callable, Dict, List, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom, noisy_or
from goallab.context import StageContext
from goallab.schemas import ContextAtom

SOURCE = "enrichment.axes"

AXES = (
    "danger",
    "control",
    "intimacy",
    "hierarchy",
    "publicness",
    "surveillance",
    "privacy",
    "crowd",
    "normPressure",
    "proceduralStrict",
    "scarcity",
    "timePressure",
    "uncertainty",
    "legitimacy",
    "secrecy",
    "cover",
    "escape",
)


class _Inputs:
    """Named input lookups that remember which atom ids were read."""

    def __init__(self, index: AtomIndex, self_id: str):
        self.index = index
        self.self_id = self_id

    def read(self, atom_id: str, default: float = 0.0) -> Tuple[float, List[str]]:
        atom = self.index.get(atom_id)
        if atom is None:
            return default, []
        return atom.magnitude, [atom_id]

    def loc(self, metric: str, default: float = 0.0) -> Tuple[float, List[str]]:
        return self.read(f"world:loc:{metric}:{self.self_id}", default)

    def map(self, metric: str, default: float = 0.0) -> Tuple[float, List[str]]:
        return self.read(f"world:map:{metric}:{self.self_id}", default)

    def scene(self, metric: str) -> Tuple[float, List[str]]:
        return self.read(f"scene:{metric}:{self.self_id}")


def _max_relation(index: AtomIndex, self_id: str, metric: str, others: List[str]) -> Tuple[float, List[str]]:
    best, used = 0.0, []
    for other in others:
        atom_id = f"rel:base:{self_id}:{other}:{metric}"
        value = index.magnitude(atom_id)
        if atom_id in index and value > best:
            best, used = value, [atom_id]
    return best, used


def derive_axes(atoms: List[ContextAtom], ctx: StageContext) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    self_id = ctx.self_id
    src = _Inputs(index, self_id)
    nearby = list(index.nearby(self_id))

    privacy, u_privacy = src.loc("privacy", 0.5)
    control_loc, u_control = src.loc("control", 0.5)
    crowd, u_crowd = src.loc("crowd")
    norm, u_norm = src.loc("normPressure", 0.3)
    strict, u_strict = src.loc("proceduralStrict")
    surveillance_loc, u_surv = src.loc("surveillance")
    hierarchy_loc, u_hier = src.loc("hierarchy")
    resources, u_res = src.loc("resources", 1.0)
    cover, u_cover = src.map("cover")
    escape, u_escape = src.map("escape", 0.5)
    map_danger, u_mdanger = src.map("danger")
    hazard, u_hazard = src.map("hazardProximity")
    scene_threat, u_sthreat = src.scene("threat")
    chaos, u_chaos = src.scene("chaos")
    urgency, u_urgency = src.scene("urgency")
    scene_scarcity, u_sscarcity = src.scene("scarcity")
    info, u_info = src.read(f"obs:infoAdequacy:{self_id}", 0.5)
    soc_threat, u_socthreat = src.read(f"soc:threat:{self_id}")
    authority, u_auth = _max_relation(index, self_id, "authority", nearby)
    friends = index.by_prefix(f"prox:friend:{self_id}:")
    friend_close = max((a.magnitude for a in friends), default=0.0)
    u_friends = [a.id for a in friends]

    danger = noisy_or([map_danger, scene_threat, 0.7 * hazard, 0.6 * soc_threat, 0.3 * chaos])
    publicness = clamp01(0.6 * (1.0 - privacy) + 0.4 * crowd)
    surveillance = clamp01(max(surveillance_loc, 0.5 * control_loc * (1.0 - privacy)))

    formulas: Dict[str, Callable[[], Tuple[float, List[str], Dict[str, float]]]] = {
        "danger": lambda: (
            danger,
            u_mdanger + u_sthreat + u_hazard + u_socthreat + u_chaos,
            {"map": map_danger, "scene": scene_threat, "hazard": hazard, "social": soc_threat, "chaos": chaos},
        ),
        "control": lambda: (
            clamp01(0.5 * control_loc + 0.25 * escape + 0.25 * (1.0 - chaos)),
            u_control + u_escape + u_chaos,
            {"location": control_loc, "escape": escape, "chaos": chaos},
        ),
        "intimacy": lambda: (
            clamp01(0.6 * privacy * (1.0 - crowd) + 0.4 * friend_close),
            u_privacy + u_crowd + u_friends,
            {"privacy": privacy, "crowd": crowd, "friendCloseness": friend_close},
        ),
        "hierarchy": lambda: (
            clamp01(max(hierarchy_loc, 0.7 * authority)),
            u_hier + u_auth,
            {"location": hierarchy_loc, "authority": authority},
        ),
        "publicness": lambda: (publicness, u_privacy + u_crowd, {"privacy": privacy, "crowd": crowd}),
        "surveillance": lambda: (
            surveillance,
            u_surv + u_control + u_privacy,
            {"location": surveillance_loc, "control": control_loc},
        ),
        "privacy": lambda: (privacy, u_privacy, {"location": privacy}),
        "crowd": lambda: (crowd, u_crowd, {"location": crowd}),
        "normPressure": lambda: (
            clamp01(0.7 * norm + 0.3 * surveillance),
            u_norm + u_surv,
            {"norm": norm, "surveillance": surveillance},
        ),
        "proceduralStrict": lambda: (
            clamp01(max(strict, 0.5 * control_loc * norm)),
            u_strict + u_control + u_norm,
            {"location": strict, "control": control_loc, "norm": norm},
        ),
        "scarcity": lambda: (
            clamp01(max(scene_scarcity, 1.0 - resources)),
            u_sscarcity + u_res,
            {"scene": scene_scarcity, "resources": resources},
        ),
        "timePressure": lambda: (
            clamp01(max(urgency, 0.5 * danger)),
            u_urgency + u_mdanger + u_sthreat + u_hazard,
            {"urgency": urgency, "danger": danger},
        ),
        "uncertainty": lambda: (
            clamp01(0.7 * (1.0 - info) + 0.3 * chaos),
            u_info + u_chaos,
            {"infoAdequacy": info, "chaos": chaos},
        ),
        "legitimacy": lambda: (
            clamp01((0.5 * control_loc + 0.5 * max(hierarchy_loc, 0.7 * authority)) * (1.0 - 0.5 * chaos)),
            u_control + u_hier + u_auth + u_chaos,
            {"control": control_loc, "hierarchy": hierarchy_loc, "chaos": chaos},
        ),
        "secrecy": lambda: (
            clamp01(privacy * (1.0 - surveillance)),
            u_privacy + u_surv,
            {"privacy": privacy, "surveillance": surveillance},
        ),
        "cover": lambda: (cover, u_cover, {"map": cover}),
        "escape": lambda: (escape, u_escape, {"map": escape}),
    }

    out: List[ContextAtom] = []
    for axis in AXES:
        atom_id = f"ctx:{axis}:{self_id}"
        if atom_id in index:
            continue
        value, used, parts = formulas[axis]()
        out.append(
            derived_atom(
                atom_id,
                kind="ctx_axis",
                source=SOURCE,
                magnitude=value,
                used=used,
                parts=parts,
                subject=self_id,
                tags=["ctx", axis],
                label=f"context {axis}",
            )
        )
    return out


def pinned_axes(atoms: List[ContextAtom], self_id: str) -> List[str]:
    index = AtomIndex(atoms)
    return [axis for axis in AXES if f"ctx:{axis}:{self_id}" in index]
