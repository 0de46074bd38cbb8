"""Action layer: possibilities, access, cost, priors, candidates, decision, lookahead."""

from .access import apply_access_gates, derive_access
from .candidates import build_candidates
from .cost import compute_costs
from .decision import apply_lookahead, decide_action, score_candidate
from .lookahead import build_transition_snapshot, prediction_atoms
from .possibilities import derive_possibilities, possibility_atom
from .priors import derive_action_priors

__all__ = [
    "derive_possibilities",
    "possibility_atom",
    "derive_access",
    "apply_access_gates",
    "compute_costs",
    "derive_action_priors",
    "build_candidates",
    "score_candidate",
    "decide_action",
    "apply_lookahead",
    "build_transition_snapshot",
    "prediction_atoms",
]
