"""Enrichment modules: pure functions ``(atoms, StageContext) -> new atoms``."""

from .axes import derive_axes
from .drivers import atomize_scoreboard, derive_drivers
from .emotion import derive_appraisals, derive_dyadic_emotions, derive_emotions
from .goals import link_goal_actions, project_goals_to_util, rank_planning_goals, score_goal_domains
from .hazard import derive_hazard_geometry
from .lens import apply_character_lens, derive_threat_stack
from .social import derive_social_proximity
from .tom import apply_belief_bias, apply_relation_priors, derive_noncontext_baselines, derive_tom_policy

__all__ = [
    "derive_axes",
    "derive_social_proximity",
    "derive_hazard_geometry",
    "apply_character_lens",
    "derive_threat_stack",
    "derive_appraisals",
    "derive_emotions",
    "derive_dyadic_emotions",
    "apply_relation_priors",
    "derive_noncontext_baselines",
    "apply_belief_bias",
    "derive_tom_policy",
    "atomize_scoreboard",
    "derive_drivers",
    "score_goal_domains",
    "rank_planning_goals",
    "link_goal_actions",
    "project_goals_to_util",
]
