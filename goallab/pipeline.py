"""
Stage pipeline runner.

Runs the ten ordered stages (S0-S9) for one agent and one tick:

    S0  canonicalize observations, beliefs and overrides
    S1  regroup atoms by code into quark frames (no new facts)
    S2  context axes + social proximity + hazard geometry
    S3  character lens and threat stack
    S4  appraisal -> emotion -> dyadic emotion
    S5  Theory of Mind (relation priors, baselines, bias, policy)
    S6  scoreboard and drivers
    S7  goal ecology and util projections
    S8  possibilities, access, cost, priors, candidates, decision
    S9  predicted next state (only with lookahead)

Every stage output goes through the merge engine; no stage mutates the atom
list. S0-S7 are total functions, so an exception there is a defect and
propagates wrapped in PipelineStageError. S8 is isolated: a failure becomes a
diagnostic frame holding the S7 atoms unchanged, and the run has no decision.
S9 is isolated too, but its failure leaves the S8 decision in place.

Set DEBUG_PIPELINE=true to print one line per stage.
"""

import traceback
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .actions import (
    apply_access_gates,
    apply_lookahead,
    build_candidates,
    build_transition_snapshot,
    compute_costs,
    decide_action,
    derive_access,
    derive_action_priors,
    derive_possibilities,
    possibility_atom,
    prediction_atoms,
)
from .config import PipelineSettings
from .context import StageContext
from .enrichment import (
    apply_belief_bias,
    apply_character_lens,
    apply_relation_priors,
    atomize_scoreboard,
    derive_appraisals,
    derive_axes,
    derive_drivers,
    derive_dyadic_emotions,
    derive_emotions,
    derive_hazard_geometry,
    derive_noncontext_baselines,
    derive_social_proximity,
    derive_threat_stack,
    derive_tom_policy,
    link_goal_actions,
    project_goals_to_util,
    rank_planning_goals,
    score_goal_domains,
)
from .enrichment.hazard import has_hazard_inputs
from .errors import AtomValidationError, PipelineStageError
from .invariants import check_new_atoms, compute_stats, expect_output, goal_boundary_violations
from .logging_utils import (
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_WARNING,
    env_flag,
    log_deterministic,
    log_error,
    log_warning,
)
from .merge import merge_atoms_prefer_newer
from .perception import canonicalize
from .schemas import (
    ContextAtom,
    DecisionResult,
    PipelineRun,
    SimStep,
    StageFailure,
    StageFrame,
    StageId,
    WorldState,
)

STAGE_TITLES: Dict[str, str] = {
    "S0": "Canonicalize observations",
    "S1": "Quark frames",
    "S2": "Context axes",
    "S3": "Character lens",
    "S4": "Appraisal and emotion",
    "S5": "Theory of Mind",
    "S6": "Drivers",
    "S7": "Goal ecology",
    "S8": "Actions and decision",
    "S9": "Predicted next state",
}

TOM_DISABLED_WARNING = "ToM disabled"

Enricher = Callable[[List[ContextAtom], StageContext], List[ContextAtom]]
# (name, enricher, qualifying-input predicate or None when absence is normal)
EnricherStep = Tuple[str, Enricher, Optional[Callable[[List[ContextAtom]], bool]]]
# Stage body result: (produced atoms, warnings, artifacts)
StageOutput = Tuple[List[ContextAtom], List[str], Dict[str, Any]]


def _has_prefix(*prefixes: str) -> Callable[[List[ContextAtom]], bool]:
    def check(atoms: List[ContextAtom]) -> bool:
        return any(atom.id.startswith(prefixes) for atom in atoms)

    return check


def run_enrichers(
    atoms: Sequence[ContextAtom], ctx: StageContext, steps: Sequence[EnricherStep]
) -> Tuple[List[ContextAtom], List[str]]:
    """Run enrichers in order; each sees the previous ones' output merged in."""
    current = list(atoms)
    produced: List[ContextAtom] = []
    warnings: List[str] = []
    for name, enrich, qualifies in steps:
        had_inputs = qualifies(current) if qualifies is not None else False
        out = enrich(current, ctx)
        warnings.extend(expect_output(name, had_inputs, out))
        current = merge_atoms_prefer_newer(current, out).atoms
        produced.extend(out)
    return produced, warnings


def quark_frames(atoms: Sequence[ContextAtom]) -> Dict[str, List[str]]:
    frames: Dict[str, List[str]] = {}
    for atom in atoms:
        frames.setdefault(atom.code or "(uncoded)", []).append(atom.id)
    return frames


# ============================================================================
# Stage bodies
# ============================================================================


def _stage_s2(atoms: List[ContextAtom], ctx: StageContext, world: WorldState) -> StageOutput:
    s = ctx.self_id
    steps: List[EnricherStep] = [
        ("axes", derive_axes, _has_prefix("world:", "scene:")),
        ("social proximity", derive_social_proximity, _has_prefix(f"obs:nearby:{s}:")),
        (
            "hazard geometry",
            lambda current, c: derive_hazard_geometry(current, c, world),
            lambda _: has_hazard_inputs(world, ctx),
        ),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    return produced, warnings, {}


def _stage_s3(atoms: List[ContextAtom], ctx: StageContext) -> StageOutput:
    steps: List[EnricherStep] = [
        ("character lens", apply_character_lens, None),
        ("threat stack", derive_threat_stack, _has_prefix("ctx:")),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    return produced, warnings, {}


def _stage_s4(atoms: List[ContextAtom], ctx: StageContext) -> StageOutput:
    s = ctx.self_id
    steps: List[EnricherStep] = [
        ("appraisals", derive_appraisals, _has_prefix("ctx:")),
        ("emotions", derive_emotions, _has_prefix("app:")),
        ("dyadic emotions", derive_dyadic_emotions, _has_prefix(f"obs:nearby:{s}:", f"rel:base:{s}:")),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    return produced, warnings, {}


def _stage_s5(atoms: List[ContextAtom], ctx: StageContext) -> StageOutput:
    if not ctx.settings.tom_enabled:
        return [], [TOM_DISABLED_WARNING], {"enabled": False}
    s = ctx.self_id
    steps: List[EnricherStep] = [
        ("relation priors", apply_relation_priors, None),
        ("tom baselines", derive_noncontext_baselines, _has_prefix(f"rel:base:{s}:", f"obs:nearby:{s}:")),
        ("belief bias", apply_belief_bias, None),
        ("tom policy", derive_tom_policy, None),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    return produced, warnings, {"enabled": True}


def _stage_s6(atoms: List[ContextAtom], ctx: StageContext) -> StageOutput:
    steps: List[EnricherStep] = [
        ("scoreboard", atomize_scoreboard, None),
        ("drivers", derive_drivers, _has_prefix("mind:")),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    return produced, warnings, {}


def _stage_s7(atoms: List[ContextAtom], ctx: StageContext) -> StageOutput:
    steps: List[EnricherStep] = [
        ("goal domains", score_goal_domains, _has_prefix("drv:")),
        ("planning goals", rank_planning_goals, None),
        ("goal action links", link_goal_actions, _has_prefix("goal:active:")),
        ("util projection", project_goals_to_util, _has_prefix("goal:active:")),
    ]
    produced, warnings = run_enrichers(atoms, ctx, steps)
    active = [a.id for a in produced if a.id.startswith("goal:active:")]
    return produced, warnings, {"active_goals": active}


def _stage_s8(atoms: List[ContextAtom], ctx: StageContext) -> Tuple[StageOutput, DecisionResult]:
    settings = ctx.settings
    s = ctx.self_id

    access = derive_access(atoms, ctx)
    current = merge_atoms_prefer_newer(atoms, access).atoms
    possibilities, constraints = derive_possibilities(current, ctx)
    current = merge_atoms_prefer_newer(current, constraints).atoms
    possibilities = apply_access_gates(possibilities, current, threshold=settings.access_threshold)
    possibilities, costs = compute_costs(possibilities, current, ctx)
    current = merge_atoms_prefer_newer(current, costs).atoms

    menu = [possibility_atom(p, s) for p in possibilities]
    priors = derive_action_priors(current, ctx)
    current = merge_atoms_prefer_newer(current, [*menu, *priors]).atoms

    candidates, goal_energy = build_candidates(possibilities, current, ctx)
    decision = decide_action(
        candidates,
        goal_energy,
        temperature=settings.temperature,
        top_k=settings.top_k,
        risk_penalty=settings.risk_penalty,
        rng=ctx.rng("decision"),
        actor_id=s,
        tick=ctx.tick,
    )

    warnings = list(decision.warnings)
    if settings.lookahead_enabled and decision.best is not None:
        snapshot, lookahead_warnings = build_transition_snapshot(current, decision, ctx)
        decision = apply_lookahead(decision, snapshot, opt_in=settings.lookahead_choice)
        warnings.extend(lookahead_warnings)

    produced = [*access, *constraints, *costs, *menu, *priors, *decision.atoms]
    artifacts = {
        "possibilities": [p.model_dump() for p in possibilities],
        "candidates": [c.model_dump() for c in candidates],
        "decision": decision.model_dump(exclude={"atoms"}),
    }
    return (produced, warnings, artifacts), decision


def _stage_s9(atoms: List[ContextAtom], ctx: StageContext, decision: DecisionResult) -> StageOutput:
    predictions = prediction_atoms(atoms, decision, ctx)
    snapshot = decision.lookahead.model_dump() if decision.lookahead is not None else None
    return predictions, [], {"transition_snapshot": snapshot}


# ============================================================================
# Runner
# ============================================================================


def build_frame(
    stage: StageId,
    previous: Sequence[ContextAtom],
    output: StageOutput,
    settings: PipelineSettings,
) -> StageFrame:
    """Merge a stage's output into the accumulated atoms and run the checks."""
    produced, warnings, artifacts = output
    merged = merge_atoms_prefer_newer(previous, produced)
    changed = [*merged.new_ids, *merged.overridden_ids]
    frame_warnings = [
        *warnings,
        *check_new_atoms(merged.atoms, changed, strict=settings.strict_atoms),
        *goal_boundary_violations(merged.atoms, only_ids=changed),
    ]
    return StageFrame(
        stage=stage,
        title=STAGE_TITLES[stage],
        atoms=merged.atoms,
        new_atom_ids=merged.new_ids,
        overridden_ids=merged.overridden_ids,
        warnings=frame_warnings,
        stats=compute_stats(merged.atoms, len(merged.new_ids)),
        artifacts=artifacts,
    )


def run_isolated(stage: StageId, body: Callable[[], StageFrame]) -> Union[StageFrame, StageFailure]:
    """Run a stage body, returning a StageFailure instead of raising."""
    try:
        return body()
    except Exception as exc:
        return StageFailure(
            stage=stage,
            name=type(exc).__name__,
            message=str(exc),
            stack=traceback.format_exc(),
        )


def failure_frame(failure: StageFailure, previous: Sequence[ContextAtom]) -> StageFrame:
    """A still-valid frame carrying the previous atoms and the error artifact."""
    atoms = list(previous)
    return StageFrame(
        stage=failure.stage,
        title=STAGE_TITLES[failure.stage],
        atoms=atoms,
        warnings=[f"stage failed: {failure.name}: {failure.message}"],
        stats=compute_stats(atoms, 0),
        artifacts={"error": failure.as_artifact()},
    )


def _run_total(stage: StageId, self_id: str, body: Callable[[], StageFrame]) -> StageFrame:
    try:
        return body()
    except (PipelineStageError, AtomValidationError):
        raise
    except Exception as exc:
        raise PipelineStageError(stage=stage, underlying=exc, agent_id=self_id) from exc


def _debug(frame: StageFrame) -> None:
    tag = LOG_TAG_ERROR if frame.failed else LOG_TAG_DETERMINISTIC
    line = (
        f"{tag} {frame.stage} {frame.title}: {frame.stats.atom_count} atoms "
        f"(+{frame.stats.added_count}, ~{len(frame.overridden_ids)})"
    )
    if frame.failed:
        log_error(line)
    else:
        log_deterministic(line)
    for warning in frame.warnings:
        log_warning(f"    {LOG_TAG_WARNING} {warning}")


def participants(world: WorldState, self_id: str) -> List[str]:
    """The observer plus every agent sharing their location."""
    agent = world.get_agent(self_id)
    others = [
        a.agent_id
        for a in world.agents
        if a.agent_id != self_id and agent.location_id is not None and a.location_id == agent.location_id
    ]
    return [self_id, *others]


def run_pipeline(
    world: WorldState,
    self_id: str,
    step: SimStep,
    *,
    belief_atoms: Sequence[ContextAtom] = (),
    override_atoms: Sequence[ContextAtom] = (),
    settings: Optional[PipelineSettings] = None,
    debug: Optional[bool] = None,
) -> PipelineRun:
    """Run S0-S9 for one agent and one tick.

    Args:
        world: World snapshot (read only)
        self_id: Observing agent
        step: Tick, seed and injected events
        belief_atoms: Atoms recalled from the agent's memory
        override_atoms: Manual atoms that win over observations and beliefs
        settings: Tunables; defaults to PipelineSettings()
        debug: Print one line per stage; defaults to DEBUG_PIPELINE

    Returns:
        PipelineRun with ordered stage frames and the decision (None when S8 failed)

    Raises:
        AgentNotFoundError: If self_id is not in the world
        PipelineStageError: If any of S0-S7 raises (S8 and S9 failures become error frames)
        AtomValidationError: If settings.strict_atoms and a stage emits a malformed atom
    """
    settings = settings or PipelineSettings()
    debug = env_flag("DEBUG_PIPELINE") if debug is None else debug
    ctx = StageContext(
        self_id=self_id,
        tick=step.t,
        run_seed=step.seed,
        settings=settings,
        participant_ids=tuple(participants(world, self_id)),
    )
    run = PipelineRun(self_id=self_id, tick=step.t, participant_ids=list(ctx.participant_ids))

    def record(frame: StageFrame) -> List[ContextAtom]:
        run.stages.append(frame)
        if debug:
            _debug(frame)
        return frame.atoms

    def s0() -> StageFrame:
        atoms, artifacts = canonicalize(
            world, ctx, step, belief_atoms=belief_atoms, override_atoms=override_atoms
        )
        return build_frame("S0", [], (atoms, [], artifacts), settings)

    atoms = record(_run_total("S0", self_id, s0))

    def s1() -> StageFrame:
        return build_frame("S1", atoms, ([], [], {"quark_frames": quark_frames(atoms)}), settings)

    atoms = record(_run_total("S1", self_id, s1))

    bodies: List[Tuple[StageId, Callable[[List[ContextAtom]], StageOutput]]] = [
        ("S2", lambda current: _stage_s2(current, ctx, world)),
        ("S3", lambda current: _stage_s3(current, ctx)),
        ("S4", lambda current: _stage_s4(current, ctx)),
        ("S5", lambda current: _stage_s5(current, ctx)),
        ("S6", lambda current: _stage_s6(current, ctx)),
        ("S7", lambda current: _stage_s7(current, ctx)),
    ]
    for stage, body in bodies:
        previous = atoms
        atoms = record(
            _run_total(stage, self_id, lambda: build_frame(stage, previous, body(previous), settings))
        )

    decisions: List[DecisionResult] = []

    def s8() -> StageFrame:
        output, decision = _stage_s8(atoms, ctx)
        frame = build_frame("S8", atoms, output, settings)
        decisions.append(decision)
        return frame

    result = run_isolated("S8", s8)
    if isinstance(result, StageFailure):
        record(failure_frame(result, atoms))
        run.failed_stage = "S8"
        return run

    atoms = record(result)
    run.decision = decisions[0]

    if settings.lookahead_enabled and run.decision.best is not None:
        decision = run.decision
        previous = atoms

        def s9() -> StageFrame:
            return build_frame("S9", previous, _stage_s9(previous, ctx, decision), settings)

        # The decision already stands; a prediction failure only marks the run
        result = run_isolated("S9", s9)
        if isinstance(result, StageFailure):
            record(failure_frame(result, atoms))
            run.failed_stage = "S9"
        else:
            record(result)
    return run
