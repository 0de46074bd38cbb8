"""Flat, serializable views of pipeline runs.

Hosts and tests consume these instead of walking frames: atom records for
tables and diffs, decision records for persistence, and a markdown report for
humans. Every function accepts partial runs (S8 failed, no decision).
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from goallab.schemas import ContextAtom, DecisionRecord, PipelineRun, StageFrame

# Atoms listed per stage in the markdown report before truncating
MARKDOWN_ATOM_LIMIT = 12


def atom_record(atom: ContextAtom) -> Dict[str, Any]:
    """One row per atom: identity, value and provenance ids."""
    return {
        "id": atom.id,
        "ns": atom.ns.value,
        "kind": atom.kind,
        "origin": atom.origin,
        "source": atom.source,
        "magnitude": round(atom.magnitude, 6),
        "confidence": round(atom.confidence, 6),
        "code": atom.code,
        "label": atom.label,
        "used": atom.used_atom_ids,
    }


def atom_records(atoms: Iterable[ContextAtom], *, prefix: Optional[str] = None) -> List[Dict[str, Any]]:
    return [atom_record(a) for a in atoms if prefix is None or a.id.startswith(prefix)]


def decision_record(run: PipelineRun) -> DecisionRecord:
    """Summarize one run's decision for persistence."""
    decision = run.decision
    if decision is None or decision.best is None:
        return DecisionRecord(
            agent_id=run.self_id,
            tick=run.tick,
            chosen_by=decision.chosen_by if decision is not None else "none",
            failed_stage=run.failed_stage,
            warnings=run.warnings,
        )
    best = decision.best
    return DecisionRecord(
        agent_id=run.self_id,
        tick=run.tick,
        action_key=best.action_key,
        kind=best.candidate.kind,
        target_id=best.candidate.target_id,
        q=best.q,
        chosen_by=decision.chosen_by,
        failed_stage=run.failed_stage,
        warnings=run.warnings,
    )


def decision_records(runs: Iterable[PipelineRun]) -> List[DecisionRecord]:
    return [decision_record(run) for run in runs]


def stage_summary(run: PipelineRun) -> List[Dict[str, Any]]:
    """Per-stage counts and warnings, in stage order."""
    return [
        {
            "stage": frame.stage,
            "title": frame.title,
            "atom_count": frame.stats.atom_count,
            "added_count": frame.stats.added_count,
            "overridden_count": len(frame.overridden_ids),
            "missing_code_count": frame.stats.missing_code_count,
            "missing_trace_derived_count": frame.stats.missing_trace_derived_count,
            "warnings": list(frame.warnings),
            "failed": frame.failed,
        }
        for frame in run.stages
    ]


def run_report(run: PipelineRun) -> Dict[str, Any]:
    """JSON-compatible summary of a whole run."""
    decision = run.decision
    ranked: List[Dict[str, Any]] = []
    if decision is not None:
        ranked = [
            {
                "action": scored.action_key,
                "q": scored.q,
                "q_raw": scored.q_raw,
                "penalty": scored.penalty,
                "q_lookahead": scored.q_lookahead,
            }
            for scored in decision.ranked
        ]
    return {
        "schema_version": run.schema_version,
        "self_id": run.self_id,
        "tick": run.tick,
        "participants": list(run.participant_ids),
        "failed_stage": run.failed_stage,
        "stages": stage_summary(run),
        "decision": decision_record(run).model_dump(),
        "ranked": ranked,
    }


def _format_atoms(atoms: Sequence[ContextAtom], ids: Sequence[str]) -> List[str]:
    by_id = {a.id: a for a in atoms}
    lines = []
    for atom_id in ids[:MARKDOWN_ATOM_LIMIT]:
        atom = by_id.get(atom_id)
        if atom is None:
            continue
        lines.append(f"- `{atom.id}` = {atom.magnitude:.3f} (conf {atom.confidence:.2f})")
    if len(ids) > MARKDOWN_ATOM_LIMIT:
        lines.append(f"- ... {len(ids) - MARKDOWN_ATOM_LIMIT} more")
    return lines


def _format_frame(frame: StageFrame) -> List[str]:
    lines = [
        f"### {frame.stage} {frame.title}",
        "",
        f"{frame.stats.atom_count} atoms, +{frame.stats.added_count} new, "
        f"{len(frame.overridden_ids)} overridden",
        "",
    ]
    if frame.failed:
        error = frame.artifacts["error"]
        lines.extend([f"**FAILED**: {error['name']}: {error['message']}", ""])
    lines.extend(_format_atoms(frame.atoms, frame.new_atom_ids))
    for warning in frame.warnings:
        lines.append(f"- warning: {warning}")
    lines.append("")
    return lines


def render_markdown(run: PipelineRun) -> str:
    """Human-readable report of one run."""
    lines = [
        f"# Pipeline run: {run.self_id} @ tick {run.tick}",
        "",
        f"Participants: {', '.join(run.participant_ids) or '(none)'}",
        "",
        "## Decision",
        "",
    ]
    decision = run.decision
    if decision is None:
        lines.append(f"No decision: stage {run.failed_stage or '?'} failed.")
    elif decision.best is None:
        lines.append("No enabled action.")
    else:
        best = decision.best
        lines.append(f"**{best.action_key}** (q={best.q:.3f}, chosen by {decision.chosen_by})")
        lines.extend(["", "| action | q | raw | penalty | lookahead |", "|---|---|---|---|---|"])
        for scored in decision.ranked:
            la = f"{scored.q_lookahead:.3f}" if scored.q_lookahead is not None else "-"
            lines.append(
                f"| {scored.action_key} | {scored.q:.3f} | {scored.q_raw:.3f} | "
                f"{scored.penalty:.3f} | {la} |"
            )
    if decision is not None:
        for candidate in decision.blocked:
            lines.append(f"- blocked `{candidate.id}`: {', '.join(candidate.blocked_by) or 'disabled'}")
    lines.extend(["", "## Stages", ""])
    for frame in run.stages:
        lines.extend(_format_frame(frame))
    return "\n".join(lines).rstrip() + "\n"
