"""Tests for run reports and decision records."""

import json

from goallab.config import PipelineSettings
from goallab.pipeline import run_pipeline
from goallab.reporting import (
    MARKDOWN_ATOM_LIMIT,
    atom_records,
    decision_record,
    render_markdown,
    run_report,
    stage_summary,
)
from goallab.schemas import AgentState, Location, PipelineRun, SimStep, WorldState


def make_world_state() -> WorldState:
    return WorldState(
        agents=[
            AgentState(agent_id="ana", name="Ana", location_id="yard", traits={"paranoia": 0.5}, body={"stress": 0.5}),
            AgentState(agent_id="ben", name="Ben", location_id="yard"),
        ],
        locations=[Location(location_id="yard", danger=0.5, cover=0.5)],
    )


def make_run() -> PipelineRun:
    settings = PipelineSettings(temperature=0.0)
    return run_pipeline(make_world_state(), "ana", SimStep(t=2, seed=5), settings=settings, debug=False)


def make_failed_run(monkeypatch) -> PipelineRun:
    def boom(atoms, ctx):
        raise RuntimeError("no menu today")

    monkeypatch.setattr("goallab.pipeline.derive_possibilities", boom)
    return make_run()


def test_atom_records_filter_by_prefix():
    run = make_run()

    records = atom_records(run.final_atoms(), prefix="ctx:")

    assert records
    assert all(r["id"].startswith("ctx:") for r in records)
    assert set(records[0]) == {"id", "ns", "kind", "origin", "source", "magnitude", "confidence", "code", "label", "used"}


def test_decision_record_for_full_run():
    run = make_run()

    record = decision_record(run)

    assert record.agent_id == "ana"
    assert record.tick == 2
    assert record.action_key == run.decision.best.action_key
    assert record.failed_stage is None


def test_decision_record_for_failed_run(monkeypatch):
    record = decision_record(make_failed_run(monkeypatch))

    assert record.action_key is None
    assert record.chosen_by == "none"
    assert record.failed_stage == "S8"
    assert any(w.startswith("S8: stage failed") for w in record.warnings)


def test_stage_summary_and_report_are_json_ready():
    run = make_run()

    summary = stage_summary(run)
    report = run_report(run)

    assert [row["stage"] for row in summary] == [f.stage for f in run.stages]
    assert summary[0]["added_count"] == summary[0]["atom_count"]
    assert report["self_id"] == "ana"
    assert report["participants"] == ["ana", "ben"]
    assert report["ranked"][0]["action"] == run.decision.best.action_key
    json.dumps(report)


def test_markdown_for_full_run():
    run = make_run()
    text = render_markdown(run)

    assert text.startswith("# Pipeline run: ana @ tick 2")
    assert "## Decision" in text
    assert f"**{run.decision.best.action_key}**" in text
    assert "| action | q | raw | penalty | lookahead |" in text
    assert "### S0 Canonicalize observations" in text
    hidden = len(run.frame("S0").new_atom_ids) - MARKDOWN_ATOM_LIMIT
    assert hidden > 0
    assert f"- ... {hidden} more" in text


def test_markdown_for_failed_run(monkeypatch):
    text = render_markdown(make_failed_run(monkeypatch))

    assert "No decision: stage S8 failed." in text
    assert "**FAILED**: RuntimeError: no menu today" in text
    assert "| action |" not in text
