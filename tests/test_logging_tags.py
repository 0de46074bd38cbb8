"""Tests for truthful logging tags ([•] vs [~] vs [!]) in pipeline and orchestrator output.

These tests assert that:
- Debug stage lines use [•] for completed stages and [!] for a failed S8
- Tick summaries use [~] only when the action was sampled
"""

from __future__ import annotations

import asyncio
import contextlib
import io

import pytest

from goallab.config import PipelineSettings
from goallab.logging_utils import (
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_STOCHASTIC,
    Color,
    colored,
    env_flag,
)
from goallab.orchestrator import Orchestrator
from goallab.pipeline import run_pipeline
from goallab.schemas import AgentState, Location, SimStep, WorldState


@pytest.fixture(autouse=True)
def no_color(monkeypatch):
    monkeypatch.setenv("GOALLAB_NO_COLOR", "1")


def make_world_state() -> WorldState:
    return WorldState(
        agents=[
            AgentState(agent_id="ana", name="Ana", location_id="yard", body={"stress": 0.6}),
            AgentState(agent_id="ben", name="Ben", location_id="yard"),
        ],
        locations=[Location(location_id="yard", danger=0.6, cover=0.5)],
    )


def capture(func, *args, **kwargs):
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        result = func(*args, **kwargs)
    return result, buffer.getvalue()


def test_debug_prints_one_line_per_stage():
    _, output = capture(run_pipeline, make_world_state(), "ana", SimStep(t=1), debug=True)

    stage_lines = [line for line in output.splitlines() if line.startswith(LOG_TAG_DETERMINISTIC)]
    assert [line.split()[1] for line in stage_lines] == ["S0", "S1", "S2", "S3", "S4", "S5", "S6", "S7", "S8"]
    assert LOG_TAG_ERROR not in output


def test_debug_flag_read_from_environment(monkeypatch):
    monkeypatch.setenv("DEBUG_PIPELINE", "true")

    _, output = capture(run_pipeline, make_world_state(), "ana", SimStep(t=1))

    assert f"{LOG_TAG_DETERMINISTIC} S0 " in output


def test_failed_stage_is_tagged_as_error(monkeypatch):
    def boom(atoms, ctx):
        raise RuntimeError("menu failed")

    monkeypatch.setattr("goallab.pipeline.derive_possibilities", boom)

    _, output = capture(run_pipeline, make_world_state(), "ana", SimStep(t=1), debug=True)

    assert f"{LOG_TAG_ERROR} S8 " in output
    assert "stage failed: RuntimeError: menu failed" in output


@pytest.mark.parametrize(
    "temperature,tag,absent",
    [
        (0.0, LOG_TAG_DETERMINISTIC, LOG_TAG_STOCHASTIC),
        (1.0, LOG_TAG_STOCHASTIC, None),
    ],
)
def test_tick_summary_tags_follow_choice_mode(temperature, tag, absent):
    orchestrator = Orchestrator(
        make_world_state(),
        settings=PipelineSettings(temperature=temperature),
        run_seed=1,
    )

    _, output = capture(asyncio.run, orchestrator.run(1))

    assert f"{tag} [Ana]" in output
    assert f"{LOG_TAG_DETERMINISTIC} [Rules] Applying world rules for tick 1..." in output
    if absent is not None:
        assert absent not in output


def test_colored_respects_no_color(monkeypatch):
    assert colored("x", Color.RED) == "x"

    monkeypatch.delenv("GOALLAB_NO_COLOR")

    assert colored("x", Color.RED) == f"{Color.RED.value}x{Color.RESET.value}"
    assert colored("x", Color.RED, bold=True).startswith(Color.BOLD.value)


@pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("ON", True), ("no", False), ("", False)])
def test_env_flag(monkeypatch, raw, expected):
    monkeypatch.setenv("GOALLAB_TEST_FLAG", raw)

    assert env_flag("GOALLAB_TEST_FLAG") is expected
