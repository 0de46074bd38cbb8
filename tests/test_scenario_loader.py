"""Tests for scenario loading via ScenarioLoader."""

import json

import pytest

from goallab.errors import ScenarioValidationError
from goallab.scenario import ScenarioLoader, load_scenario


def make_scenario(**overrides):
    data = {
        "name": "Tiny",
        "agents": [{"agent_id": "ana", "location_id": "yard", "traits": {"paranoia": 0.4}}],
        "locations": [{"location_id": "yard", "danger": 0.3}],
        "scene": {"tension": 0.2},
    }
    data.update(overrides)
    return data


def test_scenario_loader_parses_standoff():
    world_state = ScenarioLoader().load("standoff")

    assert world_state.metadata["name"] == "Checkpoint standoff"
    assert [a.agent_id for a in world_state.agents] == ["mira", "tomas", "ines"]
    mira = world_state.get_agent("mira")
    assert mira.capabilities["weapon"] == 1.0
    assert mira.relations["tomas"].hostility == pytest.approx(0.7)
    assert mira.relation_tags["ines"] == ["friend"]
    assert mira.position == (2, 3)
    checkpoint = world_state.get_location("checkpoint")
    assert checkpoint.access_rules["ban.knife"] == 1.0
    assert (3, 4) in checkpoint.grid.hazards
    assert [e.event_id for e in world_state.event_log] == ["shelling-0", "threat-0"]
    assert world_state.scene["tension"] == pytest.approx(0.6)


def test_load_scenario_accepts_path_and_extension():
    loader = ScenarioLoader()
    by_path = load_scenario(loader.resolve("tribunal.json"))

    assert by_path.get_location("courtroom").procedural_strict == pytest.approx(0.9)
    assert by_path.tick == 0


def test_missing_scenario_raises_file_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        ScenarioLoader(tmp_path).load("nowhere")


def test_invalid_json_is_reported(tmp_path):
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ScenarioValidationError) as exc_info:
        ScenarioLoader(tmp_path).load("broken")

    assert "invalid JSON" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, json.JSONDecodeError)


@pytest.mark.parametrize(
    "data,reason",
    [
        ([], "top level"),
        (make_scenario(agents=[]), "at least one agent"),
        ({"agents": [{"agent_id": "ana"}]}, "missing required fields"),
        (make_scenario(locations={}), "'locations' must be a list"),
    ],
)
def test_structural_errors(data, reason):
    with pytest.raises(ScenarioValidationError) as exc_info:
        ScenarioLoader().load_dict(data, source="inline")

    assert reason in exc_info.value.reason
    assert exc_info.value.path == "inline"


def test_field_validation_errors_are_wrapped():
    data = make_scenario(locations=[{"location_id": "yard", "danger": 3.0}])

    with pytest.raises(ScenarioValidationError):
        ScenarioLoader().load_dict(data)


def test_duplicate_agents_rejected():
    data = make_scenario(agents=[{"agent_id": "ana"}, {"agent_id": "ana"}])

    with pytest.raises(ScenarioValidationError, match="duplicate agent id"):
        ScenarioLoader().load_dict(data)


def test_unknown_location_rejected():
    data = make_scenario(agents=[{"agent_id": "ana", "location_id": "moon"}])

    with pytest.raises(ScenarioValidationError, match="unknown location 'moon'"):
        ScenarioLoader().load_dict(data)


def test_load_dict_builds_metadata(tmp_path):
    path = tmp_path / "tiny.json"
    path.write_text(json.dumps(make_scenario(description="small", metadata={"author": "test"})), encoding="utf-8")

    world_state = ScenarioLoader(tmp_path).load("tiny")

    assert world_state.metadata == {"author": "test", "name": "Tiny", "description": "small"}
    assert world_state.event_log == []
