"""
Scenario loading for JSON-defined simulation initialization.

A scenario is the initial WorldState written as data: agents (traits, body
signals, capabilities, relations), locations (situational metrics, access
rules, optional hazard grid), scene metrics and starting events.

Design philosophy:
- Scenarios are data (JSON), not code
- Validation happens at load time with a ScenarioValidationError naming the
  file and the problem, instead of a cryptic failure at tick 1
- Field-level validation is delegated to the pydantic world models

Scenario file structure:
```json
{
  "name": "Checkpoint standoff",
  "description": "...",
  "tick": 0,
  "agents": [
    {"agent_id": "ana", "location_id": "checkpoint", "traits": {...},
     "capabilities": {"weapon": 1.0}, "relations": {"ben": {"hostility": 0.6}}}
  ],
  "locations": [{"location_id": "checkpoint", "danger": 0.6, ...}],
  "scene": {"tension": 0.4},
  "events": []
}
```

Usage:
    loader = ScenarioLoader()
    world_state = loader.load("standoff")
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .config import Config
from .errors import ScenarioValidationError
from .schemas import AgentState, Location, WorldEvent, WorldState


class ScenarioLoader:
    """Load and validate simulation scenarios from JSON files.

    Directory structure:
    - Default: Config.SCENARIOS_DIR ({PROJECT_ROOT}/examples/scenarios/)
    - Override via constructor: ScenarioLoader(Path("/custom/scenarios"))
    - Scenario files: {scenario_name}.json

    Validation:
    - Required fields: agents (non-empty list), locations (list)
    - Agent ids are unique
    - Every agent's location_id names a declared location
    """

    def __init__(self, scenarios_dir: Optional[Path] = None):
        """Initialize scenario loader.

        Args:
            scenarios_dir: Directory containing scenario files.
                          Defaults to Config.SCENARIOS_DIR
        """
        self.scenarios_dir = Path(scenarios_dir) if scenarios_dir else Config.SCENARIOS_DIR

    def resolve(self, scenario: Union[str, Path]) -> Path:
        """Map a scenario name or path to a file path.

        An existing path is used as is; otherwise ``scenario`` is treated as a
        name under ``scenarios_dir`` (with or without the .json extension).
        """
        path = Path(scenario)
        if path.exists():
            return path
        name = path.name if path.suffix == ".json" else f"{path.name}.json"
        return self.scenarios_dir / name

    def load(self, scenario: Union[str, Path]) -> WorldState:
        """Load a scenario by name or path.

        Args:
            scenario: Scenario name (without .json) or path to a JSON file

        Returns:
            Initial WorldState, ready to pass to Orchestrator

        Raises:
            FileNotFoundError: If the scenario file doesn't exist
            ScenarioValidationError: If the JSON is invalid or misses required data
        """
        path = self.resolve(scenario)
        if not path.exists():
            raise FileNotFoundError(f"Scenario '{scenario}' not found at {path}")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ScenarioValidationError(path=str(path), reason=f"invalid JSON: {exc}") from exc

        return self.load_dict(data, source=str(path))

    def load_dict(self, data: Dict[str, Any], *, source: str = "<dict>") -> WorldState:
        """Build a WorldState from already-parsed scenario data.

        Args:
            data: Scenario mapping (same structure as the JSON file)
            source: Name used in error messages

        Raises:
            ScenarioValidationError: If required data is missing or malformed
        """
        self._validate_scenario(data, source)

        try:
            agents = [AgentState.model_validate(entry) for entry in data["agents"]]
            locations = [Location.model_validate(entry) for entry in data["locations"]]
            events = [WorldEvent.model_validate(entry) for entry in data.get("events", [])]
        except ValidationError as exc:
            raise ScenarioValidationError(path=source, reason=str(exc)) from exc

        self._validate_references(agents, locations, source)

        metadata = dict(data.get("metadata", {}))
        for key in ("name", "description"):
            if key in data:
                metadata.setdefault(key, data[key])

        return WorldState(
            tick=int(data.get("tick", 0)),
            agents=agents,
            locations=locations,
            event_log=events,
            scene={key: float(value) for key, value in data.get("scene", {}).items()},
            metadata=metadata,
        )

    def _validate_scenario(self, data: Any, source: str) -> None:
        if not isinstance(data, dict):
            raise ScenarioValidationError(path=source, reason="top level must be a JSON object")

        missing = [field for field in ("agents", "locations") if field not in data]
        if missing:
            raise ScenarioValidationError(path=source, reason=f"missing required fields: {missing}")

        if not isinstance(data["agents"], list) or not data["agents"]:
            raise ScenarioValidationError(path=source, reason="scenario must have at least one agent")

        if not isinstance(data["locations"], list):
            raise ScenarioValidationError(path=source, reason="'locations' must be a list")

    def _validate_references(self, agents, locations, source: str) -> None:
        seen = set()
        for agent in agents:
            if agent.agent_id in seen:
                raise ScenarioValidationError(path=source, reason=f"duplicate agent id '{agent.agent_id}'")
            seen.add(agent.agent_id)

        location_ids = {location.location_id for location in locations}
        for agent in agents:
            if agent.location_id is not None and agent.location_id not in location_ids:
                raise ScenarioValidationError(
                    path=source,
                    reason=f"agent '{agent.agent_id}' is at unknown location '{agent.location_id}'",
                )


def load_scenario(scenario: Union[str, Path]) -> WorldState:
    """Convenience function to load a scenario.

    Args:
        scenario: Scenario name or path

    Returns:
        Initial WorldState
    """
    loader = ScenarioLoader()
    return loader.load(scenario)
