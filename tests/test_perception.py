"""Tests for S0 canonicalization of world observations."""

from typing import Optional

import pytest

from goallab.context import StageContext
from goallab.perception import DEFAULT_CLOSENESS, NEAR_RADIUS, canonicalize
from goallab.schemas import AgentState, Location, LocationGrid, SimStep, WorldState


def make_world(location: Optional[Location] = None) -> WorldState:
    return WorldState(
        agents=[
            AgentState(agent_id="ana", location_id="yard", position=(0, 0)),
            AgentState(agent_id="ben", location_id="yard", position=(4, 0)),
        ],
        locations=[location] if location is not None else [],
    )


def observe(world: WorldState):
    atoms, _ = canonicalize(world, StageContext(self_id="ana", tick=1), SimStep(t=1))
    return {a.id: a for a in atoms}


def test_unknown_location_still_sees_co_located_agents():
    by_id = observe(make_world())

    assert "world:location:ana" not in by_id
    assert not any(i.startswith("world:loc:") for i in by_id)
    nearby = by_id["obs:nearby:ana:ben"]
    assert nearby.magnitude == DEFAULT_CLOSENESS
    assert nearby.trace.parts["distance"] is None


def test_location_without_grid_uses_default_closeness():
    by_id = observe(make_world(Location(location_id="yard", danger=0.4)))

    assert by_id["world:location:ana"].trace.parts == {"location_id": "yard"}
    assert by_id["obs:nearby:ana:ben"].magnitude == DEFAULT_CLOSENESS


def test_grid_positions_set_closeness_by_distance():
    grid = LocationGrid(width=10, height=10)
    by_id = observe(make_world(Location(location_id="yard", grid=grid)))

    nearby = by_id["obs:nearby:ana:ben"]
    assert nearby.trace.parts["distance"] == pytest.approx(4.0)
    assert nearby.magnitude == pytest.approx(1.0 - 4.0 / NEAR_RADIUS)
