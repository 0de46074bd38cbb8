"""Tests for in-memory and JSON run persistence."""

from uuid import uuid4

import pytest

from goallab.persistence import InMemoryPersistence, JsonPersistence
from goallab.schemas import AgentState, DecisionRecord, Location, SimStep, WorldEvent, WorldState


def make_world_state(tick: int = 0) -> WorldState:
    return WorldState(
        tick=tick,
        agents=[AgentState(agent_id="ana", name="Ana", location_id="yard", position=(1, 2), traits={"paranoia": 0.4})],
        locations=[Location(location_id="yard", danger=0.3)],
        scene={"tension": 0.5},
    )


def make_step(t: int) -> SimStep:
    event = WorldEvent(event_id=f"inj{t}", tick=t, kind="alarm", location_id="yard", intensity=0.6)
    return SimStep(t=t, seed=42, events=[event])


def make_record(tick: int) -> DecisionRecord:
    return DecisionRecord(agent_id="ana", tick=tick, action_key="hide", kind="hide", q=0.41, chosen_by="argmax")


@pytest.mark.asyncio
async def test_in_memory_persistence_round_trip():
    persistence = InMemoryPersistence()
    await persistence.initialize()
    run_id = uuid4()
    state = make_world_state()

    await persistence.save_state(run_id, 0, state)
    await persistence.save_step(run_id, make_step(2))
    await persistence.save_step(run_id, make_step(1))
    await persistence.save_decisions(run_id, 1, [make_record(1)])

    assert await persistence.get_state(run_id, 0) == state
    assert await persistence.get_state(run_id, 5) is None
    assert [s.t for s in await persistence.get_steps(run_id)] == [1, 2]
    assert await persistence.get_decisions(run_id, 1) == [make_record(1)]
    assert await persistence.get_decisions(run_id, 2) == []
    await persistence.close()


@pytest.mark.asyncio
async def test_in_memory_state_is_copied_on_save():
    persistence = InMemoryPersistence()
    run_id = uuid4()
    state = make_world_state()

    await persistence.save_state(run_id, 0, state)
    state.scene["tension"] = 0.9

    stored = await persistence.get_state(run_id, 0)
    assert stored.scene["tension"] == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_in_memory_delete_run_keeps_other_runs():
    persistence = InMemoryPersistence()
    keep, drop = uuid4(), uuid4()
    for run_id in (keep, drop):
        await persistence.save_state(run_id, 0, make_world_state())
        await persistence.save_step(run_id, make_step(1))

    await persistence.delete_run(drop)

    assert await persistence.get_state(drop, 0) is None
    assert await persistence.get_steps(drop) == []
    assert await persistence.get_state(keep, 0) is not None
    assert len(await persistence.get_steps(keep)) == 1


@pytest.mark.asyncio
async def test_json_persistence_round_trip(tmp_path):
    persistence = JsonPersistence(tmp_path / "runs")
    await persistence.initialize()
    run_id = uuid4()
    state = make_world_state(tick=3)

    await persistence.save_state(run_id, 3, state)
    await persistence.save_step(run_id, make_step(3))
    await persistence.save_step(run_id, make_step(1))
    await persistence.save_decisions(run_id, 3, [make_record(3)])

    assert (tmp_path / "runs" / str(run_id) / "states" / "00003.json").exists()
    assert await persistence.get_state(run_id, 3) == state
    assert await persistence.get_state(run_id, 4) is None
    steps = await persistence.get_steps(run_id)
    assert [s.t for s in steps] == [1, 3]
    assert steps[1].events[0].kind == "alarm"
    assert await persistence.get_decisions(run_id, 3) == [make_record(3)]
    assert await persistence.get_decisions(run_id, 9) == []
    await persistence.close()


@pytest.mark.asyncio
async def test_json_persistence_delete_run(tmp_path):
    persistence = JsonPersistence(tmp_path)
    await persistence.initialize()
    run_id = uuid4()
    await persistence.save_state(run_id, 0, make_world_state())

    await persistence.delete_run(run_id)

    assert not (tmp_path / str(run_id)).exists()
    assert await persistence.get_steps(run_id) == []
    # Deleting twice is a no-op
    await persistence.delete_run(run_id)
