"""Tests for location-scoped belief memory."""

from uuid import uuid4

import pytest

from goallab.atoms import world_atom
from goallab.memory import MEMORY_CONFIDENCE, LocationScopedBeliefMemory, to_belief_atoms


def make_event(event_id: str, kind: str = "attack", magnitude: float = 0.8):
    return world_atom(
        f"event:{kind}:{event_id}",
        kind="event",
        source="test",
        magnitude=magnitude,
        subject="ben",
        target="ana",
        tags=[kind],
        code=f"event.{kind}",
    )


def test_event_atoms_become_beliefs():
    observed = [
        make_event("e1"),
        world_atom("world:map:cover:ana", kind="map_feature", source="test", magnitude=0.5),
    ]

    beliefs = to_belief_atoms(observed, tick=4)

    assert [b.id for b in beliefs] == ["mem:event:attack:e1"]
    belief = beliefs[0]
    assert belief.origin == "belief"
    assert belief.confidence == pytest.approx(MEMORY_CONFIDENCE)
    assert belief.used_atom_ids == ["event:attack:e1"]
    assert belief.code == "mem.event.attack"
    assert belief.trace.parts["rememberedAt"] == 4
    assert "memory" in belief.tags


@pytest.mark.asyncio
async def test_recall_is_scoped_by_location():
    memory = LocationScopedBeliefMemory()
    await memory.initialize()
    run_id = uuid4()

    await memory.remember(run_id, "ana", "yard", [make_event("e1")], tick=1)
    await memory.remember(run_id, "ana", "hall", [make_event("e2")], tick=2)

    assert [a.id for a in await memory.recall(run_id, "ana", "yard")] == ["mem:event:attack:e1"]
    assert [a.id for a in await memory.recall(run_id, "ana", "hall")] == ["mem:event:attack:e2"]
    assert await memory.recall(run_id, "ben", "yard") == []
    assert await memory.recall(uuid4(), "ana", "yard") == []
    await memory.close()


@pytest.mark.asyncio
async def test_capacity_drops_oldest_beliefs():
    memory = LocationScopedBeliefMemory(capacity=2)
    run_id = uuid4()

    for tick, event_id in enumerate(["e1", "e2", "e3"], start=1):
        await memory.remember(run_id, "ana", "yard", [make_event(event_id)], tick=tick)

    recalled = await memory.recall(run_id, "ana", "yard")
    assert [a.id for a in recalled] == ["mem:event:attack:e2", "mem:event:attack:e3"]


@pytest.mark.asyncio
async def test_re_remembered_event_is_refreshed():
    memory = LocationScopedBeliefMemory(capacity=2)
    run_id = uuid4()

    await memory.remember(run_id, "ana", "yard", [make_event("e1", magnitude=0.8)], tick=1)
    await memory.remember(run_id, "ana", "yard", [make_event("e2")], tick=2)
    await memory.remember(run_id, "ana", "yard", [make_event("e1", magnitude=0.3)], tick=3)
    await memory.remember(run_id, "ana", "yard", [make_event("e3")], tick=4)

    recalled = await memory.recall(run_id, "ana", "yard")
    assert [a.id for a in recalled] == ["mem:event:attack:e1", "mem:event:attack:e3"]
    assert recalled[0].magnitude == pytest.approx(0.3)
    assert recalled[0].trace.parts["rememberedAt"] == 3


@pytest.mark.asyncio
async def test_non_event_atoms_store_nothing():
    memory = LocationScopedBeliefMemory()
    run_id = uuid4()

    stored = await memory.remember(
        run_id, "ana", "yard", [world_atom("body:stress:ana", kind="body_signal", source="test", magnitude=0.4)], tick=1
    )

    assert stored == []
    assert await memory.recall(run_id, "ana", "yard") == []


@pytest.mark.asyncio
async def test_clear_forgets_every_location_for_one_agent():
    memory = LocationScopedBeliefMemory()
    run_id = uuid4()
    await memory.remember(run_id, "ana", "yard", [make_event("e1")], tick=1)
    await memory.remember(run_id, "ana", "hall", [make_event("e2")], tick=1)
    await memory.remember(run_id, "ben", "yard", [make_event("e3")], tick=1)

    await memory.clear(run_id, "ana")

    assert await memory.recall(run_id, "ana", "yard") == []
    assert await memory.recall(run_id, "ana", "hall") == []
    assert len(await memory.recall(run_id, "ben", "yard")) == 1
