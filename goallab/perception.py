"""
S0 canonicalization: world snapshot -> observer-scoped atoms.

This module turns the complete WorldState into what one agent can observe,
expressed as atoms, and folds in the agent's recalled belief atoms and any
manual override atoms. No contextual interpretation happens here; later
stages derive meaning.

Observation rules (what the observer CAN perceive):
- Their own location metrics, map features and access rules
- Scene metrics published by the host
- Their own traits, body signals and capabilities
- Co-located agents (closeness from grid distance, optional observation noise)
- Their own relation facts toward others
- Recent events at their location or involving them (event log lookback
  plus the events injected by the current SimStep)

What the observer CANNOT perceive:
- Other agents' traits, bodies, capabilities or relations
- Agents and events in other locations

Merge order is world observations, then belief atoms, then overrides, so a
manual override always wins over both.
"""

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from goallab.atoms import clamp01, world_atom
from goallab.context import StageContext
from goallab.merge import merge_atoms_prefer_newer
from goallab.schemas import AgentState, ContextAtom, Location, SimStep, WorldEvent, WorldState

SOURCE = "perception"

# Distance (tiles) at which a co-located agent stops counting as close
NEAR_RADIUS = 8.0
# Closeness of co-located agents when the location has no grid positions
DEFAULT_CLOSENESS = 0.6

LOCATION_METRICS = {
    "privacy": "privacy",
    "control": "control",
    "crowd": "crowd",
    "norm_pressure": "normPressure",
    "procedural_strict": "proceduralStrict",
    "surveillance": "surveillance",
    "hierarchy": "hierarchy",
    "resources": "resources",
}
MAP_METRICS = ("cover", "escape", "danger")
RELATION_METRICS = ("closeness", "loyalty", "hostility", "dependency", "authority")


def canonicalize(
    world: WorldState,
    ctx: StageContext,
    step: SimStep,
    *,
    belief_atoms: Sequence[ContextAtom] = (),
    override_atoms: Sequence[ContextAtom] = (),
) -> Tuple[List[ContextAtom], Dict[str, Any]]:
    """Build the S0 atom set and a small artifact summary.

    Raises:
        AgentNotFoundError: If the observer is not in the world snapshot
    """
    agent = world.get_agent(ctx.self_id)
    location = world.get_location(agent.location_id)

    observed: List[ContextAtom] = []
    observed.extend(_location_atoms(agent, location))
    observed.extend(_scene_atoms(agent, world.scene))
    observed.extend(_self_atoms(agent))
    nearby_atoms = _nearby_atoms(agent, world, location, ctx)
    observed.extend(nearby_atoms)
    observed.extend(_relation_atoms(agent))
    events = visible_events(world, agent, step, ctx.settings.event_lookback)
    observed.extend(_event_atoms(agent, events))
    observed.append(_info_adequacy(agent, len(nearby_atoms), len(events)))

    merged = merge_atoms_prefer_newer([], observed)
    merged = merge_atoms_prefer_newer(merged.atoms, belief_atoms)
    with_beliefs = merged
    merged = merge_atoms_prefer_newer(merged.atoms, override_atoms)

    artifacts = {
        "location_id": agent.location_id,
        "world_atom_count": len(observed),
        "belief_atom_count": len(belief_atoms),
        "override_atom_count": len(override_atoms),
        "overridden_by_beliefs": with_beliefs.overridden_ids,
        "overridden_by_overrides": merged.overridden_ids,
        "visible_agents": [a.target for a in nearby_atoms],
        "visible_events": [e.event_id for e in events],
    }
    return merged.atoms, artifacts


def visible_events(
    world: WorldState, agent: AgentState, step: SimStep, lookback: int
) -> List[WorldEvent]:
    """Events at the observer's location or involving the observer, recent enough."""
    earliest = step.t - lookback
    seen: Dict[str, WorldEvent] = {}
    for event in [*world.event_log, *step.events]:
        if event.tick < earliest or event.tick > step.t:
            continue
        involved = agent.agent_id in (event.actor_id, event.target_id)
        here = event.location_id is not None and event.location_id == agent.location_id
        if involved or here:
            seen[event.event_id] = event
    return list(seen.values())


def _location_atoms(agent: AgentState, location: Optional[Location]) -> List[ContextAtom]:
    if location is None:
        return []
    self_id = agent.agent_id
    atoms = [
        world_atom(
            f"world:location:{self_id}",
            kind="location",
            source=SOURCE,
            magnitude=1.0,
            subject=self_id,
            tags=[f"loc:{location.location_id}"],
            label=f"{agent.display_name} is at {location.name or location.location_id}",
            parts={"location_id": location.location_id},
        )
    ]
    for field_name, metric in LOCATION_METRICS.items():
        atoms.append(
            world_atom(
                f"world:loc:{metric}:{self_id}",
                kind="location_metric",
                source=SOURCE,
                magnitude=getattr(location, field_name),
                subject=self_id,
                tags=[f"loc:{location.location_id}"],
                label=f"location {metric}",
            )
        )
    for metric in MAP_METRICS:
        atoms.append(
            world_atom(
                f"world:map:{metric}:{self_id}",
                kind="map_feature",
                source=SOURCE,
                magnitude=getattr(location, metric),
                subject=self_id,
                tags=[f"loc:{location.location_id}"],
                label=f"map {metric}",
            )
        )
    for rule, strength in sorted(location.access_rules.items()):
        atoms.append(
            world_atom(
                f"loc:access:{rule}:{self_id}",
                kind="access_rule",
                source=SOURCE,
                magnitude=strength,
                subject=self_id,
                tags=[f"loc:{location.location_id}"],
                label=f"location rule {rule}",
            )
        )
    return atoms


def _scene_atoms(agent: AgentState, scene: Dict[str, float]) -> List[ContextAtom]:
    return [
        world_atom(
            f"scene:{metric}:{agent.agent_id}",
            kind="scene_metric",
            source=SOURCE,
            magnitude=value,
            subject=agent.agent_id,
            label=f"scene {metric}",
        )
        for metric, value in sorted(scene.items())
    ]


def _self_atoms(agent: AgentState) -> List[ContextAtom]:
    self_id = agent.agent_id
    atoms: List[ContextAtom] = []
    for trait, value in sorted(agent.traits.items()):
        atoms.append(
            world_atom(
                f"feat:char:{self_id}:trait.{trait}",
                kind="trait",
                source=SOURCE,
                magnitude=value,
                subject=self_id,
                label=f"trait {trait}",
            )
        )
    for signal, value in sorted(agent.body.items()):
        atoms.append(
            world_atom(
                f"body:{signal}:{self_id}",
                kind="body_signal",
                source=SOURCE,
                magnitude=value,
                subject=self_id,
                label=f"body {signal}",
            )
        )
    for capability, value in sorted(agent.capabilities.items()):
        atoms.append(
            world_atom(
                f"cap:{capability}:{self_id}",
                kind="capability",
                source=SOURCE,
                magnitude=value,
                subject=self_id,
                label=f"carries {capability}",
            )
        )
    return atoms


def _nearby_atoms(
    agent: AgentState, world: WorldState, location: Optional[Location], ctx: StageContext
) -> List[ContextAtom]:
    if agent.location_id is None:
        return []
    atoms: List[ContextAtom] = []
    noise = ctx.settings.obs_noise
    for other in world.agents:
        if other.agent_id == agent.agent_id or other.location_id != agent.location_id:
            continue
        distance = None
        if location is not None and location.grid is not None and agent.position and other.position:
            distance = math.dist(agent.position, other.position)
            closeness = clamp01(1.0 - distance / NEAR_RADIUS)
        else:
            closeness = DEFAULT_CLOSENESS
        raw = closeness
        if noise > 0:
            closeness = clamp01(closeness + ctx.rng(f"obs:{other.agent_id}").uniform(-noise, noise))
        atoms.append(
            world_atom(
                f"obs:nearby:{agent.agent_id}:{other.agent_id}",
                kind="nearby",
                source=SOURCE,
                magnitude=closeness,
                subject=agent.agent_id,
                target=other.agent_id,
                confidence=1.0 - noise,
                label=f"{other.display_name} is nearby",
                parts={"distance": distance, "closeness": raw, "noise": noise},
            )
        )
    return atoms


def _relation_atoms(agent: AgentState) -> List[ContextAtom]:
    self_id = agent.agent_id
    atoms: List[ContextAtom] = []
    for other_id, relation in sorted(agent.relations.items()):
        for metric in RELATION_METRICS:
            atoms.append(
                world_atom(
                    f"rel:base:{self_id}:{other_id}:{metric}",
                    kind="relation_base",
                    source=SOURCE,
                    magnitude=getattr(relation, metric),
                    subject=self_id,
                    target=other_id,
                    label=f"{metric} toward {other_id}",
                )
            )
    for other_id, tags in sorted(agent.relation_tags.items()):
        for tag in tags:
            atoms.append(
                world_atom(
                    f"rel:tag:{self_id}:{other_id}:{tag}",
                    kind="relation_tag",
                    source=SOURCE,
                    magnitude=1.0,
                    subject=self_id,
                    target=other_id,
                    tags=[tag],
                    label=f"{other_id} is {tag}",
                )
            )
    return atoms


def _event_atoms(agent: AgentState, events: Sequence[WorldEvent]) -> List[ContextAtom]:
    atoms: List[ContextAtom] = []
    for event in events:
        tags = [event.kind, *event.tags]
        if event.location_id:
            tags.append(f"loc:{event.location_id}")
        atoms.append(
            world_atom(
                f"event:{event.kind}:{event.event_id}",
                kind="event",
                source=SOURCE,
                magnitude=event.intensity,
                subject=event.actor_id,
                target=event.target_id,
                tags=tags,
                label=event.description or f"{event.actor_id} {event.kind} {event.target_id or ''}".strip(),
                code=f"event.{event.kind}",
                parts={"tick": event.tick, "location_id": event.location_id},
            )
        )
    return atoms


def _info_adequacy(agent: AgentState, nearby_count: int, event_count: int) -> ContextAtom:
    value = clamp01(0.45 + 0.1 * nearby_count + 0.1 * event_count)
    return world_atom(
        f"obs:infoAdequacy:{agent.agent_id}",
        kind="info_adequacy",
        source=SOURCE,
        magnitude=value,
        subject=agent.agent_id,
        label="how much the observer can see of the situation",
        parts={"nearby": nearby_count, "events": event_count},
    )
