"""
Hazard geometry enricher (S2).

Reads the observer's location grid and produces:
- ``world:map:hazardProximity:<self>``: how close the nearest reachable hazard is
- ``world:map:hazardBetween:<self>:<other>``: whether a hazard tile lies on the
  straight line to a co-located agent
- ``soc:allyHazardBetween:<self>``: the worst hazard separating the observer from
  a friend

Grid coordinates are [x, y]; movement is four-directional and walls block it.
"""

from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from goallab.atoms import AtomIndex, clamp01, derived_atom
from goallab.context import StageContext
from goallab.schemas import AgentState, ContextAtom, LocationGrid, WorldState

SOURCE = "enrichment.hazard"

# Tiles beyond which a hazard no longer registers as proximate
HAZARD_RADIUS = 6.0

Cell = Tuple[int, int]


def hazard_distance(grid: LocationGrid, start: Cell) -> Optional[int]:
    """BFS step distance from ``start`` to the nearest hazard tile, None if unreachable."""
    hazards: Set[Cell] = {tuple(h) for h in grid.hazards}
    walls: Set[Cell] = {tuple(w) for w in grid.walls}
    if not hazards or not grid.in_bounds(start):
        return None
    if start in hazards:
        return 0

    directions = [(1, 0), (-1, 0), (0, 1), (0, -1)]
    visited = {start}
    queue: deque[Tuple[Cell, int]] = deque([(start, 0)])

    def neighbors(cell: Cell) -> Iterable[Cell]:
        x, y = cell
        for dx, dy in directions:
            nxt = (x + dx, y + dy)
            if grid.in_bounds(nxt) and nxt not in walls:
                yield nxt

    while queue:
        cell, dist = queue.popleft()
        for nb in neighbors(cell):
            if nb in visited:
                continue
            visited.add(nb)
            if nb in hazards:
                return dist + 1
            queue.append((nb, dist + 1))
    return None


def bresenham(a: Cell, b: Cell) -> List[Cell]:
    """Tiles on the straight line from a to b, endpoints included."""
    x0, y0 = a
    x1, y1 = b
    dx, dy = abs(x1 - x0), -abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx + dy
    cells: List[Cell] = []
    while True:
        cells.append((x0, y0))
        if (x0, y0) == (x1, y1):
            return cells
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x0 += sx
        if e2 <= dx:
            err += dx
            y0 += sy


def has_hazard_inputs(world: WorldState, ctx: StageContext) -> bool:
    agent = world.get_agent(ctx.self_id)
    location = world.get_location(agent.location_id)
    return bool(location and location.grid and location.grid.hazards and agent.position)


def derive_hazard_geometry(
    atoms: List[ContextAtom], ctx: StageContext, world: WorldState
) -> List[ContextAtom]:
    index = AtomIndex(atoms)
    self_id = ctx.self_id
    agent = world.get_agent(self_id)
    location = world.get_location(agent.location_id)
    if location is None or location.grid is None or agent.position is None:
        return []
    grid = location.grid
    hazards: Set[Cell] = {tuple(h) for h in grid.hazards}
    if not hazards:
        return []

    location_atom = f"world:location:{self_id}"
    out: List[ContextAtom] = []
    distance = hazard_distance(grid, tuple(agent.position))
    proximity = 0.0 if distance is None else clamp01(1.0 - distance / HAZARD_RADIUS)
    out.append(
        derived_atom(
            f"world:map:hazardProximity:{self_id}",
            kind="hazard_proximity",
            source=SOURCE,
            magnitude=proximity,
            used=index.present([location_atom]),
            parts={"distance": distance, "radius": HAZARD_RADIUS, "position": list(agent.position)},
            subject=self_id,
            tags=["hazard"],
            label="nearest reachable hazard",
        )
    )

    positions: Dict[str, AgentState] = {a.agent_id: a for a in world.agents}
    ally_between: List[Tuple[str, float]] = []
    for other_id in index.nearby(self_id):
        other = positions.get(other_id)
        if other is None or other.position is None:
            continue
        line = bresenham(tuple(agent.position), tuple(other.position))[1:-1]
        blocking = [cell for cell in line if cell in hazards]
        between = 1.0 if blocking else 0.0
        between_id = f"world:map:hazardBetween:{self_id}:{other_id}"
        out.append(
            derived_atom(
                between_id,
                kind="hazard_between",
                source=SOURCE,
                magnitude=between,
                used=[f"obs:nearby:{self_id}:{other_id}", *index.present([location_atom])],
                parts={"line": [list(c) for c in line], "hazardTiles": [list(c) for c in blocking]},
                subject=self_id,
                target=other_id,
                tags=["hazard"],
                label=f"hazard between self and {other_id}",
            )
        )
        if f"prox:friend:{self_id}:{other_id}" in index:
            ally_between.append((between_id, between))

    if ally_between:
        worst_id, worst = max(ally_between, key=lambda item: item[1])
        out.append(
            derived_atom(
                f"soc:allyHazardBetween:{self_id}",
                kind="ally_hazard_between",
                source=SOURCE,
                magnitude=worst,
                used=[atom_id for atom_id, _ in ally_between],
                parts={"worst": worst_id},
                subject=self_id,
                tags=["hazard", "social"],
                label="a hazard separates self from an ally",
            )
        )
    return out
