"""
BeliefMemory interface for agent belief-atom memory.

Belief memory is the only state that survives between ticks for an agent: at
the end of a tick the orchestrator hands over the event atoms the agent just
observed, and at the start of the next tick the recalled belief atoms are fed
into S0 alongside fresh observations.

Key responsibilities:
- Turn observed ``event:<kind>:<id>`` atoms into ``mem:event:<kind>:<id>``
  belief atoms
- Scope memories by agent and location
- Bound memory size (oldest beliefs are forgotten first)

Design principle: memories are atoms, merged with the same merge engine as
everything else, so a re-observed event replaces its older memory.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from goallab.atoms import belief_atom
from goallab.merge import merge_atoms_prefer_newer
from goallab.schemas import AtomNamespace, ContextAtom

SOURCE = "memory"

# Confidence of a remembered event relative to a direct observation
MEMORY_CONFIDENCE = 0.8

ScopeKey = Tuple[UUID, str, Optional[str]]


def to_belief_atoms(atoms: Sequence[ContextAtom], tick: int) -> List[ContextAtom]:
    """Convert observed event atoms into ``mem:event:*`` belief atoms.

    Non-event atoms are ignored.
    """
    beliefs: List[ContextAtom] = []
    for atom in atoms:
        if atom.ns != AtomNamespace.EVENT:
            continue
        beliefs.append(
            belief_atom(
                f"mem:{atom.id}",
                kind="memory_event",
                source=SOURCE,
                magnitude=atom.magnitude,
                used=[atom.id],
                parts={"rememberedAt": tick},
                subject=atom.subject,
                target=atom.target,
                confidence=min(atom.confidence, MEMORY_CONFIDENCE),
                tags=[*atom.tags, "memory"],
                label=f"remembers {atom.label or atom.id}",
                code=f"mem.{atom.code}" if atom.code else None,
            )
        )
    return beliefs


class BeliefMemory(ABC):
    """
    Abstract base class for agent belief memory.

    Implementations decide where beliefs live (in memory, on disk, in a
    database) and how they are scoped and forgotten.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the memory backend. Called once before the run starts."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the memory backend. Called once after the run completes."""
        pass

    @abstractmethod
    async def remember(
        self,
        run_id: UUID,
        agent_id: str,
        location_id: Optional[str],
        atoms: Sequence[ContextAtom],
        tick: int,
    ) -> List[ContextAtom]:
        """
        Store the event atoms an agent observed this tick.

        Args:
            run_id: Simulation run identifier
            agent_id: Agent who owns these memories
            location_id: Agent's location when the events were observed
            atoms: Atoms from the agent's S0 frame (non-event atoms are ignored)
            tick: Tick when the events were observed

        Returns:
            The belief atoms that were stored
        """
        pass

    @abstractmethod
    async def recall(self, run_id: UUID, agent_id: str, location_id: Optional[str]) -> List[ContextAtom]:
        """
        Return the belief atoms an agent holds for a location.

        Args:
            run_id: Simulation run identifier
            agent_id: Agent identifier
            location_id: Agent's current location

        Returns:
            Belief atoms, oldest first
        """
        pass

    @abstractmethod
    async def clear(self, run_id: UUID, agent_id: str) -> None:
        """Forget every belief an agent holds, in all locations."""
        pass


class LocationScopedBeliefMemory(BeliefMemory):
    """
    In-memory belief store scoped by (run, agent, location).

    Good for:
    - Tests and short runs
    - Scenarios where agents should only recall what happened where they are

    Limitations:
    - Lost when the process exits
    - No decay of confidence over time
    """

    def __init__(self, capacity: int = 50):
        """
        Args:
            capacity: Maximum belief atoms kept per scope; oldest are dropped first
        """
        self.capacity = capacity
        self._scopes: Dict[ScopeKey, List[ContextAtom]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def remember(
        self,
        run_id: UUID,
        agent_id: str,
        location_id: Optional[str],
        atoms: Sequence[ContextAtom],
        tick: int,
    ) -> List[ContextAtom]:
        beliefs = to_belief_atoms(atoms, tick)
        if not beliefs:
            return []
        key = (run_id, agent_id, location_id)
        existing = self._scopes.get(key, [])
        # Re-remembered ids move to the end so capacity drops the stalest
        refreshed = {b.id for b in beliefs}
        kept = [a for a in existing if a.id not in refreshed]
        merged = merge_atoms_prefer_newer(kept, beliefs).atoms
        self._scopes[key] = merged[-self.capacity:] if self.capacity > 0 else []
        return beliefs

    async def recall(self, run_id: UUID, agent_id: str, location_id: Optional[str]) -> List[ContextAtom]:
        return list(self._scopes.get((run_id, agent_id, location_id), []))

    async def clear(self, run_id: UUID, agent_id: str) -> None:
        for key in [k for k in self._scopes if k[0] == run_id and k[1] == agent_id]:
            del self._scopes[key]
