"""
PersistenceStrategy interface for pluggable storage backends.

Persistence is OPTIONAL - runs work entirely in memory. What gets stored is
what a run needs to be replayed and analysed:

- WorldState snapshots by tick
- SimStep records by tick (tick, dt, seed, injected events), which together
  with the stored state reproduce every pipeline run deterministically
- Flat DecisionRecords per agent per tick

Two included implementations:
1. InMemoryPersistence - dict-based storage, data lost on exit (tests, prototyping)
2. JsonPersistence - human-readable JSON files (small runs, debugging)

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence("runs")
    await persistence.initialize()
    await persistence.save_state(run_id, tick, world_state)
    await persistence.close()
"""

import asyncio
import json
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from goallab.schemas import DecisionRecord, SimStep, WorldState


class PersistenceStrategy(ABC):
    """Abstract base class for run persistence.

    All methods are async so slow backends never block the tick loop.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (directories, connections). Called once before the run."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources. Stored data stays readable afterwards."""
        pass

    @abstractmethod
    async def save_state(self, run_id: UUID, tick: int, state: WorldState) -> None:
        """Store the world state at the end of ``tick``."""
        pass

    @abstractmethod
    async def get_state(self, run_id: UUID, tick: int) -> Optional[WorldState]:
        """Return the stored state for ``tick`` or None."""
        pass

    @abstractmethod
    async def save_step(self, run_id: UUID, step: SimStep) -> None:
        """Store the SimStep used for tick ``step.t``."""
        pass

    @abstractmethod
    async def get_steps(self, run_id: UUID) -> List[SimStep]:
        """Return every stored SimStep, ordered by tick."""
        pass

    @abstractmethod
    async def save_decisions(self, run_id: UUID, tick: int, records: List[DecisionRecord]) -> None:
        """Store all agents' decision records for ``tick`` (replaces earlier records)."""
        pass

    @abstractmethod
    async def get_decisions(self, run_id: UUID, tick: int) -> List[DecisionRecord]:
        """Return the decision records stored for ``tick`` (empty when none)."""
        pass

    @abstractmethod
    async def delete_run(self, run_id: UUID) -> None:
        """Remove everything stored for a run."""
        pass


class InMemoryPersistence(PersistenceStrategy):
    """In-memory persistence using Python dicts (no files, no database).

    Storage structure:
    - states: Dict[(run_id, tick), WorldState]
    - steps: Dict[(run_id, tick), SimStep]
    - decisions: Dict[(run_id, tick), List[DecisionRecord]]

    Data is kept after close() so tests can read results back.
    """

    def __init__(self):
        self.states: Dict[Tuple[UUID, int], WorldState] = {}
        self.steps: Dict[Tuple[UUID, int], SimStep] = {}
        self.decisions: Dict[Tuple[UUID, int], List[DecisionRecord]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def save_state(self, run_id: UUID, tick: int, state: WorldState) -> None:
        # Copy so later in-place edits by the caller never leak into stored history
        self.states[(run_id, tick)] = state.model_copy(deep=True)

    async def get_state(self, run_id: UUID, tick: int) -> Optional[WorldState]:
        return self.states.get((run_id, tick))

    async def save_step(self, run_id: UUID, step: SimStep) -> None:
        self.steps[(run_id, step.t)] = step.model_copy(deep=True)

    async def get_steps(self, run_id: UUID) -> List[SimStep]:
        return [step for (rid, _), step in sorted(self.steps.items(), key=lambda kv: kv[0][1]) if rid == run_id]

    async def save_decisions(self, run_id: UUID, tick: int, records: List[DecisionRecord]) -> None:
        self.decisions[(run_id, tick)] = list(records)

    async def get_decisions(self, run_id: UUID, tick: int) -> List[DecisionRecord]:
        return list(self.decisions.get((run_id, tick), []))

    async def delete_run(self, run_id: UUID) -> None:
        for store in (self.states, self.steps, self.decisions):
            for key in [k for k in store if k[0] == run_id]:
                del store[key]


class JsonPersistence(PersistenceStrategy):
    """File-based persistence using pretty-printed JSON.

    Directory structure:
    ```
    {base_path}/
      {run_id}/
        states/00000.json       # WorldState at tick 0
        steps/00000.json        # SimStep for tick 0
        decisions/00000.json    # List[DecisionRecord] at tick 0
    ```

    Tick padding is 5 digits so files sort lexicographically. All file I/O
    runs in a worker thread (asyncio.to_thread).
    """

    def __init__(self, base_path: Path | str = "goallab_runs"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        return None

    async def save_state(self, run_id: UUID, tick: int, state: WorldState) -> None:
        await self._write(self._tick_path(run_id, "states", tick), state.model_dump(mode="json"))

    async def get_state(self, run_id: UUID, tick: int) -> Optional[WorldState]:
        payload = await self._read(self._tick_path(run_id, "states", tick))
        return WorldState.model_validate(payload) if payload is not None else None

    async def save_step(self, run_id: UUID, step: SimStep) -> None:
        await self._write(self._tick_path(run_id, "steps", step.t), step.model_dump(mode="json"))

    async def get_steps(self, run_id: UUID) -> List[SimStep]:
        directory = self._run_dir(run_id) / "steps"
        if not directory.exists():
            return []
        paths = await asyncio.to_thread(lambda: sorted(directory.glob("*.json")))
        steps = []
        for path in paths:
            payload = await self._read(path)
            steps.append(SimStep.model_validate(payload))
        return steps

    async def save_decisions(self, run_id: UUID, tick: int, records: List[DecisionRecord]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        await self._write(self._tick_path(run_id, "decisions", tick), payload)

    async def get_decisions(self, run_id: UUID, tick: int) -> List[DecisionRecord]:
        payload = await self._read(self._tick_path(run_id, "decisions", tick))
        return [DecisionRecord.model_validate(item) for item in payload or []]

    async def delete_run(self, run_id: UUID) -> None:
        run_dir = self._run_dir(run_id)
        if run_dir.exists():
            await asyncio.to_thread(shutil.rmtree, run_dir)

    async def _write(self, path: Path, payload) -> None:
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, json.dumps(payload, indent=2), "utf-8")

    async def _read(self, path: Path):
        if not path.exists():
            return None
        text = await asyncio.to_thread(path.read_text, "utf-8")
        return json.loads(text)

    def _tick_path(self, run_id: UUID, kind: str, tick: int) -> Path:
        return self._run_dir(run_id) / kind / f"{tick:05d}.json"

    def _run_dir(self, run_id: UUID) -> Path:
        return self.base_path / str(run_id)
