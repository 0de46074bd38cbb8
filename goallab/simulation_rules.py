"""
SimulationRules interface: the world-application boundary.

The inference pipeline never mutates world state. It returns a decision; a
SimulationRules implementation turns that decision into a world-visible
WorldEvent and owns every change to the WorldState between ticks.

Key responsibilities:
- Apply one tick of passive world evolution (drift, event log retention)
- Convert a chosen action into a WorldEvent (actor, kind, target, intensity)
- Decide when a run should stop

Design principle: rules always return new copies; the state passed in is
never modified.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from goallab.schemas import DecisionResult, SimStep, WorldEvent, WorldState


def format_scene_generic(state: WorldState) -> str:
    """Format scene metrics as a short summary for orchestrator output.

    Example output:
    "Chaos=0.40, Threat=0.65"

    Returns an empty string when the scene has no metrics.
    """
    if not state.scene:
        return ""
    parts = [f"{key.replace('_', ' ').title()}={value:.2f}" for key, value in sorted(state.scene.items())]
    return ", ".join(parts)


def event_from_decision(
    decision: DecisionResult, state: WorldState, step: SimStep
) -> Optional[WorldEvent]:
    """Build the WorldEvent for a decision's chosen action, or None without a choice.

    Intensity is the decision's score magnitude.
    """
    if decision.best is None:
        return None
    candidate = decision.best.candidate
    actor = state.get_agent(decision.actor_id)
    return WorldEvent(
        event_id=f"{step.t}:{decision.actor_id}:{candidate.id}",
        tick=step.t,
        kind=candidate.kind,
        actor_id=decision.actor_id,
        target_id=candidate.target_id,
        location_id=actor.location_id,
        intensity=decision.intensity,
        description=f"{actor.display_name} chose {candidate.id} ({decision.chosen_by})",
        tags=["decision", decision.chosen_by],
    )


def append_events(state: WorldState, events: Iterable[WorldEvent]) -> WorldState:
    """Return a copy of ``state`` with ``events`` appended to the event log."""
    new_state = state.model_copy(deep=True)
    new_state.event_log.extend(e for e in events if e is not None)
    return new_state


class SimulationRules(ABC):
    """Abstract base class for world evolution and decision application.

    SimulationRules subclasses are dependency-injected into the Orchestrator,
    so the same agents can run under different world physics.

    Core responsibilities:
    1. apply_tick() - passive world evolution before agents decide
    2. apply_decision() - chosen action -> WorldEvent
    3. Lifecycle hooks - on_simulation_start(), on_simulation_end(), should_stop()
    """

    @abstractmethod
    def apply_tick(self, state: WorldState, step: SimStep) -> WorldState:
        """
        Apply one tick of passive evolution and return a new WorldState.

        Runs BEFORE any agent pipeline for this tick. Any randomness must come
        from ``step.seed`` so that a recorded SimStep replays identically.

        Args:
            state: World state at the start of this tick
            step: Tick, duration, seed and injected events

        Returns:
            Updated copy of the world state
        """

    def apply_decision(
        self, state: WorldState, agent_id: str, decision: DecisionResult, step: SimStep
    ) -> Optional[WorldEvent]:
        """
        Convert one agent's decision into a world event.

        The default appends nothing itself; it only builds the event from the
        chosen action. Return None to swallow the action (e.g. a rule forbids it).

        Args:
            state: Current world state (read only)
            agent_id: Deciding agent
            decision: Pipeline decision for this tick
            step: Current SimStep

        Returns:
            The event to append to the log, or None
        """
        return event_from_decision(decision, state, step)

    def get_tick_duration_seconds(self) -> float:
        """Simulated seconds per tick (default: 1)."""
        return 1.0

    def on_simulation_start(self, state: WorldState) -> WorldState:
        """Hook called once before the first tick."""
        return state

    def on_simulation_end(self, state: WorldState, tick: int) -> WorldState:
        """Hook called once after the final tick."""
        return state

    def should_stop(self, state: WorldState, tick: int) -> bool:
        """Return True to end the run early after ``tick``."""
        return False

    def format_scene_summary(self, state: WorldState) -> str:
        """Printable scene summary for the orchestrator output."""
        return format_scene_generic(state)


class EventLogRules(SimulationRules):
    """Default rules: advance the tick, age out old events, relax scene metrics.

    Scene metrics relax toward zero by ``scene_decay`` per tick, so tension
    raised by an event fades unless new events keep it up. Events older than
    ``retention_ticks`` are dropped from the log.
    """

    def __init__(self, *, retention_ticks: int = 20, scene_decay: float = 0.05) -> None:
        self.retention_ticks = retention_ticks
        self.scene_decay = scene_decay

    def apply_tick(self, state: WorldState, step: SimStep) -> WorldState:
        new_state = state.model_copy(deep=True)
        new_state.tick = step.t
        earliest = step.t - self.retention_ticks
        new_state.event_log = [e for e in new_state.event_log if e.tick >= earliest]
        new_state.scene = {
            key: max(0.0, value - self.scene_decay * step.dt) for key, value in new_state.scene.items()
        }
        return new_state
