"""
Main simulation orchestrator.

Fully decoupled from file I/O and config. All dependencies are injected by
the caller.

Coordinates the simulation loop:
1. Apply passive world evolution (SimulationRules.apply_tick)
2. Build the tick's SimStep (tick, dt, run seed, injected events)
3. Recall each agent's beliefs and run the inference pipeline per agent
4. Apply decisions through the rules and append the resulting events
5. Persist state, step and decision records via the injected strategy
6. Remember the event atoms each agent observed via the injected memory

Agents run sequentially in a fixed order. The pipeline is synchronous and
deterministic for a given (SimStep, world, beliefs), so ordering never changes
a decision: every agent reads the same post-rules snapshot for the tick.
"""

from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from .config import Config, PipelineSettings
from .logging_utils import (
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_INFO,
    LOG_TAG_STOCHASTIC,
    LOG_TAG_SUCCESS,
    LOG_TAG_WARNING,
    Color,
    colored,
    env_flag,
)
from .memory import BeliefMemory, LocationScopedBeliefMemory
from .persistence import InMemoryPersistence, PersistenceStrategy
from .pipeline import run_pipeline
from .reporting import decision_record
from .schemas import DecisionResult, PipelineRun, SimStep, WorldEvent, WorldState
from .simulation_rules import EventLogRules, SimulationRules, append_events

TickListener = Callable[[int, WorldState, WorldState, Dict[str, PipelineRun]], None]


class AgentPipelineError(Exception):
    """Raised when one or more agent pipelines fail during a tick.

    Contains a mapping of agent_id to the underlying exception for better
    diagnostics, along with guidance on common remediation steps.
    """

    def __init__(self, *, tick: int, errors: Dict[str, Exception]) -> None:
        self.tick = tick
        self.errors = errors
        message_lines = [
            f"One or more agent pipelines failed at tick {tick}.",
            "Agents that failed:",
        ]
        for agent_id, exc in errors.items():
            first_line = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            message_lines.append(f"  - {agent_id}: {first_line}")
        message_lines.extend(
            [
                "\nRemediation tips:",
                "  - Enable DEBUG_PIPELINE=true to print per-stage atom counts and warnings",
                "  - Enable GOALLAB_VERBOSE=true to see ranked candidates per agent",
                "  - Replay the stored SimStep for this tick to reproduce the failure",
            ]
        )
        super().__init__("\n".join(message_lines))


class Orchestrator:
    """
    Main simulation orchestrator.

    Fully decoupled - accepts all dependencies as parameters.
    No file I/O, no global config reads inside the tick loop.
    """

    def __init__(
        self,
        world_state: WorldState,
        *,
        rules: Optional[SimulationRules] = None,
        persistence: Optional[PersistenceStrategy] = None,
        memory: Optional[BeliefMemory] = None,
        settings: Optional[PipelineSettings] = None,
        run_seed: Optional[int] = None,
        agent_ids: Optional[Sequence[str]] = None,
        injected_events: Optional[Dict[int, List[WorldEvent]]] = None,
        tick_listeners: Optional[List[TickListener]] = None,
    ):
        """Initialize orchestrator with all dependencies injected.

        Args:
            world_state: Initial WorldState
            rules: World rules (defaults to EventLogRules)
            persistence: Optional persistence strategy (defaults to InMemory)
            memory: Optional belief memory (defaults to LocationScopedBeliefMemory)
            settings: Pipeline tunables (defaults to PipelineSettings.from_config())
            run_seed: Seed keying every RNG channel (defaults to Config.RUN_SEED)
            agent_ids: Agents that decide each tick, in order (defaults to all agents)
            injected_events: Events to inject at specific ticks, keyed by tick
            tick_listeners: Optional callables invoked after each tick. Each
                listener receives (tick, previous_state, new_state, runs).
        """
        self.rules = rules or EventLogRules()
        self.persistence = persistence or InMemoryPersistence()
        self.memory = memory or LocationScopedBeliefMemory()
        self.settings = settings or PipelineSettings.from_config()
        self.run_seed = Config.RUN_SEED if run_seed is None else run_seed
        self.agent_ids: List[str] = (
            list(agent_ids) if agent_ids is not None else [a.agent_id for a in world_state.agents]
        )
        for agent_id in self.agent_ids:
            # Fail at construction rather than mid-run on an unknown id
            world_state.get_agent(agent_id)
        self.injected_events = injected_events or {}
        self.tick_listeners = tick_listeners or []
        self.verbose = env_flag("GOALLAB_VERBOSE")

        # Rules may derive initial metrics before the first tick
        self.current_state = self.rules.on_simulation_start(world_state)

        # All persistence and memory operations are tagged with this id so
        # multiple runs can share one backend.
        self.run_id: UUID = uuid4()
        self.last_runs: Dict[str, PipelineRun] = {}

    async def run(self, num_ticks: int) -> Dict:
        """Run simulation for N ticks.

        Args:
            num_ticks: Number of ticks to simulate

        Returns:
            Dict with run_id, final_state, ticks_completed and stopped_early

        Raises:
            AgentPipelineError: If any agent's pipeline raises during a tick
        """
        await self.persistence.initialize()
        await self.memory.initialize()

        try:
            await self.persistence.save_state(self.run_id, 0, self.current_state)

            print(f"Starting simulation run {self.run_id}")
            print(f"Agents: {len(self.agent_ids)}, Ticks: {num_ticks}, Seed: {self.run_seed}\n")

            ticks_completed = 0
            stopped_early = False
            for tick in range(1, num_ticks + 1):
                print(f"=== Tick {tick}/{num_ticks} ===")

                try:
                    await self._run_tick(tick)
                except Exception as e:
                    print(colored(f"{LOG_TAG_ERROR} ERROR at tick {tick}: {e}", Color.RED))
                    raise

                ticks_completed = tick

                if self.rules.should_stop(self.current_state, tick):
                    stopped_early = True
                    print(f"\nSimulation stopped early at tick {tick} (signaled by simulation rules).")
                    break

            self.current_state = self.rules.on_simulation_end(self.current_state, ticks_completed)

            if not stopped_early:
                print(colored(f"\n{LOG_TAG_SUCCESS} Simulation complete!", Color.GREEN))

            return {
                "run_id": self.run_id,
                "final_state": self.current_state,
                "ticks_completed": ticks_completed,
                "stopped_early": stopped_early,
            }

        finally:
            # Always release backends even if the run fails
            await self.persistence.close()
            await self.memory.close()

    def build_step(self, tick: int) -> SimStep:
        """The replayable record of one tick."""
        return SimStep(
            t=tick,
            dt=self.rules.get_tick_duration_seconds(),
            seed=self.run_seed,
            events=list(self.injected_events.get(tick, [])),
        )

    async def _run_tick(self, tick: int) -> None:
        """Execute single tick.

        Args:
            tick: Current tick number
        """
        previous_state = self.current_state
        step = self.build_step(tick)

        print(colored(f"  {LOG_TAG_DETERMINISTIC} [Rules] Applying world rules for tick {tick}...", Color.BLUE))
        state = self.rules.apply_tick(previous_state, step)

        runs = await self._run_agent_pipelines(state, step)

        events: List[WorldEvent] = list(step.events)
        for agent_id, run in runs.items():
            if run.decision is None:
                continue
            event = self.rules.apply_decision(state, agent_id, run.decision, step)
            if event is not None:
                events.append(event)
        new_state = append_events(state, events)

        await self._persist_tick(tick, new_state, step, runs)
        await self._remember(tick, state, runs)

        self._print_tick_summary(runs, new_state)

        self.current_state = new_state
        self.last_runs = runs

        # Listener failures are logged but don't stop the run
        for listener in self.tick_listeners:
            try:
                listener(tick, previous_state, new_state, runs)
            except Exception as exc:
                print(f"  [Analysis] Listener failed: {exc}")

    async def _run_agent_pipelines(self, state: WorldState, step: SimStep) -> Dict[str, PipelineRun]:
        """Run every agent's pipeline against the same snapshot.

        All agents run even when one fails, so the raised error lists every
        failure for the tick.
        """
        runs: Dict[str, PipelineRun] = {}
        failures: Dict[str, Exception] = {}
        for agent_id in self.agent_ids:
            agent = state.get_agent(agent_id)
            beliefs = await self.memory.recall(self.run_id, agent_id, agent.location_id)
            try:
                runs[agent_id] = run_pipeline(
                    state,
                    agent_id,
                    step,
                    belief_atoms=beliefs,
                    settings=self.settings,
                )
            except Exception as exc:
                failures[agent_id] = exc

        if failures:
            raise AgentPipelineError(tick=step.t, errors=failures)
        return runs

    async def _persist_tick(
        self, tick: int, new_state: WorldState, step: SimStep, runs: Dict[str, PipelineRun]
    ) -> None:
        await self.persistence.save_state(self.run_id, tick, new_state)
        await self.persistence.save_step(self.run_id, step)
        await self.persistence.save_decisions(
            self.run_id, tick, [decision_record(run) for run in runs.values()]
        )

    async def _remember(self, tick: int, state: WorldState, runs: Dict[str, PipelineRun]) -> None:
        for agent_id, run in runs.items():
            observed = run.frame("S0")
            if observed is None:
                continue
            location_id = state.get_agent(agent_id).location_id
            await self.memory.remember(self.run_id, agent_id, location_id, observed.atoms, tick)

    def _print_tick_summary(self, runs: Dict[str, PipelineRun], new_state: WorldState) -> None:
        for agent_id, run in runs.items():
            name = new_state.get_agent(agent_id).display_name
            decision = run.decision
            if decision is None:
                print(colored(f"  {LOG_TAG_ERROR} [{name}] no decision (stage {run.failed_stage} failed)", Color.RED))
                continue
            if decision.best is None:
                print(colored(f"  {LOG_TAG_WARNING} [{name}] no enabled action", Color.MAGENTA))
            else:
                tag = LOG_TAG_STOCHASTIC if decision.chosen_by == "sample" else LOG_TAG_DETERMINISTIC
                color = Color.YELLOW if decision.chosen_by == "sample" else Color.BLUE
                print(
                    colored(
                        f"  {tag} [{name}] {decision.best.action_key} "
                        f"(q={decision.best.q:.3f}, {decision.chosen_by})",
                        color,
                    )
                )
            if self.verbose:
                self._print_ranked(decision)

        summary = self.rules.format_scene_summary(new_state)
        if summary:
            print(colored(f"  {LOG_TAG_INFO} Scene: {summary}", Color.CYAN))
        print(f"  Events in log: {len(new_state.event_log)}\n")

    @staticmethod
    def _print_ranked(decision: DecisionResult) -> None:
        for position, scored in enumerate(decision.ranked, start=1):
            lookahead = f", q_la={scored.q_lookahead:.3f}" if scored.q_lookahead is not None else ""
            print(
                f"      {position}. {scored.action_key}: q={scored.q:.3f} "
                f"(raw={scored.q_raw:.3f}, penalty={scored.penalty:.3f}{lookahead})"
            )
        for candidate in decision.blocked:
            print(f"      x  {candidate.id}: blocked by {', '.join(candidate.blocked_by) or 'disabled'}")
        for warning in decision.warnings:
            print(colored(f"      {LOG_TAG_WARNING} {warning}", Color.MAGENTA))
