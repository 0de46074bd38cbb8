"""
Checkpoint Standoff
===================

WHAT THIS SHOWS:
- Loading a JSON scenario into a WorldState
- Custom world rules on top of EventLogRules (violence raises tension)
- Per-agent inference pipelines deciding each tick
- Optional JSON persistence and a markdown report of the last pipeline run

RUN:
    python examples/standoff/run.py
    python examples/standoff/run.py --scenario tribunal --ticks 3
    GOALLAB_VERBOSE=true python examples/standoff/run.py     # ranked candidates
    DEBUG_PIPELINE=true python examples/standoff/run.py      # per-stage lines
"""

import argparse
import asyncio
from pathlib import Path

from goallab import (
    Config,
    EventLogRules,
    InMemoryPersistence,
    JsonPersistence,
    Orchestrator,
    PipelineSettings,
    ScenarioLoader,
    SimStep,
    WorldState,
    render_markdown,
)

# Tension added to the scene per violent event in the previous tick
VIOLENCE_TENSION = 0.15
VIOLENT_KINDS = {"attack", "threaten"}


class StandoffRules(EventLogRules):
    """Event log rules where violence keeps the scene tense.

    - Attacks and threats from the previous tick raise scene tension
    - Everything else relaxes as in EventLogRules
    - The run stops once tension drops to zero
    """

    def apply_tick(self, state: WorldState, step: SimStep) -> WorldState:
        updated = super().apply_tick(state, step)
        violent = [e for e in updated.event_log if e.tick == step.t - 1 and e.kind in VIOLENT_KINDS]
        if violent and "tension" in updated.scene:
            raised = updated.scene["tension"] + VIOLENCE_TENSION * sum(e.intensity for e in violent)
            updated.scene["tension"] = min(1.0, raised)
        return updated

    def should_stop(self, state: WorldState, tick: int) -> bool:
        return state.scene.get("tension", 1.0) <= 0.0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a goallab scenario")
    parser.add_argument("--scenario", default="standoff", help="Scenario name or path to a JSON file")
    parser.add_argument("--ticks", type=int, default=Config.DEFAULT_TICK_COUNT)
    parser.add_argument("--seed", type=int, default=Config.RUN_SEED)
    parser.add_argument("--save", type=Path, default=None, help="Directory for JSON run files")
    parser.add_argument("--report", default=None, help="Agent id whose last run is printed as markdown")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    Config.validate()

    print("=" * 60)
    print("CHECKPOINT STANDOFF")
    print("=" * 60)
    print(Config.display())
    print()

    world_state = ScenarioLoader().load(args.scenario)
    print(f"Scenario: {world_state.metadata.get('name', args.scenario)}")
    print(f"{world_state.metadata.get('description', '')}\n")

    persistence = JsonPersistence(args.save) if args.save else InMemoryPersistence()

    def tension_listener(tick, previous, new, runs):
        before = previous.scene.get("tension", 0.0)
        after = new.scene.get("tension", 0.0)
        if after > before:
            print(f"  [Analysis] Tension rose {before:.2f} -> {after:.2f}")

    orchestrator = Orchestrator(
        world_state,
        rules=StandoffRules(),
        persistence=persistence,
        settings=PipelineSettings.from_config(),
        run_seed=args.seed,
        tick_listeners=[tension_listener],
    )
    result = await orchestrator.run(num_ticks=args.ticks)

    print(f"\nTicks completed: {result['ticks_completed']}")
    print(f"Events in final log: {len(result['final_state'].event_log)}")
    if args.save:
        print(f"Run files: {args.save / str(result['run_id'])}")

    report_agent = args.report or orchestrator.agent_ids[0]
    last_run = orchestrator.last_runs.get(report_agent)
    if last_run is not None:
        print()
        print(render_markdown(last_run))


if __name__ == "__main__":
    asyncio.run(main())
