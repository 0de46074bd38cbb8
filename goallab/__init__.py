"""
goallab - explainable goal-driven agent inference.

World snapshots become typed atoms, atoms flow through ten ordered stages
(perception, context, lens, emotion, Theory of Mind, drivers, goals, actions,
lookahead), and each agent ends the tick with a sampled, fully traced action.

No file I/O required. No global config inside the pipeline.
All dependencies injected by the caller.
"""

__version__ = "0.1.0"

# Main simulation components
from .orchestrator import AgentPipelineError, Orchestrator
from .pipeline import run_pipeline

# Core interfaces
from .simulation_rules import EventLogRules, SimulationRules, event_from_decision
from .persistence import InMemoryPersistence, JsonPersistence, PersistenceStrategy
from .memory import BeliefMemory, LocationScopedBeliefMemory

# Atoms and merge engine
from .atoms import belief_atom, derived_atom, world_atom
from .merge import merge_atoms_prefer_newer

# Configuration
from .config import Config, CostWeights, PipelineSettings

# Core schemas
from .schemas import (
    ActionCandidate,
    AgentState,
    AtomNamespace,
    AtomTrace,
    ContextAtom,
    DecisionRecord,
    DecisionResult,
    Location,
    LocationGrid,
    PipelineRun,
    Possibility,
    RelationBase,
    ScoredAction,
    SimStep,
    StageFrame,
    WorldEvent,
    WorldState,
)

# Errors
from .errors import (
    AgentNotFoundError,
    AtomValidationError,
    PipelineStageError,
    ScenarioValidationError,
)

# Reporting and scenarios
from .reporting import decision_records, render_markdown, run_report, stage_summary
from .scenario import ScenarioLoader, load_scenario

__all__ = [
    # Main entry points
    "Orchestrator",
    "AgentPipelineError",
    "run_pipeline",
    # Core interfaces
    "SimulationRules",
    "EventLogRules",
    "event_from_decision",
    "PersistenceStrategy",
    "InMemoryPersistence",
    "JsonPersistence",
    "BeliefMemory",
    "LocationScopedBeliefMemory",
    # Atoms
    "world_atom",
    "belief_atom",
    "derived_atom",
    "merge_atoms_prefer_newer",
    # Configuration
    "Config",
    "CostWeights",
    "PipelineSettings",
    # Schemas
    "ContextAtom",
    "AtomNamespace",
    "AtomTrace",
    "AgentState",
    "RelationBase",
    "Location",
    "LocationGrid",
    "WorldEvent",
    "WorldState",
    "SimStep",
    "Possibility",
    "ActionCandidate",
    "ScoredAction",
    "DecisionResult",
    "DecisionRecord",
    "StageFrame",
    "PipelineRun",
    # Errors
    "AtomValidationError",
    "PipelineStageError",
    "AgentNotFoundError",
    "ScenarioValidationError",
    # Reporting and scenarios
    "stage_summary",
    "run_report",
    "decision_records",
    "render_markdown",
    "ScenarioLoader",
    "load_scenario",
]
