"""
Pydantic schemas for the goallab inference pipeline.

All data structures that cross a module boundary are defined here.

Design Philosophy:
- ContextAtom is the only data currency between stages; everything else
  (possibilities, candidates, decisions) is a tick-scoped value object
- Atoms and derived value objects are frozen: a changed fact is a new atom
  with the same id, merged by the merge engine
- World snapshot models are plain, serializable inputs; the pipeline reads
  them and never writes them back
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from goallab.errors import AgentNotFoundError


SCHEMA_VERSION = 1


# ============================================================================
# Atom Schemas
# ============================================================================


class AtomNamespace(str, Enum):
    """Closed set of atom namespaces (the first segment of every atom id)."""

    WORLD = "world"        # observed world facts (location, map, hazards)
    OBS = "obs"            # direct observations (nearby agents, info adequacy)
    SCENE = "scene"        # scene-level metrics supplied by the host
    FEAT = "feat"          # character features (traits)
    BODY = "body"          # opaque physiological signals
    REL = "rel"            # relationship facts (base metrics, tags)
    CAP = "cap"            # capabilities the agent carries
    LOC = "loc"            # location rules (access bans, etc.)
    EVENT = "event"        # world events visible this tick
    MEM = "mem"            # recalled belief atoms from agent memory
    CTX = "ctx"            # context axes (objective, then lensed)
    PROX = "prox"          # social proximity classification
    SOC = "soc"            # aggregated social pressure
    THREAT = "threat"      # final threat stack
    APP = "app"            # cognitive appraisals
    EMO = "emo"            # emotions and dyadic emotions
    TOM = "tom"            # Theory-of-Mind dyads, baselines, policy
    MIND = "mind"          # motivational scoreboard
    DRV = "drv"            # drivers consumed by goal scoring
    GOAL = "goal"          # goal ecology
    UTIL = "util"          # goal projections readable by the action layer
    AFF = "aff"            # possibilities (affordances)
    CON = "con"            # constraints
    ACCESS = "access"      # access gates
    COST = "cost"          # cost vectors
    ACT = "act"            # action priors
    ACTION = "action"      # decision atoms
    PRED = "pred"          # lookahead predictions


AtomOrigin = Literal["world", "belief", "derived"]


class AtomTrace(BaseModel):
    """Provenance of a derived atom: what it consumed and how it was computed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    used_atom_ids: List[str] = Field(
        default_factory=list,
        alias="usedAtomIds",
        description="Ids of the atoms this value was computed from",
    )
    notes: List[str] = Field(default_factory=list, description="Short computation notes")
    # Intermediate values (inputs, weights, floor/cap bounds). Kept JSON-compatible so
    # reports can render them without knowing the producing module.
    parts: Dict[str, Any] = Field(default_factory=dict, description="Intermediate values")


class ContextAtom(BaseModel):
    """The universal unit of knowledge flowing through the pipeline.

    The id is the addressable fact (``ns:category:subject[:target][:metric]``). Two
    atoms with the same id are the same fact at different points of its derivation;
    the merge engine keeps the newer one.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Stable, namespaced atom id")
    ns: AtomNamespace = Field(..., description="Coarse classification (first id segment)")
    kind: str = Field(..., description="Fine classification, e.g. tom_dyad")
    origin: AtomOrigin = Field(..., description="world | belief | derived")
    source: str = Field("unknown", description="Producing module, for debugging only")
    subject: Optional[str] = Field(None, description="Agent the atom is about")
    target: Optional[str] = Field(None, description="Other party for relational atoms")
    magnitude: float = Field(..., description="Bounded scalar, conventionally in [0,1]")
    confidence: float = Field(1.0, description="How sure the pipeline is of magnitude")
    tags: List[str] = Field(default_factory=list, description="Free labels for grouping")
    label: Optional[str] = Field(None, description="Human-readable summary")
    code: Optional[str] = Field(None, description="Stable code key used for quark frames")
    trace: Optional[AtomTrace] = Field(None, description="Provenance (mandatory when derived)")

    @model_validator(mode="after")
    def _reject_self_reference(self) -> "ContextAtom":
        if self.trace is not None and self.id in self.trace.used_atom_ids:
            raise ValueError(f"atom '{self.id}' cites itself in trace.used_atom_ids")
        return self

    @property
    def used_atom_ids(self) -> List[str]:
        return list(self.trace.used_atom_ids) if self.trace else []


# ============================================================================
# World Snapshot Schemas (inbound)
# ============================================================================


class RelationBase(BaseModel):
    """Slow-moving relationship facts one agent holds toward another."""

    closeness: float = Field(0.0, ge=0.0, le=1.0)
    loyalty: float = Field(0.0, ge=0.0, le=1.0)
    hostility: float = Field(0.0, ge=0.0, le=1.0)
    dependency: float = Field(0.0, ge=0.0, le=1.0)
    authority: float = Field(0.0, ge=0.0, le=1.0)

    def strength(self) -> float:
        return max(self.closeness, self.loyalty, self.hostility, self.dependency, self.authority)


class AgentState(BaseModel):
    """Dynamic state of one agent in the world snapshot."""

    agent_id: str = Field(..., description="Unique agent identifier")
    name: Optional[str] = Field(None, description="Display name for logs and reports")
    location_id: Optional[str] = Field(None, description="Current location")
    # [x, y] on the location grid; None when the location has no grid
    position: Optional[Tuple[int, int]] = Field(None, description="Grid position")
    traits: Dict[str, float] = Field(default_factory=dict, description="Personality traits in [0,1]")
    body: Dict[str, float] = Field(
        default_factory=dict, description="Opaque physiological signals (fatigue, pain, stress)"
    )
    capabilities: Dict[str, float] = Field(
        default_factory=dict, description="Carried capabilities (weapon, key, ...)"
    )
    relations: Dict[str, RelationBase] = Field(
        default_factory=dict, description="Relation base toward other agents, keyed by agent id"
    )
    relation_tags: Dict[str, List[str]] = Field(
        default_factory=dict, description="Relation labels (friend, lover, family, protected)"
    )
    tags: List[str] = Field(default_factory=list, description="Extra labels")

    @property
    def display_name(self) -> str:
        return self.name or self.agent_id


class LocationGrid(BaseModel):
    """Tile map of a location used by hazard geometry."""

    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    hazards: List[Tuple[int, int]] = Field(default_factory=list, description="Hazard tiles [x, y]")
    walls: List[Tuple[int, int]] = Field(default_factory=list, description="Blocked tiles [x, y]")

    def in_bounds(self, cell: Tuple[int, int]) -> bool:
        x, y = cell
        return 0 <= x < self.width and 0 <= y < self.height


class Location(BaseModel):
    """A place agents occupy, described by normalized situational metrics."""

    location_id: str
    name: Optional[str] = None
    privacy: float = Field(0.5, ge=0.0, le=1.0)
    control: float = Field(0.5, ge=0.0, le=1.0)
    crowd: float = Field(0.0, ge=0.0, le=1.0)
    norm_pressure: float = Field(0.3, ge=0.0, le=1.0)
    procedural_strict: float = Field(0.0, ge=0.0, le=1.0)
    surveillance: float = Field(0.0, ge=0.0, le=1.0)
    hierarchy: float = Field(0.0, ge=0.0, le=1.0)
    cover: float = Field(0.0, ge=0.0, le=1.0)
    escape: float = Field(0.5, ge=0.0, le=1.0)
    danger: float = Field(0.0, ge=0.0, le=1.0)
    resources: float = Field(1.0, ge=0.0, le=1.0)
    # Rule name -> strength, e.g. {"ban.weapon": 1.0}
    access_rules: Dict[str, float] = Field(default_factory=dict)
    grid: Optional[LocationGrid] = None
    tags: List[str] = Field(default_factory=list)


class WorldEvent(BaseModel):
    """A world-visible event appended to the event log."""

    event_id: str
    tick: int
    kind: str = Field(..., description="Event kind, usually the action id (attack, help, ...)")
    actor_id: Optional[str] = None
    target_id: Optional[str] = None
    location_id: Optional[str] = None
    intensity: float = Field(0.5, ge=0.0, le=1.0)
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class WorldState(BaseModel):
    """Complete world snapshot consumed by the pipeline."""

    tick: int = 0
    agents: List[AgentState] = Field(default_factory=list)
    locations: List[Location] = Field(default_factory=list)
    event_log: List[WorldEvent] = Field(default_factory=list)
    scene: Dict[str, float] = Field(default_factory=dict, description="Scene metrics in [0,1]")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_agent(self, agent_id: str) -> AgentState:
        for agent in self.agents:
            if agent.agent_id == agent_id:
                return agent
        raise AgentNotFoundError(agent_id=agent_id, known=[a.agent_id for a in self.agents])

    def get_location(self, location_id: Optional[str]) -> Optional[Location]:
        if location_id is None:
            return None
        for location in self.locations:
            if location.location_id == location_id:
                return location
        return None


class SimStep(BaseModel):
    """Serializable record of one tick's time, seed and injected events."""

    t: int = Field(..., ge=0, description="Tick number")
    dt: float = Field(1.0, gt=0.0, description="Tick duration")
    seed: int = Field(0, description="Run seed keying every RNG channel")
    events: List[WorldEvent] = Field(default_factory=list, description="Events injected this tick")


# ============================================================================
# Action Layer Schemas
# ============================================================================


class Possibility(BaseModel):
    """A candidate affordance derived from atoms, prior to goal scoring."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Possibility atom id, e.g. aff:attack:bob")
    kind: str
    action_id: str
    target_id: Optional[str] = None
    label: str
    magnitude: float
    enabled: bool
    confidence: float = 1.0
    cost: Optional[float] = None
    cost_atom_id: Optional[str] = None
    blocked_by: List[str] = Field(default_factory=list)
    why_atom_ids: List[str] = Field(default_factory=list)
    requires_access: Optional[str] = Field(None, description="access:* atom id gating this action")

    @property
    def action_key(self) -> str:
        return f"{self.action_id}:{self.target_id}" if self.target_id else self.action_id


class ActionCandidate(BaseModel):
    """A scorable candidate: possibility plus goal-energy projection."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Action key, e.g. attack:bob or hide")
    kind: str
    actor_id: str
    target_id: Optional[str] = None
    possibility_id: str
    delta_goals: Dict[str, float] = Field(default_factory=dict)
    cost: float = 0.0
    confidence: float = 1.0
    support_atoms: List[str] = Field(default_factory=list)
    enabled: bool = True
    blocked_by: List[str] = Field(default_factory=list)


class ScoredAction(BaseModel):
    """Score breakdown for one candidate."""

    model_config = ConfigDict(frozen=True)

    candidate: ActionCandidate
    q_raw: float
    penalty: float
    q: float
    contributions: Dict[str, float] = Field(default_factory=dict)
    q_lookahead: Optional[float] = None

    @property
    def action_key(self) -> str:
        return self.candidate.id


class ActionProjection(BaseModel):
    """One-step forward projection of a single action."""

    model_config = ConfigDict(frozen=True)

    action_key: str
    z1: Dict[str, float]
    v0: float
    v1: float
    q_now: float
    q_lookahead: float


class TransitionSnapshot(BaseModel):
    """Predicted-next-state snapshot for the retained candidates."""

    model_config = ConfigDict(frozen=True)

    z0: Dict[str, float]
    gamma: float
    value_weights: Dict[str, float]
    projections: List[ActionProjection] = Field(default_factory=list)

    def projection(self, action_key: str) -> Optional[ActionProjection]:
        for item in self.projections:
            if item.action_key == action_key:
                return item
        return None


ChosenBy = Literal["argmax", "sample", "lookahead", "none"]


class DecisionResult(BaseModel):
    """Output of the decision engine for one agent and tick."""

    model_config = ConfigDict(frozen=True)

    actor_id: str
    tick: int
    best: Optional[ScoredAction] = None
    ranked: List[ScoredAction] = Field(default_factory=list)
    retained: List[str] = Field(default_factory=list, description="Action keys kept for sampling")
    blocked: List[ActionCandidate] = Field(default_factory=list)
    goal_energy: Dict[str, float] = Field(default_factory=dict)
    temperature: float = 0.0
    chosen_by: ChosenBy = "none"
    intensity: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    atoms: List[ContextAtom] = Field(default_factory=list)
    lookahead: Optional[TransitionSnapshot] = None


# ============================================================================
# Stage Frame Schemas (outbound)
# ============================================================================

StageId = Literal["S0", "S1", "S2", "S3", "S4", "S5", "S6", "S7", "S8", "S9"]


class StageStats(BaseModel):
    atom_count: int = 0
    added_count: int = 0
    missing_code_count: int = 0
    missing_trace_derived_count: int = 0


class StageFrame(BaseModel):
    """Snapshot of the accumulated atom set after one stage."""

    stage: StageId
    title: str
    atoms: List[ContextAtom] = Field(default_factory=list)
    new_atom_ids: List[str] = Field(default_factory=list)
    overridden_ids: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    stats: StageStats = Field(default_factory=StageStats)
    artifacts: Dict[str, Any] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return "error" in self.artifacts


class StageFailure(BaseModel):
    """A caught stage failure, returned instead of a frame."""

    stage: StageId
    name: str
    message: str
    stack: str

    def as_artifact(self) -> Dict[str, str]:
        return {"name": self.name, "message": self.message, "stack": self.stack}


class PipelineRun(BaseModel):
    """Ordered stage frames plus the final decision for one agent and tick."""

    schema_version: int = SCHEMA_VERSION
    self_id: str
    tick: int
    participant_ids: List[str] = Field(default_factory=list)
    stages: List[StageFrame] = Field(default_factory=list)
    decision: Optional[DecisionResult] = None
    failed_stage: Optional[StageId] = None

    def frame(self, stage: str) -> Optional[StageFrame]:
        for frame in self.stages:
            if frame.stage == stage:
                return frame
        return None

    def final_atoms(self) -> List[ContextAtom]:
        return list(self.stages[-1].atoms) if self.stages else []

    @property
    def warnings(self) -> List[str]:
        return [f"{frame.stage}: {w}" for frame in self.stages for w in frame.warnings]


class DecisionRecord(BaseModel):
    """Flat, persisted summary of one agent's decision at one tick."""

    agent_id: str
    tick: int
    action_key: Optional[str] = None
    kind: Optional[str] = None
    target_id: Optional[str] = None
    q: Optional[float] = None
    chosen_by: ChosenBy = "none"
    failed_stage: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
