"""
goallab Configuration

Loads configuration from environment variables with sensible defaults, and
turns it into the immutable PipelineSettings value passed to every stage.
"""

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Load .env file if it exists
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_floats(name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(float(part) for part in raw.split(",") if part.strip())


class Config:
    """Application configuration loaded from environment variables."""

    # Decision engine
    TEMPERATURE: float = float(os.getenv("GOALLAB_TEMPERATURE", "0.2"))
    TOP_K: int = int(os.getenv("GOALLAB_TOP_K", "5"))
    RISK_PENALTY: float = float(os.getenv("GOALLAB_RISK_PENALTY", "0.4"))
    # time, energy, social, risk, moral
    COST_WEIGHTS: Tuple[float, ...] = _env_floats(
        "GOALLAB_COST_WEIGHTS", (0.20, 0.30, 0.20, 0.20, 0.10)
    )

    # Lookahead (S9)
    LOOKAHEAD: bool = _env_bool("GOALLAB_LOOKAHEAD", False)
    LOOKAHEAD_GAMMA: float = float(os.getenv("GOALLAB_LOOKAHEAD_GAMMA", "0.5"))
    LOOKAHEAD_CHOICE: bool = _env_bool("GOALLAB_LOOKAHEAD_CHOICE", False)
    LOOKAHEAD_RISK_AVERSION: float = float(os.getenv("GOALLAB_LOOKAHEAD_RISK_AVERSION", "0.2"))
    LOOKAHEAD_NOISE: float = float(os.getenv("GOALLAB_LOOKAHEAD_NOISE", "0.02"))

    # Enrichment
    TOM_ENABLED: bool = _env_bool("GOALLAB_TOM_ENABLED", True)
    STRICT_ATOMS: bool = _env_bool("GOALLAB_STRICT_ATOMS", False)
    OBS_NOISE: float = float(os.getenv("GOALLAB_OBS_NOISE", "0.0"))

    # Simulation
    RUN_SEED: int = int(os.getenv("GOALLAB_RUN_SEED", "0"))
    DEFAULT_TICK_COUNT: int = int(os.getenv("DEFAULT_TICK_COUNT", "10"))
    TICK_DURATION_SECONDS: int = int(os.getenv("TICK_DURATION_SECONDS", "1"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = PROJECT_ROOT / "examples" / "scenarios"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if values are unusable."""
        if len(cls.COST_WEIGHTS) != 5:
            raise ValueError(
                "GOALLAB_COST_WEIGHTS needs exactly five comma-separated values "
                "(time, energy, social, risk, moral), e.g. 0.2,0.3,0.2,0.2,0.1"
            )
        if any(w < 0 for w in cls.COST_WEIGHTS) or abs(sum(cls.COST_WEIGHTS) - 1.0) > 1e-6:
            raise ValueError(
                "GOALLAB_COST_WEIGHTS must be non-negative and sum to 1.0 "
                f"(got {cls.COST_WEIGHTS})"
            )
        if cls.TEMPERATURE < 0:
            raise ValueError("GOALLAB_TEMPERATURE must be >= 0 (0 means deterministic argmax)")
        if cls.TOP_K < 1:
            raise ValueError("GOALLAB_TOP_K must be at least 1")
        if not 0.0 <= cls.RISK_PENALTY <= 1.0:
            raise ValueError("GOALLAB_RISK_PENALTY must lie in [0, 1]")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "goallab Configuration:",
            f"  Temperature: {cls.TEMPERATURE}",
            f"  Top-K: {cls.TOP_K}",
            f"  Risk penalty: {cls.RISK_PENALTY}",
            f"  Cost weights: {', '.join(f'{w:.2f}' for w in cls.COST_WEIGHTS)}",
            f"  Lookahead: {'on' if cls.LOOKAHEAD else 'off'} (gamma={cls.LOOKAHEAD_GAMMA})",
            f"  ToM: {'on' if cls.TOM_ENABLED else 'off'}",
            f"  Strict atoms: {'on' if cls.STRICT_ATOMS else 'off'}",
            f"  Run seed: {cls.RUN_SEED}",
            f"  Default Ticks: {cls.DEFAULT_TICK_COUNT}",
        ]
        return "\n".join(lines)


class CostWeights(BaseModel):
    """Scalarization weights for the cost vector."""

    model_config = ConfigDict(frozen=True)

    time: float = 0.20
    energy: float = 0.30
    social: float = 0.20
    risk: float = 0.20
    moral: float = 0.10

    def as_dict(self) -> Dict[str, float]:
        return {
            "time": self.time,
            "energy": self.energy,
            "social": self.social,
            "risk": self.risk,
            "moral": self.moral,
        }


class PipelineSettings(BaseModel):
    """Tunables threaded explicitly through every stage of one pipeline run.

    Nothing inside the pipeline reads the environment; hosts build settings once
    (directly, or from Config via from_config) and pass them down.
    """

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(0.2, ge=0.0)
    top_k: int = Field(5, ge=1)
    risk_penalty: float = Field(0.4, ge=0.0, le=1.0)
    cost_weights: CostWeights = Field(default_factory=CostWeights)

    lookahead_enabled: bool = False
    lookahead_gamma: float = Field(0.5, ge=0.0)
    # When False, lookahead only annotates scores; the reported best is unchanged
    lookahead_choice: bool = False
    lookahead_risk_aversion: float = Field(0.2, ge=0.0)
    lookahead_noise: float = Field(0.02, ge=0.0)

    tom_enabled: bool = True
    strict_atoms: bool = False
    obs_noise: float = Field(0.0, ge=0.0)
    event_lookback: int = Field(3, ge=0, description="Ticks of event log visible at S0")
    planning_goal_count: int = Field(3, ge=1)
    access_threshold: float = Field(0.5, ge=0.0, le=1.0)
    negligible_magnitude: float = Field(0.08, ge=0.0)

    @classmethod
    def from_config(cls, config: type = Config) -> "PipelineSettings":
        time, energy, social, risk, moral = config.COST_WEIGHTS
        return cls(
            temperature=config.TEMPERATURE,
            top_k=config.TOP_K,
            risk_penalty=config.RISK_PENALTY,
            cost_weights=CostWeights(
                time=time, energy=energy, social=social, risk=risk, moral=moral
            ),
            lookahead_enabled=config.LOOKAHEAD,
            lookahead_gamma=config.LOOKAHEAD_GAMMA,
            lookahead_choice=config.LOOKAHEAD_CHOICE,
            lookahead_risk_aversion=config.LOOKAHEAD_RISK_AVERSION,
            lookahead_noise=config.LOOKAHEAD_NOISE,
            tom_enabled=config.TOM_ENABLED,
            strict_atoms=config.STRICT_ATOMS,
            obs_noise=config.OBS_NOISE,
        )
