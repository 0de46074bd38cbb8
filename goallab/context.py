"""Per-run context handed to every enricher alongside the atom set."""

import random
from dataclasses import dataclass, field
from typing import Tuple

from goallab.config import PipelineSettings
from goallab.rng import rng_channel


@dataclass(frozen=True)
class StageContext:
    """Who is evaluating, when, and with which settings.

    Enrichers are pure functions of ``(atoms, StageContext)``.
    """

    self_id: str
    tick: int
    run_seed: int = 0
    settings: PipelineSettings = field(default_factory=PipelineSettings)
    participant_ids: Tuple[str, ...] = ()

    def rng(self, purpose: str) -> random.Random:
        return rng_channel(self.run_seed, self.self_id, self.tick, purpose)
