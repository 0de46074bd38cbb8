"""
Deterministic RNG channels.

Every stochastic choice in the pipeline draws from a channel keyed by
``(run_seed, agent_id, tick, purpose)``. Channels are independent of call
order: drawing from the "obs" channel never shifts the "decision" channel.
"""

import hashlib
import math
import random

_OPEN_EPSILON = 1e-12


def channel_seed(run_seed: int, agent_id: str, tick: int, purpose: str) -> int:
    key = f"{run_seed}|{agent_id}|{tick}|{purpose}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(key).digest()[:8], "big")


def rng_channel(run_seed: int, agent_id: str, tick: int, purpose: str) -> random.Random:
    """Return a fresh Random seeded for one (run, agent, tick, purpose) key."""
    return random.Random(channel_seed(run_seed, agent_id, tick, purpose))


def uniform_open(rng: random.Random) -> float:
    """Uniform draw strictly inside (0, 1)."""
    u = rng.random()
    return min(max(u, _OPEN_EPSILON), 1.0 - _OPEN_EPSILON)


def gumbel_noise(rng: random.Random) -> float:
    return -math.log(-math.log(uniform_open(rng)))
