"""
Random number generation utilities.

Every stage that needs randomness gets its own numpy Generator derived from
the world seed and a stage name, so stages stay reproducible independently
of each other. Hash-derived seeds are also used to give every plate bucket
its own kinematics without keeping a plate registry.
"""

import hashlib

import numpy as np


def stable_hash(text: str) -> int:
    """
    Hash a string to a non-negative 63-bit integer.

    Unlike the builtin ``hash`` this is stable across interpreter runs.

    Args:
        text: Value to hash

    Returns:
        Integer in [0, 2**63)
    """
    digest = hashlib.blake2b(text.encode("utf8"), digest_size=8).digest()
    return int.from_bytes(digest, "little", signed=False) >> 1


class RngPool:
    """Deterministic RNG factory keyed by stage name."""

    def __init__(self, seed: int) -> None:
        self.seed = int(seed)

    def for_stage(self, stage_name: str) -> np.random.Generator:
        return np.random.default_rng(stable_hash(f"{stage_name}:{self.seed}"))
