"""Seed derivation.

Every stochastic component gets its own seed from the base seed and a key
(episode index, sample index, ...), so components are reproducible on their
own and never depend on the order of draws from a shared generator.
"""
import hashlib

import numpy as np


def derive_seed(base_seed: int, *keys) -> int:
    """Keyed hash of the base seed, 32 bits."""
    material = repr((int(base_seed),) + tuple(keys)).encode("utf-8")
    digest = hashlib.blake2b(material, digest_size=4).digest()
    return int.from_bytes(digest, "little")


def make_rng(base_seed: int, *keys) -> np.random.Generator:
    return np.random.default_rng(derive_seed(base_seed, *keys))
