"""
Injectable random sources.

Everything in the engine draws through a `RandomSource`, whose only primitive is
`next()` returning a float in [0, 1). Seeded sources make simulations reproducible;
`spawn_seeds` hands each simulation worker its own independent stream.
"""
import logging
import random
import secrets
from abc import ABC, abstractmethod

import numpy as np

from tumble_engine.exceptions import GameLogicException

logger = logging.getLogger(__name__)


class RandomSource(ABC):
    """Base stream. Subclasses implement `next()`; every other draw is derived from it."""

    @abstractmethod
    def next(self) -> float:
        """Float in [0, 1)."""

    def chance(self, probability) -> bool:
        return self.next() < probability

    def randint(self, low, high) -> int:
        """Integer in [low, high] inclusive."""
        return low + min(int(self.next() * (high - low + 1)), high - low)

    def shuffle(self, items):
        """Fisher-Yates shuffle in place."""
        for i in range(len(items) - 1, 0, -1):
            j = self.randint(0, i)
            items[i], items[j] = items[j], items[i]
        return items


class SeededRandomSource(RandomSource):
    def __init__(self, seed=None):
        self.seed = seed
        self._random = random.Random(seed)

    def next(self) -> float:
        return self._random.random()


class SecureRandomSource(RandomSource):
    """OS entropy via secrets.SystemRandom; not reproducible, use for live play."""

    def __init__(self):
        self._random = secrets.SystemRandom()

    def next(self) -> float:
        return self._random.random()


def weighted_choice(rng, items, weights):
    """
    Cumulative-weight selection over the non-zero entries.

    The first item whose running total reaches the sampled threshold wins, so ties are
    resolved by iteration order.

    Raises:
        GameLogicException: If no item has a positive weight.
    """
    pool = [(item, weight) for item, weight in zip(items, weights) if weight > 0]
    if not pool:
        raise GameLogicException("Weighted draw over an empty distribution", details={"items": [str(i) for i in items]})
    total = sum(weight for _, weight in pool)
    threshold = rng.next() * total
    cumulative = 0.0
    for item, weight in pool:
        cumulative += weight
        if cumulative >= threshold:
            return item
    return pool[-1][0]


def spawn_seeds(seed, count):
    """Derive `count` independent integer seeds from one root seed (None draws fresh entropy)."""
    children = np.random.SeedSequence(seed).spawn(count)
    return [int(child.generate_state(1)[0]) for child in children]


def make_random_source(config=None, seed=None):
    """Pick a source from config: secure when SECURE_RNG is set, otherwise seeded (RNG_SEED or `seed`)."""
    if config is not None and getattr(config, 'SECURE_RNG', False):
        return SecureRandomSource()
    if seed is None and config is not None:
        seed = getattr(config, 'RNG_SEED', None)
    if seed is None:
        logger.debug("No RNG seed configured; results will not be reproducible")
    return SeededRandomSource(seed)
