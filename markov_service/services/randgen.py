"""
Seeded random source for reproducible generation.

Wraps a private Mersenne Twister (random.Random) so every model can own
its stream instead of sharing the process-wide generator. Weighted
distributions are computed with numpy; sampling always goes through the
seeded stream.
"""
from __future__ import annotations

import random
from typing import List, Optional, Sequence, TypeVar, Union

import numpy as np

T = TypeVar("T")

MIN_TEMPERATURE = 0.01


class SeededRandom:
    """
    Reproducible stream of floats plus weighted selection helpers.

    Usage:
        rng = SeededRandom(42)
        dist = rng.weighted_distribution([3, 1])      # [0.75, 0.25]
        idx = rng.sample_index(dist)
    """

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random()
        self.seed(seed)

    def seed(self, seed: Optional[int] = None) -> "SeededRandom":
        """Reset the stream. None seeds from system entropy."""
        self._seed = seed
        self._random.seed(seed)
        return self

    @property
    def current_seed(self) -> Optional[int]:
        return self._seed

    def random(self) -> float:
        """Next uniform float in [0, 1)."""
        return self._random.random()

    # alias used by callers that read better with an explicit name
    next_float = random

    def choice(self, items: Sequence[T]) -> T:
        """Uniform pick; duplicates in `items` bias the pick."""
        if not items:
            raise ValueError("choice() requires a non-empty sequence")
        return items[int(self.random() * len(items))]

    def weighted_distribution(
        self,
        weights: Sequence[float],
        temperature: Optional[float] = None,
    ) -> List[float]:
        """
        Normalise arbitrary non-negative weights into probabilities.

        Without a temperature this is plain linear normalisation. With one,
        it is a softmax over weight / temperature: low temperatures push the
        heaviest weight toward 1.0, high temperatures even everything out.

        Args:
            weights: Non-negative weights
            temperature: Optional softmax temperature (clamped to >= 0.01)

        Returns:
            Probabilities summing to 1 (empty list for empty weights)
        """
        arr = np.asarray(weights, dtype=float)
        if arr.size == 0:
            return []

        if temperature:
            temp = max(float(temperature), MIN_TEMPERATURE)
            # shift by the max so exp() cannot overflow; cancels on normalising
            scaled = np.exp((arr - arr.max()) / temp)
            return (scaled / scaled.sum()).tolist()

        if (arr < 0).any():
            raise ValueError("Weights must be non-negative")
        total = arr.sum()
        if total == 0:
            return [1.0 / arr.size] * arr.size
        return (arr / total).tolist()

    def sample_index(self, distribution: Sequence[float]) -> int:
        """
        Select an index from a normalised distribution.

        Walks the cumulative sum and returns the first index whose cumulative
        probability exceeds one uniform draw; the last index absorbs rounding.
        """
        if not distribution:
            raise ValueError("sample_index() requires a non-empty distribution")
        point = self.random()
        cutoff = 0.0
        for i in range(len(distribution) - 1):
            cutoff += distribution[i]
            if point < cutoff:
                return i
        return len(distribution) - 1

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Return a shuffled copy of `items`."""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = int(self.random() * (i + 1))
            result[i], result[j] = result[j], result[i]
        return result

    def random_ordering(self, arg: Union[int, Sequence[T]]) -> List:
        """Shuffled list of range(n) for an int, or of the given sequence."""
        if isinstance(arg, bool) or not isinstance(arg, (int, list, tuple)):
            raise ValueError("random_ordering() expects a list or an int")
        items = list(range(arg)) if isinstance(arg, int) else list(arg)
        return self.shuffle(items)

    def random_bias(
        self,
        low: float,
        high: float,
        bias: float,
        influence: float = 0.5,
    ) -> float:
        """Float in [low, high) pulled toward `bias` by `influence` (0-1)."""
        base = self.random() * (high - low) + low
        mix = self.random() * influence
        return base * (1 - mix) + bias * mix
