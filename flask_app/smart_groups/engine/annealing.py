"""
Simulated-annealing schedule shared by the clustering and team refiners.

The schedule is explicit so callers (and tests) can pin the seed, shrink the
budget, or set ``initial_temperature=0`` for a pure greedy swap-if-improves
pass.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterator

MIN_TEMPERATURE = 1e-9
IMPROVEMENT_EPSILON = 1e-12


@dataclass(frozen=True, slots=True)
class AnnealingSchedule:
    iterations: int = 20000
    initial_temperature: float = 0.05
    cooling_rate: float = 0.9995
    seed: int | None = None

    def __post_init__(self):
        if self.iterations < 0:
            raise ValueError("iterations must be >= 0.")
        if self.initial_temperature < 0:
            raise ValueError("initial_temperature must be >= 0.")
        if not 0 < self.cooling_rate <= 1:
            raise ValueError("cooling_rate must be in (0, 1].")

    def make_rng(self) -> random.Random:
        return random.Random(self.seed)

    def temperatures(self) -> Iterator[float]:
        """Yield one temperature per iteration, cooling geometrically."""

        temperature = self.initial_temperature
        for _ in range(self.iterations):
            yield temperature
            temperature *= self.cooling_rate


GREEDY = AnnealingSchedule(initial_temperature=0.0, seed=0)


def accept_move(delta: float, temperature: float, rng: random.Random) -> bool:
    """Metropolis rule: take improvements, and sometimes regressions while hot."""

    if delta < -IMPROVEMENT_EPSILON:
        return True
    if temperature <= MIN_TEMPERATURE:
        return False
    return rng.random() < math.exp(-max(delta, 0.0) / temperature)


__all__ = ["AnnealingSchedule", "GREEDY", "MIN_TEMPERATURE", "accept_move"]
