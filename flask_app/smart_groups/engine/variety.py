"""
Variety penalty: discourage re-grouping pairs that were recently together.

``penalty(pair) = min(co_occurrences / lookback, 1)`` where co-occurrences are
counted over the most recent confirmed runs of the same activity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import numpy as np

DEFAULT_LOOKBACK = 10

PairKey = tuple[str, str]


def pair_key(first: str, second: str) -> PairKey:
    """Canonical key for an unordered pair: the smaller id comes first."""

    return (first, second) if first <= second else (second, first)


def iter_pairs(member_ids: Sequence[str]) -> Iterable[PairKey]:
    """Yield every unordered pair of distinct ids in canonical order."""

    unique_ids = sorted(set(member_ids))
    for index, first in enumerate(unique_ids):
        for second in unique_ids[index + 1 :]:
            yield (first, second)


@dataclass(slots=True)
class PenaltyTable:
    """Sparse per-pair penalties in ``[0, 1]``; absent pairs score 0."""

    penalties: dict[PairKey, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.penalties)

    def __bool__(self) -> bool:
        return bool(self.penalties)

    def penalty(self, first: str, second: str) -> float:
        return self.penalties.get(pair_key(first, second), 0.0)

    def to_matrix(self, person_ids: Sequence[str]) -> np.ndarray:
        """Dense symmetric matrix indexed by position in ``person_ids``."""

        index = {person_id: position for position, person_id in enumerate(person_ids)}
        matrix = np.zeros((len(person_ids), len(person_ids)), dtype=float)
        for (first, second), value in self.penalties.items():
            row = index.get(first)
            col = index.get(second)
            if row is None or col is None or row == col:
                continue
            matrix[row, col] = value
            matrix[col, row] = value
        return matrix


def build_penalty_table(co_occurrences: Mapping[PairKey, int], lookback: int = DEFAULT_LOOKBACK) -> PenaltyTable:
    """Convert co-occurrence counts into bounded penalties."""

    if lookback <= 0:
        raise ValueError("lookback must be positive.")
    penalties: dict[PairKey, float] = {}
    for (first, second), count in co_occurrences.items():
        if count <= 0 or first == second:
            continue
        penalties[pair_key(first, second)] = min(count / lookback, 1.0)
    return PenaltyTable(penalties=penalties)


def active_penalty(table: PenaltyTable | None, variety_weight: float) -> PenaltyTable | None:
    """Return ``table`` only when it can influence the outcome."""

    if table is None or variety_weight <= 0 or not table:
        return None
    return table


__all__ = [
    "DEFAULT_LOOKBACK",
    "PairKey",
    "PenaltyTable",
    "active_penalty",
    "build_penalty_table",
    "iter_pairs",
    "pair_key",
]
