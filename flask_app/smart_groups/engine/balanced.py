"""
Skill-balanced team builder.

Entries are optionally bucketed by partition fields, sorted by weighted score
within each bucket and dealt with a snake draft that carries on across
buckets, so team sizes differ by at most one and every team receives a
near-even share of each bucket. A swap refinement then narrows the spread
between team averages. Swaps only exchange members of the same bucket, which
keeps the per-team category mix intact.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ..attributes import Entry
from ..criteria import WeightedField
from .annealing import AnnealingSchedule, accept_move
from .field_meta import to_number
from .results import GroupResult, name_groups
from .split import bucket_key
from .variety import PenaltyTable, active_penalty

logger = logging.getLogger(__name__)

DEFAULT_VARIETY_MAX_ENTRIES = 2000
TEAM_PREFIX = "Team"


def balanced_teams(
    entries: Sequence[Entry],
    balance_fields: Sequence[WeightedField],
    team_count: int,
    *,
    partition_fields: Sequence[str] = (),
    penalty: PenaltyTable | None = None,
    variety_weight: float = 0.0,
    schedule: AnnealingSchedule | None = None,
    variety_max_entries: int = DEFAULT_VARIETY_MAX_ENTRIES,
) -> list[GroupResult]:
    """
    Deal ``entries`` into ``team_count`` teams of near-equal strength.

    The variety penalty is folded into the refinement cost when
    ``variety_weight > 0`` and the input has at most ``variety_max_entries``
    members (the penalty is held as a dense matrix).
    """

    count = len(entries)
    if count == 0:
        return []
    team_total = max(1, min(team_count, count))

    ratings = np.array(
        [[_rating(entry, item.field_id) for item in balance_fields] for entry in entries],
        dtype=float,
    ).reshape(count, len(balance_fields))
    weights = np.array([item.weight for item in balance_fields], dtype=float)
    total_weight = float(weights.sum()) or 1.0
    composite = ratings @ weights / total_weight

    buckets = _partition(entries, partition_fields)
    assignment = snake_draft(buckets, composite, team_total)

    if team_total > 1:
        variety_matrix = None
        table = active_penalty(penalty, variety_weight)
        if table is not None:
            if count <= variety_max_entries:
                variety_matrix = variety_weight * table.to_matrix([entry.person_id for entry in entries])
            else:
                logger.info(
                    "Skipping variety penalty for %s entries (limit %s) during team refinement.",
                    count,
                    variety_max_entries,
                )
        assignment = _refine_by_swaps(
            ratings,
            weights / total_weight,
            assignment,
            team_total,
            buckets,
            variety_matrix,
            schedule or AnnealingSchedule(),
        )

    memberships: list[list[str]] = [[] for _ in range(team_total)]
    for index, team in enumerate(assignment):
        memberships[int(team)].append(entries[index].person_id)
    return name_groups(TEAM_PREFIX, memberships)


def snake_draft(buckets: Sequence[Sequence[int]], scores: np.ndarray, team_total: int) -> np.ndarray:
    """
    Assign indices to teams with a snake draft over the bucket-ordered sequence.

    Within a bucket members are taken in descending score order. The draft
    position carries on between buckets: forward passes hand out teams
    ``0..k-1`` and reverse passes ``k-1..0``.
    """

    total = sum(len(bucket) for bucket in buckets)
    assignment = np.full(total, -1, dtype=np.int64)
    position = 0
    for bucket in buckets:
        ordered = sorted(bucket, key=lambda index: (-scores[index], index))
        for index in ordered:
            round_number, offset = divmod(position, team_total)
            assignment[index] = offset if round_number % 2 == 0 else team_total - 1 - offset
            position += 1
    return assignment


def spread_cost(ratings: np.ndarray, field_weights: np.ndarray, assignment: np.ndarray, team_total: int) -> float:
    """Weighted sum over fields of ``(max - min team average) / field range``."""

    sizes = np.bincount(assignment, minlength=team_total).astype(float)
    sums = np.zeros((team_total, ratings.shape[1]), dtype=float)
    np.add.at(sums, assignment, ratings)
    return _spread_from_sums(sums, sizes, field_weights, _field_ranges(ratings))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _rating(entry: Entry, field_id: str) -> float:
    value = to_number(entry.get(field_id))
    return 0.0 if np.isnan(value) else value


def _partition(entries: Sequence[Entry], partition_fields: Sequence[str]) -> list[list[int]]:
    if not partition_fields:
        return [list(range(len(entries)))]
    buckets: dict[str, list[int]] = {}
    for index, entry in enumerate(entries):
        buckets.setdefault(bucket_key(entry, partition_fields), []).append(index)
    return [buckets[key] for key in sorted(buckets)]


def _field_ranges(ratings: np.ndarray) -> np.ndarray:
    if ratings.size == 0:
        return np.zeros(ratings.shape[1], dtype=float)
    return ratings.max(axis=0) - ratings.min(axis=0)


def _spread_from_sums(sums: np.ndarray, sizes: np.ndarray, field_weights: np.ndarray, ranges: np.ndarray) -> float:
    populated = sizes > 0
    if populated.sum() < 2:
        return 0.0
    averages = sums[populated] / sizes[populated][:, None]
    gaps = averages.max(axis=0) - averages.min(axis=0)
    normalized = np.divide(gaps, ranges, out=np.zeros_like(gaps), where=ranges > 0)
    return float((field_weights * normalized).sum())


def _refine_by_swaps(
    ratings: np.ndarray,
    field_weights: np.ndarray,
    assignment: np.ndarray,
    team_total: int,
    buckets: Sequence[Sequence[int]],
    variety_matrix: np.ndarray | None,
    schedule: AnnealingSchedule,
) -> np.ndarray:
    count = ratings.shape[0]
    teams = assignment.copy()
    sizes = np.bincount(teams, minlength=team_total).astype(float)
    sums = np.zeros((team_total, ratings.shape[1]), dtype=float)
    np.add.at(sums, teams, ratings)
    ranges = _field_ranges(ratings)

    bucket_of = np.zeros(count, dtype=np.int64)
    for bucket_index, bucket in enumerate(buckets):
        bucket_of[list(bucket)] = bucket_index
    swappable = [list(bucket) for bucket in buckets]

    member_penalty = None
    penalty_total = 0.0
    if variety_matrix is not None:
        one_hot = np.zeros((count, team_total), dtype=float)
        one_hot[np.arange(count), teams] = 1.0
        member_penalty = variety_matrix @ one_hot
        penalty_total = 0.5 * float(sum(member_penalty[teams == t, t].sum() for t in range(team_total)))

    spread = _spread_from_sums(sums, sizes, field_weights, ranges)
    current = spread + penalty_total / count
    best = current
    best_teams = teams.copy()
    rng = schedule.make_rng()

    for temperature in schedule.temperatures():
        first = rng.randrange(count)
        pool = swappable[bucket_of[first]]
        second = pool[rng.randrange(len(pool))]
        team_a = int(teams[first])
        team_b = int(teams[second])
        if team_a == team_b:
            continue

        shift = ratings[second] - ratings[first]
        sums[team_a] += shift
        sums[team_b] -= shift
        new_spread = _spread_from_sums(sums, sizes, field_weights, ranges)

        penalty_delta = 0.0
        if member_penalty is not None:
            penalty_delta = (
                member_penalty[second, team_a]
                - variety_matrix[second, first]
                - member_penalty[first, team_a]
                + member_penalty[first, team_b]
                - variety_matrix[first, second]
                - member_penalty[second, team_b]
            )

        candidate = new_spread + (penalty_total + penalty_delta) / count
        if not accept_move(candidate - current, temperature, rng):
            sums[team_a] -= shift
            sums[team_b] += shift
            continue

        if member_penalty is not None:
            penalty_shift = variety_matrix[:, second] - variety_matrix[:, first]
            member_penalty[:, team_a] += penalty_shift
            member_penalty[:, team_b] -= penalty_shift
            penalty_total += penalty_delta
        teams[first] = team_b
        teams[second] = team_a
        current = candidate
        if current < best - 1e-12:
            best = current
            best_teams = teams.copy()

    logger.debug("Team refinement finished: cost %.6f", best)
    return best_teams


__all__ = ["DEFAULT_VARIETY_MAX_ENTRIES", "balanced_teams", "snake_draft", "spread_cost"]
