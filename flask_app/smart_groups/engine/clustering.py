"""
Similarity and diversity clustering.

Up to ``exact_max_entries`` members, the engine builds the full pairwise cost
matrix, seeds groups with farthest-first traversal plus capacity-bounded greedy
assignment, and refines by simulated-annealing swaps. Larger inputs fall back
to a one-dimensional projection score: similarity slices the sorted scores into
contiguous runs and diversity deals them round-robin. The projection ignores
the variety penalty.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from ..attributes import Entry, FieldType
from ..criteria import GroupingMode
from .annealing import AnnealingSchedule, accept_move
from .distance import build_distance_matrix
from .field_meta import FieldMeta, to_number, with_numeric_ranges
from .results import GroupResult, name_groups
from .variety import PenaltyTable, active_penalty

logger = logging.getLogger(__name__)

DEFAULT_EXACT_MAX_ENTRIES = 1200
GROUP_PREFIX = "Group"

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
UINT32_MAX = 4294967295


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def cluster_by_distance(
    entries: Sequence[Entry],
    fields: Sequence[FieldMeta],
    group_count: int,
    objective: GroupingMode,
    *,
    penalty: PenaltyTable | None = None,
    variety_weight: float = 0.0,
    schedule: AnnealingSchedule | None = None,
    exact_max_entries: int = DEFAULT_EXACT_MAX_ENTRIES,
) -> list[GroupResult]:
    """
    Cluster ``entries`` into ``group_count`` groups.

    Args:
        objective: ``GroupingMode.SIMILARITY`` minimises mean intra-group
            distance; ``GroupingMode.DIVERSITY`` maximises it.
        penalty: optional variety penalties; applied only when
            ``variety_weight > 0`` and on the matrix path.
        schedule: annealing schedule for the swap refinement.

    Returns:
        Groups named ``Group 1..k`` covering every entry exactly once.
    """

    if objective not in (GroupingMode.SIMILARITY, GroupingMode.DIVERSITY):
        raise ValueError(f"Clustering does not support objective '{objective}'.")

    count = len(entries)
    if count == 0:
        return []
    group_total = max(1, min(group_count, count))
    fields = with_numeric_ranges(entries, fields)

    if count > exact_max_entries:
        logger.info(
            "Clustering %s entries via projection fallback (threshold %s); variety penalty not applied.",
            count,
            exact_max_entries,
        )
        return cluster_by_projection(entries, fields, group_total, objective)

    distances = build_distance_matrix(entries, fields)
    cost = distances.copy() if objective is GroupingMode.SIMILARITY else -distances
    table = active_penalty(penalty, variety_weight)
    if table is not None:
        cost += variety_weight * table.to_matrix([entry.person_id for entry in entries])
    np.fill_diagonal(cost, 0.0)

    capacities = group_capacities(count, group_total)
    assignment = _seed_assignment(distances, cost, capacities)
    if group_total > 1:
        assignment = _refine_by_swaps(cost, assignment, group_total, schedule or AnnealingSchedule())

    memberships: list[list[str]] = [[] for _ in range(group_total)]
    for index, group in enumerate(assignment):
        memberships[int(group)].append(entries[index].person_id)
    return name_groups(GROUP_PREFIX, memberships)


def cluster_by_projection(
    entries: Sequence[Entry],
    fields: Sequence[FieldMeta],
    group_count: int,
    objective: GroupingMode,
) -> list[GroupResult]:
    """Linear-cost fallback driven by a single representative score per entry."""

    count = len(entries)
    if count == 0:
        return []
    group_total = max(1, min(group_count, count))
    scored = sorted(
        ((projection_score(entry, fields), entry.person_id) for entry in entries),
        key=lambda item: (item[0], item[1]),
    )

    memberships: list[list[str]] = [[] for _ in range(group_total)]
    for position, (_, person_id) in enumerate(scored):
        if objective is GroupingMode.SIMILARITY:
            group = min(group_total - 1, (position * group_total) // count)
        else:
            group = position % group_total
        memberships[group].append(person_id)
    return name_groups(GROUP_PREFIX, memberships)


def projection_score(entry: Entry, fields: Sequence[FieldMeta]) -> float:
    """Weighted mean of per-field values normalised to ``[0, 1]``."""

    weighted_sum = 0.0
    total_weight = 0.0
    for meta in fields:
        if meta.weight <= 0:
            continue
        weighted_sum += meta.weight * _normalize_for_projection(entry.get(meta.field_id), meta)
        total_weight += meta.weight
    if total_weight == 0:
        return 0.0
    return weighted_sum / total_weight


def group_capacities(count: int, group_count: int) -> list[int]:
    """Group sizes differing by at most one; none exceeds ``ceil(n / k)``."""

    base, remainder = divmod(count, group_count)
    return [base + (1 if index < remainder else 0) for index in range(group_count)]


def hash_to_unit(text: str) -> float:
    """32-bit FNV-1a hash of ``text`` scaled into ``[0, 1]``."""

    value = FNV_OFFSET_BASIS
    for char in text:
        value ^= ord(char)
        value = (value * FNV_PRIME) & 0xFFFFFFFF
    return value / UINT32_MAX


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _normalize_for_projection(value, meta: FieldMeta) -> float:
    field_type = meta.field_type
    if field_type.is_numeric:
        number = to_number(value)
        if math.isnan(number):
            return 0.0
        if meta.numeric_range is None or meta.numeric_range.span == 0:
            return 0.5
        return min(1.0, max(0.0, (number - meta.numeric_range.minimum) / meta.numeric_range.span))
    if field_type is FieldType.ORDINAL:
        if meta.rank_map:
            rank = meta.rank_map.get(str(value))
            if rank is None:
                return 0.0
            low, high = min(meta.rank_map.values()), max(meta.rank_map.values())
            if high == low:
                return 0.5
            return min(1.0, max(0.0, (rank - low) / (high - low)))
        return hash_to_unit(str(value))
    if field_type is FieldType.BOOLEAN:
        return 1.0 if value is True else 0.0
    if field_type is FieldType.MULTI_VALUED:
        items = value if isinstance(value, list) else [value]
        return hash_to_unit("|".join(sorted(str(item) for item in items)))
    return hash_to_unit(str(value).lower())


def _seed_assignment(distances: np.ndarray, cost: np.ndarray, capacities: list[int]) -> np.ndarray:
    count = distances.shape[0]
    group_total = len(capacities)

    # Farthest-first seeds, deterministic from the first entry.
    seeds = [0]
    nearest_seed = distances[:, 0].copy()
    is_seed = np.zeros(count, dtype=bool)
    is_seed[0] = True
    while len(seeds) < group_total:
        candidates = np.where(is_seed, -np.inf, nearest_seed)
        chosen = int(np.argmax(candidates))
        seeds.append(chosen)
        is_seed[chosen] = True
        nearest_seed = np.minimum(nearest_seed, distances[:, chosen])

    assignment = np.full(count, -1, dtype=np.int64)
    group_sums = np.zeros((count, group_total), dtype=float)
    sizes = np.zeros(group_total, dtype=np.int64)
    for group, seed in enumerate(seeds):
        assignment[seed] = group
        sizes[group] = 1
        group_sums[:, group] += cost[:, seed]

    remaining = [index for index in range(count) if not is_seed[index]]
    remaining.sort(key=lambda index: (nearest_seed[index], index))
    limits = np.array(capacities, dtype=np.int64)
    for index in remaining:
        open_groups = sizes < limits
        mean_cost = np.where(open_groups, group_sums[index] / np.maximum(sizes, 1), np.inf)
        group = int(np.argmin(mean_cost))
        assignment[index] = group
        sizes[group] += 1
        group_sums[:, group] += cost[:, index]
    return assignment


def _pair_weights(sizes: np.ndarray) -> np.ndarray:
    pairs = sizes * (sizes - 1) / 2.0
    return np.divide(1.0, pairs, out=np.zeros_like(pairs, dtype=float), where=pairs > 0)


def _refine_by_swaps(
    cost: np.ndarray,
    assignment: np.ndarray,
    group_total: int,
    schedule: AnnealingSchedule,
) -> np.ndarray:
    """
    Swap members between groups to minimise the sum of mean intra-group cost.

    ``member_cost[x, g]`` holds the summed cost from ``x`` to every member of
    ``g`` so each proposal is scored in constant time. Swaps keep group sizes
    fixed, so the per-group pair weights never change. Returns the best
    assignment seen.
    """

    count = cost.shape[0]
    groups = assignment.copy()
    one_hot = np.zeros((count, group_total), dtype=float)
    one_hot[np.arange(count), groups] = 1.0
    member_cost = cost @ one_hot
    sizes = np.bincount(groups, minlength=group_total)
    weights = _pair_weights(sizes)

    group_sums = 0.5 * np.array([member_cost[groups == g, g].sum() for g in range(group_total)])
    current = float((group_sums * weights).sum())
    best = current
    best_groups = groups.copy()
    rng = schedule.make_rng()

    for temperature in schedule.temperatures():
        first = rng.randrange(count)
        second = rng.randrange(count)
        group_a = int(groups[first])
        group_b = int(groups[second])
        if group_a == group_b:
            continue

        delta_a = member_cost[second, group_a] - cost[second, first] - member_cost[first, group_a]
        delta_b = member_cost[first, group_b] - cost[first, second] - member_cost[second, group_b]
        delta = float(delta_a * weights[group_a] + delta_b * weights[group_b])
        if not accept_move(delta, temperature, rng):
            continue

        shift = cost[:, second] - cost[:, first]
        member_cost[:, group_a] += shift
        member_cost[:, group_b] -= shift
        groups[first] = group_b
        groups[second] = group_a
        current += delta
        if current < best - 1e-12:
            best = current
            best_groups = groups.copy()

    logger.debug("Swap refinement finished: objective %.6f", best)
    return best_groups


__all__ = [
    "DEFAULT_EXACT_MAX_ENTRIES",
    "cluster_by_distance",
    "cluster_by_projection",
    "group_capacities",
    "hash_to_unit",
    "projection_score",
]
