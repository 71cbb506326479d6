"""
Quality metrics for a set of groups, reported alongside run details.

Balanced runs report per-team field averages and how close those averages
are; similarity and diversity runs report mean intra-group distance, exact
for small runs and sampled for large ones. Field types are inferred from the
stored snapshots because the provider catalog is not consulted after
generation.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from ..attributes import Entry
from ..criteria import BalancedCriteria, Criteria, GroupingMode
from .clustering import DEFAULT_EXACT_MAX_ENTRIES
from .distance import build_distance_matrix, gower_distance
from .field_meta import FieldMeta, infer_field_meta, to_number, with_numeric_ranges
from .results import GroupResult

DEFAULT_SAMPLE_PAIRS = 2000


@dataclass(slots=True)
class BalanceMetrics:
    per_group: list[dict] = field(default_factory=list)
    per_field_gap: dict[str, float] = field(default_factory=dict)
    balance_percent: int = 100

    def as_dict(self) -> dict:
        return {
            "mode": GroupingMode.BALANCED.value,
            "per_group": self.per_group,
            "per_field_gap": self.per_field_gap,
            "balance_percent": self.balance_percent,
        }


@dataclass(slots=True)
class ClusterMetrics:
    mode: GroupingMode
    per_group: list[dict] = field(default_factory=list)
    quality_percent: int = 0
    estimated: bool = False

    def as_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "per_group": self.per_group,
            "quality_percent": self.quality_percent,
            "estimated": self.estimated,
        }


def compute_group_metrics(
    criteria: Criteria,
    groups: Sequence[GroupResult],
    entries: Sequence[Entry],
    *,
    exact_max_entries: int = DEFAULT_EXACT_MAX_ENTRIES,
) -> BalanceMetrics | ClusterMetrics | None:
    if criteria.mode is GroupingMode.SPLIT:
        return None
    if criteria.mode is GroupingMode.BALANCED:
        return compute_balance_metrics(groups, entries, criteria)
    return compute_cluster_metrics(groups, entries, criteria, exact_max_entries=exact_max_entries)


def compute_balance_metrics(
    groups: Sequence[GroupResult],
    entries: Sequence[Entry],
    criteria: BalancedCriteria,
) -> BalanceMetrics:
    by_person = {entry.person_id: entry for entry in entries}
    total_weight = sum(item.weight for item in criteria.balance_fields) or 1.0

    per_group = []
    for group in groups:
        averages: dict[str, float] = {}
        for item in criteria.balance_fields:
            values = [to_number(by_person[pid].get(item.field_id)) for pid in group.member_ids if pid in by_person]
            finite = [value for value in values if not math.isnan(value)]
            averages[item.field_id] = sum(finite) / len(finite) if finite else 0.0
        per_group.append({"group_name": group.group_name, "field_averages": averages})

    gaps: dict[str, float] = {}
    weighted_cost = 0.0
    for item in criteria.balance_fields:
        averages = [group["field_averages"][item.field_id] for group in per_group]
        gap = (max(averages) - min(averages)) if averages else 0.0
        gaps[item.field_id] = gap
        finite = [value for value in (to_number(entry.get(item.field_id)) for entry in entries) if not math.isnan(value)]
        spread = (max(finite) - min(finite)) if finite else 0.0
        weighted_cost += (item.weight / total_weight) * (gap / (spread if spread > 0 else 1.0))

    percent = round(max(0.0, min(100.0, 100 * (1 - weighted_cost))))
    return BalanceMetrics(per_group=per_group, per_field_gap=gaps, balance_percent=int(percent))


def compute_cluster_metrics(
    groups: Sequence[GroupResult],
    entries: Sequence[Entry],
    criteria: Criteria,
    *,
    exact_max_entries: int = DEFAULT_EXACT_MAX_ENTRIES,
    sample_pairs: int = DEFAULT_SAMPLE_PAIRS,
    seed: int = 0,
) -> ClusterMetrics:
    """
    Mean intra-group distance per group and overall.

    Up to ``exact_max_entries`` entries every pair is scored through a per-group
    distance matrix. Above it each group's mean is estimated from at most
    ``sample_pairs`` random pairs, so the cost stays linear in the entry count.
    """

    by_person = {entry.person_id: entry for entry in entries}
    fields = with_numeric_ranges(entries, infer_field_meta(criteria.fields, entries))
    estimated = len(entries) > exact_max_entries
    rng = random.Random(seed)

    per_group = []
    total_distance = 0.0
    total_pairs = 0
    for group in groups:
        members = [by_person[pid] for pid in group.member_ids if pid in by_person]
        pairs = len(members) * (len(members) - 1) // 2
        if pairs == 0:
            mean = 0.0
        elif estimated:
            mean = _sampled_mean_distance(members, fields, sample_pairs, rng)
        else:
            matrix = build_distance_matrix(members, fields)
            mean = float(np.triu(matrix, k=1).sum()) / pairs
        per_group.append({"group_name": group.group_name, "avg_intra_distance": mean})
        total_distance += mean * pairs
        total_pairs += pairs

    overall = total_distance / total_pairs if total_pairs else 0.0
    if criteria.mode is GroupingMode.SIMILARITY:
        percent = round(100 * (1 - overall))
    else:
        percent = round(100 * overall)
    return ClusterMetrics(mode=criteria.mode, per_group=per_group, quality_percent=int(percent), estimated=estimated)


def _sampled_mean_distance(
    members: Sequence[Entry],
    fields: Sequence[FieldMeta],
    sample_pairs: int,
    rng: random.Random,
) -> float:
    count = len(members)
    draws = min(sample_pairs, count * (count - 1) // 2)
    total = 0.0
    for _ in range(draws):
        first = rng.randrange(count)
        second = rng.randrange(count - 1)
        if second >= first:
            second += 1
        total += gower_distance(members[first].attributes, members[second].attributes, fields)
    return total / draws


__all__ = [
    "BalanceMetrics",
    "ClusterMetrics",
    "DEFAULT_SAMPLE_PAIRS",
    "compute_balance_metrics",
    "compute_cluster_metrics",
    "compute_group_metrics",
]
