"""Run the algorithm selected by a criteria variant."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from ..attributes import Entry, FieldCatalogEntry
from ..criteria import Criteria, GroupingMode
from .annealing import AnnealingSchedule
from .balanced import DEFAULT_VARIETY_MAX_ENTRIES, balanced_teams
from .clustering import DEFAULT_EXACT_MAX_ENTRIES, cluster_by_distance
from .field_meta import build_field_meta
from .results import GroupResult
from .split import split_by_attributes
from .variety import PenaltyTable


def compute_groups(
    criteria: Criteria,
    entries: Sequence[Entry],
    *,
    catalog: Iterable[FieldCatalogEntry] = (),
    level_order_map: Mapping[str, int] | None = None,
    penalty: PenaltyTable | None = None,
    schedule: AnnealingSchedule | None = None,
    exact_cluster_max_entries: int = DEFAULT_EXACT_MAX_ENTRIES,
    balanced_variety_max_entries: int = DEFAULT_VARIETY_MAX_ENTRIES,
) -> list[GroupResult]:
    """
    Group ``entries`` (already filtered for eligibility) under ``criteria``.

    ``catalog`` and ``level_order_map`` only matter for similarity and
    diversity, where they decide how each field is compared.
    """

    if criteria.mode is GroupingMode.SPLIT:
        return split_by_attributes(entries, criteria.fields)

    if criteria.mode is GroupingMode.BALANCED:
        return balanced_teams(
            entries,
            criteria.balance_fields,
            criteria.team_count,
            partition_fields=criteria.partition_fields,
            penalty=penalty,
            variety_weight=criteria.variety_weight,
            schedule=schedule,
            variety_max_entries=balanced_variety_max_entries,
        )

    metas = build_field_meta(criteria.fields, catalog, level_order_map)
    return cluster_by_distance(
        entries,
        metas,
        criteria.group_count,
        criteria.mode,
        penalty=penalty,
        variety_weight=criteria.variety_weight,
        schedule=schedule,
        exact_max_entries=exact_cluster_max_entries,
    )


__all__ = ["compute_groups"]
