"""Decide which entries can take part in a grouping mode."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

from ..attributes import Entry, is_missing
from ..criteria import BalancedCriteria, Criteria, GroupingMode
from .field_meta import to_number

MIN_ENTRIES_BY_MODE = {
    GroupingMode.SPLIT: 1,
    GroupingMode.SIMILARITY: 2,
    GroupingMode.DIVERSITY: 2,
    GroupingMode.BALANCED: 2,
}


@dataclass(slots=True)
class Eligibility:
    usable: list[Entry] = field(default_factory=list)
    excluded: list[Entry] = field(default_factory=list)

    @property
    def excluded_ids(self) -> set[str]:
        return {entry.person_id for entry in self.excluded}


def minimum_entries(mode: GroupingMode) -> int:
    return MIN_ENTRIES_BY_MODE[mode]


def partition_entries(criteria: Criteria, entries: Sequence[Entry]) -> Eligibility:
    """
    Split ``entries`` into usable and excluded, preserving input order.

    Split mode keeps everyone. Similarity and diversity need a value for every
    criteria field. Balanced needs a number on every balance field and a value
    on every partition field.
    """

    result = Eligibility()
    for entry in entries:
        if _is_usable(criteria, entry):
            result.usable.append(entry)
        else:
            result.excluded.append(entry)
    return result


def _is_usable(criteria: Criteria, entry: Entry) -> bool:
    if criteria.mode is GroupingMode.SPLIT:
        return True
    if criteria.mode is GroupingMode.BALANCED:
        return _is_balanced_usable(criteria, entry)
    return all(not is_missing(entry.get(field_id)) for field_id in criteria.field_ids)


def _is_balanced_usable(criteria: BalancedCriteria, entry: Entry) -> bool:
    for item in criteria.balance_fields:
        value = entry.get(item.field_id)
        # Booleans and numeric strings are not ratings
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if math.isnan(to_number(value)):
            return False
    return all(not is_missing(entry.get(field_id)) for field_id in criteria.partition_fields)


__all__ = ["Eligibility", "MIN_ENTRIES_BY_MODE", "minimum_entries", "partition_entries"]
