"""Partition members by exact values of one or two categorical fields."""

from __future__ import annotations

from typing import Sequence

from ..attributes import UNKNOWN_LABEL, AttributeValue, Entry, is_missing
from .results import GroupResult

LABEL_SEPARATOR = " + "


def bucket_label(value: AttributeValue) -> str:
    if is_missing(value):
        return UNKNOWN_LABEL
    if isinstance(value, list):
        return ", ".join(str(item) for item in value) or UNKNOWN_LABEL
    return str(value)


def bucket_key(entry: Entry, field_ids: Sequence[str]) -> str:
    return LABEL_SEPARATOR.join(bucket_label(entry.get(field_id)) for field_id in field_ids)


def split_by_attributes(entries: Sequence[Entry], field_ids: Sequence[str]) -> list[GroupResult]:
    """
    Bucket entries by the cross product of ``field_ids`` values.

    Missing or empty values land in ``"Unknown"``. Groups are sorted by name
    and keep member input order; sizes are whatever the partition yields.
    """

    if not entries or not field_ids:
        return []

    buckets: dict[str, list[str]] = {}
    for entry in entries:
        buckets.setdefault(bucket_key(entry, field_ids), []).append(entry.person_id)

    return [GroupResult(group_name=name, member_ids=buckets[name]) for name in sorted(buckets)]


__all__ = ["LABEL_SEPARATOR", "bucket_key", "bucket_label", "split_by_attributes"]
