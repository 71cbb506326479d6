"""
Field metadata: which attributes take part in a computation and how.

Metadata is built once per generation. Numeric ranges are derived from the
full entry set before any pairwise distance is computed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Sequence

from ..attributes import AttributeValue, Entry, FieldCatalogEntry, FieldType
from ..criteria import WeightedField


@dataclass(frozen=True, slots=True)
class NumericRange:
    minimum: float
    maximum: float

    @property
    def span(self) -> float:
        return self.maximum - self.minimum


@dataclass(frozen=True, slots=True)
class FieldMeta:
    field_id: str
    field_type: FieldType
    weight: float = 1.0
    numeric_range: NumericRange | None = None
    rank_map: Mapping[str, int] | None = None


def to_number(value: AttributeValue) -> float:
    """Convert an attribute to float; ``nan`` marks anything non-numeric."""

    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def build_field_meta(
    selected: Iterable[WeightedField],
    catalog: Iterable[FieldCatalogEntry],
    level_order_map: Mapping[str, int] | None = None,
) -> list[FieldMeta]:
    """
    Resolve selected criteria fields against the provider catalog.

    Fields missing from the catalog compare as text. Ordinal fields receive the
    activity's level order map when one exists.
    """

    by_id = {entry.field_id: entry for entry in catalog}
    metas: list[FieldMeta] = []
    for selected_field in selected:
        catalog_entry = by_id.get(selected_field.field_id)
        field_type = catalog_entry.field_type if catalog_entry else FieldType.TEXT
        metas.append(
            FieldMeta(
                field_id=selected_field.field_id,
                field_type=field_type,
                weight=selected_field.weight,
                rank_map=dict(level_order_map) if field_type is FieldType.ORDINAL and level_order_map else None,
            )
        )
    return metas


def with_numeric_ranges(entries: Sequence[Entry], fields: Sequence[FieldMeta]) -> list[FieldMeta]:
    """Return ``fields`` with ``numeric_range`` set on numeric types."""

    resolved: list[FieldMeta] = []
    for meta in fields:
        if not meta.field_type.is_numeric:
            resolved.append(meta)
            continue
        values = [to_number(entry.get(meta.field_id)) for entry in entries]
        finite = [value for value in values if not math.isnan(value)]
        numeric_range = NumericRange(min(finite), max(finite)) if finite else NumericRange(0.0, 0.0)
        resolved.append(replace(meta, numeric_range=numeric_range))
    return resolved


def infer_field_meta(selected: Iterable[WeightedField], entries: Sequence[Entry]) -> list[FieldMeta]:
    """
    Infer field types from stored snapshot values.

    Used when the provider catalog is no longer at hand, such as when scoring a
    persisted run.
    """

    return [
        FieldMeta(field_id=item.field_id, field_type=_infer_type(item.field_id, entries), weight=item.weight)
        for item in selected
    ]


def _infer_type(field_id: str, entries: Sequence[Entry]) -> FieldType:
    for entry in entries:
        value = entry.get(field_id)
        if value is None:
            continue
        if isinstance(value, bool):
            return FieldType.BOOLEAN
        if isinstance(value, (int, float)):
            return FieldType.NUMERIC
        if isinstance(value, list):
            return FieldType.MULTI_VALUED
        return FieldType.CATEGORICAL
    return FieldType.TEXT


__all__ = [
    "FieldMeta",
    "NumericRange",
    "build_field_meta",
    "infer_field_meta",
    "to_number",
    "with_numeric_ranges",
]
