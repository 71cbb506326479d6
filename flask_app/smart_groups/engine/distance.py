"""
Gower-style distance over heterogeneous member attributes.

Every per-field distance lies in ``[0, 1]``. The aggregate distance between two
members is the weight-normalised mean of per-field distances, skipping
weight-zero fields.
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Sequence

import numpy as np

from ..attributes import AttributeValue, Entry, FieldType
from .field_meta import FieldMeta, to_number

MISSING_DISTANCE = 1.0


def _label(value: AttributeValue) -> str:
    return str(value).lower()


def _as_set(value: AttributeValue) -> frozenset[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(item) for item in value)
    return frozenset((str(value),))


def _strict_key(value: AttributeValue) -> tuple[str, object]:
    # bool is a subclass of int, so the type name keeps True distinct from 1.
    return (type(value).__name__, value)


def jaccard_distance(first: Iterable[object], second: Iterable[object]) -> float:
    """Return ``1 - |A ∩ B| / |A ∪ B|``; two empty sets are identical."""

    set_a = {str(item) for item in first}
    set_b = {str(item) for item in second}
    union = set_a | set_b
    if not union:
        return 0.0
    return 1.0 - len(set_a & set_b) / len(union)


def _rank_span(rank_map: Mapping[str, int]) -> float:
    ranks = list(rank_map.values())
    return float(max(ranks) - min(ranks)) if ranks else 0.0


def field_distance(first: AttributeValue, second: AttributeValue, meta: FieldMeta) -> float:
    """Dissimilarity of two values for a single field."""

    if first is None or second is None:
        return MISSING_DISTANCE

    field_type = meta.field_type
    if field_type is FieldType.BOOLEAN:
        return 0.0 if _strict_key(first) == _strict_key(second) else 1.0

    if field_type is FieldType.MULTI_VALUED:
        return jaccard_distance(_as_set(first), _as_set(second))

    if field_type.is_numeric:
        value_a = to_number(first)
        value_b = to_number(second)
        if math.isnan(value_a) or math.isnan(value_b):
            return MISSING_DISTANCE
        if meta.numeric_range is None:
            return 0.0 if value_a == value_b else 1.0
        span = meta.numeric_range.span
        if span == 0:
            return 0.0
        return min(1.0, abs(value_a - value_b) / span)

    if field_type is FieldType.ORDINAL and meta.rank_map:
        rank_a = meta.rank_map.get(str(first))
        rank_b = meta.rank_map.get(str(second))
        if rank_a is None or rank_b is None:
            return MISSING_DISTANCE
        span = _rank_span(meta.rank_map)
        if span == 0:
            return 0.0
        return abs(rank_a - rank_b) / span

    return 0.0 if _label(first) == _label(second) else 1.0


def gower_distance(
    first: Mapping[str, AttributeValue],
    second: Mapping[str, AttributeValue],
    fields: Sequence[FieldMeta],
) -> float:
    """Weighted mean of per-field distances; 0 when every weight is zero."""

    weighted_sum = 0.0
    total_weight = 0.0
    for meta in fields:
        if meta.weight <= 0:
            continue
        weighted_sum += meta.weight * field_distance(first.get(meta.field_id), second.get(meta.field_id), meta)
        total_weight += meta.weight
    if total_weight == 0:
        return 0.0
    return weighted_sum / total_weight


def build_distance_matrix(entries: Sequence[Entry], fields: Sequence[FieldMeta]) -> np.ndarray:
    """
    Return the symmetric ``n x n`` Gower distance matrix with a zero diagonal.

    Each field contributes a vectorised per-field matrix; the result matches
    :func:`gower_distance` for every off-diagonal pair.
    """

    count = len(entries)
    matrix = np.zeros((count, count), dtype=float)
    total_weight = 0.0
    for meta in fields:
        if meta.weight <= 0:
            continue
        values = [entry.get(meta.field_id) for entry in entries]
        matrix += meta.weight * _field_matrix(values, meta)
        total_weight += meta.weight
    if total_weight == 0:
        return np.zeros((count, count), dtype=float)
    matrix /= total_weight
    np.fill_diagonal(matrix, 0.0)
    return matrix


# ---------------------------------------------------------------------------
# Vectorised per-field matrices
# ---------------------------------------------------------------------------


def _field_matrix(values: list[AttributeValue], meta: FieldMeta) -> np.ndarray:
    missing = np.array([value is None for value in values], dtype=bool)
    field_type = meta.field_type

    if field_type.is_numeric:
        numbers = np.array([to_number(value) if value is not None else math.nan for value in values], dtype=float)
        if meta.numeric_range is None:
            result = (numbers[:, None] != numbers[None, :]).astype(float)
        elif meta.numeric_range.span == 0:
            result = np.zeros((len(values), len(values)), dtype=float)
        else:
            result = np.minimum(1.0, np.abs(numbers[:, None] - numbers[None, :]) / meta.numeric_range.span)
        invalid = np.isnan(numbers)
        return _apply_missing(result, invalid)

    if field_type is FieldType.ORDINAL and meta.rank_map:
        ranks = np.array(
            [meta.rank_map.get(str(value), math.nan) if value is not None else math.nan for value in values],
            dtype=float,
        )
        span = _rank_span(meta.rank_map)
        if span == 0:
            result = np.zeros((len(values), len(values)), dtype=float)
        else:
            result = np.abs(ranks[:, None] - ranks[None, :]) / span
        return _apply_missing(result, np.isnan(ranks))

    if field_type is FieldType.MULTI_VALUED:
        sets = [_as_set(value) if value is not None else frozenset() for value in values]
        result = np.zeros((len(values), len(values)), dtype=float)
        for i in range(len(values)):
            for j in range(i + 1, len(values)):
                distance = jaccard_distance(sets[i], sets[j])
                result[i, j] = distance
                result[j, i] = distance
        return _apply_missing(result, missing)

    if field_type is FieldType.BOOLEAN:
        keys = [_strict_key(value) for value in values]
    else:
        keys = [_label(value) for value in values]
    codes = _encode(keys)
    result = (codes[:, None] != codes[None, :]).astype(float)
    return _apply_missing(result, missing)


def _encode(keys: list) -> np.ndarray:
    lookup: dict = {}
    return np.array([lookup.setdefault(key, len(lookup)) for key in keys], dtype=np.int64)


def _apply_missing(result: np.ndarray, missing: np.ndarray) -> np.ndarray:
    if missing.any():
        result[missing, :] = MISSING_DISTANCE
        result[:, missing] = MISSING_DISTANCE
    return result


__all__ = [
    "MISSING_DISTANCE",
    "build_distance_matrix",
    "field_distance",
    "gower_distance",
    "jaccard_distance",
]
