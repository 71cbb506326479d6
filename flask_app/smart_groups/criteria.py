"""
Grouping criteria as a tagged variant.

Each grouping mode has its own frozen dataclass. :func:`coerce_criteria`
validates raw JSON payloads (request bodies, stored config defaults and run
snapshots) and dispatches on the ``mode`` tag; nothing downstream inspects
field presence to guess the mode.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Sequence, Union

from .errors import ValidationError

MAX_SPLIT_FIELDS = 2
MAX_WEIGHTED_FIELDS = 10
MAX_PARTITION_FIELDS = 2
MIN_GROUP_COUNT = 2
MAX_GROUP_COUNT = 100


class GroupingMode(str, enum.Enum):
    SPLIT = "split"
    SIMILARITY = "similarity"
    DIVERSITY = "diversity"
    BALANCED = "balanced"


@dataclass(frozen=True, slots=True)
class WeightedField:
    field_id: str
    weight: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {"field_id": self.field_id, "weight": self.weight}


@dataclass(frozen=True, slots=True)
class SplitCriteria:
    fields: tuple[str, ...]

    mode: ClassVar[GroupingMode] = GroupingMode.SPLIT

    @property
    def field_ids(self) -> tuple[str, ...]:
        return self.fields

    @property
    def variety_weight(self) -> float:
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "fields": list(self.fields)}


@dataclass(frozen=True, slots=True)
class SimilarityCriteria:
    fields: tuple[WeightedField, ...]
    group_count: int
    variety_weight: float = 0.0

    mode: ClassVar[GroupingMode] = GroupingMode.SIMILARITY

    @property
    def field_ids(self) -> tuple[str, ...]:
        return tuple(item.field_id for item in self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "fields": [item.to_dict() for item in self.fields],
            "group_count": self.group_count,
            "variety_weight": self.variety_weight,
        }


@dataclass(frozen=True, slots=True)
class DiversityCriteria(SimilarityCriteria):
    mode: ClassVar[GroupingMode] = GroupingMode.DIVERSITY


@dataclass(frozen=True, slots=True)
class BalancedCriteria:
    balance_fields: tuple[WeightedField, ...]
    team_count: int
    partition_fields: tuple[str, ...] = field(default_factory=tuple)
    variety_weight: float = 0.0

    mode: ClassVar[GroupingMode] = GroupingMode.BALANCED

    @property
    def field_ids(self) -> tuple[str, ...]:
        return tuple(item.field_id for item in self.balance_fields) + self.partition_fields

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "balance_fields": [item.to_dict() for item in self.balance_fields],
            "team_count": self.team_count,
            "partition_fields": list(self.partition_fields),
            "variety_weight": self.variety_weight,
        }


Criteria = Union[SplitCriteria, SimilarityCriteria, DiversityCriteria, BalancedCriteria]
ClusterCriteria = Union[SimilarityCriteria, DiversityCriteria]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def coerce_criteria(payload: Mapping[str, Any] | Criteria | None) -> Criteria:
    """
    Validate a raw criteria mapping and return the matching dataclass.

    Raises:
        ValidationError: when the payload is missing, has an unknown mode, or
            violates the per-mode bounds.
    """

    if isinstance(payload, (SplitCriteria, SimilarityCriteria, BalancedCriteria)):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError("Criteria must be an object with a 'mode'.")

    raw_mode = str(payload.get("mode") or "").strip().lower()
    try:
        mode = GroupingMode(raw_mode)
    except ValueError:
        raise ValidationError(f"Unsupported grouping mode '{raw_mode}'.") from None

    if mode is GroupingMode.SPLIT:
        return _coerce_split(payload)
    if mode is GroupingMode.BALANCED:
        return _coerce_balanced(payload)
    return _coerce_cluster(payload, mode)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _coerce_split(payload: Mapping[str, Any]) -> SplitCriteria:
    fields = _coerce_field_ids(payload.get("fields"), name="fields")
    if not 1 <= len(fields) <= MAX_SPLIT_FIELDS:
        raise ValidationError(f"Split requires between 1 and {MAX_SPLIT_FIELDS} fields.")
    return SplitCriteria(fields=fields)


def _coerce_cluster(payload: Mapping[str, Any], mode: GroupingMode) -> ClusterCriteria:
    fields = _coerce_weighted_fields(payload.get("fields"), name="fields")
    if not 1 <= len(fields) <= MAX_WEIGHTED_FIELDS:
        raise ValidationError(f"{mode.value.title()} requires between 1 and {MAX_WEIGHTED_FIELDS} fields.")
    group_count = _coerce_count(payload.get("group_count"), name="group_count")
    variety_weight = _coerce_non_negative(payload.get("variety_weight"), name="variety_weight", default=0.0)
    cls = SimilarityCriteria if mode is GroupingMode.SIMILARITY else DiversityCriteria
    return cls(fields=fields, group_count=group_count, variety_weight=variety_weight)


def _coerce_balanced(payload: Mapping[str, Any]) -> BalancedCriteria:
    balance_fields = _coerce_weighted_fields(payload.get("balance_fields"), name="balance_fields")
    if not 1 <= len(balance_fields) <= MAX_WEIGHTED_FIELDS:
        raise ValidationError(f"Balanced teams require between 1 and {MAX_WEIGHTED_FIELDS} balance fields.")
    team_count = _coerce_count(payload.get("team_count"), name="team_count")
    partition_raw = payload.get("partition_fields")
    partition_fields = _coerce_field_ids(partition_raw, name="partition_fields") if partition_raw else ()
    if len(partition_fields) > MAX_PARTITION_FIELDS:
        raise ValidationError(f"At most {MAX_PARTITION_FIELDS} partition fields are supported.")
    variety_weight = _coerce_non_negative(payload.get("variety_weight"), name="variety_weight", default=0.0)
    return BalancedCriteria(
        balance_fields=balance_fields,
        team_count=team_count,
        partition_fields=partition_fields,
        variety_weight=variety_weight,
    )


def _coerce_field_ids(value: Any, *, name: str) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValidationError(f"'{name}' must be a list of field ids.")
    resolved: list[str] = []
    for item in value:
        field_id = str(item or "").strip()
        if not field_id:
            raise ValidationError(f"'{name}' contains an empty field id.")
        if field_id in resolved:
            raise ValidationError(f"'{name}' lists field '{field_id}' more than once.")
        resolved.append(field_id)
    return tuple(resolved)


def _coerce_weighted_fields(value: Any, *, name: str) -> tuple[WeightedField, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValidationError(f"'{name}' must be a list of weighted fields.")
    resolved: list[WeightedField] = []
    seen: set[str] = set()
    for item in value:
        if isinstance(item, WeightedField):
            candidate = item
        elif isinstance(item, Mapping):
            field_id = str(item.get("field_id") or "").strip()
            if not field_id:
                raise ValidationError(f"Each entry in '{name}' requires a field_id.")
            weight = _coerce_non_negative(item.get("weight"), name=f"{field_id}.weight", default=1.0)
            candidate = WeightedField(field_id=field_id, weight=weight)
        else:
            raise ValidationError(f"Entries in '{name}' must be objects with field_id and weight.")
        if candidate.field_id in seen:
            raise ValidationError(f"'{name}' lists field '{candidate.field_id}' more than once.")
        seen.add(candidate.field_id)
        resolved.append(candidate)
    return tuple(resolved)


def _coerce_count(value: Any, *, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"'{name}' must be an integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be an integer.") from None
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"'{name}' must be an integer.")
    if not MIN_GROUP_COUNT <= number <= MAX_GROUP_COUNT:
        raise ValidationError(f"'{name}' must be between {MIN_GROUP_COUNT} and {MAX_GROUP_COUNT}.")
    return number


def _coerce_non_negative(value: Any, *, name: str, default: float) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"'{name}' must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be a number.") from None
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"'{name}' must be a finite number >= 0.")
    return number


__all__ = [
    "BalancedCriteria",
    "ClusterCriteria",
    "Criteria",
    "DiversityCriteria",
    "GroupingMode",
    "SimilarityCriteria",
    "SplitCriteria",
    "WeightedField",
    "coerce_criteria",
]
