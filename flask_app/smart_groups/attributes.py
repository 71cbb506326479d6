"""
Attribute values, field identifiers and member snapshots.

Member attributes come from several sources (organization profile, session
forms, ranking data). Field identifiers are namespaced by source so that an
``org`` field and a ``session`` field sharing a key never collide. Callers
build identifiers with :func:`make_field_id` instead of formatting strings.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping, Sequence, Union

AttributeValue = Union[str, int, float, bool, list[str], None]

UNKNOWN_LABEL = "Unknown"


class FieldSource(str, enum.Enum):
    """Origin of a member attribute."""

    ORG = "org"
    SESSION = "session"
    RANKING = "ranking"


class FieldType(str, enum.Enum):
    """Comparison semantics used by the distance calculator."""

    CATEGORICAL = "categorical"
    TEXT = "text"
    BOOLEAN = "boolean"
    MULTI_VALUED = "multi_valued"
    NUMERIC = "numeric"
    RANKING_STAT = "ranking_stat"
    ORDINAL = "ordinal"

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.NUMERIC, FieldType.RANKING_STAT)


# Catalog types reported by profile providers mapped onto comparison semantics.
CATALOG_TYPE_MAP: Mapping[str, FieldType] = {
    "select": FieldType.CATEGORICAL,
    "radio": FieldType.CATEGORICAL,
    "multiselect": FieldType.MULTI_VALUED,
    "checkbox": FieldType.BOOLEAN,
    "number": FieldType.NUMERIC,
    "ranking_level": FieldType.ORDINAL,
    "ranking_stat": FieldType.RANKING_STAT,
}


def make_field_id(source: FieldSource, key: str) -> str:
    """Return the globally unambiguous identifier for ``key`` within ``source``."""

    return f"{FieldSource(source).value}:{key}"


def resolve_field_type(catalog_type: str | None) -> FieldType:
    if not catalog_type:
        return FieldType.TEXT
    return CATALOG_TYPE_MAP.get(catalog_type.strip().lower(), FieldType.TEXT)


def is_missing(value: AttributeValue) -> bool:
    return value is None or value == ""


@dataclass(frozen=True, slots=True)
class Entry:
    """A person together with the attribute values relevant to one generation."""

    person_id: str
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)

    def get(self, field_id: str) -> AttributeValue:
        return self.attributes.get(field_id)


@dataclass(frozen=True, slots=True)
class FieldCatalogEntry:
    """Field advertised by the profile provider for an activity or session."""

    source: FieldSource
    key: str
    label: str
    catalog_type: str = "text"
    options: tuple[str, ...] = ()

    @property
    def field_id(self) -> str:
        return make_field_id(self.source, self.key)

    @property
    def field_type(self) -> FieldType:
        return resolve_field_type(self.catalog_type)

    def as_dict(self) -> dict:
        return {
            "field_id": self.field_id,
            "source": self.source.value,
            "key": self.key,
            "label": self.label,
            "type": self.catalog_type,
            "options": list(self.options),
        }


@dataclass(slots=True)
class MemberProfile:
    """Aggregated member data grouped by source, as produced by a profile provider."""

    person_id: str
    display_name: str | None = None
    values_by_source: dict[FieldSource, dict[str, AttributeValue]] = field(default_factory=dict)

    def set_value(self, source: FieldSource, key: str, value: AttributeValue) -> None:
        self.values_by_source.setdefault(FieldSource(source), {})[key] = value

    def flatten(self) -> dict[str, AttributeValue]:
        """Collapse per-source values into a single map keyed by namespaced field id."""

        flattened: dict[str, AttributeValue] = {}
        for source, values in self.values_by_source.items():
            for key, value in values.items():
                flattened[make_field_id(source, key)] = _normalize_value(value)
        return flattened

    def to_entry(self) -> Entry:
        return Entry(person_id=self.person_id, attributes=self.flatten())


def _normalize_value(value: object) -> AttributeValue:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value  # type: ignore[return-value]
    if isinstance(value, Sequence):
        return [str(item) for item in value]
    return str(value)


__all__ = [
    "AttributeValue",
    "CATALOG_TYPE_MAP",
    "Entry",
    "FieldCatalogEntry",
    "FieldSource",
    "FieldType",
    "MemberProfile",
    "UNKNOWN_LABEL",
    "is_missing",
    "make_field_id",
    "resolve_field_type",
]
