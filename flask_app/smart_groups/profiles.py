"""
Contract for the member-profile collaborator.

The host application owns people, sessions and participation. The smart-groups
service only needs four read operations from it, expressed here as a
``typing.Protocol`` and looked up from ``app.extensions`` at call time.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence, runtime_checkable

from flask import Flask

from .attributes import FieldCatalogEntry, MemberProfile

SMART_GROUPS_EXTENSION_KEY = "smart_groups"
PROFILE_PROVIDER_KEY = "profile_provider"


@runtime_checkable
class ProfileProvider(Protocol):
    def list_member_ids(
        self,
        organization_id: int,
        activity_id: str,
        session_id: str | None = None,
    ) -> Sequence[str]:
        """Person ids participating in the activity, or in one of its sessions."""

    def build_member_profiles(
        self,
        organization_id: int,
        activity_id: str,
        session_id: str | None,
        person_ids: Sequence[str],
    ) -> Sequence[MemberProfile]:
        """Aggregate attribute values per person, grouped by source."""

    def get_available_fields(
        self,
        organization_id: int,
        activity_id: str,
        session_id: str | None = None,
    ) -> Sequence[FieldCatalogEntry]:
        """Fields a coordinator may pick when building criteria."""

    def get_level_order_map(self, organization_id: int, activity_id: str) -> Mapping[str, int] | None:
        """Rank of each ordinal level label, or ``None`` when the activity has no levels."""


def register_profile_provider(app: Flask, provider: ProfileProvider) -> None:
    if not isinstance(provider, ProfileProvider):
        raise TypeError(f"{type(provider).__name__} does not implement ProfileProvider.")
    state = app.extensions.setdefault(SMART_GROUPS_EXTENSION_KEY, {})
    state[PROFILE_PROVIDER_KEY] = provider


def get_profile_provider(app: Flask) -> ProfileProvider:
    provider = app.extensions.get(SMART_GROUPS_EXTENSION_KEY, {}).get(PROFILE_PROVIDER_KEY)
    if provider is None:
        raise RuntimeError("No smart-groups profile provider is registered for this application.")
    return provider


__all__ = [
    "PROFILE_PROVIDER_KEY",
    "ProfileProvider",
    "SMART_GROUPS_EXTENSION_KEY",
    "get_profile_provider",
    "register_profile_provider",
]
