from __future__ import annotations

from dataclasses import dataclass, field

import pytest
from flask import g
from flask_login import FlaskLoginClient

from config.grouping import GroupingTuning
from flask_app.models import SmartGroupConfig, db
from flask_app.smart_groups import SmartGroupService, register_profile_provider
from flask_app.smart_groups.attributes import Entry, FieldCatalogEntry, FieldSource, MemberProfile
from flask_app.smart_groups.profiles import PROFILE_PROVIDER_KEY, SMART_GROUPS_EXTENSION_KEY

ACTIVITY_ID = "activity-1"
SESSION_ID = "session-1"


@dataclass
class FakeProfileProvider:
    """In-memory stand-in for the host application's member data."""

    members: dict[str, dict] = field(default_factory=dict)
    session_members: dict[str, list[str]] = field(default_factory=dict)
    catalog: list[FieldCatalogEntry] = field(default_factory=list)
    level_order_map: dict[str, int] | None = None

    def add_member(self, person_id, *, name=None, sessions=(), **org_values):
        self.members[person_id] = {"name": name or person_id.title(), "values": dict(org_values)}
        for session_id in sessions:
            self.session_members.setdefault(session_id, []).append(person_id)

    def list_member_ids(self, organization_id, activity_id, session_id=None):
        if session_id is not None:
            return list(self.session_members.get(session_id, []))
        return list(self.members)

    def build_member_profiles(self, organization_id, activity_id, session_id, person_ids):
        profiles = []
        for person_id in person_ids:
            member = self.members.get(person_id)
            if member is None:
                continue
            profile = MemberProfile(person_id=person_id, display_name=member["name"])
            for key, value in member["values"].items():
                profile.set_value(FieldSource.ORG, key, value)
            profiles.append(profile)
        return profiles

    def get_available_fields(self, organization_id, activity_id, session_id=None):
        return list(self.catalog)

    def get_level_order_map(self, organization_id, activity_id):
        return self.level_order_map


def _make_entries(rows):
    return [Entry(person_id=person_id, attributes=attributes) for person_id, attributes in rows]


@pytest.fixture
def make_entries():
    """Build entries from ``[(person_id, {field_id: value}), ...]``."""
    return _make_entries


@pytest.fixture
def provider(app):
    fake = FakeProfileProvider(
        catalog=[
            FieldCatalogEntry(FieldSource.ORG, "team", "Team", "select", ("red", "blue")),
            FieldCatalogEntry(FieldSource.ORG, "shift", "Shift", "radio", ("am", "pm")),
            FieldCatalogEntry(FieldSource.ORG, "skill", "Skill", "number"),
            FieldCatalogEntry(FieldSource.ORG, "level", "Level", "ranking_level"),
        ]
    )
    register_profile_provider(app, fake)
    yield fake
    app.extensions[SMART_GROUPS_EXTENSION_KEY][PROFILE_PROVIDER_KEY] = None


@pytest.fixture
def fast_tuning():
    return GroupingTuning(anneal_iterations=2000, anneal_seed=11)


@pytest.fixture
def service(provider, fast_tuning):
    return SmartGroupService(provider=provider, tuning=fast_tuning)


@pytest.fixture
def config_factory(test_organization):
    def _factory(*, activity_id=ACTIVITY_ID, default_criteria=None, organization=None):
        config = SmartGroupConfig(
            organization_id=(organization or test_organization).id,
            activity_id=activity_id,
            name=f"Groups for {activity_id}",
            default_criteria=default_criteria,
        )
        db.session.add(config)
        db.session.commit()
        return config

    return _factory


@pytest.fixture
def four_members(provider):
    provider.add_member("p1", name="Ana", sessions=[SESSION_ID], team="red", shift="am", skill=10)
    provider.add_member("p2", name="Ben", sessions=[SESSION_ID], team="red", shift="pm", skill=8)
    provider.add_member("p3", name="Cy", sessions=[SESSION_ID], team="blue", shift="am", skill=6)
    provider.add_member("p4", name="Di", sessions=[SESSION_ID], team="blue", shift="pm", skill=4)
    return provider


@pytest.fixture
def login_client(app):
    """Return a factory producing test clients logged in as a given user."""
    original_class = app.test_client_class

    class _LoginClient(FlaskLoginClient):
        # The app fixture keeps one app context open, so flask_login's cached
        # g._login_user would otherwise leak between clients of different users.
        def open(self, *args, **kwargs):
            g.pop("_login_user", None)
            return super().open(*args, **kwargs)

    app.test_client_class = _LoginClient

    def _client(user):
        return app.test_client(user=user)

    yield _client
    app.test_client_class = original_class
