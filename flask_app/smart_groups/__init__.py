"""
Smart groups feature package.

Partitions an activity's members (or one session's participants) into groups
by category, similarity, diversity or balanced skill, and carries each result
through a propose, edit and confirm review with optimistic concurrency.
"""

from __future__ import annotations

from flask import Flask

from config.grouping import load_tuning

from .errors import ConflictError, NotFoundError, SmartGroupsError, ValidationError
from .profiles import (
    PROFILE_PROVIDER_KEY,
    SMART_GROUPS_EXTENSION_KEY,
    ProfileProvider,
    get_profile_provider,
    register_profile_provider,
)
from .service import RunDetails, RunPage, SmartGroupService
from .views import smart_groups_blueprint

__all__ = [
    "ConflictError",
    "NotFoundError",
    "ProfileProvider",
    "RunDetails",
    "RunPage",
    "SMART_GROUPS_EXTENSION_KEY",
    "SmartGroupService",
    "SmartGroupsError",
    "ValidationError",
    "get_profile_provider",
    "init_smart_groups",
    "is_smart_groups_enabled",
    "register_profile_provider",
]


def is_smart_groups_enabled(app: Flask) -> bool:
    return bool(app.config.get("SMART_GROUPS_ENABLED", True))


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        SMART_GROUPS_EXTENSION_KEY,
        {
            "enabled": False,
            "tuning": None,
            PROFILE_PROVIDER_KEY: None,
        },
    )


def init_smart_groups(app: Flask, provider: ProfileProvider | None = None) -> None:
    """
    Load the tuning profile and mount the smart groups API when enabled.

    State is kept in ``app.extensions['smart_groups']``. A profile provider can
    be passed here or registered later with :func:`register_profile_provider`.
    """
    enabled = is_smart_groups_enabled(app)
    state = _ensure_extension_state(app)

    tuning_env = {}
    if app.config.get("SMART_GROUPS_TUNING_PATH"):
        tuning_env["SMART_GROUPS_TUNING_PATH"] = app.config["SMART_GROUPS_TUNING_PATH"]
    state["enabled"] = enabled
    state["tuning"] = load_tuning(tuning_env, seed=app.config.get("SMART_GROUPS_RANDOM_SEED"))

    if provider is not None:
        register_profile_provider(app, provider)

    # Avoid duplicate registrations when running tests
    if enabled and smart_groups_blueprint.name not in app.blueprints:
        app.register_blueprint(smart_groups_blueprint)

    app.logger.info(
        "Smart groups initialised",
        extra={
            "smart_groups_enabled": enabled,
            "smart_groups_tuning_override": bool(tuning_env),
        },
    )
