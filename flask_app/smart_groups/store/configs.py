"""Data access for per-activity smart-group configs."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flask_app.models import SmartGroupConfig

from ..errors import ConflictError, NotFoundError

_UNSET: Any = object()


def get_config(session: Session, *, organization_id: int, config_id: int) -> SmartGroupConfig:
    config = session.execute(
        select(SmartGroupConfig).where(
            SmartGroupConfig.id == config_id,
            SmartGroupConfig.organization_id == organization_id,
        )
    ).scalar_one_or_none()
    if config is None:
        raise NotFoundError("Smart Groups config not found")
    return config


def get_config_by_activity(session: Session, *, organization_id: int, activity_id: str) -> SmartGroupConfig | None:
    return session.execute(
        select(SmartGroupConfig).where(
            SmartGroupConfig.activity_id == activity_id,
            SmartGroupConfig.organization_id == organization_id,
        )
    ).scalar_one_or_none()


def create_config(
    session: Session,
    *,
    organization_id: int,
    activity_id: str,
    name: str,
    default_criteria: Mapping[str, Any] | None = None,
    created_by_user_id: int | None = None,
) -> SmartGroupConfig:
    """
    Insert the config for ``activity_id``.

    Raises:
        ConflictError: when the activity already has a config, whether caught by
            the pre-check or by the unique constraint under a concurrent insert.
    """

    existing = session.execute(
        select(SmartGroupConfig.id).where(SmartGroupConfig.activity_id == activity_id)
    ).first()
    if existing is not None:
        raise ConflictError("Smart Groups config already exists for this activity")

    config = SmartGroupConfig(
        organization_id=organization_id,
        activity_id=activity_id,
        name=name,
        default_criteria=dict(default_criteria) if default_criteria is not None else None,
        created_by_user_id=created_by_user_id,
    )
    session.add(config)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError("Smart Groups config already exists for this activity") from exc
    return config


def update_config(
    session: Session,
    *,
    organization_id: int,
    config_id: int,
    name: str | None = None,
    default_criteria: Mapping[str, Any] | None = _UNSET,
) -> SmartGroupConfig:
    """Apply a partial update. Passing ``default_criteria=None`` clears the default."""

    config = get_config(session, organization_id=organization_id, config_id=config_id)
    if name is not None:
        config.name = name
    if default_criteria is not _UNSET:
        config.default_criteria = dict(default_criteria) if default_criteria is not None else None
    session.flush()
    return config


__all__ = ["create_config", "get_config", "get_config_by_activity", "update_config"]
