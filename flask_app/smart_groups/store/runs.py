"""
Data access for generation runs and their entry snapshots.

Every function takes the caller's session and leaves commit/rollback to the
caller, so a whole generate or confirm step commits or fails as one unit.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flask_app.models import (
    ProposalStatus,
    RunScope,
    RunStatus,
    SmartGroupConfig,
    SmartGroupEntry,
    SmartGroupRun,
)
from flask_app.models.base import utc_now

from ..attributes import AttributeValue
from ..errors import ConflictError, NotFoundError, ValidationError
from .history import record_history

ENTRY_CHUNK_SIZE = 500
MAX_LISTED_IDS = 5


@dataclass(frozen=True, slots=True)
class EntrySnapshot:
    """Attribute values captured for one person when a run is generated."""

    person_id: str
    display_name: str | None = None
    data: Mapping[str, AttributeValue] = field(default_factory=dict)
    excluded: bool = False


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_run(session: Session, *, organization_id: int, run_id: int) -> SmartGroupRun:
    run = session.execute(
        select(SmartGroupRun).where(
            SmartGroupRun.id == run_id,
            SmartGroupRun.organization_id == organization_id,
        )
    ).scalar_one_or_none()
    if run is None:
        raise NotFoundError("Run not found")
    return run


def latest_run_for_session(session: Session, *, organization_id: int, session_id: str) -> SmartGroupRun | None:
    return session.execute(
        select(SmartGroupRun)
        .where(
            SmartGroupRun.session_id == session_id,
            SmartGroupRun.organization_id == organization_id,
        )
        .order_by(SmartGroupRun.created_at.desc(), SmartGroupRun.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def latest_run_for_activity(session: Session, *, organization_id: int, config_id: int) -> SmartGroupRun | None:
    return session.execute(
        select(SmartGroupRun)
        .where(
            SmartGroupRun.config_id == config_id,
            SmartGroupRun.organization_id == organization_id,
            SmartGroupRun.scope == RunScope.ACTIVITY,
            SmartGroupRun.session_id.is_(None),
        )
        .order_by(SmartGroupRun.created_at.desc(), SmartGroupRun.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_runs(
    session: Session,
    *,
    organization_id: int,
    config_id: int,
    limit: int,
    offset: int = 0,
) -> tuple[list[SmartGroupRun], int]:
    """Return one page of a config's runs, newest first, with the total count."""

    filters = (
        SmartGroupRun.config_id == config_id,
        SmartGroupRun.organization_id == organization_id,
    )
    total = session.execute(select(func.count(SmartGroupRun.id)).where(*filters)).scalar_one()
    runs = (
        session.execute(
            select(SmartGroupRun)
            .where(*filters)
            .order_by(SmartGroupRun.created_at.desc(), SmartGroupRun.id.desc())
            .limit(limit)
            .offset(offset)
        )
        .scalars()
        .all()
    )
    return list(runs), int(total)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_run_with_entries(
    session: Session,
    *,
    config: SmartGroupConfig,
    scope: RunScope,
    session_id: str | None,
    criteria_snapshot: Mapping[str, Any],
    snapshots: Sequence[EntrySnapshot],
    group_count: int,
    generated_by_user_id: int | None = None,
) -> SmartGroupRun:
    """Insert a generated run plus one entry row per person, excluded ones included."""

    excluded_count = sum(1 for snapshot in snapshots if snapshot.excluded)
    run = SmartGroupRun(
        organization_id=config.organization_id,
        config_id=config.id,
        session_id=session_id,
        scope=scope,
        status=RunStatus.GENERATED,
        version=1,
        criteria_snapshot=dict(criteria_snapshot),
        entry_count=len(snapshots) - excluded_count,
        group_count=group_count,
        excluded_count=excluded_count,
        generated_by_user_id=generated_by_user_id,
    )
    session.add(run)
    session.flush()

    rows = [
        {
            "run_id": run.id,
            "person_id": snapshot.person_id,
            "display_name": snapshot.display_name,
            "data_snapshot": dict(snapshot.data),
            "excluded": snapshot.excluded,
        }
        for snapshot in snapshots
    ]
    for start in range(0, len(rows), ENTRY_CHUNK_SIZE):
        session.execute(insert(SmartGroupEntry), rows[start : start + ENTRY_CHUNK_SIZE])
    return run


def confirm_run(
    session: Session,
    *,
    organization_id: int,
    run_id: int,
    expected_version: int,
    confirmed_by_user_id: int | None = None,
) -> SmartGroupRun:
    """
    Confirm a generated run.

    Checks the version, validates coverage over the effective memberships, flips
    the status with an optimistic ``UPDATE ... WHERE version = expected``, marks
    every proposal accepted or modified and appends the pair history. The
    caller's transaction must be rolled back if this raises.

    Raises:
        NotFoundError: the run does not exist in the organization.
        ConflictError: already confirmed, stale version, or another run for the
            same config and scope was confirmed concurrently.
        ValidationError: a member is missing from every group or sits in more
            than one.
    """

    run = get_run(session, organization_id=organization_id, run_id=run_id)
    if run.status is RunStatus.CONFIRMED:
        raise ConflictError("Run is already confirmed")
    if run.version != expected_version:
        raise ConflictError("Run was already confirmed or modified by another user")

    memberships = [proposal.effective_member_ids for proposal in run.proposals]
    check_coverage(run.entries, memberships)

    confirmed_at = utc_now()
    try:
        result = session.execute(
            update(SmartGroupRun)
            .where(
                SmartGroupRun.id == run.id,
                SmartGroupRun.version == expected_version,
                SmartGroupRun.status == RunStatus.GENERATED,
            )
            .values(
                status=RunStatus.CONFIRMED,
                version=SmartGroupRun.version + 1,
                confirmed_by_user_id=confirmed_by_user_id,
                confirmed_at=confirmed_at,
            )
            .execution_options(synchronize_session=False)
        )
    except IntegrityError as exc:
        raise ConflictError("Another run for this config and scope is already confirmed") from exc
    if result.rowcount != 1:
        raise ConflictError("Run was already confirmed or modified by another user")
    session.refresh(run)

    for proposal in run.proposals:
        proposal.status = ProposalStatus.MODIFIED if proposal.modified_member_ids is not None else ProposalStatus.ACCEPTED

    record_history(
        session,
        organization_id=organization_id,
        activity_id=run.config.activity_id,
        run_id=run.id,
        memberships=memberships,
        grouped_at=confirmed_at,
    )
    session.flush()
    return run


def check_coverage(entries: Sequence[SmartGroupEntry], memberships: Sequence[Sequence[str]]) -> None:
    """
    Every entry of the run, excluded ones included, must sit in exactly one
    group. Ids that are not entries of the run fail.
    """

    counts = Counter(person_id for member_ids in memberships for person_id in member_ids)
    known = {entry.person_id for entry in entries}

    unknown = sorted(person_id for person_id in counts if person_id not in known)
    if unknown:
        raise ValidationError(f"Groups reference members not in this run: {_format_ids(unknown)}")

    duplicated = sorted(person_id for person_id, count in counts.items() if count > 1)
    if duplicated:
        raise ValidationError(
            f"Each member must be in exactly one group; found in several groups: {_format_ids(duplicated)}"
        )

    unassigned = [entry.person_id for entry in entries if counts[entry.person_id] == 0]
    if unassigned:
        raise ValidationError(f"Members not assigned to any group: {_format_ids(unassigned)}")


def _format_ids(person_ids: Sequence[str]) -> str:
    shown = ", ".join(person_ids[:MAX_LISTED_IDS])
    remaining = len(person_ids) - MAX_LISTED_IDS
    return f"{shown} (+{remaining} more)" if remaining > 0 else shown


__all__ = [
    "EntrySnapshot",
    "check_coverage",
    "confirm_run",
    "create_run_with_entries",
    "get_run",
    "latest_run_for_activity",
    "latest_run_for_session",
    "list_runs",
]
