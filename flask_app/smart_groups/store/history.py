"""
Pair history used by the variety penalty.

Confirming a run appends one row per unordered pair of members that ended up
in the same group. Rows are never updated or deleted outside of cascade.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session

from flask_app.models import RunStatus, SmartGroupConfig, SmartGroupHistory, SmartGroupRun

from ..engine.variety import DEFAULT_LOOKBACK, PairKey, iter_pairs

HISTORY_CHUNK_SIZE = 500


def record_history(
    session: Session,
    *,
    organization_id: int,
    activity_id: str,
    run_id: int,
    memberships: Iterable[Sequence[str]],
    grouped_at: datetime,
) -> int:
    """Insert pair rows for every group in ``memberships``; returns the row count."""

    rows = [
        {
            "organization_id": organization_id,
            "activity_id": activity_id,
            "run_id": run_id,
            "person_a_id": first,
            "person_b_id": second,
            "grouped_at": grouped_at,
        }
        for member_ids in memberships
        for first, second in iter_pairs(member_ids)
    ]
    for start in range(0, len(rows), HISTORY_CHUNK_SIZE):
        session.execute(insert(SmartGroupHistory), rows[start : start + HISTORY_CHUNK_SIZE])
    return len(rows)


def get_cooccurrence_counts(
    session: Session,
    *,
    activity_id: str,
    person_ids: Iterable[str],
    lookback: int = DEFAULT_LOOKBACK,
) -> dict[PairKey, int]:
    """
    Count how often each pair among ``person_ids`` was grouped together in the
    last ``lookback`` confirmed runs of the activity.
    """

    members = set(person_ids)
    if len(members) < 2:
        return {}

    recent_run_ids = (
        session.execute(
            select(SmartGroupRun.id)
            .join(SmartGroupConfig, SmartGroupRun.config_id == SmartGroupConfig.id)
            .where(
                SmartGroupConfig.activity_id == activity_id,
                SmartGroupRun.status == RunStatus.CONFIRMED,
            )
            .order_by(SmartGroupRun.confirmed_at.desc(), SmartGroupRun.id.desc())
            .limit(lookback)
        )
        .scalars()
        .all()
    )
    if not recent_run_ids:
        return {}

    rows = session.execute(
        select(SmartGroupHistory.person_a_id, SmartGroupHistory.person_b_id, func.count())
        .where(SmartGroupHistory.run_id.in_(recent_run_ids))
        .group_by(SmartGroupHistory.person_a_id, SmartGroupHistory.person_b_id)
    ).all()

    counts: Counter[PairKey] = Counter()
    for first, second, count in rows:
        if first in members and second in members:
            counts[(first, second)] += int(count)
    return dict(counts)


__all__ = ["HISTORY_CHUNK_SIZE", "get_cooccurrence_counts", "record_history"]
