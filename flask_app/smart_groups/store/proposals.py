"""Data access for proposed groups and their optimistic member edits."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from flask_app.models import ProposalStatus, RunStatus, SmartGroupEntry, SmartGroupProposal, SmartGroupRun

from ..engine.results import GroupResult
from ..errors import ConflictError, NotFoundError, ValidationError


def create_proposals(session: Session, *, run: SmartGroupRun, groups: Sequence[GroupResult]) -> list[SmartGroupProposal]:
    proposals = [
        SmartGroupProposal(
            run_id=run.id,
            group_index=index,
            group_name=group.group_name,
            member_ids=list(group.member_ids),
            status=ProposalStatus.PROPOSED,
            version=1,
        )
        for index, group in enumerate(groups)
    ]
    session.add_all(proposals)
    session.flush()
    return proposals


def get_proposal_with_run(
    session: Session,
    *,
    organization_id: int,
    proposal_id: int,
) -> tuple[SmartGroupProposal, SmartGroupRun]:
    row = session.execute(
        select(SmartGroupProposal, SmartGroupRun)
        .join(SmartGroupRun, SmartGroupProposal.run_id == SmartGroupRun.id)
        .where(
            SmartGroupProposal.id == proposal_id,
            SmartGroupRun.organization_id == organization_id,
        )
    ).first()
    if row is None:
        raise NotFoundError("Proposal not found")
    return row[0], row[1]


def update_proposal_members(
    session: Session,
    *,
    organization_id: int,
    proposal_id: int,
    modified_member_ids: Sequence[str],
    expected_version: int,
) -> SmartGroupProposal:
    """
    Replace a proposal's effective membership while its run is still generated.

    Raises:
        NotFoundError: unknown proposal or another organization's proposal.
        ConflictError: the run is confirmed, or ``expected_version`` is stale.
        ValidationError: an id is not an entry of the run.
    """

    proposal, run = get_proposal_with_run(session, organization_id=organization_id, proposal_id=proposal_id)
    if run.status is not RunStatus.GENERATED:
        raise ConflictError("Cannot modify proposals for a confirmed run")

    member_ids = list(modified_member_ids)
    if member_ids:
        found = set(
            session.execute(
                select(SmartGroupEntry.person_id).where(
                    SmartGroupEntry.run_id == run.id,
                    SmartGroupEntry.person_id.in_(member_ids),
                )
            )
            .scalars()
            .all()
        )
        invalid = [person_id for person_id in member_ids if person_id not in found]
        if invalid:
            raise ValidationError(f"Invalid member IDs not in this run: {', '.join(invalid)}")

    result = session.execute(
        update(SmartGroupProposal)
        .where(
            SmartGroupProposal.id == proposal.id,
            SmartGroupProposal.version == expected_version,
            SmartGroupProposal.run_id.in_(
                select(SmartGroupRun.id).where(SmartGroupRun.status == RunStatus.GENERATED)
            ),
        )
        .values(
            modified_member_ids=member_ids,
            status=ProposalStatus.MODIFIED,
            version=SmartGroupProposal.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        status = session.execute(select(SmartGroupRun.status).where(SmartGroupRun.id == run.id)).scalar_one()
        if status is not RunStatus.GENERATED:
            raise ConflictError("Cannot modify proposals for a confirmed run")
        raise ConflictError("Proposal was modified by another user")
    session.refresh(proposal)
    return proposal


__all__ = ["create_proposals", "get_proposal_with_run", "update_proposal_members"]
