"""
SQLAlchemy models backing smart-group generation.

A ``SmartGroupConfig`` holds the default criteria for one activity. Each
generation attempt persists a ``SmartGroupRun`` together with a snapshot of
every considered member (``SmartGroupEntry``) and the proposed groups
(``SmartGroupProposal``). Confirming a run appends pairwise
``SmartGroupHistory`` rows that feed the variety penalty of later runs.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class RunScope(str, enum.Enum):
    """Whether a run groups one session's participants or the whole activity."""

    SESSION = "session"
    ACTIVITY = "activity"


class RunStatus(str, enum.Enum):
    """Lifecycle states for a generation run."""

    GENERATED = "generated"
    CONFIRMED = "confirmed"


class ProposalStatus(str, enum.Enum):
    """Review state of a single proposed group."""

    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    MODIFIED = "modified"


class SmartGroupConfig(BaseModel):
    """Per-activity grouping configuration."""

    __tablename__ = "smart_group_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    activity_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    default_criteria: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    runs = relationship(
        "SmartGroupRun",
        back_populates="config",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (UniqueConstraint("activity_id", name="uq_smart_group_configs_activity"),)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SmartGroupConfig id={self.id} activity={self.activity_id}>"


class SmartGroupRun(BaseModel):
    """One generation attempt and its confirmation state."""

    __tablename__ = "smart_group_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    config_id: Mapped[int] = mapped_column(
        ForeignKey("smart_group_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    scope: Mapped[RunScope] = mapped_column(Enum(RunScope, name="smart_group_run_scope_enum"), nullable=False)
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus, name="smart_group_run_status_enum"),
        nullable=False,
        default=RunStatus.GENERATED,
        index=True,
    )
    version: Mapped[int] = mapped_column(db.Integer, nullable=False, default=1)
    criteria_snapshot: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    entry_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    group_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    excluded_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    generated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    confirmed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    config = relationship("SmartGroupConfig", back_populates="runs")
    entries = relationship(
        "SmartGroupEntry",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SmartGroupEntry.id",
    )
    proposals = relationship(
        "SmartGroupProposal",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SmartGroupProposal.group_index",
    )

    # Enum columns persist member names, hence 'CONFIRMED' in the predicates.
    __table_args__ = (
        Index(
            "uq_smart_group_runs_confirmed_session",
            "config_id",
            "scope",
            "session_id",
            unique=True,
            sqlite_where=text("status = 'CONFIRMED' AND session_id IS NOT NULL"),
            postgresql_where=text("status = 'CONFIRMED' AND session_id IS NOT NULL"),
        ),
        Index(
            "uq_smart_group_runs_confirmed_activity",
            "config_id",
            "scope",
            unique=True,
            sqlite_where=text("status = 'CONFIRMED' AND session_id IS NULL"),
            postgresql_where=text("status = 'CONFIRMED' AND session_id IS NULL"),
        ),
        Index("idx_smart_group_runs_config_created", "config_id", "created_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SmartGroupRun id={self.id} status={self.status.value} v{self.version}>"


class SmartGroupEntry(BaseModel):
    """Snapshot of one member's attributes at generation time."""

    __tablename__ = "smart_group_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("smart_group_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    person_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    data_snapshot: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    excluded: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    run = relationship("SmartGroupRun", back_populates="entries")

    __table_args__ = (UniqueConstraint("run_id", "person_id", name="uq_smart_group_entries_run_person"),)


class SmartGroupProposal(BaseModel):
    """A proposed group inside a run, editable until the run is confirmed."""

    __tablename__ = "smart_group_proposals"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("smart_group_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_index: Mapped[int] = mapped_column(db.Integer, nullable=False)
    group_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    member_ids: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    modified_member_ids: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="smart_group_proposal_status_enum"),
        nullable=False,
        default=ProposalStatus.PROPOSED,
    )
    version: Mapped[int] = mapped_column(db.Integer, nullable=False, default=1)

    run = relationship("SmartGroupRun", back_populates="proposals")

    __table_args__ = (UniqueConstraint("run_id", "group_index", name="uq_smart_group_proposals_run_index"),)

    @property
    def effective_member_ids(self) -> list[str]:
        if self.modified_member_ids is not None:
            return list(self.modified_member_ids)
        return list(self.member_ids or [])


class SmartGroupHistory(BaseModel):
    """Pair of members confirmed together; ``person_a_id < person_b_id``."""

    __tablename__ = "smart_group_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    activity_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("smart_group_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    person_a_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    person_b_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    grouped_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "person_a_id", "person_b_id", name="uq_smart_group_history_run_pair"),
        Index("idx_smart_group_history_activity_pair", "activity_id", "person_a_id", "person_b_id"),
    )


__all__ = [
    "ProposalStatus",
    "RunScope",
    "RunStatus",
    "SmartGroupConfig",
    "SmartGroupEntry",
    "SmartGroupHistory",
    "SmartGroupProposal",
    "SmartGroupRun",
]
