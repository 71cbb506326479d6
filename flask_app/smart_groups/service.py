"""
Run orchestration for smart groups.

``SmartGroupService`` is the only place that commits. Checks that need no
storage (scope, criteria shape, duplicate ids) run before any query; checks
that need a consistent snapshot (versions, coverage) run inside the
transaction and roll it back on failure. Nothing is retried.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from config.grouping import DEFAULT_TUNING, GroupingTuning
from config.monitoring import SmartGroupsMonitoring
from flask_app.models import (
    RunScope,
    SmartGroupConfig,
    SmartGroupEntry,
    SmartGroupProposal,
    SmartGroupRun,
    db,
)

from . import store
from .attributes import Entry, FieldCatalogEntry
from .criteria import Criteria, GroupingMode, coerce_criteria
from .engine import (
    AnnealingSchedule,
    GroupResult,
    build_penalty_table,
    compute_group_metrics,
    compute_groups,
    minimum_entries,
    partition_entries,
)
from .errors import SmartGroupsError, ValidationError
from .profiles import SMART_GROUPS_EXTENSION_KEY, ProfileProvider, get_profile_provider

MAX_CONFIG_NAME_LENGTH = 200
DEFAULT_RUNS_PAGE_SIZE = 20
MAX_RUNS_PAGE_SIZE = 50


@dataclass(slots=True)
class RunDetails:
    """A run with its entries, proposals and quality metrics."""

    run: SmartGroupRun
    entries: list[SmartGroupEntry] = field(default_factory=list)
    proposals: list[SmartGroupProposal] = field(default_factory=list)
    metrics: dict | None = None


@dataclass(slots=True)
class RunPage:
    runs: list[SmartGroupRun]
    total: int
    limit: int
    offset: int


class SmartGroupService:
    """Configure, generate, review and confirm smart groups for one organization at a time."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        provider: ProfileProvider | None = None,
        tuning: GroupingTuning | None = None,
    ):
        self.session = session or db.session
        self._provider = provider
        self._tuning = tuning

    @property
    def provider(self) -> ProfileProvider:
        if self._provider is not None:
            return self._provider
        return get_profile_provider(current_app)

    @property
    def tuning(self) -> GroupingTuning:
        if self._tuning is not None:
            return self._tuning
        if has_app_context():
            state = current_app.extensions.get(SMART_GROUPS_EXTENSION_KEY, {})
            if state.get("tuning") is not None:
                return state["tuning"]
        return DEFAULT_TUNING

    # ------------------------------------------------------------------
    # Configs
    # ------------------------------------------------------------------

    def get_config_by_activity(self, organization_id: int, activity_id: str) -> SmartGroupConfig | None:
        return store.get_config_by_activity(self.session, organization_id=organization_id, activity_id=activity_id)

    def get_config(self, organization_id: int, config_id: int) -> SmartGroupConfig:
        return store.get_config(self.session, organization_id=organization_id, config_id=config_id)

    def create_config(
        self,
        organization_id: int,
        activity_id: str,
        name: str,
        default_criteria: Mapping[str, Any] | None = None,
        *,
        created_by: int | None = None,
    ) -> SmartGroupConfig:
        activity_id = _require_text(activity_id, "activity_id")
        name = _validate_config_name(name)
        criteria_payload = coerce_criteria(default_criteria).to_dict() if default_criteria is not None else None

        with self._tracked("create_config"), self._transaction():
            config = store.create_config(
                self.session,
                organization_id=organization_id,
                activity_id=activity_id,
                name=name,
                default_criteria=criteria_payload,
                created_by_user_id=created_by,
            )
        _log_info(
            "Smart groups config created",
            config_id=config.id,
            organization_id=organization_id,
            activity_id=activity_id,
        )
        return config

    def update_config(
        self,
        organization_id: int,
        config_id: int,
        *,
        name: str | None = None,
        default_criteria: Mapping[str, Any] | None = None,
        clear_default_criteria: bool = False,
    ) -> SmartGroupConfig:
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = _validate_config_name(name)
        if clear_default_criteria:
            changes["default_criteria"] = None
        elif default_criteria is not None:
            changes["default_criteria"] = coerce_criteria(default_criteria).to_dict()

        with self._tracked("update_config"), self._transaction():
            config = store.update_config(
                self.session,
                organization_id=organization_id,
                config_id=config_id,
                **changes,
            )
        _log_info("Smart groups config updated", config_id=config_id, organization_id=organization_id)
        return config

    def get_available_fields(
        self,
        organization_id: int,
        activity_id: str,
        session_id: str | None = None,
    ) -> list[FieldCatalogEntry]:
        return list(self.provider.get_available_fields(organization_id, activity_id, session_id))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_groups(
        self,
        organization_id: int,
        config_id: int,
        scope: RunScope | str,
        session_id: str | None = None,
        criteria_override: Mapping[str, Any] | Criteria | None = None,
        *,
        generated_by: int | None = None,
    ) -> RunDetails:
        """
        Compute groups for the config's activity (or one of its sessions) and
        persist the run, every entry snapshot and the proposals in one commit.

        Raises:
            NotFoundError: the config is not in the organization.
            ValidationError: bad scope, no usable criteria, no members, too many
                members for the mode, or too few with complete data.
        """

        start_time = time.perf_counter()
        run_scope = _coerce_scope(scope, session_id)
        override = coerce_criteria(criteria_override) if criteria_override is not None else None
        mode_label = override.mode.value if override is not None else "unknown"
        entry_count = 0

        try:
            config = store.get_config(self.session, organization_id=organization_id, config_id=config_id)
            criteria = override or _default_criteria(config)
            mode_label = criteria.mode.value

            person_ids = _unique(self.provider.list_member_ids(organization_id, config.activity_id, session_id))
            entry_count = len(person_ids)
            if not person_ids:
                raise ValidationError("No members found to group")
            ceiling = self.tuning.max_entries_for(criteria.mode.value)
            if len(person_ids) > ceiling:
                raise ValidationError(
                    f"{criteria.mode.value.title()} grouping supports at most {ceiling} members; "
                    f"this request has {len(person_ids)}."
                )

            entries, display_names = self._load_entries(organization_id, config.activity_id, session_id, person_ids)
            eligibility = partition_entries(criteria, entries)
            required = minimum_entries(criteria.mode)
            if len(eligibility.usable) < required:
                raise ValidationError(
                    f"Not enough members with complete data ({len(eligibility.usable)} after excluding "
                    f"{len(eligibility.excluded)}). Need at least {required}."
                )

            groups = self._compute(organization_id, config, session_id, criteria, eligibility.usable)

            snapshots = [
                store.EntrySnapshot(
                    person_id=entry.person_id,
                    display_name=display_names.get(entry.person_id),
                    data=entry.attributes,
                    excluded=excluded,
                )
                for entries_slice, excluded in ((eligibility.usable, False), (eligibility.excluded, True))
                for entry in entries_slice
            ]
            with self._transaction():
                run = store.create_run_with_entries(
                    self.session,
                    config=config,
                    scope=run_scope,
                    session_id=session_id,
                    criteria_snapshot=criteria.to_dict(),
                    snapshots=snapshots,
                    group_count=len(groups),
                    generated_by_user_id=generated_by,
                )
                store.create_proposals(self.session, run=run, groups=groups)
                run_id = run.id
        except SmartGroupsError as exc:
            SmartGroupsMonitoring.record_generate(
                mode=mode_label,
                status=exc.status_label,
                duration_seconds=time.perf_counter() - start_time,
                entry_count=entry_count,
            )
            raise
        except Exception:
            SmartGroupsMonitoring.record_generate(
                mode=mode_label,
                status="error",
                duration_seconds=time.perf_counter() - start_time,
                entry_count=entry_count,
            )
            raise

        duration = time.perf_counter() - start_time
        SmartGroupsMonitoring.record_generate(
            mode=mode_label,
            status="success",
            duration_seconds=duration,
            entry_count=entry_count,
        )
        _log_info(
            "Smart groups generated",
            run_id=run_id,
            config_id=config_id,
            organization_id=organization_id,
            mode=mode_label,
            scope=run_scope.value,
            entry_count=len(eligibility.usable),
            excluded_count=len(eligibility.excluded),
            group_count=len(groups),
            duration_ms=round(duration * 1000, 2),
        )
        return self.get_run_details(organization_id, run_id)

    def _load_entries(
        self,
        organization_id: int,
        activity_id: str,
        session_id: str | None,
        person_ids: Sequence[str],
    ) -> tuple[list[Entry], dict[str, str | None]]:
        profiles = {
            profile.person_id: profile
            for profile in self.provider.build_member_profiles(organization_id, activity_id, session_id, person_ids)
        }
        entries: list[Entry] = []
        display_names: dict[str, str | None] = {}
        for person_id in person_ids:
            profile = profiles.get(person_id)
            if profile is None:
                # No profile data; cluster and balanced modes will exclude them
                entries.append(Entry(person_id=person_id))
                display_names[person_id] = None
                continue
            entries.append(profile.to_entry())
            display_names[person_id] = profile.display_name
        return entries, display_names

    def _compute(
        self,
        organization_id: int,
        config: SmartGroupConfig,
        session_id: str | None,
        criteria: Criteria,
        usable: Sequence[Entry],
    ) -> list[GroupResult]:
        tuning = self.tuning
        penalty = None
        if criteria.variety_weight > 0:
            counts = store.get_cooccurrence_counts(
                self.session,
                activity_id=config.activity_id,
                person_ids=[entry.person_id for entry in usable],
                lookback=tuning.variety_lookback_runs,
            )
            if counts:
                penalty = build_penalty_table(counts, tuning.variety_lookback_runs)

        catalog: Sequence[FieldCatalogEntry] = ()
        level_order_map = None
        if criteria.mode in (GroupingMode.SIMILARITY, GroupingMode.DIVERSITY):
            catalog = self.provider.get_available_fields(organization_id, config.activity_id, session_id)
            level_order_map = self.provider.get_level_order_map(organization_id, config.activity_id)

        return compute_groups(
            criteria,
            usable,
            catalog=catalog,
            level_order_map=level_order_map,
            penalty=penalty,
            schedule=self._schedule(),
            exact_cluster_max_entries=tuning.exact_cluster_max_entries,
            balanced_variety_max_entries=tuning.balanced_variety_max_entries,
        )

    def _schedule(self) -> AnnealingSchedule:
        tuning = self.tuning
        return AnnealingSchedule(
            iterations=tuning.anneal_iterations,
            initial_temperature=tuning.anneal_initial_temperature,
            cooling_rate=tuning.anneal_cooling_rate,
            seed=tuning.anneal_seed,
        )

    # ------------------------------------------------------------------
    # Review and confirmation
    # ------------------------------------------------------------------

    def update_proposal_members(
        self,
        organization_id: int,
        proposal_id: int,
        modified_member_ids: Sequence[str],
        expected_version: int,
    ) -> SmartGroupProposal:
        member_ids = [str(person_id) for person_id in modified_member_ids]
        if len(set(member_ids)) != len(member_ids):
            SmartGroupsMonitoring.record_operation(operation="update_proposal", status="validation")
            raise ValidationError("Duplicate member IDs in modified_member_ids")

        with self._tracked("update_proposal"), self._transaction():
            proposal = store.update_proposal_members(
                self.session,
                organization_id=organization_id,
                proposal_id=proposal_id,
                modified_member_ids=member_ids,
                expected_version=expected_version,
            )
        _log_info(
            "Smart groups proposal updated",
            proposal_id=proposal_id,
            organization_id=organization_id,
            member_count=len(member_ids),
            version=proposal.version,
        )
        return proposal

    def confirm_run(
        self,
        organization_id: int,
        run_id: int,
        expected_version: int,
        *,
        confirmed_by: int | None = None,
    ) -> SmartGroupRun:
        with self._tracked("confirm"), self._transaction():
            run = store.confirm_run(
                self.session,
                organization_id=organization_id,
                run_id=run_id,
                expected_version=expected_version,
                confirmed_by_user_id=confirmed_by,
            )
        _log_info(
            "Smart groups run confirmed",
            run_id=run_id,
            organization_id=organization_id,
            version=run.version,
            confirmed_by=confirmed_by,
        )
        return run

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_latest_run_by_session(self, organization_id: int, session_id: str) -> SmartGroupRun | None:
        return store.latest_run_for_session(self.session, organization_id=organization_id, session_id=session_id)

    def get_latest_run_by_activity(self, organization_id: int, config_id: int) -> SmartGroupRun | None:
        return store.latest_run_for_activity(self.session, organization_id=organization_id, config_id=config_id)

    def list_runs(
        self,
        organization_id: int,
        config_id: int,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> RunPage:
        resolved_limit = DEFAULT_RUNS_PAGE_SIZE if limit is None else limit
        if isinstance(resolved_limit, bool) or not 1 <= int(resolved_limit) <= MAX_RUNS_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_RUNS_PAGE_SIZE}.")
        if isinstance(offset, bool) or int(offset) < 0:
            raise ValidationError("offset must be >= 0.")

        store.get_config(self.session, organization_id=organization_id, config_id=config_id)
        runs, total = store.list_runs(
            self.session,
            organization_id=organization_id,
            config_id=config_id,
            limit=int(resolved_limit),
            offset=int(offset),
        )
        return RunPage(runs=runs, total=total, limit=int(resolved_limit), offset=int(offset))

    def get_run_details(self, organization_id: int, run_id: int) -> RunDetails:
        run = store.get_run(self.session, organization_id=organization_id, run_id=run_id)
        entries = list(run.entries)
        proposals = list(run.proposals)
        metrics = _run_metrics(run, entries, proposals, exact_max_entries=self.tuning.exact_cluster_max_entries)
        return RunDetails(run=run, entries=entries, proposals=proposals, metrics=metrics)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @contextmanager
    def _tracked(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SmartGroupsError as exc:
            SmartGroupsMonitoring.record_operation(operation=operation, status=exc.status_label)
            raise
        except Exception:
            SmartGroupsMonitoring.record_operation(operation=operation, status="error")
            raise
        SmartGroupsMonitoring.record_operation(operation=operation, status="success")


def _run_metrics(
    run: SmartGroupRun,
    entries: Sequence[SmartGroupEntry],
    proposals: Sequence[SmartGroupProposal],
    *,
    exact_max_entries: int,
) -> dict | None:
    criteria = coerce_criteria(run.criteria_snapshot)
    included = [
        Entry(person_id=entry.person_id, attributes=entry.data_snapshot or {})
        for entry in entries
        if not entry.excluded
    ]
    groups = [
        GroupResult(group_name=proposal.group_name, member_ids=proposal.effective_member_ids)
        for proposal in proposals
    ]
    metrics = compute_group_metrics(criteria, groups, included, exact_max_entries=exact_max_entries)
    return metrics.as_dict() if metrics is not None else None


def _default_criteria(config: SmartGroupConfig) -> Criteria:
    if not config.default_criteria:
        raise ValidationError("No criteria provided and the config has no default criteria.")
    return coerce_criteria(config.default_criteria)


def _coerce_scope(scope: RunScope | str, session_id: str | None) -> RunScope:
    try:
        run_scope = RunScope(scope)
    except ValueError:
        raise ValidationError(f"Unsupported scope '{scope}'.") from None
    if run_scope is RunScope.SESSION and not session_id:
        raise ValidationError("session_id is required for session scope.")
    if run_scope is RunScope.ACTIVITY and session_id:
        raise ValidationError("session_id must not be set for activity scope.")
    return run_scope


def _require_text(value: Any, name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"'{name}' is required.")
    return text


def _validate_config_name(name: Any) -> str:
    text = _require_text(name, "name")
    if len(text) > MAX_CONFIG_NAME_LENGTH:
        raise ValidationError(f"'name' must be at most {MAX_CONFIG_NAME_LENGTH} characters.")
    return text


def _unique(person_ids: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(str(person_id) for person_id in person_ids))


def _log_info(message: str, **context: Any) -> None:
    if has_app_context():
        current_app.logger.info(message, extra={f"smart_groups_{key}": value for key, value in context.items()})


__all__ = ["RunDetails", "RunPage", "SmartGroupService"]
