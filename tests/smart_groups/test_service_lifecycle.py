import pytest
from sqlalchemy import select, update

from config.grouping import GroupingTuning
from flask_app.models import (
    ProposalStatus,
    RunScope,
    RunStatus,
    SmartGroupHistory,
    SmartGroupProposal,
    SmartGroupRun,
    db,
)
from flask_app.smart_groups import ConflictError, NotFoundError, SmartGroupService, ValidationError
from flask_app.smart_groups.store import get_cooccurrence_counts, update_proposal_members

ACTIVITY_ID = "activity-1"
SESSION_ID = "session-1"

SPLIT_BY_TEAM = {"mode": "split", "fields": ["org:team"]}
BALANCE_BY_SKILL = {"mode": "balanced", "balance_fields": [{"field_id": "org:skill"}], "team_count": 2}


def _proposals_by_name(details):
    return {proposal.group_name: proposal for proposal in details.proposals}


def _history_pairs(run_id):
    rows = db.session.execute(
        select(SmartGroupHistory.person_a_id, SmartGroupHistory.person_b_id).where(SmartGroupHistory.run_id == run_id)
    ).all()
    return sorted((row[0], row[1]) for row in rows)


@pytest.fixture
def split_config(config_factory):
    return config_factory(default_criteria=SPLIT_BY_TEAM)


@pytest.fixture
def session_run(service, test_organization, split_config, four_members):
    return service.generate_groups(test_organization.id, split_config.id, "session", SESSION_ID)


class TestGenerate:
    def test_split_run_is_persisted_with_entries_and_proposals(self, session_run, test_organization):
        run = session_run.run
        assert run.status is RunStatus.GENERATED
        assert run.scope is RunScope.SESSION
        assert run.session_id == SESSION_ID
        assert run.version == 1
        assert run.entry_count == 4
        assert run.excluded_count == 0
        assert run.group_count == 2
        assert run.criteria_snapshot == SPLIT_BY_TEAM

        proposals = _proposals_by_name(session_run)
        assert sorted(proposals) == ["blue", "red"]
        assert proposals["red"].member_ids == ["p1", "p2"]
        assert proposals["blue"].member_ids == ["p3", "p4"]
        assert all(proposal.status is ProposalStatus.PROPOSED for proposal in session_run.proposals)
        assert {entry.person_id: entry.display_name for entry in session_run.entries} == {
            "p1": "Ana",
            "p2": "Ben",
            "p3": "Cy",
            "p4": "Di",
        }
        assert session_run.entries[0].data_snapshot["org:team"] == "red"
        assert session_run.metrics is None

    def test_override_takes_precedence_over_default(self, service, test_organization, split_config, four_members):
        details = service.generate_groups(
            test_organization.id,
            split_config.id,
            "activity",
            criteria_override=BALANCE_BY_SKILL,
        )
        assert details.run.criteria_snapshot["mode"] == "balanced"
        assert details.run.scope is RunScope.ACTIVITY
        assert details.run.session_id is None
        assert sorted(len(proposal.member_ids) for proposal in details.proposals) == [2, 2]
        assert details.metrics["mode"] == "balanced"
        assert details.metrics["balance_percent"] == 100

    def test_missing_criteria_is_rejected(self, service, test_organization, config_factory, four_members):
        config = config_factory()
        with pytest.raises(ValidationError, match="no default criteria"):
            service.generate_groups(test_organization.id, config.id, "activity")

    def test_no_members(self, service, test_organization, split_config, provider):
        with pytest.raises(ValidationError, match="No members found to group"):
            service.generate_groups(test_organization.id, split_config.id, "session", SESSION_ID)
        assert db.session.execute(select(SmartGroupRun)).first() is None

    @pytest.mark.parametrize(
        ("scope", "session_id"),
        [("weekly", None), ("session", None), ("activity", SESSION_ID)],
    )
    def test_scope_validation(self, service, test_organization, split_config, four_members, scope, session_id):
        with pytest.raises(ValidationError):
            service.generate_groups(test_organization.id, split_config.id, scope, session_id)

    def test_member_ceiling_comes_from_tuning(self, provider, test_organization, split_config, four_members):
        service = SmartGroupService(
            provider=provider,
            tuning=GroupingTuning(max_entries_by_mode={"split": 3}, anneal_seed=1),
        )
        with pytest.raises(ValidationError, match="at most 3"):
            service.generate_groups(test_organization.id, split_config.id, "session", SESSION_ID)

    def test_unknown_config(self, service, test_organization, four_members):
        with pytest.raises(NotFoundError):
            service.generate_groups(test_organization.id, 999, "activity")

    def test_members_without_data_are_excluded(self, service, test_organization, config_factory, four_members):
        four_members.add_member("p5", name="Eve", sessions=[SESSION_ID], team="red")
        config = config_factory(
            default_criteria={"mode": "similarity", "fields": [{"field_id": "org:skill"}], "group_count": 2}
        )

        details = service.generate_groups(test_organization.id, config.id, "session", SESSION_ID)

        assert details.run.entry_count == 4
        assert details.run.excluded_count == 1
        excluded = [entry.person_id for entry in details.entries if entry.excluded]
        assert excluded == ["p5"]
        placed = sorted(pid for proposal in details.proposals for pid in proposal.member_ids)
        assert placed == ["p1", "p2", "p3", "p4"]
        assert details.metrics["mode"] == "similarity"

        with pytest.raises(ValidationError, match="not assigned to any group: p5"):
            service.confirm_run(test_organization.id, details.run.id, 1)

        first = details.proposals[0]
        service.update_proposal_members(
            test_organization.id, first.id, list(first.member_ids) + ["p5"], expected_version=1
        )
        confirmed = service.confirm_run(test_organization.id, details.run.id, 1)
        assert confirmed.status is RunStatus.CONFIRMED
        assert "p5" in confirmed.proposals[0].effective_member_ids

    def test_too_few_usable_members(self, service, test_organization, config_factory, provider):
        provider.add_member("p1", sessions=[SESSION_ID], skill=3)
        provider.add_member("p2", sessions=[SESSION_ID])
        config = config_factory(
            default_criteria={"mode": "diversity", "fields": [{"field_id": "org:skill"}], "group_count": 2}
        )
        with pytest.raises(ValidationError, match="Not enough members"):
            service.generate_groups(test_organization.id, config.id, "session", SESSION_ID)


class TestReviewAndConfirm:
    def test_edit_then_confirm_records_final_membership(self, service, test_organization, session_run):
        org_id = test_organization.id
        proposals = _proposals_by_name(session_run)
        blue_id, red_id = proposals["blue"].id, proposals["red"].id

        blue = service.update_proposal_members(org_id, blue_id, ["p3", "p4", "p2"], expected_version=1)
        assert blue.version == 2
        assert blue.status is ProposalStatus.MODIFIED
        assert blue.effective_member_ids == ["p3", "p4", "p2"]
        assert blue.member_ids == ["p3", "p4"]

        # p2 is now in both groups
        with pytest.raises(ValidationError, match="p2"):
            service.confirm_run(org_id, session_run.run.id, 1)
        assert service.get_run_details(org_id, session_run.run.id).run.status is RunStatus.GENERATED

        service.update_proposal_members(org_id, red_id, ["p1"], expected_version=1)
        run = service.confirm_run(org_id, session_run.run.id, 1)

        assert run.status is RunStatus.CONFIRMED
        assert run.version == 2
        assert run.confirmed_at is not None
        assert all(proposal.status is ProposalStatus.MODIFIED for proposal in run.proposals)
        assert _history_pairs(run.id) == [("p2", "p3"), ("p2", "p4"), ("p3", "p4")]

    def test_untouched_proposals_are_accepted(self, service, test_organization, session_run):
        run = service.confirm_run(test_organization.id, session_run.run.id, 1)
        assert all(proposal.status is ProposalStatus.ACCEPTED for proposal in run.proposals)
        assert all(proposal.version == 1 for proposal in run.proposals)
        assert _history_pairs(run.id) == [("p1", "p2"), ("p3", "p4")]

    def test_edit_racing_a_confirm_is_rejected(self, test_organization, session_run):
        run = session_run.run
        proposal = session_run.proposals[0]
        assert run.status is RunStatus.GENERATED

        # Another writer confirms after this session has already read the run.
        db.session.execute(
            update(SmartGroupRun)
            .where(SmartGroupRun.id == run.id)
            .values(status=RunStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        assert run.status is RunStatus.GENERATED

        with pytest.raises(ConflictError, match="confirmed run"):
            update_proposal_members(
                db.session,
                organization_id=test_organization.id,
                proposal_id=proposal.id,
                modified_member_ids=["p1"],
                expected_version=1,
            )

        version, status = db.session.execute(
            select(SmartGroupProposal.version, SmartGroupProposal.status).where(SmartGroupProposal.id == proposal.id)
        ).one()
        assert version == 1
        assert status is ProposalStatus.PROPOSED

    def test_unassigned_member_blocks_confirm(self, service, test_organization, session_run):
        red = _proposals_by_name(session_run)["red"]
        service.update_proposal_members(test_organization.id, red.id, ["p1"], expected_version=1)
        with pytest.raises(ValidationError, match="not assigned"):
            service.confirm_run(test_organization.id, session_run.run.id, 1)

    def test_double_confirm_conflicts(self, service, test_organization, session_run):
        service.confirm_run(test_organization.id, session_run.run.id, 1)
        with pytest.raises(ConflictError, match="already confirmed"):
            service.confirm_run(test_organization.id, session_run.run.id, 2)

    def test_stale_run_version_conflicts(self, service, test_organization, session_run):
        with pytest.raises(ConflictError):
            service.confirm_run(test_organization.id, session_run.run.id, 5)
        assert _history_pairs(session_run.run.id) == []

    def test_edit_after_confirm_conflicts(self, service, test_organization, session_run):
        proposal_id = session_run.proposals[0].id
        service.confirm_run(test_organization.id, session_run.run.id, 1)
        with pytest.raises(ConflictError, match="confirmed run"):
            service.update_proposal_members(test_organization.id, proposal_id, ["p1"], expected_version=1)

    def test_stale_proposal_version_conflicts(self, service, test_organization, session_run):
        proposal_id = session_run.proposals[0].id
        service.update_proposal_members(test_organization.id, proposal_id, ["p3"], expected_version=1)
        with pytest.raises(ConflictError, match="modified by another user"):
            service.update_proposal_members(test_organization.id, proposal_id, ["p4"], expected_version=1)

    def test_invalid_and_duplicate_member_ids(self, service, test_organization, session_run):
        proposal_id = session_run.proposals[0].id
        with pytest.raises(ValidationError, match="not in this run: ghost"):
            service.update_proposal_members(test_organization.id, proposal_id, ["p1", "ghost"], expected_version=1)
        with pytest.raises(ValidationError, match="Duplicate member IDs"):
            service.update_proposal_members(test_organization.id, proposal_id, ["p1", "p1"], expected_version=1)

    def test_emptied_group_is_allowed(self, service, test_organization, session_run):
        proposals = _proposals_by_name(session_run)
        org_id = test_organization.id
        service.update_proposal_members(org_id, proposals["red"].id, [], expected_version=1)
        service.update_proposal_members(org_id, proposals["blue"].id, ["p1", "p2", "p3", "p4"], expected_version=1)
        run = service.confirm_run(org_id, session_run.run.id, 1)
        assert len(_history_pairs(run.id)) == 6

    def test_second_confirmed_run_for_same_session_conflicts(
        self, service, test_organization, split_config, session_run
    ):
        other = service.generate_groups(test_organization.id, split_config.id, "session", SESSION_ID)
        service.confirm_run(test_organization.id, session_run.run.id, 1)

        with pytest.raises(ConflictError):
            service.confirm_run(test_organization.id, other.run.id, 1)

        reloaded = service.get_run_details(test_organization.id, other.run.id).run
        assert reloaded.status is RunStatus.GENERATED
        assert _history_pairs(other.run.id) == []

    def test_activity_and_session_runs_confirm_independently(
        self, service, test_organization, split_config, session_run
    ):
        activity_run = service.generate_groups(test_organization.id, split_config.id, "activity")
        service.confirm_run(test_organization.id, session_run.run.id, 1)
        confirmed = service.confirm_run(test_organization.id, activity_run.run.id, 1)
        assert confirmed.status is RunStatus.CONFIRMED


class TestScopingAndQueries:
    def test_other_organization_cannot_see_run(self, service, other_organization, session_run):
        run_id = session_run.run.id
        proposal_id = session_run.proposals[0].id
        with pytest.raises(NotFoundError):
            service.get_run_details(other_organization.id, run_id)
        with pytest.raises(NotFoundError):
            service.confirm_run(other_organization.id, run_id, 1)
        with pytest.raises(NotFoundError):
            service.update_proposal_members(other_organization.id, proposal_id, ["p1"], expected_version=1)
        assert service.get_latest_run_by_session(other_organization.id, SESSION_ID) is None

    def test_latest_runs(self, service, test_organization, split_config, session_run):
        assert service.get_latest_run_by_session(test_organization.id, SESSION_ID).id == session_run.run.id
        assert service.get_latest_run_by_activity(test_organization.id, split_config.id) is None

        activity_run = service.generate_groups(test_organization.id, split_config.id, "activity")
        newer = service.generate_groups(test_organization.id, split_config.id, "session", SESSION_ID)

        assert service.get_latest_run_by_activity(test_organization.id, split_config.id).id == activity_run.run.id
        assert service.get_latest_run_by_session(test_organization.id, SESSION_ID).id == newer.run.id
        assert service.get_latest_run_by_session(test_organization.id, "unknown-session") is None

    def test_list_runs_pages_newest_first(self, service, test_organization, split_config, four_members):
        run_ids = [
            service.generate_groups(test_organization.id, split_config.id, "activity").run.id for _ in range(3)
        ]

        first_page = service.list_runs(test_organization.id, split_config.id, limit=2)
        assert first_page.total == 3
        assert [run.id for run in first_page.runs] == run_ids[::-1][:2]

        second_page = service.list_runs(test_organization.id, split_config.id, limit=2, offset=2)
        assert [run.id for run in second_page.runs] == [run_ids[0]]

    @pytest.mark.parametrize(("limit", "offset"), [(0, 0), (51, 0), (10, -1)])
    def test_list_runs_bounds(self, service, test_organization, split_config, limit, offset):
        with pytest.raises(ValidationError):
            service.list_runs(test_organization.id, split_config.id, limit=limit, offset=offset)

    def test_list_runs_for_other_organization_config(self, service, other_organization, split_config):
        with pytest.raises(NotFoundError):
            service.list_runs(other_organization.id, split_config.id)


class TestConfigs:
    def test_create_normalizes_criteria(self, service, test_organization):
        config = service.create_config(
            test_organization.id,
            ACTIVITY_ID,
            "  Morning groups ",
            {"mode": "DIVERSITY", "fields": [{"field_id": "org:skill"}], "group_count": "3"},
        )
        assert config.name == "Morning groups"
        assert config.default_criteria == {
            "mode": "diversity",
            "fields": [{"field_id": "org:skill", "weight": 1.0}],
            "group_count": 3,
            "variety_weight": 0.0,
        }
        assert service.get_config_by_activity(test_organization.id, ACTIVITY_ID).id == config.id

    def test_one_config_per_activity(self, service, test_organization, other_organization):
        service.create_config(test_organization.id, ACTIVITY_ID, "First")
        with pytest.raises(ConflictError, match="already exists"):
            service.create_config(other_organization.id, ACTIVITY_ID, "Second")

    @pytest.mark.parametrize(
        ("activity_id", "name", "criteria"),
        [
            ("", "Name", None),
            (ACTIVITY_ID, "   ", None),
            (ACTIVITY_ID, "x" * 201, None),
            (ACTIVITY_ID, "Name", {"mode": "split", "fields": []}),
        ],
    )
    def test_create_validation(self, service, test_organization, activity_id, name, criteria):
        with pytest.raises(ValidationError):
            service.create_config(test_organization.id, activity_id, name, criteria)

    def test_update_and_clear_default_criteria(self, service, test_organization, split_config):
        updated = service.update_config(test_organization.id, split_config.id, name="Renamed")
        assert updated.name == "Renamed"
        assert updated.default_criteria == SPLIT_BY_TEAM

        cleared = service.update_config(test_organization.id, split_config.id, clear_default_criteria=True)
        assert cleared.default_criteria is None

    def test_update_in_other_organization(self, service, other_organization, split_config):
        with pytest.raises(NotFoundError):
            service.update_config(other_organization.id, split_config.id, name="Nope")


class TestVarietyHistory:
    def test_cooccurrence_counts_follow_confirmed_runs(self, service, test_organization, split_config, session_run):
        counts = get_cooccurrence_counts(db.session, activity_id=ACTIVITY_ID, person_ids=["p1", "p2", "p3", "p4"])
        assert counts == {}

        service.confirm_run(test_organization.id, session_run.run.id, 1)
        counts = get_cooccurrence_counts(db.session, activity_id=ACTIVITY_ID, person_ids=["p1", "p2", "p3", "p4"])
        assert counts == {("p1", "p2"): 1, ("p3", "p4"): 1}

        counts = get_cooccurrence_counts(db.session, activity_id=ACTIVITY_ID, person_ids=["p1", "p3"])
        assert counts == {}

    def test_variety_weight_pulls_repeat_partners_apart(
        self, service, test_organization, split_config, session_run
    ):
        service.confirm_run(test_organization.id, session_run.run.id, 1)

        details = service.generate_groups(
            test_organization.id,
            split_config.id,
            "activity",
            criteria_override={**BALANCE_BY_SKILL, "variety_weight": 5},
        )

        teams = [set(proposal.member_ids) for proposal in details.proposals]
        assert {"p1", "p2"} not in teams
        assert {"p3", "p4"} not in teams
