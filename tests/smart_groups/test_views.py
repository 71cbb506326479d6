import pytest

SESSION_ID = "session-1"
ACTIVITY_ID = "activity-1"
SPLIT_BY_TEAM = {"mode": "split", "fields": ["org:team"]}


def _base(organization):
    return f"/api/organizations/{organization.id}/smart-groups"


@pytest.fixture
def admin_client(login_client, admin_user, admin_membership):
    return login_client(admin_user)


@pytest.fixture
def member_client(login_client, test_user, member_membership):
    return login_client(test_user)


@pytest.fixture
def split_config(config_factory):
    return config_factory(default_criteria=SPLIT_BY_TEAM)


class TestAccess:
    def test_anonymous_requests_are_rejected(self, client, test_organization):
        response = client.get(f"{_base(test_organization)}/configs/by-activity/{ACTIVITY_ID}")
        assert response.status_code == 401
        assert response.get_json()["error"]

    def test_member_can_read_but_not_mutate(self, member_client, test_organization, split_config, four_members):
        response = member_client.get(f"{_base(test_organization)}/configs/by-activity/{ACTIVITY_ID}")
        assert response.status_code == 200
        assert response.get_json()["config"]["id"] == split_config.id

        response = member_client.post(
            f"{_base(test_organization)}/runs",
            json={"config_id": split_config.id, "scope": "session", "session_id": SESSION_ID},
        )
        assert response.status_code == 403

    def test_outsider_cannot_read(self, admin_client, other_organization):
        response = admin_client.get(f"{_base(other_organization)}/configs/by-activity/{ACTIVITY_ID}")
        assert response.status_code == 403

    def test_super_admin_can_manage_any_organization(self, login_client, super_admin_user, other_organization):
        client = login_client(super_admin_user)
        response = client.post(
            f"{_base(other_organization)}/configs",
            json={"activity_id": ACTIVITY_ID, "name": "Global"},
        )
        assert response.status_code == 201


class TestConfigEndpoints:
    def test_create_and_update_config(self, admin_client, admin_user, test_organization):
        response = admin_client.post(
            f"{_base(test_organization)}/configs",
            json={"activity_id": ACTIVITY_ID, "name": "Groups", "default_criteria": SPLIT_BY_TEAM},
        )
        assert response.status_code == 201
        config = response.get_json()["config"]
        assert config["activity_id"] == ACTIVITY_ID
        assert config["created_by_user_id"] == admin_user.id
        assert config["default_criteria"] == SPLIT_BY_TEAM

        response = admin_client.patch(
            f"{_base(test_organization)}/configs/{config['id']}",
            json={"name": "Renamed", "default_criteria": None},
        )
        assert response.status_code == 200
        body = response.get_json()["config"]
        assert body["name"] == "Renamed"
        assert body["default_criteria"] is None

    def test_duplicate_config_is_a_conflict(self, admin_client, test_organization, split_config):
        response = admin_client.post(
            f"{_base(test_organization)}/configs",
            json={"activity_id": ACTIVITY_ID, "name": "Again"},
        )
        assert response.status_code == 409

    def test_invalid_criteria_is_a_bad_request(self, admin_client, test_organization):
        response = admin_client.post(
            f"{_base(test_organization)}/configs",
            json={"activity_id": ACTIVITY_ID, "name": "Groups", "default_criteria": {"mode": "random"}},
        )
        assert response.status_code == 400
        assert "random" in response.get_json()["error"]

    def test_missing_config_lookup_returns_null(self, member_client, test_organization):
        response = member_client.get(f"{_base(test_organization)}/configs/by-activity/unknown")
        assert response.status_code == 200
        assert response.get_json() == {"config": None}

    def test_fields(self, member_client, test_organization, provider):
        response = member_client.get(f"{_base(test_organization)}/fields", query_string={"activity_id": ACTIVITY_ID})
        assert response.status_code == 200
        field_ids = [item["field_id"] for item in response.get_json()["fields"]]
        assert field_ids == ["org:team", "org:shift", "org:skill", "org:level"]

        response = member_client.get(f"{_base(test_organization)}/fields")
        assert response.status_code == 400


class TestRunEndpoints:
    def _generate(self, client, organization, config):
        return client.post(
            f"{_base(organization)}/runs",
            json={"config_id": config.id, "scope": "session", "session_id": SESSION_ID},
        )

    def test_generate_edit_confirm_flow(self, admin_client, test_organization, split_config, four_members):
        response = self._generate(admin_client, test_organization, split_config)
        assert response.status_code == 201
        run = response.get_json()["run"]
        assert run["status"] == "generated"
        assert run["entry_count"] == 4
        assert [proposal["group_name"] for proposal in run["proposals"]] == ["blue", "red"]
        assert len(run["entries"]) == 4

        blue, red = run["proposals"]
        response = admin_client.patch(
            f"{_base(test_organization)}/proposals/{blue['id']}",
            json={"modified_member_ids": ["p3", "p4", "p1"], "expected_version": 1},
        )
        assert response.status_code == 200
        proposal = response.get_json()["proposal"]
        assert proposal["status"] == "modified"
        assert proposal["version"] == 2
        assert proposal["effective_member_ids"] == ["p3", "p4", "p1"]

        response = admin_client.post(f"{_base(test_organization)}/runs/{run['id']}/confirm", json={"expected_version": 1})
        assert response.status_code == 400

        admin_client.patch(
            f"{_base(test_organization)}/proposals/{red['id']}",
            json={"modified_member_ids": ["p2"], "expected_version": 1},
        )
        response = admin_client.post(f"{_base(test_organization)}/runs/{run['id']}/confirm", json={"expected_version": 1})
        assert response.status_code == 200
        assert response.get_json()["run"]["status"] == "confirmed"
        assert response.get_json()["run"]["version"] == 2

        response = admin_client.post(f"{_base(test_organization)}/runs/{run['id']}/confirm", json={"expected_version": 2})
        assert response.status_code == 409

        response = admin_client.get(f"{_base(test_organization)}/runs/{run['id']}")
        statuses = {proposal["group_name"]: proposal["status"] for proposal in response.get_json()["run"]["proposals"]}
        assert statuses == {"blue": "modified", "red": "modified"}

    def test_latest_and_list(self, admin_client, test_organization, split_config, four_members):
        base = _base(test_organization)
        assert admin_client.get(f"{base}/sessions/{SESSION_ID}/runs/latest").get_json() == {"run": None}

        run_id = self._generate(admin_client, test_organization, split_config).get_json()["run"]["id"]
        latest = admin_client.get(f"{base}/sessions/{SESSION_ID}/runs/latest").get_json()["run"]
        assert latest["id"] == run_id
        assert len(latest["proposals"]) == 2

        assert admin_client.get(f"{base}/configs/{split_config.id}/runs/latest").get_json() == {"run": None}

        response = admin_client.get(f"{base}/configs/{split_config.id}/runs", query_string={"limit": 500})
        body = response.get_json()
        assert response.status_code == 200
        assert body["total"] == 1
        assert body["limit"] == 50
        assert [item["id"] for item in body["runs"]] == [run_id]

        response = admin_client.get(f"{base}/configs/{split_config.id}/runs", query_string={"limit": "many"})
        assert response.status_code == 400

    @pytest.mark.parametrize(
        "payload",
        [
            {"scope": "session", "session_id": SESSION_ID},
            {"config_id": "1", "scope": "session", "session_id": SESSION_ID},
            {"config_id": True, "scope": "session", "session_id": SESSION_ID},
        ],
    )
    def test_generate_requires_integer_config_id(self, admin_client, test_organization, payload):
        response = admin_client.post(f"{_base(test_organization)}/runs", json=payload)
        assert response.status_code == 400

    def test_generate_errors_map_to_status_codes(self, admin_client, test_organization, split_config, four_members):
        base = _base(test_organization)
        response = admin_client.post(f"{base}/runs", json={"config_id": 999, "scope": "activity"})
        assert response.status_code == 404

        response = admin_client.post(f"{base}/runs", json={"config_id": split_config.id, "scope": "session"})
        assert response.status_code == 400
        assert "session_id" in response.get_json()["error"]

    def test_confirm_requires_version(self, admin_client, test_organization, split_config, four_members):
        run_id = self._generate(admin_client, test_organization, split_config).get_json()["run"]["id"]
        response = admin_client.post(f"{_base(test_organization)}/runs/{run_id}/confirm", json={})
        assert response.status_code == 400

    def test_proposal_edit_validation(self, admin_client, test_organization, split_config, four_members):
        run = self._generate(admin_client, test_organization, split_config).get_json()["run"]
        url = f"{_base(test_organization)}/proposals/{run['proposals'][0]['id']}"

        assert admin_client.patch(url, json={"modified_member_ids": "p1", "expected_version": 1}).status_code == 400
        assert admin_client.patch(url, json={"modified_member_ids": ["p1"]}).status_code == 400
        assert (
            admin_client.patch(url, json={"modified_member_ids": ["ghost"], "expected_version": 1}).status_code == 400
        )
        assert admin_client.patch(url, json={"modified_member_ids": ["p1"], "expected_version": 3}).status_code == 409

    def test_run_in_other_organization_is_not_found(
        self, login_client, super_admin_user, admin_client, test_organization, other_organization, split_config, four_members
    ):
        run_id = self._generate(admin_client, test_organization, split_config).get_json()["run"]["id"]
        client = login_client(super_admin_user)
        response = client.get(f"{_base(other_organization)}/runs/{run_id}")
        assert response.status_code == 404
