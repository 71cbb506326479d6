import json

import pytest

from config.grouping import DEFAULT_TUNING, GroupingConfigError, load_tuning
from config.validation import validate_environment


def test_defaults_without_override():
    tuning = load_tuning({})
    assert tuning == DEFAULT_TUNING
    assert tuning.max_entries_for("split") == 50000
    assert tuning.max_entries_for("similarity") == 15000
    assert tuning.max_entries_for("diversity") == 15000
    assert tuning.max_entries_for("balanced") == 30000
    assert tuning.exact_cluster_max_entries == 1200
    assert tuning.variety_lookback_runs == 10


def test_seed_applies_when_override_leaves_it_unset():
    assert load_tuning({}, seed=42).anneal_seed == 42


def test_yaml_override(tmp_path):
    path = tmp_path / "tuning.yaml"
    path.write_text(
        "anneal_iterations: 500\n"
        "anneal_seed: 3\n"
        "max_entries_by_mode:\n"
        "  balanced: 100\n",
        encoding="utf-8",
    )
    tuning = load_tuning({"SMART_GROUPS_TUNING_PATH": str(path)}, seed=99)
    assert tuning.anneal_iterations == 500
    assert tuning.anneal_seed == 3
    assert tuning.max_entries_for("balanced") == 100
    assert tuning.max_entries_for("split") == 50000


def test_json_override(tmp_path):
    path = tmp_path / "tuning.json"
    path.write_text(json.dumps({"exact_cluster_max_entries": 300, "anneal_cooling_rate": 0.99}), encoding="utf-8")
    tuning = load_tuning({"SMART_GROUPS_TUNING_PATH": str(path)})
    assert tuning.exact_cluster_max_entries == 300
    assert tuning.anneal_cooling_rate == 0.99


@pytest.mark.parametrize(
    "content",
    [
        "[1, 2]",
        "{not json",
        json.dumps({"anneal_iterations": 0}),
        json.dumps({"anneal_cooling_rate": 1.5}),
        json.dumps({"max_entries_by_mode": {"random": 10}}),
        json.dumps({"anneal_seed": "abc"}),
    ],
)
def test_invalid_overrides_fail_loudly(tmp_path, content):
    path = tmp_path / "tuning.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(GroupingConfigError):
        load_tuning({"SMART_GROUPS_TUNING_PATH": str(path)})


def test_missing_override_file(tmp_path):
    with pytest.raises(GroupingConfigError):
        load_tuning({"SMART_GROUPS_TUNING_PATH": str(tmp_path / "absent.yaml")})


def test_environment_validation_reports_bad_tuning(tmp_path, monkeypatch):
    path = tmp_path / "tuning.json"
    path.write_text("{broken", encoding="utf-8")
    monkeypatch.setenv("SMART_GROUPS_TUNING_PATH", str(path))
    is_valid, errors = validate_environment("testing")
    assert not is_valid
    assert any("tuning" in error for error in errors)
