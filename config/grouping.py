"""
Tuning profile for the smart-groups engine.

Defaults cover the per-mode entry ceilings, the size thresholds at which the
engine switches strategies, the variety lookback window and the annealing
schedule. Operators can override any of them by pointing the
``SMART_GROUPS_TUNING_PATH`` environment variable at a JSON or YAML file, e.g.::

    anneal_iterations: 40000
    anneal_initial_temperature: 0.1
    max_entries_by_mode:
      balanced: 20000
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, MutableMapping

import yaml


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

DEFAULT_MAX_ENTRIES_BY_MODE: Mapping[str, int] = {
    "split": 50000,
    "similarity": 15000,
    "diversity": 15000,
    "balanced": 30000,
}


@dataclass(frozen=True)
class GroupingTuning:
    """Engine limits and schedules applied to every generation request."""

    max_entries_by_mode: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_MAX_ENTRIES_BY_MODE))
    exact_cluster_max_entries: int = 1200
    balanced_variety_max_entries: int = 2000
    variety_lookback_runs: int = 10
    anneal_iterations: int = 20000
    anneal_initial_temperature: float = 0.05
    anneal_cooling_rate: float = 0.9995
    anneal_seed: int | None = None

    def max_entries_for(self, mode: str) -> int:
        return int(self.max_entries_by_mode.get(mode, DEFAULT_MAX_ENTRIES_BY_MODE[mode]))


DEFAULT_TUNING = GroupingTuning()

_POSITIVE_INT_KEYS = (
    "exact_cluster_max_entries",
    "balanced_variety_max_entries",
    "variety_lookback_runs",
    "anneal_iterations",
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class GroupingConfigError(RuntimeError):
    """Raised when a tuning override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise GroupingConfigError(f"Smart groups tuning file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise GroupingConfigError(f"Unable to read smart groups tuning file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise GroupingConfigError(f"Smart groups tuning file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise GroupingConfigError("Smart groups tuning must be a JSON/YAML object.")
    return dict(data)


def _coerce_positive_int(value: object, *, name: str) -> int:
    if isinstance(value, bool):
        raise GroupingConfigError(f"{name} must be a positive integer.")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise GroupingConfigError(f"{name} must be a positive integer.") from None
    if number <= 0:
        raise GroupingConfigError(f"{name} must be a positive integer.")
    return number


def _coerce_float(value: object, *, name: str, minimum: float = 0.0, maximum: float | None = None) -> float:
    if isinstance(value, bool):
        raise GroupingConfigError(f"{name} must be a number.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise GroupingConfigError(f"{name} must be a number.") from None
    if not math.isfinite(number) or number < minimum or (maximum is not None and number > maximum):
        raise GroupingConfigError(f"{name} is out of range.")
    return number


def _coerce_seed(value: object) -> int:
    if isinstance(value, bool):
        raise GroupingConfigError("anneal_seed must be an integer.")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise GroupingConfigError("anneal_seed must be an integer.") from None


def _coerce_tuning(raw: Mapping[str, object], base: GroupingTuning) -> GroupingTuning:
    ceilings = dict(base.max_entries_by_mode)
    raw_ceilings = raw.get("max_entries_by_mode") or {}
    if not isinstance(raw_ceilings, Mapping):
        raise GroupingConfigError("max_entries_by_mode must be an object.")
    for mode, value in raw_ceilings.items():
        if mode not in DEFAULT_MAX_ENTRIES_BY_MODE:
            raise GroupingConfigError(f"Unknown grouping mode '{mode}' in max_entries_by_mode.")
        ceilings[mode] = _coerce_positive_int(value, name=f"max_entries_by_mode.{mode}")

    overrides: dict[str, object] = {"max_entries_by_mode": ceilings}
    for key in _POSITIVE_INT_KEYS:
        if key in raw:
            overrides[key] = _coerce_positive_int(raw[key], name=key)
    if "anneal_initial_temperature" in raw:
        overrides["anneal_initial_temperature"] = _coerce_float(
            raw["anneal_initial_temperature"], name="anneal_initial_temperature"
        )
    if "anneal_cooling_rate" in raw:
        cooling = _coerce_float(raw["anneal_cooling_rate"], name="anneal_cooling_rate", maximum=1.0)
        if cooling == 0:
            raise GroupingConfigError("anneal_cooling_rate must be greater than 0.")
        overrides["anneal_cooling_rate"] = cooling
    if raw.get("anneal_seed") is not None:
        overrides["anneal_seed"] = _coerce_seed(raw["anneal_seed"])
    return replace(base, **overrides)


def load_tuning(env: Mapping[str, str] | None = None, *, seed: int | None = None) -> GroupingTuning:
    """
    Load the active tuning profile.

    If ``SMART_GROUPS_TUNING_PATH`` is set, its JSON/YAML content overrides the
    defaults. ``seed`` pins the annealing RNG when the override leaves it unset.
    """

    env_map = env or {}
    tuning = DEFAULT_TUNING
    override_path = env_map.get("SMART_GROUPS_TUNING_PATH")
    if override_path:
        tuning = _coerce_tuning(_load_override(Path(override_path)), DEFAULT_TUNING)
    if seed is not None and tuning.anneal_seed is None:
        tuning = replace(tuning, anneal_seed=seed)
    return tuning


__all__ = [
    "DEFAULT_MAX_ENTRIES_BY_MODE",
    "DEFAULT_TUNING",
    "GroupingConfigError",
    "GroupingTuning",
    "load_tuning",
]
