"""
Transaction-scoped data access for smart groups.

Functions here never commit; :class:`~flask_app.smart_groups.service.SmartGroupService`
owns the transaction boundary.
"""

from .configs import create_config, get_config, get_config_by_activity, update_config
from .history import get_cooccurrence_counts, record_history
from .proposals import create_proposals, get_proposal_with_run, update_proposal_members
from .runs import (
    EntrySnapshot,
    check_coverage,
    confirm_run,
    create_run_with_entries,
    get_run,
    latest_run_for_activity,
    latest_run_for_session,
    list_runs,
)

__all__ = [
    "EntrySnapshot",
    "check_coverage",
    "confirm_run",
    "create_config",
    "create_proposals",
    "create_run_with_entries",
    "get_config",
    "get_config_by_activity",
    "get_cooccurrence_counts",
    "get_proposal_with_run",
    "get_run",
    "latest_run_for_activity",
    "latest_run_for_session",
    "list_runs",
    "record_history",
    "update_config",
    "update_proposal_members",
]
