"""
Smart-group models: configs, runs, entries, proposals and pair history.
"""

from .schema import (
    ProposalStatus,
    RunScope,
    RunStatus,
    SmartGroupConfig,
    SmartGroupEntry,
    SmartGroupHistory,
    SmartGroupProposal,
    SmartGroupRun,
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
