# flask_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .organization import MembershipRole, Organization, OrganizationMembership
from .smart_groups import (
    ProposalStatus,
    RunScope,
    RunStatus,
    SmartGroupConfig,
    SmartGroupEntry,
    SmartGroupHistory,
    SmartGroupProposal,
    SmartGroupRun,
)
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "Organization",
    "OrganizationMembership",
    "MembershipRole",
    # Smart groups
    "SmartGroupConfig",
    "SmartGroupRun",
    "SmartGroupEntry",
    "SmartGroupProposal",
    "SmartGroupHistory",
    "RunScope",
    "RunStatus",
    "ProposalStatus",
]
