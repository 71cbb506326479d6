# flask_app/models/organization.py

import enum

from flask import current_app
from sqlalchemy import Enum
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class MembershipRole(str, enum.Enum):
    """Role a user holds inside an organization."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Organization(BaseModel):
    """Tenant owning activities, smart-group configs and runs."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    memberships = db.relationship(
        "OrganizationMembership", back_populates="organization", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Organization {self.name}>"

    @staticmethod
    def find_by_id(org_id):
        """Find organization by ID with error handling"""
        try:
            return db.session.get(Organization, org_id)
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding organization by id {org_id}: {str(e)}")
            return None


class OrganizationMembership(BaseModel):
    """Junction table for User and Organization with the member's role"""

    __tablename__ = "organization_memberships"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    role = db.Column(
        Enum(MembershipRole, name="membership_role_enum"),
        default=MembershipRole.MEMBER,
        nullable=False,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    user = db.relationship("User", back_populates="memberships")
    organization = db.relationship("Organization", back_populates="memberships")

    # A user holds one role per organization
    __table_args__ = (db.UniqueConstraint("user_id", "organization_id", name="_user_org_membership_uc"),)

    def __repr__(self):
        return f"<OrganizationMembership user={self.user_id} org={self.organization_id} role={self.role.value}>"
