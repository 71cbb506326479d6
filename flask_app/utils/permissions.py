# flask_app/utils/permissions.py

from flask_app.models import MembershipRole, Organization, OrganizationMembership

MANAGER_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN)


def get_membership(user, organization_id):
    """Get the active membership a user holds in an organization"""
    if not user or not user.is_authenticated:
        return None

    return OrganizationMembership.query.filter_by(
        user_id=user.id,
        organization_id=organization_id,
        is_active=True,
    ).first()


def can_view_organization(user, organization_id):
    """Check if a user may read data belonging to an organization"""
    if not user or not user.is_authenticated:
        return False

    organization = Organization.find_by_id(organization_id)
    if organization is None or not organization.is_active:
        return False

    # Super admins can access all organizations
    if user.is_super_admin:
        return True

    return get_membership(user, organization_id) is not None


def can_manage_smart_groups(user, organization_id):
    """Owners and admins configure, generate, edit and confirm groups"""
    if not can_view_organization(user, organization_id):
        return False

    if user.is_super_admin:
        return True

    membership = get_membership(user, organization_id)
    return membership is not None and membership.role in MANAGER_ROLES
