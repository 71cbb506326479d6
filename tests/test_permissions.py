from flask_login import AnonymousUserMixin

from flask_app.models import MembershipRole, Organization, OrganizationMembership, db
from flask_app.utils.permissions import can_manage_smart_groups, can_view_organization, get_membership


class TestPermissionHelperFunctions:
    """Test organization access helpers used by the smart groups API"""

    def test_anonymous_user_has_no_access(self, test_organization):
        anonymous = AnonymousUserMixin()
        assert get_membership(anonymous, test_organization.id) is None
        assert can_view_organization(anonymous, test_organization.id) is False
        assert can_manage_smart_groups(anonymous, test_organization.id) is False

    def test_member_can_view_but_not_manage(self, test_user, test_organization, member_membership):
        assert get_membership(test_user, test_organization.id).role is MembershipRole.MEMBER
        assert can_view_organization(test_user, test_organization.id) is True
        assert can_manage_smart_groups(test_user, test_organization.id) is False

    def test_admin_can_manage(self, admin_user, test_organization, admin_membership):
        assert can_manage_smart_groups(admin_user, test_organization.id) is True

    def test_owner_can_manage(self, test_user, test_organization, member_membership):
        member_membership.role = MembershipRole.OWNER
        db.session.commit()
        assert can_manage_smart_groups(test_user, test_organization.id) is True

    def test_inactive_membership_is_ignored(self, admin_user, test_organization, admin_membership):
        admin_membership.is_active = False
        db.session.commit()
        assert get_membership(admin_user, test_organization.id) is None
        assert can_view_organization(admin_user, test_organization.id) is False

    def test_non_member_is_denied(self, admin_user, other_organization, admin_membership):
        assert can_view_organization(admin_user, other_organization.id) is False
        assert can_manage_smart_groups(admin_user, other_organization.id) is False

    def test_super_admin_reaches_every_active_organization(self, super_admin_user, other_organization):
        assert can_view_organization(super_admin_user, other_organization.id) is True
        assert can_manage_smart_groups(super_admin_user, other_organization.id) is True

    def test_inactive_organization_is_closed_to_everyone(self, super_admin_user, app):
        org = Organization(name="Dormant", slug="dormant", is_active=False)
        db.session.add(org)
        db.session.commit()
        assert can_view_organization(super_admin_user, org.id) is False

    def test_unknown_organization(self, super_admin_user):
        assert can_view_organization(super_admin_user, 9999) is False

    def test_membership_is_unique_per_user_and_org(self, test_user, test_organization, member_membership):
        memberships = OrganizationMembership.query.filter_by(user_id=test_user.id).all()
        assert len(memberships) == 1
