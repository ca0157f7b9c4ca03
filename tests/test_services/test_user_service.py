"""
Tests for user_service: listing, provisioning, profile updates, global
role changes and deactivation.
"""

import pytest

from conftest import create_organization, create_user
from readiness.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from readiness.models.audit import AuditLog
from readiness.services import user_service


class TestGetUsers:
    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization()
        create_user("alice@example.com", organization_id=self.org.id)
        create_user("bob@example.com", role="analyst", organization_id=self.org.id)
        create_user("carol@example.com", is_active=False, organization_id=self.org.id)
        create_user("dave@elsewhere.com")

    def test_filters_by_organization(self):
        result = user_service.get_users(organization_id=self.org.id)
        assert result.total == 3

    def test_search_role_and_status(self):
        assert user_service.get_users(search="BOB").total == 1
        assert user_service.get_users(role="analyst").total == 1
        assert user_service.get_users(status="inactive").total == 1
        assert user_service.get_users(status="active").total == 3

    def test_pagination(self):
        page = user_service.get_users(page=2, per_page=3)
        assert page.total == 4
        assert len(page.items) == 1


class TestRoleChanges:
    """Global role rules."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization()
        self.other_org = create_organization("Other")
        self.root = create_user("root@example.com", role="system_admin")
        self.admin = create_user(
            "admin@example.com", role="org_admin", organization_id=self.org.id
        )
        self.member = create_user("member@example.com", organization_id=self.org.id)
        self.outsider = create_user(
            "outsider@example.com", organization_id=self.other_org.id
        )

    def test_org_admin_promotes_member(self):
        user = user_service.update_user_role(self.admin, self.member.id, "analyst")

        assert user.role == "analyst"
        entry = AuditLog.query.filter_by(action_type="user.role_changed").one()
        assert entry.entity_id == self.member.id

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValidationError):
            user_service.update_user_role(self.admin, self.member.id, "owner")

    def test_cannot_change_own_role(self):
        with pytest.raises(PermissionDeniedError):
            user_service.update_user_role(self.admin, self.admin.id, "user")

    def test_org_admin_cannot_grant_system_admin(self):
        with pytest.raises(PermissionDeniedError):
            user_service.update_user_role(self.admin, self.member.id, "system_admin")

    def test_org_admin_limited_to_own_organization(self):
        with pytest.raises(PermissionDeniedError):
            user_service.update_user_role(self.admin, self.outsider.id, "analyst")

    def test_plain_user_cannot_change_roles(self):
        with pytest.raises(PermissionDeniedError):
            user_service.update_user_role(self.member, self.admin.id, "user")

    def test_last_org_admin_cannot_be_demoted(self):
        with pytest.raises(ConflictError):
            user_service.update_user_role(self.root, self.admin.id, "user")

    def test_org_admin_demoted_when_another_exists(self):
        user_service.update_user_role(self.root, self.member.id, "org_admin")
        user = user_service.update_user_role(self.root, self.admin.id, "user")
        assert user.role == "user"


class TestProvisioning:
    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization()
        self.admin = create_user(
            "admin@example.com", role="org_admin", organization_id=self.org.id
        )

    def test_provisioned_user_has_membership_and_no_password(self):
        user = user_service.provision_user(
            self.admin,
            email="new@example.com",
            first_name="New",
            last_name="Hire",
            organization_id=self.org.id,
            role="analyst",
        )
        assert user.password_hash is None
        assert user.memberships.one().role == "member"
        assert not user.check_password("anything1")

    def test_org_admin_cannot_provision_elsewhere(self):
        other = create_organization("Other")
        with pytest.raises(PermissionDeniedError):
            user_service.provision_user(
                self.admin,
                email="new@example.com",
                first_name="New",
                last_name="Hire",
                organization_id=other.id,
            )

    def test_duplicate_email_conflicts(self):
        with pytest.raises(ConflictError):
            user_service.provision_user(
                self.admin,
                email="ADMIN@example.com",
                first_name="Dup",
                last_name="User",
                organization_id=self.org.id,
            )

    def _provision(self, actor, **kwargs):
        params = {
            "email": "new@example.com",
            "first_name": "New",
            "last_name": "Hire",
            "organization_id": self.org.id,
        }
        params.update(kwargs)
        return user_service.provision_user(actor, **params)

    def test_member_role_is_validated(self):
        with pytest.raises(ValidationError):
            self._provision(self.admin, member_role="superuser")

    def test_owner_member_role_needs_an_owner(self):
        with pytest.raises(PermissionDeniedError):
            self._provision(self.admin, member_role="owner")

        owner = create_user(
            "owner@example.com",
            role="org_admin",
            organization_id=self.org.id,
            member_role="owner",
        )
        user = self._provision(owner, member_role="owner")
        assert user.memberships.one().role == "owner"

    def test_organization_must_exist(self):
        root = create_user("root@example.com", role="system_admin")
        with pytest.raises(NotFoundError):
            self._provision(root, organization_id=999)
        with pytest.raises(ValidationError):
            self._provision(root, organization_id="999")


class TestProfileAndDeactivation:
    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization()
        self.admin = create_user(
            "admin@example.com", role="org_admin", organization_id=self.org.id
        )
        self.member = create_user("member@example.com", organization_id=self.org.id)

    def test_user_updates_own_profile(self):
        user = user_service.update_profile(
            self.member,
            self.member.id,
            {"department": "Finance", "preferences": {"theme": "dark"}},
        )
        assert user.department == "Finance"
        assert user.preferences == {"theme": "dark"}

    def test_member_cannot_edit_colleague(self):
        with pytest.raises(PermissionDeniedError):
            user_service.update_profile(
                self.member, self.admin.id, {"department": "Nope"}
            )

    def test_blank_name_is_rejected(self):
        with pytest.raises(ValidationError):
            user_service.update_profile(self.member, self.member.id, {"firstName": " "})

    def test_admin_deactivates_member(self):
        user = user_service.deactivate_user(self.admin, self.member.id)
        assert user.is_active is False

    def test_cannot_deactivate_self(self):
        with pytest.raises(PermissionDeniedError):
            user_service.deactivate_user(self.admin, self.admin.id)
