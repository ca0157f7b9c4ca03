"""
Tests for organization_service: organization CRUD, access rules,
memberships and invitations.
"""

from datetime import timedelta

import pytest

from conftest import create_organization, create_user
from readiness.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from readiness.models.organization import OrganizationInvitation
from readiness.services import organization_service
from readiness.utils import utcnow


class TestOrganizationCrud:
    """Create, update and soft-delete."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.user = create_user("founder@example.com")

    def test_create_makes_creator_owner(self):
        org = organization_service.create_organization(
            self.user, {"name": "Globex", "size": "medium"}
        )

        membership = organization_service.get_membership(self.user.id, org.id)
        assert membership.role == "owner"
        assert self.user.organization_id == org.id
        assert org.to_dict()["settings"]["dataRetentionDays"] == 365

    @pytest.mark.parametrize(
        "data",
        [
            {"name": "x"},
            {"name": "Valid", "size": "huge"},
            {"name": "Valid", "website": "ftp://example.com"},
            {"name": "Valid", "settings": {"unknownFlag": True}},
            {"name": "Valid", "settings": {"dataRetentionDays": 5}},
        ],
    )
    def test_create_rejects_invalid_fields(self, data):
        with pytest.raises(ValidationError):
            organization_service.create_organization(self.user, data)

    def test_update_merges_settings(self):
        org = organization_service.create_organization(self.user, {"name": "Globex"})
        organization_service.update_organization(
            self.user, org.id, {"settings": {"enableAuditLogs": True}}
        )
        organization_service.update_organization(
            self.user, org.id, {"settings": {"dataRetentionDays": 90}}
        )

        assert org.settings == {"enableAuditLogs": True, "dataRetentionDays": 90}

    def test_delete_requires_owner(self):
        org = organization_service.create_organization(self.user, {"name": "Globex"})
        outsider = create_user("outsider@example.com", organization_id=org.id)
        with pytest.raises(PermissionDeniedError):
            organization_service.delete_organization(outsider, org.id)

    def test_deleted_organization_is_not_found(self):
        org = organization_service.create_organization(self.user, {"name": "Globex"})
        organization_service.delete_organization(self.user, org.id)

        with pytest.raises(NotFoundError):
            organization_service.get_organization_or_404(org.id)
        assert organization_service.list_organizations_for_user(self.user) == []


class TestAccess:
    """``user_can_access_organization`` combines role rules and memberships."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization("Home")
        self.other = create_organization("Other")

    def test_primary_organization_is_accessible(self):
        user = create_user("u@example.com", organization_id=self.org.id)
        assert organization_service.user_can_access_organization(user, self.org.id)
        assert not organization_service.user_can_access_organization(
            user, self.other.id
        )

    def test_membership_grants_access_to_secondary_organization(self):
        user = create_user("u@example.com", organization_id=self.org.id)
        create_user(
            "owner@example.com",
            organization_id=self.other.id,
            member_role="owner",
        )
        owner = organization_service.list_members(self.other.id)[0].user
        organization_service.add_member(owner, self.other.id, user_id=user.id)

        assert organization_service.user_can_access_organization(user, self.other.id)

    def test_viewer_is_denied_even_with_membership(self):
        viewer = create_user(
            "v@example.com",
            role="viewer",
            organization_id=self.org.id,
            member_role="member",
        )
        assert not organization_service.user_can_access_organization(
            viewer, self.org.id
        )

    def test_system_admin_accesses_everything(self):
        admin = create_user("root@example.com", role="system_admin")
        assert organization_service.user_can_access_organization(admin, self.other.id)


class TestMembers:
    """Adding, re-roling and removing members."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.org = create_organization()
        self.owner = create_user(
            "owner@example.com",
            role="org_admin",
            organization_id=self.org.id,
            member_role="owner",
        )
        self.member = create_user("member@example.com")

    def test_add_member_by_email(self):
        member = organization_service.add_member(
            self.owner, self.org.id, email="MEMBER@example.com", role="manager"
        )
        assert member.user_id == self.member.id
        assert member.role == "manager"
        assert self.member.organization_id == self.org.id

    def test_add_member_twice_conflicts(self):
        organization_service.add_member(self.owner, self.org.id, user_id=self.member.id)
        with pytest.raises(ConflictError):
            organization_service.add_member(
                self.owner, self.org.id, user_id=self.member.id
            )

    def test_add_member_requires_manager(self):
        outsider = create_user("outsider@example.com")
        with pytest.raises(PermissionDeniedError):
            organization_service.add_member(
                outsider, self.org.id, user_id=self.member.id
            )

    def test_add_member_rejects_unknown_role(self):
        with pytest.raises(ValidationError):
            organization_service.add_member(
                self.owner, self.org.id, user_id=self.member.id, role="boss"
            )

    def test_last_owner_cannot_be_demoted(self):
        with pytest.raises(ConflictError):
            organization_service.update_member_role(
                self.owner, self.org.id, self.owner.id, "admin"
            )

    def test_owner_can_be_demoted_when_another_owner_exists(self):
        organization_service.add_member(
            self.owner, self.org.id, user_id=self.member.id, role="owner"
        )
        member = organization_service.update_member_role(
            self.owner, self.org.id, self.owner.id, "admin"
        )
        assert member.role == "admin"

    def test_last_owner_cannot_be_removed(self):
        with pytest.raises(ConflictError):
            organization_service.remove_member(self.owner, self.org.id, self.owner.id)

    def test_member_can_leave(self):
        organization_service.add_member(self.owner, self.org.id, user_id=self.member.id)
        organization_service.remove_member(self.member, self.org.id, self.member.id)

        assert organization_service.get_membership(self.member.id, self.org.id) is None
        assert self.member.organization_id is None


class TestInvitations:
    """Invitation lifecycle."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.db = db_session
        self.org = create_organization()
        self.owner = create_user(
            "owner@example.com",
            role="org_admin",
            organization_id=self.org.id,
            member_role="owner",
        )

    def test_create_and_accept(self):
        invitation = organization_service.create_invitation(
            self.owner, self.org.id, "Guest@Example.com", role="manager"
        )
        assert invitation.email == "guest@example.com"
        assert len(invitation.token) >= 32
        assert invitation.expires_at > utcnow() + timedelta(days=6)

        guest = create_user("guest@example.com")
        member = organization_service.accept_invitation(guest, invitation.token)

        assert member.role == "manager"
        assert invitation.status == "accepted"
        assert guest.organization_id == self.org.id

    def test_duplicate_pending_invitation_conflicts(self):
        organization_service.create_invitation(self.owner, self.org.id, "g@example.com")
        with pytest.raises(ConflictError):
            organization_service.create_invitation(
                self.owner, self.org.id, "g@example.com"
            )

    def test_owner_role_cannot_be_invited(self):
        with pytest.raises(ValidationError):
            organization_service.create_invitation(
                self.owner, self.org.id, "g@example.com", role="owner"
            )

    def test_accept_with_other_email_is_forbidden(self):
        invitation = organization_service.create_invitation(
            self.owner, self.org.id, "g@example.com"
        )
        intruder = create_user("intruder@example.com")
        with pytest.raises(PermissionDeniedError):
            organization_service.accept_invitation(intruder, invitation.token)

    def test_expired_invitation_cannot_be_accepted(self):
        invitation = organization_service.create_invitation(
            self.owner, self.org.id, "g@example.com"
        )
        invitation.expires_at = utcnow() - timedelta(minutes=1)
        self.db.commit()

        guest = create_user("g@example.com")
        with pytest.raises(ValidationError):
            organization_service.accept_invitation(guest, invitation.token)
        assert invitation.status == "expired"

    def test_revoked_invitation_is_not_listed(self):
        invitation = organization_service.create_invitation(
            self.owner, self.org.id, "g@example.com"
        )
        organization_service.revoke_invitation(self.owner, self.org.id, invitation.id)

        assert organization_service.list_invitations(self.owner, self.org.id) == []
        assert (
            OrganizationInvitation.query.filter_by(status="revoked").count() == 1
        )

    def test_unknown_token_is_not_found(self):
        guest = create_user("g@example.com")
        with pytest.raises(NotFoundError):
            organization_service.accept_invitation(guest, "does-not-exist")


class TestOverview:
    def test_overview_counts(self, db_session):
        org = create_organization()
        create_user("a@example.com", organization_id=org.id, member_role="owner")
        create_user("b@example.com", organization_id=org.id, member_role="member")

        overview = organization_service.get_overview(org.id)

        assert overview["organization"]["id"] == org.id
        assert overview["stats"]["memberCount"] == 2
        assert overview["stats"]["totalSurveys"] == 0
        assert overview["stats"]["surveysByStatus"]["draft"] == 0
        assert overview["recentActivity"] == []
