"""
Tests for api_key_service: issuing, authenticating and revoking keys.
"""

from datetime import timedelta

import pytest

from conftest import create_organization, create_user
from readiness import rbac
from readiness.errors import NotFoundError, PermissionDeniedError, ValidationError
from readiness.models.organization import ApiKey
from readiness.services import api_key_service
from readiness.utils import utcnow


class TestApiKeys:
    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.db = db_session
        self.org = create_organization()
        self.admin = create_user(
            "admin@example.com",
            role="org_admin",
            organization_id=self.org.id,
            member_role="owner",
        )
        self.member = create_user("member@example.com", organization_id=self.org.id)

    def _create(self, **kwargs):
        params = {"name": "CI", "scopes": [rbac.SURVEY_VIEW_ORG]}
        params.update(kwargs)
        return api_key_service.create_key(self.admin, self.org.id, **params)

    def test_plaintext_is_returned_once_and_hashed(self):
        api_key, plaintext = self._create()

        assert plaintext.startswith("ark_")
        assert api_key.key_hash == api_key_service.hash_key(plaintext)
        assert plaintext not in api_key.to_dict().values()
        assert api_key.to_dict()["keyPrefix"] == plaintext[:12]

    def test_authenticate_updates_last_used(self):
        api_key, plaintext = self._create()

        assert api_key_service.authenticate(plaintext) is api_key
        assert api_key.last_used_at is not None
        assert api_key_service.authenticate("ark_wrong") is None
        assert api_key_service.authenticate("") is None

    def test_revoked_key_no_longer_authenticates(self):
        api_key, plaintext = self._create()
        api_key_service.revoke_key(self.admin, self.org.id, api_key.id)

        assert api_key.is_active is False
        assert api_key_service.authenticate(plaintext) is None

    def test_expired_key_no_longer_authenticates(self):
        api_key, plaintext = self._create(expires_in_days=30)
        api_key.expires_at = utcnow() - timedelta(seconds=1)
        self.db.commit()

        assert api_key_service.authenticate(plaintext) is None

    def test_inactive_owner_disables_key(self):
        _, plaintext = self._create()
        self.admin.is_active = False
        self.db.commit()

        assert api_key_service.authenticate(plaintext) is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "  "},
            {"scopes": []},
            {"scopes": ["survey:fly"]},
            {"expires_in_days": 0},
            {"expires_in_days": 400},
        ],
    )
    def test_invalid_requests_are_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            self._create(**kwargs)

    def test_scopes_must_be_held_by_creator(self):
        with pytest.raises(PermissionDeniedError):
            self._create(scopes=[rbac.ADMIN_DASHBOARD])

    def test_only_admins_manage_keys(self):
        with pytest.raises(PermissionDeniedError):
            api_key_service.create_key(
                self.member, self.org.id, "CI", ["survey:create"]
            )
        with pytest.raises(PermissionDeniedError):
            api_key_service.list_keys(self.member, self.org.id)

    def test_revoke_key_of_other_organization_is_not_found(self):
        api_key, _ = self._create()
        other = create_organization("Other")
        root = create_user("root@example.com", role="system_admin")

        with pytest.raises(NotFoundError):
            api_key_service.revoke_key(root, other.id, api_key.id)

    def test_list_keys_newest_first(self):
        self._create(name="First")
        self._create(name="Second")

        names = [k.name for k in api_key_service.list_keys(self.admin, self.org.id)]
        assert names == ["Second", "First"]
        assert ApiKey.query.count() == 2
