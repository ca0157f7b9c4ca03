"""
Tests for the organizations blueprint: organization CRUD, members,
invitations and API keys, including bearer-key authentication.
"""

import pytest


class TestOrganizationRoutes:
    def test_create_and_list(self, client, make_user, login):
        make_user("founder@example.com")
        login("founder@example.com")

        response = client.post(
            "/api/organizations", json={"name": "Globex", "size": "small"}
        )
        assert response.status_code == 201
        org = response.get_json()["organization"]
        assert org["settings"]["allowSelfRegistration"] is False

        listed = client.get("/api/organizations").get_json()["organizations"]
        assert [o["name"] for o in listed] == ["Globex"]

    def test_invalid_organization_is_400(self, client, make_user, login):
        make_user("founder@example.com")
        login("founder@example.com")

        response = client.post("/api/organizations", json={"name": "G", "size": "xl"})
        assert response.status_code == 400

    def test_plain_user_cannot_read_organization_record(
        self, client, make_org, make_user, login
    ):
        org_id = make_org()
        make_user("member@example.com", organization_id=org_id, member_role="member")
        login("member@example.com")

        assert client.get(f"/api/organizations/{org_id}").status_code == 403
        # Member listing only needs organization access.
        assert client.get(f"/api/organizations/{org_id}/members").status_code == 200

    def test_admin_reads_updates_and_views_overview(
        self, client, make_org, make_user, login
    ):
        org_id = make_org()
        make_user(
            "admin@example.com",
            role="org_admin",
            organization_id=org_id,
            member_role="owner",
        )
        login("admin@example.com")

        assert client.get(f"/api/organizations/{org_id}").status_code == 200
        updated = client.put(
            f"/api/organizations/{org_id}", json={"industry": "Retail"}
        ).get_json()["organization"]
        assert updated["industry"] == "Retail"

        overview = client.get(f"/api/organizations/{org_id}/overview").get_json()
        assert overview["stats"]["memberCount"] == 1

    def test_other_organization_is_forbidden(self, client, make_org, make_user, login):
        home = make_org("Home")
        other = make_org("Other")
        make_user("admin@example.com", role="org_admin", organization_id=home)
        login("admin@example.com")

        response = client.get(f"/api/organizations/{other}")
        assert response.status_code == 403
        assert response.get_json()["error"] == "Access denied to this organization."

    def test_owner_deletes_organization(self, client, make_user, login):
        make_user("founder@example.com")
        login("founder@example.com")
        created = client.post("/api/organizations", json={"name": "Globex"})
        org_id = created.get_json()["organization"]["id"]

        assert client.delete(f"/api/organizations/{org_id}").status_code == 200
        assert client.get("/api/organizations").get_json()["organizations"] == []


class TestMemberRoutes:
    @pytest.fixture(autouse=True)
    def _owner(self, make_org, make_user, login):
        self.org_id = make_org()
        self.owner_id = make_user(
            "owner@example.com",
            role="org_admin",
            organization_id=self.org_id,
            member_role="owner",
        )
        self.user_id = make_user("joiner@example.com")
        login("owner@example.com")

    def test_add_update_and_remove_member(self, client):
        base = f"/api/organizations/{self.org_id}/members"

        added = client.post(base, json={"email": "joiner@example.com"})
        assert added.status_code == 201
        assert added.get_json()["member"]["role"] == "member"

        updated = client.put(f"{base}/{self.user_id}", json={"role": "manager"})
        assert updated.get_json()["member"]["role"] == "manager"

        assert client.delete(f"{base}/{self.user_id}").status_code == 200
        members = client.get(base).get_json()["members"]
        assert [m["email"] for m in members] == ["owner@example.com"]

    def test_last_owner_is_409(self, client):
        response = client.put(
            f"/api/organizations/{self.org_id}/members/{self.owner_id}",
            json={"role": "member"},
        )
        assert response.status_code == 409


class TestInvitationRoutes:
    def test_invite_and_list(self, app, make_org, make_user):
        org_id = make_org()
        make_user(
            "owner@example.com",
            role="org_admin",
            organization_id=org_id,
            member_role="owner",
        )
        make_user("guest@example.com")

        owner = app.test_client()
        owner.post(
            "/api/auth/login",
            json={"email": "owner@example.com", "password": "Password123"},
        )
        created = owner.post(
            f"/api/organizations/{org_id}/invitations",
            json={"email": "guest@example.com", "role": "manager"},
        )
        assert created.status_code == 201
        invitation = created.get_json()["invitation"]
        assert invitation["acceptUrl"].endswith(invitation["token"])

        listed = owner.get(f"/api/organizations/{org_id}/invitations").get_json()
        assert len(listed["invitations"]) == 1
        assert "token" not in listed["invitations"][0]

    def test_guest_accepts_invitation(self, app, client, make_org, make_user, login):
        org_id = make_org()
        make_user(
            "owner@example.com",
            role="org_admin",
            organization_id=org_id,
            member_role="owner",
        )
        make_user("guest@example.com")

        owner = app.test_client()
        owner.post(
            "/api/auth/login",
            json={"email": "owner@example.com", "password": "Password123"},
        )
        token = owner.post(
            f"/api/organizations/{org_id}/invitations",
            json={"email": "guest@example.com"},
        ).get_json()["invitation"]["token"]

        login("guest@example.com")
        response = client.post(f"/api/organizations/invitations/{token}/accept")

        assert response.status_code == 200
        assert response.get_json()["member"]["role"] == "member"
        again = client.post(f"/api/organizations/invitations/{token}/accept")
        assert again.status_code == 400


class TestApiKeyRoutes:
    @pytest.fixture(autouse=True)
    def _admin(self, make_org, make_user, login):
        self.org_id = make_org()
        make_user(
            "admin@example.com",
            role="org_admin",
            organization_id=self.org_id,
            member_role="owner",
        )
        login("admin@example.com")

    def _create_key(self, client, scopes):
        response = client.post(
            f"/api/organizations/{self.org_id}/api-keys",
            json={"name": "Reporting", "scopes": scopes},
        )
        assert response.status_code == 201
        return response.get_json()["apiKey"]

    def test_key_is_shown_once(self, client):
        created = self._create_key(client, ["survey:view:org"])
        assert created["key"].startswith("ark_")

        listed = client.get(f"/api/organizations/{self.org_id}/api-keys").get_json()
        assert "key" not in listed["apiKeys"][0]
        assert listed["apiKeys"][0]["keyPrefix"] == created["keyPrefix"]

    def test_bearer_key_authenticates_within_scopes(self, app, client):
        key = self._create_key(client, ["survey:view:org"])["key"]
        bearer = app.test_client()
        headers = {"Authorization": f"Bearer {key}"}

        surveys = bearer.get(
            f"/api/surveys?organizationId={self.org_id}", headers=headers
        )
        assert surveys.status_code == 200

        # The key was not granted org:view:own.
        org = bearer.get(f"/api/organizations/{self.org_id}", headers=headers)
        assert org.status_code == 403

    def test_revoked_key_is_rejected(self, app, client):
        created = self._create_key(client, ["survey:view:org"])
        client.delete(f"/api/organizations/{self.org_id}/api-keys/{created['id']}")

        response = app.test_client().get(
            "/api/surveys", headers={"Authorization": f"Bearer {created['key']}"}
        )
        assert response.status_code == 401

    def test_scope_beyond_role_is_403(self, client):
        response = client.post(
            f"/api/organizations/{self.org_id}/api-keys",
            json={"name": "Too much", "scopes": ["admin:dashboard"]},
        )
        assert response.status_code == 403

    def test_narrow_key_cannot_mint_broader_key(self, app, client):
        key = self._create_key(client, ["survey:view:own"])["key"]
        bearer = app.test_client()

        response = bearer.post(
            f"/api/organizations/{self.org_id}/api-keys",
            json={"name": "Escalate", "scopes": ["user:edit:org", "api:export:access"]},
            headers={"Authorization": f"Bearer {key}"},
        )
        assert response.status_code == 403

    def test_key_can_only_grant_its_own_scopes(self, app, client):
        key = self._create_key(client, ["org:edit:own", "survey:view:org"])["key"]
        headers = {"Authorization": f"Bearer {key}"}
        bearer = app.test_client()
        url = f"/api/organizations/{self.org_id}/api-keys"

        broader = bearer.post(
            url, json={"name": "Wider", "scopes": ["user:edit:org"]}, headers=headers
        )
        assert broader.status_code == 403

        narrower = bearer.post(
            url, json={"name": "Reader", "scopes": ["survey:view:org"]}, headers=headers
        )
        assert narrower.status_code == 201

    def test_key_scopes_apply_to_unguarded_mutations(self, app, client, make_user):
        member_id = make_user(
            "member@example.com", organization_id=self.org_id, member_role="member"
        )
        key = self._create_key(client, ["survey:view:own"])["key"]
        headers = {"Authorization": f"Bearer {key}"}
        bearer = app.test_client()

        deactivate = bearer.delete(f"/api/v1/users/{member_id}", headers=headers)
        assert deactivate.status_code == 403

        promote = bearer.put(
            f"/api/organizations/{self.org_id}/members/{member_id}",
            json={"role": "admin"},
            headers=headers,
        )
        assert promote.status_code == 403

        # The session itself is still allowed to do both.
        assert client.delete(f"/api/v1/users/{member_id}").status_code == 200

    def test_key_is_bound_to_its_organization(self, app, client, make_org):
        other_id = make_org("Subsidiary")
        created = client.post(
            "/api/organizations", json={"name": "Second"}
        ).get_json()["organization"]
        key = self._create_key(client, ["survey:view:org"])["key"]
        headers = {"Authorization": f"Bearer {key}"}
        bearer = app.test_client()

        session_view = client.get(f"/api/surveys?organizationId={created['id']}")
        assert session_view.status_code == 200

        key_view = bearer.get(
            f"/api/surveys?organizationId={created['id']}", headers=headers
        )
        assert key_view.status_code == 403
        assert bearer.get(
            f"/api/surveys?organizationId={other_id}", headers=headers
        ).status_code == 403

        listed = bearer.get("/api/organizations", headers=headers).get_json()
        assert [o["id"] for o in listed["organizations"]] == [self.org_id]
