"""
Tests for the users blueprint: directory, provisioning, profile edits
and role changes.
"""

import pytest


class TestUserRoutes:
    @pytest.fixture(autouse=True)
    def _org(self, make_org, make_user, login):
        self.org_id = make_org()
        self.admin_id = make_user(
            "admin@example.com",
            role="org_admin",
            organization_id=self.org_id,
            member_role="owner",
        )
        self.member_id = make_user(
            "member@example.com", organization_id=self.org_id, member_role="member"
        )
        self.outsider_id = make_user("outsider@example.com")
        login("admin@example.com")

    def test_list_is_pinned_to_own_organization(self, client):
        data = client.get("/api/v1/users?organizationId=999").get_json()

        emails = {u["email"] for u in data["users"]}
        assert emails == {"admin@example.com", "member@example.com"}
        assert data["pagination"]["total"] == 2

    @pytest.mark.parametrize("query", ["role=owner", "status=gone", "limit=0"])
    def test_invalid_filters_are_400(self, client, query):
        assert client.get(f"/api/v1/users?{query}").status_code == 400

    def test_provision_returns_reset_token(self, client, login):
        response = client.post(
            "/api/v1/users",
            json={
                "email": "hire@example.com",
                "firstName": "New",
                "lastName": "Hire",
                "role": "analyst",
            },
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["user"]["organizationId"] == self.org_id

        reset = client.post(
            "/api/auth/password/reset",
            json={"token": body["resetToken"], "password": "FirstPass123"},
        )
        assert reset.status_code == 200
        assert login("hire@example.com", "FirstPass123").status_code == 200

    def test_get_and_patch_member(self, client):
        url = f"/api/v1/users/{self.member_id}"
        assert client.get(url).get_json()["user"]["email"] == "member@example.com"

        patched = client.patch(url, json={"jobTitle": "Data Lead"}).get_json()
        assert patched["user"]["jobTitle"] == "Data Lead"

    def test_outsider_is_hidden(self, client):
        assert client.get(f"/api/v1/users/{self.outsider_id}").status_code == 403

    def test_role_get_and_put(self, client):
        url = f"/api/v1/users/{self.member_id}/role"

        assert client.get(url).get_json()["role"] == "user"
        updated = client.put(url, json={"role": "analyst"}).get_json()
        assert updated["role"] == "analyst"
        assert updated["roleDisplayName"] == "Analyst"

    def test_role_rules(self, client):
        own = client.put(f"/api/v1/users/{self.admin_id}/role", json={"role": "user"})
        assert own.status_code == 403

        grant = client.put(
            f"/api/v1/users/{self.member_id}/role", json={"role": "system_admin"}
        )
        assert grant.status_code == 403

        missing = client.put(f"/api/v1/users/{self.member_id}/role", json={})
        assert missing.status_code == 400

    def test_deactivate_member(self, client):
        response = client.delete(f"/api/v1/users/{self.member_id}")
        assert response.get_json()["user"]["isActive"] is False


class TestUserRoutePermissions:
    def test_plain_user_cannot_list_users(self, client, make_org, make_user, login):
        org_id = make_org()
        make_user("member@example.com", organization_id=org_id)
        login("member@example.com")

        assert client.get("/api/v1/users").status_code == 403

    def test_user_reads_own_role(self, client, make_user, login):
        user_id = make_user("solo@example.com")
        login("solo@example.com")

        data = client.get(f"/api/v1/users/{user_id}/role").get_json()
        assert "survey:create" in data["permissions"]

    def test_last_org_admin_guard_applies_to_system_admin(
        self, client, make_org, make_user, login
    ):
        org_id = make_org()
        admin_id = make_user(
            "admin@example.com", role="org_admin", organization_id=org_id
        )
        make_user("root@example.com", role="system_admin")
        login("root@example.com")

        response = client.put(f"/api/v1/users/{admin_id}/role", json={"role": "user"})
        assert response.status_code == 409


class TestProvisioningRules:
    def _provision(self, client, **extra):
        body = {"email": "hire@example.com", "firstName": "New", "lastName": "Hire"}
        body.update(extra)
        return client.post("/api/v1/users", json=body)

    def test_only_owners_provision_owners(self, client, make_org, make_user, login):
        org_id = make_org()
        make_user(
            "admin@example.com",
            role="org_admin",
            organization_id=org_id,
            member_role="member",
        )
        login("admin@example.com")

        response = self._provision(client, memberRole="owner")
        assert response.status_code == 403
        assert "resetToken" not in response.get_json()

    def test_unknown_member_role_is_400(self, client, make_org, make_user, login):
        org_id = make_org()
        make_user(
            "admin@example.com",
            role="org_admin",
            organization_id=org_id,
            member_role="owner",
        )
        login("admin@example.com")

        assert self._provision(client, memberRole="superuser").status_code == 400
        assert self._provision(client, memberRole=["owner"]).status_code == 400
        assert self._provision(client, role=["analyst"]).status_code == 400

    def test_system_admin_organization_is_checked(self, client, make_user, login):
        make_user("root@example.com", role="system_admin")
        login("root@example.com")

        assert self._provision(client, organizationId=999).status_code == 404
        assert self._provision(client, organizationId="acme").status_code == 400
