"""
Tests for the main blueprint routes and the JSON error envelope.
"""


class TestHealthCheck:
    """Tests for the /health endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_reports_database(self, client):
        data = client.get("/health").get_json()
        assert data == {"status": "healthy", "database": "connected"}


class TestApiDocs:
    def test_lists_api_routes(self, client):
        data = client.get("/api/docs").get_json()

        paths = {route["path"] for route in data["routes"]}
        assert data["count"] == len(data["routes"])
        assert "/api/auth/login" in paths
        assert "/api/surveys/<int:survey_id>/status" in paths
        assert "/health" not in paths

    def test_methods_exclude_head_and_options(self, client):
        data = client.get("/api/docs").get_json()
        login = next(r for r in data["routes"] if r["path"] == "/api/auth/login")
        assert login["methods"] == ["POST"]


class TestErrorEnvelope:
    def test_unknown_route_is_json_404(self, client):
        response = client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.is_json
        assert "error" in response.get_json()

    def test_protected_route_without_session_is_401(self, client):
        response = client.get("/api/surveys")

        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_non_json_body_is_400(self, client):
        response = client.post(
            "/api/auth/login", data="email=x", content_type="text/plain"
        )
        assert response.status_code == 400
