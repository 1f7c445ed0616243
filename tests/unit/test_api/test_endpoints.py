"""
Unit Tests for the HTTP Surface

The application runs its real lifespan against a throwaway SQLite file, so
the schema is created on startup and every service comes from app.state.
"""

import pytest
from fastapi.testclient import TestClient

from autoflow.main import create_app

HEADERS = {"X-User-Id": "user-1"}


@pytest.fixture
def client(test_settings):
    with TestClient(create_app(test_settings)) as test_client:
        yield test_client


class TestAuthentication:
    """X-User-Id header"""

    def test_missing_header_rejected(self, client):
        response = client.get("/api/v1/integrations/status")

        assert response.status_code == 401
        assert "X-User-Id" in response.json()["detail"]

    def test_blank_header_rejected(self, client):
        response = client.post("/api/v1/nodes/math-operations/execute", headers={"X-User-Id": "  "}, json={})
        assert response.status_code == 401

    def test_catalogue_is_public(self, client):
        assert client.get("/api/v1/nodes").status_code == 200


class TestNodeCatalogue:
    """GET /nodes"""

    def test_list(self, client):
        data = client.get("/api/v1/nodes").json()

        assert data["total"] == len(data["nodes"])
        assert data["total"] >= 75
        assert "communication" in data["categories"]

    def test_filter_by_category(self, client):
        data = client.get("/api/v1/nodes", params={"category": "communication"}).json()

        assert data["total"] > 0
        assert {node["category"] for node in data["nodes"]} == {"communication"}

    def test_get_one(self, client):
        data = client.get("/api/v1/nodes/send-discord-message").json()

        assert data["node_type"] == "send-discord-message"
        assert "discord" in data["services"]

    def test_unknown_node_404(self, client):
        response = client.get("/api/v1/nodes/not-a-node")

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown node: not-a-node"


class TestNodeExecution:
    """POST /nodes/{node_id}/execute"""

    def test_execute(self, client):
        response = client.post(
            "/api/v1/nodes/math-operations/execute",
            headers=HEADERS,
            json={"config": {"operation": "add", "value1": 2, "value2": 3}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["outputs"]["result"] == 5
        assert data["node_id"] == "math-operations"

    def test_failure_is_a_result_not_an_http_error(self, client):
        response = client.post("/api/v1/nodes/unknown-node-id/execute", headers=HEADERS, json={})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "UNKNOWN_NODE"

    def test_credential_unavailable(self, client):
        response = client.post(
            "/api/v1/nodes/send-discord-message/execute",
            headers=HEADERS,
            json={"config": {"guildId": "g1", "channelId": "c1", "message": "hi"}},
        )

        error = response.json()["error"]
        assert error["code"] == "CREDENTIAL_UNAVAILABLE"
        assert error["service"] == "discord"

    def test_invalid_timeout_rejected(self, client):
        response = client.post("/api/v1/nodes/math-operations/execute", headers=HEADERS, json={"timeout": 0})
        assert response.status_code == 422


class TestIntegrations:
    """Credential storage, status and disconnect"""

    def test_store_credential(self, client):
        response = client.post(
            "/api/v1/integrations/credentials",
            headers=HEADERS,
            json={"service": "Discord", "credential_type": "bot_token", "value": "MTIz.bot"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["service"] == "discord"
        assert data["credential_kinds"] == ["bot_token"]
        assert "MTIz.bot" not in response.text

    def test_store_oauth_then_status(self, client):
        response = client.post(
            "/api/v1/integrations/oauth",
            headers=HEADERS,
            json={"service": "google", "access_token": "ya29.x", "refresh_token": "1//r", "expires_in": 3600},
        )
        assert response.status_code == 201
        assert response.json()["has_refresh_token"] is True
        assert response.json()["expires_at"] is not None

        client.post(
            "/api/v1/integrations/credentials",
            headers=HEADERS,
            json={"service": "discord", "credential_type": "bot_token", "value": "MTIz.bot"},
        )

        data = client.get("/api/v1/integrations/status", headers=HEADERS).json()

        assert data["total"] == 2
        discord, google = data["integrations"]
        assert discord["service"] == "discord"
        assert discord["oauth_connected"] is False
        assert discord["credential_kinds"] == ["bot_token"]
        assert google["oauth_connected"] is True
        assert google["needs_refresh"] is False
        assert google["can_refresh"] is True
        assert "ya29.x" not in str(data)

    def test_status_is_per_user(self, client):
        client.post(
            "/api/v1/integrations/credentials",
            headers=HEADERS,
            json={"service": "discord", "credential_type": "bot_token", "value": "MTIz.bot"},
        )

        data = client.get("/api/v1/integrations/status", headers={"X-User-Id": "user-2"}).json()
        assert data == {"integrations": [], "total": 0}

    def test_stored_credential_used_by_execution(self, client):
        client.post(
            "/api/v1/integrations/oauth",
            headers=HEADERS,
            json={"service": "slack", "access_token": "xoxb-1"},
        )

        # Missing channel fails validation before any outbound call
        response = client.post(
            "/api/v1/nodes/post-to-slack-channel/execute", headers=HEADERS, json={"config": {"message": "x"}}
        )
        error = response.json()["error"]
        assert error["code"] == "INVALID_CONFIG"
        assert error["missing_fields"] == ["channel"]

    def test_disconnect(self, client):
        client.post(
            "/api/v1/integrations/credentials",
            headers=HEADERS,
            json={"service": "discord", "credential_type": "bot_token", "value": "MTIz.bot"},
        )

        response = client.post("/api/v1/integrations/disconnect", headers=HEADERS, json={"service": "discord"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "service": "discord",
            "oauth_removed": False,
            "credentials_removed": True,
        }
        assert client.get("/api/v1/integrations/status", headers=HEADERS).json()["total"] == 0

    def test_disconnect_nothing(self, client):
        response = client.post("/api/v1/integrations/disconnect", headers=HEADERS, json={"service": "asana"})
        assert response.json()["success"] is False


class TestHealth:
    """GET /health"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
