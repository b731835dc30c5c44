"""Tests for the health and root endpoints and domain error rendering."""

from src.api.main import _parse_allowed_origins


def test_health_reports_session_state(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["session"] == "disconnected"
    assert body["uptime_seconds"] >= 0
    assert "version" in body


def test_root_lists_docs(client):
    body = client.get("/").json()
    assert body["name"] == "ChatRelay API"
    assert body["docs"] == "/docs"


def test_domain_error_payload_shape(client):
    response = client.get("/api/v1/conversations/missing")

    assert response.status_code == 404
    assert set(response.json()) == {
        "error_code",
        "title",
        "message",
        "remediation",
        "is_retryable",
    }


class TestAllowedOrigins:

    def test_unset_disables_cors(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
        assert _parse_allowed_origins() == []

    def test_comma_separated(self, monkeypatch):
        monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:5173, https://ops.example.com,")
        assert _parse_allowed_origins() == [
            "http://localhost:5173",
            "https://ops.example.com",
        ]
