"""Health endpoint."""
from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert j.get("openai_configured") is True
    assert j.get("database") == "ok"
    assert "X-Request-ID" in r.headers
