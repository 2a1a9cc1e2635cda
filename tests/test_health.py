"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version and database fields
  - database reported "unavailable" when the store does not answer
  - unknown Host headers rejected by TrustedHostMiddleware
"""

from __future__ import annotations

from api.main import API_VERSION


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database state."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION, "database": "ok"}


def test_health_reports_unreachable_database(api_client, monkeypatch):
    client, _, store = api_client
    monkeypatch.setattr(store, "ping", lambda: False)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "unavailable"


def test_untrusted_host_rejected(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
