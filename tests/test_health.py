"""
tests/test_health.py -- Integration tests for GET /api/v1/health and app-level behavior.

Covers:
  - 200 response with status and version, no authentication required
  - /docs requires an access token
  - unknown Host headers are rejected by TrustedHostMiddleware
"""

from __future__ import annotations


def test_health_returns_200(client):
    """Health endpoint returns 200 with status and version."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any authentication headers."""
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_docs_require_authentication(client):
    """Swagger UI is not served to anonymous callers."""
    resp = client.get("/docs")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_unexpected_host_rejected(client):
    """Requests with a Host header outside ALLOWED_HOSTS get 400."""
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
