"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'error' when a store cannot be reached
  - No authentication required
  - /docs is behind a login
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from conftest import ApiContext


def test_health_returns_200_with_components(api: ApiContext) -> None:
    """Health endpoint returns 200 with status, version, and components."""
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_database_error(api: ApiContext, monkeypatch) -> None:
    def broken() -> bool:
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr(api.catalog, "ping", broken)
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["components"]["database"] == "error"


def test_health_no_auth_required(api: ApiContext) -> None:
    """Health endpoint is accessible without any cookies or headers."""
    api.client.cookies.clear()
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_docs_require_login(api: ApiContext) -> None:
    assert api.client.get("/docs").status_code == 401
    api.login_as("user")
    assert api.client.get("/docs").status_code == 200
