"""Tests for the /api/health endpoint."""

import aiosqlite

from app import db
from app.routers import health


def test_health_reports_database(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert data["version"] == "0.1.0"
    assert "timestamp" in data


def test_health_degraded_without_database(client, monkeypatch):
    monkeypatch.setattr(db, "_db", None)

    data = client.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["database"] == "unavailable"


def test_health_degraded_on_sqlite_error(client, monkeypatch):
    def _broken_db():
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(health, "get_db", _broken_db)

    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["database"] == "unavailable"
