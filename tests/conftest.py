"""
Shared test fixtures.

Provides a FastAPI TestClient wired to:
  • a FlowRegistry whose remote auth clients are FakeAuthService instances
  • a temporary SQLite database (via app lifespan)

The `client` fixture runs the full lifespan (DB init / shutdown) so the
pending-verification slot and rate-limit records live in real SQLite.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.rate_limit import RateLimitGuard
from app.services.registry import FlowRegistry
from tests.mocks.services import FakeAuthService, MemoryKeyValueStore


# ── Helpers ────────────────────────────────────────────────────────────────


class AuthFactory:
    """Hands out FakeAuthService instances and remembers them in order."""

    def __init__(self) -> None:
        self.created: list[FakeAuthService] = []
        self.signup_session = None
        self.session_error: str | None = None
        self.errors: dict[str, str] = {}

    def __call__(self) -> FakeAuthService:
        auth = FakeAuthService()
        auth.signup_session = self.signup_session
        auth.session_error = self.session_error
        auth.errors.update(self.errors)
        self.created.append(auth)
        return auth

    @property
    def last(self) -> FakeAuthService:
        return self.created[-1]


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def auth() -> FakeAuthService:
    return FakeAuthService()


@pytest.fixture()
def guard(memory_store) -> RateLimitGuard:
    return RateLimitGuard(memory_store)


@pytest.fixture()
def auth_factory() -> AuthFactory:
    return AuthFactory()


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, auth_factory) -> FlowRegistry:
    """Temp database path plus a registry that never talks to the network."""
    import app.config as config_mod

    monkeypatch.setattr(config_mod, "DB_PATH", str(tmp_path / "test.db"))
    return FlowRegistry(auth_factory=auth_factory)


@pytest.fixture()
def test_registry(_test_env) -> FlowRegistry:
    return _test_env


@pytest.fixture()
def client(_test_env: FlowRegistry) -> TestClient:
    """
    FastAPI TestClient with fake auth and a temp DB.

    Uses a context manager so the lifespan runs (DB init/shutdown).
    """
    app = create_app(_test_env)
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
