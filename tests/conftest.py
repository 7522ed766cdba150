"""
tests/conftest.py -- Shared test fixtures for Config Studio auth tests.

This module provides:
  - FakeClock: a settable clock for session-expiry tests
  - repos / store / tokens / manager / vault: isolated components on tmp_path
  - _patch_lifespan(): builds the real auth services inside the TestClient loop
  - api_client: TestClient plus the bootstrap admin's access token

Design: TokenService always runs on the real clock because python-jose checks
exp against wall time. Session expiry is decided by the clock handed to
CredentialStore / SessionManager, so those get a FakeClock that tests advance.

The environment must be set before any api/auth/core import so get_settings()
sees cheap bcrypt rounds and a disabled rate limiter.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timedelta
from pathlib import Path

# CRITICAL: set before any core/auth import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.factory import create_auth_services
from auth.manager import SessionManager
from auth.models import SecretRecord, Session, User, utcnow
from auth.repository import JsonFileRepository
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.vault import SecretStore
from core.config import Settings

TEST_SECRET = "x" * 48
ADMIN_PASSWORD = "adminpass123"


class FakeClock:
    """Callable clock frozen at construction time until advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def users_repo(tmp_path: Path) -> JsonFileRepository[User]:
    return JsonFileRepository(tmp_path / "users.json", User.from_record)


@pytest.fixture
def sessions_repo(tmp_path: Path) -> JsonFileRepository[Session]:
    return JsonFileRepository(tmp_path / "sessions.json", Session.from_record)


@pytest.fixture
async def store(users_repo, sessions_repo, clock) -> CredentialStore:
    s = CredentialStore(users_repo, sessions_repo, bcrypt_rounds=4, clock=clock)
    await s.load()
    return s


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TEST_SECRET)


@pytest.fixture
def manager(store, tokens, clock) -> SessionManager:
    return SessionManager(store, tokens, clock=clock)


@pytest.fixture
async def vault(tmp_path: Path, clock) -> SecretStore:
    repo = JsonFileRepository(tmp_path / "api-keys.json", SecretRecord.from_record)
    v = SecretStore(repo, tmp_path / ".key", clock=clock)
    await v.load()
    await v.init_key()
    return v


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _test_settings(auth_dir: Path) -> Settings:
    return Settings(
        auth_dir=auth_dir,
        admin_password=ADMIN_PASSWORD,
        bcrypt_rounds=4,
        debug=True,
        rate_limit_enabled=False,
    )


def _patch_lifespan(settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    The auth services are built inside the TestClient's event loop so the
    stores' asyncio.Locks bind to the loop that serves requests. The sweep
    task is a long-sleeping coroutine (a real asyncio.Task is required for
    .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = await create_auth_services(settings)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task
        app.state.auth.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, admin_access_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers against an isolated auth directory. The bootstrap
    admin ("admin" / ADMIN_PASSWORD) is created by create_auth_services().
    """
    auth_dir = tmp_path_factory.mktemp("auth")
    app.router.lifespan_context = _patch_lifespan(_test_settings(auth_dir))

    with TestClient(app, raise_server_exceptions=True) as client:
        resp = client.post("/api/v1/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, resp.text
        yield client, resp.json()["access_token"]
