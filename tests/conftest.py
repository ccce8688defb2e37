"""
tests/conftest.py -- Shared test fixtures for TaskBoard.

This module provides:
  - settings: a Settings instance with dev secrets and a cheap bcrypt cost
  - services: the full store/service graph on temporary SQLite files
  - _make_test_state() / _patch_lifespan(): wire isolated stores into app.state
  - api_client: TestClient over the real app with an admin already created

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient because route handlers run in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Service-level tests that exercise real concurrency use temporary files
instead: shared-cache memory databases report table locks immediately
rather than waiting out the busy timeout.

Environment variables must be set before any api/ import: api/main.py reads
get_settings() at import time to configure middleware.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set before any core/auth/api import so get_settings() can
# auto-generate secrets in dev mode instead of raising.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("CACHE_PATH", ":memory:")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.accounts import AccountService
from auth.flows import CredentialFlows
from auth.models import ROLE_ADMIN, User
from auth.passwords import PasswordHasher
from auth.policy import AccessPolicy
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from cache.store import ResourceCache
from core.config import Settings
from projects.service import ProjectService, TaskService
from projects.store import ProjectStore

STRONG_PASSWORD = "Str0ng!Pass"
ADMIN_EMAIL = "admin@ex.com"


def memory_url(name: str) -> str:
    """Named shared-memory SQLite URL, unique per call."""
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def build_services(db_url: str, settings: Settings, cache: ResourceCache | None = None) -> SimpleNamespace:
    """Wire the same object graph api/main.py builds, against db_url."""
    users = UserStore(db_url)
    refresh_tokens = RefreshTokenStore(db_url)
    project_store = ProjectStore(db_url)
    cache = cache or ResourceCache(":memory:")
    hasher = PasswordHasher(settings.bcrypt_rounds)
    codec = TokenCodec(settings)
    policy = AccessPolicy()
    projects = ProjectService(project_store, users, policy, cache, settings)
    return SimpleNamespace(
        settings=settings,
        users=users,
        refresh_tokens=refresh_tokens,
        project_store=project_store,
        cache=cache,
        hasher=hasher,
        codec=codec,
        policy=policy,
        flows=CredentialFlows(users, refresh_tokens, hasher, codec, cache, settings),
        accounts=AccountService(users, refresh_tokens, cache, settings),
        projects=projects,
        tasks=TaskService(project_store, projects, policy, cache, settings),
    )


def close_services(svc: SimpleNamespace) -> None:
    svc.cache.close()
    svc.project_store.close()
    svc.refresh_tokens.close()
    svc.users.close()


def create_admin(svc: SimpleNamespace, email: str = ADMIN_EMAIL) -> int:
    return svc.users.create_user(
        User(
            email=email,
            hashed_password=svc.hasher.hash(STRONG_PASSWORD),
            first_name="Ada",
            last_name="Admin",
            role=ROLE_ADMIN,
        )
    )


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, bcrypt_rounds=4, cache_path=":memory:")


@pytest.fixture
def services(tmp_path, settings: Settings) -> Generator[SimpleNamespace, None, None]:
    """Full service graph on a temporary SQLite file and an in-memory cache."""
    svc = build_services(f"sqlite:///{tmp_path / 'taskboard.db'}", settings)
    yield svc
    close_services(svc)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(svc: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Publishes the pre-built test services on app.state so TestClient routes
    see isolated test DBs rather than the configured database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        for name in ("settings", "users", "refresh_tokens", "project_store", "cache", "flows", "accounts", "projects", "tasks"):
            setattr(app.state, name, getattr(svc, name))
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, SimpleNamespace, int], None, None]:
    """Yield (client, services, admin_id) for API integration tests.

    The admin is created directly in the store -- the API never creates
    admins -- and logs in through the real endpoint when a test needs a token.
    """
    svc = build_services(memory_url("test_api"), Settings(debug=True, bcrypt_rounds=4))
    admin_id = create_admin(svc)
    app.router.lifespan_context = _patch_lifespan(svc)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, svc, admin_id

    close_services(svc)


def login_headers(client: TestClient, email: str, password: str = STRONG_PASSWORD) -> dict[str, str]:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def register(client: TestClient, email: str, first_name: str = "Test", last_name: str = "User") -> int:
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": STRONG_PASSWORD, "first_name": first_name, "last_name": last_name},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]
