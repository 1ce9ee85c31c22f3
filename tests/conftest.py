"""
tests/conftest.py -- Shared test fixtures for AppGate unit and integration tests.

This module provides:
  - FakeNotifier: records every notification call, optionally failing or raising
  - store / catalog / notifier / services: isolated in-memory core for unit tests
  - api_client: TestClient over the real app with a patched lifespan
  - login(): helper that signs a TestClient in through the API

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool, and the
approval and reset workflows push their store calls onto one as well.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

import auth.passwords
from api.limiter import limiter
from api.main import app
from api.services import Services, assemble
from auth.models import PublicUser
from auth.passwords import hash_password
from auth.store import UserStore
from core.catalog import parse_catalog
from core.models import AppEntry

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "AdminPass1!"

CATALOG_DATA = [
    {"slug": "dart", "name": "DART", "url": "https://dart.example.com/"},
    {"slug": "skylens", "name": "SkyLens", "url": "https://skylens.example.com/"},
    {"slug": "risk", "name": "Risk Register", "url": "https://risk.example.com/"},
]


# ---------------------------------------------------------------------------
# Recording notifier
# ---------------------------------------------------------------------------


@dataclass
class FakeNotifier:
    """Notifier double. result is what every send returns; error is raised instead when set."""

    result: bool = True
    error: Exception | None = None
    calls: list[tuple] = field(default_factory=list)

    async def _record(self, *call) -> bool:
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        return self.result

    async def send_pending_registration_emails(self, user: PublicUser) -> bool:
        return await self._record("pending", user)

    async def send_user_approval_email(self, user: PublicUser, temporary_password: str) -> bool:
        return await self._record("approval", user, temporary_password)

    async def send_password_reset_email(self, user: PublicUser, token: str) -> bool:
        return await self._record("reset", user, token)

    def of_kind(self, kind: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == kind]


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop the bcrypt cost factor so the suite does not spend minutes hashing."""
    monkeypatch.setattr(auth.passwords, "BCRYPT_ROUNDS", 4)


def _memory_url() -> str:
    return f"sqlite:///file:test_appgate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Migrated store on a named in-memory DB, reachable from threadpool workers."""
    s = UserStore(_memory_url())
    s.migrate()
    yield s
    s.close()


@pytest.fixture
def catalog() -> list[AppEntry]:
    return parse_catalog(CATALOG_DATA)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def services(store: UserStore, catalog: list[AppEntry], notifier: FakeNotifier) -> Services:
    return assemble(store, catalog, notifier)


def make_user(
    store: UserStore,
    email: str,
    password: str = "Password1!",
    *,
    approved: bool = True,
    is_admin: bool = False,
    apps: tuple[str, ...] = (),
):
    """Insert a user directly through the store, bypassing registration."""
    return store.create_user(
        email,
        hash_password(password),
        approved=approved,
        is_admin=is_admin,
        allowed_apps=apps,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built Services container into app.state so TestClient routes
    see an isolated test DB and the recording notifier instead of SMTP.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        services.open(ADMIN_EMAIL, ADMIN_PASSWORD)
        app.state.services = services
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    services: Services
    notifier: FakeNotifier

    def new_client(self) -> TestClient:
        """A second browser: same app and store, separate cookie jar."""
        return TestClient(app, follow_redirects=False)


@pytest.fixture
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around the real FastAPI app.

    Each test gets its own named in-memory database, so state never leaks
    between tests. follow_redirects=False lets tests assert on the 302
    Location of the app launcher. The rate limiter is switched off; the
    limit itself is covered by a dedicated test.
    """
    db_url = _memory_url()
    notifier = FakeNotifier()
    services = assemble(UserStore(db_url), parse_catalog(CATALOG_DATA), notifier)

    app.router.lifespan_context = _patch_lifespan(services)
    limiter.enabled = False
    limiter.reset()

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, services=services, notifier=notifier)

    limiter.enabled = True
    services.close()


def login(client: TestClient, email: str, password: str):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})
