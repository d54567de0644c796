"""
tests/conftest.py -- Shared test fixtures for overtime tracker tests.

This module provides:
  - FakeClock: a settable clock injected into TokenService and InviteLedger
  - Harness: stores, services and a TestClient wired into one app instance
  - harness: function-scoped Harness with follow_redirects=False
  - user_store / overtime_store: bare stores for repository unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture instance gets its own uuid-named database, so tests
never see each other's rows.

DEBUG and ALLOWED_HOSTS must be set before any app import: get_settings()
auto-generates SECRET_KEY only in dev mode, and TrustedHostMiddleware reads
its host list once when api.main is imported (TestClient sends
Host: testserver).
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.invites import InviteLedger
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import COOKIE_NAME, TokenService, hash_password
from core.config import get_settings
from records.store import OvertimeStore

DEFAULT_PASSWORD = "password1"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for TokenService / InviteLedger. Starts at a fixed instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(harness: "Harness"):
    """Return an async context manager that replaces the real lifespan.

    Wires the harness stores and services into app.state so routes see
    isolated test databases and the fake clock.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = harness.user_store
        app.state.overtime_store = harness.overtime_store
        app.state.token_service = harness.token_service
        app.state.invite_ledger = harness.ledger
        yield

    return test_lifespan


@dataclass
class Harness:
    user_store: UserStore
    overtime_store: OvertimeStore
    clock: FakeClock
    token_service: TokenService
    ledger: InviteLedger
    client: TestClient = field(init=False)

    def make_user(
        self,
        username: str,
        role: Role = Role.EMPLOYEE,
        password: str = DEFAULT_PASSWORD,
        must_change_password: bool = False,
        **extra,
    ) -> User:
        user = User(
            username=username,
            role=role,
            hashed_password=hash_password(password),
            must_change_password=must_change_password,
            **extra,
        )
        user.id = self.user_store.create_user(user)
        return user

    def token_for(self, user: User) -> str:
        return self.token_service.issue(user)

    def login(self, user: User) -> str:
        """Replace the client's cookies with a freshly issued session cookie."""
        token = self.token_for(user)
        self.client.cookies.clear()
        self.client.cookies.set(COOKIE_NAME, token)
        return token


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter is a module-level singleton; start every test with empty counters."""
    limiter.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(_memory_url("test_auth"))
    yield store
    store.close()


@pytest.fixture
def overtime_store() -> Generator[OvertimeStore, None, None]:
    store = OvertimeStore(_memory_url("test_records"))
    yield store
    store.close()


@pytest.fixture
def harness(clock: FakeClock) -> Generator[Harness, None, None]:
    """Yield a Harness whose TestClient runs the full app against in-memory stores.

    follow_redirects=False is essential: the gate chain answers with 303
    redirects, and tests assert on their Location headers.
    """
    db_url = _memory_url("test_app")
    user_store = UserStore(db_url)
    overtime_store = OvertimeStore(db_url)
    settings = get_settings()
    token_service = TokenService(settings.secret_key, 3600, clock=clock)
    ledger = InviteLedger(user_store, 7 * 24 * 60 * 60, clock=clock)
    h = Harness(user_store, overtime_store, clock, token_service, ledger)

    app.router.lifespan_context = _patch_lifespan(h)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        h.client = client
        yield h

    overtime_store.close()
    user_store.close()
