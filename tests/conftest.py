"""
tests/conftest.py -- Shared test fixtures for Gatehouse tests.

This module provides:
  - hasher / issuer / store / service: unit-level building blocks backed by a
    private in-memory database
  - _make_test_store(): creates an isolated shared-memory DB for the API
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing real startup
  - api_client: TestClient with an admin access token for API integration tests
  - client: the same TestClient with an empty cookie jar for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API fixtures because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any api/auth/core import: api.main reads
Settings at import time to configure middleware.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.hashing import CredentialHasher
from auth.models import NewUser, RegisterMethod, Role, User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer

# bcrypt's minimum cost. Keeps the suite fast; production default is 10.
TEST_BCRYPT_ROUNDS = 4

ACCESS_SECRET = "a" * 32 + "-access"
REFRESH_SECRET = "r" * 32 + "-refresh"

ADMIN_EMAIL = "admin@x.com"
ADMIN_PASSWORD = "adminpass123"

# The per-IP counters would otherwise leak between test modules.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> CredentialHasher:
    return CredentialHasher(bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def issuer() -> Generator[TokenIssuer, None, None]:
    issuer = TokenIssuer(
        access_secret=ACCESS_SECRET,
        access_expire_seconds=900,
        refresh_secret=REFRESH_SECRET,
        refresh_expire_seconds=3600,
    )
    yield issuer
    issuer.close()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: UserStore, hasher: CredentialHasher, issuer: TokenIssuer) -> AuthService:
    return AuthService(store=store, hasher=hasher, issuer=issuer)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api').
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _fake_oauth() -> MagicMock:
    """OAuth registry stand-in. Tests configure create_client().return_value."""
    oauth = MagicMock()
    oauth.create_client.return_value = None
    return oauth


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes see
    an isolated test DB. The OAuth registry is a MagicMock so no request ever
    reaches Google.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = service.store
        app.state.hasher = service.hasher
        app.state.token_issuer = service.issuer
        app.state.auth_service = service
        app.state.oauth = _fake_oauth()
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store. The
    admin user is created before the client starts and its access token is
    signed by the same issuer the app verifies with.
    """
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    hasher = CredentialHasher(bcrypt_rounds=TEST_BCRYPT_ROUNDS)
    issuer = TokenIssuer(
        access_secret=ACCESS_SECRET,
        access_expire_seconds=900,
        refresh_secret=REFRESH_SECRET,
        refresh_expire_seconds=3600,
    )
    service = AuthService(store=user_store, hasher=hasher, issuer=issuer)

    admin = service.register(
        NewUser(
            email=ADMIN_EMAIL,
            name="Ada",
            last_name="Admin",
            register_method=RegisterMethod.email,
            role=Role.admin,
            password=ADMIN_PASSWORD,
        )
    )
    assert isinstance(admin, User)
    token = issuer.issue_access_token(admin.claims())

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    issuer.close()
    user_store.close()


@pytest.fixture
def client(api_client: tuple[TestClient, str, int]) -> TestClient:
    """The module's TestClient with no cookies left over from earlier tests.

    Login responses set the refresh_token cookie, and TestClient keeps it for
    every later request unless cleared.
    """
    c, _token, _uid = api_client
    c.cookies.clear()
    return c


@pytest.fixture
def admin_token(api_client: tuple[TestClient, str, int]) -> str:
    return api_client[1]
