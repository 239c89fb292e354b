"""
tests/conftest.py -- Shared test fixtures for StaffDesk.

This module provides:
  - user_store / authenticator: in-memory stores for unit tests
  - api_client: TestClient over the real app with a patched lifespan
  - admin_token: access token for a bootstrap admin in the api_client DB

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format shares one in-memory instance across all
connections in the same process.

Environment variables must be set before any api/auth/core import so
get_settings() sees them: a fixed SECRET_KEY, cheap bcrypt rounds, and a
login rate limit high enough for the whole suite.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set before any auth/core import.
TEST_SECRET = "test-secret-key-with-at-least-32-bytes-of-entropy!"
os.environ["SECRET_KEY"] = TEST_SECRET
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["TOKEN_ISSUER"] = "staffdesk-test"

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_authenticator
from auth.passwords import PasswordHasher
from auth.service import Authenticator
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

ADMIN_USERNAME = "rootadmin"
ADMIN_EMAIL = "rootadmin@staffdesk.test"
ADMIN_PASSWORD = "Admin@12345"


# ---------------------------------------------------------------------------
# Unit-test fixtures -- plain in-memory stores, no HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def refresh_store(user_store: UserStore) -> RefreshTokenStore:
    return RefreshTokenStore(user_store.engine)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, issuer="staffdesk-test", ttl_seconds=900)


@pytest.fixture
def authenticator(user_store: UserStore, refresh_store: RefreshTokenStore, codec: TokenCodec) -> Authenticator:
    return Authenticator(
        users=user_store,
        refresh_tokens=refresh_store,
        hasher=PasswordHasher(rounds=4),
        codec=codec,
        refresh_token_ttl=timedelta(days=7),
    )


# ---------------------------------------------------------------------------
# Integration fixtures -- real app, patched lifespan
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, authenticator: Authenticator):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    an isolated test DB rather than the configured database. The purge_task
    is a long-sleeping coroutine (a real asyncio.Task is required; MagicMock
    would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.authenticator = authenticator
        app.state.token_codec = authenticator.codec
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, Authenticator], None, None]:
    """Yield (client, authenticator) for API integration tests.

    One TestClient per test module for speed. The DB name includes the module
    name so modules never share rows. A bootstrap admin exists before the
    client starts.
    """
    db_name = request.module.__name__.replace(".", "_")
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    authenticator = build_authenticator(get_settings(), user_store)
    authenticator.bootstrap_admin(ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(user_store, authenticator)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, authenticator

    user_store.close()


@pytest.fixture(scope="module")
def admin_token(api_client: tuple[TestClient, Authenticator]) -> str:
    _client, authenticator = api_client
    result = authenticator.login(ADMIN_USERNAME, ADMIN_PASSWORD)
    return result.access_token
