"""
tests/conftest.py -- Shared test fixtures for userdir.

This module provides:
  - settings: test Settings with a fixed key and the cheapest bcrypt cost
  - store / directory: a fresh in-memory UserStore and the IdentityDirectory over it
  - make_user: helper that creates accounts through the directory
  - api_client: TestClient over a named shared-memory DB with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-level fixtures run in one thread, so :memory: is fine there.

The DEBUG env var must be set before any core/identity/api import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core/identity/api import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from core.config import Settings
from identity.directory import IdentityDirectory
from identity.models import NewUser, User
from identity.store import UserStore

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings with a fixed signing key and bcrypt's minimum cost (4) for speed."""
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        password_hash_rounds=4,
        token_expire_seconds=3600,
    )


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def directory(store: UserStore, settings: Settings) -> IdentityDirectory:
    return IdentityDirectory.from_settings(store, settings)


@pytest.fixture
def make_user(directory: IdentityDirectory):
    """Return a factory that creates a user through the directory.

    Emails default to a unique address so tests never collide.
    """

    def _make(
        name: str = "User",
        email: str | None = None,
        password: str = "secret",
        hash: str | None = None,
        is_admin: bool = False,
    ) -> User:
        return directory.create(
            NewUser(
                name=name,
                email=email or f"{uuid.uuid4().hex[:10]}@example.com",
                password=password,
                hash=hash,
                is_admin=is_admin,
            )
        )

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, directory: IdentityDirectory):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see
    an isolated test DB rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.directory = directory
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, IdentityDirectory], None, None]:
    """Yield (client, directory) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    Tests create their own accounts via the directory (unique emails) and
    mint tokens with directory.tokens.
    """
    suffix = uuid.uuid4().hex[:8]
    user_store = UserStore(f"sqlite:///file:test_users_{suffix}?mode=memory&cache=shared&uri=true")
    test_settings = Settings(debug=True, secret_key=TEST_SECRET, password_hash_rounds=4)
    directory = IdentityDirectory.from_settings(user_store, test_settings)

    app.router.lifespan_context = _patch_lifespan(user_store, directory)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, directory

    user_store.close()
