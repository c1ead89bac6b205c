"""
tests/conftest.py -- Shared test fixtures for AdminGate.

This module provides:
  - settings: explicit Settings with fixed, distinct signing keys and bcrypt cost 4
  - store / codec / sessions / gate: the auth engine over an in-memory SQLite DB
  - admin: the bootstrapped admin identity (created through a real login)
  - api_client: (TestClient, IdentityStore) with a patched lifespan

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each test gets its own DB name so no state leaks between tests.

Environment variables must be set before any api/ import: api.main and
api.limiter read get_settings() at import time.
"""

from __future__ import annotations

import os

# CRITICAL: set before any api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("ADMIN_PASSWORD", "correct-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import asyncio
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.gate import RequestGate
from auth.models import Identity
from auth.session import SessionManager
from auth.store import IdentityStore
from auth.tokens import TokenCodec
from core.config import Settings

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct-secret"
ACCESS_TTL = 900
REFRESH_TTL = 7 * 24 * 60 * 60


def make_settings(**overrides) -> Settings:
    values = dict(
        debug=True,
        environment="test",
        jwt_secret="a" * 64,
        jwt_refresh_secret="r" * 64,
        access_token_expire_seconds=ACCESS_TTL,
        refresh_token_expire_seconds=REFRESH_TTL,
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        bcrypt_rounds=4,
        rate_limit_enabled=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def codec(settings: Settings) -> TokenCodec:
    return TokenCodec.from_settings(settings)


@pytest.fixture
def sessions(store: IdentityStore, codec: TokenCodec, settings: Settings) -> SessionManager:
    return SessionManager(store, codec, settings)


@pytest.fixture
def gate(store: IdentityStore, codec: TokenCodec) -> RequestGate:
    return RequestGate(store, codec)


@pytest.fixture
def admin(sessions: SessionManager, store: IdentityStore) -> Identity:
    """The admin identity, bootstrapped by a real login. Its session is dropped again."""
    result = sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD, "127.0.0.1")
    store.remove_all_refresh_tokens(result.user.id)
    return store.get_by_id(result.user.id)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: IdentityStore):
    """Return a lifespan that wires test services into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, settings, store=store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, IdentityStore], None, None]:
    """Yield (client, store) backed by a fresh shared-memory database."""
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    api_store = IdentityStore(db_url)
    app.router.lifespan_context = _patch_lifespan(make_settings(), api_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, api_store

    api_store.close()
