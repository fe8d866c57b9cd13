"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - make_stores(): KeyStore + UserStore on an isolated in-memory database
  - seed_identities(): the demo groups and users (alice is in groups 2 and 3)
  - stores / keyed_stores: function-scoped stores, without / with RSA keys
  - api_client: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each fixture uses a uuid in the name so tests never see each other's rows.

DEBUG must be set before any core/auth import so Settings() does not warn
about insecure cookies on every test run.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.keys import generate_keys
from auth.models import User
from auth.store import KeyStore, UserStore, create_db_engine
from auth.tokens import hash_password

# Login tests hit /api/login far more often than the production limit allows.
limiter.enabled = False

PASSWORD = "password123"
_PASSWORD_HASH = hash_password(PASSWORD)


@dataclass
class Identities:
    alice_id: int
    bob_id: int
    guest_id: int
    group_ids: dict[str, int]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores() -> tuple[KeyStore, UserStore]:
    """Create both stores on one engine bound to a fresh shared-memory database."""
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    engine = create_db_engine(url)
    return KeyStore(engine=engine), UserStore(engine=engine)


def seed_identities(user_store: UserStore) -> Identities:
    """Groups admin=1, mgmt=2, dev=3, view=4; alice in {mgmt, dev}; bob inactive; guest no groups."""
    group_ids = {name: user_store.create_group(name) for name in ("admin", "mgmt", "dev", "view")}

    alice_id = user_store.create_user(
        User(email="alice@example.com", name="Alice Johnson", hashed_password=_PASSWORD_HASH)
    )
    bob_id = user_store.create_user(
        User(email="bob@example.com", name="Bob Smith", hashed_password=_PASSWORD_HASH, is_active=False)
    )
    guest_id = user_store.create_user(
        User(email="guest@example.com", name="Guest User", hashed_password=_PASSWORD_HASH)
    )
    user_store.add_membership(alice_id, group_ids["mgmt"])
    user_store.add_membership(alice_id, group_ids["dev"])
    user_store.add_membership(bob_id, group_ids["dev"])
    return Identities(alice_id=alice_id, bob_id=bob_id, guest_id=guest_id, group_ids=group_ids)


def _patch_lifespan(key_store: KeyStore, user_store: UserStore):
    """Return a lifespan that wires the test stores into app.state instead of opening DATABASE_URL."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.key_store = key_store
        app.state.user_store = user_store
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[KeyStore, UserStore], None, None]:
    """Empty database: schema only, no keys, no users."""
    key_store, user_store = make_stores()
    yield key_store, user_store
    key_store.close()


@pytest.fixture
def identities(stores) -> Identities:
    """Seed the demo groups and users into the `stores` database."""
    return seed_identities(stores[1])


@pytest.fixture
def keyed_stores(stores, identities) -> tuple[KeyStore, UserStore, Identities]:
    """Seeded identities plus an unencrypted RSA key pair."""
    key_store, user_store = stores
    generate_keys(key_store, encrypted=False)
    return key_store, user_store, identities


@pytest.fixture
def api_client(keyed_stores) -> Generator[tuple[TestClient, KeyStore, UserStore, Identities], None, None]:
    """Yield (client, key_store, user_store, identities) against the real app.

    The TestClient keeps a cookie jar, so a login followed by a verify on the
    same client behaves like a browser.
    """
    key_store, user_store, identities = keyed_stores
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(key_store, user_store)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield client, key_store, user_store, identities
    finally:
        app.router.lifespan_context = original
