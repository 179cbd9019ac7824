"""
tests/conftest.py -- Shared test fixtures for CareGate.

This module provides:
  - store / hasher / codec: unit-level building blocks on a private
    in-memory SQLite database with the default roles seeded
  - auth_service / user_service: services wired from those blocks
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient plus an admin token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment must be set before any core/auth/api import: get_settings() is
an lru_cache singleton and api/main.py reads it at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before importing api.main -- Settings is read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from core.config import DEFAULT_SEED_ROLES, get_settings
from users.service import UserService

TEST_SECRET = "test-secret-key-with-at-least-32-characters"

ADMIN, DOCTOR, PATIENT = 1, 2, 3

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    """Private in-memory store with admin/doctor/patient seeded."""
    s = CredentialStore("sqlite:///:memory:")
    s.seed_roles(DEFAULT_SEED_ROLES)
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """Minimum bcrypt cost -- the algorithm is the same, only cheaper."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, expire_seconds=3600)


@pytest.fixture
def auth_service(store, hasher, codec) -> AuthService:
    return AuthService(store, hasher, codec)


@pytest.fixture
def user_service(store, hasher) -> UserService:
    return UserService(store, hasher, patient_role_id=PATIENT, seed_role_ids=frozenset(DEFAULT_SEED_ROLES))


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Runs the same install_services() as production so the access policy is
    validated exactly as it would be at startup, but against the test store.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, store, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    Each test module gets its own named in-memory database, so users created
    in one module never collide with another module's fixtures.
    """
    db_url = f"sqlite:///file:test_caregate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    test_store = CredentialStore(db_url)
    app.router.lifespan_context = _patch_lifespan(test_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        service: UserService = app.state.user_service
        admin = service.create(name="Test Admin", email="admin@caregate.test", password="adminpass", role_id=ADMIN)
        token = app.state.auth_service.codec.issue(admin.id)
        yield client, token, admin.id

    test_store.close()
