"""
tests/conftest.py -- Shared fixtures for TeamGate service and API tests.

This module provides:
  - settings: isolated Settings (file DB under tmp_path, bcrypt cost 4)
  - db: a fresh Database per test
  - signup / accounts / memberships / invitations: services wired to db
  - make_account(): signup helper returning the Account
  - api_client: TestClient on the real app with a patched lifespan

Design: a file-backed SQLite database per test, not shared-cache :memory:.
The concurrency tests open several connections from several threads and
rely on BEGIN IMMEDIATE taking a real database lock, which shared-cache
memory databases do not model faithfully.

The DEBUG env var must be set before any core import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core/auth import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from audit.recorder import AuditRecorder
from auth.models import Account, Profile
from auth.service import AccountService
from auth.signup import BootstrapSignup
from auth.tokens import PasswordHasher, TokenIssuer
from core.config import Settings
from invitations.service import InvitationService
from store.db import Database
from teams.service import MembershipService

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
PASSWORD = "correct horse battery"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'teamgate.db'}",
        bcrypt_rounds=4,
    )


@pytest.fixture
def db(settings) -> Generator[Database, None, None]:
    database = Database(settings.database_url)
    yield database
    database.close()


@pytest.fixture
def audit(db) -> AuditRecorder:
    return AuditRecorder(db)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer(settings) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


@pytest.fixture
def signup(db, hasher, audit) -> BootstrapSignup:
    return BootstrapSignup(db, hasher, audit)


@pytest.fixture
def accounts(db, hasher, issuer, audit) -> AccountService:
    return AccountService(db, hasher, issuer, audit)


@pytest.fixture
def memberships(db, audit) -> MembershipService:
    return MembershipService(db, audit)


@pytest.fixture
def invitations(db, signup, issuer, audit, settings) -> InvitationService:
    return InvitationService(db, signup, issuer, audit, settings=settings)


@pytest.fixture
def make_account(signup):
    """Return a factory: make_account("a@example.com", **signup_kwargs) -> Account."""

    def _make(email: str, password: str = PASSWORD, first_name: str | None = None, **kwargs) -> Account:
        return signup.signup(email, password, Profile(first_name=first_name), **kwargs)

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, settings: Settings):
    """Replace the real lifespan so routes run against the test database."""

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, db, settings)
        yield

    return test_lifespan


@pytest.fixture
def api_client(db, settings) -> Generator[TestClient, None, None]:
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(db, settings)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield client
    finally:
        app.router.lifespan_context = original


@pytest.fixture
def login_headers(api_client):
    """Return a factory: login_headers(email) -> Authorization header, via the API."""

    def _login(email: str, password: str = PASSWORD) -> dict[str, str]:
        resp = api_client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login
