"""
tests/conftest.py -- Shared test fixtures for GameVault integration tests.

This module provides:
  - FakeMailer / FakeGoogle: stand-ins for SMTP and Google's endpoints
  - _make_test_stores(): creates isolated in-memory DBs for users + catalog
  - _patch_lifespan(): wires test doubles into app.state, bypassing real startup
  - api: ApiContext (client + stores + fakes) with a fresh DB per test
  - login_as(): creates a user and plants a valid jwt/fgp cookie pair

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and ALLOWED_HOSTS must be set before any project import so
get_settings() auto-generates SECRET_KEY and TrustedHostMiddleware accepts
TestClient's "testserver" host.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from api.limiter import limiter
from api.main import app
from auth.google import GoogleAuthError, GoogleIdentity
from auth.models import User
from auth.store import UserStore
from auth.tokens import FINGERPRINT_COOKIE, JWT_COOKIE, hash_fingerprint, hash_password, new_fingerprint
from catalog.store import CatalogStore
from core.config import get_settings

PASSWORD = "correct-horse-42"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    kind: str
    to: str
    url: str

    @property
    def raw_token(self) -> str:
        return self.url.rsplit("/", 1)[-1]


class FakeMailer:
    """Records outgoing mail instead of sending it. Set fail=True to simulate SMTP errors."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False
        self.is_configured = True

    def _record(self, kind: str, to: str, url: str) -> bool:
        if self.fail:
            return False
        self.sent.append(SentMail(kind, to, url))
        return True

    def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        return self._record("password_reset", to_email, reset_url)

    def send_email_verification(self, to_email: str, verify_url: str) -> bool:
        return self._record("email_verification", to_email, verify_url)

    def send_email_change(self, to_email: str, confirm_url: str) -> bool:
        return self._record("email_change", to_email, confirm_url)


@dataclass
class FakeGoogle:
    """Scriptable GoogleAuthClient. Every call returns the configured value or raises."""

    identity: GoogleIdentity | None = None
    tokens: dict = field(default_factory=lambda: {"access_token": "ya29.test", "id_token": "id.test"})
    token_info: dict = field(default_factory=dict)
    exchange_error: str | None = None
    codes: list[str] = field(default_factory=list)
    is_configured: bool = True

    def verify_id_token(self, id_token: str) -> GoogleIdentity:
        if self.identity is None:
            raise GoogleAuthError("Invalid Google ID token")
        return self.identity

    def exchange_code(self, code: str) -> dict:
        self.codes.append(code)
        if self.exchange_error:
            raise GoogleAuthError(self.exchange_error)
        return self.tokens

    def get_token_info(self, access_token: str) -> dict:
        return self.token_info


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores() -> tuple[UserStore, CatalogStore]:
    """Create isolated named shared-memory SQLite stores.

    A uuid suffix keeps every test on its own database.
    """
    suffix = uuid.uuid4().hex[:12]
    user_store = UserStore(db_url=f"sqlite:///file:test_users_{suffix}?mode=memory&cache=shared&uri=true")
    catalog = CatalogStore(db_url=f"sqlite:///file:test_catalog_{suffix}?mode=memory&cache=shared&uri=true")
    return user_store, catalog


def _patch_lifespan(user_store: UserStore, catalog: CatalogStore, mailer: FakeMailer, google: FakeGoogle):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.catalog = catalog
        app.state.mailer = mailer
        app.state.google = google
        yield

    return test_lifespan


def create_user(store: UserStore, email: str = "player@example.com", role: str = "user", **fields) -> User:
    """Insert a password user (password = PASSWORD) and return it."""
    uid = store.create_user(
        User(email=email, role=role, first_name="Test", last_name="Player", hashed_password=hash_password(PASSWORD), **fields)
    )
    return store.get_by_id(uid)


def issue_token(user_id: int, fingerprint: str, issued_ago: int = 0) -> str:
    """Build a session JWT with a backdated iat, for password-change tests."""
    settings = get_settings()
    iat = datetime.now(timezone.utc) - timedelta(seconds=issued_ago)
    claims = {
        "sub": str(user_id),
        "id": user_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "jti": hash_fingerprint(fingerprint),
        "iat": iat,
        "exp": iat + timedelta(hours=1),
    }
    return jwt.encode(claims, settings.secret_key, algorithm="HS256")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    catalog: CatalogStore
    mailer: FakeMailer
    google: FakeGoogle

    def login_as(self, role: str = "user", email: str | None = None, issued_ago: int = 0, **fields) -> User:
        """Create a user and make the client carry its session cookies."""
        user = create_user(self.user_store, email=email or f"{role}-{uuid.uuid4().hex[:6]}@example.com", role=role, **fields)
        self.use_session(user, issued_ago=issued_ago)
        return user

    def use_session(self, user: User, issued_ago: int = 0) -> str:
        fingerprint = new_fingerprint()
        token = issue_token(user.id, fingerprint, issued_ago=issued_ago)
        self.client.cookies.clear()
        self.client.cookies.set(JWT_COOKIE, token)
        self.client.cookies.set(FINGERPRINT_COOKIE, fingerprint)
        return token


@pytest.fixture
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by fresh stores and fakes.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware, and dependencies.
    """
    user_store, catalog = _make_test_stores()
    mailer, google = FakeMailer(), FakeGoogle()
    app.router.lifespan_context = _patch_lifespan(user_store, catalog, mailer, google)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, user_store, catalog, mailer, google)

    user_store.close()
    catalog.close()
