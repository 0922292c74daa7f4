"""
tests/conftest.py -- Shared test fixtures for the SendRec identity tests.

This module provides:
  - memory_db_url(): a unique named shared-memory SQLite URI
  - make_settings(): Settings tuned for tests (fast bcrypt, plain-HTTP cookies)
  - RecordingEmailSender: EmailSender fake that keeps every link it was given
  - InlineExecutor: runs API-key last_used_at updates synchronously
  - api_client: (client, mailer) TestClient over the real app, patched lifespan
  - signup: registers, confirms and logs in a user through the HTTP API

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG and ALLOWED_HOSTS env vars must be set before api.main is
imported, because it calls get_settings() at import time: production mode
requires SECRET_KEY, and TrustedHostMiddleware is built from that read.
"""

from __future__ import annotations

import concurrent.futures
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver, and api.main reads allowed_hosts at import.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "*.localhost", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_state, close_state
from auth.hashing import SecretHasher
from auth.models import User
from auth.store import UserStore
from core.config import Settings

TEST_SECRET = "sendrec-test-secret-key-0123456789abcdef"
TEST_BASE_URL = "https://app.sendrec.test"
DEFAULT_PASSWORD = "correct-horse-42"


def memory_db_url(prefix: str = "test") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_url": memory_db_url("api"),
        "base_url": TEST_BASE_URL,
        # TestClient talks plain HTTP; a Secure cookie would never be sent back.
        "secure_cookies": False,
        "bcrypt_rounds": 4,
        "allowed_hosts": ["localhost", "127.0.0.1", "*.localhost", "testserver"],
    }
    values.update(overrides)
    return Settings(**values)


def token_from_link(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    kind: str
    to: str
    link: str
    org_name: str = ""
    inviter_name: str = ""

    @property
    def token(self) -> str:
        return token_from_link(self.link)


class RecordingEmailSender:
    """EmailSender that records messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []

    def send_password_reset(self, to_email: str, to_name: str, reset_link: str) -> None:
        self.sent.append(SentEmail("password_reset", to_email, reset_link))

    def send_confirmation(self, to_email: str, to_name: str, confirm_link: str) -> None:
        self.sent.append(SentEmail("confirmation", to_email, confirm_link))

    def send_org_invite(self, to_email: str, org_name: str, inviter_name: str, accept_link: str) -> None:
        self.sent.append(SentEmail("org_invite", to_email, accept_link, org_name, inviter_name))

    def last(self, kind: str, to: str) -> SentEmail:
        for email in reversed(self.sent):
            if email.kind == kind and email.to == to:
                return email
        raise AssertionError(f"no {kind} email sent to {to}")

    def count(self, kind: str, to: str) -> int:
        return sum(1 for e in self.sent if e.kind == kind and e.to == to)


class InlineExecutor(concurrent.futures.Executor):
    """Runs submitted work immediately so its effects are visible on return."""

    def submit(self, fn, /, *args, **kwargs):
        future: concurrent.futures.Future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_db_url("unit"))
    yield store
    store.close()


@pytest.fixture(scope="session")
def hasher() -> SecretHasher:
    return SecretHasher(TEST_SECRET, bcrypt_rounds=4)


@pytest.fixture
def make_user(user_store, hasher):
    """Return a function that inserts a user directly and returns it."""

    def _make(email: str, password: str = DEFAULT_PASSWORD, name: str = "Test User", verified: bool = True) -> User:
        user_id = user_store.create_user(
            User(email=email, name=name, hashed_password=hasher.hash_password(password), email_verified=verified)
        )
        return user_store.get_by_id(user_id)

    return _make


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, mailer: RecordingEmailSender):
    """Return a lifespan that wires test settings, the fake mailer and the inline executor."""

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, settings, email_sender=mailer, executor=InlineExecutor())
        yield
        close_state(app)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingEmailSender], None, None]:
    """Yield (client, mailer) for integration tests.

    One TestClient and one database per test module. Rate limiting is off
    here; tests that exercise it switch it back on explicitly.
    """
    mailer = RecordingEmailSender()
    app.router.lifespan_context = _patch_lifespan(make_settings(), mailer)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    limiter.enabled = True
    limiter.reset()


@pytest.fixture(scope="module")
def signup(api_client):
    """Return a function that creates a confirmed account and logs it in.

    The function returns the access token. Each call must use a new email.
    Login sets the refresh cookie on the shared client, so the last signup
    owns the cookie jar.
    """
    client, mailer = api_client

    def _signup(email: str, password: str = DEFAULT_PASSWORD, name: str = "Test User") -> str:
        resp = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 201, resp.text
        token = mailer.last("confirmation", email.lower()).token
        resp = client.post("/api/auth/confirm-email", json={"token": token})
        assert resp.status_code == 200, resp.text
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    return _signup


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def auth_headers():
    return bearer
