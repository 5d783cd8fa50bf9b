"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - RecordingMailer: stands in for BackgroundMailer and keeps every send
  - make_engine(): isolated named in-memory SQLite database with the schema
  - stores / auth_service_factory: unit-test wiring of the auth core
  - make_client(): TestClient over the real app with a patched lifespan
  - api_client: module-scoped client with default settings (both gates off)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

DEBUG must be set before any api/core import so get_settings() auto-generates
SECRET_KEY in dev mode rather than raising ValueError. LOGIN_RATE_LIMIT is
raised so the suite's many logins from one client never hit a 429.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass

# CRITICAL: Set before any api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, bootstrap, build_state
from auth.otp import OTPStore
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import OAuthAccountStore, RoleStore, UserStore, create_db_engine
from auth.tokens import TokenCodec
from cache.store import MemoryStore
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
SUPERADMIN_EMAIL = "root@example.org"
SUPERADMIN_PASSWORD = "RootPass123!"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Captures fire-and-forget sends instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_verification_email(self, to: str, code: str) -> None:
        self.sent.append(("verification", to, code))

    def send_two_factor_email(self, to: str, code: str) -> None:
        self.sent.append(("2fa", to, code))

    def send_welcome_email(self, to: str, name: str) -> None:
        self.sent.append(("welcome", to, name))

    def shutdown(self, wait: bool = True) -> None:
        pass

    def of_kind(self, kind: str) -> list[tuple[str, str, str]]:
        return [s for s in self.sent if s[0] == kind]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_engine(suffix: str | None = None):
    """Create an engine on a fresh named shared-memory SQLite database."""
    name = suffix or uuid.uuid4().hex
    return create_db_engine(f"sqlite:///file:test_gatehouse_{name}?mode=memory&cache=shared&uri=true")


@dataclass
class Stores:
    engine: object
    users: UserStore
    roles: RoleStore
    sessions: SessionStore
    oauth_accounts: OAuthAccountStore
    kv: MemoryStore
    otp: OTPStore
    mailer: RecordingMailer
    codec: TokenCodec


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    """Fresh database with default roles seeded, plus in-memory KV and mailer."""
    engine = make_engine()
    roles = RoleStore(engine)
    roles.seed_default_roles()
    kv = MemoryStore()
    bundle = Stores(
        engine=engine,
        users=UserStore(engine),
        roles=roles,
        sessions=SessionStore(engine),
        oauth_accounts=OAuthAccountStore(engine),
        kv=kv,
        otp=OTPStore(kv),
        mailer=RecordingMailer(),
        codec=TokenCodec(TEST_SECRET, issuer="gatehouse", access_ttl=3600, refresh_ttl=86400),
    )
    yield bundle
    engine.dispose()


@pytest.fixture
def auth_service_factory(stores: Stores):
    """Return a callable building an AuthService over the shared test stores."""

    def factory(**flags) -> AuthService:
        return AuthService(
            stores.users,
            stores.roles,
            stores.sessions,
            stores.otp,
            stores.codec,
            stores.mailer,
            oauth_accounts=stores.oauth_accounts,
            **flags,
        )

    return factory


# ---------------------------------------------------------------------------
# App helpers
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, engine, kv: MemoryStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the given test resources into app.state through the same
    build_state()/bootstrap() the real lifespan uses, so routes see isolated
    test data and no network connection (Redis, SMTP) is ever opened.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, settings, engine, kv, mailer)
        bootstrap(app, settings)
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    mailer: RecordingMailer
    kv: MemoryStore
    settings: Settings

    def login(self, email: str, password: str) -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    def register(self, name: str, email: str, password: str = "secret1") -> dict:
        resp = self.client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 201, resp.text
        return resp.json()

    def superadmin_headers(self) -> dict:
        token = self.login(SUPERADMIN_EMAIL, SUPERADMIN_PASSWORD)["access_token"]
        return {"Authorization": f"Bearer {token}"}


@contextmanager
def make_client(**overrides) -> Generator[ApiHarness, None, None]:
    """Start the real app on an isolated database with the given Settings overrides."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "use_memory_cache": True,
        "superadmin_email": SUPERADMIN_EMAIL,
        "superadmin_password": SUPERADMIN_PASSWORD,
        "login_rate_limit": "10000/minute",
    }
    values.update(overrides)
    settings = Settings(**values)
    engine = make_engine()
    kv = MemoryStore()
    mailer = RecordingMailer()

    app.router.lifespan_context = _patch_lifespan(settings, engine, kv, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, mailer=mailer, kv=kv, settings=settings)

    engine.dispose()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def client_factory():
    """make_client for modules that need their own Settings overrides."""
    return make_client


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Harness with email verification and 2FA both disabled."""
    with make_client() as harness:
        yield harness
