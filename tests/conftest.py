"""
tests/conftest.py -- Shared test fixtures for authgate tests.

This module provides:
  - FAST_HASHER: Argon2id with minimal cost parameters so the suite stays fast
  - build_test_service(): AuthService over fresh in-memory stores + MockEmailClient
  - _patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient over the real app, with its MockEmailClient
  - fake_redis: dict-backed stand-in for redis.asyncio.Redis

Design: every store is the in-memory backend. The SQL, SQLite and Redis
backends have their own unit tests; the HTTP tests only need a service
whose state is isolated per test module.

secure_cookies is off in the test Settings: TestClient talks to
http://testserver, and a Secure cookie would never be sent back over plain
http, so the jwt cookie could not round-trip through the client cookie jar.

The DEBUG env var must be set before any core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.mailer import MockEmailClient
from auth.password import Argon2PasswordHasher
from auth.service import AuthService
from auth.store import InMemoryUserStore
from auth.tokens import TokenIssuer
from cache.challenge import InMemoryTwoFACodeStore
from cache.revocation import InMemoryRevokedTokenStore
from core.config import Settings

SECRET_KEY = "test-secret-key-that-is-at-least-32-characters"

# memory_cost=8 KiB is the Argon2 minimum for parallelism=1.
FAST_HASHER = Argon2PasswordHasher(memory_cost=8, time_cost=1, parallelism=1)


# ---------------------------------------------------------------------------
# Service helpers
# ---------------------------------------------------------------------------


def build_test_service(
    email_client: MockEmailClient | None = None,
    token_ttl_seconds: int = 600,
    two_fa_code_ttl_seconds: int = 600,
    two_fa_code_store=None,
    revoked_store=None,
) -> AuthService:
    """AuthService over fresh in-memory stores, unless other stores are passed.

    The stores are reachable through the service for assertions:
    service.user_store, service.two_fa_code_store, service.issuer.revoked_store,
    service.email_client.
    """
    if two_fa_code_store is None:
        two_fa_code_store = InMemoryTwoFACodeStore(ttl_seconds=two_fa_code_ttl_seconds)
    if revoked_store is None:
        revoked_store = InMemoryRevokedTokenStore()
    return AuthService(
        user_store=InMemoryUserStore(FAST_HASHER),
        two_fa_code_store=two_fa_code_store,
        issuer=TokenIssuer(SECRET_KEY, token_ttl_seconds, revoked_store),
        email_client=email_client or MockEmailClient(),
    )


def _patch_lifespan(service: AuthService, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel, as in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.auth_service = service
        purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, MockEmailClient], None, None]:
    """Yield (client, email_client) for API integration tests.

    Tests read emailed 2FA codes back out of email_client. The client keeps a
    cookie jar across requests, so tests that depend on which token is
    presented clear it first.
    """
    email_client = MockEmailClient()
    service = build_test_service(email_client)
    settings = Settings(debug=True, secret_key=SECRET_KEY, secure_cookies=False)

    app.router.lifespan_context = _patch_lifespan(service, settings)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, email_client


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> Argon2PasswordHasher:
    return FAST_HASHER


@pytest.fixture
def make_service():
    """Factory fixture: make_service(email_client=None, token_ttl_seconds=600, ...)."""
    return build_test_service


class FakeRedis:
    """The slice of redis.asyncio.Redis the stores use, over a dict.

    Every command yields to the event loop first, so two coroutines issuing
    commands interleave the way two requests against a real server do. A
    command itself is atomic, as on a real server. eval() understands only
    the compare-and-delete script of cache.challenge. TTLs are ignored.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def get(self, key):
        await asyncio.sleep(0)
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        await asyncio.sleep(0)
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def delete(self, key):
        await asyncio.sleep(0)
        return 1 if self.data.pop(key, None) is not None else 0

    async def exists(self, key):
        await asyncio.sleep(0)
        return int(key in self.data)

    async def eval(self, script, numkeys, *args):
        await asyncio.sleep(0)
        (key,), (expected,) = args[:numkeys], args[numkeys:]
        if self.data.get(key) == expected:
            del self.data[key]
            return 1
        return 0

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
