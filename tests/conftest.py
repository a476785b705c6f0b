"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - FakeClock: a controllable UTC clock injected into every store
  - RecordingEmailSender: captures reset links instead of sending mail
  - engine / users / refresh_store / reset_store / sessions / service:
    unit-level fixtures over a private in-memory database
  - file_engine / run_concurrently: on-disk database and a barrier-released
    thread pool for atomicity tests
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: module-scoped (client, clock, mailer) for integration tests
  - client: the module TestClient with an empty cookie jar for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the integration client because TestClient runs route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG and SECURE_COOKIES must be set before any auth/core import: DEBUG so
get_settings() auto-generates SECRET_KEY, SECURE_COOKIES so the refresh
cookie is sent back over the http:// test transport.
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
import threading
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.db import create_auth_engine
from auth.refresh_tokens import RefreshTokenStore
from auth.reset_tokens import PasswordResetTokenStore
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore

RESET_LINK_BASE = "https://app.example.test/reset-password?token="


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class SentEmail:
    to_email: str
    name: str | None
    reset_link: str

    @property
    def token(self) -> str:
        return self.reset_link.rsplit("token=", 1)[1]


@dataclass
class RecordingEmailSender:
    """EmailSender that records every reset link it is asked to deliver."""

    sent: list[SentEmail] = field(default_factory=list)
    deliver: bool = True

    def send_password_reset(self, to_email: str, name: str | None, reset_link: str) -> bool:
        self.sent.append(SentEmail(to_email, name, reset_link))
        return self.deliver

    def last_for(self, email: str) -> SentEmail:
        matching = [m for m in self.sent if m.to_email == email]
        assert matching, f"no reset email recorded for {email}"
        return matching[-1]


# ---------------------------------------------------------------------------
# Unit-level fixtures -- one private database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """Engine over an on-disk database, for tests that write from several threads."""
    eng = create_auth_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


def _run_concurrently(fn, workers: int) -> list:
    """Call fn() from `workers` threads released together; return each outcome.

    An outcome is fn's return value or the exception it raised.
    """
    barrier = threading.Barrier(workers)

    def call():
        barrier.wait()
        try:
            return fn()
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(call) for _ in range(workers)]
        return [f.result(timeout=30) for f in futures]


@pytest.fixture
def run_concurrently():
    return _run_concurrently


@pytest.fixture
def users(engine, clock) -> UserStore:
    return UserStore(engine, clock=clock)


@pytest.fixture
def refresh_store(engine, clock) -> RefreshTokenStore:
    return RefreshTokenStore(engine, ttl_seconds=7 * 24 * 60 * 60, clock=clock)


@pytest.fixture
def reset_store(engine, clock) -> PasswordResetTokenStore:
    return PasswordResetTokenStore(engine, ttl_seconds=15 * 60, clock=clock)


@pytest.fixture
def sessions(refresh_store) -> SessionRegistry:
    return SessionRegistry(refresh_store)


@pytest.fixture
def mailer() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def service(users, refresh_store, reset_store, mailer) -> AuthService:
    return AuthService(
        users=users,
        refresh_tokens=refresh_store,
        reset_tokens=reset_store,
        email_sender=mailer,
        reset_link_base=RESET_LINK_BASE,
    )


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, clock: FakeClock, mailer: RecordingEmailSender):
    """Return an async context manager that replaces the real lifespan.

    Mirrors the production wiring but with test stores, a fake clock and a
    recording mailer. The purge_task is a long-sleeping coroutine so
    shutdown's .cancel() has a real asyncio.Task to act on.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = UserStore(engine, clock=clock)
        app.state.refresh_tokens = RefreshTokenStore(engine, clock=clock)
        app.state.reset_tokens = PasswordResetTokenStore(engine, clock=clock)
        app.state.session_registry = SessionRegistry(app.state.refresh_tokens)
        app.state.email_sender = mailer
        app.state.auth_service = AuthService(
            users=app.state.user_store,
            refresh_tokens=app.state.refresh_tokens,
            reset_tokens=app.state.reset_tokens,
            email_sender=mailer,
            reset_link_base=RESET_LINK_BASE,
        )
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, FakeClock, RecordingEmailSender], None, None]:
    """Yield (client, clock, mailer) for API integration tests.

    Each test module gets its own named in-memory database. The clock starts
    at real "now" so store timestamps and JWT exp claims agree.
    """
    db_name = f"test_auth_{request.module.__name__.rsplit('.', 1)[-1]}"
    # Holds the shared in-memory database open while pooled connections come and go.
    keeper = sqlite3.connect(f"file:{db_name}?mode=memory&cache=shared", uri=True)
    engine = create_auth_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    clock = FakeClock(start=datetime.now(timezone.utc))
    mailer = RecordingEmailSender()

    app.router.lifespan_context = _patch_lifespan(engine, clock, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock, mailer

    engine.dispose()
    keeper.close()


@pytest.fixture
def client(api_client) -> Generator[TestClient, None, None]:
    """The module's TestClient with an empty cookie jar for this test."""
    test_client, _, _ = api_client
    test_client.cookies.clear()
    yield test_client
    test_client.cookies.clear()
