"""
tests/conftest.py -- Shared test fixtures for marketauth.

This module provides:
  - FakeClock / RecordingSms / RecordingMailer: deterministic collaborators
  - make_settings(): Settings tuned for tests (cheap bcrypt, widget enabled)
  - gateway / make_gateway: fully wired AuthGateways on isolated in-memory databases
  - file_gateway: the same on a temporary SQLite file, for multi-threaded races
    (shared-cache memory databases do not hold up under concurrent writers)
  - _patch_lifespan(): wires a test gateway into app.state, bypassing real startup
  - client: TestClient over the real app, one fresh gateway per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and ALLOWED_HOSTS must be set before any core/auth/api import so
get_settings() auto-generates signing keys and TestClient's "testserver" host
passes TrustedHostMiddleware.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from unittest.mock import MagicMock

# CRITICAL: Set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.gateway import AuthGateway, build_gateway
from core.clock import utc_now
from core.config import Settings

BOT_TOKEN = "123456:test-widget-bot-token"
PHONE = "+998901234567"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSms:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, phone_number: str, message: str) -> str:
        self.sent.append((phone_number, message))
        return f"sms-{len(self.sent)}"

    def last_code(self, phone_number: str = PHONE) -> str:
        for phone, message in reversed(self.sent):
            if phone == phone_number:
                return message.rsplit(" ", 1)[-1]
        raise AssertionError(f"no SMS sent to {phone_number}")


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))

    def last_link(self) -> str:
        return self.sent[-1][2].rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Settings and gateway
# ---------------------------------------------------------------------------


def memory_url(prefix: str = "auth") -> str:
    return f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "database_url": memory_url(),
        "bcrypt_rounds": 4,
        "sms_enabled": True,
        "widget_bot_token": BOT_TOKEN,
        "secret_key": "a" * 32 + "access",
        "refresh_secret_key": "b" * 32 + "refresh",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sms() -> RecordingSms:
    return RecordingSms()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def make_gateway(clock, sms, mailer):
    """Factory: build_gateway(make_settings(**overrides)) sharing the test collaborators."""
    built: list[AuthGateway] = []

    def factory(**overrides) -> AuthGateway:
        gw = build_gateway(make_settings(**overrides), clock=clock, sms=sms, mailer=mailer)
        built.append(gw)
        return gw

    yield factory
    for gw in built:
        gw.close()


@pytest.fixture
def file_gateway(make_gateway, tmp_path) -> AuthGateway:
    """Gateway on a file-backed SQLite database, for tests that hit it from several threads."""
    return make_gateway(database_url=f"sqlite:///{tmp_path / 'auth.db'}")


@pytest.fixture
def gateway(settings, clock, sms, mailer) -> Generator[AuthGateway, None, None]:
    gw = build_gateway(settings, clock=clock, sms=sms, mailer=mailer)
    yield gw
    gw.close()


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def _patch_lifespan(gateway: AuthGateway):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test gateway into app.state so TestClient routes see
    the isolated test database. The OAuth registry is mocked to prevent real
    network calls.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.gateway = gateway
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(gateway) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh gateway per test."""
    app.router.lifespan_context = _patch_lifespan(gateway)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client
