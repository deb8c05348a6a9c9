"""
tests/conftest.py -- Shared test fixtures for ShareNote.

This module provides:
  - RecordingMailer: captures outgoing verification emails instead of sending
  - kv_url(): unique named shared-memory SQLite URL per caller
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: module-scoped (client, mailer, kv) for API integration tests
  - register_user: drives send-verification -> verify-email -> register

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the store runs every query in a worker thread. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables are set before any project import: auth/tokens.py and
api/limiter.py read get_settings() at module load.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: configure Settings before any auth/core/api import.
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-signing-key-for-sharenote-suite-0123456789"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECURE_COOKIES"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ALLOWED_HOSTS"] = "testserver,localhost"
os.environ["ADMIN_USER_IDS"] = "admin-account-id"
os.environ["MODERATION_API_KEY"] = ""
os.environ["QUOTE_API_KEY"] = ""
os.environ["LOCAL_BANNED_TERMS"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.models import Account
from auth.service import AccountService
from auth.store import CredentialStore
from auth.verification import EphemeralCodeIssuer
from core.config import get_settings
from kv.store import SQLKeyValueStore
from notes.moderation import ContentModerator
from notes.service import NoteService

BANNED_TERM = "forbiddenword"
CAPTCHA = "image-captcha-test-proof"

_CODE_RE = re.compile(r">(\d{6})<")


class RecordingMailer:
    """Mailer that keeps every message in memory. fail=True simulates an SMTP outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise OSError("SMTP connection refused")
        self.sent.append((to, subject, html_body))

    def last_code(self, to: str) -> str:
        for recipient, _subject, body in reversed(self.sent):
            if recipient == to:
                match = _CODE_RE.search(body)
                assert match, "verification email carries no 6-digit code"
                return match.group(1)
        raise AssertionError(f"no email sent to {to}")


def kv_url(label: str) -> str:
    return f"sqlite:///file:test_kv_{label}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_moderator() -> ContentModerator:
    return ContentModerator(local_terms=[BANNED_TERM])


def _patch_lifespan(kv: SQLKeyValueStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Uses the same wire_services() as production, over the test store, the
    recording mailer and a local-list moderator (no network calls).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, kv, mailer, make_moderator(), get_settings())
        app.state.purge_task = None
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingMailer, SQLKeyValueStore], None, None]:
    """Yield (client, mailer, kv) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    """
    kv = SQLKeyValueStore(kv_url("api"))
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(kv, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer, kv

    asyncio.run(kv.close())


@pytest.fixture
def register_user(api_client) -> Callable[..., str]:
    """Return a helper that registers an account over HTTP and returns its session token.

    Cookies are cleared afterwards so later requests authenticate only with
    the Bearer header the test chooses to send.
    """
    client, mailer, _kv = api_client

    def _register(username: str, email: str, password: str = "secret1") -> str:
        client.cookies.clear()
        resp = client.post("/api/v1/auth/send-verification", json={"email": email, "type": "register"})
        assert resp.status_code == 200, resp.text
        code = mailer.last_code(email)
        resp = client.post("/api/v1/auth/verify-email", json={"email": email, "code": code, "type": "register"})
        assert resp.status_code == 200, resp.text
        exchange = resp.json()["data"]["exchange_token"]
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "username": username,
                "password": password,
                "email": email,
                "exchange_token": exchange,
                "captcha_token": CAPTCHA,
            },
        )
        assert resp.status_code == 201, resp.text
        token = resp.cookies.get("auth-token")
        assert token
        client.cookies.clear()
        return token

    return _register


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Service-level fixture -- no HTTP, each scenario runs under asyncio.run()
# ---------------------------------------------------------------------------


@dataclass
class Services:
    kv: SQLKeyValueStore
    store: CredentialStore
    codes: EphemeralCodeIssuer
    accounts: AccountService
    notes: NoteService
    mailer: RecordingMailer

    async def register(self, username: str, email: str, password: str = "secret1") -> tuple[Account, str]:
        """Full registration flow: issue code, verify it, register with the exchange token."""
        await self.codes.issue_code("register", email)
        exchange = await self.codes.verify_code("register", email, self.mailer.last_code(email))
        assert exchange is not None
        return await self.accounts.register(username, password, email, exchange, CAPTCHA)


@pytest.fixture
def services() -> Generator[Services, None, None]:
    kv = SQLKeyValueStore(kv_url("svc"))
    mailer = RecordingMailer()
    store = CredentialStore(kv)
    codes = EphemeralCodeIssuer(kv, mailer, send_timeout=5.0)
    yield Services(
        kv=kv,
        store=store,
        codes=codes,
        accounts=AccountService(store, codes, admin_ids=frozenset({"admin-account-id"})),
        notes=NoteService(store, make_moderator()),
        mailer=mailer,
    )
    asyncio.run(kv.close())
