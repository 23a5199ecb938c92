"""
tests/conftest.py -- Shared test fixtures for BlueInk integration tests.

This module provides:
  - _make_test_stack(): isolated in-memory DBs for users, profiles and audit
  - _patch_lifespan(): wires the test stack into app.state, bypassing real startup
  - api: module-scoped TestClient plus the stores and services behind it
  - client: the same TestClient with its cookie jar emptied for each test
  - make_user / auth_headers / captcha_fields: factories used by route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
store gets its own name so audit writes from the recorder thread never
contend with user/profile queries on the same shared cache.

Environment variables must be set before any auth/core import: settings are
read once, and auth.tokens binds bcrypt rounds at import time.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "blueink-test-secret-key-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("API_RATE_LIMIT", "1000/minute")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-client-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:blueink_default?mode=memory&cache=shared&uri=true")
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="blueink-media-"))

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from audit.recorder import AuditRecorder
from audit.store import AuditStore
from auth.captcha import CaptchaStore
from auth.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, generate_csrf_token
from auth.models import ADMIN_ROLE, CUSTOMER_ROLE, User
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from core.config import get_settings
from core.mailer import Mailer
from profiles.store import ProfileStore

TEST_PASSWORD = "correct-horse-battery"
CAPTCHA_TEXT = "ABCDE"

# http.cookiejar files cookies for a dotless host under "<host>.local".
# Setting test cookies on the same domain lets server Set-Cookie headers
# replace them instead of creating a second, conflicting entry.
COOKIE_DOMAIN = "testserver.local"


@dataclass
class ApiStack:
    client: TestClient
    user_store: UserStore
    profile_store: ProfileStore
    audit_store: AuditStore
    audit_recorder: AuditRecorder
    token_service: TokenService
    captcha_store: CaptchaStore
    mailer: MagicMock


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stack(db_suffix: str) -> dict:
    """Create isolated named shared-memory stores and the services around them.

    Args:
        db_suffix: Unique string appended to each DB name so test modules
                   don't share state (the test module's name is used).
    """
    settings = get_settings()
    audit_store = AuditStore(db_url=_memory_url(f"test_audit_{db_suffix}"))
    mailer = MagicMock(spec=Mailer)
    mailer.is_configured = False
    mailer.send_password_reset.return_value = True
    return {
        "user_store": UserStore(db_url=_memory_url(f"test_users_{db_suffix}")),
        "profile_store": ProfileStore(db_url=_memory_url(f"test_profiles_{db_suffix}")),
        "audit_store": audit_store,
        "audit_recorder": AuditRecorder(audit_store, max_workers=1),
        "token_service": TokenService(
            settings.secret_key,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
            reset_ttl_seconds=settings.reset_token_expire_seconds,
        ),
        "captcha_store": CaptchaStore(),
        "mailer": mailer,
    }


def _patch_lifespan(stack: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test components into app.state so TestClient routes see
    isolated test DBs rather than the configured database. The OAuth registry
    is mocked to prevent real network calls to Google.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    The recorder and stores are closed by the fixture, not here, so a second
    TestClient in the same module does not shut them down early.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        for name, component in stack.items():
            setattr(app.state, name, component)
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with empty rate-limit counters."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(scope="module")
def api(request: pytest.FixtureRequest) -> Generator[ApiStack, None, None]:
    """Yield the running TestClient together with the components behind it.

    One client per test module for speed. The stores are real; only the
    mailer and the OAuth registry are mocks.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    stack = _make_test_stack(suffix)
    app.router.lifespan_context = _patch_lifespan(stack)

    with TestClient(app, raise_server_exceptions=True) as test_client:
        stack_obj = ApiStack(client=test_client, **stack)
        yield stack_obj

    # Tests may swap the recorder; close whichever one is current.
    stack_obj.audit_recorder.close()
    stack["audit_store"].close()
    stack["profile_store"].close()
    stack["user_store"].close()


@pytest.fixture
def client(api: ApiStack) -> TestClient:
    """The module's TestClient with no cookies left over from earlier tests."""
    api.client.cookies.clear()
    return api.client


@pytest.fixture
def make_user(api: ApiStack) -> Callable[..., tuple[int, str]]:
    """Factory: create a user directly in the store and mint an access token.

    Returns (user_id, access_token). Going around /auth/register keeps route
    tests clear of the auth rate limit.
    """

    def _make(email: str | None = None, *, admin: bool = False, active: bool = True) -> tuple[int, str]:
        email = email or f"user-{uuid.uuid4().hex[:12]}@blueink.io"
        uid = api.user_store.create_user(
            User(email=email, hashed_password=hash_password(TEST_PASSWORD), is_active=active), role_name=CUSTOMER_ROLE
        )
        if admin:
            api.user_store.assign_role_by_name(uid, ADMIN_ROLE)
        return uid, api.token_service.issue_access_token(uid)

    return _make


@pytest.fixture
def auth_headers(api: ApiStack) -> Callable[[str], dict]:
    """Factory: Bearer + matching CSRF header for a token.

    The CSRF header must equal the csrf_token cookie in the client's jar; a
    cookie is planted when the jar has none yet.
    """

    def _headers(token: str) -> dict:
        csrf = api.client.cookies.get(CSRF_COOKIE_NAME, domain=COOKIE_DOMAIN)
        if csrf is None:
            csrf = generate_csrf_token()
            api.client.cookies.set(CSRF_COOKIE_NAME, csrf, domain=COOKIE_DOMAIN)
        return {"Authorization": f"Bearer {token}", CSRF_HEADER_NAME: csrf}

    return _headers


@pytest.fixture
def captcha_fields(api: ApiStack) -> Callable[[], dict]:
    """Factory: register a known captcha challenge and return the body fields that solve it."""

    def _fields() -> dict:
        challenge_id = api.captcha_store.issue(CAPTCHA_TEXT, ttl=300)
        return {"captcha_id": challenge_id, "captcha_answer": CAPTCHA_TEXT}

    return _fields
