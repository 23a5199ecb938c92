"""
auth/csrf.py -- Double-submit-cookie CSRF protocol.

A fresh random token is minted at login (and on refresh / OAuth login) and set
as the csrf_token cookie. The cookie is deliberately readable by JavaScript:
the frontend copies it into the X-CSRF-Token header on every mutating request.
A cross-site attacker can make the browser send the cookie but cannot read it,
so it cannot produce the matching header.

There is no server-side storage. A request is valid when the header is
present and equals the cookie. The header is required on its own -- falling
back to the cookie value when the header is missing would make the check
compare the cookie with itself and accept every forged request.

Login, register and the password-reset endpoints are exempt: they precede
authentication, so there is no session to protect and no cookie yet.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

import hmac
import secrets

from core.config import get_settings
from core.errors import Forbidden

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

EXEMPT_PATHS = frozenset(
    {
        "/api/v1/auth/login",
        "/api/v1/auth/register",
        "/api/v1/auth/forgot-password",
        "/api/v1/auth/reset-password",
    }
)


class CSRFRejected(Forbidden):
    code = "csrf_failed"
    message = "Missing or invalid CSRF token."


def generate_csrf_token() -> str:
    """Return a new 256-bit CSRF token as 64 hex characters."""
    return secrets.token_hex(32)


def check_csrf(method: str, path: str, cookie_token: str | None, header_token: str | None) -> None:
    """Admit or reject one request. Raises CSRFRejected on rejection.

    Decision order:
      1. Safe (read-only) method -- always allowed.
      2. Exempt path -- allowed.
      3. No cookie -- rejected (fail closed).
      4. No header -- rejected; the cookie is never used as a stand-in.
      5. Constant-time comparison of cookie and header.
    """
    if method.upper() in SAFE_METHODS:
        return
    if path in EXEMPT_PATHS:
        return
    if not cookie_token:
        raise CSRFRejected("CSRF cookie missing.", code="csrf_missing")
    if not header_token:
        raise CSRFRejected("CSRF header missing.", code="csrf_missing")
    if not hmac.compare_digest(cookie_token.encode("utf-8"), header_token.encode("utf-8")):
        raise CSRFRejected("CSRF token mismatch.", code="csrf_mismatch")


def set_csrf_cookie(response, token: str) -> None:
    """Set the CSRF cookie. httponly=False -- the frontend must read it."""
    response.set_cookie(
        CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        samesite="lax",
        secure=get_settings().secure_cookies,
        path="/",
    )


def clear_csrf_cookie(response) -> None:
    response.delete_cookie(CSRF_COOKIE_NAME, path="/")
