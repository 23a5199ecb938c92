"""
api/middleware.py -- HTTP middleware for the BlueInk request pipeline.

Each function here is a Starlette "http" middleware (request, call_next) and
is registered by api/main.py. Order (outermost first):

  log_requests -> ip_filter -> CORS -> csrf_protect -> SlowAPI -> audit_requests

Middleware runs outside FastAPI's exception handlers, so a rejection is
returned as a ready-made error response (error_response()) rather than
raised.

Authentication and role/ownership checks are not middleware: they are
FastAPI dependencies (auth/dependencies.py) so each route declares its gate
next to its path. audit_requests wraps them and reads the identity they bind
to request.state.user_id after the handler returns.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from audit.models import AuditEntry
from auth.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, check_csrf
from core.config import get_settings
from core.errors import AppError, Forbidden

logger = logging.getLogger("blueink.api")

# Paths that precede authentication are not audited.
AUDIT_SKIP_PATHS = frozenset(
    {
        "/api/v1/auth/login",
        "/api/v1/auth/register",
        "/api/v1/auth/refresh",
        "/api/v1/auth/forgot-password",
        "/api/v1/auth/reset-password",
        "/api/v1/oauth/google/login",
        "/api/v1/oauth/google/callback",
        "/api/v1/captcha",
        "/api/v1/health",
    }
)


def error_response(exc: AppError, detail: str | None = None) -> JSONResponse:
    """Render an AppError as the shared ErrorResponse envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, detail=detail)).model_dump(),
    )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# IP filter
# ---------------------------------------------------------------------------


def _parse_rules(rules: Iterable[str]) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    networks = []
    for rule in rules:
        try:
            networks.append(ipaddress.ip_network(rule.strip(), strict=False))
        except ValueError:
            logger.warning("Ignoring invalid IP filter rule %r", rule)
    return networks


def ip_allowed(ip: str, whitelist: Iterable[str], blacklist: Iterable[str]) -> bool:
    """Decide whether a client address may reach the API.

    Rules are single addresses or CIDR blocks. The blacklist is checked
    first. A non-empty whitelist then admits only matching addresses. An
    unparseable client address passes only when there is no whitelist.
    """
    allow = _parse_rules(whitelist)
    deny = _parse_rules(blacklist)
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return not allow
    if any(addr in net for net in deny):
        return False
    if allow:
        return any(addr in net for net in allow)
    return True


async def ip_filter(request: Request, call_next):
    settings = get_settings()
    if settings.ip_whitelist or settings.ip_blacklist:
        ip = client_ip(request)
        if not ip_allowed(ip, settings.ip_whitelist, settings.ip_blacklist):
            logger.warning("Blocked request from %s to %s", ip, request.url.path)
            return error_response(Forbidden("Access denied.", code="ip_blocked"))
    return await call_next(request)


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


async def csrf_protect(request: Request, call_next):
    try:
        check_csrf(
            request.method,
            request.url.path,
            request.cookies.get(CSRF_COOKIE_NAME),
            request.headers.get(CSRF_HEADER_NAME),
        )
    except AppError as exc:
        logger.info("CSRF rejected %s %s: %s", request.method, request.url.path, exc.code)
        return error_response(exc)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


async def audit_requests(request: Request, call_next):
    """Record method, URL, status, caller and IP for every gated API request.

    The write is handed to app.state.audit_recorder and never delays or
    fails the response.
    """
    path = request.url.path
    if not path.startswith("/api/v1/") or path in AUDIT_SKIP_PATHS:
        return await call_next(request)

    response = await call_next(request)
    url = path + (f"?{request.url.query}" if request.url.query else "")
    recorder = getattr(request.app.state, "audit_recorder", None)
    if recorder is not None:
        entry = AuditEntry(
            user_id=getattr(request.state, "user_id", None),
            method=request.method,
            url=url,
            status=response.status_code,
            ip=client_ip(request),
        )
        try:
            recorder.record(entry)
        except RuntimeError as exc:
            # Executor already shut down (app is stopping).
            logger.warning("Audit entry dropped for %s %s: %s", entry.method, entry.url, exc)
    return response


# ---------------------------------------------------------------------------
# Request logging
#
# Pattern: Interceptor / Chain of Responsibility. We capture wall-clock time
# before and after call_next so we can report latency on every response.
# ---------------------------------------------------------------------------


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        client_ip(request),
    )
    return response
