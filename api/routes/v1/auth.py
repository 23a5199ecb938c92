"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register          -- captcha-gated account creation
  POST /api/v1/auth/login             -- captcha-gated password login; sets cookies
  POST /api/v1/auth/refresh           -- refresh cookie -> new token pair + CSRF token
  POST /api/v1/auth/logout            -- clears access, refresh and CSRF cookies
  POST /api/v1/auth/forgot-password   -- captcha-gated; emails a reset link
  POST /api/v1/auth/reset-password    -- reset token + new password
  GET  /api/v1/auth/providers         -- configured OAuth providers (public)

Security:
  Every endpoint that accepts credentials or tokens is rate-limited with the
  tighter auth limit (api.limiter.auth_limit).
  authenticate_user() provides timing equalization -- use it, never inline.
  Login responses carry Cache-Control: no-store.
  Captcha is verified before any credential work; a failed or missing
  captcha consumes the challenge and answers 400.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import auth_limit, limiter
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
)
from auth.csrf import clear_csrf_cookie, generate_csrf_token, set_csrf_cookie
from auth.models import User
from auth.oauth import get_enabled_providers
from auth.store import UserStore
from auth.tokens import (
    REFRESH,
    REFRESH_COOKIE,
    RESET,
    TokenService,
    authenticate_user,
    clear_auth_cookies,
    hash_password,
    set_auth_cookies,
)
from core.config import get_settings
from core.errors import BadRequest, Conflict, InternalError, NotFound, Unauthorized
from core.mailer import redact_email

logger = logging.getLogger("blueink.auth")

# Auth policy:
# - register, login, forgot-password, reset-password: public, CSRF-exempt
# - refresh, logout: CSRF-protected (the browser already holds cookies)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _verify_captcha(request: Request, captcha_id: str, captcha_answer: str) -> None:
    if not captcha_id or not captcha_answer:
        raise BadRequest("Captcha is required.", code="captcha_required")
    if not request.app.state.captcha_store.verify(captcha_id, captcha_answer):
        raise BadRequest("Captcha is wrong or expired.", code="captcha_invalid")


def issue_session(user_id: int, tokens: TokenService) -> JSONResponse:
    """Build the login response: token pair in body and cookies, fresh CSRF cookie.

    Shared by password login, refresh and the OAuth callback.
    """
    pair = tokens.issue_pair(user_id)
    csrf_token = generate_csrf_token()
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=int(tokens.access_ttl.total_seconds()),
            csrf_token=csrf_token,
        ).model_dump(),
    )
    set_auth_cookies(resp, pair, tokens)
    set_csrf_cookie(resp, csrf_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse)
@limiter.limit(auth_limit)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a local account with the default customer role.

    Duplicate emails are detected by the UNIQUE index, not a pre-check, so
    two concurrent registrations cannot both succeed. The account and its
    role are written in one transaction.
    """
    _verify_captcha(request, body.captcha_id, body.captcha_answer)
    user_store: UserStore = request.app.state.user_store

    hashed = hash_password(body.password)
    try:
        user_id = user_store.create_user(
            User(email=body.email, hashed_password=hashed), role_name=get_settings().default_role
        )
    except IntegrityError as exc:
        raise Conflict("Email already registered.", code="email_taken") from exc

    logger.info("Registered user %s (%s)", user_id, redact_email(body.email))
    return RegisterResponse(id=user_id, email=body.email)


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(auth_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set access, refresh and CSRF cookies.

    Returns the same generic error for an unknown email and a wrong password
    ("bad_credentials") to avoid leaking which emails are registered.
    """
    _verify_captcha(request, body.captcha_id, body.captcha_answer)
    user_store: UserStore = request.app.state.user_store

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password.", "detail": None}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    logger.info("User %s logged in", user.id)
    return issue_session(user.id, request.app.state.token_service)


@router.post("/auth/refresh", response_model=TokenResponse)
@limiter.limit(auth_limit)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh_token cookie for a new access+refresh pair.

    The previous refresh token is not revoked; it stays valid until its own
    expiry.
    """
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise Unauthorized("Refresh token missing.", code="refresh_missing")

    tokens: TokenService = request.app.state.token_service
    user_id = tokens.validate(token, kind=REFRESH)
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        raise Unauthorized("Account not found or disabled.", code="inactive_account")
    return issue_session(user_id, tokens)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the auth and CSRF cookies."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookies(resp)
    clear_csrf_cookie(resp)
    return resp


@router.get("/auth/providers")
async def list_providers() -> list[dict]:
    """Return the configured OAuth providers so the frontend can render buttons."""
    return get_enabled_providers()


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(auth_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a single-purpose reset link to a registered address.

    The link carries a reset-kind token; it cannot be used as an access token.
    """
    _verify_captcha(request, body.captcha_id, body.captcha_answer)
    user = request.app.state.user_store.get_by_email(body.email)
    if user is None:
        raise NotFound("Email is not registered.", code="email_not_found")

    tokens: TokenService = request.app.state.token_service
    settings = get_settings()
    reset_url = f"{settings.frontend_url.rstrip('/')}/reset-password?token={tokens.issue_reset_token(user.id)}"
    valid_minutes = int(tokens.reset_ttl.total_seconds() // 60)
    if not request.app.state.mailer.send_password_reset(user.email, reset_url, valid_minutes):
        raise InternalError("Failed to send email.", code="email_failed")

    logger.info("Password reset link issued for user %s", user.id)
    return MessageResponse(message="Password reset link sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(auth_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password using a token from the reset email."""
    user_id = request.app.state.token_service.validate(body.token, kind=RESET)
    updated = request.app.state.user_store.update_user(user_id, hashed_password=hash_password(body.new_password))
    if not updated:
        raise NotFound("User not found.")
    logger.info("Password reset for user %s", user_id)
    return MessageResponse(message="Password updated.")
