"""
api/routes/v1/oauth.py -- Google OAuth login for the BlueInk API.

Routes:
  GET /api/v1/oauth/google/login     -- redirect the browser to Google
  GET /api/v1/oauth/google/callback  -- code exchange -> local identity -> tokens

The callback maps the verified Google email onto exactly one local account.
A first login provisions the account with the default role and no local
password; the store resolves concurrent first logins to the same row. The
response is the same token payload and cookie set as password login.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.routes.v1.auth import issue_session
from auth.oauth import get_enabled_providers, get_oauth_user_info
from auth.store import UserStore
from core.config import get_settings
from core.errors import NotFound, Unauthorized
from core.mailer import redact_email

logger = logging.getLogger("blueink.auth.oauth")

router = APIRouter()

_PROVIDER = "google"


def _google_client(request: Request):
    enabled = {p["name"] for p in get_enabled_providers()}
    if _PROVIDER not in enabled:
        raise NotFound("Google login is not configured.", code="provider_disabled")
    return request.app.state.oauth.create_client(_PROVIDER)


@router.get("/oauth/google/login")
async def google_login(request: Request) -> RedirectResponse:
    """Redirect to Google's consent page. authlib stores the state in the session."""
    client = _google_client(request)
    redirect_uri = get_settings().google_redirect_uri or str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/oauth/google/callback", name="google_callback")
async def google_callback(request: Request) -> JSONResponse:
    """Exchange the authorization code and log the matching local user in.

    Flow:
      1. Exchange code for token (authlib checks the session state).
      2. Extract the verified email -- unverified emails are rejected.
      3. Get or create the local account for that email.
      4. Reject inactive accounts.
      5. Issue tokens and cookies exactly like password login.
    """
    client = _google_client(request)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("Google token exchange failed: %s", exc)
        raise Unauthorized("OAuth authentication failed.", code="oauth_failed") from exc

    try:
        email, _subject = get_oauth_user_info(token)
    except ValueError as exc:
        logger.warning("Google login rejected: %s", exc)
        raise Unauthorized("OAuth email is missing or unverified.", code="oauth_unverified") from exc

    user_store: UserStore = request.app.state.user_store
    user = user_store.provision_oauth_user(email, get_settings().default_role)
    if not user.is_active:
        raise Unauthorized("Account is disabled.", code="inactive_account")

    logger.info("OAuth login for user %s (%s)", user.id, redact_email(email))
    return issue_session(user.id, request.app.state.token_service)
