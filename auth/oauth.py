"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

build_oauth() returns an authlib OAuth registry with Google registered when
both client ID and secret are configured. The composition root stores it on
app.state.oauth so tests can replace the client with a mock.

Security notes:
  Email verification is mandatory. get_oauth_user_info() raises ValueError
  if the provider does not confirm the email is verified. An unverified
  address could belong to someone other than the person logging in, and the
  callback maps emails straight onto local accounts.

  OAuth state parameter (CSRF protection for the redirect round-trip) is
  handled by authlib automatically via Starlette SessionMiddleware. The
  session stores the state between the authorization redirect and the
  callback.

Supported providers:
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import Settings, get_settings

logger = logging.getLogger("blueink.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(settings: Settings | None = None) -> OAuth:
    """Return an OAuth registry with every configured provider registered."""
    cfg = settings or get_settings()
    oauth = OAuth()
    if cfg.google_client_id and cfg.google_client_secret:
        oauth.register(
            name="google",
            client_id=cfg.google_client_id,
            client_secret=cfg.google_client_secret,
            server_metadata_url=GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    return oauth


def get_enabled_providers(settings: Settings | None = None) -> list[dict]:
    """Return {"name", "label"} for every configured OAuth provider."""
    cfg = settings or get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


def get_oauth_user_info(token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a Google id_token response.

    The email claim is only accepted when email_verified is True. A missing
    email_verified claim is treated as unverified.

    Raises:
        ValueError: If a verified email cannot be confirmed.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return email.strip().lower(), subject_id
