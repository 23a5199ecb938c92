"""
auth/tokens.py -- JWT token service, password hashing, and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, type (access | refresh |
       reset), iat and exp. TokenService is constructed by the composition
       root with an explicit signing key so tests can use per-test keys and
       nothing reads the key from a module global. Only HS256 is accepted on
       decode, which rules out "none" and RS/HS algorithm confusion.

       A token of one kind is never accepted where another kind is expected:
       a refresh token cannot authenticate an API call and a password-reset
       link cannot be replayed as a session.

  Passwords: bcrypt directly (no passlib wrapper) with a fixed work factor
       from Settings.bcrypt_rounds. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  Revocation: none. A leaked token stays valid until its exp. Refresh mints a
       new access+refresh pair and does not invalidate the old refresh token.

Layer rule: no imports from api/, audit/ or profiles/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings
from core.errors import BadRequest, InternalError, InvalidToken, MalformedClaims

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("blueink.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton.
# Only non-secret knobs are taken from here; the signing key is injected
# into TokenService.
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
RESET = "reset"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# bcrypt only looks at the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordTooLong(BadRequest):
    code = "password_too_long"
    message = "Password must be at most 72 bytes."


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises PasswordTooLong instead of letting bcrypt truncate silently: two
    passwords sharing a 72-byte prefix must not hash to interchangeable values.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > _BCRYPT_MAX_BYTES:
        raise PasswordTooLong()
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A wrong password is a plain False. A malformed stored hash raises
    ValueError -- that is a data problem, not a failed login, and must not be
    reported to the client as bad credentials.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > _BCRYPT_MAX_BYTES:
        return False
    return bcrypt.checkpw(encoded, hashed.encode("utf-8"))


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("blueink_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email or OAuth-only account: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any credential failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT token service
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """Issues and validates HS256-signed JWTs for a single signing key.

    Usage:
        tokens = TokenService(settings.secret_key)
        access = tokens.issue_access_token(42)
        user_id = tokens.validate(access)            # -> 42
        tokens.validate(access, kind=REFRESH)       # -> InvalidToken
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        reset_ttl_seconds: int = 3600,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty secret key")
        self._secret_key = secret_key
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.reset_ttl = timedelta(seconds=reset_ttl_seconds)

    def _issue(self, user_id: int, kind: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "type": kind,
            "iat": now,
            "exp": now + ttl,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.exception("Failed to sign %s token for user %s", kind, user_id)
            raise InternalError("Failed to issue token.") from exc

    def issue_access_token(self, user_id: int) -> str:
        return self._issue(user_id, ACCESS, self.access_ttl)

    def issue_refresh_token(self, user_id: int) -> str:
        return self._issue(user_id, REFRESH, self.refresh_ttl)

    def issue_reset_token(self, user_id: int) -> str:
        return self._issue(user_id, RESET, self.reset_ttl)

    def issue_pair(self, user_id: int) -> TokenPair:
        """Mint a fresh access+refresh pair (login, refresh rotation, OAuth)."""
        return TokenPair(
            access_token=self.issue_access_token(user_id),
            refresh_token=self.issue_refresh_token(user_id),
        )

    def validate(self, token: str, kind: str = ACCESS) -> int:
        """Verify a token and return its numeric subject.

        Raises InvalidToken on a bad signature, a non-HS256 header, a
        malformed or expired token, or a token of another kind. Raises
        MalformedClaims when the token verifies but user_id is absent or not
        an integer.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"require_exp": True},
            )
        except JWTError as exc:
            raise InvalidToken() from exc

        if payload.get("type") != kind:
            raise InvalidToken()

        user_id = payload.get("user_id")
        if isinstance(user_id, bool):
            raise MalformedClaims()
        if isinstance(user_id, int):
            return user_id
        if isinstance(user_id, float) and user_id.is_integer():
            return int(user_id)
        raise MalformedClaims()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, pair: TokenPair, tokens: TokenService) -> None:
    """Write the access and refresh tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read either cookie (XSS mitigation). The CSRF
        cookie set alongside them is the only one the frontend reads.
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so cookie and token expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=int(tokens.access_ttl.total_seconds()),
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=int(tokens.refresh_ttl.total_seconds()),
        path="/",
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")
