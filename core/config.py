"""
core/config.py -- BlueInk settings, read from the environment and an optional .env.

get_settings() builds Settings on first call and caches it (lru_cache), so
every module sees one object. Env var names are the upper-cased field names:
DATABASE_URL, AUTH_RATE_LIMIT, IP_BLACKLIST and so on. .env.example lists
them all.

Secret key policy (validate_secret_key):
  DEBUG=true with no SECRET_KEY -> a random key is generated and a warning is
      logged. Sessions die with the process.
  DEBUG=false with no SECRET_KEY -> startup fails.
  Any key under 32 characters -> startup fails. The key signs JWTs and the
      OAuth session cookie.

Only the composition root (api/main.py lifespan) hands the key to
TokenService. Rate limits, cookie flags and the bcrypt work factor are read
here by the modules that need them.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/ or profiles/.
"""

import json
import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("blueink.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'blueink.db'}"
_DEFAULT_MEDIA_DIR = str(Path(__file__).resolve().parent.parent / "media")


class Settings(BaseSettings):
    """Every tunable of the service. All fields have defaults except the
    secret key outside DEBUG mode.

    List-valued fields (cors_origins, ip_whitelist, ...) accept either a JSON
    array or a comma-separated string, e.g. IP_BLACKLIST=1.2.3.4,10.0.0.0/8.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_name: str = "BlueInk API"
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Per-call ceiling for storage work. A call that exceeds it is an
    # internal error, never retried.
    storage_timeout_seconds: int = 5

    # Uploaded avatars are written under media_dir and served at media_url.
    media_dir: str = _DEFAULT_MEDIA_DIR
    media_url: str = "/media"
    max_avatar_bytes: int = 2 * 1024 * 1024

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    reset_token_expire_seconds: int = 3600
    bcrypt_rounds: int = 12
    default_role: str = "pelanggan"

    # ------------------------------------------------------------------
    # Captcha
    # ------------------------------------------------------------------

    captcha_ttl_seconds: int = 300
    captcha_length: int = 5

    # ------------------------------------------------------------------
    # Rate limiting (slowapi / limits notation)
    # ------------------------------------------------------------------

    auth_rate_limit: str = "5/minute"
    api_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Network perimeter
    # ------------------------------------------------------------------

    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost:3000"]
    allowed_hosts: Annotated[list[str], NoDecode] = ["*"]
    ip_whitelist: Annotated[list[str], NoDecode] = []
    ip_blacklist: Annotated[list[str], NoDecode] = []

    # ------------------------------------------------------------------
    # OAuth (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""

    # ------------------------------------------------------------------
    # SMTP (optional -- unconfigured means emails are logged, not sent)
    # ------------------------------------------------------------------

    email_host: str = ""
    email_port: int = 587
    email_host_user: str = ""
    email_host_password: str = ""
    default_from_email: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("cors_origins", "allowed_hosts", "ip_whitelist", "ip_blacklist", mode="before")
    @classmethod
    def split_csv(cls, value):
        """Accept comma-separated strings in addition to JSON arrays."""
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate or require SECRET_KEY, and bound BCRYPT_ROUNDS to 4..31."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError("SECRET_KEY must be set unless DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings. Tests call get_settings.cache_clear() to re-read the env."""
    return Settings()
