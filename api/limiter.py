"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that apply the tighter auth limit with @limiter.limit(auth_limit).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Counters are keyed by client IP and use the moving-window strategy, so a
burst that straddles a window boundary cannot get twice the allowance. Limits
are callables so they are read from Settings on every request -- tests can
change them with get_settings.cache_clear() without re-importing routes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def auth_limit() -> str:
    """Limit for login, register, refresh and the password-reset endpoints."""
    return get_settings().auth_rate_limit


def api_limit() -> str:
    """Default limit for every other route."""
    return get_settings().api_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[api_limit],
    storage_uri="memory://",
    strategy="moving-window",
    headers_enabled=False,
)
