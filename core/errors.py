"""
core/errors.py -- Application error taxonomy.

Every rejection the service produces maps to one of these classes. Each class
carries a stable HTTP status_code and a machine-readable code; api/main.py
turns any AppError into the shared ErrorResponse envelope. Lower layers
(auth/, audit/, profiles/) raise these instead of HTTPException so they stay
independent of the web framework.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/ or profiles/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that cross the HTTP boundary."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class BadRequest(AppError):
    status_code = 400
    code = "bad_request"
    message = "Malformed request."


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidToken(Unauthorized):
    """Signature, format, expiry or token kind check failed."""

    code = "invalid_token"
    message = "Invalid or expired token."


class MalformedClaims(Unauthorized):
    """Token verified but its subject claim is missing or not numeric."""

    code = "malformed_claims"
    message = "Token subject is missing or invalid."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "Access denied."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."


class TooManyRequests(AppError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."


class InternalError(AppError):
    """Storage, signing or coercion failure. Never downgraded to a deny."""
