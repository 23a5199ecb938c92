"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and gating.

Token sources are checked in priority order:
  1. Authorization header -- API clients. If the header is present its scheme
     must be "Bearer"; any other scheme is a 401, not a fall-through.
  2. JWT cookie ("access_token") -- set by the browser login flow.

get_current_user() is AuthRequired: it validates the token through
app.state.token_service, binds the identity to request.state.user_id (read by
the audit middleware), and returns the active User.
require_admin() is AdminOnly and require_owner_or_admin() is OwnerOrAdmin.
The decisions themselves live in auth/access.py.

Storage failures while authorizing raise InternalError (500). They are never
turned into 401/403 -- a database outage must not look like "not allowed".

Layer rule: no imports from api/ or audit/. auth/dependencies.py may import
from fastapi (for Request) because this module is part of the FastAPI
dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.access import owner_or_admin_decision, require_admin_decision
from auth.models import ADMIN_ROLE, User
from auth.tokens import ACCESS, ACCESS_COOKIE
from core.errors import InternalError, Unauthorized

logger = logging.getLogger("blueink.auth")


def _extract_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if auth_header is not None:
        scheme, _, credentials = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            raise Unauthorized("Authorization header must use the Bearer scheme.", code="invalid_auth_scheme")
        return credentials.strip()

    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise Unauthorized()
    return token


def get_current_user(request: Request) -> User:
    """Require authentication. Raises 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _extract_token(request)
    user_id = request.app.state.token_service.validate(token, kind=ACCESS)
    request.state.user_id = user_id

    try:
        user = request.app.state.user_store.get_by_id(user_id)
    except SQLAlchemyError as exc:
        logger.exception("User lookup failed while authenticating user %s", user_id)
        raise InternalError() from exc

    if user is None or not user.is_active:
        raise Unauthorized("Account not found or disabled.", code="inactive_account")
    return user


def _is_admin(request: Request, user_id: int) -> bool:
    try:
        return request.app.state.user_store.has_role(user_id, ADMIN_ROLE)
    except SQLAlchemyError as exc:
        logger.exception("Role lookup failed for user %s", user_id)
        raise InternalError() from exc


def require_admin(request: Request, user: User = Depends(get_current_user)) -> User:
    """Require the admin role. 401 if unauthenticated, 403 if not admin."""
    require_admin_decision(_is_admin(request, user.id))
    return user


def require_owner_or_admin(user_id: int, request: Request, user: User = Depends(get_current_user)) -> User:
    """Allow the account owner (path param user_id) or any admin.

    The route must declare a {user_id} path parameter; FastAPI binds it here.
    """
    owner_or_admin_decision(request.state.user_id, user_id, _is_admin(request, user.id))
    return user
