"""
api/routes/v1/users.py -- User account CRUD.

Routes:
  GET    /api/v1/users             -- paginated list (AuthRequired)
  GET    /api/v1/users/{user_id}   -- one user (AuthRequired)
  POST   /api/v1/users             -- create a local account (AdminOnly)
  PUT    /api/v1/users/{user_id}   -- update email/password/is_active (OwnerOrAdmin)
  DELETE /api/v1/users/{user_id}   -- delete account, roles and profile (AdminOnly)

Guards:
  Only admins may change is_active.
  Admins cannot deactivate or delete their own account, so the last admin
  cannot lock everyone out by accident.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import ErrorDetail, Page, UserCreate, UserResponse, UserUpdate
from api.pagination import Pagination, get_pagination
from auth.dependencies import get_current_user, require_admin, require_owner_or_admin
from auth.models import ADMIN_ROLE, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

logger = logging.getLogger("blueink.api")

router = APIRouter()


def _with_roles(store: UserStore, user: User) -> UserResponse:
    user.roles = [r.name for r in store.get_user_roles(user.id)]
    return UserResponse.from_user(user)


def _user_not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message="User not found.").model_dump(),
    )


@router.get("/users", response_model=Page[UserResponse])
def list_users(
    request: Request,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
) -> Page[UserResponse]:
    """List user accounts, ordered by id."""
    store: UserStore = request.app.state.user_store
    total = store.count_users()
    users = store.list_users(limit=pagination.limit, offset=pagination.offset)
    return Page[UserResponse].build(
        [_with_roles(store, u) for u in users],
        total,
        pagination.page,
        pagination.limit,
        request.url.path,
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(user_id)
    if user is None:
        raise _user_not_found()
    return _with_roles(store, user)


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a local account. Admin only.

    The account gets body.role when given, otherwise the default role.
    """
    store: UserStore = request.app.state.user_store
    role_name = body.role or get_settings().default_role
    if store.get_role_by_name(role_name) is None:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="unknown_role", message=f"Role {role_name!r} does not exist.").model_dump(),
        )

    try:
        user_id = store.create_user(
            User(email=body.email, hashed_password=hash_password(body.password)), role_name=role_name
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="email_taken", message="Email already registered.").model_dump(),
        ) from exc
    logger.info("Admin %s created user %s", current_user.id, user_id)

    created = store.get_by_id(user_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail=ErrorDetail(code="internal_error", message="User not found after write.").model_dump(),
        )
    return _with_roles(store, created)


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    current_user: User = Depends(require_owner_or_admin),
) -> UserResponse:
    """Update an account. The owner may change email and password; admins may also toggle is_active."""
    store: UserStore = request.app.state.user_store
    if store.get_by_id(user_id) is None:
        raise _user_not_found()

    updates: dict = {}
    if body.email is not None:
        updates["email"] = body.email
    if body.password is not None:
        updates["hashed_password"] = hash_password(body.password)
    if body.is_active is not None:
        if not store.has_role(current_user.id, ADMIN_ROLE):
            raise HTTPException(
                status_code=403,
                detail=ErrorDetail(code="admin_required", message="Only admins may change is_active.").model_dump(),
            )
        if not body.is_active and user_id == current_user.id:
            raise HTTPException(
                status_code=400,
                detail=ErrorDetail(
                    code="self_deactivation", message="You cannot deactivate your own account."
                ).model_dump(),
            )
        updates["is_active"] = body.is_active

    if not updates:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="no_changes", message="No fields to update.").model_dump(),
        )

    try:
        store.update_user(user_id, **updates)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="email_taken", message="Email already registered.").model_dump(),
        ) from exc

    updated = store.get_by_id(user_id)
    if updated is None:
        raise _user_not_found()
    return _with_roles(store, updated)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an account with its role assignments and profile. Admin only."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="self_delete", message="You cannot delete your own account.").model_dump(),
        )
    store: UserStore = request.app.state.user_store
    if not store.delete_user(user_id):
        raise _user_not_found()
    request.app.state.profile_store.delete_by_user_id(user_id)
    logger.info("Admin %s deleted user %s", current_user.id, user_id)
    return Response(status_code=204)
