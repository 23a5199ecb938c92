"""
api/routes/v1/roles.py -- Roles and role assignments.

Routes:
  GET    /api/v1/role                              -- caller's own roles (AuthRequired)
  GET    /api/v1/roles                             -- paginated list (AdminOnly)
  POST   /api/v1/roles                             -- create role (AdminOnly)
  GET    /api/v1/roles/{role_id}                   -- one role (AdminOnly)
  DELETE /api/v1/roles/{role_id}                   -- delete role + assignments (AdminOnly)
  GET    /api/v1/users/{user_id}/roles             -- a user's roles (AdminOnly)
  POST   /api/v1/users/{user_id}/roles             -- grant a role (AdminOnly)
  PUT    /api/v1/users/{user_id}/role              -- make a role the only one (AdminOnly)
  DELETE /api/v1/users/{user_id}/roles/{role_id}   -- revoke a role (AdminOnly)

The seeded roles (pelanggan, admin) cannot be deleted.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import ErrorDetail, MessageResponse, Page, RoleAssign, RoleCreate, RoleResponse
from api.pagination import Pagination, get_pagination
from auth.dependencies import get_current_user, require_admin
from auth.models import SEED_ROLES, User
from auth.store import UserStore

logger = logging.getLogger("blueink.api")

router = APIRouter()


def _not_found(what: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"{what} not found.").model_dump(),
    )


def _require_user_and_role(store: UserStore, user_id: int, role_id: int) -> None:
    if store.get_by_id(user_id) is None:
        raise _not_found("User")
    if store.get_role(role_id) is None:
        raise _not_found("Role")


@router.get("/role", response_model=list[RoleResponse])
def my_roles(request: Request, current_user: User = Depends(get_current_user)) -> list[RoleResponse]:
    """Return the roles held by the authenticated caller."""
    store: UserStore = request.app.state.user_store
    return [RoleResponse.from_role(r) for r in store.get_user_roles(current_user.id)]


# ---------------------------------------------------------------------------
# Role catalogue
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=Page[RoleResponse])
def list_roles(
    request: Request,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(require_admin),
) -> Page[RoleResponse]:
    store: UserStore = request.app.state.user_store
    roles = store.list_roles(limit=pagination.limit, offset=pagination.offset)
    return Page[RoleResponse].build(
        [RoleResponse.from_role(r) for r in roles],
        store.count_roles(),
        pagination.page,
        pagination.limit,
        request.url.path,
    )


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    current_user: User = Depends(require_admin),
) -> RoleResponse:
    store: UserStore = request.app.state.user_store
    try:
        role_id = store.create_role(body.name)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="role_exists", message="A role with that name already exists.").model_dump(),
        ) from exc
    logger.info("Admin %s created role %r", current_user.id, body.name)
    return RoleResponse.from_role(store.get_role(role_id))


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(require_admin),
) -> RoleResponse:
    role = request.app.state.user_store.get_role(role_id)
    if role is None:
        raise _not_found("Role")
    return RoleResponse.from_role(role)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    store: UserStore = request.app.state.user_store
    role = store.get_role(role_id)
    if role is None:
        raise _not_found("Role")
    if role.name in SEED_ROLES:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="protected_role", message=f"Role {role.name!r} cannot be deleted.").model_dump(),
        )
    store.delete_role(role_id)
    logger.info("Admin %s deleted role %r", current_user.id, role.name)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/roles", response_model=list[RoleResponse])
def get_user_roles(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> list[RoleResponse]:
    store: UserStore = request.app.state.user_store
    if store.get_by_id(user_id) is None:
        raise _not_found("User")
    return [RoleResponse.from_role(r) for r in store.get_user_roles(user_id)]


@router.post("/users/{user_id}/roles", response_model=MessageResponse, status_code=201)
def assign_role(
    request: Request,
    user_id: int,
    body: RoleAssign,
    current_user: User = Depends(require_admin),
) -> MessageResponse:
    """Grant a role in addition to the ones the user already holds."""
    store: UserStore = request.app.state.user_store
    _require_user_and_role(store, user_id, body.role_id)
    if not store.assign_role(user_id, body.role_id):
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="already_assigned", message="User already has this role.").model_dump(),
        )
    logger.info("Admin %s granted role %s to user %s", current_user.id, body.role_id, user_id)
    return MessageResponse(message="Role assigned.")


@router.put("/users/{user_id}/role", response_model=MessageResponse)
def replace_role(
    request: Request,
    user_id: int,
    body: RoleAssign,
    current_user: User = Depends(require_admin),
) -> MessageResponse:
    """Replace all of the user's roles with a single one."""
    store: UserStore = request.app.state.user_store
    _require_user_and_role(store, user_id, body.role_id)
    store.replace_roles(user_id, body.role_id)
    logger.info("Admin %s set role %s as the only role of user %s", current_user.id, body.role_id, user_id)
    return MessageResponse(message="Role updated.")


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def remove_role(
    request: Request,
    user_id: int,
    role_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    store: UserStore = request.app.state.user_store
    if not store.remove_role(user_id, role_id):
        raise _not_found("Role assignment")
    logger.info("Admin %s revoked role %s from user %s", current_user.id, role_id, user_id)
    return Response(status_code=204)
