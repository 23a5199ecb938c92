"""
api/routes/v1/profiles.py -- User profile endpoints.

Routes:
  GET    /api/v1/profile                   -- caller's own profile (AuthRequired)
  GET    /api/v1/profiles                  -- paginated list (AuthRequired)
  GET    /api/v1/profiles/{profile_id}     -- any profile by id (AdminOnly)
  GET    /api/v1/users/{user_id}/profile   -- a user's profile (AuthRequired)
  POST   /api/v1/users/{user_id}/profile   -- create (OwnerOrAdmin)
  PUT    /api/v1/users/{user_id}/profile   -- partial update (OwnerOrAdmin)
  DELETE /api/v1/users/{user_id}/profile   -- delete (OwnerOrAdmin)

Create and update take multipart/form-data so an avatar image can ride along
with the text fields. Avatars are capped at Settings.max_avatar_bytes, must
be PNG, JPEG, GIF or WebP, and are stored under a server-generated name --
the client's filename is never used on disk.

is_verified can only be set by an admin.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response, UploadFile
from sqlalchemy.exc import IntegrityError

from api.models import ErrorDetail, Page, ProfileResponse
from api.pagination import Pagination, get_pagination
from auth.dependencies import get_current_user, require_admin, require_owner_or_admin
from auth.models import ADMIN_ROLE, User
from core.config import get_settings
from profiles.models import Profile
from profiles.store import ProfileStore

logger = logging.getLogger("blueink.api")

router = APIRouter()

_AVATAR_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=ErrorDetail(code=code, message=message).model_dump())


def _profile_not_found() -> HTTPException:
    return _error(404, "not_found", "Profile not found.")


def _check_birth_date(value: str) -> str:
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError as exc:
        raise _error(400, "invalid_birth_date", "birth_date must be YYYY-MM-DD.") from exc


async def _save_avatar(file: UploadFile) -> str:
    """Validate and store an uploaded avatar. Returns its public URL path."""
    settings = get_settings()
    ext = _AVATAR_TYPES.get(file.content_type or "")
    if ext is None:
        raise _error(415, "unsupported_avatar", "Avatar must be a PNG, JPEG, GIF or WebP image.")

    # Size guard -- read up to the cap + 1 byte; reject if over limit
    raw = await file.read(settings.max_avatar_bytes + 1)
    if len(raw) > settings.max_avatar_bytes:
        raise _error(413, "file_too_large", "Avatar is too large.")

    media_dir = Path(settings.media_dir) / "avatars"
    media_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{time.time_ns()}_{secrets.token_hex(4)}{ext}"
    (media_dir / filename).write_bytes(raw)
    return f"{settings.media_url.rstrip('/')}/avatars/{filename}"


def _is_admin(request: Request, user: User) -> bool:
    return request.app.state.user_store.has_role(user.id, ADMIN_ROLE)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=ProfileResponse)
def my_profile(request: Request, current_user: User = Depends(get_current_user)) -> ProfileResponse:
    profile = request.app.state.profile_store.get_by_user_id(current_user.id)
    if profile is None:
        raise _profile_not_found()
    return ProfileResponse.from_profile(profile)


@router.get("/profiles", response_model=Page[ProfileResponse])
def list_profiles(
    request: Request,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
) -> Page[ProfileResponse]:
    store: ProfileStore = request.app.state.profile_store
    profiles = store.list_profiles(limit=pagination.limit, offset=pagination.offset)
    return Page[ProfileResponse].build(
        [ProfileResponse.from_profile(p) for p in profiles],
        store.count_profiles(),
        pagination.page,
        pagination.limit,
        request.url.path,
    )


@router.get("/profiles/{profile_id}", response_model=ProfileResponse)
def get_profile(
    request: Request,
    profile_id: int,
    current_user: User = Depends(require_admin),
) -> ProfileResponse:
    profile = request.app.state.profile_store.get_by_id(profile_id)
    if profile is None:
        raise _profile_not_found()
    return ProfileResponse.from_profile(profile)


@router.get("/users/{user_id}/profile", response_model=ProfileResponse)
def get_user_profile(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    profile = request.app.state.profile_store.get_by_user_id(user_id)
    if profile is None:
        raise _profile_not_found()
    return ProfileResponse.from_profile(profile)


# ---------------------------------------------------------------------------
# Writes (owner or admin)
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/profile", response_model=ProfileResponse, status_code=201)
async def create_profile(
    request: Request,
    user_id: int,
    first_name: str = Form(..., min_length=1, max_length=100),
    birth_date: str = Form(...),
    last_name: Optional[str] = Form(default=None, max_length=100),
    is_verified: Optional[bool] = Form(default=None),
    avatar: Optional[UploadFile] = None,
    current_user: User = Depends(require_owner_or_admin),
) -> ProfileResponse:
    """Create the single profile for user_id. A second create is a 409 -- use PUT."""
    if request.app.state.user_store.get_by_id(user_id) is None:
        raise _error(404, "not_found", "User not found.")
    if is_verified is not None and not _is_admin(request, current_user):
        raise _error(403, "admin_required", "Only admins may set is_verified.")

    profile = Profile(
        user_id=user_id,
        first_name=first_name.strip(),
        last_name=last_name.strip() if last_name else None,
        birth_date=_check_birth_date(birth_date),
        is_verified=bool(is_verified),
    )
    store: ProfileStore = request.app.state.profile_store
    if store.get_by_user_id(user_id) is not None:
        raise _error(409, "profile_exists", "Profile already exists, use PUT to update.")
    if avatar is not None and avatar.filename:
        profile.avatar = await _save_avatar(avatar)

    try:
        profile_id = store.create_profile(profile)
    except IntegrityError as exc:
        raise _error(409, "profile_exists", "Profile already exists, use PUT to update.") from exc

    logger.info("Profile %s created for user %s", profile_id, user_id)
    return ProfileResponse.from_profile(store.get_by_id(profile_id))


@router.put("/users/{user_id}/profile", response_model=ProfileResponse)
async def update_profile(
    request: Request,
    user_id: int,
    first_name: Optional[str] = Form(default=None, max_length=100),
    last_name: Optional[str] = Form(default=None, max_length=100),
    birth_date: Optional[str] = Form(default=None),
    is_verified: Optional[bool] = Form(default=None),
    avatar: Optional[UploadFile] = None,
    current_user: User = Depends(require_owner_or_admin),
) -> ProfileResponse:
    """Update only the fields that were sent."""
    store: ProfileStore = request.app.state.profile_store
    if store.get_by_user_id(user_id) is None:
        raise _profile_not_found()

    updates: dict = {}
    if first_name:
        updates["first_name"] = first_name.strip()
    if last_name:
        updates["last_name"] = last_name.strip()
    if birth_date:
        updates["birth_date"] = _check_birth_date(birth_date)
    if is_verified is not None:
        if not _is_admin(request, current_user):
            raise _error(403, "admin_required", "Only admins may set is_verified.")
        updates["is_verified"] = is_verified
    if avatar is not None and avatar.filename:
        updates["avatar"] = await _save_avatar(avatar)

    if not updates:
        raise _error(400, "no_changes", "No fields to update.")

    store.update_by_user_id(user_id, **updates)
    updated = store.get_by_user_id(user_id)
    if updated is None:
        raise _profile_not_found()
    return ProfileResponse.from_profile(updated)


@router.delete("/users/{user_id}/profile", status_code=204)
def delete_profile(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_owner_or_admin),
) -> Response:
    if not request.app.state.profile_store.delete_by_user_id(user_id):
        raise _profile_not_found()
    logger.info("Profile of user %s deleted by user %s", user_id, current_user.id)
    return Response(status_code=204)
