"""
API request and response models for BlueInk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
profiles/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from __future__ import annotations

import math
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from audit.models import AuditEntry
from auth.models import Role, User
from profiles.models import Profile

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class PageMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int


class PageLinks(BaseModel):
    model_config = ConfigDict(frozen=True)

    next: Optional[str] = None
    prev: Optional[str] = None


class Page(BaseModel, Generic[T]):
    """One page of a collection plus navigation metadata.

    Built with Page.build(); links are relative URLs that keep the caller's
    limit, or None at either end.
    """

    data: list[T]
    meta: PageMeta
    links: PageLinks

    @classmethod
    def build(cls, items: list, total: int, page: int, limit: int, path: str) -> "Page":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            data=items,
            meta=PageMeta(page=page, limit=limit, total=total, total_pages=total_pages),
            links=PageLinks(
                next=f"{path}?page={page + 1}&limit={limit}" if page < total_pages else None,
                prev=f"{path}?page={page - 1}&limit={limit}" if page > 1 else None,
            ),
        )


# ---------------------------------------------------------------------------
# Auth
#
# Passwords are taken byte-exact: only email fields are stripped, so the
# password hashed at register or reset is the one login compares against.
# ---------------------------------------------------------------------------


def _clean_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class _CaptchaFields(BaseModel):
    # Empty strings are accepted here so the route can answer with the
    # dedicated "captcha required" error instead of a generic validation one.
    captcha_id: str = Field(default="", max_length=64)
    captcha_answer: str = Field(default="", max_length=32)


class RegisterRequest(_CaptchaFields):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value):
        return _clean_email(value)


class LoginRequest(_CaptchaFields):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value):
        return _clean_email(value)


class ForgotPasswordRequest(_CaptchaFields):
    email: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value):
        return _clean_email(value)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    """Tokens issued by login, refresh and the OAuth callback.

    The same values are also set as httpOnly cookies; the body copy serves
    API clients that send Authorization: Bearer.
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    csrf_token: str


class RegisterResponse(BaseModel):
    id: int
    email: str


# ---------------------------------------------------------------------------
# Users and roles
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    created_at: Optional[str] = None

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, created_at=role.created_at)


class UserResponse(BaseModel):
    """A user as returned by the API. Password hashes never leave the store."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    roles: list[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
            roles=list(user.roles),
        )


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin)."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    role: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value):
        return _clean_email(value)

    @field_validator("role")
    @classmethod
    def strip_role(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else value


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}. Omitted fields are unchanged."""

    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=1, max_length=128)
    is_active: Optional[bool] = None

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value):
        return _clean_email(value)


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")


class RoleAssign(BaseModel):
    """Request body for POST /users/{id}/roles and PUT /users/{id}/role."""

    role_id: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    first_name: str
    last_name: Optional[str] = None
    birth_date: str
    avatar: Optional[str] = None
    is_verified: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            user_id=profile.user_id,
            first_name=profile.first_name,
            last_name=profile.last_name,
            birth_date=profile.birth_date,
            avatar=profile.avatar,
            is_verified=profile.is_verified,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int] = None
    method: str
    url: str
    status: int
    ip: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            method=entry.method,
            url=entry.url,
            status=entry.status,
            ip=entry.ip,
            created_at=entry.created_at,
        )
