"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in profiles/models.py and audit/models.py -- dataclasses own domain shape;
stores and routes do the work.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ADMIN_ROLE = "admin"
CUSTOMER_ROLE = "pelanggan"

# Seeded on every startup; INSERT is idempotent.
SEED_ROLES: tuple[str, ...] = (CUSTOMER_ROLE, ADMIN_ROLE)


@dataclass
class User:
    """Represents an account in BlueInk.

    hashed_password is None for OAuth-provisioned users (they have no local
    password and cannot use the password login). roles is populated by the
    store on reads that join user_roles; it is never written through this
    object.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None  # None = OAuth-only user
    created_at: str | None = None
    updated_at: str | None = None
    is_active: bool = True
    roles: list[str] = field(default_factory=list)


@dataclass
class Role:
    """A named role. Membership lives in the user_roles relation."""

    name: str
    id: int | None = None
    created_at: str | None = None
